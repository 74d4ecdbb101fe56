"""
争议处理路由
"""
from typing import List, Optional
from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session
from app.database import get_db
from app.models.ontology import DisputeStatus
from app.models.schemas import (
    DisputeCreate, DisputeUpdate, DisputeTransition, DisputeRefundCreate,
    DisputeResponse, RefundResponse
)
from app.routers.common import get_notifier, to_http_exception
from app.security.auth import CurrentUser, get_current_user, require_staff
from app.services.ledger_service import LedgerService
from core.notification import NotificationDispatcher

router = APIRouter(prefix="/disputes", tags=["争议处理"])


@router.get("", response_model=List[DisputeResponse])
def list_disputes(
    status: Optional[DisputeStatus] = None,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    """获取争议列表（客户只能看到自己的）"""
    requester_id = None if current_user.is_staff else current_user.id
    return LedgerService(db).list_disputes(status, requester_id)


@router.get("/{dispute_id}", response_model=DisputeResponse)
def get_dispute(
    dispute_id: int,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    """获取争议详情"""
    dispute = LedgerService(db).get_dispute(dispute_id)
    if not dispute or (dispute.requester_id != current_user.id and not current_user.is_staff):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND,
                            detail={"code": "NOT_FOUND", "message": "争议不存在"})
    return dispute


@router.post("", response_model=DisputeResponse, status_code=status.HTTP_201_CREATED)
def submit_dispute(
    data: DisputeCreate,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
    notifier: Optional[NotificationDispatcher] = Depends(get_notifier),
):
    """提交争议"""
    service = LedgerService(db, notifier=notifier)
    try:
        return service.submit_dispute(data.reservation_id, current_user.id, data.reason, data.description)
    except ValueError as e:
        raise to_http_exception(e)


@router.patch("/{dispute_id}", response_model=DisputeResponse)
def update_dispute(
    dispute_id: int,
    data: DisputeUpdate,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(require_staff),
):
    """更新争议（优先级、处理人、处理说明）"""
    try:
        return LedgerService(db).update_details(
            dispute_id, current_user.id,
            priority=data.priority,
            assigned_admin_id=data.assigned_admin_id,
            resolution_notes=data.resolution_notes,
            notes=data.notes,
        )
    except ValueError as e:
        raise to_http_exception(e)


@router.post("/{dispute_id}/start", response_model=DisputeResponse)
def start_review(
    dispute_id: int,
    data: DisputeTransition,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(require_staff),
):
    """开始处理争议"""
    try:
        return LedgerService(db).start_review(dispute_id, current_user.id, data.notes)
    except ValueError as e:
        raise to_http_exception(e)


@router.post("/{dispute_id}/resolve", response_model=DisputeResponse)
def resolve_dispute(
    dispute_id: int,
    data: DisputeTransition,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(require_staff),
    notifier: Optional[NotificationDispatcher] = Depends(get_notifier),
):
    """解决争议"""
    try:
        return LedgerService(db, notifier=notifier).resolve(dispute_id, current_user.id, data.notes)
    except ValueError as e:
        raise to_http_exception(e)


@router.post("/{dispute_id}/refund", response_model=RefundResponse, status_code=status.HTTP_201_CREATED)
def trigger_refund(
    dispute_id: int,
    data: DisputeRefundCreate,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(require_staff),
    notifier: Optional[NotificationDispatcher] = Depends(get_notifier),
):
    """由争议发起退款"""
    service = LedgerService(db, notifier=notifier)
    try:
        return service.trigger_refund(dispute_id, current_user.id, data.amount, data.reason, data.description)
    except ValueError as e:
        raise to_http_exception(e)
