"""
退款管理路由
"""
from typing import List, Optional
from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session
from app.database import get_db
from app.models.ontology import RefundStatus
from app.models.schemas import RefundCreate, RefundApprove, RefundDecision, RefundResponse
from app.routers.common import get_notifier, to_http_exception
from app.security.auth import CurrentUser, get_current_user, require_admin
from app.services.ledger_service import LedgerService
from core.notification import NotificationDispatcher

router = APIRouter(prefix="/refunds", tags=["退款管理"])


@router.get("", response_model=List[RefundResponse])
def list_refunds(
    status: Optional[RefundStatus] = None,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    """获取退款申请列表（客户只能看到自己的）"""
    requester_id = None if current_user.is_staff else current_user.id
    return LedgerService(db).list_refunds(status, requester_id)


@router.get("/{refund_id}", response_model=RefundResponse)
def get_refund(
    refund_id: int,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    """获取退款申请详情"""
    refund = LedgerService(db).get_refund(refund_id)
    if not refund or (refund.requester_id != current_user.id and not current_user.is_staff):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND,
                            detail={"code": "NOT_FOUND", "message": "退款申请不存在"})
    return refund


@router.post("", response_model=RefundResponse, status_code=status.HTTP_201_CREATED)
def request_refund(
    data: RefundCreate,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    """申请退款"""
    try:
        return LedgerService(db).request_refund(
            data.reservation_id, current_user.id, data.amount, data.reason, data.description
        )
    except ValueError as e:
        raise to_http_exception(e)


@router.post("/{refund_id}/approve", response_model=RefundResponse)
def approve_refund(
    refund_id: int,
    data: RefundApprove,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(require_admin),
    notifier: Optional[NotificationDispatcher] = Depends(get_notifier),
):
    """批准退款"""
    service = LedgerService(db, notifier=notifier)
    try:
        return service.approve(
            refund_id, current_user.id,
            approved_amount=data.approved_amount,
            cancel_reservation=data.cancel_reservation,
            notes=data.notes,
        )
    except ValueError as e:
        raise to_http_exception(e)


@router.post("/{refund_id}/reject", response_model=RefundResponse)
def reject_refund(
    refund_id: int,
    data: RefundDecision,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(require_admin),
    notifier: Optional[NotificationDispatcher] = Depends(get_notifier),
):
    """驳回退款"""
    try:
        return LedgerService(db, notifier=notifier).reject(refund_id, current_user.id, data.notes)
    except ValueError as e:
        raise to_http_exception(e)


@router.post("/{refund_id}/process", response_model=RefundResponse)
def process_refund(
    refund_id: int,
    data: RefundDecision,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(require_admin),
):
    """标记退款已打款"""
    try:
        return LedgerService(db).mark_processed(refund_id, current_user.id, data.notes)
    except ValueError as e:
        raise to_http_exception(e)
