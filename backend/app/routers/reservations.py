"""
预订管理路由
"""
from typing import List, Optional
from fastapi import APIRouter, Depends, Header, HTTPException, status
from sqlalchemy.orm import Session
from app.database import get_db
from app.models.ontology import ReservationStatus
from app.models.schemas import ReservationCreate, ReservationCancel, ReservationResponse
from app.routers.common import get_notifier, to_http_exception
from app.security.auth import CurrentUser, get_current_user, require_staff
from app.services.reservation_service import ReservationService
from core.notification import NotificationDispatcher

router = APIRouter(prefix="/reservations", tags=["预订管理"])


@router.get("", response_model=List[ReservationResponse])
def list_my_reservations(
    status: Optional[ReservationStatus] = None,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    """获取当前用户的预订列表"""
    return ReservationService(db).list_for_requester(current_user.id, status)


@router.get("/{reservation_id}", response_model=ReservationResponse)
def get_reservation(
    reservation_id: int,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    """获取预订详情"""
    reservation = ReservationService(db).get_reservation(reservation_id)
    if not reservation or (reservation.requester_id != current_user.id and not current_user.is_staff):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND,
                            detail={"code": "NOT_FOUND", "message": "预订不存在"})
    return reservation


@router.post("", response_model=ReservationResponse, status_code=status.HTTP_201_CREATED)
def create_reservation(
    data: ReservationCreate,
    idempotency_key: Optional[str] = Header(default=None, alias="Idempotency-Key"),
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
    notifier: Optional[NotificationDispatcher] = Depends(get_notifier),
):
    """提交预订"""
    service = ReservationService(db, notifier=notifier)
    try:
        return service.commit(
            location_id=data.location_id,
            start=data.check_in,
            end=data.check_out,
            requester_id=current_user.id,
            promo_code=data.promo_code,
            idempotency_key=idempotency_key,
            displayed_total=data.displayed_total,
        )
    except ValueError as e:
        raise to_http_exception(e)


@router.post("/{reservation_id}/cancel", response_model=ReservationResponse)
def cancel_reservation(
    reservation_id: int,
    data: ReservationCancel,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
    notifier: Optional[NotificationDispatcher] = Depends(get_notifier),
):
    """取消预订"""
    service = ReservationService(db, notifier=notifier)
    try:
        return service.cancel(reservation_id, current_user.id, data.cancel_reason, current_user.is_staff)
    except ValueError as e:
        raise to_http_exception(e)


@router.post("/{reservation_id}/confirm", response_model=ReservationResponse)
def confirm_reservation(
    reservation_id: int,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(require_staff),
):
    """确认预订"""
    try:
        return ReservationService(db).confirm(reservation_id, current_user.id)
    except ValueError as e:
        raise to_http_exception(e)


@router.post("/{reservation_id}/complete", response_model=ReservationResponse)
def complete_reservation(
    reservation_id: int,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(require_staff),
):
    """完成预订"""
    try:
        return ReservationService(db).complete(reservation_id, current_user.id)
    except ValueError as e:
        raise to_http_exception(e)
