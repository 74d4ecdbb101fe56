"""
争议/退款台账服务
管理 Dispute 与 RefundRequest 的生命周期，每次状态变更写一条审计日志
"""
from datetime import datetime
from decimal import Decimal
from typing import List, Optional
import logging

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.models.ontology import (
    Dispute, DisputePriority, DisputeStatus, RefundRequest, RefundStatus, Reservation
)
from app.services.audit_service import AuditService
from app.services.errors import (
    BookingError, InvalidTransitionError, NotFoundError, PermissionDeniedError,
    StoreUnavailableError, ValidationFailedError
)
from app.services.reservation_service import ReservationService
from core.engine import StateMachine, StateMachineConfig, StateTransition
from core.notification import Notification, NotificationDispatcher

logger = logging.getLogger(__name__)

DISPUTE_MACHINE = StateMachine(StateMachineConfig(
    name="Dispute",
    states=[s.value for s in DisputeStatus],
    transitions=[
        StateTransition("open", "in_progress", "start_review"),
        StateTransition("in_progress", "resolved", "resolve"),
    ],
    initial_state="open",
    terminal_states=["resolved"],
))

REFUND_MACHINE = StateMachine(StateMachineConfig(
    name="RefundRequest",
    states=[s.value for s in RefundStatus],
    transitions=[
        StateTransition("pending", "approved", "approve"),
        StateTransition("pending", "rejected", "reject"),
        StateTransition("approved", "processed", "process"),
    ],
    initial_state="pending",
    terminal_states=["rejected", "processed"],
))


def _dispute_snapshot(dispute: Dispute) -> dict:
    return {
        "status": dispute.status,
        "priority": dispute.priority,
        "assigned_admin_id": dispute.assigned_admin_id,
        "resolution_notes": dispute.resolution_notes,
    }


def _refund_snapshot(refund: RefundRequest) -> dict:
    return {
        "status": refund.status,
        "amount": refund.amount,
        "approved_amount": refund.approved_amount,
    }


class LedgerService:
    """争议/退款台账服务"""

    def __init__(self, db: Session, notifier: Optional[NotificationDispatcher] = None):
        self.db = db
        self.audit = AuditService(db)
        self.reservations = ReservationService(db)
        self.notifier = notifier

    # ============== 查询 ==============

    def get_dispute(self, dispute_id: int) -> Optional[Dispute]:
        return self.db.query(Dispute).filter(Dispute.id == dispute_id).first()

    def get_refund(self, refund_id: int) -> Optional[RefundRequest]:
        return self.db.query(RefundRequest).filter(RefundRequest.id == refund_id).first()

    def list_disputes(
        self, status: Optional[DisputeStatus] = None, requester_id: Optional[str] = None
    ) -> List[Dispute]:
        """获取争议列表（新的在前）"""
        query = self.db.query(Dispute)
        if status:
            query = query.filter(Dispute.status == status)
        if requester_id:
            query = query.filter(Dispute.requester_id == requester_id)
        return query.order_by(Dispute.created_at.desc(), Dispute.id.desc()).all()

    def list_refunds(
        self, status: Optional[RefundStatus] = None, requester_id: Optional[str] = None
    ) -> List[RefundRequest]:
        """获取退款申请列表（新的在前）"""
        query = self.db.query(RefundRequest)
        if status:
            query = query.filter(RefundRequest.status == status)
        if requester_id:
            query = query.filter(RefundRequest.requester_id == requester_id)
        return query.order_by(RefundRequest.created_at.desc(), RefundRequest.id.desc()).all()

    # ============== 争议 ==============

    def submit_dispute(
        self, reservation_id: int, requester_id: str, reason: str, description: Optional[str] = None
    ) -> Dispute:
        """提交争议（只能针对自己的预订）"""
        reservation = self._get_owned_reservation(reservation_id, requester_id)
        if not reason or not reason.strip():
            raise ValidationFailedError("争议原因不能为空")

        dispute = Dispute(
            reservation_id=reservation.id,
            requester_id=requester_id,
            reason=reason.strip(),
            description=description,
            status=DisputeStatus.OPEN,
            priority=DisputePriority.MEDIUM,
        )
        self.db.add(dispute)
        self.db.flush()
        self.audit.record("dispute.submit", "dispute", dispute.id, requester_id,
                          new_value=_dispute_snapshot(dispute), notes=reason)
        self._commit()

        logger.info(f"Dispute {dispute.id} submitted for reservation {reservation.id}")
        self._notify(requester_id, "dispute.submitted", "争议已提交", dispute_id=dispute.id)
        return dispute

    def start_review(self, dispute_id: int, actor_id: str, notes: Optional[str] = None) -> Dispute:
        """开始处理争议（open -> in_progress）"""
        dispute = self._require_dispute(dispute_id)
        old = _dispute_snapshot(dispute)
        dispute.status = self._next(DISPUTE_MACHINE, dispute.status.value, "start_review", DisputeStatus)
        if not dispute.assigned_admin_id:
            dispute.assigned_admin_id = actor_id

        self.audit.record("dispute.start_review", "dispute", dispute.id, actor_id,
                          old_value=old, new_value=_dispute_snapshot(dispute), notes=notes)
        self._commit()
        logger.info(f"Dispute {dispute.id} under review by {actor_id}")
        return dispute

    def resolve(self, dispute_id: int, actor_id: str, notes: Optional[str] = None) -> Dispute:
        """解决争议（in_progress -> resolved）"""
        dispute = self._require_dispute(dispute_id)
        old = _dispute_snapshot(dispute)
        self._resolve_in_unit(dispute, actor_id, notes, old)
        self._commit()

        logger.info(f"Dispute {dispute.id} resolved by {actor_id}")
        self._notify(dispute.requester_id, "dispute.resolved", "争议已处理", dispute_id=dispute.id)
        return dispute

    def update_details(
        self,
        dispute_id: int,
        actor_id: str,
        priority: Optional[DisputePriority] = None,
        assigned_admin_id: Optional[str] = None,
        resolution_notes: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> Dispute:
        """更新争议的优先级、处理人和处理说明（不改变状态）"""
        dispute = self._require_dispute(dispute_id)
        if dispute.status == DisputeStatus.RESOLVED:
            raise InvalidTransitionError("争议已解决，不能修改", dispute_id=dispute_id)

        old = _dispute_snapshot(dispute)
        if priority is not None:
            dispute.priority = priority
        if assigned_admin_id is not None:
            dispute.assigned_admin_id = assigned_admin_id
        if resolution_notes is not None:
            dispute.resolution_notes = resolution_notes

        self.audit.record("dispute.update", "dispute", dispute.id, actor_id,
                          old_value=old, new_value=_dispute_snapshot(dispute), notes=notes)
        self._commit()
        return dispute

    def trigger_refund(
        self,
        dispute_id: int,
        actor_id: str,
        amount: Decimal,
        reason: str,
        description: Optional[str] = None,
    ) -> RefundRequest:
        """
        由处理中的争议发起退款：创建待审批的退款申请并解决争议，在同一事务中完成
        """
        dispute = self._require_dispute(dispute_id)
        if dispute.status != DisputeStatus.IN_PROGRESS:
            raise InvalidTransitionError("只有处理中的争议可以发起退款", dispute_id=dispute_id)
        if dispute.refund_request is not None:
            raise InvalidTransitionError("该争议已发起退款", dispute_id=dispute_id)

        reservation = dispute.reservation
        self._check_amount(reservation, amount)

        refund = RefundRequest(
            reservation_id=reservation.id,
            dispute_id=dispute.id,
            requester_id=dispute.requester_id,
            amount=amount,
            reason=reason,
            description=description,
            status=RefundStatus.PENDING,
        )
        self.db.add(refund)
        self.db.flush()
        self.audit.record("refund.request", "refund", refund.id, actor_id,
                          new_value=_refund_snapshot(refund), notes=f"dispute #{dispute.id}")

        old = _dispute_snapshot(dispute)
        self._resolve_in_unit(dispute, actor_id, f"退款申请 #{refund.id}", old)
        self._commit()

        logger.info(f"Refund {refund.id} created from dispute {dispute.id}, amount {amount}")
        self._notify(dispute.requester_id, "dispute.resolved", "争议已处理，退款审批中", dispute_id=dispute.id)
        return refund

    # ============== 退款 ==============

    def request_refund(
        self,
        reservation_id: int,
        requester_id: str,
        amount: Decimal,
        reason: str,
        description: Optional[str] = None,
    ) -> RefundRequest:
        """申请退款（只能针对自己的预订）"""
        reservation = self._get_owned_reservation(reservation_id, requester_id)
        self._check_amount(reservation, amount)

        refund = RefundRequest(
            reservation_id=reservation.id,
            requester_id=requester_id,
            amount=amount,
            reason=reason,
            description=description,
            status=RefundStatus.PENDING,
        )
        self.db.add(refund)
        self.db.flush()
        self.audit.record("refund.request", "refund", refund.id, requester_id,
                          new_value=_refund_snapshot(refund), notes=reason)
        self._commit()

        logger.info(f"Refund {refund.id} requested for reservation {reservation.id}")
        return refund

    def approve(
        self,
        refund_id: int,
        actor_id: str,
        approved_amount: Optional[Decimal] = None,
        cancel_reservation: bool = False,
        notes: Optional[str] = None,
    ) -> RefundRequest:
        """
        批准退款

        Args:
            approved_amount: 批准金额，默认等于申请金额，不能超过申请金额
            cancel_reservation: 同时取消预订并释放车位
        """
        refund = self._require_refund(refund_id)
        amount = Decimal(approved_amount) if approved_amount is not None else Decimal(refund.amount)
        if amount <= 0 or amount > Decimal(refund.amount):
            raise ValidationFailedError("批准金额必须大于 0 且不超过申请金额", refund_id=refund_id)

        old = _refund_snapshot(refund)
        try:
            refund.status = self._next(REFUND_MACHINE, refund.status.value, "approve", RefundStatus)
            refund.approved_amount = amount
            if cancel_reservation:
                self.reservations.apply_cancellation(
                    refund.reservation, actor_id, notes or f"退款 #{refund.id} 取消预订"
                )
        except BookingError:
            self.db.rollback()
            raise
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.exception(f"Refund approval failed for refund {refund_id}")
            raise StoreUnavailableError(original_error=e)

        self.audit.record("refund.approve", "refund", refund.id, actor_id,
                          old_value=old, new_value=_refund_snapshot(refund), notes=notes)
        self._commit()

        logger.info(f"Refund {refund.id} approved by {actor_id}, amount {amount}")
        self._notify(refund.requester_id, "refund.approved", "退款已批准", refund_id=refund.id)
        return refund

    def reject(self, refund_id: int, actor_id: str, notes: Optional[str] = None) -> RefundRequest:
        """驳回退款"""
        refund = self._require_refund(refund_id)
        old = _refund_snapshot(refund)
        refund.status = self._next(REFUND_MACHINE, refund.status.value, "reject", RefundStatus)

        self.audit.record("refund.reject", "refund", refund.id, actor_id,
                          old_value=old, new_value=_refund_snapshot(refund), notes=notes)
        self._commit()

        logger.info(f"Refund {refund.id} rejected by {actor_id}")
        self._notify(refund.requester_id, "refund.rejected", "退款已驳回", refund_id=refund.id)
        return refund

    def mark_processed(self, refund_id: int, actor_id: str, notes: Optional[str] = None) -> RefundRequest:
        """标记退款已打款（approved -> processed）"""
        refund = self._require_refund(refund_id)
        old = _refund_snapshot(refund)
        refund.status = self._next(REFUND_MACHINE, refund.status.value, "process", RefundStatus)
        refund.processed_at = datetime.utcnow()

        self.audit.record("refund.process", "refund", refund.id, actor_id,
                          old_value=old, new_value=_refund_snapshot(refund), notes=notes)
        self._commit()

        logger.info(f"Refund {refund.id} processed by {actor_id}")
        return refund

    # ============== 内部 ==============

    @staticmethod
    def _next(machine: StateMachine, current: str, trigger: str, enum_type):
        target = machine.next_state(current, trigger)
        if target is None:
            raise InvalidTransitionError(f"{machine.name} 状态为 {current}，不能执行 {trigger}")
        return enum_type(target)

    def _resolve_in_unit(self, dispute: Dispute, actor_id: str, notes: Optional[str], old: dict) -> None:
        dispute.status = self._next(DISPUTE_MACHINE, dispute.status.value, "resolve", DisputeStatus)
        if notes and not dispute.resolution_notes:
            dispute.resolution_notes = notes
        self.audit.record("dispute.resolve", "dispute", dispute.id, actor_id,
                          old_value=old, new_value=_dispute_snapshot(dispute), notes=notes)

    def _require_dispute(self, dispute_id: int) -> Dispute:
        dispute = self.get_dispute(dispute_id)
        if not dispute:
            raise NotFoundError("争议不存在", dispute_id=dispute_id)
        return dispute

    def _require_refund(self, refund_id: int) -> RefundRequest:
        refund = self.get_refund(refund_id)
        if not refund:
            raise NotFoundError("退款申请不存在", refund_id=refund_id)
        return refund

    def _get_owned_reservation(self, reservation_id: int, requester_id: str) -> Reservation:
        reservation = self.db.query(Reservation).filter(Reservation.id == reservation_id).first()
        if not reservation:
            raise NotFoundError("预订不存在", reservation_id=reservation_id)
        if reservation.requester_id != requester_id:
            raise PermissionDeniedError("只能对自己的预订发起申请", reservation_id=reservation_id)
        return reservation

    @staticmethod
    def _check_amount(reservation: Reservation, amount: Decimal) -> None:
        amount = Decimal(amount)
        if amount <= 0:
            raise ValidationFailedError("退款金额必须大于 0")
        if amount > Decimal(reservation.total_price):
            raise ValidationFailedError("退款金额不能超过预订总额", reservation_id=reservation.id)

    def _commit(self) -> None:
        try:
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.exception("Ledger update failed")
            raise StoreUnavailableError(original_error=e)

    def _notify(self, recipient: str, kind: str, subject: str, **extra) -> None:
        if self.notifier is None:
            return
        self.notifier.dispatch(Notification(
            recipient=recipient, subject=subject, content=subject, kind=kind, extra=extra,
        ))
