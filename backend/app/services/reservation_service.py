"""
预订服务 - 本体操作层
管理 Reservation 对象（容量占用的聚合根）

提交流程在一个事务内完成：
    锁定停车场行 -> 重新统计重叠 -> 服务端重算价格 -> 核销优惠 -> 写入预订
任一步失败整体回滚，既不产生预订也不增加优惠使用次数
"""
from datetime import datetime
from decimal import Decimal
from typing import List, Optional
from uuid import uuid4
import logging

from sqlalchemy.exc import DBAPIError, IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from app.config import settings
from app.models.ontology import (
    Location, LocationStatus, Reservation, ReservationStatus
)
from app.services.audit_service import AuditService
from app.services.availability_service import AvailabilityService, to_storage_time, validate_interval
from app.services.errors import (
    BookingError, InvalidTransitionError, NotFoundError, PermissionDeniedError,
    SoldOutError, StoreUnavailableError, ValidationFailedError
)
from app.services.pricing_service import PricingService, dump_rule_ids
from app.services.promotion_service import PromotionService
from core.engine import StateMachine, StateMachineConfig, StateTransition
from core.notification import Notification, NotificationDispatcher

logger = logging.getLogger(__name__)

RESERVATION_MACHINE = StateMachine(StateMachineConfig(
    name="Reservation",
    states=[s.value for s in ReservationStatus],
    transitions=[
        StateTransition("pending", "confirmed", "confirm"),
        StateTransition("pending", "cancelled", "cancel"),
        StateTransition("confirmed", "cancelled", "cancel"),
        StateTransition("confirmed", "completed", "complete"),
    ],
    initial_state="pending",
    terminal_states=["cancelled", "completed"],
))


def snapshot(reservation: Reservation) -> dict:
    """预订的审计快照"""
    return {
        "status": reservation.status,
        "check_in": reservation.check_in,
        "check_out": reservation.check_out,
        "total_price": reservation.total_price,
        "promotion_id": reservation.promotion_id,
    }


class ReservationService:
    """预订服务"""

    def __init__(
        self,
        db: Session,
        pricing: Optional[PricingService] = None,
        notifier: Optional[NotificationDispatcher] = None,
    ):
        self.db = db
        self.pricing = pricing or PricingService(db)
        self.promotions = PromotionService(db)
        self.availability = AvailabilityService(db)
        self.audit = AuditService(db)
        self.notifier = notifier

    @staticmethod
    def _generate_confirmation_code() -> str:
        """生成确认码：日期+随机串"""
        return f"PK{datetime.utcnow().strftime('%Y%m%d')}{uuid4().hex[:8].upper()}"

    # ============== 查询 ==============

    def get_reservation(self, reservation_id: int) -> Optional[Reservation]:
        """获取单个预订"""
        return self.db.query(Reservation).filter(Reservation.id == reservation_id).first()

    def get_by_idempotency_key(self, requester_id: str, idempotency_key: str) -> Optional[Reservation]:
        return self.db.query(Reservation).filter(
            Reservation.requester_id == requester_id,
            Reservation.idempotency_key == idempotency_key,
        ).first()

    def list_for_requester(
        self, requester_id: str, status: Optional[ReservationStatus] = None
    ) -> List[Reservation]:
        """获取某个用户的预订"""
        query = self.db.query(Reservation).filter(Reservation.requester_id == requester_id)
        if status:
            query = query.filter(Reservation.status == status)
        return query.order_by(Reservation.check_in.desc(), Reservation.id.desc()).all()

    # ============== 提交 ==============

    def commit(
        self,
        location_id: int,
        start: datetime,
        end: datetime,
        requester_id: str,
        promo_code: Optional[str] = None,
        idempotency_key: Optional[str] = None,
        displayed_total: Optional[Decimal] = None,
        now: Optional[datetime] = None,
    ) -> Reservation:
        """
        提交预订

        Raises:
            ValidationFailedError: 区间或停车场不合法
            SoldOutError: 区间内已无空余车位
            PromotionError: 优惠码不可用
            StoreUnavailableError: 存储失败或锁等待超时，可重试
        """
        # 开启事务前完成输入校验
        validate_interval(start, end)
        if not requester_id:
            raise ValidationFailedError("缺少预订人")

        location = self.db.query(Location).filter(Location.id == location_id).first()
        if not location:
            raise NotFoundError("停车场不存在", location_id=location_id)
        if location.status != LocationStatus.ACTIVE:
            raise ValidationFailedError("停车场当前不可预订", location_id=location_id)

        if idempotency_key:
            existing = self.get_by_idempotency_key(requester_id, idempotency_key)
            if existing:
                logger.info(f"Idempotent replay of reservation {existing.confirmation_code}")
                return existing

        try:
            reservation = self._commit_unit(
                location, start, end, requester_id, promo_code, idempotency_key, displayed_total, now
            )
        except BookingError:
            self.db.rollback()
            raise
        except IntegrityError as e:
            self.db.rollback()
            if idempotency_key:
                existing = self.get_by_idempotency_key(requester_id, idempotency_key)
                if existing:
                    logger.info(f"Concurrent duplicate resolved to reservation {existing.confirmation_code}")
                    return existing
            logger.exception(f"Reservation commit failed for location {location_id}")
            raise StoreUnavailableError(original_error=e)
        except DBAPIError as e:
            self.db.rollback()
            logger.exception(f"Reservation commit failed for location {location_id}")
            raise StoreUnavailableError(original_error=e)

        logger.info(
            f"Reservation {reservation.confirmation_code} committed: location {location_id}, "
            f"requester {requester_id}, total {reservation.total_price}"
        )
        self._after_commit(reservation, "reservation.create", None, snapshot(reservation), requester_id)
        self._notify(reservation, "reservation.confirmed", "预订成功")
        return reservation

    def _commit_unit(
        self,
        location: Location,
        start: datetime,
        end: datetime,
        requester_id: str,
        promo_code: Optional[str],
        idempotency_key: Optional[str],
        displayed_total: Optional[Decimal],
        now: Optional[datetime],
    ) -> Reservation:
        self.availability.lock_capacity(location.id)

        overlap = self.availability.overlap_count(location.id, start, end)
        if overlap >= location.total_spots:
            logger.warning(f"Location {location.id} sold out for {start} - {end}")
            raise SoldOutError("所选时段已无空余车位", location_id=location.id)

        breakdown = self.pricing.quote_price(location, start, end)
        promotion = None
        if promo_code:
            promotion, discount = self.promotions.resolve(
                promo_code, breakdown.subtotal, location.base_price_per_day, now
            )
            breakdown = self.pricing.apply_discount(breakdown, discount, location)
            self.promotions.redeem(promotion.id)

        if displayed_total is not None:
            drift = abs(Decimal(displayed_total) - breakdown.total_price)
            if drift > settings.PRICE_TOLERANCE:
                logger.warning(
                    f"Stale quote for location {location.id}: displayed {displayed_total}, "
                    f"actual {breakdown.total_price}"
                )

        reservation = Reservation(
            confirmation_code=self._generate_confirmation_code(),
            location_id=location.id,
            requester_id=requester_id,
            check_in=to_storage_time(start),
            check_out=to_storage_time(end),
            status=ReservationStatus(settings.RESERVATION_INITIAL_STATUS),
            subtotal=breakdown.subtotal,
            discount=breakdown.discount,
            taxes=breakdown.taxes,
            fees=breakdown.fees,
            total_price=breakdown.total_price,
            applied_rule_ids=dump_rule_ids(breakdown),
            promotion_id=promotion.id if promotion else None,
            idempotency_key=idempotency_key,
        )
        self.db.add(reservation)
        self.db.commit()
        self.db.refresh(reservation)
        return reservation

    # ============== 状态变更 ==============

    def _transition(self, reservation: Reservation, trigger: str) -> ReservationStatus:
        target = RESERVATION_MACHINE.next_state(reservation.status.value, trigger)
        if target is None:
            raise InvalidTransitionError(
                f"预订状态为 {reservation.status.value}，不能执行 {trigger}",
                reservation_id=reservation.id,
            )
        return ReservationStatus(target)

    def apply_cancellation(self, reservation: Reservation, actor_id: str, reason: str) -> None:
        """
        在调用方事务内取消预订（释放容量），不提交
        退款审批取消预订时复用
        """
        self.availability.lock_capacity(reservation.location_id)
        old = snapshot(reservation)
        reservation.status = self._transition(reservation, "cancel")
        reservation.cancel_reason = reason
        self.audit.record("reservation.cancel", "reservation", reservation.id, actor_id,
                          old_value=old, new_value=snapshot(reservation), notes=reason)

    def cancel(
        self, reservation_id: int, actor_id: str, reason: str, is_staff: bool = False
    ) -> Reservation:
        """取消预订"""
        reservation = self.get_reservation(reservation_id)
        if not reservation:
            raise NotFoundError("预订不存在", reservation_id=reservation_id)
        if not is_staff and reservation.requester_id != actor_id:
            raise PermissionDeniedError("只能取消自己的预订")

        try:
            self.apply_cancellation(reservation, actor_id, reason)
            self._commit()
        except BookingError:
            self.db.rollback()
            raise
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.exception(f"Cancellation failed for reservation {reservation_id}")
            raise StoreUnavailableError(original_error=e)

        logger.info(f"Reservation {reservation.confirmation_code} cancelled by {actor_id}")
        self._notify(reservation, "reservation.cancelled", "预订已取消")
        return reservation

    def confirm(self, reservation_id: int, actor_id: str) -> Reservation:
        """确认待确认的预订"""
        return self._simple_transition(reservation_id, actor_id, "confirm")

    def complete(self, reservation_id: int, actor_id: str) -> Reservation:
        """完成预订（离场）"""
        return self._simple_transition(reservation_id, actor_id, "complete")

    def _simple_transition(self, reservation_id: int, actor_id: str, trigger: str) -> Reservation:
        reservation = self.get_reservation(reservation_id)
        if not reservation:
            raise NotFoundError("预订不存在", reservation_id=reservation_id)

        old = snapshot(reservation)
        reservation.status = self._transition(reservation, trigger)
        self.audit.record(f"reservation.{trigger}", "reservation", reservation.id, actor_id,
                          old_value=old, new_value=snapshot(reservation))
        self._commit()
        logger.info(f"Reservation {reservation.confirmation_code} {trigger} by {actor_id}")
        return reservation

    # ============== 内部 ==============

    def _commit(self) -> None:
        try:
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.exception("Reservation update failed")
            raise StoreUnavailableError(original_error=e)

    def _after_commit(self, reservation: Reservation, action: str, old, new, actor_id: str) -> None:
        """提交后补写审计，失败只记录日志"""
        result = self.audit.record(action, "reservation", reservation.id, actor_id, old_value=old, new_value=new)
        if not result.ok:
            self.db.rollback()
            return
        try:
            self.db.commit()
        except SQLAlchemyError:
            self.db.rollback()
            logger.exception(f"Audit commit failed for reservation {reservation.id}")

    def _notify(self, reservation: Reservation, kind: str, subject: str) -> None:
        if self.notifier is None:
            return
        self.notifier.dispatch(Notification(
            recipient=reservation.requester_id,
            subject=subject,
            content=f"{reservation.confirmation_code}: {reservation.check_in} - {reservation.check_out}",
            kind=kind,
            extra={"reservation_id": reservation.id, "total_price": str(reservation.total_price)},
        ))
