"""
可用性服务 - 区间重叠计算
统计与请求区间重叠、且仍占用车位的预订数量；容量变更前的行级写锁
"""
from datetime import datetime, timezone
from sqlalchemy import func, update
from sqlalchemy.orm import Session
from app.models.ontology import Location, Reservation, CAPACITY_CONSUMING_STATUSES
from app.services.errors import NotFoundError, ValidationFailedError


def validate_interval(start: datetime, end: datetime) -> None:
    """校验半开区间 [start, end)"""
    if start is None or end is None:
        raise ValidationFailedError("开始和结束时间不能为空")
    if (start.tzinfo is None) != (end.tzinfo is None):
        raise ValidationFailedError("开始和结束时间的时区信息必须一致")
    if not start < end:
        raise ValidationFailedError("结束时间必须晚于开始时间", start=start, end=end)


def to_storage_time(value: datetime) -> datetime:
    """数据库中统一保存不带时区的 UTC 时间"""
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


class AvailabilityService:
    """可用性服务"""

    def __init__(self, db: Session):
        self.db = db

    def overlap_count(self, location_id: int, start: datetime, end: datetime) -> int:
        """统计重叠的占用预订数：check_in < end AND check_out > start"""
        return self.db.query(func.count(Reservation.id)).filter(
            Reservation.location_id == location_id,
            Reservation.status.in_(CAPACITY_CONSUMING_STATUSES),
            Reservation.check_in < to_storage_time(end),
            Reservation.check_out > to_storage_time(start),
        ).scalar() or 0

    def available_spots(self, location_id: int, start: datetime, end: datetime) -> int:
        """获取区间内剩余车位数（不小于 0）"""
        validate_interval(start, end)

        location = self.db.query(Location).filter(Location.id == location_id).first()
        if not location:
            raise NotFoundError("停车场不存在", location_id=location_id)

        return max(location.total_spots - self.overlap_count(location_id, start, end), 0)

    def is_available(self, location_id: int, start: datetime, end: datetime) -> bool:
        return self.available_spots(location_id, start, end) > 0

    def lock_capacity(self, location_id: int) -> None:
        """
        条件写锁定停车场行，不提交

        必须是事务内的第一条写语句；同一停车场的容量变更（提交、取消、车位数下调）在此串行化
        """
        self.db.execute(
            update(Location)
            .where(Location.id == location_id)
            .values(capacity_version=Location.capacity_version + 1)
            .execution_options(synchronize_session=False)
        )

    def peak_occupancy(self, location_id: int) -> int:
        """占用预订在任一时刻的最大并发数（按入场/离场事件扫描）"""
        rows = self.db.query(Reservation.check_in, Reservation.check_out).filter(
            Reservation.location_id == location_id,
            Reservation.status.in_(CAPACITY_CONSUMING_STATUSES),
        ).all()

        # 半开区间：同一时刻先离场后入场
        events = sorted(
            [(check_in, 1) for check_in, _ in rows] + [(check_out, -1) for _, check_out in rows]
        )
        peak = current = 0
        for _, delta in events:
            current += delta
            peak = max(peak, current)
        return peak
