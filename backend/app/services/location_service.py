"""
停车场服务 - 本体操作层
管理 Location 对象
"""
from typing import List, Optional
import logging

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.models.ontology import Location, LocationStatus
from app.models.schemas import LocationCreate, LocationUpdate
from app.services.availability_service import AvailabilityService
from app.services.errors import BookingError, NotFoundError, StoreUnavailableError, ValidationFailedError

logger = logging.getLogger(__name__)


class LocationService:
    """停车场服务"""

    def __init__(self, db: Session):
        self.db = db
        self.availability = AvailabilityService(db)

    def get_locations(self, status: Optional[LocationStatus] = None,
                      owner_id: Optional[str] = None) -> List[Location]:
        """获取停车场列表"""
        query = self.db.query(Location)
        if status:
            query = query.filter(Location.status == status)
        if owner_id:
            query = query.filter(Location.owner_id == owner_id)
        return query.order_by(Location.id).all()

    def get_location(self, location_id: int) -> Optional[Location]:
        return self.db.query(Location).filter(Location.id == location_id).first()

    def require_location(self, location_id: int) -> Location:
        location = self.get_location(location_id)
        if not location:
            raise NotFoundError("停车场不存在", location_id=location_id)
        return location

    def create_location(self, data: LocationCreate) -> Location:
        """创建停车场"""
        location = Location(**data.model_dump())
        self.db.add(location)
        self.db.commit()
        self.db.refresh(location)
        logger.info(f"Location {location.id} created with {location.total_spots} spots")
        return location

    def update_location(self, location_id: int, data: LocationUpdate) -> Location:
        """
        更新停车场（含启用/停用）

        下调车位数时与预订提交走同一把行锁，新车位数不能低于占用预订的峰值并发数

        Raises:
            NotFoundError: 停车场不存在
            ValidationFailedError: 新车位数低于已有预订占用
            StoreUnavailableError: 存储失败或锁等待超时，可重试
        """
        location = self.require_location(location_id)
        update_data = data.model_dump(exclude_unset=True)

        try:
            new_total = update_data.get("total_spots")
            if new_total is not None and new_total < location.total_spots:
                self.availability.lock_capacity(location.id)
                peak = self.availability.peak_occupancy(location.id)
                if new_total < peak:
                    logger.warning(
                        f"Location {location.id} cannot shrink to {new_total} spots, {peak} already booked"
                    )
                    raise ValidationFailedError(
                        f"车位数不能低于已预订的峰值占用 {peak}",
                        location_id=location.id, total_spots=new_total, peak=peak,
                    )

            for key, value in update_data.items():
                setattr(location, key, value)
            self.db.commit()
        except BookingError:
            self.db.rollback()
            raise
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.exception(f"Location {location_id} update failed")
            raise StoreUnavailableError(original_error=e)

        self.db.refresh(location)
        return location
