"""
报价服务 - 只读组合
可用性 + 区间计价 + 优惠校验，不产生任何写入，报价不过期
"""
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Optional
import logging

from sqlalchemy.orm import Session

from app.models.ontology import Location, LocationStatus
from app.services.availability_service import AvailabilityService, validate_interval
from app.services.errors import NotFoundError, PromotionError
from app.services.pricing_service import PriceBreakdown, PricingService
from app.services.promotion_service import PromotionService

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Quote:
    """
    报价结果

    Attributes:
        available: 停车场启用且仍有空余车位
        breakdown: 扣除优惠后的价格明细
        promotion_error: 优惠码不可用时的拒绝原因（报价仍然有效，只是不含优惠）
    """
    location_id: int
    start: datetime
    end: datetime
    available: bool
    available_spots: int
    breakdown: PriceBreakdown
    discount: Decimal
    promotion_code: Optional[str] = None
    promotion_error: Optional[str] = None


class QuoteService:
    """报价服务"""

    def __init__(self, db: Session, pricing: Optional[PricingService] = None):
        self.db = db
        self.availability = AvailabilityService(db)
        self.pricing = pricing or PricingService(db)
        self.promotions = PromotionService(db)

    def get_quote(
        self,
        location_id: int,
        start: datetime,
        end: datetime,
        promo_code: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Quote:
        """获取区间报价"""
        validate_interval(start, end)

        location = self.db.query(Location).filter(Location.id == location_id).first()
        if not location:
            raise NotFoundError("停车场不存在", location_id=location_id)

        spots = self.availability.available_spots(location_id, start, end)
        breakdown = self.pricing.quote_price(location, start, end)

        discount = Decimal("0.00")
        promotion_code = None
        promotion_error = None
        if promo_code:
            try:
                promotion, discount = self.promotions.resolve(
                    promo_code, breakdown.subtotal, location.base_price_per_day, now
                )
                promotion_code = promotion.code
                breakdown = self.pricing.apply_discount(breakdown, discount, location)
            except PromotionError as e:
                promotion_code = promo_code.strip().upper()
                promotion_error = e.reason

        return Quote(
            location_id=location_id,
            start=start,
            end=end,
            available=location.status == LocationStatus.ACTIVE and spots > 0,
            available_spots=spots,
            breakdown=breakdown,
            discount=breakdown.discount,
            promotion_code=promotion_code,
            promotion_error=promotion_error,
        )
