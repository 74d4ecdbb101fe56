"""
优惠服务 - 本体操作层
管理 Promotion 对象：资格校验、优惠金额计算、使用次数核销
"""
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import List, Optional, Tuple
import logging

from sqlalchemy import or_, update
from sqlalchemy.orm import Session

from app.models.ontology import Location, Promotion, PromotionType
from app.models.schemas import PromotionCreate, PromotionUpdate
from app.services.availability_service import to_storage_time
from app.services.errors import NotFoundError, PromotionError, PromotionRejection, ValidationFailedError
from app.services.pricing_service import round_money

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ApplicablePromotion:
    """候选优惠及其潜在优惠金额"""
    promotion: Promotion
    is_applicable: bool
    potential_discount: Decimal
    reason_if_not: Optional[str] = None


def compute_discount(promotion: Promotion, subtotal: Decimal, price_per_day: Decimal) -> Decimal:
    """
    计算优惠金额，结果四舍五入到分且不超过小计

    - percentage: 小计 × 比例，受 max_discount 限制
    - fixed: 固定金额
    - free_day: 赠送天数 × 日价
    """
    subtotal = Decimal(subtotal)
    value = Decimal(promotion.value)

    if promotion.type == PromotionType.PERCENTAGE:
        discount = subtotal * value / Decimal(100)
        if promotion.max_discount is not None:
            discount = min(discount, Decimal(promotion.max_discount))
    elif promotion.type == PromotionType.FIXED:
        discount = value
    else:
        discount = value * Decimal(price_per_day)

    return min(round_money(discount), round_money(subtotal))


class PromotionService:
    """优惠服务"""

    def __init__(self, db: Session):
        self.db = db

    # ============== 查询与维护 ==============

    def get_promotions(self, is_active: Optional[bool] = None) -> List[Promotion]:
        query = self.db.query(Promotion)
        if is_active is not None:
            query = query.filter(Promotion.is_active == is_active)
        return query.order_by(Promotion.code).all()

    def get_promotion(self, promotion_id: int) -> Optional[Promotion]:
        return self.db.query(Promotion).filter(Promotion.id == promotion_id).first()

    def get_by_code(self, code: str) -> Optional[Promotion]:
        """按优惠码查询（不区分大小写）"""
        if not code:
            return None
        return self.db.query(Promotion).filter(Promotion.code == code.strip().upper()).first()

    def create_promotion(self, data: PromotionCreate) -> Promotion:
        """创建优惠"""
        if self.get_by_code(data.code):
            raise ValidationFailedError("优惠码已存在", code=data.code)

        values = data.model_dump()
        values["valid_from"] = to_storage_time(values["valid_from"])
        values["valid_until"] = to_storage_time(values["valid_until"])
        promotion = Promotion(**values)
        self.db.add(promotion)
        self.db.commit()
        self.db.refresh(promotion)
        logger.info(f"Promotion {promotion.code} created")
        return promotion

    def update_promotion(self, promotion_id: int, data: PromotionUpdate) -> Promotion:
        """更新优惠"""
        promotion = self.get_promotion(promotion_id)
        if not promotion:
            raise NotFoundError("优惠不存在", promotion_id=promotion_id)

        update_data = data.model_dump(exclude_unset=True)
        for key in ("valid_from", "valid_until"):
            if update_data.get(key) is not None:
                update_data[key] = to_storage_time(update_data[key])

        for key, value in update_data.items():
            setattr(promotion, key, value)

        if promotion.valid_until < promotion.valid_from:
            self.db.rollback()
            raise ValidationFailedError("失效时间不能早于生效时间")
        if promotion.type == PromotionType.PERCENTAGE and Decimal(promotion.value) > 100:
            self.db.rollback()
            raise ValidationFailedError("折扣比例不能超过 100")
        if promotion.usage_limit is not None and promotion.usage_limit < promotion.used_count:
            self.db.rollback()
            raise ValidationFailedError("使用上限不能小于已使用次数")

        self.db.commit()
        self.db.refresh(promotion)
        return promotion

    def deactivate_promotion(self, promotion_id: int) -> Promotion:
        """停用优惠（保留历史预订的引用）"""
        promotion = self.get_promotion(promotion_id)
        if not promotion:
            raise NotFoundError("优惠不存在", promotion_id=promotion_id)

        promotion.is_active = False
        self.db.commit()
        self.db.refresh(promotion)
        return promotion

    # ============== 资格校验 ==============

    @staticmethod
    def check_eligibility(
        promotion: Optional[Promotion], subtotal: Decimal, now: Optional[datetime] = None
    ) -> Optional[Tuple[str, str]]:
        """
        校验优惠资格

        Returns:
            None 表示可用，否则返回 (拒绝原因, 提示信息)
        """
        if promotion is None or not promotion.is_active:
            return PromotionRejection.INVALID_CODE, "优惠码无效"

        now = to_storage_time(now or datetime.utcnow())
        if now < promotion.valid_from or now > promotion.valid_until:
            return PromotionRejection.EXPIRED, "优惠不在有效期内"

        if promotion.usage_limit is not None and promotion.used_count >= promotion.usage_limit:
            return PromotionRejection.USAGE_EXHAUSTED, "优惠已达使用上限"

        if promotion.min_booking_value is not None and Decimal(subtotal) < Decimal(promotion.min_booking_value):
            return PromotionRejection.BELOW_MINIMUM, f"订单金额未达到最低消费 {promotion.min_booking_value}"

        return None

    def resolve(
        self,
        code: str,
        subtotal: Decimal,
        price_per_day: Decimal,
        now: Optional[datetime] = None,
    ) -> Tuple[Promotion, Decimal]:
        """
        校验优惠码，返回优惠对象及优惠金额

        Raises:
            PromotionError: 优惠不可用，reason 说明原因
        """
        promotion = self.get_by_code(code)
        rejection = self.check_eligibility(promotion, subtotal, now)
        if rejection:
            reason, message = rejection
            logger.warning(f"Promotion {code} rejected: {reason}")
            raise PromotionError(reason, message, code=code)

        return promotion, compute_discount(promotion, subtotal, price_per_day)

    def validate_and_price(
        self,
        code: str,
        subtotal: Decimal,
        price_per_day: Decimal,
        now: Optional[datetime] = None,
    ) -> Decimal:
        """校验优惠码并计算优惠金额"""
        return self.resolve(code, subtotal, price_per_day, now)[1]

    def list_applicable(
        self,
        subtotal: Decimal,
        price_per_day: Optional[Decimal] = None,
        now: Optional[datetime] = None,
        location: Optional[Location] = None,
    ) -> List[ApplicablePromotion]:
        """
        列出所有启用中的优惠，按潜在优惠金额从高到低排序
        不可用的优惠潜在金额为 0 并附带原因

        未指定 price_per_day 时取停车场基础日价（与提交预订时免费天数的计算一致）
        """
        if price_per_day is None:
            price_per_day = location.base_price_per_day if location is not None else Decimal("0")

        results = []
        for promotion in self.get_promotions(is_active=True):
            rejection = self.check_eligibility(promotion, subtotal, now)
            if rejection:
                results.append(ApplicablePromotion(
                    promotion=promotion,
                    is_applicable=False,
                    potential_discount=Decimal("0.00"),
                    reason_if_not=rejection[0],
                ))
            else:
                results.append(ApplicablePromotion(
                    promotion=promotion,
                    is_applicable=True,
                    potential_discount=compute_discount(promotion, subtotal, price_per_day),
                ))

        results.sort(key=lambda r: (-r.potential_discount, r.promotion.code))
        return results

    # ============== 核销 ==============

    def redeem(self, promotion_id: int) -> None:
        """
        核销一次使用次数，在调用方事务中执行，不提交

        条件更新保证并发下 used_count 不超过 usage_limit

        Raises:
            PromotionError: 使用次数已满
        """
        result = self.db.execute(
            update(Promotion)
            .where(
                Promotion.id == promotion_id,
                or_(Promotion.usage_limit.is_(None), Promotion.used_count < Promotion.usage_limit),
            )
            .values(used_count=Promotion.used_count + 1)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            logger.info(f"Promotion {promotion_id} usage exhausted during redemption")
            raise PromotionError(PromotionRejection.USAGE_EXHAUSTED, "优惠已达使用上限", promotion_id=promotion_id)
