"""
计价服务 - 定价规则评估
按自然日切分预订区间，逐日选出一条定价规则（或基础日价），按时长折算后汇总

规则优先级（同一天命中多条时）:
    1. date_range 优先于 holiday，holiday 优先于 weekday
    2. date_range 之间区间越短越优先
    3. 创建时间越早越优先，最后按 ID
"""
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta
from decimal import Decimal, ROUND_HALF_UP
from typing import Dict, Iterable, List, Optional, Set
import json
import logging

from sqlalchemy.orm import Session

from app.config import settings
from app.models.ontology import (
    Location, PricingRule, RuleScopeKind, RuleEffectKind
)
from app.models.schemas import PricingRuleCreate, PricingRuleUpdate
from app.services.availability_service import validate_interval
from app.services.errors import NotFoundError, ValidationFailedError

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")
SECONDS_PER_DAY = Decimal(86400)

_SCOPE_RANK = {
    RuleScopeKind.DATE_RANGE: 0,
    RuleScopeKind.HOLIDAY: 1,
    RuleScopeKind.WEEKDAY: 2,
}


def round_money(value) -> Decimal:
    """四舍五入到分（ROUND_HALF_UP）"""
    return Decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def _seconds(delta: timedelta) -> Decimal:
    return Decimal(delta.days * 86400 + delta.seconds) + Decimal(delta.microseconds) / Decimal(1000000)


@dataclass(frozen=True)
class TaxPolicy:
    """辖区税费策略"""
    tax_rate: Decimal
    service_fee: Decimal


class JurisdictionResolver:
    """
    辖区解析 - 外部协作方的默认实现
    按停车场的 jurisdiction 查税率，未配置时使用默认税率
    """

    def __init__(
        self,
        default_tax_rate: Optional[Decimal] = None,
        service_fee: Optional[Decimal] = None,
        tax_rates: Optional[Dict[str, Decimal]] = None,
    ):
        self.default_tax_rate = Decimal(
            default_tax_rate if default_tax_rate is not None else settings.DEFAULT_TAX_RATE
        )
        self.service_fee = Decimal(service_fee if service_fee is not None else settings.DEFAULT_SERVICE_FEE)
        self.tax_rates = {
            k: Decimal(v) for k, v in (tax_rates if tax_rates is not None else settings.JURISDICTION_TAX_RATES).items()
        }

    def resolve(self, location: Location) -> TaxPolicy:
        rate = self.tax_rates.get(location.jurisdiction or "", self.default_tax_rate)
        return TaxPolicy(tax_rate=rate, service_fee=self.service_fee)


@dataclass(frozen=True)
class PriceSegment:
    """单日计价明细"""
    day: date
    hours: Decimal
    day_rate: Decimal
    amount: Decimal
    rule_id: Optional[int] = None


@dataclass(frozen=True)
class PriceBreakdown:
    """
    价格明细

    Attributes:
        subtotal: 各日折算金额之和
        discount: 优惠金额
        taxes: 税费（按优惠后金额计算）
        fees: 服务费
        total_price: 应付总额
        applied_rule_ids: 命中的规则ID（按首次命中顺序）
        segments: 逐日明细
    """
    subtotal: Decimal
    taxes: Decimal
    fees: Decimal
    total_price: Decimal
    applied_rule_ids: List[int] = field(default_factory=list)
    segments: List[PriceSegment] = field(default_factory=list)
    discount: Decimal = Decimal("0.00")

    def to_dict(self) -> dict:
        return {
            "subtotal": self.subtotal,
            "discount": self.discount,
            "taxes": self.taxes,
            "fees": self.fees,
            "total_price": self.total_price,
            "applied_rule_ids": list(self.applied_rule_ids),
            "segments": [
                {
                    "day": s.day,
                    "hours": s.hours,
                    "day_rate": s.day_rate,
                    "amount": s.amount,
                    "rule_id": s.rule_id,
                }
                for s in self.segments
            ],
        }


def rule_matches(rule: PricingRule, day: date, holidays: Set[date]) -> bool:
    """判断规则是否作用于某一天"""
    if not rule.is_active:
        return False
    if rule.start_date and day < rule.start_date:
        return False
    if rule.end_date and day > rule.end_date:
        return False

    if rule.scope_kind == RuleScopeKind.DATE_RANGE:
        return rule.start_date is not None and rule.end_date is not None
    if rule.scope_kind == RuleScopeKind.WEEKDAY:
        return day.weekday() in rule.weekday_set
    if rule.scope_kind == RuleScopeKind.HOLIDAY:
        return day in holidays
    return False


def rule_precedence_key(rule: PricingRule) -> tuple:
    """排序键，越小越优先"""
    span = 0
    if rule.scope_kind == RuleScopeKind.DATE_RANGE:
        span = (rule.end_date - rule.start_date).days
    return (_SCOPE_RANK[rule.scope_kind], span, rule.created_at or datetime.min, rule.id or 0)


class PricingService:
    """计价服务"""

    def __init__(
        self,
        db: Session,
        jurisdictions: Optional[JurisdictionResolver] = None,
        holidays: Optional[Iterable[date]] = None,
    ):
        self.db = db
        self.jurisdictions = jurisdictions or JurisdictionResolver()
        self.holidays: Set[date] = set(holidays if holidays is not None else settings.HOLIDAYS)

    # ============== 规则管理 ==============

    def list_rules(self, location_id: int, is_active: Optional[bool] = None) -> List[PricingRule]:
        """获取停车场的定价规则"""
        query = self.db.query(PricingRule).filter(PricingRule.location_id == location_id)
        if is_active is not None:
            query = query.filter(PricingRule.is_active == is_active)
        return query.order_by(PricingRule.id).all()

    def get_rule(self, rule_id: int) -> Optional[PricingRule]:
        return self.db.query(PricingRule).filter(PricingRule.id == rule_id).first()

    def create_rule(self, location_id: int, data: PricingRuleCreate) -> PricingRule:
        """创建定价规则"""
        location = self.db.query(Location).filter(Location.id == location_id).first()
        if not location:
            raise NotFoundError("停车场不存在", location_id=location_id)

        values = data.model_dump()
        values["weekdays"] = self._format_weekdays(values.get("weekdays"))
        rule = PricingRule(location_id=location_id, **values)
        self._validate_rule(rule)

        self.db.add(rule)
        self.db.commit()
        self.db.refresh(rule)
        logger.info(f"Pricing rule {rule.id} created for location {location_id}")
        return rule

    def update_rule(self, rule_id: int, data: PricingRuleUpdate) -> PricingRule:
        """更新定价规则"""
        rule = self.get_rule(rule_id)
        if not rule:
            raise NotFoundError("定价规则不存在", rule_id=rule_id)

        update_data = data.model_dump(exclude_unset=True)
        if "weekdays" in update_data:
            update_data["weekdays"] = self._format_weekdays(update_data["weekdays"])

        for key, value in update_data.items():
            setattr(rule, key, value)

        try:
            self._validate_rule(rule)
        except ValidationFailedError:
            self.db.rollback()
            raise

        self.db.commit()
        self.db.refresh(rule)
        return rule

    def delete_rule(self, rule_id: int) -> bool:
        """删除定价规则"""
        rule = self.get_rule(rule_id)
        if not rule:
            raise NotFoundError("定价规则不存在", rule_id=rule_id)

        self.db.delete(rule)
        self.db.commit()
        return True

    @staticmethod
    def _format_weekdays(weekdays: Optional[List[int]]) -> Optional[str]:
        if not weekdays:
            return None
        return ",".join(str(d) for d in sorted(set(weekdays)))

    @staticmethod
    def _validate_rule(rule: PricingRule) -> None:
        if rule.start_date and rule.end_date and rule.end_date < rule.start_date:
            raise ValidationFailedError("结束日期不能早于开始日期")

        if rule.scope_kind == RuleScopeKind.DATE_RANGE and not (rule.start_date and rule.end_date):
            raise ValidationFailedError("日期区间规则必须指定开始和结束日期")
        if rule.scope_kind == RuleScopeKind.WEEKDAY and not rule.weekday_set:
            raise ValidationFailedError("星期规则必须指定至少一个星期")

        value = Decimal(rule.value)
        if rule.effect_kind == RuleEffectKind.MULTIPLIER and value <= 0:
            raise ValidationFailedError("价格系数必须大于 0")
        if rule.effect_kind == RuleEffectKind.FIXED and value < 0:
            raise ValidationFailedError("固定日价不能为负")

    # ============== 计价 ==============

    def select_rule(self, rules: Iterable[PricingRule], day: date) -> Optional[PricingRule]:
        """选出某一天优先级最高的规则"""
        matching = [r for r in rules if rule_matches(r, day, self.holidays)]
        if not matching:
            return None
        return min(matching, key=rule_precedence_key)

    @staticmethod
    def day_rate(location: Location, rule: Optional[PricingRule]) -> Decimal:
        """计算某条规则下的日价"""
        base = Decimal(location.base_price_per_day)
        if rule is None:
            return round_money(base)

        value = Decimal(rule.value)
        if rule.effect_kind == RuleEffectKind.FIXED:
            rate = value
        elif rule.effect_kind == RuleEffectKind.MULTIPLIER:
            rate = base * value
        else:
            rate = max(base + value, Decimal("0"))
        return round_money(rate)

    def quote_price(self, location: Location, start: datetime, end: datetime) -> PriceBreakdown:
        """
        计算区间价格

        Args:
            location: 停车场（含定价规则）
            start: 开始时间（含）
            end: 结束时间（不含）

        Returns:
            未扣除优惠的价格明细
        """
        validate_interval(start, end)

        rules = list(location.pricing_rules)
        segments: List[PriceSegment] = []
        applied: List[int] = []

        cursor = start
        while cursor < end:
            next_midnight = datetime.combine(cursor.date() + timedelta(days=1), time.min, tzinfo=cursor.tzinfo)
            segment_end = min(next_midnight, end)
            seconds = _seconds(segment_end - cursor)

            rule = self.select_rule(rules, cursor.date())
            rate = self.day_rate(location, rule)
            amount = round_money(rate * seconds / SECONDS_PER_DAY)

            segments.append(PriceSegment(
                day=cursor.date(),
                hours=(seconds / Decimal(3600)).quantize(CENT, rounding=ROUND_HALF_UP),
                day_rate=rate,
                amount=amount,
                rule_id=rule.id if rule else None,
            ))
            if rule is not None and rule.id not in applied:
                applied.append(rule.id)

            cursor = segment_end

        subtotal = sum((s.amount for s in segments), Decimal("0.00"))
        return self._finalize(location, subtotal, Decimal("0.00"), applied, segments)

    def apply_discount(self, breakdown: PriceBreakdown, discount: Decimal, location: Location) -> PriceBreakdown:
        """扣除优惠后重新计算税费与总额"""
        discount = min(round_money(discount), breakdown.subtotal)
        if discount < 0:
            raise ValidationFailedError("优惠金额不能为负")
        return self._finalize(location, breakdown.subtotal, discount, breakdown.applied_rule_ids, breakdown.segments)

    def _finalize(
        self,
        location: Location,
        subtotal: Decimal,
        discount: Decimal,
        applied: List[int],
        segments: List[PriceSegment],
    ) -> PriceBreakdown:
        policy = self.jurisdictions.resolve(location)
        taxable = subtotal - discount
        taxes = round_money(taxable * policy.tax_rate)
        fees = round_money(policy.service_fee)
        return PriceBreakdown(
            subtotal=round_money(subtotal),
            discount=round_money(discount),
            taxes=taxes,
            fees=fees,
            total_price=round_money(taxable + taxes + fees),
            applied_rule_ids=list(applied),
            segments=list(segments),
        )

    def price_calendar(self, location: Location, start_date: date, end_date: date) -> List[dict]:
        """获取价格日历"""
        if end_date < start_date:
            raise ValidationFailedError("结束日期不能早于开始日期")

        rules = list(location.pricing_rules)
        result = []
        current = start_date
        while current <= end_date:
            rule = self.select_rule(rules, current)
            result.append({
                "date": current,
                "price": self.day_rate(location, rule),
                "rule_id": rule.id if rule else None,
                "is_holiday": current in self.holidays,
            })
            current += timedelta(days=1)
        return result


def dump_rule_ids(breakdown: PriceBreakdown) -> str:
    """序列化命中的规则ID，用于预订快照"""
    return json.dumps(breakdown.applied_rule_ids)


__all__ = [
    "CENT",
    "round_money",
    "TaxPolicy",
    "JurisdictionResolver",
    "PriceSegment",
    "PriceBreakdown",
    "rule_matches",
    "rule_precedence_key",
    "PricingService",
    "dump_rule_ids",
]
