"""
Pydantic 模式定义
用于 API 请求/响应验证
"""
from datetime import datetime, date
from decimal import Decimal
from typing import Optional, List
from pydantic import BaseModel, Field, field_validator, model_validator, ConfigDict
from app.models.ontology import (
    LocationStatus, ReservationStatus, RuleScopeKind, RuleEffectKind,
    PromotionType, DisputeStatus, DisputePriority, RefundStatus
)


# ============== 停车场 Schemas ==============

class LocationBase(BaseModel):
    name: str = Field(..., max_length=100)
    address: Optional[str] = Field(None, max_length=255)
    jurisdiction: Optional[str] = Field(None, max_length=50)
    total_spots: int = Field(..., gt=0)
    base_price_per_day: Decimal = Field(..., ge=0)
    owner_id: Optional[str] = None


class LocationCreate(LocationBase):
    status: LocationStatus = LocationStatus.ACTIVE


class LocationUpdate(BaseModel):
    name: Optional[str] = Field(None, max_length=100)
    address: Optional[str] = Field(None, max_length=255)
    jurisdiction: Optional[str] = Field(None, max_length=50)
    total_spots: Optional[int] = Field(None, gt=0)
    base_price_per_day: Optional[Decimal] = Field(None, ge=0)
    status: Optional[LocationStatus] = None


class LocationResponse(LocationBase):
    id: int
    status: LocationStatus
    created_at: datetime
    model_config = ConfigDict(from_attributes=True)


# ============== 定价规则 Schemas ==============

class PricingRuleCreate(BaseModel):
    name: str = Field(..., max_length=100)
    scope_kind: RuleScopeKind
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    weekdays: Optional[List[int]] = None
    effect_kind: RuleEffectKind
    value: Decimal
    is_active: bool = True

    @field_validator('weekdays')
    @classmethod
    def check_weekdays(cls, v):
        """星期取值 0-6（周一为 0）"""
        if v is not None and any(d < 0 or d > 6 for d in v):
            raise ValueError("星期取值必须在 0-6 之间")
        return v


class PricingRuleUpdate(BaseModel):
    name: Optional[str] = Field(None, max_length=100)
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    weekdays: Optional[List[int]] = None
    effect_kind: Optional[RuleEffectKind] = None
    value: Optional[Decimal] = None
    is_active: Optional[bool] = None


class PricingRuleResponse(BaseModel):
    id: int
    location_id: int
    name: str
    scope_kind: RuleScopeKind
    start_date: Optional[date]
    end_date: Optional[date]
    weekdays: List[int] = []
    effect_kind: RuleEffectKind
    value: Decimal
    is_active: bool
    created_at: datetime


# ============== 计价 / 报价 Schemas ==============

class PriceSegmentResponse(BaseModel):
    day: date
    hours: Decimal
    day_rate: Decimal
    amount: Decimal
    rule_id: Optional[int] = None


class PriceBreakdownResponse(BaseModel):
    subtotal: Decimal
    discount: Decimal
    taxes: Decimal
    fees: Decimal
    total_price: Decimal
    applied_rule_ids: List[int]
    segments: List[PriceSegmentResponse]


class QuoteResponse(BaseModel):
    location_id: int
    start: datetime
    end: datetime
    available: bool
    available_spots: int
    breakdown: PriceBreakdownResponse
    discount: Decimal
    promotion_code: Optional[str] = None
    promotion_error: Optional[str] = None
    currency: str


# ============== 优惠券 Schemas ==============

class PromotionBase(BaseModel):
    code: str = Field(..., min_length=1, max_length=50)
    name: str = Field(..., max_length=100)
    type: PromotionType
    value: Decimal = Field(..., gt=0)
    min_booking_value: Optional[Decimal] = Field(None, ge=0)
    max_discount: Optional[Decimal] = Field(None, gt=0)
    valid_from: datetime
    valid_until: datetime
    usage_limit: Optional[int] = Field(None, gt=0)
    is_active: bool = True

    @field_validator('code')
    @classmethod
    def normalize_code(cls, v: str) -> str:
        return v.strip().upper()

    @field_validator('value')
    @classmethod
    def check_value(cls, v: Decimal, info) -> Decimal:
        if info.data.get('type') == PromotionType.PERCENTAGE and v > 100:
            raise ValueError("百分比折扣不能超过 100")
        return v

    @model_validator(mode='after')
    def check_window(self):
        if self.valid_until < self.valid_from:
            raise ValueError("失效时间不能早于生效时间")
        return self


class PromotionCreate(PromotionBase):
    pass


class PromotionUpdate(BaseModel):
    name: Optional[str] = Field(None, max_length=100)
    value: Optional[Decimal] = Field(None, gt=0)
    min_booking_value: Optional[Decimal] = Field(None, ge=0)
    max_discount: Optional[Decimal] = Field(None, gt=0)
    valid_from: Optional[datetime] = None
    valid_until: Optional[datetime] = None
    usage_limit: Optional[int] = Field(None, gt=0)
    is_active: Optional[bool] = None


class PromotionResponse(BaseModel):
    id: int
    code: str
    name: str
    type: PromotionType
    value: Decimal
    min_booking_value: Optional[Decimal]
    max_discount: Optional[Decimal]
    valid_from: datetime
    valid_until: datetime
    usage_limit: Optional[int]
    used_count: int
    is_active: bool
    model_config = ConfigDict(from_attributes=True)


class ApplicablePromotionResponse(BaseModel):
    promotion: PromotionResponse
    is_applicable: bool
    potential_discount: Decimal
    reason_if_not: Optional[str] = None


class PromotionValidateRequest(BaseModel):
    code: str
    subtotal: Decimal = Field(..., ge=0)
    price_per_day: Decimal = Field(default=Decimal("0"), ge=0)


class PromotionValidateResponse(BaseModel):
    code: str
    discount: Decimal


# ============== 预订 Schemas ==============

class ReservationCreate(BaseModel):
    location_id: int
    check_in: datetime
    check_out: datetime
    promo_code: Optional[str] = None
    displayed_total: Optional[Decimal] = Field(None, ge=0)


class ReservationCancel(BaseModel):
    cancel_reason: str = Field(..., min_length=1)


class ReservationResponse(BaseModel):
    id: int
    confirmation_code: str
    location_id: int
    requester_id: str
    check_in: datetime
    check_out: datetime
    status: ReservationStatus
    subtotal: Decimal
    discount: Decimal
    taxes: Decimal
    fees: Decimal
    total_price: Decimal
    promotion_id: Optional[int]
    cancel_reason: Optional[str]
    created_at: datetime
    model_config = ConfigDict(from_attributes=True)


# ============== 争议 / 退款 Schemas ==============

class DisputeCreate(BaseModel):
    reservation_id: int
    reason: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = None


class DisputeUpdate(BaseModel):
    priority: Optional[DisputePriority] = None
    assigned_admin_id: Optional[str] = None
    resolution_notes: Optional[str] = None
    notes: Optional[str] = None


class DisputeTransition(BaseModel):
    notes: Optional[str] = None


class DisputeRefundCreate(BaseModel):
    amount: Decimal = Field(..., gt=0)
    reason: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = None


class DisputeResponse(BaseModel):
    id: int
    reservation_id: int
    requester_id: str
    reason: str
    description: Optional[str]
    status: DisputeStatus
    priority: DisputePriority
    assigned_admin_id: Optional[str]
    resolution_notes: Optional[str]
    created_at: datetime
    updated_at: datetime
    model_config = ConfigDict(from_attributes=True)


class RefundCreate(BaseModel):
    reservation_id: int
    amount: Decimal = Field(..., gt=0)
    reason: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = None


class RefundApprove(BaseModel):
    approved_amount: Optional[Decimal] = Field(None, gt=0)
    cancel_reservation: bool = False
    notes: Optional[str] = None


class RefundDecision(BaseModel):
    notes: Optional[str] = None


class RefundResponse(BaseModel):
    id: int
    reservation_id: int
    dispute_id: Optional[int]
    requester_id: str
    amount: Decimal
    approved_amount: Optional[Decimal]
    reason: str
    description: Optional[str]
    status: RefundStatus
    processed_at: Optional[datetime]
    created_at: datetime
    model_config = ConfigDict(from_attributes=True)


class AuditLogResponse(BaseModel):
    id: int
    actor_id: Optional[str]
    action: str
    entity_type: str
    entity_id: int
    old_value: Optional[str]
    new_value: Optional[str]
    notes: Optional[str]
    created_at: datetime
    model_config = ConfigDict(from_attributes=True)
