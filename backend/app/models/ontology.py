"""
本体对象定义 (Ontology Objects)
停车场预订核心：停车场、定价规则、预订、优惠券、争议/退款及审计日志
"""
from datetime import datetime
from decimal import Decimal
from enum import Enum
from sqlalchemy import (
    Column, Integer, String, DateTime, Date,
    ForeignKey, Text, Enum as SQLEnum, Boolean, Numeric,
    UniqueConstraint, CheckConstraint, Index
)
from sqlalchemy.orm import relationship
from app.database import Base


# ============== 枚举定义 ==============

class LocationStatus(str, Enum):
    """停车场状态枚举"""
    ACTIVE = "active"            # 营业中
    INACTIVE = "inactive"        # 已停用
    PENDING = "pending"          # 待审核
    MAINTENANCE = "maintenance"  # 维护中


class ReservationStatus(str, Enum):
    """预订状态枚举"""
    PENDING = "pending"        # 待确认
    CONFIRMED = "confirmed"    # 已确认
    CANCELLED = "cancelled"    # 已取消
    COMPLETED = "completed"    # 已完成


# 占用车位的预订状态
CAPACITY_CONSUMING_STATUSES = (ReservationStatus.PENDING, ReservationStatus.CONFIRMED)


class RuleScopeKind(str, Enum):
    """定价规则作用范围"""
    DATE_RANGE = "date_range"  # 指定日期区间
    WEEKDAY = "weekday"        # 每周固定星期
    HOLIDAY = "holiday"        # 节假日


class RuleEffectKind(str, Enum):
    """定价规则效果"""
    FIXED = "fixed"            # 固定日价
    MULTIPLIER = "multiplier"  # 基础价乘以系数
    ADJUSTMENT = "adjustment"  # 基础价加减金额


class PromotionType(str, Enum):
    """优惠类型"""
    PERCENTAGE = "percentage"  # 百分比折扣
    FIXED = "fixed"            # 固定金额
    FREE_DAY = "free_day"      # 免费天数


class DisputeStatus(str, Enum):
    """争议状态"""
    OPEN = "open"
    IN_PROGRESS = "in_progress"
    RESOLVED = "resolved"


class DisputePriority(str, Enum):
    """争议优先级"""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class RefundStatus(str, Enum):
    """退款状态"""
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    PROCESSED = "processed"


class UserRole(str, Enum):
    """调用方角色（由外部身份服务签发）"""
    CUSTOMER = "customer"
    SUPPORT = "support"
    ADMIN = "admin"


# ============== 本体对象定义 ==============

class Location(Base):
    """
    停车场对象 - 容量的聚合根
    capacity_version 由预订提交与取消、车位数下调时递增，用作行级互斥点
    """
    __tablename__ = "locations"
    __table_args__ = (
        CheckConstraint("total_spots > 0", name="ck_locations_total_spots_positive"),
    )

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(100), nullable=False)                 # 名称
    address = Column(String(255))                              # 地址
    jurisdiction = Column(String(50))                          # 税务辖区
    total_spots = Column(Integer, nullable=False)              # 总车位数
    base_price_per_day = Column(Numeric(10, 2), nullable=False)  # 基础日价
    status = Column(SQLEnum(LocationStatus), default=LocationStatus.ACTIVE, nullable=False)
    capacity_version = Column(Integer, default=0, nullable=False)
    owner_id = Column(String(64))                              # 运营方
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # 链接
    pricing_rules = relationship(
        "PricingRule", back_populates="location",
        order_by="PricingRule.id", cascade="all, delete-orphan"
    )
    reservations = relationship("Reservation", back_populates="location")


class PricingRule(Base):
    """
    定价规则对象
    每条规则独立存在；同一天命中多条时按 pricing_service 中的优先级选出一条
    """
    __tablename__ = "pricing_rules"

    id = Column(Integer, primary_key=True, index=True)
    location_id = Column(Integer, ForeignKey("locations.id"), nullable=False, index=True)
    name = Column(String(100), nullable=False)
    scope_kind = Column(SQLEnum(RuleScopeKind), nullable=False)
    start_date = Column(Date)                                  # 日期区间起（含）
    end_date = Column(Date)                                    # 日期区间止（含）
    weekdays = Column(String(20))                              # 星期列表 "4,5"，周一为 0
    effect_kind = Column(SQLEnum(RuleEffectKind), nullable=False)
    value = Column(Numeric(10, 4), nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    location = relationship("Location", back_populates="pricing_rules")

    @property
    def weekday_set(self) -> set:
        """解析星期列表"""
        if not self.weekdays:
            return set()
        return {int(d) for d in self.weekdays.split(",") if d.strip() != ""}


class Promotion(Base):
    """
    优惠券对象
    used_count 只能在预订提交事务内通过条件更新递增
    """
    __tablename__ = "promotions"
    __table_args__ = (
        CheckConstraint(
            "usage_limit IS NULL OR used_count <= usage_limit",
            name="ck_promotions_usage_within_limit"
        ),
    )

    id = Column(Integer, primary_key=True, index=True)
    code = Column(String(50), unique=True, nullable=False, index=True)
    name = Column(String(100), nullable=False)
    type = Column(SQLEnum(PromotionType), nullable=False)
    value = Column(Numeric(10, 2), nullable=False)
    min_booking_value = Column(Numeric(10, 2))
    max_discount = Column(Numeric(10, 2))
    valid_from = Column(DateTime, nullable=False)
    valid_until = Column(DateTime, nullable=False)
    usage_limit = Column(Integer)
    used_count = Column(Integer, default=0, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class Reservation(Base):
    """
    预订对象 - 区间为半开区间 [check_in, check_out)
    价格字段为提交时服务端计算的快照
    """
    __tablename__ = "reservations"
    __table_args__ = (
        UniqueConstraint("requester_id", "idempotency_key", name="uq_reservations_idempotency"),
        CheckConstraint("check_in < check_out", name="ck_reservations_interval"),
        Index("ix_reservations_location_status", "location_id", "status"),
    )

    id = Column(Integer, primary_key=True, index=True)
    confirmation_code = Column(String(32), unique=True, nullable=False)
    location_id = Column(Integer, ForeignKey("locations.id"), nullable=False)
    requester_id = Column(String(64), nullable=False, index=True)
    check_in = Column(DateTime, nullable=False)
    check_out = Column(DateTime, nullable=False)
    status = Column(SQLEnum(ReservationStatus), default=ReservationStatus.CONFIRMED, nullable=False)
    subtotal = Column(Numeric(10, 2), nullable=False)
    discount = Column(Numeric(10, 2), default=Decimal("0"), nullable=False)
    taxes = Column(Numeric(10, 2), default=Decimal("0"), nullable=False)
    fees = Column(Numeric(10, 2), default=Decimal("0"), nullable=False)
    total_price = Column(Numeric(10, 2), nullable=False)
    applied_rule_ids = Column(Text)                          # 命中的规则ID(JSON)
    promotion_id = Column(Integer, ForeignKey("promotions.id"))
    idempotency_key = Column(String(100))
    cancel_reason = Column(Text)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # 链接
    location = relationship("Location", back_populates="reservations")
    promotion = relationship("Promotion")
    disputes = relationship("Dispute", back_populates="reservation")
    refunds = relationship("RefundRequest", back_populates="reservation")


class Dispute(Base):
    """
    争议对象
    状态机: open -> in_progress -> resolved
    """
    __tablename__ = "disputes"

    id = Column(Integer, primary_key=True, index=True)
    reservation_id = Column(Integer, ForeignKey("reservations.id"), nullable=False, index=True)
    requester_id = Column(String(64), nullable=False)
    reason = Column(String(100), nullable=False)
    description = Column(Text)
    status = Column(SQLEnum(DisputeStatus), default=DisputeStatus.OPEN, nullable=False)
    priority = Column(SQLEnum(DisputePriority), default=DisputePriority.MEDIUM, nullable=False)
    assigned_admin_id = Column(String(64))
    resolution_notes = Column(Text)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    reservation = relationship("Reservation", back_populates="disputes")
    refund_request = relationship("RefundRequest", back_populates="dispute", uselist=False)


class RefundRequest(Base):
    """
    退款申请对象
    状态机: pending -> approved | rejected, approved -> processed
    """
    __tablename__ = "refund_requests"
    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_refund_requests_amount_positive"),
    )

    id = Column(Integer, primary_key=True, index=True)
    reservation_id = Column(Integer, ForeignKey("reservations.id"), nullable=False, index=True)
    dispute_id = Column(Integer, ForeignKey("disputes.id"), unique=True)
    requester_id = Column(String(64), nullable=False)
    amount = Column(Numeric(10, 2), nullable=False)
    approved_amount = Column(Numeric(10, 2))
    reason = Column(String(100), nullable=False)
    description = Column(Text)
    status = Column(SQLEnum(RefundStatus), default=RefundStatus.PENDING, nullable=False)
    processed_at = Column(DateTime)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    reservation = relationship("Reservation", back_populates="refunds")
    dispute = relationship("Dispute", back_populates="refund_request")


class AuditLog(Base):
    """
    审计日志对象
    只追加，写入后不修改
    """
    __tablename__ = "audit_logs"

    id = Column(Integer, primary_key=True, index=True)
    actor_id = Column(String(64))                        # 操作人
    action = Column(String(100), nullable=False)         # 操作类型
    entity_type = Column(String(50), nullable=False)     # 实体类型
    entity_id = Column(Integer, nullable=False)          # 实体ID
    old_value = Column(Text)                             # 旧值(JSON)
    new_value = Column(Text)                             # 新值(JSON)
    notes = Column(Text)
    created_at = Column(DateTime, default=datetime.utcnow)

    __table_args__ = (
        Index("ix_audit_logs_entity", "entity_type", "entity_id"),
    )
