"""
Pytest 配置和共享 fixtures
"""
import os

os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")

import pytest
from datetime import datetime, timedelta
from decimal import Decimal
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool
from fastapi.testclient import TestClient

from app.database import Base, create_db_engine, get_db
from app.models import ontology  # noqa: F401
from app.models.ontology import (
    Location, LocationStatus, Promotion, PromotionType, PricingRule,
    RuleScopeKind, RuleEffectKind, UserRole
)
from app.security.auth import create_access_token
from app.services.pricing_service import JurisdictionResolver
from app.main import app


@pytest.fixture(scope="function")
def db_engine():
    """创建内存数据库引擎"""
    engine = create_db_engine("sqlite:///:memory:", poolclass=StaticPool)
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture(scope="function")
def db_session(db_engine):
    """创建数据库会话"""
    SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=db_engine)
    session = SessionLocal()
    yield session
    session.close()


@pytest.fixture(scope="function")
def client(db_session):
    """创建测试客户端"""
    def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture
def tax_free():
    """免税且无服务费的辖区解析"""
    return JurisdictionResolver(default_tax_rate=Decimal("0"), service_fee=Decimal("0"), tax_rates={})


# ============== 认证相关 Fixtures ==============

@pytest.fixture
def customer_headers():
    """普通用户 user-1"""
    return {"Authorization": f"Bearer {create_access_token('user-1', UserRole.CUSTOMER)}"}


@pytest.fixture
def other_customer_headers():
    """普通用户 user-2"""
    return {"Authorization": f"Bearer {create_access_token('user-2', UserRole.CUSTOMER)}"}


@pytest.fixture
def support_headers():
    return {"Authorization": f"Bearer {create_access_token('support-1', UserRole.SUPPORT)}"}


@pytest.fixture
def admin_headers():
    return {"Authorization": f"Bearer {create_access_token('admin-1', UserRole.ADMIN)}"}


# ============== 实体相关 Fixtures ==============

def make_location(db, name="市中心停车场", total_spots=10, base_price=Decimal("25.00"),
                  status=LocationStatus.ACTIVE, jurisdiction=None):
    location = Location(
        name=name,
        address="人民路 1 号",
        jurisdiction=jurisdiction,
        total_spots=total_spots,
        base_price_per_day=base_price,
        status=status,
    )
    db.add(location)
    db.commit()
    db.refresh(location)
    return location


def make_rule(db, location, name="周末价", scope_kind=RuleScopeKind.WEEKDAY,
              effect_kind=RuleEffectKind.FIXED, value=Decimal("40"), weekdays="4,5",
              start_date=None, end_date=None, is_active=True, created_at=None):
    rule = PricingRule(
        location_id=location.id,
        name=name,
        scope_kind=scope_kind,
        effect_kind=effect_kind,
        value=value,
        weekdays=weekdays if scope_kind == RuleScopeKind.WEEKDAY else None,
        start_date=start_date,
        end_date=end_date,
        is_active=is_active,
    )
    if created_at is not None:
        rule.created_at = created_at
    db.add(rule)
    db.commit()
    db.refresh(rule)
    db.refresh(location)
    return rule


def make_promotion(db, code="SAVE20", type=PromotionType.PERCENTAGE, value=Decimal("20"),
                   min_booking_value=None, max_discount=None, usage_limit=None, used_count=0,
                   valid_from=None, valid_until=None, is_active=True):
    now = datetime.utcnow()
    promotion = Promotion(
        code=code,
        name=f"{code} 活动",
        type=type,
        value=value,
        min_booking_value=min_booking_value,
        max_discount=max_discount,
        valid_from=valid_from or now - timedelta(days=1),
        valid_until=valid_until or now + timedelta(days=30),
        usage_limit=usage_limit,
        used_count=used_count,
        is_active=is_active,
    )
    db.add(promotion)
    db.commit()
    db.refresh(promotion)
    return promotion


@pytest.fixture
def sample_location(db_session):
    """10 个车位、基础日价 25 的停车场"""
    return make_location(db_session)


@pytest.fixture
def single_spot_location(db_session):
    """只有 1 个车位的停车场"""
    return make_location(db_session, name="小区停车场", total_spots=1)
