"""
价格管理路由
定价规则维护与价格日历
"""
from typing import List, Optional
from datetime import date, timedelta
from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session
from app.database import get_db
from app.models.ontology import PricingRule
from app.models.schemas import PricingRuleCreate, PricingRuleUpdate, PricingRuleResponse
from app.routers.common import to_http_exception
from app.security.auth import CurrentUser, require_admin
from app.services.errors import NotFoundError
from app.services.location_service import LocationService
from app.services.pricing_service import PricingService

router = APIRouter(prefix="/locations/{location_id}", tags=["价格管理"])


def _rule_response(rule: PricingRule) -> PricingRuleResponse:
    return PricingRuleResponse(
        id=rule.id,
        location_id=rule.location_id,
        name=rule.name,
        scope_kind=rule.scope_kind,
        start_date=rule.start_date,
        end_date=rule.end_date,
        weekdays=sorted(rule.weekday_set),
        effect_kind=rule.effect_kind,
        value=rule.value,
        is_active=rule.is_active,
        created_at=rule.created_at,
    )


def _require_rule(service: PricingService, location_id: int, rule_id: int) -> PricingRule:
    rule = service.get_rule(rule_id)
    if not rule or rule.location_id != location_id:
        raise to_http_exception(NotFoundError("定价规则不存在", rule_id=rule_id))
    return rule


@router.get("/pricing-rules", response_model=List[PricingRuleResponse])
def list_pricing_rules(
    location_id: int,
    is_active: Optional[bool] = None,
    db: Session = Depends(get_db),
):
    """获取定价规则列表"""
    service = PricingService(db)
    return [_rule_response(r) for r in service.list_rules(location_id, is_active)]


@router.post("/pricing-rules", response_model=PricingRuleResponse, status_code=status.HTTP_201_CREATED)
def create_pricing_rule(
    location_id: int,
    data: PricingRuleCreate,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(require_admin),
):
    """创建定价规则"""
    service = PricingService(db)
    try:
        return _rule_response(service.create_rule(location_id, data))
    except ValueError as e:
        raise to_http_exception(e)


@router.patch("/pricing-rules/{rule_id}", response_model=PricingRuleResponse)
def update_pricing_rule(
    location_id: int,
    rule_id: int,
    data: PricingRuleUpdate,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(require_admin),
):
    """更新定价规则"""
    service = PricingService(db)
    _require_rule(service, location_id, rule_id)
    try:
        return _rule_response(service.update_rule(rule_id, data))
    except ValueError as e:
        raise to_http_exception(e)


@router.delete("/pricing-rules/{rule_id}")
def delete_pricing_rule(
    location_id: int,
    rule_id: int,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(require_admin),
):
    """删除定价规则"""
    service = PricingService(db)
    _require_rule(service, location_id, rule_id)
    service.delete_rule(rule_id)
    return {"message": "删除成功"}


@router.get("/price-calendar")
def get_price_calendar(
    location_id: int,
    start_date: date = Query(default_factory=date.today),
    end_date: date = Query(default_factory=lambda: date.today() + timedelta(days=30)),
    db: Session = Depends(get_db),
):
    """获取价格日历"""
    try:
        location = LocationService(db).require_location(location_id)
        return PricingService(db).price_calendar(location, start_date, end_date)
    except ValueError as e:
        raise to_http_exception(e)
