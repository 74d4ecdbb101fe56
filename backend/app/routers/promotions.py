"""
优惠管理路由
"""
from typing import List, Optional
from decimal import Decimal
from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session
from app.database import get_db
from app.models.schemas import (
    PromotionCreate, PromotionUpdate, PromotionResponse,
    ApplicablePromotionResponse, PromotionValidateRequest, PromotionValidateResponse
)
from app.routers.common import to_http_exception
from app.security.auth import CurrentUser, get_current_user, require_admin
from app.services.location_service import LocationService
from app.services.promotion_service import PromotionService

router = APIRouter(prefix="/promotions", tags=["优惠管理"])


@router.get("", response_model=List[PromotionResponse])
def list_promotions(
    is_active: Optional[bool] = None,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(require_admin),
):
    """获取优惠列表"""
    return PromotionService(db).get_promotions(is_active)


@router.get("/applicable", response_model=List[ApplicablePromotionResponse])
def list_applicable_promotions(
    subtotal: Decimal = Query(..., ge=0),
    location_id: Optional[int] = None,
    price_per_day: Optional[Decimal] = Query(default=None, ge=0),
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    """获取可用优惠（按优惠金额从高到低），指定停车场时按其基础日价计算免费天数"""
    try:
        location = LocationService(db).require_location(location_id) if location_id is not None else None
    except ValueError as e:
        raise to_http_exception(e)

    results = PromotionService(db).list_applicable(subtotal, price_per_day, location=location)
    return [
        ApplicablePromotionResponse(
            promotion=PromotionResponse.model_validate(r.promotion),
            is_applicable=r.is_applicable,
            potential_discount=r.potential_discount,
            reason_if_not=r.reason_if_not,
        )
        for r in results
    ]


@router.post("/validate", response_model=PromotionValidateResponse)
def validate_promotion(
    data: PromotionValidateRequest,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    """校验优惠码并计算优惠金额"""
    service = PromotionService(db)
    try:
        promotion, discount = service.resolve(data.code, data.subtotal, data.price_per_day)
        return PromotionValidateResponse(code=promotion.code, discount=discount)
    except ValueError as e:
        raise to_http_exception(e)


@router.get("/{promotion_id}", response_model=PromotionResponse)
def get_promotion(
    promotion_id: int,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(require_admin),
):
    """获取优惠详情"""
    promotion = PromotionService(db).get_promotion(promotion_id)
    if not promotion:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND,
                            detail={"code": "NOT_FOUND", "message": "优惠不存在"})
    return promotion


@router.post("", response_model=PromotionResponse, status_code=status.HTTP_201_CREATED)
def create_promotion(
    data: PromotionCreate,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(require_admin),
):
    """创建优惠"""
    try:
        return PromotionService(db).create_promotion(data)
    except ValueError as e:
        raise to_http_exception(e)


@router.patch("/{promotion_id}", response_model=PromotionResponse)
def update_promotion(
    promotion_id: int,
    data: PromotionUpdate,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(require_admin),
):
    """更新优惠"""
    try:
        return PromotionService(db).update_promotion(promotion_id, data)
    except ValueError as e:
        raise to_http_exception(e)


@router.delete("/{promotion_id}", response_model=PromotionResponse)
def deactivate_promotion(
    promotion_id: int,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(require_admin),
):
    """停用优惠"""
    try:
        return PromotionService(db).deactivate_promotion(promotion_id)
    except ValueError as e:
        raise to_http_exception(e)
