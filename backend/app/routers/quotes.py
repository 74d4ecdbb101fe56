"""
报价路由
"""
from typing import Optional
from datetime import datetime
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from app.config import settings
from app.database import get_db
from app.models.schemas import PriceBreakdownResponse, QuoteResponse
from app.routers.common import to_http_exception
from app.services.quote_service import QuoteService

router = APIRouter(prefix="/quotes", tags=["报价"])


@router.get("", response_model=QuoteResponse)
def get_quote(
    location_id: int,
    start: datetime,
    end: datetime,
    promo_code: Optional[str] = None,
    db: Session = Depends(get_db),
):
    """获取区间报价（只读）"""
    try:
        quote = QuoteService(db).get_quote(location_id, start, end, promo_code)
    except ValueError as e:
        raise to_http_exception(e)

    return QuoteResponse(
        location_id=quote.location_id,
        start=quote.start,
        end=quote.end,
        available=quote.available,
        available_spots=quote.available_spots,
        breakdown=PriceBreakdownResponse(**quote.breakdown.to_dict()),
        discount=quote.discount,
        promotion_code=quote.promotion_code,
        promotion_error=quote.promotion_error,
        currency=settings.CURRENCY,
    )
