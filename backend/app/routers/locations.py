"""
停车场管理路由
"""
from typing import List, Optional
from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session
from app.database import get_db
from app.models.ontology import LocationStatus
from app.models.schemas import LocationCreate, LocationUpdate, LocationResponse
from app.routers.common import to_http_exception
from app.security.auth import CurrentUser, require_admin
from app.services.location_service import LocationService

router = APIRouter(prefix="/locations", tags=["停车场管理"])


@router.get("", response_model=List[LocationResponse])
def list_locations(
    status: Optional[LocationStatus] = None,
    owner_id: Optional[str] = None,
    db: Session = Depends(get_db),
):
    """获取停车场列表"""
    service = LocationService(db)
    return service.get_locations(status, owner_id)


@router.get("/{location_id}", response_model=LocationResponse)
def get_location(location_id: int, db: Session = Depends(get_db)):
    """获取停车场详情"""
    location = LocationService(db).get_location(location_id)
    if not location:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND,
                            detail={"code": "NOT_FOUND", "message": "停车场不存在"})
    return location


@router.post("", response_model=LocationResponse, status_code=status.HTTP_201_CREATED)
def create_location(
    data: LocationCreate,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(require_admin),
):
    """创建停车场"""
    return LocationService(db).create_location(data)


@router.patch("/{location_id}", response_model=LocationResponse)
def update_location(
    location_id: int,
    data: LocationUpdate,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(require_admin),
):
    """更新停车场（含状态）"""
    try:
        return LocationService(db).update_location(location_id, data)
    except ValueError as e:
        raise to_http_exception(e)
