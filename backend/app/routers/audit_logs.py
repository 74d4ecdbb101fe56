"""
审计日志路由
"""
from typing import List, Optional
from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session
from app.database import get_db
from app.models.schemas import AuditLogResponse
from app.security.auth import CurrentUser, require_staff
from app.services.audit_service import AuditService

router = APIRouter(prefix="/audit-logs", tags=["审计日志"])


@router.get("", response_model=List[AuditLogResponse])
def list_audit_logs(
    action: Optional[str] = None,
    entity_type: Optional[str] = None,
    actor_id: Optional[str] = None,
    limit: int = Query(default=100, ge=1, le=1000),
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(require_staff),
):
    """查询审计日志"""
    return AuditService(db).get_logs(action, entity_type, actor_id, limit)


@router.get("/{entity_type}/{entity_id}", response_model=List[AuditLogResponse])
def get_audit_trail(
    entity_type: str,
    entity_id: int,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(require_staff),
):
    """获取实体的审计记录"""
    return AuditService(db).audit_trail(entity_type, entity_id)
