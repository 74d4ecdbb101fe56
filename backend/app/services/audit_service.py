"""
审计服务
记录关键状态变更，审计写入失败不影响业务操作
"""
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any, List, Optional
import json
import logging

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.models.ontology import AuditLog

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AuditResult:
    """审计写入结果，失败时 ok=False，调用方自行决定是否关心"""
    ok: bool
    log_id: Optional[int] = None
    error: Optional[str] = None


def _json_default(value: Any):
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def to_json(value: Any) -> Optional[str]:
    if value is None:
        return None
    return json.dumps(value, default=_json_default, ensure_ascii=False, sort_keys=True)


class AuditService:
    """审计服务"""

    def __init__(self, db: Session):
        self.db = db

    def record(
        self,
        action: str,
        entity_type: str,
        entity_id: int,
        actor_id: Optional[str] = None,
        old_value: Any = None,
        new_value: Any = None,
        notes: Optional[str] = None,
    ) -> AuditResult:
        """
        在当前事务的保存点内写入一条审计日志

        写入失败只回滚保存点，外层事务中的业务变更保持不变；不提交
        """
        self.db.flush()
        try:
            with self.db.begin_nested():
                log = AuditLog(
                    actor_id=actor_id,
                    action=action,
                    entity_type=entity_type,
                    entity_id=entity_id,
                    old_value=to_json(old_value),
                    new_value=to_json(new_value),
                    notes=notes,
                )
                self.db.add(log)
                self.db.flush()
            return AuditResult(ok=True, log_id=log.id)
        except (SQLAlchemyError, TypeError, ValueError) as e:
            logger.exception(f"Audit write failed for {entity_type}#{entity_id} ({action})")
            return AuditResult(ok=False, error=str(e))

    def audit_trail(self, entity_type: str, entity_id: int) -> List[AuditLog]:
        """获取实体的审计记录（按时间正序）"""
        return self.db.query(AuditLog).filter(
            AuditLog.entity_type == entity_type,
            AuditLog.entity_id == entity_id,
        ).order_by(AuditLog.created_at, AuditLog.id).all()

    def get_logs(
        self,
        action: Optional[str] = None,
        entity_type: Optional[str] = None,
        actor_id: Optional[str] = None,
        limit: int = 100,
    ) -> List[AuditLog]:
        """查询审计日志（倒序）"""
        query = self.db.query(AuditLog)
        if action:
            query = query.filter(AuditLog.action == action)
        if entity_type:
            query = query.filter(AuditLog.entity_type == entity_type)
        if actor_id:
            query = query.filter(AuditLog.actor_id == actor_id)
        return query.order_by(AuditLog.created_at.desc(), AuditLog.id.desc()).limit(limit).all()
