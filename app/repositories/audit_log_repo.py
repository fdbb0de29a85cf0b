# app/repositories/audit_log_repo.py

from typing import Any, Dict, Optional
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.audit_log import AuditLog

class AuditLogRepository:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def record(
        self,
        actor_id: str,
        action: str,
        entity_type: str,
        entity_id: Optional[str] = None,
        extra: Optional[Dict[str, Any]] = None,
    ) -> AuditLog:
        """寫入一筆管理員操作紀錄 (加入呼叫端的交易)"""
        log = AuditLog(
            actor_id=actor_id,
            action=action,
            entity_type=entity_type,
            entity_id=entity_id,
            extra=extra,
        )
        self.db.add(log)
        await self.db.flush()
        return log

