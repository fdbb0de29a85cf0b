# app/models/audit_log.py
# 管理員對託管款項的操作紀錄 (爭議裁決、對帳排程)

import uuid
from sqlalchemy import Column, String, JSON, CHAR, ForeignKey, TIMESTAMP
from app.core.database import Base
from app.models.base import utcnow

class AuditLog(Base):
    __tablename__ = "audit_logs"

    audit_log_id = Column(CHAR(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    actor_id = Column(CHAR(36), ForeignKey("users.user_id", ondelete="RESTRICT"), nullable=False, index=True)
    action = Column(String(100), nullable=False)
    entity_type = Column(String(100), nullable=False)
    entity_id = Column(CHAR(36), nullable=True)
    # "metadata" 是 Declarative 保留字
    extra = Column("metadata", JSON, nullable=True)
    created_at = Column(TIMESTAMP, default=utcnow)
