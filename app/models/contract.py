# app/models/contract.py

import enum
import uuid
from sqlalchemy import (
    Column, DECIMAL, TIMESTAMP, ForeignKey, Enum, CHAR
)
from app.core.database import Base
from app.models.base import utcnow

class ContractStatusEnum(str, enum.Enum):
    active = "ACTIVE"
    completed = "COMPLETED"
    cancelled = "CANCELLED"

class Contract(Base):
    __tablename__ = "contracts"

    contract_id = Column(CHAR(36), primary_key=True, default=lambda: str(uuid.uuid4()))

    # --- 關聯 ---
    # (重要) job_id 與 proposal_id 皆為 unique：每個案件只會有一份合約，且綁定後不可變更
    job_id = Column(CHAR(36), ForeignKey("jobs.job_id", ondelete="RESTRICT"), unique=True, nullable=False, index=True)
    proposal_id = Column(CHAR(36), ForeignKey("proposals.proposal_id", ondelete="RESTRICT"), unique=True, nullable=False, index=True)
    client_id = Column(CHAR(36), ForeignKey("users.user_id", ondelete="RESTRICT"), nullable=False, index=True)
    freelancer_id = Column(CHAR(36), ForeignKey("users.user_id", ondelete="RESTRICT"), nullable=False, index=True)

    agreed_amount = Column(DECIMAL(12, 2), nullable=False)

    # --- 狀態管理 ---
    status = Column(
        Enum(ContractStatusEnum, values_callable=lambda obj: [e.value for e in obj]),
        default=ContractStatusEnum.active,
        nullable=False
    )

    completed_at = Column(TIMESTAMP, nullable=True)
    cancelled_at = Column(TIMESTAMP, nullable=True)
    created_at = Column(TIMESTAMP, default=utcnow)
    updated_at = Column(TIMESTAMP, default=utcnow, onupdate=utcnow)
