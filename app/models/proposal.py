# app/models/proposal.py
import enum
import uuid
from sqlalchemy import Column, Text, DECIMAL, ForeignKey, TIMESTAMP, Enum, CHAR, UniqueConstraint
from app.core.database import Base
from app.models.base import utcnow

class ProposalStatusEnum(str, enum.Enum):
    pending = "PENDING"
    offered = "OFFERED"
    accepted = "ACCEPTED"
    rejected = "REJECTED"
    withdrawn = "WITHDRAWN"

# 尚未結束的提案狀態 (接受其他提案時會被一併拒絕)
OPEN_PROPOSAL_STATUSES = (ProposalStatusEnum.pending, ProposalStatusEnum.offered)

class Proposal(Base):
    __tablename__ = "proposals"
    __table_args__ = (
        # 同一位工作者對同一案件只能提案一次
        UniqueConstraint("job_id", "freelancer_id", name="uq_proposal_job_freelancer"),
    )

    proposal_id = Column(CHAR(36), primary_key=True, default=lambda: str(uuid.uuid4()))

    # ForeignKey 指向 "tablename.columnname"
    job_id = Column(CHAR(36), ForeignKey("jobs.job_id"), nullable=False, index=True)
    freelancer_id = Column(CHAR(36), ForeignKey("users.user_id"), nullable=False, index=True)

    message = Column(Text, nullable=False)
    proposed_amount = Column(DECIMAL(12, 2), nullable=False)

    status = Column(
        Enum(ProposalStatusEnum, values_callable=lambda obj: [e.value for e in obj]),
        default=ProposalStatusEnum.pending,
        nullable=False
    )

    created_at = Column(TIMESTAMP, default=utcnow)
    updated_at = Column(TIMESTAMP, default=utcnow, onupdate=utcnow)
