# app/models/escrow.py

import enum
import uuid
from sqlalchemy import (
    Column, String, TEXT, DECIMAL, TIMESTAMP, ForeignKey, Enum, CHAR
)
from app.core.database import Base
from app.models.base import utcnow

# 託管款項狀態機：PENDING -> PAID -> {RELEASED | REFUNDED}；PENDING -> FAILED
class EscrowStatusEnum(str, enum.Enum):
    pending = "PENDING"
    paid = "PAID"
    released = "RELEASED"
    refunded = "REFUNDED"
    failed = "FAILED"

class DisputeStatusEnum(str, enum.Enum):
    open = "OPEN"
    resolved = "RESOLVED"
    rejected = "REJECTED"

class DisputeTypeEnum(str, enum.Enum):
    dispute = "DISPUTE"
    refund_request = "REFUND_REQUEST"

class DisputeOutcomeEnum(str, enum.Enum):
    release = "RELEASE"
    refund = "REFUND"

class EscrowPayment(Base):
    __tablename__ = "escrow_payments"

    escrow_payment_id = Column(CHAR(36), primary_key=True, default=lambda: str(uuid.uuid4()))

    # --- 關聯 ---
    job_id = Column(CHAR(36), ForeignKey("jobs.job_id", ondelete="RESTRICT"), nullable=False, index=True)
    contract_id = Column(CHAR(36), ForeignKey("contracts.contract_id", ondelete="RESTRICT"), nullable=False, index=True)
    client_id = Column(CHAR(36), ForeignKey("users.user_id", ondelete="RESTRICT"), nullable=False, index=True)
    freelancer_id = Column(CHAR(36), ForeignKey("users.user_id", ondelete="RESTRICT"), nullable=False, index=True)

    amount = Column(DECIMAL(12, 2), nullable=False)
    platform_fee = Column(DECIMAL(12, 2), nullable=False)
    currency = Column(String(3), nullable=False)

    status = Column(
        Enum(EscrowStatusEnum, values_callable=lambda obj: [e.value for e in obj]),
        default=EscrowStatusEnum.pending,
        nullable=False,
        index=True
    )

    # (關鍵) 與金流閘道共用的冪等鍵，webhook 重送時以此比對
    tx_ref = Column(String(100), unique=True, nullable=False, index=True)
    checkout_url = Column(String(500), nullable=True)
    failure_reason = Column(String(255), nullable=True)

    paid_at = Column(TIMESTAMP, nullable=True)
    released_at = Column(TIMESTAMP, nullable=True)
    refunded_at = Column(TIMESTAMP, nullable=True)
    created_at = Column(TIMESTAMP, default=utcnow)
    updated_at = Column(TIMESTAMP, default=utcnow, onupdate=utcnow)


class EscrowDispute(Base):
    __tablename__ = "escrow_disputes"

    dispute_id = Column(CHAR(36), primary_key=True, default=lambda: str(uuid.uuid4()))

    escrow_payment_id = Column(CHAR(36), ForeignKey("escrow_payments.escrow_payment_id", ondelete="RESTRICT"), nullable=False, index=True)
    job_id = Column(CHAR(36), ForeignKey("jobs.job_id", ondelete="RESTRICT"), nullable=False, index=True)
    contract_id = Column(CHAR(36), ForeignKey("contracts.contract_id", ondelete="RESTRICT"), nullable=False, index=True)
    raised_by_id = Column(CHAR(36), ForeignKey("users.user_id", ondelete="RESTRICT"), nullable=False)
    resolved_by_id = Column(CHAR(36), ForeignKey("users.user_id", ondelete="RESTRICT"), nullable=True)

    type = Column(
        Enum(DisputeTypeEnum, values_callable=lambda obj: [e.value for e in obj]),
        default=DisputeTypeEnum.dispute,
        nullable=False
    )
    status = Column(
        Enum(DisputeStatusEnum, values_callable=lambda obj: [e.value for e in obj]),
        default=DisputeStatusEnum.open,
        nullable=False
    )
    outcome = Column(
        Enum(DisputeOutcomeEnum, values_callable=lambda obj: [e.value for e in obj]),
        nullable=True
    )
    reason = Column(TEXT, nullable=True)

    resolved_at = Column(TIMESTAMP, nullable=True)
    created_at = Column(TIMESTAMP, default=utcnow)
