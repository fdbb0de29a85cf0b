# app/schemas/escrow_schema.py

from pydantic import BaseModel, ConfigDict, Field
from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from app.models.escrow import (
    EscrowStatusEnum, DisputeStatusEnum, DisputeTypeEnum, DisputeOutcomeEnum
)

# --- 請求 (Request) ---
class EscrowInitiateRequest(BaseModel):
    contract_id: str

class EscrowCallbackPayload(BaseModel):
    """
    閘道 webhook。Chapa 會送 txRef 或 tx_ref，兩種都接受。
    status 只用於記錄，付款結果以 gateway.verify 為準。
    """
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    tx_ref: str = Field(..., alias="txRef")
    status: Optional[str] = None

class DisputeCreate(BaseModel):
    type: DisputeTypeEnum = DisputeTypeEnum.dispute
    reason: Optional[str] = None

class DisputeResolve(BaseModel):
    outcome: DisputeOutcomeEnum

class DisputeReject(BaseModel):
    reason: Optional[str] = None

# --- 讀取 (Read / Out) ---
class EscrowPaymentOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    escrow_payment_id: str
    job_id: str
    contract_id: str
    client_id: str
    freelancer_id: str
    amount: Decimal
    platform_fee: Decimal
    currency: str
    status: EscrowStatusEnum
    tx_ref: str
    checkout_url: Optional[str] = None
    failure_reason: Optional[str] = None
    paid_at: Optional[datetime] = None
    released_at: Optional[datetime] = None
    refunded_at: Optional[datetime] = None
    created_at: datetime

class DisputeOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    dispute_id: str
    escrow_payment_id: str
    job_id: str
    contract_id: str
    raised_by_id: str
    resolved_by_id: Optional[str] = None
    type: DisputeTypeEnum
    status: DisputeStatusEnum
    outcome: Optional[DisputeOutcomeEnum] = None
    reason: Optional[str] = None
    resolved_at: Optional[datetime] = None
    created_at: datetime

class ReconcileSweepOut(BaseModel):
    checked: int
    paid: int
    failed: int
    still_pending: int
    errors: List[str] = []
