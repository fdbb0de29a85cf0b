# app/schemas/proposal_schema.py
from pydantic import BaseModel, ConfigDict, Field
from datetime import datetime
from decimal import Decimal
from typing import Optional

from app.models.proposal import ProposalStatusEnum
from app.schemas.contract_schema import ContractOut

# --- 建立 (Create) ---
class ProposalCreate(BaseModel):
    # job_id 和 freelancer_id 將從 URL 和 Token 中取得
    message: str = Field(..., min_length=1)
    proposed_amount: Decimal = Field(..., gt=0, max_digits=12, decimal_places=2)

# --- 讀取 (Read / Out) ---
class ProposalOut(BaseModel):
    model_config = ConfigDict(from_attributes=True) # orm_mode = True

    proposal_id: str
    job_id: str
    freelancer_id: str
    message: str
    proposed_amount: Decimal
    status: ProposalStatusEnum
    created_at: datetime
    updated_at: Optional[datetime] = None

# 接受提案後同時回傳新成立的合約
class ProposalAcceptOut(BaseModel):
    proposal: ProposalOut
    contract: ContractOut
