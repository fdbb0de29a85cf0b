# app/schemas/contract_schema.py

from pydantic import BaseModel, ConfigDict
from datetime import datetime
from decimal import Decimal
from typing import Optional

from app.models.contract import ContractStatusEnum

# --- 讀取 (Read / Out) ---
class ContractOut(BaseModel):
    """
    合約只由「接受提案」自動成立，沒有 Create / Update 的請求格式
    """
    model_config = ConfigDict(from_attributes=True)

    contract_id: str
    job_id: str
    proposal_id: str
    client_id: str
    freelancer_id: str
    agreed_amount: Decimal
    status: ContractStatusEnum
    completed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    created_at: datetime
    updated_at: Optional[datetime] = None
