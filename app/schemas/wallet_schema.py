# app/schemas/wallet_schema.py

from pydantic import BaseModel, ConfigDict, Field
from datetime import datetime
from decimal import Decimal
from typing import Optional

from app.models.wallet import WalletTypeEnum, WalletTransactionTypeEnum

class WalletOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    wallet_id: str
    user_id: Optional[str] = None
    wallet_type: WalletTypeEnum
    currency: str
    balance: Decimal

class WalletTransactionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    transaction_id: str
    wallet_id: str
    type: WalletTransactionTypeEnum
    amount: Decimal
    currency: str
    reference: str
    created_at: datetime

class WithdrawalRequest(BaseModel):
    amount: Decimal = Field(..., gt=0, max_digits=14, decimal_places=2)
    # 由前端產生，重送同一個 reference 不會重複扣款
    reference: str = Field(..., min_length=1, max_length=120)
