# app/models/wallet.py

import enum
import uuid
from decimal import Decimal
from sqlalchemy import (
    Column, String, DECIMAL, TIMESTAMP, ForeignKey, Enum, CHAR, UniqueConstraint
)
from app.core.database import Base
from app.models.base import utcnow

class WalletTypeEnum(str, enum.Enum):
    user = "USER"
    platform = "PLATFORM"

# 平台錢包只有一個，固定主鍵；併行建立時第二筆 INSERT 會被主鍵擋下
PLATFORM_WALLET_ID = "00000000-0000-0000-0000-000000000001"

class WalletTransactionTypeEnum(str, enum.Enum):
    credit = "CREDIT"
    debit = "DEBIT"
    platform_fee = "PLATFORM_FEE"

class Wallet(Base):
    __tablename__ = "wallets"

    wallet_id = Column(CHAR(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    # 平台錢包沒有 user_id
    user_id = Column(CHAR(36), ForeignKey("users.user_id", ondelete="RESTRICT"), unique=True, nullable=True, index=True)
    wallet_type = Column(
        Enum(WalletTypeEnum, values_callable=lambda obj: [e.value for e in obj]),
        default=WalletTypeEnum.user,
        nullable=False
    )
    currency = Column(String(3), nullable=False)

    # (重要) 快取值：永遠等於此錢包所有交易金額 (有正負號) 的總和，只能透過 WalletService.post 修改
    balance = Column(DECIMAL(14, 2), default=Decimal("0.00"), nullable=False)

    created_at = Column(TIMESTAMP, default=utcnow)
    updated_at = Column(TIMESTAMP, default=utcnow, onupdate=utcnow)


class WalletTransaction(Base):
    __tablename__ = "wallet_transactions"
    __table_args__ = (
        # (關鍵) 冪等機制：同一錢包的 reference 不可重複
        UniqueConstraint("wallet_id", "reference", name="uq_wallet_transaction_reference"),
    )

    transaction_id = Column(CHAR(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    wallet_id = Column(CHAR(36), ForeignKey("wallets.wallet_id", ondelete="RESTRICT"), nullable=False, index=True)
    type = Column(
        Enum(WalletTransactionTypeEnum, values_callable=lambda obj: [e.value for e in obj]),
        nullable=False
    )
    # 有正負號：入帳為正、扣款為負
    amount = Column(DECIMAL(14, 2), nullable=False)
    currency = Column(String(3), nullable=False)
    reference = Column(String(150), nullable=False)

    created_at = Column(TIMESTAMP, default=utcnow)
