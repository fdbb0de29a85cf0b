# app/repositories/wallet_repo.py

from decimal import Decimal
from typing import List, Optional

from sqlalchemy import func
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from app.models.wallet import Wallet, WalletTransaction, PLATFORM_WALLET_ID


class WalletRepository:
    """
    封裝對 'wallets' 與 'wallet_transactions' 的操作。
    (重要) 錢包餘額只能經由 WalletService.post 修改，這裡不提供直接寫入餘額的函式。
    """
    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_wallet_by_id(self, wallet_id: str) -> Optional[Wallet]:
        stmt = select(Wallet).where(Wallet.wallet_id == wallet_id)
        result = await self.db.execute(stmt)
        return result.scalars().first()

    async def get_wallet_for_update(self, wallet_id: str) -> Optional[Wallet]:
        stmt = (
            select(Wallet)
            .where(Wallet.wallet_id == wallet_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        result = await self.db.execute(stmt)
        return result.scalars().first()

    async def get_wallet_by_user_id(self, user_id: str) -> Optional[Wallet]:
        stmt = select(Wallet).where(Wallet.user_id == user_id)
        result = await self.db.execute(stmt)
        return result.scalars().first()

    async def get_platform_wallet(self) -> Optional[Wallet]:
        stmt = select(Wallet).where(Wallet.wallet_id == PLATFORM_WALLET_ID)
        result = await self.db.execute(stmt)
        return result.scalars().first()

    async def create_wallet(self, wallet: Wallet) -> Wallet:
        self.db.add(wallet)
        await self.db.flush()
        return wallet

    async def get_transaction_by_reference(self, wallet_id: str, reference: str) -> Optional[WalletTransaction]:
        stmt = select(WalletTransaction).where(
            WalletTransaction.wallet_id == wallet_id,
            WalletTransaction.reference == reference
        )
        result = await self.db.execute(stmt)
        return result.scalars().first()

    async def add_transaction(self, transaction: WalletTransaction) -> WalletTransaction:
        self.db.add(transaction)
        await self.db.flush()
        return transaction

    async def list_transactions(self, wallet_id: str, limit: int = 50, offset: int = 0) -> List[WalletTransaction]:
        stmt = (
            select(WalletTransaction)
            .where(WalletTransaction.wallet_id == wallet_id)
            .order_by(WalletTransaction.created_at.desc())
            .limit(limit)
            .offset(offset)
        )
        result = await self.db.execute(stmt)
        return result.scalars().all()

    async def sum_transactions(self, wallet_id: str) -> Decimal:
        """帳本重播：此錢包所有交易金額 (有正負號) 的總和"""
        stmt = select(func.coalesce(func.sum(WalletTransaction.amount), 0)).where(
            WalletTransaction.wallet_id == wallet_id
        )
        result = await self.db.execute(stmt)
        return Decimal(str(result.scalar_one()))
