# app/services/wallet_service.py
# 錢包帳本：餘額只能透過 post() 修改，交易紀錄只增不改

from decimal import Decimal
from typing import List

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.database import unit_of_work
from app.core.exceptions import NotFound, InsufficientFunds, InvariantViolation, Conflict
from app.models.wallet import (
    Wallet, WalletTransaction, WalletTypeEnum, WalletTransactionTypeEnum, PLATFORM_WALLET_ID
)
from app.repositories.wallet_repo import WalletRepository
from app.schemas.user_schema import AuthenticatedUser

import logging

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")

# 扣款類型 (金額以負數入帳)
DEBIT_TYPES = {WalletTransactionTypeEnum.debit}


class WalletService:
    def __init__(self, db: AsyncSession):
        self.db = db
        self.repo = WalletRepository(db)

    async def post(
        self,
        wallet_id: str,
        type: WalletTransactionTypeEnum,
        amount: Decimal,
        reference: str,
    ) -> WalletTransaction:
        """
        入帳 / 扣款。amount 一律傳正數，DEBIT 會以負數寫入。

        - 鎖定錢包列，交易紀錄與快取餘額在同一次 flush 內更新
        - 同一錢包已有相同 reference：不做任何事，回傳原本那筆 (可安全重放)
        - 扣款後餘額小於 0：InsufficientFunds
        """
        amount = Decimal(amount).quantize(CENT)
        if amount <= 0:
            raise InvariantViolation(f"入帳金額必須為正數: {amount}")

        async with unit_of_work(self.db):
            wallet = await self.repo.get_wallet_for_update(wallet_id)
            if not wallet:
                raise NotFound("錢包不存在")

            existing = await self.repo.get_transaction_by_reference(wallet_id, reference)
            if existing:
                logger.info(f"帳本重放，略過: wallet={wallet_id}, reference={reference}")
                return existing

            signed = -amount if type in DEBIT_TYPES else amount
            new_balance = Decimal(wallet.balance) + signed
            if new_balance < 0:
                raise InsufficientFunds(f"錢包餘額不足 (餘額 {wallet.balance}，扣款 {amount})")

            transaction = WalletTransaction(
                wallet_id=wallet_id,
                type=type,
                amount=signed,
                currency=wallet.currency,
                reference=reference,
            )
            wallet.balance = new_balance
            await self.repo.add_transaction(transaction)
            logger.info(f"帳本入帳: wallet={wallet_id}, type={type.value}, amount={signed}, balance={new_balance}")
            return transaction

    async def get_or_create_user_wallet(self, user_id: str) -> Wallet:
        async with unit_of_work(self.db):
            wallet = await self.repo.get_wallet_by_user_id(user_id)
            if wallet:
                return wallet
            logger.info(f"建立使用者錢包: user={user_id}")
            return await self.repo.create_wallet(Wallet(
                user_id=user_id,
                wallet_type=WalletTypeEnum.user,
                currency=settings.ESCROW_CURRENCY,
                balance=Decimal("0.00"),
            ))

    async def get_platform_wallet(self) -> Wallet:
        try:
            async with unit_of_work(self.db):
                wallet = await self.repo.get_platform_wallet()
                if wallet:
                    return wallet
                logger.info("建立平台錢包")
                return await self.repo.create_wallet(Wallet(
                    wallet_id=PLATFORM_WALLET_ID,
                    user_id=None,
                    wallet_type=WalletTypeEnum.platform,
                    currency=settings.ESCROW_CURRENCY,
                    balance=Decimal("0.00"),
                ))
        except IntegrityError:
            logger.warning("平台錢包已由其他交易建立")
            raise Conflict("平台錢包已由其他交易建立，請重試")

    async def get_my_wallet(self, user: AuthenticatedUser) -> Wallet:
        return await self.get_or_create_user_wallet(user.user_id)

    async def list_my_transactions(
        self,
        user: AuthenticatedUser,
        limit: int = 50,
        offset: int = 0
    ) -> List[WalletTransaction]:
        wallet = await self.repo.get_wallet_by_user_id(user.user_id)
        if not wallet:
            return []
        return await self.repo.list_transactions(wallet.wallet_id, limit=limit, offset=offset)

    async def withdraw(self, user: AuthenticatedUser, amount: Decimal, reference: str) -> WalletTransaction:
        """
        (API 用) 提領：以 DEBIT 扣款。reference 由呼叫端提供，重送不會重複扣款。
        """
        async with unit_of_work(self.db):
            wallet = await self.repo.get_wallet_by_user_id(user.user_id)
            if not wallet:
                raise InsufficientFunds()
            transaction = await self.post(
                wallet.wallet_id,
                WalletTransactionTypeEnum.debit,
                amount,
                f"withdraw:{reference}",
            )
            if transaction.type != WalletTransactionTypeEnum.debit or -transaction.amount != Decimal(amount).quantize(CENT):
                raise Conflict("此提領編號已用於其他金額")
            return transaction

    async def recompute_balance(self, wallet_id: str) -> Decimal:
        """
        帳本重播：交易總和必須等於快取餘額，否則 InvariantViolation
        """
        wallet = await self.repo.get_wallet_by_id(wallet_id)
        if not wallet:
            raise NotFound("錢包不存在")
        replayed = (await self.repo.sum_transactions(wallet_id)).quantize(CENT)
        cached = Decimal(wallet.balance).quantize(CENT)
        if replayed != cached:
            logger.error(f"錢包餘額與帳本不一致: wallet={wallet_id}, cached={cached}, ledger={replayed}")
            raise InvariantViolation(f"錢包 {wallet_id} 餘額與帳本不一致")
        return replayed
