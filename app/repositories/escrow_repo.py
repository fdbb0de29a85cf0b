# app/repositories/escrow_repo.py

from datetime import datetime
from typing import List, Optional

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from app.models.base import utcnow
from app.models.escrow import (
    EscrowPayment, EscrowDispute, EscrowStatusEnum, DisputeStatusEnum
)


class EscrowRepository:
    """
    封裝對 'escrow_payments' 與 'escrow_disputes' 的操作
    """
    def __init__(self, db: AsyncSession):
        self.db = db

    # --- EscrowPayment ---
    async def create_payment(self, payment: EscrowPayment) -> EscrowPayment:
        self.db.add(payment)
        await self.db.flush()
        return payment

    async def save(self, obj):
        await self.db.flush()
        return obj

    async def get_payment_by_id(self, escrow_payment_id: str) -> Optional[EscrowPayment]:
        stmt = select(EscrowPayment).where(EscrowPayment.escrow_payment_id == escrow_payment_id)
        result = await self.db.execute(stmt)
        return result.scalars().first()

    async def get_payment_for_update(self, escrow_payment_id: str) -> Optional[EscrowPayment]:
        """鎖定託管款項列，同一筆款項的狀態轉移一次只會有一個寫入者"""
        stmt = (
            select(EscrowPayment)
            .where(EscrowPayment.escrow_payment_id == escrow_payment_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        result = await self.db.execute(stmt)
        return result.scalars().first()

    async def get_payment_by_tx_ref(self, tx_ref: str) -> Optional[EscrowPayment]:
        stmt = select(EscrowPayment).where(EscrowPayment.tx_ref == tx_ref)
        result = await self.db.execute(stmt)
        return result.scalars().first()

    async def get_pending_payment_for_contract(self, contract_id: str) -> Optional[EscrowPayment]:
        stmt = (
            select(EscrowPayment)
            .where(
                EscrowPayment.contract_id == contract_id,
                EscrowPayment.status == EscrowStatusEnum.pending
            )
            .order_by(EscrowPayment.created_at.desc())
        )
        result = await self.db.execute(stmt)
        return result.scalars().first()

    async def get_funded_payment_for_contract(self, contract_id: str) -> Optional[EscrowPayment]:
        """已付款 (PAID) 或已撥款 (RELEASED) 的款項；存在時不可再次發起託管"""
        stmt = select(EscrowPayment).where(
            EscrowPayment.contract_id == contract_id,
            EscrowPayment.status.in_([EscrowStatusEnum.paid, EscrowStatusEnum.released])
        )
        result = await self.db.execute(stmt)
        return result.scalars().first()

    async def get_paid_payment_for_job(self, job_id: str) -> Optional[EscrowPayment]:
        stmt = (
            select(EscrowPayment)
            .where(
                EscrowPayment.job_id == job_id,
                EscrowPayment.status == EscrowStatusEnum.paid
            )
            .order_by(EscrowPayment.created_at.desc())
        )
        result = await self.db.execute(stmt)
        return result.scalars().first()

    async def get_latest_payment_for_job(self, job_id: str) -> Optional[EscrowPayment]:
        stmt = (
            select(EscrowPayment)
            .where(EscrowPayment.job_id == job_id)
            .order_by(EscrowPayment.created_at.desc())
        )
        result = await self.db.execute(stmt)
        return result.scalars().first()

    async def list_stale_pending_payments(self, created_before: datetime, limit: int = 100) -> List[EscrowPayment]:
        """對帳排程用：建立時間早於 created_before 仍為 PENDING 的款項"""
        stmt = (
            select(EscrowPayment)
            .where(
                EscrowPayment.status == EscrowStatusEnum.pending,
                EscrowPayment.created_at < created_before
            )
            .order_by(EscrowPayment.created_at)
            .limit(limit)
        )
        result = await self.db.execute(stmt)
        return result.scalars().all()

    async def compare_and_set_status(
        self,
        escrow_payment_id: str,
        expected: EscrowStatusEnum,
        new_status: EscrowStatusEnum,
        **values,
    ) -> bool:
        """
        (關鍵) 只有在目前狀態等於 expected 時才更新。
        兩個並行的 webhook 只會有一個拿到 rowcount == 1。
        """
        stmt = (
            update(EscrowPayment)
            .where(
                EscrowPayment.escrow_payment_id == escrow_payment_id,
                EscrowPayment.status == expected
            )
            .values(status=new_status, updated_at=utcnow(), **values)
        )
        result = await self.db.execute(stmt)
        return result.rowcount == 1

    async def refresh(self, obj):
        await self.db.refresh(obj)
        return obj

    # --- EscrowDispute ---
    async def create_dispute(self, dispute: EscrowDispute) -> EscrowDispute:
        self.db.add(dispute)
        await self.db.flush()
        return dispute

    async def get_dispute_by_id(self, dispute_id: str) -> Optional[EscrowDispute]:
        stmt = select(EscrowDispute).where(EscrowDispute.dispute_id == dispute_id)
        result = await self.db.execute(stmt)
        return result.scalars().first()

    async def get_dispute_for_update(self, dispute_id: str) -> Optional[EscrowDispute]:
        stmt = (
            select(EscrowDispute)
            .where(EscrowDispute.dispute_id == dispute_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        result = await self.db.execute(stmt)
        return result.scalars().first()

    async def get_open_dispute(self, escrow_payment_id: str) -> Optional[EscrowDispute]:
        stmt = select(EscrowDispute).where(
            EscrowDispute.escrow_payment_id == escrow_payment_id,
            EscrowDispute.status == DisputeStatusEnum.open
        )
        result = await self.db.execute(stmt)
        return result.scalars().first()

    async def list_disputes_for_payment(self, escrow_payment_id: str) -> List[EscrowDispute]:
        stmt = (
            select(EscrowDispute)
            .where(EscrowDispute.escrow_payment_id == escrow_payment_id)
            .order_by(EscrowDispute.created_at.desc())
        )
        result = await self.db.execute(stmt)
        return result.scalars().all()
