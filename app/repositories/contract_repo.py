# app/repositories/contract_repo.py

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select
from sqlalchemy.sql.expression import or_, exists
from typing import List, Optional

from app.models.contract import Contract


class ContractRepository:
    """
    封裝對 'contracts' 資料表的 CRUD 操作
    """
    def __init__(self, db: AsyncSession):
        self.db = db

    async def create_contract(self, contract: Contract) -> Contract:
        """
        (C) 將新的合約物件加入 Session 並 flush (由外層交易 commit)
        """
        self.db.add(contract)
        await self.db.flush()
        return contract

    async def check_contract_exists_by_job(self, job_id: str) -> bool:
        """
        (R) 檢查此案件是否已有合約 (job_id 是 unique)
        """
        stmt = select(exists().where(Contract.job_id == job_id))
        result = await self.db.execute(stmt)
        return result.scalar()

    async def get_contract_by_id(self, contract_id: str) -> Optional[Contract]:
        stmt = select(Contract).where(Contract.contract_id == contract_id)
        result = await self.db.execute(stmt)
        return result.scalars().first()

    async def get_contract_by_job_id(self, job_id: str) -> Optional[Contract]:
        stmt = select(Contract).where(Contract.job_id == job_id)
        result = await self.db.execute(stmt)
        return result.scalars().first()

    async def get_contract_for_update(self, contract_id: str) -> Optional[Contract]:
        stmt = (
            select(Contract)
            .where(Contract.contract_id == contract_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        result = await self.db.execute(stmt)
        return result.scalars().first()

    async def list_contracts_by_user(self, user_id: str) -> List[Contract]:
        """
        (R) 獲取某個使用者 (作為客戶 或 作為工作者) 的所有合約
        """
        stmt = select(Contract).where(
            or_(
                Contract.client_id == user_id,
                Contract.freelancer_id == user_id
            )
        ).order_by(Contract.created_at.desc())

        result = await self.db.execute(stmt)
        return result.scalars().all()

    async def update_contract(self, contract: Contract) -> Contract:
        """
        (U) flush 對現有 Contract 物件的變更
        """
        await self.db.flush()
        return contract
