# app/repositories/proposal_repo.py

from sqlalchemy import func, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select
from typing import List, Optional, Sequence

from app.models.base import utcnow
from app.models.proposal import Proposal, ProposalStatusEnum, OPEN_PROPOSAL_STATUSES

class ProposalRepository:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_proposal_by_id(self, proposal_id: str) -> Optional[Proposal]:
        """
        透過 ID 獲取單一提案
        """
        stmt = select(Proposal).where(Proposal.proposal_id == proposal_id)
        result = await self.db.execute(stmt)
        return result.scalars().first()

    async def refresh(self, proposal: Proposal) -> Proposal:
        """重新讀取提案 (compare-and-swap 失敗後用來取得目前狀態)"""
        await self.db.refresh(proposal)
        return proposal

    async def check_existing_proposal(self, job_id: str, freelancer_id: str) -> Optional[Proposal]:
        """
        檢查特定使用者是否已對特定案件提案 (唯一性檢查，DB 也有 unique constraint)
        """
        stmt = select(Proposal).where(
            Proposal.job_id == job_id,
            Proposal.freelancer_id == freelancer_id
        )
        result = await self.db.execute(stmt)
        return result.scalars().first()

    async def get_proposals_by_job_id(self, job_id: str) -> List[Proposal]:
        """
        獲取特定案件的所有提案 (客戶檢視用)
        """
        stmt = (
            select(Proposal)
            .where(Proposal.job_id == job_id)
            .order_by(Proposal.created_at.desc())
        )
        result = await self.db.execute(stmt)
        return result.scalars().all()

    async def get_proposals_by_freelancer_id(self, freelancer_id: str) -> List[Proposal]:
        """
        獲取特定工作者的所有提案 (工作者檢視「我的提案」用)
        """
        stmt = (
            select(Proposal)
            .where(Proposal.freelancer_id == freelancer_id)
            .order_by(Proposal.created_at.desc())
        )
        result = await self.db.execute(stmt)
        return result.scalars().all()

    async def create_proposal(self, proposal: Proposal) -> Proposal:
        """
        新增提案
        """
        self.db.add(proposal)
        await self.db.flush()
        return proposal

    async def compare_and_set_status(
        self,
        proposal_id: str,
        expected: Sequence[ProposalStatusEnum],
        new_status: ProposalStatusEnum,
    ) -> bool:
        """
        (關鍵) 只有在目前狀態屬於 expected 時才更新。
        回傳 False 代表已被其他請求搶先變更 (並行競爭失敗)。
        """
        stmt = (
            update(Proposal)
            .where(
                Proposal.proposal_id == proposal_id,
                Proposal.status.in_(list(expected))
            )
            .values(status=new_status, updated_at=utcnow())
        )
        result = await self.db.execute(stmt)
        return result.rowcount == 1

    async def reject_open_siblings(self, job_id: str, accepted_proposal_id: str) -> List[str]:
        """
        將同一案件中其他尚未結束 (PENDING / OFFERED) 的提案全部改為 REJECTED。
        回傳被拒絕提案的工作者 ID，用於發送通知。
        """
        stmt = select(Proposal.freelancer_id).where(
            Proposal.job_id == job_id,
            Proposal.proposal_id != accepted_proposal_id,
            Proposal.status.in_(OPEN_PROPOSAL_STATUSES)
        )
        freelancer_ids = (await self.db.execute(stmt)).scalars().all()

        await self.db.execute(
            update(Proposal)
            .where(
                Proposal.job_id == job_id,
                Proposal.proposal_id != accepted_proposal_id,
                Proposal.status.in_(OPEN_PROPOSAL_STATUSES)
            )
            .values(status=ProposalStatusEnum.rejected, updated_at=utcnow())
        )
        return list(freelancer_ids)

    async def count_accepted_for_job(self, job_id: str) -> int:
        stmt = select(func.count()).select_from(Proposal).where(
            Proposal.job_id == job_id,
            Proposal.status == ProposalStatusEnum.accepted
        )
        result = await self.db.execute(stmt)
        return result.scalar_one()
