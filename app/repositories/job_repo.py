# app/repositories/job_repo.py

from typing import List, Optional
from sqlalchemy import delete, func
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from app.models.job import Job, JobStatusEnum
from app.models.proposal import Proposal

class JobRepository:
    """
    封裝對 'jobs' 資料表的操作。
    (注意) Repository 只 flush 不 commit，交易邊界由 Service 層的 unit_of_work 決定。
    """
    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_job_by_id(self, job_id: str) -> Optional[Job]:
        stmt = select(Job).where(Job.job_id == job_id)
        result = await self.db.execute(stmt)
        return result.scalars().first()

    async def get_job_for_update(self, job_id: str) -> Optional[Job]:
        """
        鎖定案件列 (SELECT ... FOR UPDATE)，同一案件的狀態轉移一次只會有一個寫入者。
        populate_existing 確保拿到鎖之後讀到的是最新狀態。
        """
        stmt = (
            select(Job)
            .where(Job.job_id == job_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        result = await self.db.execute(stmt)
        return result.scalars().first()

    async def create_job(self, job: Job) -> Job:
        self.db.add(job)
        await self.db.flush()
        return job

    async def save(self, job: Job) -> Job:
        await self.db.flush()
        return job

    async def list_jobs_by_client(self, client_id: str) -> List[Job]:
        stmt = (
            select(Job)
            .where(Job.client_id == client_id)
            .order_by(Job.created_at.desc())
        )
        result = await self.db.execute(stmt)
        return result.scalars().all()

    async def list_open_jobs(self, limit: int = 20, offset: int = 0) -> List[Job]:
        stmt = (
            select(Job)
            .where(Job.status == JobStatusEnum.open)
            .order_by(Job.created_at.desc())
            .limit(limit)
            .offset(offset)
        )
        result = await self.db.execute(stmt)
        return result.scalars().all()

    async def count_proposals(self, job_id: str) -> int:
        stmt = select(func.count()).select_from(Proposal).where(Proposal.job_id == job_id)
        result = await self.db.execute(stmt)
        return result.scalar_one()

    async def delete_job(self, job_id: str) -> None:
        await self.db.execute(delete(Job).where(Job.job_id == job_id))
