# app/services/job_service.py

from sqlalchemy.ext.asyncio import AsyncSession
from typing import List

from app.core.database import unit_of_work
from app.core.exceptions import NotFound, Forbidden, InvalidTransition, Conflict
from app.models.job import Job, JobStatusEnum
from app.models.user import UserRoleEnum
from app.repositories.job_repo import JobRepository
from app.schemas.job_schema import JobCreate, JobUpdate
from app.schemas.user_schema import AuthenticatedUser
from app.services.notification_service import NotificationService, NotificationType
from app.utils.state_machine import JOB_MACHINE, JobEvent

import logging

logger = logging.getLogger(__name__)

class JobService:
    """
    案件生命週期：DRAFT -> OPEN -> CONTRACTED -> IN_PROGRESS -> COMPLETED

    每個轉移都先鎖定案件列 (get_job_for_update)，同一案件同時只有一個寫入者。
    """
    def __init__(self, db: AsyncSession):
        self.db = db
        self.job_repo = JobRepository(db)
        self.notification_service = NotificationService(db)

    async def _get_locked_job(self, job_id: str) -> Job:
        job = await self.job_repo.get_job_for_update(job_id)
        if not job:
            raise NotFound("案件不存在")
        return job

    def _ensure_owner(self, job: Job, user: AuthenticatedUser, detail: str = "你無權操作此案件"):
        if job.client_id != user.user_id:
            raise Forbidden(detail)

    async def _transition(self, job: Job, event: JobEvent) -> Job:
        old_status = job.status
        job.status = JOB_MACHINE.next_state(job.status, event)
        await self.job_repo.save(job)
        logger.info(f"案件狀態變更: job={job.job_id}, {old_status.value} -> {job.status.value}")
        return job

    # --- 建立 / 修改 / 查詢 ---
    async def create_job(self, data: JobCreate, user: AuthenticatedUser) -> Job:
        if user.role != UserRoleEnum.client:
            raise Forbidden("只有客戶可以建立案件")
        async with unit_of_work(self.db):
            job = Job(
                client_id=user.user_id,
                title=data.title,
                description=data.description,
                budget=data.budget,
                category=data.category,
                status=JobStatusEnum.draft,
            )
            return await self.job_repo.create_job(job)

    async def update_job(self, job_id: str, data: JobUpdate, user: AuthenticatedUser) -> Job:
        """
        只有在草稿、或已公開但尚無任何提案時可以修改內容
        """
        async with unit_of_work(self.db):
            job = await self._get_locked_job(job_id)
            self._ensure_owner(job, user, "只有案件擁有者可以修改案件")
            await self._ensure_editable(job, "案件已有提案，無法修改")

            update_data = data.model_dump(exclude_unset=True)
            for key, value in update_data.items():
                setattr(job, key, value)
            return await self.job_repo.save(job)

    async def get_job(self, job_id: str) -> Job:
        job = await self.job_repo.get_job_by_id(job_id)
        if not job:
            raise NotFound("案件不存在")
        return job

    async def list_my_jobs(self, user: AuthenticatedUser) -> List[Job]:
        return await self.job_repo.list_jobs_by_client(user.user_id)

    async def list_open_jobs(self, limit: int = 20, offset: int = 0) -> List[Job]:
        return await self.job_repo.list_open_jobs(limit=limit, offset=offset)

    async def _ensure_editable(self, job: Job, detail: str):
        if job.status == JobStatusEnum.draft:
            return
        if job.status == JobStatusEnum.open and await self.job_repo.count_proposals(job.job_id) == 0:
            return
        raise Conflict(detail)

    # --- 狀態轉移 ---
    async def publish(self, job_id: str, user: AuthenticatedUser) -> Job:
        """DRAFT -> OPEN，只有擁有案件的客戶可以公開"""
        async with unit_of_work(self.db):
            job = await self._get_locked_job(job_id)
            self._ensure_owner(job, user, "只有案件擁有者可以公開案件")
            return await self._transition(job, JobEvent.publish)

    async def mark_contracted(self, job_id: str) -> Job:
        """OPEN -> CONTRACTED (只由合約成立流程呼叫)"""
        async with unit_of_work(self.db):
            job = await self._get_locked_job(job_id)
            return await self._transition(job, JobEvent.contract)

    async def start(self, job_id: str) -> Job:
        """
        CONTRACTED -> IN_PROGRESS。
        (重要) 託管款項必須已經是 PAID，否則不能開工。
        """
        from app.repositories.escrow_repo import EscrowRepository

        async with unit_of_work(self.db):
            job = await self._get_locked_job(job_id)
            paid = await EscrowRepository(self.db).get_paid_payment_for_job(job_id)
            if not paid:
                raise InvalidTransition("託管款項尚未付款，案件無法開始")
            job = await self._transition(job, JobEvent.start)

            await self.notification_service.emit(
                user_id=paid.freelancer_id,
                type=NotificationType.JOB_STARTED,
                title="託管款項已到位，可以開始工作",
                link_url=f"/jobs/{job.job_id}",
                event_key=f"job:{job.job_id}:started",
            )
            return job

    async def complete(self, job_id: str, user: AuthenticatedUser) -> Job:
        """
        IN_PROGRESS -> COMPLETED，只有客戶可以執行。
        同一個交易內撥款給工作者；撥款失敗 (例如有未結爭議) 時案件狀態一併 rollback。
        """
        from app.services.escrow_service import EscrowService
        from app.repositories.escrow_repo import EscrowRepository

        async with unit_of_work(self.db):
            job = await self._get_locked_job(job_id)
            self._ensure_owner(job, user, "只有案件擁有者可以驗收完成")
            job = await self._transition(job, JobEvent.complete)

            paid = await EscrowRepository(self.db).get_paid_payment_for_job(job_id)
            if paid:
                await EscrowService(self.db).release(paid.escrow_payment_id, user)
            else:
                logger.warning(f"案件完成但沒有可撥款的託管款項: job={job_id}")

            await self.notification_service.emit(
                user_id=job.client_id,
                type=NotificationType.JOB_COMPLETED,
                title=f"案件「{job.title}」已完成",
                link_url=f"/jobs/{job.job_id}",
                event_key=f"job:{job.job_id}:completed",
            )
            return job

    async def delete_job(self, job_id: str, user: AuthenticatedUser) -> None:
        """
        只有草稿、或已公開但尚無提案的案件可以刪除，其他狀態一律 Conflict
        """
        async with unit_of_work(self.db):
            job = await self._get_locked_job(job_id)
            self._ensure_owner(job, user, "只有案件擁有者可以刪除案件")
            await self._ensure_editable(job, "案件已有提案或已成案，無法刪除")
            await self.job_repo.delete_job(job_id)
            logger.info(f"刪除案件: job={job_id}")
