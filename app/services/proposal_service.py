# app/services/proposal_service.py
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from typing import List, Sequence, Tuple

from app.core.database import unit_of_work
from app.core.exceptions import NotFound, Forbidden, InvalidTransition, Conflict
from app.models.contract import Contract
from app.models.job import Job, JobStatusEnum
from app.models.proposal import Proposal, ProposalStatusEnum
from app.models.user import UserRoleEnum
from app.repositories.job_repo import JobRepository
from app.repositories.proposal_repo import ProposalRepository
from app.schemas.proposal_schema import ProposalCreate
from app.schemas.user_schema import AuthenticatedUser
from app.services.contract_service import ContractService
from app.services.notification_service import NotificationService, NotificationType
from app.utils.state_machine import (
    PROPOSAL_MACHINE, ProposalEvent, proposal_status_after_accept
)

import logging

logger = logging.getLogger(__name__)

class ProposalService:
    """
    提案流程：
    - 工作者：提交 (PENDING)、撤回 (PENDING -> WITHDRAWN)、回覆邀約 (OFFERED -> ACCEPTED / REJECTED)
    - 客戶：送出邀約 (PENDING -> OFFERED)、直接接受 (PENDING -> ACCEPTED)、婉拒 (-> REJECTED)
    - 系統：某一提案被接受時，其他未結束的提案全部 -> REJECTED
    """
    def __init__(self, db: AsyncSession):
        self.db = db
        self.proposal_repo = ProposalRepository(db)
        self.job_repo = JobRepository(db)
        self.contract_service = ContractService(db)
        self.notification_service = NotificationService(db)

    # --- 內部工具 ---
    async def _load_for_update(self, proposal_id: str) -> Tuple[Proposal, Job]:
        """
        取得提案並鎖定所屬案件 (鎖的順序固定為 案件 -> 提案)。
        鎖定後重新讀取提案，拿到的是最新狀態。
        """
        proposal = await self.proposal_repo.get_proposal_by_id(proposal_id)
        if not proposal:
            raise NotFound("提案不存在")
        job = await self.job_repo.get_job_for_update(proposal.job_id)
        if not job:
            raise NotFound("案件不存在")
        await self.proposal_repo.refresh(proposal)
        return proposal, job

    async def _compare_and_set(
        self,
        proposal: Proposal,
        expected: Sequence[ProposalStatusEnum],
        new_status: ProposalStatusEnum,
    ) -> Proposal:
        updated = await self.proposal_repo.compare_and_set_status(
            proposal.proposal_id, expected, new_status
        )
        await self.proposal_repo.refresh(proposal)
        if not updated:
            # 被其他請求搶先變更：有具體原因就回傳原因
            reason = PROPOSAL_MACHINE.reasons.get(proposal.status)
            if reason:
                raise InvalidTransition(reason)
            raise Conflict("提案狀態已被其他操作變更")
        logger.info(f"提案狀態變更: proposal={proposal.proposal_id}, -> {new_status.value}")
        return proposal

    def _ensure_job_open(self, job: Job):
        if job.status == JobStatusEnum.open:
            return
        if job.status in (JobStatusEnum.contracted, JobStatusEnum.in_progress, JobStatusEnum.completed):
            raise Conflict("此案件已成案")
        raise InvalidTransition("案件尚未開放提案")

    # --- 提交 ---
    async def submit_proposal(
        self,
        job_id: str,
        data: ProposalCreate,
        user: AuthenticatedUser
    ) -> Proposal:
        if user.role != UserRoleEnum.freelancer:
            raise Forbidden("只有工作者可以提交提案")

        try:
            async with unit_of_work(self.db):
                job = await self.job_repo.get_job_for_update(job_id)
                if not job:
                    raise NotFound("案件不存在")
                if job.status != JobStatusEnum.open:
                    raise InvalidTransition("此案件目前不接受提案")

                if await self.proposal_repo.check_existing_proposal(job_id, user.user_id):
                    raise Conflict("你已經對此案件提案過了")

                proposal = await self.proposal_repo.create_proposal(Proposal(
                    job_id=job_id,
                    freelancer_id=user.user_id,
                    message=data.message,
                    proposed_amount=data.proposed_amount,
                    status=ProposalStatusEnum.pending,
                ))

                await self.notification_service.emit(
                    user_id=job.client_id,
                    type=NotificationType.PROPOSAL_SUBMITTED,
                    title=f"您的案件「{job.title}」有新的提案",
                    link_url=f"/jobs/{job.job_id}/proposals",
                    event_key=f"proposal:{proposal.proposal_id}:submitted",
                )
                return proposal
        except IntegrityError:
            # (job_id, freelancer_id) unique constraint：同時送出兩次
            raise Conflict("你已經對此案件提案過了")

    # --- 客戶動作 ---
    async def send_offer(self, proposal_id: str, user: AuthenticatedUser) -> Proposal:
        async with unit_of_work(self.db):
            proposal, job = await self._load_for_update(proposal_id)
            if job.client_id != user.user_id:
                raise Forbidden("只有案件擁有者可以送出邀約")
            self._ensure_job_open(job)

            new_status = PROPOSAL_MACHINE.next_state(proposal.status, ProposalEvent.send_offer)
            proposal = await self._compare_and_set(proposal, [proposal.status], new_status)

            await self.notification_service.emit(
                user_id=proposal.freelancer_id,
                type=NotificationType.PROPOSAL_OFFERED,
                title=f"客戶對「{job.title}」向您送出邀約",
                link_url=f"/proposals/{proposal.proposal_id}",
                event_key=f"proposal:{proposal.proposal_id}:offered",
            )
            return proposal

    async def decline_proposal(self, proposal_id: str, user: AuthenticatedUser) -> Proposal:
        async with unit_of_work(self.db):
            proposal, job = await self._load_for_update(proposal_id)
            if job.client_id != user.user_id:
                raise Forbidden("只有案件擁有者可以婉拒提案")

            new_status = PROPOSAL_MACHINE.next_state(proposal.status, ProposalEvent.decline)
            proposal = await self._compare_and_set(proposal, [proposal.status], new_status)

            await self.notification_service.emit(
                user_id=proposal.freelancer_id,
                type=NotificationType.PROPOSAL_REJECTED,
                title=f"您對「{job.title}」的提案未被採用",
                link_url=f"/proposals/{proposal.proposal_id}",
                event_key=f"proposal:{proposal.proposal_id}:rejected",
            )
            return proposal

    # --- 工作者動作 ---
    async def reject_offer(self, proposal_id: str, user: AuthenticatedUser) -> Proposal:
        async with unit_of_work(self.db):
            proposal, job = await self._load_for_update(proposal_id)
            if proposal.freelancer_id != user.user_id:
                raise Forbidden("只有提案者可以回覆邀約")

            new_status = PROPOSAL_MACHINE.next_state(proposal.status, ProposalEvent.reject_offer)
            proposal = await self._compare_and_set(proposal, [proposal.status], new_status)

            await self.notification_service.emit(
                user_id=job.client_id,
                type=NotificationType.PROPOSAL_REJECTED,
                title=f"工作者婉拒了「{job.title}」的邀約",
                link_url=f"/jobs/{job.job_id}/proposals",
                event_key=f"proposal:{proposal.proposal_id}:offer_rejected",
            )
            return proposal

    async def withdraw_proposal(self, proposal_id: str, user: AuthenticatedUser) -> Proposal:
        async with unit_of_work(self.db):
            proposal, job = await self._load_for_update(proposal_id)
            if proposal.freelancer_id != user.user_id:
                raise Forbidden("只有提案者可以撤回提案")

            new_status = PROPOSAL_MACHINE.next_state(proposal.status, ProposalEvent.withdraw)
            proposal = await self._compare_and_set(proposal, [proposal.status], new_status)

            await self.notification_service.emit(
                user_id=job.client_id,
                type=NotificationType.PROPOSAL_WITHDRAWN,
                title=f"工作者撤回了對「{job.title}」的提案",
                link_url=f"/jobs/{job.job_id}/proposals",
                event_key=f"proposal:{proposal.proposal_id}:withdrawn",
            )
            return proposal

    # --- 接受 (雙方) ---
    async def accept_proposal(self, proposal_id: str, user: AuthenticatedUser) -> Tuple[Proposal, Contract]:
        """
        (關鍵) 單一交易內完成：
        1. 提案 -> ACCEPTED (compare-and-swap)
        2. 同案件其他 PENDING / OFFERED 提案 -> REJECTED
        3. 成立合約、案件 -> CONTRACTED
        任何一步失敗整個 rollback，不會出現只完成一半的狀態。

        客戶可直接接受 PENDING 提案 (隱含一次送出邀約)；工作者只能接受 OFFERED 邀約。
        """
        try:
            async with unit_of_work(self.db):
                proposal, job = await self._load_for_update(proposal_id)

                if job.client_id == user.user_id:
                    direct = True
                elif proposal.freelancer_id == user.user_id:
                    direct = False
                else:
                    raise Forbidden("你無權接受此提案")

                self._ensure_job_open(job)

                new_status = proposal_status_after_accept(proposal.status, direct)
                proposal = await self._compare_and_set(proposal, [proposal.status], new_status)

                rejected_freelancers = await self.proposal_repo.reject_open_siblings(
                    job.job_id, proposal.proposal_id
                )

                contract = await self.contract_service.form_from_accepted_proposal(proposal)

                accepted_by_other = proposal.freelancer_id if direct else job.client_id
                await self.notification_service.emit(
                    user_id=accepted_by_other,
                    type=NotificationType.PROPOSAL_ACCEPTED,
                    title=f"「{job.title}」的提案已被接受",
                    link_url=f"/contracts/{contract.contract_id}",
                    event_key=f"proposal:{proposal.proposal_id}:accepted",
                )
                for freelancer_id in rejected_freelancers:
                    await self.notification_service.emit(
                        user_id=freelancer_id,
                        type=NotificationType.PROPOSAL_REJECTED,
                        title=f"「{job.title}」已選定其他工作者",
                        link_url=f"/jobs/{job.job_id}",
                        event_key=f"job:{job.job_id}:sibling_rejected",
                    )

                logger.info(
                    f"接受提案: proposal={proposal.proposal_id}, job={job.job_id}, "
                    f"rejected_siblings={len(rejected_freelancers)}"
                )
                return proposal, contract
        except IntegrityError:
            # contracts.job_id / proposal_id unique：併行接受在 DB 層被擋下
            logger.warning(f"接受提案時發生唯一性衝突: proposal={proposal_id}")
            raise Conflict("此案件已被其他操作成案")

    # --- 查詢 ---
    async def list_for_job(self, job_id: str, user: AuthenticatedUser) -> List[Proposal]:
        job = await self.job_repo.get_job_by_id(job_id)
        if not job:
            raise NotFound("案件不存在")
        if job.client_id != user.user_id and not user.is_admin:
            raise Forbidden("你無權檢視此案件的提案")
        return await self.proposal_repo.get_proposals_by_job_id(job_id)

    async def list_mine(self, user: AuthenticatedUser) -> List[Proposal]:
        return await self.proposal_repo.get_proposals_by_freelancer_id(user.user_id)

    async def get_proposal(self, proposal_id: str, user: AuthenticatedUser) -> Proposal:
        proposal = await self.proposal_repo.get_proposal_by_id(proposal_id)
        if not proposal:
            raise NotFound("提案不存在")
        if proposal.freelancer_id == user.user_id or user.is_admin:
            return proposal
        job = await self.job_repo.get_job_by_id(proposal.job_id)
        if job.client_id != user.user_id:
            raise Forbidden("你無權檢視此提案")
        return proposal
