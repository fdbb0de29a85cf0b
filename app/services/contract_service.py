# app/services/contract_service.py

from sqlalchemy.ext.asyncio import AsyncSession
from typing import List
import logging

from app.core.database import unit_of_work
from app.core.exceptions import NotFound, Forbidden, InvalidTransition, Conflict, InvariantViolation
from app.models.base import utcnow
from app.models.contract import Contract, ContractStatusEnum
from app.models.job import JobStatusEnum
from app.models.proposal import Proposal, ProposalStatusEnum
from app.repositories.contract_repo import ContractRepository
from app.repositories.job_repo import JobRepository
from app.repositories.proposal_repo import ProposalRepository
from app.schemas.user_schema import AuthenticatedUser
from app.services.notification_service import NotificationService, NotificationType
from app.utils.state_machine import CONTRACT_MACHINE, ContractEvent

logger = logging.getLogger(__name__)

class ContractService:
    def __init__(self, db: AsyncSession):
        self.db = db
        self.contract_repo = ContractRepository(db)
        self.job_repo = JobRepository(db)
        self.proposal_repo = ProposalRepository(db)
        self.notification_service = NotificationService(db)

    async def form_from_accepted_proposal(self, proposal: Proposal) -> Contract:
        """
        由已接受的提案成立合約，並把案件轉為 CONTRACTED。
        (重要) 必須在「接受提案」的同一個交易內執行。
        """
        from app.services.job_service import JobService

        async with unit_of_work(self.db):
            if proposal.status != ProposalStatusEnum.accepted:
                raise InvariantViolation(f"提案 {proposal.proposal_id} 尚未被接受，不能成立合約")

            if await self.contract_repo.check_contract_exists_by_job(proposal.job_id):
                raise Conflict("此案件已成立合約")

            # 一個案件只能有一個 ACCEPTED 提案
            accepted = await self.proposal_repo.count_accepted_for_job(proposal.job_id)
            if accepted != 1:
                raise InvariantViolation(f"案件 {proposal.job_id} 有 {accepted} 個已接受的提案")

            job = await self.job_repo.get_job_by_id(proposal.job_id)

            # 步驟 1: 建立合約 (金額 = 提案金額)
            contract = await self.contract_repo.create_contract(Contract(
                job_id=proposal.job_id,
                proposal_id=proposal.proposal_id,
                client_id=job.client_id,
                freelancer_id=proposal.freelancer_id,
                agreed_amount=proposal.proposed_amount,
                status=ContractStatusEnum.active,
            ))

            # 步驟 2: 案件 OPEN -> CONTRACTED
            await JobService(self.db).mark_contracted(proposal.job_id)

            # 步驟 3: 通知雙方
            for recipient in (contract.client_id, contract.freelancer_id):
                await self.notification_service.emit(
                    user_id=recipient,
                    type=NotificationType.CONTRACT_CREATED,
                    title=f"案件「{job.title}」已成立合約",
                    message=f"合約金額 {contract.agreed_amount}",
                    link_url=f"/contracts/{contract.contract_id}",
                    event_key=f"contract:{contract.contract_id}:created",
                )

            logger.info(f"成立合約: contract={contract.contract_id}, job={contract.job_id}, amount={contract.agreed_amount}")
            return contract

    async def get_contract_details(self, contract_id: str, user: AuthenticatedUser) -> Contract:
        contract = await self.contract_repo.get_contract_by_id(contract_id)
        if not contract:
            raise NotFound("合約不存在")
        if not user.is_admin and user.user_id not in (contract.client_id, contract.freelancer_id):
            raise Forbidden("你無權檢視此合約")
        return contract

    async def get_my_contracts(self, user: AuthenticatedUser) -> List[Contract]:
        return await self.contract_repo.list_contracts_by_user(user.user_id)

    async def complete_contract(self, contract_id: str) -> Contract:
        """ACTIVE -> COMPLETED (撥款時由託管流程呼叫)"""
        async with unit_of_work(self.db):
            contract = await self.contract_repo.get_contract_for_update(contract_id)
            if not contract:
                raise NotFound("合約不存在")
            contract.status = CONTRACT_MACHINE.next_state(contract.status, ContractEvent.complete)
            contract.completed_at = utcnow()
            return await self.contract_repo.update_contract(contract)

    async def cancel_contract(self, contract_id: str, user: AuthenticatedUser) -> Contract:
        """
        (API 用) 客戶在開工前取消合約。
        取消後，已付款的託管款項可以退款給客戶。
        """
        from app.repositories.escrow_repo import EscrowRepository
        from app.models.escrow import EscrowStatusEnum

        async with unit_of_work(self.db):
            contract = await self.contract_repo.get_contract_for_update(contract_id)
            if not contract:
                raise NotFound("合約不存在")
            if contract.client_id != user.user_id:
                raise Forbidden("只有客戶可以取消合約")

            job = await self.job_repo.get_job_for_update(contract.job_id)
            if job.status != JobStatusEnum.contracted:
                raise InvalidTransition("工作已開始，無法取消合約")

            funded = await EscrowRepository(self.db).get_funded_payment_for_contract(contract_id)
            if funded and funded.status == EscrowStatusEnum.released:
                raise InvalidTransition("託管款項已撥款，無法取消合約")

            return await self._cancel(contract)

    async def cancel_for_refund(self, contract_id: str) -> Contract:
        """退款時由託管流程呼叫；已取消的合約直接回傳"""
        async with unit_of_work(self.db):
            contract = await self.contract_repo.get_contract_for_update(contract_id)
            if not contract:
                raise NotFound("合約不存在")
            if contract.status == ContractStatusEnum.cancelled:
                return contract
            return await self._cancel(contract)

    async def _cancel(self, contract: Contract) -> Contract:
        contract.status = CONTRACT_MACHINE.next_state(contract.status, ContractEvent.cancel)
        contract.cancelled_at = utcnow()
        await self.contract_repo.update_contract(contract)
        logger.info(f"取消合約: contract={contract.contract_id}")

        for recipient in (contract.client_id, contract.freelancer_id):
            await self.notification_service.emit(
                user_id=recipient,
                type=NotificationType.CONTRACT_CANCELLED,
                title="合約已取消",
                link_url=f"/contracts/{contract.contract_id}",
                event_key=f"contract:{contract.contract_id}:cancelled",
            )
        return contract
