# app/services/dispute_service.py

from typing import List, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database import unit_of_work
from app.core.exceptions import NotFound, Forbidden, InvalidTransition, Conflict
from app.models.base import utcnow
from app.models.escrow import (
    EscrowDispute, EscrowStatusEnum, DisputeTypeEnum, DisputeOutcomeEnum
)
from app.repositories.audit_log_repo import AuditLogRepository
from app.repositories.escrow_repo import EscrowRepository
from app.repositories.job_repo import JobRepository
from app.schemas.user_schema import AuthenticatedUser
from app.services.escrow_service import EscrowService
from app.services.notification_service import NotificationService, NotificationType
from app.utils.state_machine import DISPUTE_MACHINE, DisputeEvent, ESCROW_MACHINE

import logging

logger = logging.getLogger(__name__)

class DisputeService:
    """
    爭議只能針對 PAID 的託管款項提出；裁決結果 (撥款 / 退款) 與爭議狀態在同一個交易內寫入
    """
    def __init__(self, db: AsyncSession):
        self.db = db
        self.escrow_repo = EscrowRepository(db)
        self.job_repo = JobRepository(db)
        self.audit_repo = AuditLogRepository(db)
        self.escrow_service = EscrowService(db)
        self.notification_service = NotificationService(db)

    async def _lock(self, dispute_id: str):
        """鎖定順序：案件 -> 託管款項 -> 爭議"""
        dispute = await self.escrow_repo.get_dispute_by_id(dispute_id)
        if not dispute:
            raise NotFound("爭議不存在")
        await self.job_repo.get_job_for_update(dispute.job_id)
        payment = await self.escrow_repo.get_payment_for_update(dispute.escrow_payment_id)
        dispute = await self.escrow_repo.get_dispute_for_update(dispute_id)
        return dispute, payment

    async def open_dispute(
        self,
        escrow_payment_id: str,
        user: AuthenticatedUser,
        type: DisputeTypeEnum = DisputeTypeEnum.dispute,
        reason: Optional[str] = None,
    ) -> EscrowDispute:
        async with unit_of_work(self.db):
            payment = await self.escrow_repo.get_payment_by_id(escrow_payment_id)
            if not payment:
                raise NotFound("託管款項不存在")
            if user.user_id not in (payment.client_id, payment.freelancer_id):
                raise Forbidden("只有合約雙方可以提出爭議")

            await self.job_repo.get_job_for_update(payment.job_id)
            payment = await self.escrow_repo.get_payment_for_update(escrow_payment_id)

            if payment.status != EscrowStatusEnum.paid:
                raise InvalidTransition(
                    ESCROW_MACHINE.reasons.get(payment.status, "只有已付款的託管款項可以提出爭議")
                )
            if await self.escrow_repo.get_open_dispute(escrow_payment_id):
                raise Conflict("此款項已有處理中的爭議")

            dispute = await self.escrow_repo.create_dispute(EscrowDispute(
                escrow_payment_id=payment.escrow_payment_id,
                job_id=payment.job_id,
                contract_id=payment.contract_id,
                raised_by_id=user.user_id,
                type=type,
                reason=reason,
            ))
            logger.info(f"提出爭議: dispute={dispute.dispute_id}, escrow={payment.escrow_payment_id}, by={user.user_id}")

            other_party = payment.freelancer_id if user.user_id == payment.client_id else payment.client_id
            await self.notification_service.emit(
                user_id=other_party,
                type=NotificationType.DISPUTE_OPENED,
                title="對方對託管款項提出了爭議",
                message=reason,
                link_url=f"/disputes/{dispute.dispute_id}",
                event_key=f"dispute:{dispute.dispute_id}:opened",
            )
            return dispute

    async def resolve_dispute(
        self,
        dispute_id: str,
        user: AuthenticatedUser,
        outcome: DisputeOutcomeEnum,
    ) -> EscrowDispute:
        """
        (管理員) 裁決：RELEASE 撥款給工作者，REFUND 退款給客戶
        """
        if not user.is_admin:
            raise Forbidden("只有管理員可以裁決爭議")

        async with unit_of_work(self.db):
            dispute, payment = await self._lock(dispute_id)

            dispute.status = DISPUTE_MACHINE.next_state(dispute.status, DisputeEvent.resolve)
            dispute.outcome = outcome
            dispute.resolved_by_id = user.user_id
            dispute.resolved_at = utcnow()
            await self.escrow_repo.save(dispute)

            if outcome == DisputeOutcomeEnum.release:
                await self.escrow_service.release(payment.escrow_payment_id, user, via_dispute=True)
            else:
                await self.escrow_service.refund(payment.escrow_payment_id, user, via_dispute=True)

            await self.audit_repo.record(
                actor_id=user.user_id,
                action="DISPUTE_RESOLVED",
                entity_type="escrow_dispute",
                entity_id=dispute.dispute_id,
                extra={"outcome": outcome.value, "escrow_payment_id": payment.escrow_payment_id},
            )
            await self._notify_parties(
                dispute, payment, NotificationType.DISPUTE_RESOLVED,
                f"爭議已裁決：{'撥款給工作者' if outcome == DisputeOutcomeEnum.release else '退款給客戶'}",
                "resolved",
            )
            logger.info(f"裁決爭議: dispute={dispute_id}, outcome={outcome.value}")
            return dispute

    async def reject_dispute(
        self,
        dispute_id: str,
        user: AuthenticatedUser,
        reason: Optional[str] = None,
    ) -> EscrowDispute:
        """
        (管理員) 駁回：款項維持 PAID
        """
        if not user.is_admin:
            raise Forbidden("只有管理員可以駁回爭議")

        async with unit_of_work(self.db):
            dispute, payment = await self._lock(dispute_id)

            dispute.status = DISPUTE_MACHINE.next_state(dispute.status, DisputeEvent.reject)
            dispute.resolved_by_id = user.user_id
            dispute.resolved_at = utcnow()
            await self.escrow_repo.save(dispute)

            await self.audit_repo.record(
                actor_id=user.user_id,
                action="DISPUTE_REJECTED",
                entity_type="escrow_dispute",
                entity_id=dispute.dispute_id,
                extra={"reason": reason, "escrow_payment_id": payment.escrow_payment_id},
            )
            await self._notify_parties(dispute, payment, NotificationType.DISPUTE_REJECTED, "爭議已被駁回", "rejected")
            return dispute

    async def _notify_parties(self, dispute, payment, type: str, title: str, suffix: str):
        for recipient in (payment.client_id, payment.freelancer_id):
            await self.notification_service.emit(
                user_id=recipient,
                type=type,
                title=title,
                link_url=f"/disputes/{dispute.dispute_id}",
                event_key=f"dispute:{dispute.dispute_id}:{suffix}",
            )

    async def get_dispute(self, dispute_id: str, user: AuthenticatedUser) -> EscrowDispute:
        dispute = await self.escrow_repo.get_dispute_by_id(dispute_id)
        if not dispute:
            raise NotFound("爭議不存在")
        if not user.is_admin:
            payment = await self.escrow_repo.get_payment_by_id(dispute.escrow_payment_id)
            if user.user_id not in (payment.client_id, payment.freelancer_id):
                raise Forbidden("你無權檢視此爭議")
        return dispute

    async def list_for_payment(self, escrow_payment_id: str, user: AuthenticatedUser) -> List[EscrowDispute]:
        await self.escrow_service.get_payment(escrow_payment_id, user)
        return await self.escrow_repo.list_disputes_for_payment(escrow_payment_id)
