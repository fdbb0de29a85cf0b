# app/services/escrow_service.py
# 託管款項：PENDING -> PAID -> {RELEASED | REFUNDED}；PENDING -> FAILED
#
# 鎖定順序固定為 案件 -> 託管款項 -> 爭議 -> 錢包，避免交叉鎖死。
# 呼叫金流閘道時不持有任何列鎖。

import uuid
from datetime import timedelta
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional, Tuple

from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.database import unit_of_work
from app.core.exceptions import NotFound, Forbidden, InvalidTransition, GatewayError
from app.core.payment_gateway import ChapaGateway, get_payment_gateway, normalize_gateway_status
from app.models.base import utcnow
from app.models.contract import ContractStatusEnum
from app.models.escrow import EscrowPayment, EscrowStatusEnum
from app.models.job import Job, JobStatusEnum
from app.models.wallet import WalletTransactionTypeEnum
from app.repositories.audit_log_repo import AuditLogRepository
from app.repositories.contract_repo import ContractRepository
from app.repositories.escrow_repo import EscrowRepository
from app.repositories.job_repo import JobRepository
from app.schemas.user_schema import AuthenticatedUser
from app.services.contract_service import ContractService
from app.services.notification_service import NotificationService, NotificationType
from app.services.wallet_service import WalletService
from app.utils.state_machine import ESCROW_MACHINE, EscrowEvent

import logging

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")


def calculate_platform_fee(amount: Decimal, rate: Decimal = None) -> Decimal:
    rate = settings.PLATFORM_FEE_RATE if rate is None else rate
    return (Decimal(amount) * Decimal(rate)).quantize(CENT, rounding=ROUND_HALF_UP)


def new_tx_ref() -> str:
    return f"escrow_{uuid.uuid4().hex}"


class EscrowService:
    def __init__(self, db: AsyncSession, gateway: Optional[ChapaGateway] = None):
        self.db = db
        self.gateway = gateway or get_payment_gateway()
        self.escrow_repo = EscrowRepository(db)
        self.contract_repo = ContractRepository(db)
        self.job_repo = JobRepository(db)
        self.audit_repo = AuditLogRepository(db)
        self.contract_service = ContractService(db)
        self.wallet_service = WalletService(db)
        self.notification_service = NotificationService(db)

    # --- 內部工具 ---
    async def _lock_job_and_payment(self, escrow_payment_id: str) -> Tuple[Job, EscrowPayment]:
        payment = await self.escrow_repo.get_payment_by_id(escrow_payment_id)
        if not payment:
            raise NotFound("託管款項不存在")
        job = await self.job_repo.get_job_for_update(payment.job_id)
        payment = await self.escrow_repo.get_payment_for_update(escrow_payment_id)
        return job, payment

    async def _settle(
        self,
        payment: EscrowPayment,
        event: EscrowEvent,
        **values,
    ) -> EscrowPayment:
        """
        以 compare-and-swap 執行一次狀態轉移；搶輸時回傳目前狀態的具體原因
        """
        new_status = ESCROW_MACHINE.next_state(payment.status, event)
        updated = await self.escrow_repo.compare_and_set_status(
            payment.escrow_payment_id, payment.status, new_status, **values
        )
        await self.escrow_repo.refresh(payment)
        if not updated:
            ESCROW_MACHINE.next_state(payment.status, event)
            raise InvalidTransition("託管款項狀態已被其他操作變更")
        logger.info(f"託管款項狀態變更: escrow={payment.escrow_payment_id}, tx_ref={payment.tx_ref}, -> {new_status.value}")
        return payment

    async def _notify_parties(self, payment: EscrowPayment, type: str, title: str, suffix: str):
        for recipient in (payment.client_id, payment.freelancer_id):
            await self.notification_service.emit(
                user_id=recipient,
                type=type,
                title=title,
                link_url=f"/jobs/{payment.job_id}/escrow",
                event_key=f"escrow:{payment.escrow_payment_id}:{suffix}",
            )

    # --- 發起付款 ---
    async def initiate(self, contract_id: str, user: AuthenticatedUser) -> EscrowPayment:
        """
        客戶為進行中的合約建立託管款項，回傳含 checkout_url 的款項。

        同一合約已有 PENDING 款項時直接回傳 (若當初沒拿到 checkout_url，用同一個 tx_ref 再向閘道要一次)。
        閘道重試用盡會 raise GatewayError，款項保持 PENDING。
        """
        async with unit_of_work(self.db):
            contract = await self.contract_repo.get_contract_for_update(contract_id)
            if not contract:
                raise NotFound("合約不存在")
            if contract.client_id != user.user_id:
                raise Forbidden("只有客戶可以付款至託管")
            if contract.status != ContractStatusEnum.active:
                raise InvalidTransition("合約不是進行中狀態，無法付款")

            job = await self.job_repo.get_job_by_id(contract.job_id)
            if job.status != JobStatusEnum.contracted:
                raise InvalidTransition("案件不是已成案狀態，無法付款")

            if await self.escrow_repo.get_funded_payment_for_contract(contract_id):
                raise InvalidTransition("此合約的託管款項已付款")

            payment = await self.escrow_repo.get_pending_payment_for_contract(contract_id)
            if payment is None:
                amount = Decimal(contract.agreed_amount)
                payment = await self.escrow_repo.create_payment(EscrowPayment(
                    job_id=contract.job_id,
                    contract_id=contract.contract_id,
                    client_id=contract.client_id,
                    freelancer_id=contract.freelancer_id,
                    amount=amount,
                    platform_fee=calculate_platform_fee(amount),
                    currency=settings.ESCROW_CURRENCY,
                    status=EscrowStatusEnum.pending,
                    tx_ref=new_tx_ref(),
                ))
                logger.info(f"建立託管款項: escrow={payment.escrow_payment_id}, tx_ref={payment.tx_ref}, amount={amount}")
            elif payment.checkout_url:
                logger.info(f"重複發起託管，回傳既有款項: tx_ref={payment.tx_ref}")

        if payment.checkout_url:
            return payment

        # 交易已 commit：閘道失敗時 PENDING 款項仍保留，之後可用同一個 tx_ref 重試
        checkout_url = await self.gateway.initiate_checkout(payment.tx_ref, payment.amount, payment.currency)

        async with unit_of_work(self.db):
            payment = await self.escrow_repo.get_payment_for_update(payment.escrow_payment_id)
            if not payment.checkout_url:
                payment.checkout_url = checkout_url
                await self.escrow_repo.save(payment)
            return payment

    # --- 對帳 (webhook / 主動查詢) ---
    async def reconcile(
        self,
        tx_ref: str,
        gateway_status: str,
        paid_amount: Optional[Decimal] = None,
    ) -> EscrowPayment:
        """
        套用閘道查詢到的付款結果。可重複呼叫：同一筆 (tx_ref, 狀態) 只會生效一次。
        (重要) gateway_status 必須來自 gateway.verify，不可直接採用 webhook 內容。

        - 成功：PENDING -> PAID，記錄 paid_at，案件 CONTRACTED -> IN_PROGRESS
        - 成功但實付金額不足：視為失敗
        - 失敗：PENDING -> FAILED，案件維持 CONTRACTED 等待人工處理
        - 處理中 / 已處理過：不做任何事
        """
        normalized = normalize_gateway_status(gateway_status)

        async with unit_of_work(self.db):
            payment = await self.escrow_repo.get_payment_by_tx_ref(tx_ref)
            if not payment:
                raise NotFound("找不到此交易編號")
            job, payment = await self._lock_job_and_payment(payment.escrow_payment_id)

            failure_reason = None
            if normalized == "success" and paid_amount is not None and Decimal(paid_amount) < Decimal(payment.amount):
                normalized = "failed"
                failure_reason = f"實付金額 {paid_amount} 少於託管金額 {payment.amount}"

            if normalized == "pending":
                logger.info(f"閘道回報處理中: tx_ref={tx_ref}")
                return payment

            event = EscrowEvent.payment_succeeded if normalized == "success" else EscrowEvent.payment_failed
            if not ESCROW_MACHINE.can(payment.status, event):
                if payment.status == EscrowStatusEnum.failed and normalized == "success":
                    logger.error(f"已標記失敗的款項收到付款成功通知，需人工處理: tx_ref={tx_ref}")
                else:
                    logger.info(f"重複的對帳通知，略過: tx_ref={tx_ref}, status={payment.status.value}, gateway={gateway_status}")
                return payment

            if normalized == "failed":
                payment = await self._settle(
                    payment, event,
                    failure_reason=failure_reason or f"閘道回報狀態: {gateway_status}",
                )
                await self.notification_service.emit(
                    user_id=payment.client_id,
                    type=NotificationType.ESCROW_FAILED,
                    title="託管付款失敗，請重新付款",
                    link_url=f"/jobs/{payment.job_id}/escrow",
                    event_key=f"escrow:{payment.escrow_payment_id}:failed",
                )
                return payment

            payment = await self._settle(payment, event, paid_at=utcnow())
            await self._notify_parties(payment, NotificationType.ESCROW_PAID, "託管款項已付款", "paid")

            contract = await self.contract_repo.get_contract_by_id(payment.contract_id)
            if contract.status == ContractStatusEnum.cancelled:
                logger.warning(f"合約已取消但收到付款，款項保留為 PAID 待退款: tx_ref={tx_ref}")
                return payment
            if job.status != JobStatusEnum.contracted:
                logger.warning(f"付款成功但案件狀態為 {job.status.value}，不自動開工: job={job.job_id}")
                return payment

            from app.services.job_service import JobService
            await JobService(self.db).start(payment.job_id)
            return payment

    async def verify(self, tx_ref: str, user: AuthenticatedUser) -> EscrowPayment:
        """
        (API 用) 付款完成後前端主動要求查詢，結果交給 reconcile
        """
        payment = await self.escrow_repo.get_payment_by_tx_ref(tx_ref)
        if not payment:
            raise NotFound("找不到此交易編號")
        if payment.client_id != user.user_id and not user.is_admin:
            raise Forbidden("你無權查詢此付款")
        if payment.status != EscrowStatusEnum.pending:
            return payment
        return await self._verify_with_gateway(tx_ref)

    async def handle_webhook(self, tx_ref: str) -> EscrowPayment:
        """
        (webhook 用) 通知內容只用來取得 tx_ref，付款結果一律向閘道查詢。
        款項已不是 PENDING 時直接回傳，不再查詢閘道。
        """
        payment = await self.escrow_repo.get_payment_by_tx_ref(tx_ref)
        if not payment:
            raise NotFound("找不到此交易編號")
        if payment.status != EscrowStatusEnum.pending:
            logger.info(f"重複的 webhook，略過: tx_ref={tx_ref}, status={payment.status.value}")
            return payment
        return await self._verify_with_gateway(tx_ref)

    async def _verify_with_gateway(self, tx_ref: str) -> EscrowPayment:
        # 呼叫閘道時不在交易內
        result = await self.gateway.verify(tx_ref)
        return await self.reconcile(tx_ref, result.status, result.paid_amount)

    async def sweep_pending(self, user: AuthenticatedUser) -> dict:
        """
        (管理員) 對帳排程：超過設定時間仍為 PENDING 的款項逐筆向閘道查詢。
        單筆查詢失敗只記錄，不影響其他款項。
        """
        if not user.is_admin:
            raise Forbidden("只有管理員可以執行對帳")

        cutoff = utcnow() - timedelta(minutes=settings.RECONCILE_SWEEP_AGE_MINUTES)
        stale = await self.escrow_repo.list_stale_pending_payments(cutoff)
        tx_refs = [p.tx_ref for p in stale]
        summary = {"checked": len(tx_refs), "paid": 0, "failed": 0, "still_pending": 0, "errors": []}

        for tx_ref in tx_refs:
            try:
                result = await self.gateway.verify(tx_ref)
            except GatewayError as e:
                logger.warning(f"對帳查詢失敗: tx_ref={tx_ref}: {e.detail}")
                summary["errors"].append(f"{tx_ref}: {e.detail}")
                continue
            payment = await self.reconcile(tx_ref, result.status, result.paid_amount)
            if payment.status == EscrowStatusEnum.paid:
                summary["paid"] += 1
            elif payment.status == EscrowStatusEnum.failed:
                summary["failed"] += 1
            else:
                summary["still_pending"] += 1

        async with unit_of_work(self.db):
            await self.audit_repo.record(
                actor_id=user.user_id,
                action="ESCROW_RECONCILE_SWEEP",
                entity_type="escrow_payment",
                extra=summary,
            )
        logger.info(f"對帳完成: {summary}")
        return summary

    # --- 撥款 / 退款 ---
    async def release(self, escrow_payment_id: str, user: AuthenticatedUser, via_dispute: bool = False) -> EscrowPayment:
        """
        PAID -> RELEASED：工作者入帳 (金額 - 手續費)，手續費入平台錢包，合約完成。
        客戶在案件完成後觸發，或管理員裁決爭議 (via_dispute=True) 時觸發。
        """
        async with unit_of_work(self.db):
            job, payment = await self._lock_job_and_payment(escrow_payment_id)

            if via_dispute:
                if not user.is_admin:
                    raise Forbidden("只有管理員可以裁決撥款")
            else:
                if payment.client_id != user.user_id:
                    raise Forbidden("只有客戶可以撥款")
                if job.status != JobStatusEnum.completed:
                    raise InvalidTransition("案件尚未完成，無法撥款")

            ESCROW_MACHINE.next_state(payment.status, EscrowEvent.release)
            if await self.escrow_repo.get_open_dispute(escrow_payment_id):
                raise InvalidTransition("此款項有處理中的爭議，無法撥款")

            payment = await self._settle(payment, EscrowEvent.release, released_at=utcnow())

            amount = Decimal(payment.amount)
            fee = Decimal(payment.platform_fee)
            payout = amount - fee

            freelancer_wallet = await self.wallet_service.get_or_create_user_wallet(payment.freelancer_id)
            if payout > 0:
                await self.wallet_service.post(
                    freelancer_wallet.wallet_id,
                    WalletTransactionTypeEnum.credit,
                    payout,
                    f"{payment.tx_ref}:release",
                )
            if fee > 0:
                platform_wallet = await self.wallet_service.get_platform_wallet()
                await self.wallet_service.post(
                    platform_wallet.wallet_id,
                    WalletTransactionTypeEnum.platform_fee,
                    fee,
                    f"{payment.tx_ref}:fee",
                )

            contract = await self.contract_repo.get_contract_by_id(payment.contract_id)
            if contract.status == ContractStatusEnum.active:
                await self.contract_service.complete_contract(contract.contract_id)

            await self._notify_parties(payment, NotificationType.ESCROW_RELEASED, f"託管款項已撥款 ({payout} {payment.currency})", "released")
            return payment

    async def refund(self, escrow_payment_id: str, user: AuthenticatedUser, via_dispute: bool = False) -> EscrowPayment:
        """
        PAID -> REFUNDED：全額退回客戶錢包，合約取消。
        客戶只能在「開工前取消合約」後退款；其他情況需由管理員裁決爭議 (via_dispute=True)。
        """
        async with unit_of_work(self.db):
            job, payment = await self._lock_job_and_payment(escrow_payment_id)
            contract = await self.contract_repo.get_contract_for_update(payment.contract_id)

            if via_dispute:
                if not user.is_admin:
                    raise Forbidden("只有管理員可以裁決退款")
            else:
                if payment.client_id != user.user_id:
                    raise Forbidden("只有客戶可以申請退款")
                if contract.status != ContractStatusEnum.cancelled or job.status != JobStatusEnum.contracted:
                    raise InvalidTransition("只有在開工前取消合約後才能退款")

            ESCROW_MACHINE.next_state(payment.status, EscrowEvent.refund)
            if await self.escrow_repo.get_open_dispute(escrow_payment_id):
                raise InvalidTransition("此款項有處理中的爭議，無法退款")

            payment = await self._settle(payment, EscrowEvent.refund, refunded_at=utcnow())

            client_wallet = await self.wallet_service.get_or_create_user_wallet(payment.client_id)
            await self.wallet_service.post(
                client_wallet.wallet_id,
                WalletTransactionTypeEnum.credit,
                Decimal(payment.amount),
                f"{payment.tx_ref}:refund",
            )

            await self.contract_service.cancel_for_refund(payment.contract_id)

            await self._notify_parties(payment, NotificationType.ESCROW_REFUNDED, "託管款項已退款給客戶", "refunded")
            return payment

    # --- 查詢 ---
    async def get_payment(self, escrow_payment_id: str, user: AuthenticatedUser) -> EscrowPayment:
        payment = await self.escrow_repo.get_payment_by_id(escrow_payment_id)
        if not payment:
            raise NotFound("託管款項不存在")
        if not user.is_admin and user.user_id not in (payment.client_id, payment.freelancer_id):
            raise Forbidden("你無權檢視此託管款項")
        return payment

    async def get_latest_for_job(self, job_id: str, user: AuthenticatedUser) -> EscrowPayment:
        job = await self.job_repo.get_job_by_id(job_id)
        if not job:
            raise NotFound("案件不存在")
        payment = await self.escrow_repo.get_latest_payment_for_job(job_id)
        if not payment:
            raise NotFound("此案件尚無託管款項")
        if not user.is_admin and user.user_id not in (payment.client_id, payment.freelancer_id):
            raise Forbidden("你無權檢視此託管款項")
        return payment
