# app/routers/escrow_router.py

import hashlib
import hmac
import logging
from typing import List

from fastapi import APIRouter, Depends, HTTPException, Request, status
from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.database import get_db
from app.core.payment_gateway import ChapaGateway, get_payment_gateway
from app.core.security import get_current_user
from app.schemas.escrow_schema import (
    EscrowInitiateRequest, EscrowCallbackPayload, EscrowPaymentOut,
    DisputeCreate, DisputeOut, ReconcileSweepOut
)
from app.schemas.user_schema import AuthenticatedUser
from app.services.dispute_service import DisputeService
from app.services.escrow_service import EscrowService

logger = logging.getLogger(__name__)

# (注意) webhook 不需要登入，所以不在 router 層級加 get_current_user
router = APIRouter(
    prefix="/escrow",
    tags=["Escrow"]
)

SIGNATURE_HEADERS = ("chapa-signature", "x-chapa-signature")


def verify_webhook_signature(body: bytes, signature: str | None, secret: str | None) -> bool:
    """HMAC-SHA256(secret, raw body)；未設定 secret 時不驗證"""
    if not secret:
        return True
    if not signature:
        return False
    expected = hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()
    return hmac.compare_digest(expected, signature)


@router.post("/initiate", response_model=EscrowPaymentOut, summary="(客戶) 付款至託管")
async def initiate_escrow(
    data: EscrowInitiateRequest,
    current_user: AuthenticatedUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    gateway: ChapaGateway = Depends(get_payment_gateway)
):
    """
    回傳的 checkout_url 是金流閘道的付款頁。
    重複呼叫會回傳同一筆 PENDING 款項。
    """
    service = EscrowService(db, gateway)
    return await service.initiate(data.contract_id, current_user)

@router.post("/callback", response_model=EscrowPaymentOut, summary="金流閘道 webhook")
async def escrow_callback(
    request: Request,
    db: AsyncSession = Depends(get_db),
    gateway: ChapaGateway = Depends(get_payment_gateway)
):
    """
    閘道可能重送同一個通知，對帳流程保證只生效一次。
    通知內的 status 只記錄，付款結果以向閘道查詢的為準。
    """
    body = await request.body()
    signature = next((request.headers.get(h) for h in SIGNATURE_HEADERS if request.headers.get(h)), None)
    if not verify_webhook_signature(body, signature, settings.CHAPA_WEBHOOK_SECRET):
        logger.warning("webhook 簽章驗證失敗")
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="簽章驗證失敗")

    try:
        payload = EscrowCallbackPayload.model_validate_json(body)
    except ValidationError as e:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=e.errors(include_url=False))

    logger.info(f"收到 webhook: tx_ref={payload.tx_ref}, status={payload.status}")
    service = EscrowService(db, gateway)
    return await service.handle_webhook(payload.tx_ref)

@router.get("/verify/{tx_ref}", response_model=EscrowPaymentOut, summary="(客戶) 主動查詢付款結果")
async def verify_escrow(
    tx_ref: str,
    current_user: AuthenticatedUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    gateway: ChapaGateway = Depends(get_payment_gateway)
):
    service = EscrowService(db, gateway)
    return await service.verify(tx_ref, current_user)

@router.post("/reconcile-sweep", response_model=ReconcileSweepOut, summary="(管理員) 對帳排程")
async def reconcile_sweep(
    current_user: AuthenticatedUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    gateway: ChapaGateway = Depends(get_payment_gateway)
):
    service = EscrowService(db, gateway)
    return await service.sweep_pending(current_user)

@router.get("/jobs/{job_id}", response_model=EscrowPaymentOut, summary="案件最新的託管款項")
async def get_escrow_for_job(
    job_id: str,
    current_user: AuthenticatedUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    service = EscrowService(db)
    return await service.get_latest_for_job(job_id, current_user)

@router.get("/{escrow_payment_id}", response_model=EscrowPaymentOut, summary="託管款項詳情")
async def get_escrow(
    escrow_payment_id: str,
    current_user: AuthenticatedUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    service = EscrowService(db)
    return await service.get_payment(escrow_payment_id, current_user)

@router.post("/{escrow_payment_id}/release", response_model=EscrowPaymentOut, summary="(客戶) 撥款給工作者")
async def release_escrow(
    escrow_payment_id: str,
    current_user: AuthenticatedUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    service = EscrowService(db)
    return await service.release(escrow_payment_id, current_user)

@router.post("/{escrow_payment_id}/refund", response_model=EscrowPaymentOut, summary="(客戶) 取消合約後退款")
async def refund_escrow(
    escrow_payment_id: str,
    current_user: AuthenticatedUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    service = EscrowService(db)
    return await service.refund(escrow_payment_id, current_user)

@router.post(
    "/{escrow_payment_id}/disputes",
    response_model=DisputeOut,
    status_code=status.HTTP_201_CREATED,
    summary="對託管款項提出爭議"
)
async def open_dispute(
    escrow_payment_id: str,
    data: DisputeCreate,
    current_user: AuthenticatedUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    service = DisputeService(db)
    return await service.open_dispute(escrow_payment_id, current_user, type=data.type, reason=data.reason)

@router.get("/{escrow_payment_id}/disputes", response_model=List[DisputeOut], summary="託管款項的爭議紀錄")
async def list_disputes(
    escrow_payment_id: str,
    current_user: AuthenticatedUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    service = DisputeService(db)
    return await service.list_for_payment(escrow_payment_id, current_user)
