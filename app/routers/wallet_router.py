# app/routers/wallet_router.py

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession
from typing import List

from app.core.database import get_db
from app.core.security import get_current_user
from app.schemas.user_schema import AuthenticatedUser
from app.schemas.wallet_schema import WalletOut, WalletTransactionOut, WithdrawalRequest
from app.services.wallet_service import WalletService

router = APIRouter(
    prefix="/wallet",
    tags=["Wallet"],
    dependencies=[Depends(get_current_user)]
)

@router.get("/me", response_model=WalletOut, summary="我的錢包")
async def get_my_wallet(
    current_user: AuthenticatedUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    service = WalletService(db)
    return await service.get_my_wallet(current_user)

@router.get("/me/transactions", response_model=List[WalletTransactionOut], summary="我的錢包交易紀錄")
async def list_my_transactions(
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    current_user: AuthenticatedUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    service = WalletService(db)
    return await service.list_my_transactions(current_user, limit=limit, offset=offset)

@router.post(
    "/me/withdrawals",
    response_model=WalletTransactionOut,
    status_code=status.HTTP_201_CREATED,
    summary="提領"
)
async def withdraw(
    data: WithdrawalRequest,
    current_user: AuthenticatedUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """
    以相同 reference 重送不會重複扣款。
    """
    service = WalletService(db)
    return await service.withdraw(current_user, data.amount, data.reference)
