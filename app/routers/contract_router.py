# app/routers/contract_router.py

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession
from typing import List

from app.core.database import get_db
from app.core.security import get_current_user
from app.schemas.contract_schema import ContractOut
from app.schemas.user_schema import AuthenticatedUser
from app.services.contract_service import ContractService

router = APIRouter(
    prefix="/contracts",
    tags=["Contracts"],
    dependencies=[Depends(get_current_user)]
)

@router.get("/my", response_model=List[ContractOut], summary="獲取我的所有合約")
async def get_my_contracts(
    current_user: AuthenticatedUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """
    獲取當前使用者 (作為客戶或工作者) 的所有合約列表
    """
    service = ContractService(db)
    return await service.get_my_contracts(current_user)

@router.get("/{contract_id}", response_model=ContractOut, summary="獲取單一合約詳情")
async def get_contract_details(
    contract_id: str,
    current_user: AuthenticatedUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    service = ContractService(db)
    return await service.get_contract_details(contract_id, current_user)

@router.post("/{contract_id}/cancel", response_model=ContractOut, summary="(客戶) 開工前取消合約")
async def cancel_contract(
    contract_id: str,
    current_user: AuthenticatedUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """
    只能在案件開始前取消。取消後可以對已付款的託管款項申請退款。
    """
    service = ContractService(db)
    return await service.cancel_contract(contract_id, current_user)
