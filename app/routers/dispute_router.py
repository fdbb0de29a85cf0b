# app/routers/dispute_router.py

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database import get_db
from app.core.security import get_current_user
from app.schemas.escrow_schema import DisputeOut, DisputeResolve, DisputeReject
from app.schemas.user_schema import AuthenticatedUser
from app.services.dispute_service import DisputeService

router = APIRouter(
    prefix="/disputes",
    tags=["Disputes"],
    dependencies=[Depends(get_current_user)]
)

@router.get("/{dispute_id}", response_model=DisputeOut, summary="爭議詳情")
async def get_dispute(
    dispute_id: str,
    current_user: AuthenticatedUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    service = DisputeService(db)
    return await service.get_dispute(dispute_id, current_user)

@router.post("/{dispute_id}/resolve", response_model=DisputeOut, summary="(管理員) 裁決爭議")
async def resolve_dispute(
    dispute_id: str,
    data: DisputeResolve,
    current_user: AuthenticatedUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """
    outcome = RELEASE：撥款給工作者；REFUND：退款給客戶
    """
    service = DisputeService(db)
    return await service.resolve_dispute(dispute_id, current_user, data.outcome)

@router.post("/{dispute_id}/reject", response_model=DisputeOut, summary="(管理員) 駁回爭議")
async def reject_dispute(
    dispute_id: str,
    data: DisputeReject,
    current_user: AuthenticatedUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    service = DisputeService(db)
    return await service.reject_dispute(dispute_id, current_user, reason=data.reason)
