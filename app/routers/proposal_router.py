# app/routers/proposal_router.py

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession
from typing import List

from app.core.database import get_db
from app.core.security import get_current_user
from app.schemas.proposal_schema import ProposalCreate, ProposalOut, ProposalAcceptOut
from app.schemas.user_schema import AuthenticatedUser
from app.services.proposal_service import ProposalService

# 建立 API Router
router = APIRouter(
    prefix="/proposals",
    tags=["Proposals"],
    dependencies=[Depends(get_current_user)] # 重要：此 router 下所有 API 都需要登入
)

# -----------------------------------------------------------------
# 掛在 /jobs/ 下的提案 API (提交、客戶檢視)
# -----------------------------------------------------------------
job_proposal_router = APIRouter(
    prefix="/jobs",
    tags=["Proposals"], # 歸類到同一個 Tag
    dependencies=[Depends(get_current_user)]
)

@job_proposal_router.post(
    "/{job_id}/proposals",
    response_model=ProposalOut,
    status_code=status.HTTP_201_CREATED,
    summary="(工作者) 提交提案"
)
async def submit_proposal(
    job_id: str,
    proposal_data: ProposalCreate,
    db: AsyncSession = Depends(get_db),
    current_user: AuthenticatedUser = Depends(get_current_user)
):
    service = ProposalService(db)
    return await service.submit_proposal(job_id, proposal_data, current_user)

@job_proposal_router.get(
    "/{job_id}/proposals",
    response_model=List[ProposalOut],
    summary="(客戶) 檢視案件的所有提案"
)
async def list_job_proposals(
    job_id: str,
    db: AsyncSession = Depends(get_db),
    current_user: AuthenticatedUser = Depends(get_current_user)
):
    service = ProposalService(db)
    return await service.list_for_job(job_id, current_user)

# -----------------------------------------------------------------
# /proposals/ 下的提案 API
# -----------------------------------------------------------------
@router.get("/my", response_model=List[ProposalOut], summary="(工作者) 我的提案")
async def list_my_proposals(
    db: AsyncSession = Depends(get_db),
    current_user: AuthenticatedUser = Depends(get_current_user)
):
    service = ProposalService(db)
    return await service.list_mine(current_user)

@router.get("/{proposal_id}", response_model=ProposalOut, summary="提案詳情")
async def get_proposal(
    proposal_id: str,
    db: AsyncSession = Depends(get_db),
    current_user: AuthenticatedUser = Depends(get_current_user)
):
    service = ProposalService(db)
    return await service.get_proposal(proposal_id, current_user)

@router.post("/{proposal_id}/offer", response_model=ProposalOut, summary="(客戶) 送出邀約")
async def send_offer(
    proposal_id: str,
    db: AsyncSession = Depends(get_db),
    current_user: AuthenticatedUser = Depends(get_current_user)
):
    service = ProposalService(db)
    return await service.send_offer(proposal_id, current_user)

@router.post("/{proposal_id}/accept", response_model=ProposalAcceptOut, summary="接受提案 / 接受邀約")
async def accept_proposal(
    proposal_id: str,
    db: AsyncSession = Depends(get_db),
    current_user: AuthenticatedUser = Depends(get_current_user)
):
    """
    - 客戶：直接接受 PENDING 的提案
    - 工作者：接受客戶送出的邀約 (OFFERED)

    成功時同案件的其他提案會被拒絕，並自動成立合約。
    """
    service = ProposalService(db)
    proposal, contract = await service.accept_proposal(proposal_id, current_user)
    return {"proposal": proposal, "contract": contract}

@router.post("/{proposal_id}/decline", response_model=ProposalOut, summary="(客戶) 婉拒提案")
async def decline_proposal(
    proposal_id: str,
    db: AsyncSession = Depends(get_db),
    current_user: AuthenticatedUser = Depends(get_current_user)
):
    service = ProposalService(db)
    return await service.decline_proposal(proposal_id, current_user)

@router.post("/{proposal_id}/reject-offer", response_model=ProposalOut, summary="(工作者) 婉拒邀約")
async def reject_offer(
    proposal_id: str,
    db: AsyncSession = Depends(get_db),
    current_user: AuthenticatedUser = Depends(get_current_user)
):
    service = ProposalService(db)
    return await service.reject_offer(proposal_id, current_user)

@router.post("/{proposal_id}/withdraw", response_model=ProposalOut, summary="(工作者) 撤回提案")
async def withdraw_proposal(
    proposal_id: str,
    db: AsyncSession = Depends(get_db),
    current_user: AuthenticatedUser = Depends(get_current_user)
):
    service = ProposalService(db)
    return await service.withdraw_proposal(proposal_id, current_user)
