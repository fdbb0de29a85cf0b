# app/routers/job_router.py

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession
from typing import List

from app.core.database import get_db
from app.core.security import get_current_user
from app.schemas.job_schema import JobCreate, JobUpdate, JobOut
from app.schemas.user_schema import AuthenticatedUser
from app.services.job_service import JobService

router = APIRouter(
    prefix="/jobs",
    tags=["Jobs"],
    dependencies=[Depends(get_current_user)] # 重要：此 router 下所有 API 都需要登入
)

@router.post("/", response_model=JobOut, status_code=status.HTTP_201_CREATED, summary="(客戶) 建立案件草稿")
async def create_job(
    job_data: JobCreate,
    current_user: AuthenticatedUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    service = JobService(db)
    return await service.create_job(job_data, current_user)

@router.get("/", response_model=List[JobOut], summary="瀏覽開放中的案件")
async def list_open_jobs(
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    db: AsyncSession = Depends(get_db)
):
    service = JobService(db)
    return await service.list_open_jobs(limit=limit, offset=offset)

@router.get("/my", response_model=List[JobOut], summary="(客戶) 我的案件")
async def list_my_jobs(
    current_user: AuthenticatedUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    service = JobService(db)
    return await service.list_my_jobs(current_user)

@router.get("/{job_id}", response_model=JobOut, summary="案件詳情")
async def get_job(job_id: str, db: AsyncSession = Depends(get_db)):
    service = JobService(db)
    return await service.get_job(job_id)

@router.patch("/{job_id}", response_model=JobOut, summary="(客戶) 修改案件")
async def update_job(
    job_id: str,
    job_data: JobUpdate,
    current_user: AuthenticatedUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """
    只有草稿、或已公開但尚無提案的案件可以修改。
    """
    service = JobService(db)
    return await service.update_job(job_id, job_data, current_user)

@router.delete("/{job_id}", status_code=status.HTTP_204_NO_CONTENT, summary="(客戶) 刪除案件")
async def delete_job(
    job_id: str,
    current_user: AuthenticatedUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    service = JobService(db)
    await service.delete_job(job_id, current_user)

@router.post("/{job_id}/publish", response_model=JobOut, summary="(客戶) 公開案件")
async def publish_job(
    job_id: str,
    current_user: AuthenticatedUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    service = JobService(db)
    return await service.publish(job_id, current_user)

@router.post("/{job_id}/complete", response_model=JobOut, summary="(客戶) 驗收完成並撥款")
async def complete_job(
    job_id: str,
    current_user: AuthenticatedUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """
    案件 IN_PROGRESS -> COMPLETED，同時把託管款項撥給工作者。
    款項有處理中的爭議時整個操作失敗。
    """
    service = JobService(db)
    return await service.complete(job_id, current_user)
