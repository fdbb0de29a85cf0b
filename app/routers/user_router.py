# app/routers/user_router.py
from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database import get_db
from app.core.exceptions import NotFound
from app.core.security import get_current_user
from app.repositories.user_repo import UserRepository
from app.schemas.user_schema import AuthenticatedUser, UserOut

router = APIRouter(
    prefix="/users",
    tags=["Users"],
    dependencies=[Depends(get_current_user)] # (重要) 整個路由都需要登入
)

@router.get("/me", response_model=UserOut)
async def read_users_me(
    current_user: AuthenticatedUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """
    獲取當前登入使用者的基本資料
    """
    user = await UserRepository(db).get_user_by_id(current_user.user_id)
    if user is None:
        raise NotFound("使用者不存在")
    return user
