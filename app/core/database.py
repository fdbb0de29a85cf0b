import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Awaitable, Callable

from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession
from sqlalchemy.orm import sessionmaker, declarative_base
from app.core.config import settings

logger = logging.getLogger(__name__)

# 建立非同步引擎
engine = create_async_engine(
    settings.DATABASE_URL,
    pool_pre_ping=True, # 每次從連線池取連線前，先 PING 一次，確保連線有效
    echo=settings.SQL_ECHO,
)

# 建立非同步 Session
AsyncSessionLocal = sessionmaker(
    bind=engine,
    class_=AsyncSession,
    expire_on_commit=False,
)

# 建立 ORM Model 基底類別
Base = declarative_base()

# (重要) 取得 DB Session 的 Dependency
async def get_db() -> AsyncSession:
    """FastAPI Dependency: 取得非同步資料庫 session"""
    async with AsyncSessionLocal() as session:
        try:
            yield session
        finally:
            await session.close()


# --- 交易邊界 (Unit of Work) ---
# session.info 內的鍵值
_DEPTH_KEY = "uow_depth"
_AFTER_COMMIT_KEY = "uow_after_commit"

AfterCommitCallback = Callable[[], Awaitable[None]]


def add_after_commit(db: AsyncSession, callback: AfterCommitCallback) -> None:
    """
    登記一個在「最外層交易成功 commit 之後」才執行的回呼 (例如即時推播)。
    交易 rollback 時，已登記的回呼會被丟棄。
    """
    db.info.setdefault(_AFTER_COMMIT_KEY, []).append(callback)


@asynccontextmanager
async def unit_of_work(db: AsyncSession) -> AsyncIterator[AsyncSession]:
    """
    一個生命週期操作 = 一個交易。

    - 巢狀呼叫 (例如 接受提案 -> 建立合約 -> 案件轉為已成案) 會併入最外層的交易，
      只有最外層負責 commit / rollback。
    - 任何例外都會 rollback，已 flush 的變更不會部分提交。
    - commit 成功後才執行 add_after_commit 登記的回呼；回呼失敗只記錄日誌。
    """
    depth = db.info.get(_DEPTH_KEY, 0)
    db.info[_DEPTH_KEY] = depth + 1
    if depth > 0:
        try:
            yield db
        finally:
            db.info[_DEPTH_KEY] = depth
        return

    try:
        yield db
        await db.commit()
    except Exception:
        await db.rollback()
        db.info.pop(_AFTER_COMMIT_KEY, None)
        raise
    finally:
        db.info[_DEPTH_KEY] = 0

    callbacks = db.info.pop(_AFTER_COMMIT_KEY, [])
    for callback in callbacks:
        try:
            await callback()
        except Exception as e:
            logger.warning(f"After-commit callback failed: {e}", exc_info=True)
