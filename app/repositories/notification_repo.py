# app/repositories/notification_repo.py

from sqlalchemy import func, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select
from typing import List, Optional
import logging

from app.models.notification import Notification

logger = logging.getLogger(__name__)

class NotificationRepository:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def create_notification(self, notification: Notification) -> Notification:
        """
        新增一筆通知 (加入呼叫端的交易，只 flush)
        """
        self.db.add(notification)
        await self.db.flush()
        return notification

    async def get_by_event_key(self, user_id: str, event_key: str) -> Optional[Notification]:
        stmt = select(Notification).where(
            Notification.user_id == user_id,
            Notification.event_key == event_key
        )
        result = await self.db.execute(stmt)
        return result.scalars().first()

    async def get_notification_by_id(self, notification_id: str) -> Optional[Notification]:
        """
        依 ID 獲取通知 (主要用於權限檢查)
        """
        stmt = select(Notification).where(Notification.notification_id == notification_id)
        result = await self.db.execute(stmt)
        return result.scalars().first()

    async def list_notifications_by_user(
        self,
        user_id: str,
        limit: int = 20,
        offset: int = 0,
        unread_only: bool = False
    ) -> List[Notification]:
        """
        獲取某位使用者的通知 (依時間降序排列)
        """
        stmt = select(Notification).where(Notification.user_id == user_id)
        if unread_only:
            stmt = stmt.where(Notification.is_read.is_(False))
        stmt = stmt.order_by(Notification.created_at.desc()).limit(limit).offset(offset)
        result = await self.db.execute(stmt)
        return result.scalars().all()

    async def count_unread(self, user_id: str) -> int:
        stmt = select(func.count()).select_from(Notification).where(
            Notification.user_id == user_id,
            Notification.is_read.is_(False)
        )
        result = await self.db.execute(stmt)
        return result.scalar_one()

    async def mark_as_read(self, notification: Notification) -> Notification:
        """
        將單一通知設為已讀
        """
        notification.is_read = True
        await self.db.flush()
        return notification

    async def mark_all_as_read(self, user_id: str) -> int:
        """
        批次更新：只影響 user_id 本人的未讀通知，回傳更新筆數
        """
        stmt = (
            update(Notification)
            .where(
                Notification.user_id == user_id,
                Notification.is_read.is_(False)
            )
            .values(is_read=True)
        )
        result = await self.db.execute(stmt)
        logger.info(f"標記全部已讀: user={user_id}, count={result.rowcount}")
        return result.rowcount
