# app/services/notification_service.py

from sqlalchemy.ext.asyncio import AsyncSession
from typing import Any, Dict, List, Optional, Protocol

from app.core.database import add_after_commit, unit_of_work
from app.core.exceptions import NotFound, Forbidden
from app.core.websocket_manager import manager
from app.models.notification import Notification
from app.repositories.notification_repo import NotificationRepository
from app.schemas.notification_schema import NotificationOut
from app.schemas.user_schema import AuthenticatedUser

import logging

logger = logging.getLogger(__name__)

NOTIFICATION_EVENT = "notification:new"

class NotificationType:
    PROPOSAL_SUBMITTED = "PROPOSAL_SUBMITTED"
    PROPOSAL_OFFERED = "PROPOSAL_OFFERED"
    PROPOSAL_ACCEPTED = "PROPOSAL_ACCEPTED"
    PROPOSAL_REJECTED = "PROPOSAL_REJECTED"
    PROPOSAL_WITHDRAWN = "PROPOSAL_WITHDRAWN"
    CONTRACT_CREATED = "CONTRACT_CREATED"
    CONTRACT_CANCELLED = "CONTRACT_CANCELLED"
    JOB_STARTED = "JOB_STARTED"
    JOB_COMPLETED = "JOB_COMPLETED"
    ESCROW_PAID = "ESCROW_PAID"
    ESCROW_FAILED = "ESCROW_FAILED"
    ESCROW_RELEASED = "ESCROW_RELEASED"
    ESCROW_REFUNDED = "ESCROW_REFUNDED"
    DISPUTE_OPENED = "DISPUTE_OPENED"
    DISPUTE_RESOLVED = "DISPUTE_RESOLVED"
    DISPUTE_REJECTED = "DISPUTE_REJECTED"


class Publisher(Protocol):
    async def publish(self, user_id: str, event_name: str, payload: Dict[str, Any]) -> None: ...


class NotificationService:
    def __init__(self, db: AsyncSession, publisher: Optional[Publisher] = None):
        self.db = db
        self.repo = NotificationRepository(db)
        self.publisher = publisher or manager

    async def emit(
        self,
        user_id: str,
        type: str,
        title: str,
        message: Optional[str] = None,
        link_url: Optional[str] = None,
        event_key: Optional[str] = None,
    ) -> Notification:
        """
        (內部使用) 供其他 Service 呼叫的介面。

        通知列加入呼叫端的交易；即時推播登記在 commit 之後才送出，
        交易 rollback 時不會推播，推播失敗也不會影響已 commit 的通知。
        帶 event_key 時，同一使用者同一事件只會建立一次。
        """
        if event_key:
            existing = await self.repo.get_by_event_key(user_id, event_key)
            if existing:
                logger.info(f"通知已存在，略過: user={user_id}, event_key={event_key}")
                return existing

        notification = await self.repo.create_notification(Notification(
            user_id=user_id,
            type=type,
            title=title,
            message=message,
            link_url=link_url,
            event_key=event_key,
            is_read=False,
        ))
        logger.info(f"建立通知 for User ID: {user_id}, Type: {type}, Title: {title}, Link: {link_url}")

        payload = NotificationOut.model_validate(notification).model_dump(mode="json")
        publisher = self.publisher

        async def push():
            await publisher.publish(user_id, NOTIFICATION_EVENT, payload)

        add_after_commit(self.db, push)
        return notification

    async def list_my_notifications(
        self,
        user: AuthenticatedUser,
        limit: int = 20,
        offset: int = 0,
        unread_only: bool = False
    ) -> List[Notification]:
        """
        (API 用) 獲取當前登入者的通知列表
        """
        return await self.repo.list_notifications_by_user(
            user.user_id, limit=limit, offset=offset, unread_only=unread_only
        )

    async def unread_count(self, user: AuthenticatedUser) -> int:
        return await self.repo.count_unread(user.user_id)

    async def mark_notification_as_read(
        self,
        notification_id: str,
        user: AuthenticatedUser
    ) -> Notification:
        """
        (API 用) 將通知設為已讀，並檢查權限
        """
        async with unit_of_work(self.db):
            notification = await self.repo.get_notification_by_id(notification_id)

            if not notification:
                raise NotFound("通知不存在")

            # (重要) 只能標記自己的通知
            if notification.user_id != user.user_id:
                raise Forbidden("無權操作此通知")

            if notification.is_read:
                return notification # 已讀，直接回傳

            return await self.repo.mark_as_read(notification)

    async def mark_all_as_read(self, user: AuthenticatedUser) -> int:
        """
        (API 用) 將當前登入者的所有通知設為已讀，不影響其他使用者
        """
        async with unit_of_work(self.db):
            return await self.repo.mark_all_as_read(user.user_id)
