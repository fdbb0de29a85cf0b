# app/models/notification.py

import uuid
from sqlalchemy import Column, String, TEXT, BOOLEAN, CHAR, ForeignKey, TIMESTAMP, UniqueConstraint
from app.core.database import Base
from app.models.base import utcnow

class Notification(Base):
    __tablename__ = "notifications"
    __table_args__ = (
        # 同一事件對同一使用者只會產生一則通知 (event_key 為 NULL 時不受限)
        UniqueConstraint("user_id", "event_key", name="uq_notification_user_event"),
    )

    notification_id = Column(CHAR(36), primary_key=True, default=lambda: str(uuid.uuid4()))

    # (重要) 關聯到接收通知的 user
    user_id = Column(CHAR(36), ForeignKey("users.user_id", ondelete="CASCADE"), nullable=False, index=True)

    type = Column(String(50), nullable=False)
    title = Column(String(255), nullable=False)
    message = Column(TEXT)

    # (關鍵) 點擊通知後要導向的前端 URL
    link_url = Column(String(500))

    event_key = Column(String(150), nullable=True)

    is_read = Column(BOOLEAN, default=False, nullable=False)
    created_at = Column(TIMESTAMP, default=utcnow)
