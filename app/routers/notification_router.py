# app/routers/notification_router.py

from fastapi import APIRouter, Depends, Query, WebSocket, WebSocketDisconnect
from sqlalchemy.ext.asyncio import AsyncSession
from typing import List

from app.core.database import get_db
from app.core.security import get_current_user, get_current_user_from_websocket_token
from app.core.websocket_manager import manager
from app.schemas.notification_schema import NotificationOut, UnreadCountOut, MarkAllReadOut
from app.schemas.user_schema import AuthenticatedUser
from app.services.notification_service import NotificationService

router = APIRouter(
    prefix="/notifications",
    tags=["Notifications"]
)

@router.get(
    "/my",
    response_model=List[NotificationOut],
    summary="獲取我的通知列表"
)
async def get_my_notifications(
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    unread_only: bool = False,
    current_user: AuthenticatedUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """
    獲取當前登入者的通知列表 (依時間倒序)。
    """
    service = NotificationService(db)
    return await service.list_my_notifications(current_user, limit=limit, offset=offset, unread_only=unread_only)

@router.get("/unread-count", response_model=UnreadCountOut, summary="未讀通知數")
async def get_unread_count(
    current_user: AuthenticatedUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    service = NotificationService(db)
    return {"unread": await service.unread_count(current_user)}

@router.patch(
    "/{notification_id}/read",
    response_model=NotificationOut,
    summary="將通知設為已讀"
)
async def mark_as_read(
    notification_id: str,
    current_user: AuthenticatedUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """
    當使用者點擊通知時，前端應呼叫此 API 將其標記為已讀。
    """
    service = NotificationService(db)
    return await service.mark_notification_as_read(notification_id, current_user)

@router.patch("/read-all", response_model=MarkAllReadOut, summary="全部設為已讀")
async def mark_all_as_read(
    current_user: AuthenticatedUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    service = NotificationService(db)
    return {"updated": await service.mark_all_as_read(current_user)}

@router.websocket("/ws")
async def notification_websocket(
    websocket: WebSocket,
    # 前端連線 URL 必須是: /notifications/ws?token=...
    user: AuthenticatedUser = Depends(get_current_user_from_websocket_token),
):
    """
    即時通知推送。伺服器送出 {"event": "notification:new", "data": {...}}。
    """
    await manager.connect(user.user_id, websocket)
    try:
        while True:
            # 只用來偵測斷線，前端送來的內容忽略
            await websocket.receive_text()
    except WebSocketDisconnect:
        manager.disconnect(user.user_id, websocket)
