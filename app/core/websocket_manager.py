# app/core/websocket_manager.py

from fastapi import WebSocket
from typing import Any, Dict, List
import json
import logging

logger = logging.getLogger(__name__)

# 連線管理器：維護 'user_id' -> List[WebSocket] 的映射 (同一使用者可開多個分頁)
class ConnectionManager:
    """管理 WebSocket 連線：把事件推送給特定使用者的所有連線。"""

    def __init__(self):
        # 結構: {user_id: [WebSocket, ...]}
        self.active_connections: Dict[str, List[WebSocket]] = {}

    async def connect(self, user_id: str, websocket: WebSocket):
        await websocket.accept()
        self.active_connections.setdefault(user_id, []).append(websocket)
        logger.info(f"User {user_id} connected. Total connections: {len(self.active_connections[user_id])}")

    def disconnect(self, user_id: str, websocket: WebSocket):
        try:
            self.active_connections[user_id].remove(websocket)
            if not self.active_connections[user_id]:
                del self.active_connections[user_id]
            logger.info(f"User {user_id} disconnected.")
        except (KeyError, ValueError):
            pass # 可能是重複斷開

    async def publish(self, user_id: str, event_name: str, payload: Dict[str, Any]) -> None:
        """
        推送事件給使用者。沒有連線時直接略過；單一連線送出失敗只記錄並移除該連線。
        """
        connections = list(self.active_connections.get(user_id, []))
        if not connections:
            return
        text = json.dumps({"event": event_name, "data": payload}, default=str)
        for connection in connections:
            try:
                await connection.send_text(text)
            except Exception as e:
                logger.warning(f"推送失敗 user={user_id}, event={event_name}: {e}")
                self.disconnect(user_id, connection)

# 實例化管理器
manager = ConnectionManager()
