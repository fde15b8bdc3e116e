"""
realtrack.api.presence_ws
~~~~~~~~~~~~~~~~~~~~~~~~~

WebSocket 实时位置共享接口。

提供 ``/ws`` 端点。每个连接分配一个 ``ws-xxxxxxxxxxxx`` 形式的连接 ID，
并由一个 :class:`~realtrack.services.presence.PresenceSession` 处理全部事件。

消息协议（JSON 文本帧）:
  - 客户端 → 服务端：``{"event": "join_room", "data": {...}}`` 等
  - 服务端 → 客户端：``{"event": "location_update", "data": {...}}`` 等

同一连接的事件按到达顺序逐个处理，处理完（含广播）再读取下一帧。
"""
from __future__ import annotations

import uuid

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from realtrack.core.logging import get_logger, request_id_ctx_var
from realtrack.services.room_system import RoomSystem

logger = get_logger(__name__)

router: APIRouter = APIRouter()


def new_connection_id() -> str:
    return f"ws-{uuid.uuid4().hex[:12]}"


@router.websocket("/ws")
async def presence_endpoint(websocket: WebSocket) -> None:
    """WebSocket 在线会话端点。

    Args:
        websocket: FastAPI WebSocket 连接对象。
    """
    connection_id = new_connection_id()
    token = request_id_ctx_var.set(connection_id)

    try:
        system: RoomSystem = websocket.app.state.room_system
        await websocket.accept()
        session = system.open_session(connection_id, websocket)
        logger.info("连接已建立 | 在线连接: %d", system.hub.online_count)

        try:
            while True:
                raw: str = await websocket.receive_text()
                await session.handle_text(raw)
        except WebSocketDisconnect:
            pass  # 正常断开
        except Exception as e:
            logger.error("WebSocket 接收异常: %s", e, exc_info=True)
        finally:
            # 无论何种方式断开，都必须移除成员并通知房间
            await session.close()
            logger.info("连接已关闭 | 在线连接: %d", system.hub.online_count)
    finally:
        request_id_ctx_var.reset(token)
