"""
realtrack.services.broadcaster
~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~

连接广播器 —— 维护在线连接表，把房间事件投递给指定的连接集合。

广播只依赖调用方传入的连接 ID 快照，不读取房间注册表。
每次投递都会等待所有目标连接发送完成后才返回，因此同一连接发出的
事件在所有接收方处保持原有顺序。
"""
from __future__ import annotations

import asyncio
from collections.abc import Iterable
from typing import Any, Protocol

from realtrack.core.logging import get_logger
from realtrack.schemas.events import ServerEvent

logger = get_logger(__name__)


class Transport(Protocol):
    """可发送文本帧的传输层（如 ``fastapi.WebSocket``）。"""

    async def send_text(self, data: str) -> None: ...


class ConnectionHub:
    """在线连接表与事件投递。

    Attributes:
        connections: 连接 ID → 传输对象。
    """

    def __init__(self) -> None:
        self.connections: dict[str, Transport] = {}

    def register(self, connection_id: str, transport: Transport) -> None:
        self.connections[connection_id] = transport

    def unregister(self, connection_id: str) -> None:
        self.connections.pop(connection_id, None)

    async def send(self, connection_id: str, event: ServerEvent[Any]) -> bool:
        """直接回复单个连接（如加入确认）。连接不在线时返回 False。"""
        transport = self.connections.get(connection_id)
        if transport is None:
            return False
        try:
            await transport.send_text(event.encode())
        except Exception as e:
            logger.warning("发送失败 | conn=%s | event=%s | %s", connection_id, event.event, e)
            return False
        return True

    async def broadcast(
        self,
        connection_ids: Iterable[str],
        event: ServerEvent[Any],
        *,
        exclude: str | None = None,
    ) -> int:
        """向一组连接广播事件，返回成功投递的数量。"""
        payload = event.encode()
        targets = [
            (cid, self.connections[cid])
            for cid in connection_ids
            if cid != exclude and cid in self.connections
        ]
        results = await asyncio.gather(
            *(transport.send_text(payload) for _, transport in targets),
            return_exceptions=True,
        )
        delivered = 0
        for (cid, _), result in zip(targets, results):
            if isinstance(result, Exception):
                # 断开的连接由其自身的接收循环负责清理
                logger.warning("广播失败 | conn=%s | event=%s | %s", cid, event.event, result)
            else:
                delivered += 1
        return delivered

    @property
    def online_count(self) -> int:
        """当前在线连接数。"""
        return len(self.connections)
