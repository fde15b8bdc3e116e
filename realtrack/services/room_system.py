"""
realtrack.services.room_system
~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~

房间协同系统 —— 组装注册表、限流器、广播器与回收任务。

在 FastAPI lifespan 中显式创建并挂载于 ``app.state.room_system``，
生命周期与进程一致；不存在模块级的全局注册表。
"""
from __future__ import annotations

import random
import time
from collections.abc import Callable

from realtrack.core.logging import get_logger
from realtrack.core.rate_limit import ActionRateLimiter
from realtrack.core.settings import Settings
from realtrack.services.broadcaster import ConnectionHub, Transport
from realtrack.services.presence import PresenceSession
from realtrack.services.reaper import IdleRoomReaper
from realtrack.services.room_registry import RoomRegistry

logger = get_logger(__name__)


class RoomSystem:
    """房间协同系统。

    - ``open_session(connection_id, transport)`` → 为新连接创建会话
    - ``start()`` / ``shutdown()``               → 启动 / 停止后台回收任务

    Attributes:
        registry: 房间注册表。
        rate_limiter: WebSocket 动作限流器。
        hub: 在线连接表与广播器。
        sessions: 连接 ID → 会话。
        reaper: 空房间回收器。
    """

    def __init__(
        self,
        settings: Settings,
        *,
        clock: Callable[[], float] = time.time,
        rng: random.Random | None = None,
    ) -> None:
        self.settings = settings
        self.registry = RoomRegistry(
            max_rooms=settings.MAX_ROOMS,
            max_members=settings.MAX_MEMBERS_PER_ROOM,
            trail_limit=settings.TRAIL_MAX_POINTS,
            clock=clock,
            rng=rng,
        )
        self.rate_limiter = ActionRateLimiter(
            settings.rate_limit_ceilings,
            window_seconds=settings.RATE_LIMIT_WINDOW_SECONDS,
        )
        self.hub = ConnectionHub()
        self.sessions: dict[str, PresenceSession] = {}
        self.reaper = IdleRoomReaper(
            self.registry,
            interval_seconds=settings.REAPER_INTERVAL_SECONDS,
            retention_seconds=settings.ROOM_RETENTION_SECONDS,
            rate_limiter=self.rate_limiter,
            clock=clock,
        )

    def open_session(self, connection_id: str, transport: Transport) -> PresenceSession:
        """登记连接并返回其会话对象。"""
        self.hub.register(connection_id, transport)
        session = PresenceSession(
            connection_id,
            registry=self.registry,
            rate_limiter=self.rate_limiter,
            hub=self.hub,
            sessions=self.sessions,
        )
        self.sessions[connection_id] = session
        return session

    async def start(self) -> None:
        self.reaper.start()

    async def shutdown(self) -> None:
        await self.reaper.stop()
        self.registry.clear_all()
        self.sessions.clear()
        logger.info("房间系统已关闭 | 在线连接: %d", self.hub.online_count)
