"""
realtrack.services.reaper
~~~~~~~~~~~~~~~~~~~~~~~~~

空房间回收任务 —— 按固定间隔扫描注册表，删除空置超过保留时长的房间。

仍有成员的房间无论多久没有活动都不会被回收。
同一次扫描还会丢弃过期的离线成员槽位，并清理过期的限流记录。
"""
from __future__ import annotations

import asyncio
import contextlib
import time
from collections.abc import Callable

from realtrack.core.logging import get_logger
from realtrack.core.rate_limit import ActionRateLimiter
from realtrack.services.room_registry import RoomRegistry

logger = get_logger(__name__)


class IdleRoomReaper:
    """空房间回收器。

    Attributes:
        interval_seconds: 扫描间隔。
        retention_seconds: 空房间保留时长。
    """

    def __init__(
        self,
        registry: RoomRegistry,
        *,
        interval_seconds: float = 60.0,
        retention_seconds: float = 5 * 60 * 60,
        rate_limiter: ActionRateLimiter | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.registry = registry
        self.interval_seconds = interval_seconds
        self.retention_seconds = retention_seconds
        self.rate_limiter = rate_limiter
        self._clock = clock
        self._task: asyncio.Task[None] | None = None

    def sweep(self) -> list[str]:
        """执行一次扫描，返回被回收的房间码。"""
        now = self._clock()
        reaped: list[str] = []
        for status in self.registry.list_rooms():
            if status.member_count > 0:
                continue
            if now - status.last_activity_at > self.retention_seconds:
                if self.registry.delete_room(status.code):
                    reaped.append(status.code)

        purged = self.registry.purge_departed(now - self.retention_seconds)
        if self.rate_limiter is not None:
            self.rate_limiter.prune()

        if reaped or purged:
            logger.info("回收完成 | 房间: %s | 离线槽位: %d", reaped, purged)
        return reaped

    async def run(self) -> None:
        while True:
            await asyncio.sleep(self.interval_seconds)
            try:
                self.sweep()
            except Exception as e:
                logger.error("回收任务异常: %s", e, exc_info=True)

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """在当前事件循环中启动后台扫描任务。"""
        if self.running:
            return
        self._task = asyncio.create_task(self.run(), name="idle-room-reaper")
        logger.info(
            "回收任务已启动 | 间隔=%ss | 保留=%ss", self.interval_seconds, self.retention_seconds,
        )

    async def stop(self) -> None:
        """取消后台任务并等待其退出。"""
        if self._task is None:
            return
        self._task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._task
        self._task = None
