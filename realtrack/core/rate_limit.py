"""
realtrack.core.rate_limit
~~~~~~~~~~~~~~~~~~~~~~~~~

API 与 WebSocket 的限流配置。

- HTTP 接口：slowapi ``Limiter``，按客户端 IP 限流。
- WebSocket 动作：:class:`ActionRateLimiter`，按 ``(连接, 动作)`` 维护 60 秒滑动窗口。
"""
from __future__ import annotations

import time
from collections import deque
from collections.abc import Callable, Mapping

from slowapi import Limiter
from slowapi.util import get_remote_address

# --------- HTTP 接口限流器 ---------
# 基于客户端 IP 地址进行限流
limiter = Limiter(key_func=get_remote_address)


# --------- WebSocket 限流器 ---------
class ActionRateLimiter:
    """基于内存的滑动窗口限流器。

    每个 ``(client_id, action)`` 维护一个时间戳队列。检查时先淘汰窗口外的记录，
    若剩余次数仍低于该动作的上限则放行并记录本次时间戳，否则拒绝。
    被拒绝的尝试不计入窗口，客户端停止刷屏后即可恢复。

    Attributes:
        window_seconds: 滑动窗口长度（秒）。
        ceilings: 动作类型 → 窗口内允许的最大次数。
    """

    def __init__(
        self,
        ceilings: Mapping[str, int],
        window_seconds: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.window_seconds = window_seconds
        self.ceilings: dict[str, int] = dict(ceilings)
        self._clock = clock
        self._hits: dict[tuple[str, str], deque[float]] = {}

    def _evict(self, hits: deque[float], now: float) -> None:
        while hits and now - hits[0] >= self.window_seconds:
            hits.popleft()

    def is_allowed(self, client_id: str, action: str) -> bool:
        """检查客户端的某个动作是否允许执行。

        Args:
            client_id: 连接唯一标识。
            action: 动作类型，必须在 ``ceilings`` 中配置过。

        Returns:
            是否允许。允许时会同时记录本次时间戳。
        """
        ceiling = self.ceilings[action]
        now = self._clock()
        hits = self._hits.setdefault((client_id, action), deque())
        self._evict(hits, now)
        if len(hits) >= ceiling:
            return False
        hits.append(now)
        return True

    def remove_client(self, client_id: str) -> None:
        """清理断开连接的客户端的全部记录。"""
        for key in [k for k in self._hits if k[0] == client_id]:
            del self._hits[key]

    def prune(self) -> int:
        """淘汰所有过期记录并删除空队列，返回删除的键数量。"""
        now = self._clock()
        removed = 0
        for key, hits in list(self._hits.items()):
            self._evict(hits, now)
            if not hits:
                del self._hits[key]
                removed += 1
        return removed

    @property
    def tracked_keys(self) -> int:
        """当前跟踪中的 ``(连接, 动作)`` 数量。"""
        return len(self._hits)
