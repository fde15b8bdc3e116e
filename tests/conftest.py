"""
tests.conftest
~~~~~~~~~~~~~~

共享 pytest fixtures —— 可控时钟、假传输层与预先组装好的房间系统，
使单元测试无需真实网络连接或等待真实时间流逝。
"""
from __future__ import annotations

import json
import os
import random
from collections.abc import Callable
from typing import Any

import pytest

# ── 在所有测试导入前设置环境变量 ─────────────────────────────────────
os.environ.setdefault("ENVIRONMENT", "test")

from realtrack.core.settings import Settings  # noqa: E402
from realtrack.services.presence import PresenceSession  # noqa: E402
from realtrack.services.room import MemberProfile  # noqa: E402
from realtrack.services.room_registry import RoomRegistry  # noqa: E402
from realtrack.services.room_system import RoomSystem  # noqa: E402


class FakeClock:
    """可手动推进的时钟（秒）。"""

    def __init__(self, start: float = 1_700_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeTransport:
    """记录所有已发送帧的假 WebSocket。"""

    def __init__(self) -> None:
        self.sent: list[dict[str, Any]] = []

    async def send_text(self, data: str) -> None:
        self.sent.append(json.loads(data))

    def events(self, name: str | None = None) -> list[dict[str, Any]]:
        """返回已收到的事件（可按事件名过滤）。"""
        return [e for e in self.sent if name is None or e["event"] == name]

    def last(self, name: str) -> dict[str, Any]:
        matching = self.events(name)
        assert matching, f"未收到 {name} 事件，实际收到: {[e['event'] for e in self.sent]}"
        return matching[-1]["data"]

    def clear(self) -> None:
        self.sent.clear()


class BrokenTransport:
    """发送总是失败的传输层，模拟已断开的连接。"""

    async def send_text(self, data: str) -> None:
        raise ConnectionResetError("connection lost")


def frame(event: str, **data: Any) -> str:
    """构造一帧客户端消息。"""
    return json.dumps({"event": event, "data": data})


def profile(name: str = "Alice", avatar: str = "😊") -> MemberProfile:
    return MemberProfile(display_name=name, avatar=avatar)


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def registry(clock: FakeClock) -> RoomRegistry:
    return RoomRegistry(clock=clock, rng=random.Random(42))


@pytest.fixture()
def test_settings() -> Settings:
    return Settings(ENVIRONMENT="test")


@pytest.fixture()
def system(test_settings: Settings, clock: FakeClock) -> RoomSystem:
    return RoomSystem(test_settings, clock=clock, rng=random.Random(7))


@pytest.fixture()
def connect(system: RoomSystem) -> Callable[[str], tuple[PresenceSession, FakeTransport]]:
    """为房间系统打开一个新连接，返回 ``(session, transport)``。"""

    def _connect(connection_id: str) -> tuple[PresenceSession, FakeTransport]:
        transport = FakeTransport()
        return system.open_session(connection_id, transport), transport

    return _connect
