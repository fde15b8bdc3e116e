"""
tests.test_reaper
~~~~~~~~~~~~~~~~~

IdleRoomReaper 单元测试：只回收空置超过保留时长的空房间。
"""
from __future__ import annotations

import asyncio

import pytest
from conftest import FakeClock, profile

from realtrack.core.rate_limit import ActionRateLimiter
from realtrack.services.reaper import IdleRoomReaper
from realtrack.services.room_registry import RoomRegistry

RETENTION = 5 * 60 * 60


def make_reaper(registry: RoomRegistry, clock: FakeClock, **kwargs) -> IdleRoomReaper:
    return IdleRoomReaper(
        registry, interval_seconds=60, retention_seconds=RETENTION, clock=clock, **kwargs,
    )


class TestSweep:
    """测试单次扫描。"""

    def test_empty_room_kept_within_retention(self, registry: RoomRegistry, clock: FakeClock) -> None:
        code = registry.create_room()
        registry.join_room(code, "c1", profile())
        registry.remove_member(code, "c1")
        reaper = make_reaper(registry, clock)

        clock.advance(RETENTION)

        assert reaper.sweep() == []
        assert registry.room_exists(code)

    def test_empty_room_reaped_after_retention(self, registry: RoomRegistry, clock: FakeClock) -> None:
        code = registry.create_room()
        registry.join_room(code, "c1", profile(), "u1")
        registry.remove_member(code, "c1")
        reaper = make_reaper(registry, clock)

        clock.advance(RETENTION + 1)

        assert reaper.sweep() == [code]
        assert not registry.room_exists(code)

    def test_occupied_room_never_reaped(self, registry: RoomRegistry, clock: FakeClock) -> None:
        code = registry.create_room()
        registry.join_room(code, "c1", profile())
        reaper = make_reaper(registry, clock)

        clock.advance(RETENTION * 10)

        assert reaper.sweep() == []
        assert registry.room_exists(code)

    def test_activity_resets_retention(self, registry: RoomRegistry, clock: FakeClock) -> None:
        code = registry.create_room()
        reaper = make_reaper(registry, clock)

        clock.advance(RETENTION - 10)
        registry.join_room(code, "c1", profile())
        registry.remove_member(code, "c1")
        clock.advance(60)

        assert reaper.sweep() == []

    def test_never_joined_room_is_reaped(self, registry: RoomRegistry, clock: FakeClock) -> None:
        code = registry.create_room()
        reaper = make_reaper(registry, clock)

        clock.advance(RETENTION + 1)

        assert reaper.sweep() == [code]

    def test_prunes_rate_limiter(self, registry: RoomRegistry, clock: FakeClock) -> None:
        limiter = ActionRateLimiter({"join": 5}, window_seconds=60, clock=clock)
        limiter.is_allowed("c1", "join")
        reaper = make_reaper(registry, clock, rate_limiter=limiter)

        clock.advance(120)
        reaper.sweep()

        assert limiter.tracked_keys == 0


class TestBackgroundTask:
    """测试后台任务的启动与停止。"""

    @pytest.mark.asyncio
    async def test_start_and_stop(self, registry: RoomRegistry, clock: FakeClock) -> None:
        code = registry.create_room()
        clock.advance(RETENTION + 1)
        reaper = IdleRoomReaper(
            registry, interval_seconds=0.01, retention_seconds=RETENTION, clock=clock,
        )

        reaper.start()
        assert reaper.running
        for _ in range(50):
            if not registry.room_exists(code):
                break
            await asyncio.sleep(0.01)
        await reaper.stop()

        assert not registry.room_exists(code)
        assert not reaper.running
