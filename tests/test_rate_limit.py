"""
tests.test_rate_limit
~~~~~~~~~~~~~~~~~~~~~

滑动窗口限流器单元测试（使用可控时钟，不依赖真实等待）。
"""
from __future__ import annotations

from conftest import FakeClock

from realtrack.core.rate_limit import ActionRateLimiter


def make_limiter(clock: FakeClock, **ceilings: int) -> ActionRateLimiter:
    return ActionRateLimiter(ceilings or {"create": 3}, window_seconds=60.0, clock=clock)


class TestActionRateLimiter:
    """测试 ActionRateLimiter 的窗口语义。"""

    def test_exactly_ceiling_allowed_within_window(self, clock: FakeClock) -> None:
        """窗口内恰好允许 ceiling 次，第 ceiling+1 次被拒绝。"""
        limiter = make_limiter(clock, create=3)

        results = [limiter.is_allowed("c1", "create") for _ in range(4)]

        assert results == [True, True, True, False]

    def test_window_rolls(self, clock: FakeClock) -> None:
        """最早的记录滑出窗口后，恢复一次额度。"""
        limiter = make_limiter(clock, create=3)
        limiter.is_allowed("c1", "create")
        clock.advance(30)
        limiter.is_allowed("c1", "create")
        limiter.is_allowed("c1", "create")
        assert limiter.is_allowed("c1", "create") is False

        clock.advance(30)  # 第一条记录刚好满 60 秒
        assert limiter.is_allowed("c1", "create") is True
        assert limiter.is_allowed("c1", "create") is False

    def test_rejected_attempts_do_not_extend_window(self, clock: FakeClock) -> None:
        limiter = make_limiter(clock, create=1)
        assert limiter.is_allowed("c1", "create") is True
        for _ in range(10):
            clock.advance(5)
            assert limiter.is_allowed("c1", "create") is False

        clock.advance(10)
        assert limiter.is_allowed("c1", "create") is True

    def test_keys_are_independent(self, clock: FakeClock) -> None:
        """不同连接、不同动作互不影响。"""
        limiter = make_limiter(clock, create=1, join=1)

        assert limiter.is_allowed("c1", "create") is True
        assert limiter.is_allowed("c1", "join") is True
        assert limiter.is_allowed("c2", "create") is True
        assert limiter.is_allowed("c1", "create") is False

    def test_remove_client(self, clock: FakeClock) -> None:
        limiter = make_limiter(clock, create=1, join=1)
        limiter.is_allowed("c1", "create")
        limiter.is_allowed("c1", "join")
        limiter.is_allowed("c2", "create")

        limiter.remove_client("c1")

        assert limiter.tracked_keys == 1
        assert limiter.is_allowed("c1", "create") is True

    def test_prune_drops_expired_keys(self, clock: FakeClock) -> None:
        limiter = make_limiter(clock, create=3)
        limiter.is_allowed("c1", "create")
        clock.advance(30)
        limiter.is_allowed("c2", "create")
        clock.advance(45)

        assert limiter.prune() == 1
        assert limiter.tracked_keys == 1
