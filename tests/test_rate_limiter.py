"""
Tests for the per-category token bucket rate limiter.

Tests cover:
- RateBucket refill and wait time
- RateLimiter.try_acquire / admit
- Category isolation
- Server-reported remaining quota
- Cancellation while waiting
"""

import asyncio
from unittest.mock import AsyncMock, patch

import pytest

from tradestation.api.rate_limiter import RateBucket, RateCategory, RateLimiter
from tradestation.lib.config import RateLimitConfig


def sleep_advancing(clock, sleeps):
    """asyncio.sleep replacement that moves the fake clock forward."""
    async def _sleep(seconds):
        sleeps.append(seconds)
        clock.advance(seconds)
    return _sleep


# =============================================================================
# RateBucket Tests
# =============================================================================

class TestRateBucket:
    """Tests for RateBucket dataclass."""

    def test_refill_caps_at_capacity(self):
        bucket = RateBucket(RateCategory.DEFAULT, capacity=5, refill_rate=1.0,
                            remaining=4.0, last_refill_time=0.0)

        bucket.refill(10.0)

        assert bucket.remaining == 5.0
        assert bucket.last_refill_time == 10.0

    def test_refill_partial(self):
        bucket = RateBucket(RateCategory.DEFAULT, capacity=5, refill_rate=2.0,
                            remaining=0.0, last_refill_time=0.0)

        bucket.refill(0.25)

        assert bucket.remaining == pytest.approx(0.5)

    def test_wait_time(self):
        bucket = RateBucket(RateCategory.DEFAULT, capacity=5, refill_rate=2.0,
                            remaining=0.5, last_refill_time=0.0)

        assert bucket.wait_time() == pytest.approx(0.25)

        bucket.remaining = 1.0
        assert bucket.wait_time() == 0.0

    def test_clamp_only_lowers(self):
        bucket = RateBucket(RateCategory.DEFAULT, capacity=5, refill_rate=1.0,
                            remaining=3.0, last_refill_time=0.0)

        bucket.clamp(10)
        assert bucket.remaining == 3.0

        bucket.clamp(1)
        assert bucket.remaining == 1.0

        bucket.clamp(-4)
        assert bucket.remaining == 0.0


# =============================================================================
# RateLimiter Tests
# =============================================================================

class TestTryAcquire:
    """Tests for RateLimiter.try_acquire."""

    @pytest.mark.asyncio
    async def test_within_capacity(self, mono_clock):
        limiter = RateLimiter(default_quota=RateLimitConfig(capacity=3, refill_rate=1.0),
                              clock=mono_clock)

        waits = [await limiter.try_acquire(RateCategory.DEFAULT) for _ in range(3)]

        assert waits == [0.0, 0.0, 0.0]

    @pytest.mark.asyncio
    async def test_exhausted_returns_wait_time(self, mono_clock):
        limiter = RateLimiter(default_quota=RateLimitConfig(capacity=2, refill_rate=1.0),
                              clock=mono_clock)
        await limiter.try_acquire("default")
        await limiter.try_acquire("default")

        wait = await limiter.try_acquire("default")

        assert wait == pytest.approx(1.0)
        # A refused attempt does not consume anything
        assert limiter.snapshot()[RateCategory.DEFAULT].remaining == pytest.approx(0.0)

    @pytest.mark.asyncio
    async def test_invalid_quota(self, mono_clock):
        limiter = RateLimiter(quotas={"orders": RateLimitConfig(capacity=0, refill_rate=1.0)},
                              clock=mono_clock)

        with pytest.raises(ValueError, match="Invalid quota"):
            await limiter.try_acquire(RateCategory.ORDERS)

    @pytest.mark.asyncio
    async def test_unknown_category(self, mono_clock):
        limiter = RateLimiter(clock=mono_clock)

        with pytest.raises(ValueError):
            await limiter.try_acquire("not-a-category")


class TestAdmit:
    """Tests for RateLimiter.admit."""

    @pytest.mark.asyncio
    async def test_third_call_waits_one_second(self, mono_clock):
        """capacity=2, refill=1/s: two immediate admissions, the third waits ~1s."""
        limiter = RateLimiter(default_quota=RateLimitConfig(capacity=2, refill_rate=1.0),
                              clock=mono_clock)
        sleeps = []
        start = mono_clock()

        with patch("tradestation.api.rate_limiter.asyncio.sleep",
                   side_effect=sleep_advancing(mono_clock, sleeps)):
            await limiter.admit()
            await limiter.admit()
            assert mono_clock() - start == 0
            await limiter.admit()

        assert sleeps == [pytest.approx(1.0)]
        assert mono_clock() - start == pytest.approx(1.0)

    @pytest.mark.asyncio
    async def test_refills_after_idle(self, mono_clock):
        limiter = RateLimiter(default_quota=RateLimitConfig(capacity=2, refill_rate=1.0),
                              clock=mono_clock)
        await limiter.admit()
        await limiter.admit()

        mono_clock.advance(5)

        with patch("tradestation.api.rate_limiter.asyncio.sleep", new=AsyncMock()) as mock_sleep:
            await limiter.admit()
            await limiter.admit()

        mock_sleep.assert_not_called()

    @pytest.mark.asyncio
    async def test_categories_are_independent(self, mono_clock):
        limiter = RateLimiter(
            quotas={"orders": RateLimitConfig(capacity=1, refill_rate=0.1)},
            default_quota=RateLimitConfig(capacity=5, refill_rate=1.0),
            clock=mono_clock,
        )
        await limiter.admit(RateCategory.ORDERS)

        assert await limiter.try_acquire(RateCategory.ORDERS) > 0
        assert await limiter.try_acquire(RateCategory.MARKET_DATA) == 0.0
        assert await limiter.try_acquire(RateCategory.DEFAULT) == 0.0

    @pytest.mark.asyncio
    async def test_quota_keys_accept_enum(self, mono_clock):
        limiter = RateLimiter(
            quotas={RateCategory.ORDERS: RateLimitConfig(capacity=7, refill_rate=1.0)},
            clock=mono_clock,
        )

        await limiter.admit(RateCategory.ORDERS)

        assert limiter.snapshot()[RateCategory.ORDERS].capacity == 7

    @pytest.mark.asyncio
    async def test_waiters_never_exceed_quota(self):
        """Concurrent admissions over a real clock stay within capacity + rate * elapsed."""
        limiter = RateLimiter(default_quota=RateLimitConfig(capacity=3, refill_rate=100.0))
        loop = asyncio.get_running_loop()
        start = loop.time()

        await asyncio.gather(*(limiter.admit() for _ in range(8)))

        elapsed = loop.time() - start
        # 5 tokens beyond capacity at 100/s need at least ~0.05s
        assert elapsed >= 0.04

    @pytest.mark.asyncio
    async def test_cancelled_waiter_leaves_bucket_untouched(self, mono_clock):
        limiter = RateLimiter(default_quota=RateLimitConfig(capacity=1, refill_rate=1.0),
                              clock=mono_clock)
        await limiter.admit()

        waiter = asyncio.create_task(limiter.admit())
        await asyncio.sleep(0)
        waiter.cancel()

        with pytest.raises(asyncio.CancelledError):
            await waiter

        assert limiter.snapshot()[RateCategory.DEFAULT].remaining == pytest.approx(0.0)


class TestObserveHeaders:
    """Tests for server-reported remaining quota."""

    @pytest.mark.asyncio
    async def test_lowers_local_count(self, mono_clock):
        limiter = RateLimiter(default_quota=RateLimitConfig(capacity=10, refill_rate=1.0),
                              clock=mono_clock)
        await limiter.admit()

        limiter.observe_headers(RateCategory.DEFAULT, {"x-ratelimit-remaining": "2"})

        assert limiter.snapshot()[RateCategory.DEFAULT].remaining == 2.0

    @pytest.mark.asyncio
    async def test_never_raises_local_count(self, mono_clock):
        limiter = RateLimiter(default_quota=RateLimitConfig(capacity=2, refill_rate=1.0),
                              clock=mono_clock)
        await limiter.admit()
        await limiter.admit()

        limiter.observe_headers(RateCategory.DEFAULT, {"X-RateLimit-Remaining": "100"})

        assert limiter.snapshot()[RateCategory.DEFAULT].remaining == 0.0

    def test_ignores_missing_and_invalid(self, mono_clock):
        limiter = RateLimiter(clock=mono_clock)

        limiter.observe_headers(RateCategory.DEFAULT, {})
        limiter.observe_headers(RateCategory.DEFAULT, {"X-RateLimit-Remaining": "lots"})

        assert limiter.snapshot() == {}


class TestReset:
    """Tests for RateLimiter.reset."""

    @pytest.mark.asyncio
    async def test_reset_refills(self, mono_clock):
        limiter = RateLimiter(default_quota=RateLimitConfig(capacity=2, refill_rate=1.0),
                              clock=mono_clock)
        await limiter.admit()
        await limiter.admit()

        limiter.reset()

        assert limiter.snapshot()[RateCategory.DEFAULT].remaining == 2.0
