"""
Per-category token bucket rate limiting.

Every outbound call (REST or stream-open) passes through RateLimiter.admit()
with the category of its endpoint group. Each category owns an independent
bucket, so exhausting the order quota never delays market data calls.

Admission never fails: a caller that finds its bucket empty sleeps until the
next token is due and checks again.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, replace
from enum import Enum
from typing import Callable, Mapping, Optional, Union

from tradestation.lib.config import RateLimitConfig
from tradestation.lib.constants import RATE_LIMIT_REMAINING_HEADER

logger = logging.getLogger(__name__)


class RateCategory(str, Enum):
    """Endpoint groups sharing one rate-limit quota."""
    DEFAULT = "default"
    ORDERS = "orders"
    MARKET_DATA = "marketdata"
    STREAM_OPEN = "stream-open"


@dataclass
class RateBucket:
    """Token bucket for one category.

    Attributes:
        category: Category the bucket meters
        capacity: Maximum number of stored tokens
        refill_rate: Tokens added per second
        remaining: Tokens currently available (0 <= remaining <= capacity)
        last_refill_time: Clock reading of the last refill
    """
    category: RateCategory
    capacity: int
    refill_rate: float
    remaining: float
    last_refill_time: float

    def refill(self, now: float) -> None:
        """Add tokens for the time elapsed since the last refill, capped at capacity."""
        elapsed = max(0.0, now - self.last_refill_time)
        self.remaining = min(float(self.capacity), self.remaining + elapsed * self.refill_rate)
        self.last_refill_time = now

    def wait_time(self) -> float:
        """Seconds until at least one token is available."""
        if self.remaining >= 1:
            return 0.0
        return (1 - self.remaining) / self.refill_rate

    def clamp(self, remaining: float) -> None:
        """Lower the available tokens to a server-reported value (never raises them)."""
        self.remaining = max(0.0, min(self.remaining, float(remaining)))


class RateLimiter:
    """Token bucket rate limiter keyed by endpoint category.

    The refill-then-decrement step runs under a per-bucket lock; waiting
    happens outside the lock so other categories and other waiters proceed.

    Example:
        limiter = RateLimiter({"orders": RateLimitConfig(capacity=10, refill_rate=1.0)})
        await limiter.admit(RateCategory.ORDERS)
    """

    def __init__(
        self,
        quotas: Optional[Mapping[str, RateLimitConfig]] = None,
        default_quota: Optional[RateLimitConfig] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        """Initialize rate limiter.

        Args:
            quotas: Per-category quotas keyed by category value
            default_quota: Quota for categories without an explicit entry
            clock: Monotonic clock in seconds
        """
        self._quotas = {
            getattr(key, "value", key): quota for key, quota in (quotas or {}).items()
        }
        self._default_quota = default_quota or RateLimitConfig()
        self._clock = clock
        self._buckets: dict[RateCategory, RateBucket] = {}
        self._locks: dict[RateCategory, asyncio.Lock] = {}

    def _bucket(self, category: RateCategory) -> RateBucket:
        bucket = self._buckets.get(category)
        if bucket is None:
            quota = self._quotas.get(category.value, self._default_quota)
            if quota.capacity < 1 or quota.refill_rate <= 0:
                raise ValueError(
                    f"Invalid quota for {category.value}: capacity={quota.capacity}, "
                    f"refill_rate={quota.refill_rate}"
                )
            bucket = RateBucket(
                category=category,
                capacity=quota.capacity,
                refill_rate=quota.refill_rate,
                remaining=float(quota.capacity),
                last_refill_time=self._clock(),
            )
            self._buckets[category] = bucket
            self._locks[category] = asyncio.Lock()
        return bucket

    async def try_acquire(self, category: Union[RateCategory, str]) -> float:
        """Take one token if available.

        Returns:
            0.0 if admitted, otherwise seconds to wait before retrying
        """
        category = RateCategory(category)
        bucket = self._bucket(category)

        async with self._locks[category]:
            bucket.refill(self._clock())
            if bucket.remaining >= 1:
                bucket.remaining -= 1
                return 0.0
            return bucket.wait_time()

    async def admit(self, category: Union[RateCategory, str] = RateCategory.DEFAULT) -> None:
        """Wait if necessary and take one token from the category's bucket.

        Raises:
            asyncio.CancelledError: If the waiting caller is cancelled
                (the bucket is left untouched)
        """
        while True:
            wait_time = await self.try_acquire(category)
            if wait_time <= 0:
                return
            logger.debug(f"Rate limit [{RateCategory(category).value}]: waiting {wait_time:.2f}s")
            await asyncio.sleep(wait_time)

    def observe_headers(self, category: Union[RateCategory, str], headers: Mapping[str, str]) -> None:
        """Fold server-reported remaining quota into the local bucket.

        Only lowers the local count, so an optimistic server never pushes the
        bucket above what the local refill allows.
        """
        value = None
        wanted = RATE_LIMIT_REMAINING_HEADER.lower()
        for key, header_value in headers.items():
            if key.lower() == wanted:
                value = header_value
                break
        if value is None:
            return

        try:
            remaining = float(value)
        except (TypeError, ValueError):
            logger.debug(f"Ignoring unparsable {RATE_LIMIT_REMAINING_HEADER}: {value!r}")
            return

        bucket = self._bucket(RateCategory(category))
        bucket.refill(self._clock())
        bucket.clamp(remaining)

    def snapshot(self) -> dict[RateCategory, RateBucket]:
        """Copies of the buckets created so far."""
        return {category: replace(bucket) for category, bucket in self._buckets.items()}

    def reset(self) -> None:
        """Refill every bucket to capacity."""
        now = self._clock()
        for bucket in self._buckets.values():
            bucket.remaining = float(bucket.capacity)
            bucket.last_refill_time = now
