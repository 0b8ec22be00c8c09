"""Per-provider token bucket admission control."""

from __future__ import annotations

import asyncio
import logging
import threading
import time
from collections.abc import Awaitable, Callable

from .models import RateLimit

logger = logging.getLogger(__name__)

__all__ = ["TokenBucket", "acquire"]


class TokenBucket:
    """Refillable call budget shared by every caller of one provider.

    Tokens refill continuously at ``refill_rate`` per second up to
    ``capacity``. The refill and the consume/inspect step form one critical
    section so concurrent callers never observe a torn update.
    """

    def __init__(
        self,
        capacity: float,
        refill_rate: float,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if capacity <= 0:
            raise ValueError("capacity must be > 0")
        if refill_rate <= 0:
            raise ValueError("refill_rate must be > 0")
        self._capacity = float(capacity)
        self._refill_rate = float(refill_rate)
        self._clock = clock
        self._tokens = self._capacity
        self._last_refill = clock()
        self._lock = threading.Lock()

    @classmethod
    def from_rate_limit(
        cls, rate_limit: RateLimit, *, clock: Callable[[], float] = time.monotonic
    ) -> "TokenBucket":
        return cls(rate_limit.capacity, rate_limit.refill_rate, clock=clock)

    @property
    def capacity(self) -> float:
        return self._capacity

    @property
    def refill_rate(self) -> float:
        return self._refill_rate

    def _refill(self) -> None:
        now = self._clock()
        elapsed = max(0.0, now - self._last_refill)
        self._last_refill = now
        self._tokens = min(self._capacity, self._tokens + elapsed * self._refill_rate)

    def _check_cost(self, cost: float) -> None:
        if cost <= 0:
            raise ValueError("cost must be > 0")
        if cost > self._capacity:
            raise ValueError(f"cost {cost} exceeds bucket capacity {self._capacity}")

    def try_consume(self, cost: float = 1.0) -> bool:
        """Take *cost* tokens if available; leave the bucket untouched otherwise."""

        self._check_cost(cost)
        with self._lock:
            self._refill()
            if self._tokens >= cost:
                self._tokens -= cost
                return True
            return False

    def time_until_available(self, cost: float = 1.0) -> float:
        """Seconds until *cost* tokens will be available (0.0 when they already are)."""

        self._check_cost(cost)
        with self._lock:
            self._refill()
            needed = cost - self._tokens
            if needed <= 0:
                return 0.0
            return needed / self._refill_rate


async def acquire(
    bucket: TokenBucket,
    cost: float = 1.0,
    *,
    sleep: Callable[[float], Awaitable[None]] | None = None,
    label: str = "",
) -> float:
    """Wait until *bucket* admits a call of *cost*; return the total time slept.

    Requests are delayed, never dropped.
    """

    sleep_impl = sleep or asyncio.sleep
    waited = 0.0
    while not bucket.try_consume(cost):
        delay = bucket.time_until_available(cost)
        if delay <= 0:
            continue
        logger.debug("Rate limit reached%s; waiting %.3f s", f" for {label}" if label else "", delay)
        await sleep_impl(delay)
        waited += delay
    return waited
