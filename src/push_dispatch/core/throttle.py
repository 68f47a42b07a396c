"""Token bucket throttle for gateway calls."""

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field

__all__ = ["TokenBucket", "TokenBucketThrottle"]


@dataclass(slots=True)
class TokenBucket:
    """Token bucket refilled continuously at ``refill_rate`` tokens per second."""

    capacity: int
    tokens: float
    refill_rate: float
    last_update: float = field(default_factory=time.monotonic)

    def refill(self, now: float) -> None:
        elapsed = max(0.0, now - self.last_update)
        self.tokens = min(float(self.capacity), self.tokens + elapsed * self.refill_rate)
        self.last_update = now

    def consume(self, now: float, tokens: int = 1) -> bool:
        """Consume tokens if available.

        Args:
            now: Current monotonic time
            tokens: Number of tokens to consume

        Returns:
            True if tokens were consumed, False if not enough tokens
        """
        self.refill(now)
        if self.tokens >= tokens:
            self.tokens -= tokens
            return True
        return False

    def get_wait_time(self, tokens: int = 1) -> float:
        """Seconds until ``tokens`` become available (0.0 when available now)."""
        if self.tokens >= tokens:
            return 0.0
        return (tokens - self.tokens) / self.refill_rate


class TokenBucketThrottle:
    """Async throttle allowing at most ``rate_per_second`` gateway calls per second.

    Bursts of up to ``burst`` calls pass immediately; afterwards callers wait
    for the bucket to refill. Waiters are served one at a time so the rate
    holds under concurrent chunk tasks.

    Args:
        rate_per_second: Sustained calls per second, must be > 0
        burst: Bucket capacity, must be >= 1
        clock: Monotonic clock, injectable for tests
        sleep: Sleep coroutine, injectable for tests
    """

    def __init__(
        self,
        rate_per_second: float,
        *,
        burst: int = 1,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        if rate_per_second <= 0:
            msg = "rate_per_second must be greater than zero"
            raise ValueError(msg)
        if burst < 1:
            msg = "burst must be >= 1"
            raise ValueError(msg)
        self._clock: Callable[[], float] = clock
        self._sleep: Callable[[float], Awaitable[None]] = sleep
        self._bucket: TokenBucket = TokenBucket(
            capacity=burst,
            tokens=float(burst),
            refill_rate=rate_per_second,
            last_update=clock(),
        )
        self._lock: asyncio.Lock = asyncio.Lock()
        self.total_waited: float = 0.0

    async def acquire(self) -> None:
        """Wait until one gateway call is permitted."""
        async with self._lock:
            while not self._bucket.consume(self._clock()):
                wait = self._bucket.get_wait_time()
                self.total_waited += wait
                await self._sleep(wait)
