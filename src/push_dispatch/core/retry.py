"""Retry and circuit breaker policy layered around a delivery gateway.

The dispatch engine never retries on its own. Wrapping the gateway in
``RetryingGateway`` adds bounded retries of whole-call ``TransportError``
failures with exponential backoff and jitter, fronted by a circuit breaker
that fails fast while the transport is known to be down. Per-token outcomes
(including transient ones) are returned untouched.
"""

from __future__ import annotations

import asyncio
import logging
import random
import time
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass
from enum import Enum

from push_dispatch.exceptions import CircuitOpenError, TransportError
from push_dispatch.types import (
    DeliveryGateway,
    DeliveryOutcome,
    PlatformMessage,
    TokenTarget,
    TopicTarget,
)
from push_dispatch.utils.logging import get_logger, log_with_context
from push_dispatch.utils.sanitization import sanitize_exception

__all__ = ["CircuitBreaker", "CircuitBreakerState", "RetryPolicy", "RetryingGateway"]


class CircuitBreakerState(Enum):
    """States for the circuit breaker."""

    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreaker:
    """Circuit breaker counting consecutive transport failures.

    Args:
        failure_threshold: Consecutive failures before opening the circuit
        recovery_timeout: Seconds to stay open before allowing a trial call
        clock: Monotonic clock, injectable for tests
    """

    def __init__(
        self,
        failure_threshold: int = 5,
        recovery_timeout: float = 60.0,
        *,
        clock: Callable[[], float] = time.monotonic,
        logger_obj: logging.Logger | None = None,
    ) -> None:
        if failure_threshold < 1:
            msg = "failure_threshold must be >= 1"
            raise ValueError(msg)
        self.failure_threshold: int = failure_threshold
        self.recovery_timeout: float = recovery_timeout
        self.failure_count: int = 0
        self.last_failure_time: float = 0.0
        self.state: CircuitBreakerState = CircuitBreakerState.CLOSED
        self._clock: Callable[[], float] = clock
        self._logger: logging.Logger = logger_obj or get_logger(__name__)

    def before_call(self) -> None:
        """Raise ``CircuitOpenError`` unless a call may proceed."""
        if self.state is not CircuitBreakerState.OPEN:
            return
        if self._clock() - self.last_failure_time >= self.recovery_timeout:
            self.state = CircuitBreakerState.HALF_OPEN
            self._logger.info("Circuit breaker transitioning to HALF_OPEN state")
            return
        msg = "Gateway circuit breaker is open"
        raise CircuitOpenError(msg)

    def record_success(self) -> None:
        if self.state is not CircuitBreakerState.CLOSED:
            self._logger.info("Circuit breaker transitioning to CLOSED state")
        self.state = CircuitBreakerState.CLOSED
        self.failure_count = 0

    def record_failure(self) -> None:
        self.failure_count += 1
        self.last_failure_time = self._clock()
        if self.state is CircuitBreakerState.HALF_OPEN or self.failure_count >= self.failure_threshold:
            if self.state is not CircuitBreakerState.OPEN:
                self._logger.warning("Circuit breaker opening after %d failures", self.failure_count)
            self.state = CircuitBreakerState.OPEN


@dataclass(slots=True, frozen=True)
class RetryPolicy:
    """Retry parameters for whole-call transport failures.

    ``max_attempts=1`` disables retries.
    """

    max_attempts: int = 1
    backoff_factor: float = 2.0
    jitter: bool = True

    def delay_for(self, attempt: int, rng: random.Random) -> float:
        """Backoff before retry number ``attempt`` (0-based)."""
        base_delay = self.backoff_factor**attempt
        if self.jitter:
            return base_delay * rng.uniform(0.5, 1.5)
        return base_delay


class RetryingGateway:
    """DeliveryGateway decorator applying a retry policy and circuit breaker."""

    def __init__(
        self,
        inner: DeliveryGateway,
        *,
        policy: RetryPolicy | None = None,
        circuit_breaker: CircuitBreaker | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        rng: random.Random | None = None,
        logger_obj: logging.Logger | None = None,
    ) -> None:
        self._inner: DeliveryGateway = inner
        self._policy: RetryPolicy = policy or RetryPolicy()
        if self._policy.max_attempts < 1:
            msg = "max_attempts must be >= 1"
            raise ValueError(msg)
        self._breaker: CircuitBreaker | None = circuit_breaker
        self._sleep: Callable[[float], Awaitable[None]] = sleep
        self._rng: random.Random = rng or random.Random()
        self._logger: logging.Logger = logger_obj or get_logger(__name__)

    async def send_to_target(
        self,
        message: PlatformMessage,
        target: TokenTarget | TopicTarget,
    ) -> DeliveryOutcome:
        return await self._call("send_to_target", lambda: self._inner.send_to_target(message, target))

    async def send_to_batch(
        self,
        message: PlatformMessage,
        tokens: Sequence[str],
    ) -> Sequence[DeliveryOutcome]:
        return await self._call("send_to_batch", lambda: self._inner.send_to_batch(message, tokens))

    async def subscribe_topic(self, tokens: Sequence[str], topic: str) -> Sequence[DeliveryOutcome]:
        return await self._call("subscribe_topic", lambda: self._inner.subscribe_topic(tokens, topic))

    async def unsubscribe_topic(self, tokens: Sequence[str], topic: str) -> Sequence[DeliveryOutcome]:
        return await self._call("unsubscribe_topic", lambda: self._inner.unsubscribe_topic(tokens, topic))

    async def _call[R](self, operation: str, func: Callable[[], Awaitable[R]]) -> R:
        max_attempts = self._policy.max_attempts
        for attempt in range(max_attempts):
            if self._breaker is not None:
                self._breaker.before_call()
            try:
                result = await func()
            except CircuitOpenError:
                raise
            except TransportError as exc:
                if self._breaker is not None:
                    self._breaker.record_failure()
                if attempt == max_attempts - 1:
                    log_with_context(
                        self._logger,
                        logging.ERROR,
                        "All gateway attempts failed",
                        extra={
                            "operation": operation,
                            "attempts": max_attempts,
                            "error_message": sanitize_exception(exc),
                        },
                    )
                    raise
                delay = self._policy.delay_for(attempt, self._rng)
                log_with_context(
                    self._logger,
                    logging.INFO,
                    "Gateway attempt failed, retrying",
                    extra={
                        "operation": operation,
                        "attempt": attempt + 1,
                        "max_attempts": max_attempts,
                        "retry_delay_seconds": round(delay, 3),
                        "error_message": sanitize_exception(exc),
                    },
                )
                await self._sleep(delay)
            else:
                if self._breaker is not None:
                    self._breaker.record_success()
                return result
        msg = "retry loop exited without a result"
        raise AssertionError(msg)
