"""Tests for the retry policy layer and circuit breaker."""

from __future__ import annotations

import random

import pytest

from push_dispatch.core.retry import CircuitBreaker, CircuitBreakerState, RetryingGateway, RetryPolicy
from push_dispatch.exceptions import CircuitOpenError, TransportError
from push_dispatch.types import MessageKind, OutcomeStatus, PlatformMessage
from tests.fixtures.fakes import FakeGateway

MESSAGE = PlatformMessage(kind=MessageKind.GENERIC, data={}, title="Hi", body="there")


class ManualClock:
    def __init__(self) -> None:
        self.now: float = 0.0

    def __call__(self) -> float:
        return self.now


class RecordingSleep:
    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


class TestCircuitBreaker:
    """State transitions of the circuit breaker."""

    def test_opens_after_threshold_and_fails_fast(self) -> None:
        clock = ManualClock()
        breaker = CircuitBreaker(failure_threshold=2, recovery_timeout=30.0, clock=clock)

        breaker.record_failure()
        breaker.before_call()
        breaker.record_failure()

        assert breaker.state is CircuitBreakerState.OPEN
        with pytest.raises(CircuitOpenError):
            breaker.before_call()

    def test_half_open_after_recovery_timeout_then_closes_on_success(self) -> None:
        clock = ManualClock()
        breaker = CircuitBreaker(failure_threshold=1, recovery_timeout=30.0, clock=clock)
        breaker.record_failure()

        clock.now = 31.0
        breaker.before_call()

        assert breaker.state is CircuitBreakerState.HALF_OPEN
        breaker.record_success()
        assert breaker.state is CircuitBreakerState.CLOSED
        assert breaker.failure_count == 0

    def test_failure_in_half_open_reopens(self) -> None:
        clock = ManualClock()
        breaker = CircuitBreaker(failure_threshold=3, recovery_timeout=5.0, clock=clock)
        for _ in range(3):
            breaker.record_failure()
        clock.now = 10.0
        breaker.before_call()

        breaker.record_failure()

        assert breaker.state is CircuitBreakerState.OPEN


class TestRetryPolicy:
    def test_delay_without_jitter_is_exponential(self) -> None:
        policy = RetryPolicy(max_attempts=4, backoff_factor=2.0, jitter=False)
        rng = random.Random(0)

        assert [policy.delay_for(attempt, rng) for attempt in range(3)] == [1.0, 2.0, 4.0]

    def test_jitter_stays_within_half_and_one_and_a_half(self) -> None:
        policy = RetryPolicy(max_attempts=3, backoff_factor=2.0, jitter=True)
        rng = random.Random(42)

        for _ in range(50):
            assert 1.0 <= policy.delay_for(1, rng) <= 3.0


class TestRetryingGateway:
    """Retries apply to whole-call transport failures only."""

    @pytest.mark.asyncio
    async def test_retries_transport_error_until_success(self) -> None:
        inner = FakeGateway(fail_calls={1, 2})
        sleep = RecordingSleep()
        gateway = RetryingGateway(
            inner,
            policy=RetryPolicy(max_attempts=3, jitter=False),
            sleep=sleep,
        )

        outcomes = await gateway.send_to_batch(MESSAGE, ["token-A-abcdefgh"])

        assert [outcome.status for outcome in outcomes] == [OutcomeStatus.DELIVERED]
        assert len(inner.calls) == 3
        assert sleep.delays == [1.0, 2.0]

    @pytest.mark.asyncio
    async def test_gives_up_after_max_attempts(self) -> None:
        inner = FakeGateway(fail_calls={1, 2})
        gateway = RetryingGateway(inner, policy=RetryPolicy(max_attempts=2), sleep=RecordingSleep())

        with pytest.raises(TransportError):
            _ = await gateway.subscribe_topic(["token-A-abcdefgh"], "news")

        assert len(inner.calls) == 2

    @pytest.mark.asyncio
    async def test_per_token_failures_are_not_retried(self) -> None:
        inner = FakeGateway(statuses={"token-A-abcdefgh": OutcomeStatus.TRANSIENT_FAILURE})
        gateway = RetryingGateway(inner, policy=RetryPolicy(max_attempts=5), sleep=RecordingSleep())

        outcomes = await gateway.send_to_batch(MESSAGE, ["token-A-abcdefgh"])

        assert outcomes[0].status is OutcomeStatus.TRANSIENT_FAILURE
        assert len(inner.calls) == 1

    @pytest.mark.asyncio
    async def test_other_exceptions_propagate_without_retry(self) -> None:
        def explode(_call_number: int) -> None:
            msg = "bug"
            raise RuntimeError(msg)

        inner = FakeGateway(on_call=explode)
        gateway = RetryingGateway(inner, policy=RetryPolicy(max_attempts=3), sleep=RecordingSleep())

        with pytest.raises(RuntimeError):
            _ = await gateway.unsubscribe_topic(["token-A-abcdefgh"], "news")

        assert len(inner.calls) == 1

    @pytest.mark.asyncio
    async def test_open_circuit_short_circuits_calls(self) -> None:
        inner = FakeGateway(fail_calls={1})
        breaker = CircuitBreaker(failure_threshold=1, recovery_timeout=60.0, clock=ManualClock())
        gateway = RetryingGateway(inner, circuit_breaker=breaker, sleep=RecordingSleep())

        with pytest.raises(TransportError):
            _ = await gateway.send_to_batch(MESSAGE, ["token-A-abcdefgh"])
        with pytest.raises(CircuitOpenError):
            _ = await gateway.send_to_batch(MESSAGE, ["token-A-abcdefgh"])

        assert len(inner.calls) == 1
