"""Dispatch engine fanning notifications out through the delivery gateway.

This module implements the DispatchEngine class: it resolves the target set
from the token registry, builds the platform message once, splits targets
into gateway-sized chunks, sends chunks concurrently (bounded by a semaphore
inside an asyncio.TaskGroup), aggregates per-token outcomes, and deactivates
tokens the gateway reports as invalid.

Gateway failures never escape a dispatch; a failed chunk is recorded as a
transport failure of each of its tokens and the remaining chunks proceed.
Progress is reported as structured events to an injected sink.
"""

from __future__ import annotations

import asyncio
import dataclasses
import time
from collections.abc import Awaitable, Callable, Iterable, Iterator, Sequence
from uuid import uuid4

from push_dispatch.core.batching import GATEWAY_BATCH_LIMIT, TOPIC_MANAGEMENT_LIMIT, chunk_tokens
from push_dispatch.core.builder import build_message, variant_for_platform
from push_dispatch.exceptions import TransportError
from push_dispatch.types import (
    Broadcast,
    DeliveryGateway,
    DeliveryOutcome,
    DispatchEvent,
    DispatchIDFactory,
    DispatchMode,
    DispatchResult,
    EventKind,
    EventSink,
    MessageKind,
    NotificationIntent,
    NotifyDevice,
    NotifyRecipient,
    NotifyRecipientPlatform,
    NotifyTopic,
    PlatformMessage,
    SendDataOnly,
    Throttle,
    TokenRegistry,
    TokenTarget,
    TopicTarget,
)
from push_dispatch.utils.logging import LoggingEventSink, reset_correlation_id, set_correlation_id
from push_dispatch.utils.sanitization import sanitize_exception

__all__ = [
    "ChunkDispatchException",
    "ChunkExecutionError",
    "ChunkTimeoutError",
    "ChunkTransportError",
    "DispatchEngine",
]

type ChunkSender = Callable[[tuple[str, ...]], Awaitable[Sequence[DeliveryOutcome]]]


class ChunkDispatchException(Exception):
    """Base exception for a gateway call that failed as a whole."""

    index: int
    tokens: tuple[str, ...]
    error_message: str
    __cause__: BaseException | None

    def __init__(
        self,
        index: int,
        tokens: tuple[str, ...],
        *,
        error_message: str,
        cause: BaseException | None = None,
    ) -> None:
        super().__init__(error_message)
        self.index = index
        self.tokens = tokens
        self.error_message = error_message
        if cause is not None:
            self.__cause__ = cause


class ChunkTransportError(ChunkDispatchException):
    """Raised when the gateway reports a transport failure for a chunk."""


class ChunkExecutionError(ChunkDispatchException):
    """Raised when the gateway crashes with an unexpected exception."""

    def __init__(
        self,
        index: int,
        tokens: tuple[str, ...],
        *,
        error_message: str,
        cause: BaseException,
    ) -> None:
        super().__init__(index, tokens, error_message=error_message, cause=cause)


class ChunkTimeoutError(ChunkDispatchException):
    """Raised when a gateway call exceeds the per-chunk timeout."""

    timeout_seconds: float

    def __init__(
        self,
        index: int,
        tokens: tuple[str, ...],
        *,
        timeout_seconds: float,
    ) -> None:
        self.timeout_seconds = timeout_seconds
        super().__init__(
            index,
            tokens,
            error_message=f"Gateway call timed out after {timeout_seconds:.2f}s",
        )


class DispatchEngine:
    """Resolve, shape, chunk, send, aggregate, and deactivate.

    Args:
        registry: Token registry used for target resolution and deactivation
        gateway: Delivery gateway performing the actual sends
        batch_size: Tokens per gateway call, at most the gateway batch limit
        max_concurrency: Chunks in flight at once
        throttle: Optional rate limiter consulted before every gateway call
        chunk_timeout_seconds: Optional per-call timeout; expiry counts as a transport failure
        dispatch_timeout_seconds: Default deadline after which no new chunk starts
        event_sink: Consumer of dispatch events (defaults to structured logging)
        dispatch_id_factory: Source of dispatch identifiers
        dry_run_enabled: Resolve and build but never call the gateway
    """

    def __init__(
        self,
        registry: TokenRegistry,
        gateway: DeliveryGateway,
        *,
        batch_size: int = GATEWAY_BATCH_LIMIT,
        max_concurrency: int = 4,
        throttle: Throttle | None = None,
        chunk_timeout_seconds: float | None = None,
        dispatch_timeout_seconds: float | None = None,
        event_sink: EventSink | None = None,
        dispatch_id_factory: DispatchIDFactory | None = None,
        dry_run_enabled: bool = False,
    ) -> None:
        if not 1 <= batch_size <= GATEWAY_BATCH_LIMIT:
            msg = f"batch_size must be between 1 and {GATEWAY_BATCH_LIMIT}"
            raise ValueError(msg)
        if max_concurrency < 1:
            msg = "max_concurrency must be >= 1"
            raise ValueError(msg)
        if chunk_timeout_seconds is not None and chunk_timeout_seconds <= 0:
            msg = "chunk_timeout_seconds must be greater than zero"
            raise ValueError(msg)

        self._registry: TokenRegistry = registry
        self._gateway: DeliveryGateway = gateway
        self._batch_size: int = batch_size
        self._max_concurrency: int = max_concurrency
        self._throttle: Throttle | None = throttle
        self._chunk_timeout_seconds: float | None = chunk_timeout_seconds
        self._dispatch_timeout_seconds: float | None = dispatch_timeout_seconds
        self._event_sink: EventSink = event_sink or LoggingEventSink()
        self._dispatch_id_factory: DispatchIDFactory = dispatch_id_factory or (lambda: uuid4().hex)
        self._dry_run_enabled: bool = dry_run_enabled

    @property
    def dry_run_enabled(self) -> bool:
        return self._dry_run_enabled

    async def dispatch(
        self,
        mode: DispatchMode,
        intent: NotificationIntent,
        *,
        cancel_event: asyncio.Event | None = None,
        timeout: float | None = None,
    ) -> DispatchResult:
        """Deliver ``intent`` to the targets selected by ``mode``.

        Args:
            mode: Addressing mode (recipient, recipient+platform, topic, broadcast,
                data-only, or a single device)
            intent: Notification content
            cancel_event: When set, no further chunks are started
            timeout: Seconds after which no further chunks are started
                (overrides the engine default)

        Returns:
            Aggregated result; gateway failures are recorded, never raised

        Raises:
            InvalidIntentError: If the intent cannot be shaped for the mode
        """
        dispatch_id = self._dispatch_id_factory()
        context_token = set_correlation_id(dispatch_id)
        try:
            message = build_message(intent, self._message_kind(mode))
            deadline = self._deadline(timeout)
            return await self._dispatch_mode(dispatch_id, mode, message, cancel_event, deadline)
        finally:
            reset_correlation_id(context_token)

    async def subscribe_topic(
        self,
        tokens: Iterable[str],
        topic: str,
        *,
        cancel_event: asyncio.Event | None = None,
        timeout: float | None = None,
    ) -> DispatchResult:
        """Subscribe tokens to a gateway topic, deactivating tokens reported invalid."""
        return await self._manage_topic(
            "subscribe_topic",
            tokens,
            topic,
            lambda chunk: self._gateway.subscribe_topic(chunk, topic),
            cancel_event,
            timeout,
        )

    async def unsubscribe_topic(
        self,
        tokens: Iterable[str],
        topic: str,
        *,
        cancel_event: asyncio.Event | None = None,
        timeout: float | None = None,
    ) -> DispatchResult:
        """Unsubscribe tokens from a gateway topic, deactivating tokens reported invalid."""
        return await self._manage_topic(
            "unsubscribe_topic",
            tokens,
            topic,
            lambda chunk: self._gateway.unsubscribe_topic(chunk, topic),
            cancel_event,
            timeout,
        )

    def _message_kind(self, mode: DispatchMode) -> MessageKind:
        match mode:
            case NotifyRecipientPlatform(platform=platform):
                return variant_for_platform(platform)
            case SendDataOnly():
                return MessageKind.DATA_ONLY
            case _:
                return MessageKind.GENERIC

    async def _dispatch_mode(
        self,
        dispatch_id: str,
        mode: DispatchMode,
        message: PlatformMessage,
        cancel_event: asyncio.Event | None,
        deadline: float | None,
    ) -> DispatchResult:
        mode_name = type(mode).__name__
        tokens: tuple[str, ...] = ()
        match mode:
            case NotifyTopic(topic=topic):
                return await self._dispatch_single(
                    dispatch_id, mode_name, message, TopicTarget(topic), cancel_event, deadline
                )
            case NotifyDevice(token=token):
                record = self._registry.get(token)
                if record is None or not record.active:
                    return self._no_active_tokens(dispatch_id, mode_name)
                return await self._dispatch_single(
                    dispatch_id, mode_name, message, TokenTarget(token), cancel_event, deadline
                )
            case Broadcast():
                total = self._registry.count_active()
                if total == 0:
                    return self._no_active_tokens(dispatch_id, mode_name)
                return await self._dispatch_chunks(
                    dispatch_id,
                    mode_name,
                    message,
                    self._registry.iter_active_tokens(),
                    total,
                    self._batch_size,
                    lambda chunk: self._gateway.send_to_batch(message, chunk),
                    cancel_event,
                    deadline,
                )
            case NotifyRecipient(recipient_id=recipient_id) | SendDataOnly(recipient_id=recipient_id):
                tokens = _unique(self._registry.active_tokens_for(recipient_id))
            case NotifyRecipientPlatform(recipient_id=recipient_id, platform=platform):
                tokens = _unique(self._registry.active_tokens_for(recipient_id, platform))
                if len(tokens) == 1:
                    return await self._dispatch_single(
                        dispatch_id, mode_name, message, TokenTarget(tokens[0]), cancel_event, deadline
                    )

        if not tokens:
            return self._no_active_tokens(dispatch_id, mode_name)
        return await self._dispatch_chunks(
            dispatch_id,
            mode_name,
            message,
            iter(tokens),
            len(tokens),
            self._batch_size,
            lambda chunk: self._gateway.send_to_batch(message, chunk),
            cancel_event,
            deadline,
        )

    async def _manage_topic(
        self,
        operation: str,
        tokens: Iterable[str],
        topic: str,
        send: ChunkSender,
        cancel_event: asyncio.Event | None,
        timeout: float | None,
    ) -> DispatchResult:
        dispatch_id = self._dispatch_id_factory()
        context_token = set_correlation_id(dispatch_id)
        try:
            unique_tokens = _unique(tokens)
            if not unique_tokens:
                return self._no_active_tokens(dispatch_id, operation)
            return await self._dispatch_chunks(
                dispatch_id,
                operation,
                None,
                iter(unique_tokens),
                len(unique_tokens),
                TOPIC_MANAGEMENT_LIMIT,
                send,
                cancel_event,
                self._deadline(timeout),
                extra={"topic": topic},
            )
        finally:
            reset_correlation_id(context_token)

    async def _dispatch_single(
        self,
        dispatch_id: str,
        mode_name: str,
        message: PlatformMessage,
        target: TokenTarget | TopicTarget,
        cancel_event: asyncio.Event | None,
        deadline: float | None,
    ) -> DispatchResult:
        """Degenerate one-target path using ``send_to_target``."""
        address = target.token if isinstance(target, TokenTarget) else target.topic
        result = DispatchResult(dispatch_id=dispatch_id, total_targets=1, dry_run=self._dry_run_enabled)
        started = time.perf_counter()
        self._emit(
            EventKind.DISPATCH_STARTED,
            dispatch_id,
            mode=mode_name,
            total_targets=1,
            message_kind=str(message.kind),
        )

        if self._dry_run_enabled:
            self._record_dry_run(result, message, (address,))
            return self._complete(result, started)

        if self._should_stop(cancel_event, deadline):
            result.cancelled = True
            self._emit(EventKind.DISPATCH_CANCELLED, dispatch_id, attempted=0, total_targets=1)
            return self._complete(result, started)

        result.chunk_count = 1

        async def send(_chunk: tuple[str, ...]) -> Sequence[DeliveryOutcome]:
            return (await self._gateway.send_to_target(message, target),)

        error = await self._send_chunk(result, 0, (address,), send)
        if error is not None:
            self._handle_chunk_exception_group([error], dispatch_id)
        if isinstance(target, TokenTarget):
            self._deactivate_invalid(result)
        return self._complete(result, started)

    async def _dispatch_chunks(
        self,
        dispatch_id: str,
        mode_name: str,
        message: PlatformMessage | None,
        tokens: Iterator[str],
        total_targets: int,
        chunk_size: int,
        send: ChunkSender,
        cancel_event: asyncio.Event | None,
        deadline: float | None,
        *,
        extra: dict[str, object] | None = None,
    ) -> DispatchResult:
        result = DispatchResult(
            dispatch_id=dispatch_id,
            total_targets=total_targets,
            dry_run=self._dry_run_enabled,
        )
        started = time.perf_counter()
        self._emit(
            EventKind.DISPATCH_STARTED,
            dispatch_id,
            mode=mode_name,
            total_targets=total_targets,
            message_kind=str(message.kind) if message is not None else None,
            **(extra or {}),
        )

        chunks = chunk_tokens(tokens, chunk_size)

        if self._dry_run_enabled:
            for chunk in chunks:
                result.chunk_count += 1
                self._record_dry_run(result, message, chunk, emit=False)
            self._emit(
                EventKind.DRY_RUN,
                dispatch_id,
                total_targets=result.attempted,
                chunk_count=result.chunk_count,
                notification_payload=message.snapshot() if message is not None else extra,
            )
            return self._complete(result, started)

        errors: list[ChunkDispatchException] = []
        semaphore = asyncio.Semaphore(self._max_concurrency)

        async def run_chunk(index: int, chunk: tuple[str, ...]) -> None:
            try:
                error = await self._send_chunk(result, index, chunk, send)
                if error is not None:
                    errors.append(error)
            finally:
                semaphore.release()

        async with asyncio.TaskGroup() as task_group:
            for index, chunk in enumerate(chunks):
                # Wait for a free slot before pulling the next chunk into flight
                _ = await semaphore.acquire()
                if self._should_stop(cancel_event, deadline):
                    semaphore.release()
                    result.cancelled = True
                    break
                result.chunk_count += 1
                _ = task_group.create_task(run_chunk(index, chunk))

        if errors:
            self._handle_chunk_exception_group(errors, dispatch_id)
        if result.cancelled:
            self._emit(
                EventKind.DISPATCH_CANCELLED,
                dispatch_id,
                attempted=result.attempted,
                total_targets=total_targets,
            )
        self._deactivate_invalid(result)
        return self._complete(result, started)

    async def _send_chunk(
        self,
        result: DispatchResult,
        index: int,
        chunk: tuple[str, ...],
        send: ChunkSender,
    ) -> ChunkDispatchException | None:
        """Send one chunk and fold its outcomes into ``result``.

        Returns:
            The chunk failure, or None when the gateway produced outcomes
        """
        error: ChunkDispatchException | None = None
        timeout_scope = asyncio.timeout(self._chunk_timeout_seconds)
        try:
            if self._throttle is not None:
                await self._throttle.acquire()
            async with timeout_scope:
                outcomes = await send(chunk)
        except TimeoutError as exc:
            if self._chunk_timeout_seconds is not None and timeout_scope.expired():
                error = ChunkTimeoutError(index, chunk, timeout_seconds=self._chunk_timeout_seconds)
            else:
                error = ChunkTransportError(index, chunk, error_message=sanitize_exception(exc), cause=exc)
        except TransportError as exc:
            error = ChunkTransportError(index, chunk, error_message=sanitize_exception(exc), cause=exc)
        except Exception as exc:
            error = ChunkExecutionError(
                index,
                chunk,
                error_message=f"Gateway raised unexpectedly: {sanitize_exception(exc)}",
                cause=exc,
            )
        else:
            if len(outcomes) != len(chunk):
                error = ChunkTransportError(
                    index,
                    chunk,
                    error_message=f"Gateway returned {len(outcomes)} outcomes for {len(chunk)} targets",
                )
            else:
                delivered_before = result.delivered
                for token, outcome in zip(chunk, outcomes, strict=True):
                    if outcome.target != token:
                        outcome = dataclasses.replace(outcome, target=token)
                    result.record(outcome)
                self._emit(
                    EventKind.CHUNK_SENT,
                    result.dispatch_id,
                    chunk_index=index,
                    chunk_size=len(chunk),
                    delivered=result.delivered - delivered_before,
                )
                return None

        result.record_chunk_failure(index, chunk, error.error_message)
        return error

    def _deactivate_invalid(self, result: DispatchResult) -> None:
        for token in result.invalid_tokens:
            if self._registry.deactivate(token):
                self._emit(EventKind.TOKEN_DEACTIVATED, result.dispatch_id, token=token)

    def _record_dry_run(
        self,
        result: DispatchResult,
        message: PlatformMessage | None,
        targets: Sequence[str],
        *,
        emit: bool = True,
    ) -> None:
        for target in targets:
            result.record(DeliveryOutcome.delivered(target))
        if emit:
            result.chunk_count = 1
            self._emit(
                EventKind.DRY_RUN,
                result.dispatch_id,
                total_targets=len(targets),
                chunk_count=1,
                notification_payload=message.snapshot() if message is not None else None,
            )

    def _no_active_tokens(self, dispatch_id: str, mode_name: str) -> DispatchResult:
        self._emit(EventKind.NO_ACTIVE_TOKENS, dispatch_id, mode=mode_name)
        return DispatchResult(
            dispatch_id=dispatch_id,
            no_active_tokens=True,
            dry_run=self._dry_run_enabled,
        )

    def _complete(self, result: DispatchResult, started: float) -> DispatchResult:
        self._emit(
            EventKind.DISPATCH_COMPLETED,
            result.dispatch_id,
            status=str(result.status),
            total_targets=result.total_targets,
            attempted=result.attempted,
            delivered=result.delivered,
            invalid_token_count=len(result.invalid_tokens),
            failed_count=result.failed,
            chunk_count=result.chunk_count,
            duration_ms=round((time.perf_counter() - started) * 1000.0, 2),
        )
        return result

    def _deadline(self, timeout: float | None) -> float | None:
        effective = timeout if timeout is not None else self._dispatch_timeout_seconds
        if effective is None:
            return None
        return asyncio.get_running_loop().time() + effective

    def _should_stop(self, cancel_event: asyncio.Event | None, deadline: float | None) -> bool:
        if cancel_event is not None and cancel_event.is_set():
            return True
        return deadline is not None and asyncio.get_running_loop().time() >= deadline

    def _emit(self, kind: EventKind, dispatch_id: str, **fields: object) -> None:
        self._event_sink(DispatchEvent(kind=kind, dispatch_id=dispatch_id, fields=fields))

    def _handle_chunk_exception_group(
        self,
        errors: list[ChunkDispatchException],
        dispatch_id: str,
    ) -> None:
        """Report grouped chunk failures using except* semantics."""
        try:
            raise ExceptionGroup("chunk dispatch failures", errors)
        except* ChunkTimeoutError as group:
            for error in self._flatten_exceptions(group.exceptions, ChunkTimeoutError):
                self._emit(
                    EventKind.CHUNK_TIMEOUT,
                    dispatch_id,
                    chunk_index=error.index,
                    chunk_size=len(error.tokens),
                    timeout_seconds=error.timeout_seconds,
                )
        except* ChunkDispatchException as group:
            for error in self._flatten_exceptions(group.exceptions, ChunkDispatchException):
                self._emit(
                    EventKind.CHUNK_FAILED,
                    dispatch_id,
                    chunk_index=error.index,
                    chunk_size=len(error.tokens),
                    error_message=error.error_message,
                    exception_type=type(error.__cause__ or error).__name__,
                )

    def _flatten_exceptions[T: BaseException](
        self,
        exceptions: Iterable[BaseException],
        target_type: type[T],
    ) -> Iterator[T]:
        """Yield exceptions of a specific type from an exception hierarchy."""
        for exc in exceptions:
            if isinstance(exc, ExceptionGroup):
                yield from self._flatten_exceptions(exc.exceptions, target_type)
            elif isinstance(exc, target_type):
                yield exc


def _unique(tokens: Iterable[str]) -> tuple[str, ...]:
    """Drop duplicate tokens, keeping first-seen order."""
    return tuple(dict.fromkeys(tokens))
