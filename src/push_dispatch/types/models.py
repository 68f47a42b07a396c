"""Data models for push-dispatch.

This module defines the dataclasses and enums that flow between the
registry, message builder, delivery gateway, and dispatch engine. Result
types are plain dataclasses; the caller-facing notification intent is a
Pydantic model so malformed input is rejected at the boundary.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from typing import Annotated

from pydantic import BaseModel, ConfigDict, Field


class Platform(StrEnum):
    """Device platform a push token was issued for."""

    ANDROID = "android"
    IOS = "ios"
    WEB = "web"


@dataclass(slots=True, frozen=True)
class DeviceToken:
    """Registry record binding a push token to a recipient.

    The token string is globally unique; re-registering it updates the
    existing record instead of creating a second one.
    """

    recipient_id: str
    token: str
    platform: Platform
    active: bool = True
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    updated_at: datetime = field(default_factory=lambda: datetime.now(UTC))


class NotificationIntent(BaseModel):
    """Caller-supplied description of what should be delivered.

    Visible intents carry a title and body; silent intents carry only
    ``data``. Shaping into a platform payload happens in the message builder.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    title: Annotated[str | None, Field(description="Visible notification title")] = None
    body: Annotated[str | None, Field(description="Visible notification body")] = None
    icon: Annotated[str | None, Field(description="Icon URL for web notifications")] = None
    link: Annotated[str | None, Field(description="Click-through link for web notifications")] = None
    data: Annotated[
        dict[str, str],
        Field(description="Key/value payload delivered to the client application"),
    ] = {}

    @property
    def is_visible(self) -> bool:
        """True when both title and body are present and non-blank."""
        return bool(self.title and self.title.strip() and self.body and self.body.strip())


class MessageKind(StrEnum):
    """Payload variant produced by the message builder."""

    GENERIC = "generic"
    ANDROID = "android"
    WEB = "web"
    DATA_ONLY = "data_only"


@dataclass(slots=True, frozen=True)
class AndroidOptions:
    """Android-specific delivery options."""

    priority: str
    sound: str


@dataclass(slots=True, frozen=True)
class WebOptions:
    """Web push display options."""

    icon: str
    link: str


@dataclass(slots=True, frozen=True)
class PlatformMessage:
    """Fully shaped message ready for the delivery gateway.

    Built once per dispatch and reused for every chunk. Data-only messages
    have neither title nor body.
    """

    kind: MessageKind
    data: Mapping[str, str]
    title: str | None = None
    body: str | None = None
    android: AndroidOptions | None = None
    web: WebOptions | None = None

    def snapshot(self) -> dict[str, object]:
        """Return a log-friendly copy of the message payload."""
        snapshot: dict[str, object] = {
            "kind": str(self.kind),
            "title": self.title,
            "body": self.body,
            "data_keys": sorted(self.data),
        }
        if self.android is not None:
            snapshot["android"] = {"priority": self.android.priority, "sound": self.android.sound}
        if self.web is not None:
            snapshot["web"] = {"icon": self.web.icon, "link": self.web.link}
        return snapshot


@dataclass(slots=True, frozen=True)
class TokenTarget:
    """A single device token addressed directly."""

    token: str


@dataclass(slots=True, frozen=True)
class TopicTarget:
    """A gateway-managed topic; the gateway resolves its subscribers."""

    topic: str


class OutcomeStatus(StrEnum):
    """Per-target delivery status reported by the gateway."""

    DELIVERED = "delivered"
    INVALID_TOKEN = "invalid_token"
    TRANSIENT_FAILURE = "transient_failure"


@dataclass(slots=True, frozen=True)
class DeliveryOutcome:
    """Gateway result for one target (token or topic)."""

    target: str
    status: OutcomeStatus
    message_id: str | None = None
    reason: str | None = None

    @classmethod
    def delivered(cls, target: str, message_id: str | None = None) -> DeliveryOutcome:
        return cls(target=target, status=OutcomeStatus.DELIVERED, message_id=message_id)

    @classmethod
    def invalid_token(cls, target: str, reason: str) -> DeliveryOutcome:
        return cls(target=target, status=OutcomeStatus.INVALID_TOKEN, reason=reason)

    @classmethod
    def transient(cls, target: str, reason: str) -> DeliveryOutcome:
        return cls(target=target, status=OutcomeStatus.TRANSIENT_FAILURE, reason=reason)


# Dispatch modes


@dataclass(slots=True, frozen=True)
class NotifyRecipient:
    """All active tokens of one recipient."""

    recipient_id: str


@dataclass(slots=True, frozen=True)
class NotifyRecipientPlatform:
    """Active tokens of one recipient on one platform."""

    recipient_id: str
    platform: Platform


@dataclass(slots=True, frozen=True)
class NotifyTopic:
    """Every device subscribed to a gateway topic."""

    topic: str


@dataclass(slots=True, frozen=True)
class Broadcast:
    """Every active token in the registry."""


@dataclass(slots=True, frozen=True)
class SendDataOnly:
    """Silent data message to all active tokens of one recipient."""

    recipient_id: str


@dataclass(slots=True, frozen=True)
class NotifyDevice:
    """One explicit device token, bypassing recipient resolution."""

    token: str


class FailureKind(StrEnum):
    """Whether a failure concerned one token or its whole chunk."""

    TRANSIENT = "transient"
    TRANSPORT = "transport"


@dataclass(slots=True, frozen=True)
class DeliveryFailure:
    """A token that was attempted but not delivered (and is still valid)."""

    token: str
    reason: str
    kind: FailureKind


@dataclass(slots=True, frozen=True)
class ChunkError:
    """A gateway call that failed as a whole."""

    index: int
    size: int
    error: str


class DispatchStatus(StrEnum):
    """Overall classification of a dispatch result."""

    SUCCESS = "success"
    PARTIAL = "partial"
    FAILED = "failed"
    NO_ACTIVE_TOKENS = "no_active_tokens"
    CANCELLED = "cancelled"


@dataclass(slots=True)
class DispatchResult:
    """Aggregated outcome of one dispatch.

    ``delivered + len(invalid_tokens) + len(failures) == attempted`` holds
    for every result the engine returns. ``total_targets`` counts resolved
    targets, which exceeds ``attempted`` only when the dispatch was cancelled.
    """

    dispatch_id: str
    total_targets: int = 0
    attempted: int = 0
    delivered: int = 0
    invalid_tokens: list[str] = field(default_factory=list)
    failures: list[DeliveryFailure] = field(default_factory=list)
    chunk_errors: list[ChunkError] = field(default_factory=list)
    chunk_count: int = 0
    no_active_tokens: bool = False
    cancelled: bool = False
    dry_run: bool = False

    @property
    def failed(self) -> int:
        return len(self.failures)

    @property
    def status(self) -> DispatchStatus:
        if self.no_active_tokens:
            return DispatchStatus.NO_ACTIVE_TOKENS
        if self.cancelled:
            return DispatchStatus.CANCELLED
        if self.attempted > 0 and self.delivered == self.attempted:
            return DispatchStatus.SUCCESS
        if self.delivered == 0:
            return DispatchStatus.FAILED
        return DispatchStatus.PARTIAL

    def record(self, outcome: DeliveryOutcome) -> None:
        """Fold one per-target outcome into the totals."""
        self.attempted += 1
        match outcome.status:
            case OutcomeStatus.DELIVERED:
                self.delivered += 1
            case OutcomeStatus.INVALID_TOKEN:
                self.invalid_tokens.append(outcome.target)
            case OutcomeStatus.TRANSIENT_FAILURE:
                self.failures.append(
                    DeliveryFailure(
                        token=outcome.target,
                        reason=outcome.reason or "transient failure",
                        kind=FailureKind.TRANSIENT,
                    )
                )

    def record_chunk_failure(self, index: int, tokens: tuple[str, ...], error: str) -> None:
        """Mark every token of a failed gateway call as a transport failure."""
        self.attempted += len(tokens)
        self.failures.extend(
            DeliveryFailure(token=token, reason=error, kind=FailureKind.TRANSPORT) for token in tokens
        )
        self.chunk_errors.append(ChunkError(index=index, size=len(tokens), error=error))

    def to_dict(self) -> dict[str, object]:
        """Serializable view used by the command-line interface."""
        return {
            "dispatch_id": self.dispatch_id,
            "status": str(self.status),
            "total_targets": self.total_targets,
            "attempted": self.attempted,
            "delivered": self.delivered,
            "invalid_tokens": list(self.invalid_tokens),
            "failures": [
                {"token": failure.token, "reason": failure.reason, "kind": str(failure.kind)}
                for failure in self.failures
            ],
            "chunk_errors": [
                {"index": error.index, "size": error.size, "error": error.error}
                for error in self.chunk_errors
            ],
            "chunk_count": self.chunk_count,
            "no_active_tokens": self.no_active_tokens,
            "cancelled": self.cancelled,
            "dry_run": self.dry_run,
        }


class EventKind(StrEnum):
    """Structured events emitted by the dispatch engine."""

    DISPATCH_STARTED = "dispatch_started"
    NO_ACTIVE_TOKENS = "no_active_tokens"
    DRY_RUN = "dry_run"
    CHUNK_SENT = "chunk_sent"
    CHUNK_FAILED = "chunk_failed"
    CHUNK_TIMEOUT = "chunk_timeout"
    TOKEN_DEACTIVATED = "token_deactivated"
    DISPATCH_CANCELLED = "dispatch_cancelled"
    DISPATCH_COMPLETED = "dispatch_completed"


@dataclass(slots=True, frozen=True)
class DispatchEvent:
    """One observable step of a dispatch, delivered to the event sink."""

    kind: EventKind
    dispatch_id: str
    fields: Mapping[str, object] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))
