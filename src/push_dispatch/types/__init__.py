"""Type definitions and protocols for push-dispatch.

This package provides:
- Data models (dataclasses, enums, and the notification intent model)
- Protocol definitions (structural subtyping interfaces)
- Type aliases (PEP 695 modern syntax)
"""

from push_dispatch.types.aliases import (
    DataPayload,
    DispatchIDFactory,
    DispatchMode,
    EventSink,
    RecipientId,
    Target,
    Token,
)
from push_dispatch.types.models import (
    AndroidOptions,
    Broadcast,
    ChunkError,
    DeliveryFailure,
    DeliveryOutcome,
    DeviceToken,
    DispatchEvent,
    DispatchResult,
    DispatchStatus,
    EventKind,
    FailureKind,
    MessageKind,
    NotificationIntent,
    NotifyDevice,
    NotifyRecipient,
    NotifyRecipientPlatform,
    NotifyTopic,
    OutcomeStatus,
    Platform,
    PlatformMessage,
    SendDataOnly,
    TokenTarget,
    TopicTarget,
    WebOptions,
)
from push_dispatch.types.protocols import (
    DeliveryGateway,
    Throttle,
    TokenRegistry,
)

__all__ = [
    # Type aliases
    "DataPayload",
    "DispatchIDFactory",
    "DispatchMode",
    "EventSink",
    "RecipientId",
    "Target",
    "Token",
    # Data models
    "AndroidOptions",
    "Broadcast",
    "ChunkError",
    "DeliveryFailure",
    "DeliveryOutcome",
    "DeviceToken",
    "DispatchEvent",
    "DispatchResult",
    "DispatchStatus",
    "EventKind",
    "FailureKind",
    "MessageKind",
    "NotificationIntent",
    "NotifyDevice",
    "NotifyRecipient",
    "NotifyRecipientPlatform",
    "NotifyTopic",
    "OutcomeStatus",
    "Platform",
    "PlatformMessage",
    "SendDataOnly",
    "TokenTarget",
    "TopicTarget",
    "WebOptions",
    # Protocols
    "DeliveryGateway",
    "Throttle",
    "TokenRegistry",
]
