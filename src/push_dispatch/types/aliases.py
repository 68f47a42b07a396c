"""Type aliases using modern PEP 695 syntax.

This module defines the aliases shared across the registry, engine, and
gateway layers, using Python 3.13+ type statement syntax.
"""

from collections.abc import Callable, Mapping

from push_dispatch.types.models import (
    Broadcast,
    DispatchEvent,
    NotifyDevice,
    NotifyRecipient,
    NotifyRecipientPlatform,
    NotifyTopic,
    SendDataOnly,
    TokenTarget,
    TopicTarget,
)

# Opaque gateway-issued push token
type Token = str

# Opaque recipient identifier (user, account, or similar)
type RecipientId = str

# Key/value payload delivered alongside (or instead of) a visible notification
type DataPayload = Mapping[str, str]

# Address accepted by single-target gateway sends
type Target = TokenTarget | TopicTarget

# Every addressing mode the dispatch engine accepts
type DispatchMode = (
    NotifyRecipient | NotifyRecipientPlatform | NotifyTopic | Broadcast | SendDataOnly | NotifyDevice
)

# Callable producing a fresh dispatch (correlation) identifier
type DispatchIDFactory = Callable[[], str]

# Consumer of structured dispatch events
type EventSink = Callable[[DispatchEvent], None]
