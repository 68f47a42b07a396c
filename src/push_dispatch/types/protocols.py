"""Protocol definitions for component interfaces.

This module defines structural subtyping protocols for the token registry,
the delivery gateway, and the throttle consulted before gateway calls.
Implementations satisfy them without inheritance.
"""

from collections.abc import Iterator, Sequence
from datetime import datetime
from typing import Protocol, runtime_checkable

from push_dispatch.types.models import (
    DeliveryOutcome,
    DeviceToken,
    Platform,
    PlatformMessage,
    TokenTarget,
    TopicTarget,
)


@runtime_checkable
class TokenRegistry(Protocol):
    """Protocol for the recipient -> device token store.

    All methods are synchronous; only gateway calls suspend the dispatch.
    """

    def upsert(self, recipient_id: str, token: str, platform: Platform) -> DeviceToken:
        """Insert or update a token and mark it active.

        Args:
            recipient_id: Owning recipient
            token: Gateway-issued push token
            platform: Platform the token was issued for

        Returns:
            The stored record
        """
        ...

    def deactivate(self, token: str) -> bool:
        """Mark a token inactive.

        Args:
            token: Token to deactivate

        Returns:
            True if the token exists, False for unknown tokens
        """
        ...

    def remove(self, recipient_id: str, token: str) -> None:
        """Hard-delete a token owned by ``recipient_id``.

        Raises:
            TokenNotFoundError: If the token does not exist or belongs to another recipient
        """
        ...

    def get(self, token: str) -> DeviceToken | None:
        """Return the record for ``token`` or None."""
        ...

    def active_tokens_for(self, recipient_id: str, platform: Platform | None = None) -> tuple[str, ...]:
        """Active tokens of a recipient in registration order, optionally filtered by platform."""
        ...

    def tokens_for(self, recipient_id: str) -> tuple[DeviceToken, ...]:
        """All records of a recipient, active or not, in registration order."""
        ...

    def iter_active_tokens(self) -> Iterator[str]:
        """Lazily enumerate every active token; each call starts a fresh enumeration."""
        ...

    def count_active(self) -> int:
        """Number of active tokens in the registry."""
        ...

    def prune_inactive(self, older_than: datetime) -> int:
        """Delete inactive records not updated since ``older_than``.

        Returns:
            Number of records deleted
        """
        ...


@runtime_checkable
class DeliveryGateway(Protocol):
    """Protocol for the external push transport.

    Per-target problems are reported as outcomes. A failure of the call as a
    whole raises ``TransportError`` and yields no partial outcomes.
    """

    async def send_to_target(
        self,
        message: PlatformMessage,
        target: TokenTarget | TopicTarget,
    ) -> DeliveryOutcome:
        """Send one message to a single token or a topic.

        Args:
            message: Shaped message
            target: Token or topic address

        Returns:
            Outcome for the target
        """
        ...

    async def send_to_batch(
        self,
        message: PlatformMessage,
        tokens: Sequence[str],
    ) -> Sequence[DeliveryOutcome]:
        """Send one message to many tokens in a single gateway call.

        Args:
            message: Shaped message
            tokens: At most the gateway batch limit of tokens

        Returns:
            One outcome per input token, in input order
        """
        ...

    async def subscribe_topic(self, tokens: Sequence[str], topic: str) -> Sequence[DeliveryOutcome]:
        """Subscribe tokens to a topic; one outcome per token, in input order."""
        ...

    async def unsubscribe_topic(self, tokens: Sequence[str], topic: str) -> Sequence[DeliveryOutcome]:
        """Unsubscribe tokens from a topic; one outcome per token, in input order."""
        ...


class Throttle(Protocol):
    """Rate limiter consulted before every gateway call."""

    async def acquire(self) -> None:
        """Wait until one gateway call is permitted."""
        ...
