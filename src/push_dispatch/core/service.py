"""Notification service: the transport-agnostic API surface.

Every operation validates caller input first and raises
``RequestValidationError`` before touching the registry or the gateway.
Dispatching operations then delegate to the dispatch engine and return its
``DispatchResult`` unchanged.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Mapping
from datetime import UTC, datetime, timedelta

from pydantic import ValidationError

from push_dispatch.core.dispatcher import DispatchEngine
from push_dispatch.exceptions import RequestValidationError
from push_dispatch.types import (
    Broadcast,
    DeviceToken,
    DispatchMode,
    DispatchResult,
    NotificationIntent,
    NotifyDevice,
    NotifyRecipient,
    NotifyRecipientPlatform,
    NotifyTopic,
    Platform,
    SendDataOnly,
    TokenRegistry,
)

__all__ = ["NotificationService"]

logger = logging.getLogger(__name__)


def _require_text(value: object, field_name: str) -> str:
    if not isinstance(value, str) or not value.strip():
        msg = f"{field_name} must be a non-empty string"
        raise RequestValidationError(msg)
    return value


def _parse_platform(value: Platform | str) -> Platform:
    if isinstance(value, Platform):
        return value
    try:
        return Platform(str(value).strip().lower())
    except ValueError as exc:
        allowed = ", ".join(platform.value for platform in Platform)
        msg = f"Unknown platform {value!r}; expected one of: {allowed}"
        raise RequestValidationError(msg) from exc


def _validate_data(data: Mapping[str, object] | None) -> dict[str, str]:
    if data is None:
        return {}
    validated: dict[str, str] = {}
    for key, value in data.items():
        if not isinstance(key, str) or not key:
            msg = f"Data keys must be non-empty strings, got {key!r}"
            raise RequestValidationError(msg)
        if not isinstance(value, str):
            msg = f"Data value for {key!r} must be a string, got {type(value).__name__}"
            raise RequestValidationError(msg)
        validated[key] = value
    return validated


def _intent(
    *,
    title: str | None,
    body: str | None,
    data: Mapping[str, object] | None,
    icon: str | None = None,
    link: str | None = None,
) -> NotificationIntent:
    payload = _validate_data(data)
    try:
        return NotificationIntent(title=title, body=body, icon=icon, link=link, data=payload)
    except ValidationError as exc:
        msg = f"Invalid notification: {exc.errors()[0]['msg']}"
        raise RequestValidationError(msg) from exc


def _visible_intent(
    title: object,
    body: object,
    data: Mapping[str, object] | None,
    icon: str | None,
    link: str | None,
) -> NotificationIntent:
    return _intent(
        title=_require_text(title, "title"),
        body=_require_text(body, "body"),
        data=data,
        icon=icon,
        link=link,
    )


class NotificationService:
    """Validate requests and route them to the registry or the dispatch engine.

    Args:
        registry: Token registry shared with the engine
        engine: Dispatch engine performing deliveries
        clock: Source of the current time for pruning, injectable for tests
    """

    def __init__(
        self,
        registry: TokenRegistry,
        engine: DispatchEngine,
        *,
        clock: Callable[[], datetime] = lambda: datetime.now(tz=UTC),
    ) -> None:
        self._registry: TokenRegistry = registry
        self._engine: DispatchEngine = engine
        self._clock: Callable[[], datetime] = clock

    # Registry operations

    def register_token(self, recipient_id: str, token: str, platform: Platform | str) -> DeviceToken:
        """Register (or re-activate) a device token for a recipient."""
        recipient_id = _require_text(recipient_id, "recipient_id")
        token = _require_text(token, "token")
        parsed = _parse_platform(platform)
        record = self._registry.upsert(recipient_id, token, parsed)
        logger.info(
            "Device token registered",
            extra={"recipient_id": recipient_id, "token": token, "platform": str(parsed)},
        )
        return record

    def remove_token(self, recipient_id: str, token: str) -> None:
        """Hard-delete a token; the caller must own it.

        Raises:
            TokenNotFoundError: If the token is unknown or owned by another recipient
        """
        recipient_id = _require_text(recipient_id, "recipient_id")
        token = _require_text(token, "token")
        self._registry.remove(recipient_id, token)
        logger.info("Device token removed", extra={"recipient_id": recipient_id, "token": token})

    def list_tokens(self, recipient_id: str) -> tuple[DeviceToken, ...]:
        """Every record of a recipient, active or not."""
        return self._registry.tokens_for(_require_text(recipient_id, "recipient_id"))

    def prune_inactive(self, older_than_days: float) -> int:
        """Delete inactive records untouched for ``older_than_days`` days."""
        if older_than_days < 0:
            msg = "older_than_days must be a non-negative number"
            raise RequestValidationError(msg)
        cutoff = self._clock() - timedelta(days=older_than_days)
        removed = self._registry.prune_inactive(cutoff)
        logger.info("Inactive device tokens pruned", extra={"removed_count": removed})
        return removed

    # Dispatch operations

    async def notify_recipient(
        self,
        recipient_id: str,
        title: str,
        body: str,
        data: Mapping[str, object] | None = None,
        *,
        cancel_event: asyncio.Event | None = None,
        timeout: float | None = None,
    ) -> DispatchResult:
        """Send a visible notification to every active device of a recipient."""
        mode = NotifyRecipient(_require_text(recipient_id, "recipient_id"))
        intent = _visible_intent(title, body, data, None, None)
        return await self._dispatch(mode, intent, cancel_event, timeout)

    async def notify_by_platform(
        self,
        recipient_id: str,
        platform: Platform | str,
        title: str,
        body: str,
        data: Mapping[str, object] | None = None,
        *,
        icon: str | None = None,
        link: str | None = None,
        cancel_event: asyncio.Event | None = None,
        timeout: float | None = None,
    ) -> DispatchResult:
        """Send a platform-shaped notification to a recipient's devices on one platform."""
        mode = NotifyRecipientPlatform(_require_text(recipient_id, "recipient_id"), _parse_platform(platform))
        intent = _visible_intent(title, body, data, icon, link)
        return await self._dispatch(mode, intent, cancel_event, timeout)

    async def notify_device(
        self,
        token: str,
        title: str,
        body: str,
        data: Mapping[str, object] | None = None,
        *,
        cancel_event: asyncio.Event | None = None,
        timeout: float | None = None,
    ) -> DispatchResult:
        """Send a visible notification to one registered, active device token."""
        mode = NotifyDevice(_require_text(token, "token"))
        intent = _visible_intent(title, body, data, None, None)
        return await self._dispatch(mode, intent, cancel_event, timeout)

    async def send_data_only(
        self,
        recipient_id: str,
        data: Mapping[str, object],
        *,
        cancel_event: asyncio.Event | None = None,
        timeout: float | None = None,
    ) -> DispatchResult:
        """Send a silent data message to every active device of a recipient."""
        mode = SendDataOnly(_require_text(recipient_id, "recipient_id"))
        intent = _intent(title=None, body=None, data=data)
        if not intent.data:
            msg = "data must contain at least one key for a data-only message"
            raise RequestValidationError(msg)
        return await self._dispatch(mode, intent, cancel_event, timeout)

    async def broadcast(
        self,
        title: str,
        body: str,
        data: Mapping[str, object] | None = None,
        *,
        cancel_event: asyncio.Event | None = None,
        timeout: float | None = None,
    ) -> DispatchResult:
        """Send a visible notification to every active token in the registry."""
        intent = _visible_intent(title, body, data, None, None)
        return await self._dispatch(Broadcast(), intent, cancel_event, timeout)

    async def notify_topic(
        self,
        topic: str,
        title: str,
        body: str,
        data: Mapping[str, object] | None = None,
        *,
        cancel_event: asyncio.Event | None = None,
        timeout: float | None = None,
    ) -> DispatchResult:
        """Send a visible notification to every device subscribed to a topic."""
        mode = NotifyTopic(_require_text(topic, "topic"))
        intent = _visible_intent(title, body, data, None, None)
        return await self._dispatch(mode, intent, cancel_event, timeout)

    async def subscribe_recipient(
        self,
        recipient_id: str,
        topic: str,
        *,
        cancel_event: asyncio.Event | None = None,
        timeout: float | None = None,
    ) -> DispatchResult:
        """Subscribe every active device of a recipient to a topic."""
        recipient_id = _require_text(recipient_id, "recipient_id")
        topic = _require_text(topic, "topic")
        tokens = self._registry.active_tokens_for(recipient_id)
        return await self._engine.subscribe_topic(tokens, topic, cancel_event=cancel_event, timeout=timeout)

    async def unsubscribe_recipient(
        self,
        recipient_id: str,
        topic: str,
        *,
        cancel_event: asyncio.Event | None = None,
        timeout: float | None = None,
    ) -> DispatchResult:
        """Unsubscribe every active device of a recipient from a topic."""
        recipient_id = _require_text(recipient_id, "recipient_id")
        topic = _require_text(topic, "topic")
        tokens = self._registry.active_tokens_for(recipient_id)
        return await self._engine.unsubscribe_topic(tokens, topic, cancel_event=cancel_event, timeout=timeout)

    async def _dispatch(
        self,
        mode: DispatchMode,
        intent: NotificationIntent,
        cancel_event: asyncio.Event | None,
        timeout: float | None,
    ) -> DispatchResult:
        return await self._engine.dispatch(mode, intent, cancel_event=cancel_event, timeout=timeout)
