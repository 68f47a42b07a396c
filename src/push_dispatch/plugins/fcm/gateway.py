"""Firebase Cloud Messaging delivery gateway.

This module implements the DeliveryGateway Protocol on top of the
``firebase_admin`` SDK. The SDK is synchronous, so every call runs in a worker
thread via ``asyncio.to_thread``. Per-token rejections are reported as
outcomes; failures of a call as a whole raise ``TransportError``.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field

import firebase_admin
from firebase_admin import credentials, messaging
from firebase_admin import exceptions as firebase_exceptions

from push_dispatch.core.batching import GATEWAY_BATCH_LIMIT, TOPIC_MANAGEMENT_LIMIT
from push_dispatch.exceptions import TransportError
from push_dispatch.plugins.fcm.config import FCMConfig
from push_dispatch.plugins.fcm.converter import (
    is_invalid_token_error,
    outcome_from_exception,
    outcome_from_send_response,
    outcomes_from_topic_response,
    to_message,
    to_multicast,
)
from push_dispatch.types import DeliveryOutcome, PlatformMessage, TokenTarget, TopicTarget
from push_dispatch.utils.sanitization import sanitize_exception

__all__ = ["FirebaseGateway", "create_gateway", "initialize_firebase_app"]

# Per-message errors that concern the request rather than the token
_TRANSIENT_SEND_ERRORS: tuple[type[firebase_exceptions.FirebaseError], ...] = (
    messaging.QuotaExceededError,
    firebase_exceptions.ResourceExhaustedError,
    firebase_exceptions.UnavailableError,
    firebase_exceptions.InternalError,
    firebase_exceptions.DeadlineExceededError,
)


def initialize_firebase_app(config: FCMConfig) -> firebase_admin.App:
    """Return the named firebase_admin App, initializing it on first use."""
    try:
        return firebase_admin.get_app(config.app_name)
    except ValueError:
        pass

    if config.credentials_file is not None:
        credential: credentials.Base = credentials.Certificate(str(config.credentials_file))
    else:
        credential = credentials.ApplicationDefault()
    options = {"projectId": config.project_id} if config.project_id else None
    return firebase_admin.initialize_app(credential, options, name=config.app_name)


@dataclass(slots=True)
class FirebaseGateway:
    """DeliveryGateway implementation backed by Firebase Cloud Messaging."""

    config: FCMConfig
    app: firebase_admin.App | None = None
    _logger: logging.Logger = field(init=False, repr=False)

    def __post_init__(self) -> None:
        self._logger = logging.getLogger(__name__)

    def _app(self) -> firebase_admin.App:
        if self.app is None:
            try:
                self.app = initialize_firebase_app(self.config)
            except (ValueError, OSError) as exc:
                msg = f"Failed to initialize Firebase app: {sanitize_exception(exc)}"
                raise TransportError(msg) from exc
        return self.app

    async def send_to_target(
        self,
        message: PlatformMessage,
        target: TokenTarget | TopicTarget,
    ) -> DeliveryOutcome:
        """Send one message to a token or a topic."""
        match target:
            case TokenTarget(token=token):
                address = token
                sdk_message = to_message(message, token=token, web_link_base=self.config.web_link_base)
            case TopicTarget(topic=topic):
                address = topic
                sdk_message = to_message(message, topic=topic, web_link_base=self.config.web_link_base)

        app = self._app()
        try:
            message_id = await asyncio.to_thread(
                messaging.send,
                sdk_message,
                dry_run=self.config.validate_only,
                app=app,
            )
        except firebase_exceptions.FirebaseError as exc:
            if isinstance(target, TokenTarget) and is_invalid_token_error(exc):
                return outcome_from_exception(address, exc)
            if isinstance(exc, _TRANSIENT_SEND_ERRORS):
                return outcome_from_exception(address, exc)
            raise self._transport_error("send", exc) from exc
        except (ValueError, OSError) as exc:
            raise self._transport_error("send", exc) from exc

        return DeliveryOutcome.delivered(address, message_id)

    async def send_to_batch(
        self,
        message: PlatformMessage,
        tokens: Sequence[str],
    ) -> Sequence[DeliveryOutcome]:
        """Send one multicast message; outcomes follow the input token order."""
        if not tokens:
            return []
        if len(tokens) > GATEWAY_BATCH_LIMIT:
            msg = f"Multicast accepts at most {GATEWAY_BATCH_LIMIT} tokens, got {len(tokens)}"
            raise ValueError(msg)

        sdk_message = to_multicast(message, tokens, web_link_base=self.config.web_link_base)
        app = self._app()
        try:
            response = await asyncio.to_thread(
                messaging.send_each_for_multicast,
                sdk_message,
                dry_run=self.config.validate_only,
                app=app,
            )
        except (firebase_exceptions.FirebaseError, ValueError, OSError) as exc:
            raise self._transport_error("multicast", exc) from exc

        responses = list(response.responses)
        if len(responses) != len(tokens):
            msg = f"FCM returned {len(responses)} responses for {len(tokens)} tokens"
            raise TransportError(msg)

        outcomes = [
            outcome_from_send_response(token, item) for token, item in zip(tokens, responses, strict=True)
        ]
        self._logger.debug(
            "Multicast completed",
            extra={"token_count": len(tokens), "success_count": response.success_count},
        )
        return outcomes

    async def subscribe_topic(self, tokens: Sequence[str], topic: str) -> Sequence[DeliveryOutcome]:
        """Subscribe up to 1000 tokens to ``topic``."""
        return await self._manage_topic(messaging.subscribe_to_topic, tokens, topic)

    async def unsubscribe_topic(self, tokens: Sequence[str], topic: str) -> Sequence[DeliveryOutcome]:
        """Unsubscribe up to 1000 tokens from ``topic``."""
        return await self._manage_topic(messaging.unsubscribe_from_topic, tokens, topic)

    async def _manage_topic(
        self,
        operation: Callable[..., messaging.TopicManagementResponse],
        tokens: Sequence[str],
        topic: str,
    ) -> Sequence[DeliveryOutcome]:
        if not tokens:
            return []
        if len(tokens) > TOPIC_MANAGEMENT_LIMIT:
            msg = f"Topic management accepts at most {TOPIC_MANAGEMENT_LIMIT} tokens, got {len(tokens)}"
            raise ValueError(msg)

        app = self._app()
        try:
            response = await asyncio.to_thread(operation, list(tokens), topic, app=app)
        except (firebase_exceptions.FirebaseError, ValueError, OSError) as exc:
            raise self._transport_error("topic management", exc) from exc
        return outcomes_from_topic_response(tokens, response)

    def _transport_error(self, operation: str, exc: BaseException) -> TransportError:
        error = sanitize_exception(exc)
        self._logger.warning(
            "FCM %s call failed: %s",
            operation,
            error,
            extra={"gateway_operation": operation},
        )
        return TransportError(f"FCM {operation} failed: {error}")


def create_gateway(config: FCMConfig) -> FirebaseGateway:
    """Factory used by the gateway loader.

    The firebase_admin App is created lazily on the first call, so building
    the gateway never touches credentials or the network.
    """
    return FirebaseGateway(config=config)
