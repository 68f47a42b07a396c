"""Conversion between push-dispatch messages and firebase_admin messaging types.

Outbound: ``PlatformMessage`` -> ``messaging.Message`` / ``MulticastMessage``.
Inbound: SDK responses and exceptions -> ``DeliveryOutcome``.
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import Final
from urllib.parse import urljoin, urlparse

from firebase_admin import exceptions as firebase_exceptions
from firebase_admin import messaging

from push_dispatch.types import DeliveryOutcome, MessageKind, PlatformMessage

__all__ = [
    "is_invalid_token_error",
    "outcome_from_exception",
    "outcome_from_send_response",
    "outcomes_from_topic_response",
    "resolve_web_link",
    "to_message",
    "to_multicast",
]

# Topic management ErrorInfo reasons meaning the token itself is unusable,
# both as mapped by the SDK and as raw Instance ID server codes
INVALID_TOKEN_REASONS: Final[frozenset[str]] = frozenset(
    {
        "registration-token-not-registered",
        "invalid-argument",
        "invalid-registration-token",
        "NOT_FOUND",
        "INVALID_ARGUMENT",
    }
)

# Background delivery on iOS requires a low-priority content-available push
_APNS_BACKGROUND_HEADERS: Final[dict[str, str]] = {
    "apns-push-type": "background",
    "apns-priority": "5",
}


def resolve_web_link(link: str, web_link_base: str | None) -> str | None:
    """Return an absolute HTTPS link, or None when one cannot be formed.

    Examples:
        >>> resolve_web_link("/inbox", "https://app.example.com")
        'https://app.example.com/inbox'
        >>> resolve_web_link("/inbox", None) is None
        True
    """
    candidate = link
    if urlparse(link).scheme == "" and web_link_base:
        candidate = urljoin(web_link_base, link)
    parsed = urlparse(candidate)
    if parsed.scheme == "https" and parsed.netloc:
        return candidate
    return None


def _notification(message: PlatformMessage) -> messaging.Notification | None:
    if message.title is None or message.body is None:
        return None
    return messaging.Notification(title=message.title, body=message.body)


def _android(message: PlatformMessage) -> messaging.AndroidConfig | None:
    if message.android is not None:
        return messaging.AndroidConfig(
            priority=message.android.priority,
            notification=messaging.AndroidNotification(sound=message.android.sound),
        )
    if message.kind is MessageKind.DATA_ONLY:
        return messaging.AndroidConfig(priority="high")
    return None


def _webpush(message: PlatformMessage, web_link_base: str | None) -> messaging.WebpushConfig | None:
    if message.web is None:
        return None
    notification = messaging.WebpushNotification(
        title=message.title,
        body=message.body,
        icon=message.web.icon,
    )
    link = resolve_web_link(message.web.link, web_link_base)
    if link is not None:
        return messaging.WebpushConfig(
            notification=notification,
            fcm_options=messaging.WebpushFCMOptions(link=link),
        )
    # FCM only accepts HTTPS click-through links; pass anything else to the client as data
    return messaging.WebpushConfig(
        notification=notification,
        data={**message.data, "link": message.web.link},
    )


def _apns(message: PlatformMessage) -> messaging.APNSConfig | None:
    if message.kind is not MessageKind.DATA_ONLY:
        return None
    return messaging.APNSConfig(
        headers=dict(_APNS_BACKGROUND_HEADERS),
        payload=messaging.APNSPayload(aps=messaging.Aps(content_available=True)),
    )


def to_message(
    message: PlatformMessage,
    *,
    token: str | None = None,
    topic: str | None = None,
    web_link_base: str | None = None,
) -> messaging.Message:
    """Build a single-target SDK message addressed to a token or a topic."""
    if (token is None) == (topic is None):
        msg = "Exactly one of token or topic must be provided"
        raise ValueError(msg)
    return messaging.Message(
        data=dict(message.data) or None,
        notification=_notification(message),
        android=_android(message),
        webpush=_webpush(message, web_link_base),
        apns=_apns(message),
        token=token,
        topic=topic,
    )


def to_multicast(
    message: PlatformMessage,
    tokens: Sequence[str],
    *,
    web_link_base: str | None = None,
) -> messaging.MulticastMessage:
    """Build a multicast SDK message for up to 500 tokens."""
    return messaging.MulticastMessage(
        tokens=list(tokens),
        data=dict(message.data) or None,
        notification=_notification(message),
        android=_android(message),
        webpush=_webpush(message, web_link_base),
        apns=_apns(message),
    )


def is_invalid_token_error(exc: BaseException) -> bool:
    """True when FCM rejected the token itself rather than the request."""
    if isinstance(exc, (messaging.UnregisteredError, messaging.SenderIdMismatchError)):
        return True
    if not isinstance(exc, firebase_exceptions.InvalidArgumentError):
        return False
    return "registration token" in str(exc).lower()


def outcome_from_exception(target: str, exc: BaseException) -> DeliveryOutcome:
    """Map a per-message SDK exception to an outcome."""
    reason = f"{type(exc).__name__}: {exc}"
    if is_invalid_token_error(exc):
        return DeliveryOutcome.invalid_token(target, reason)
    return DeliveryOutcome.transient(target, reason)


def outcome_from_send_response(token: str, response: messaging.SendResponse) -> DeliveryOutcome:
    """Map one entry of a multicast BatchResponse to an outcome."""
    if response.success:
        return DeliveryOutcome.delivered(token, response.message_id)
    exc = response.exception
    if exc is None:
        return DeliveryOutcome.transient(token, "FCM reported failure without an error")
    return outcome_from_exception(token, exc)


def outcomes_from_topic_response(
    tokens: Sequence[str],
    response: messaging.TopicManagementResponse,
) -> list[DeliveryOutcome]:
    """Map a topic management response (errors keyed by token index) to outcomes."""
    outcomes = [DeliveryOutcome.delivered(token) for token in tokens]
    for error in response.errors:
        token = tokens[error.index]
        if error.reason in INVALID_TOKEN_REASONS:
            outcomes[error.index] = DeliveryOutcome.invalid_token(token, error.reason)
        else:
            outcomes[error.index] = DeliveryOutcome.transient(token, error.reason)
    return outcomes
