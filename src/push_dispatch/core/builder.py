"""Message builder shaping notification intents into platform payloads.

Pure functions only: the same intent and variant always yield an equal
message, and nothing here touches the registry or the gateway.
"""

from __future__ import annotations

from typing import Final

from push_dispatch.exceptions import InvalidIntentError
from push_dispatch.types import (
    AndroidOptions,
    MessageKind,
    NotificationIntent,
    Platform,
    PlatformMessage,
    WebOptions,
)

__all__ = ["build_message", "variant_for_platform"]

ANDROID_PRIORITY: Final[str] = "high"
ANDROID_SOUND: Final[str] = "default"
DEFAULT_WEB_ICON: Final[str] = "/icon.png"
DEFAULT_WEB_LINK: Final[str] = "/"

_PLATFORM_VARIANTS: Final[dict[Platform, MessageKind]] = {
    Platform.ANDROID: MessageKind.ANDROID,
    Platform.WEB: MessageKind.WEB,
    Platform.IOS: MessageKind.GENERIC,
}


def variant_for_platform(platform: Platform) -> MessageKind:
    """Return the message variant used when targeting a single platform."""
    return _PLATFORM_VARIANTS[platform]


def build_message(intent: NotificationIntent, kind: MessageKind) -> PlatformMessage:
    """Shape an intent into the requested message variant.

    Args:
        intent: Caller-supplied notification content
        kind: Variant to produce

    Returns:
        Message ready for the delivery gateway

    Raises:
        InvalidIntentError: If a visible variant lacks title or body, or a
            data-only variant has no data
    """
    data = dict(intent.data)

    if kind is MessageKind.DATA_ONLY:
        if not data:
            msg = "Data-only messages require a non-empty data payload"
            raise InvalidIntentError(msg)
        return PlatformMessage(kind=kind, data=data)

    title, body = _require_visible(intent)

    match kind:
        case MessageKind.GENERIC:
            return PlatformMessage(kind=kind, title=title, body=body, data=data)
        case MessageKind.ANDROID:
            return PlatformMessage(
                kind=kind,
                title=title,
                body=body,
                data=data,
                android=AndroidOptions(priority=ANDROID_PRIORITY, sound=ANDROID_SOUND),
            )
        case MessageKind.WEB:
            return PlatformMessage(
                kind=kind,
                title=title,
                body=body,
                data=data,
                web=WebOptions(
                    icon=intent.icon or DEFAULT_WEB_ICON,
                    link=intent.link or DEFAULT_WEB_LINK,
                ),
            )
        case _:
            msg = f"Unsupported message kind: {kind}"
            raise InvalidIntentError(msg)


def _require_visible(intent: NotificationIntent) -> tuple[str, str]:
    if not intent.title or not intent.title.strip():
        msg = "Visible notifications require a title"
        raise InvalidIntentError(msg)
    if not intent.body or not intent.body.strip():
        msg = "Visible notifications require a body"
        raise InvalidIntentError(msg)
    return intent.title, intent.body
