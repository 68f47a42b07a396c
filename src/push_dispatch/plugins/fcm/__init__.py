"""Firebase Cloud Messaging gateway plugin metadata registration."""

import re
from typing import Final

from push_dispatch.plugins.discovery import PluginMetadata, register_plugin
from push_dispatch.plugins.fcm.config import FCMConfig
from push_dispatch.utils.sanitization import REDACTED, register_sanitization_pattern

# Legacy-format FCM registration tokens: <instance id>:APA91<opaque>
_FCM_TOKEN_PATTERN: Final[re.Pattern[str]] = re.compile(r"\b[\w-]{8,}:APA91[\w-]{20,}")

register_plugin(
    PluginMetadata(
        identifier="fcm",
        name="Firebase Cloud Messaging",
        package=__name__,
        version="0.1.0",
        config_model=FCMConfig,
        description="Delivers push notifications through Firebase Cloud Messaging.",
        entrypoint="push_dispatch.plugins.fcm.gateway:create_gateway",
    )
)

# Registered at import time so log redaction works before any gateway exists
register_sanitization_pattern(_FCM_TOKEN_PATTERN, REDACTED)
