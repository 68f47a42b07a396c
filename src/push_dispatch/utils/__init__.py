"""Shared utility modules for logging and log sanitization.

All utilities stay gateway-agnostic; gateway plugins extend sanitization by
registering their own patterns.
"""

from push_dispatch.utils.logging import (
    LoggingEventSink,
    configure_logging,
    get_correlation_id,
    get_logger,
    log_with_context,
    set_correlation_id,
)
from push_dispatch.utils.sanitization import (
    REDACTED,
    mask_token,
    register_sanitization_pattern,
    sanitize_exception,
    sanitize_value,
)

__all__ = [
    # Logging
    "LoggingEventSink",
    "configure_logging",
    "get_correlation_id",
    "get_logger",
    "log_with_context",
    "set_correlation_id",
    # Sanitization
    "REDACTED",
    "mask_token",
    "register_sanitization_pattern",
    "sanitize_exception",
    "sanitize_value",
]
