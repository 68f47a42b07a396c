"""Structured logging infrastructure with syslog integration and correlation ID tracking.

This module configures stdlib logging for push-dispatch: a console handler,
an optional syslog handler, a correlation ID filter that stamps every record
with the current dispatch ID, and a redaction filter that masks push tokens
and removes credentials. It also provides ``LoggingEventSink``, the default
consumer of the dispatch engine's structured events.
"""

import contextvars
import logging
import logging.handlers
import sys
from collections.abc import Mapping
from typing import Final, override

from push_dispatch.types.models import DispatchEvent, EventKind
from push_dispatch.utils.sanitization import (
    sanitize_args,
    sanitize_value,
)

# Correlation ID context variable; inherited by asyncio tasks created in the same context
correlation_id_var: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "correlation_id",
    default=None,
)

DEFAULT_LOG_FORMAT: Final[str] = "%(asctime)s - %(name)s - %(levelname)s - [%(correlation_id)s] - %(message)s"

SYSLOG_LOG_FORMAT: Final[str] = (
    "push-dispatch[%(process)d]: %(levelname)s - [%(correlation_id)s] - %(name)s - %(message)s"
)

DEFAULT_SYSLOG_ADDRESS: Final[str] = "/dev/log"

# LogRecord attributes that are never treated as structured extras
_STANDARD_RECORD_ATTRS: Final[frozenset[str]] = frozenset(
    {
        "name",
        "msg",
        "args",
        "created",
        "filename",
        "funcName",
        "levelname",
        "levelno",
        "lineno",
        "module",
        "msecs",
        "pathname",
        "process",
        "processName",
        "relativeCreated",
        "thread",
        "threadName",
        "taskName",
        "exc_info",
        "exc_text",
        "stack_info",
        "correlation_id",
    }
)

# Log level per event kind; kinds not listed log at INFO
_EVENT_LEVELS: Final[Mapping[EventKind, int]] = {
    EventKind.CHUNK_SENT: logging.DEBUG,
    EventKind.TOKEN_DEACTIVATED: logging.INFO,
    EventKind.NO_ACTIVE_TOKENS: logging.WARNING,
    EventKind.DISPATCH_CANCELLED: logging.WARNING,
    EventKind.CHUNK_TIMEOUT: logging.WARNING,
    EventKind.CHUNK_FAILED: logging.ERROR,
}

_EVENT_MESSAGES: Final[Mapping[EventKind, str]] = {
    EventKind.DISPATCH_STARTED: "Dispatch started",
    EventKind.NO_ACTIVE_TOKENS: "No active tokens resolved for dispatch",
    EventKind.DRY_RUN: "Dry-run dispatch recorded",
    EventKind.CHUNK_SENT: "Chunk delivered to gateway",
    EventKind.CHUNK_FAILED: "Gateway call failed for chunk",
    EventKind.CHUNK_TIMEOUT: "Gateway call timed out for chunk",
    EventKind.TOKEN_DEACTIVATED: "Token deactivated after gateway rejection",
    EventKind.DISPATCH_CANCELLED: "Dispatch cancelled before all chunks were sent",
    EventKind.DISPATCH_COMPLETED: "Dispatch completed",
}


class CorrelationIDFilter(logging.Filter):
    """Logging filter that adds the current dispatch ID to log records."""

    @override
    def filter(self, record: logging.LogRecord) -> bool:
        """Add correlation ID to log record from ContextVar.

        Args:
            record: Log record to enhance with correlation ID

        Returns:
            True to allow the record to be logged
        """
        correlation_id = correlation_id_var.get()
        record.correlation_id = correlation_id if correlation_id is not None else "N/A"
        return True


class SecretRedactingFilter(logging.Filter):
    """Logging filter that masks push tokens and redacts credentials.

    Sanitizes the message text, the ``args`` tuple used for % formatting, and
    every structured field passed through ``extra``.

    Examples:
        >>> logger.info("Deactivated", extra={"token": "device-token-0123456789"})
        # extra sanitized to: {"token": "devi...6789"}
    """

    @override
    def filter(self, record: logging.LogRecord) -> bool:
        """Sanitize sensitive information from log record.

        Args:
            record: Log record to sanitize

        Returns:
            True to allow the record to be logged (always)
        """
        if isinstance(record.msg, str):
            sanitized_msg = sanitize_value(record.msg)
            if isinstance(sanitized_msg, str):
                record.msg = sanitized_msg

        if record.args and isinstance(record.args, tuple):
            record.args = sanitize_args(record.args)

        for attr_name in list(record.__dict__.keys()):
            if attr_name not in _STANDARD_RECORD_ATTRS and not attr_name.startswith("_"):
                attr_value: object = getattr(record, attr_name)  # pyright: ignore[reportAny]
                setattr(record, attr_name, sanitize_value(attr_value, field_name=attr_name))

        return True


def configure_logging(
    *,
    log_level: str = "INFO",
    enable_syslog: bool = True,
    syslog_address: str = DEFAULT_SYSLOG_ADDRESS,
    enable_console: bool = True,
) -> None:
    """Configure application logging with syslog integration and structured output.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        enable_syslog: Enable syslog handler
        syslog_address: Syslog socket address
        enable_console: Enable console output handler (stderr, so stdout stays
            free for command output)

    Example:
        >>> configure_logging(log_level="INFO", enable_syslog=False)
        >>> set_correlation_id("abc-123")
        >>> get_logger(__name__).info("Dispatch started")
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, log_level.upper(), logging.INFO))

    # Remove existing handlers to avoid duplicates
    root_logger.handlers.clear()

    correlation_filter = CorrelationIDFilter()
    secret_filter = SecretRedactingFilter()

    if enable_syslog:
        try:
            syslog_handler = logging.handlers.SysLogHandler(
                address=syslog_address,
                facility=logging.handlers.SysLogHandler.LOG_DAEMON,
            )
            syslog_handler.setFormatter(logging.Formatter(SYSLOG_LOG_FORMAT))
            syslog_handler.addFilter(correlation_filter)
            syslog_handler.addFilter(secret_filter)
            root_logger.addHandler(syslog_handler)
        except OSError as exc:
            # Syslog not available (e.g., containers, development machines)
            print(
                f"Warning: Could not connect to syslog at {syslog_address}: {exc}",
                file=sys.stderr,
            )

    if enable_console:
        console_handler = logging.StreamHandler(sys.stderr)
        console_handler.setFormatter(logging.Formatter(DEFAULT_LOG_FORMAT))
        console_handler.addFilter(correlation_filter)
        console_handler.addFilter(secret_filter)
        root_logger.addHandler(console_handler)


def get_logger(name: str) -> logging.Logger:
    """Get a logger instance for the specified module.

    Args:
        name: Logger name (typically __name__ from calling module)

    Returns:
        Logger instance
    """
    return logging.getLogger(name)


def set_correlation_id(correlation_id: str) -> contextvars.Token[str | None]:
    """Set the correlation ID for the current context.

    Args:
        correlation_id: Unique identifier for correlation (e.g., the dispatch ID)

    Returns:
        Context token that restores the previous value via ``reset_correlation_id``
    """
    return correlation_id_var.set(correlation_id)


def reset_correlation_id(token: contextvars.Token[str | None]) -> None:
    """Restore the correlation ID that was current before ``set_correlation_id``."""
    correlation_id_var.reset(token)


def get_correlation_id() -> str | None:
    """Get the current correlation ID from context.

    Returns:
        Current correlation ID or None if not set
    """
    return correlation_id_var.get()


def clear_correlation_id() -> None:
    """Clear the correlation ID from the current context."""
    _ = correlation_id_var.set(None)


def log_with_context(
    logger: logging.Logger,
    level: int,
    message: str,
    *,
    extra: Mapping[str, object] | None = None,
) -> None:
    """Log a message with additional context fields.

    Args:
        logger: Logger instance to use
        level: Logging level (e.g., logging.INFO)
        message: Log message
        extra: Additional context fields to include in log

    Example:
        >>> log_with_context(
        ...     get_logger(__name__),
        ...     logging.INFO,
        ...     "Chunk delivered to gateway",
        ...     extra={"chunk_index": 0, "chunk_size": 500, "delivered": 498},
        ... )
    """
    context = dict(extra) if extra else {}

    correlation_id = get_correlation_id()
    if correlation_id:
        context["correlation_id"] = correlation_id

    logger.log(level, message, extra=context)


class LoggingEventSink:
    """Dispatch event consumer that writes each event as a structured log record.

    This is the default sink of the dispatch engine; tests and embedding
    applications inject their own callable instead.
    """

    def __init__(self, logger_obj: logging.Logger | None = None) -> None:
        self._logger: logging.Logger = logger_obj or get_logger("push_dispatch.events")

    def __call__(self, event: DispatchEvent) -> None:
        level = _EVENT_LEVELS.get(event.kind, logging.INFO)
        if not self._logger.isEnabledFor(level):
            return
        fields = {key: value for key, value in event.fields.items() if key not in _STANDARD_RECORD_ATTRS}
        fields["event_kind"] = str(event.kind)
        fields["dispatch_id"] = event.dispatch_id
        log_with_context(
            self._logger,
            level,
            _EVENT_MESSAGES.get(event.kind, str(event.kind)),
            extra=fields,
        )
