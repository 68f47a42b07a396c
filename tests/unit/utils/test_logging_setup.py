"""Tests for logging configuration, filters, and the logging event sink."""

from __future__ import annotations

import logging
from collections.abc import Generator

import pytest

from push_dispatch.types import DispatchEvent, EventKind
from push_dispatch.utils.logging import (
    CorrelationIDFilter,
    LoggingEventSink,
    SecretRedactingFilter,
    configure_logging,
    get_correlation_id,
    log_with_context,
    reset_correlation_id,
    set_correlation_id,
)


def _record(msg: str = "message", **extra: object) -> logging.LogRecord:
    record = logging.LogRecord("test", logging.INFO, __file__, 1, msg, None, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


@pytest.fixture
def restore_root_logger() -> Generator[None]:
    root = logging.getLogger()
    handlers = list(root.handlers)
    level = root.level
    yield
    root.handlers[:] = handlers
    root.setLevel(level)


class TestCorrelationId:
    def test_filter_uses_placeholder_without_context(self) -> None:
        record = _record()

        assert CorrelationIDFilter().filter(record)
        assert getattr(record, "correlation_id") == "N/A"

    def test_filter_reads_context_value(self) -> None:
        token = set_correlation_id("dispatch-42")
        try:
            record = _record()
            _ = CorrelationIDFilter().filter(record)
        finally:
            reset_correlation_id(token)

        assert getattr(record, "correlation_id") == "dispatch-42"
        assert get_correlation_id() is None

    def test_reset_restores_outer_value(self) -> None:
        outer = set_correlation_id("outer")
        inner = set_correlation_id("inner")

        reset_correlation_id(inner)
        assert get_correlation_id() == "outer"
        reset_correlation_id(outer)


class TestSecretRedactingFilter:
    """Records are sanitized in place and always allowed through."""

    def test_masks_token_extras_and_redacts_credentials(self) -> None:
        record = _record(token="device-token-0123456789", client_secret="s3cr3t", chunk_size=500)

        assert SecretRedactingFilter().filter(record)

        assert getattr(record, "token") == "devi...6789"
        assert getattr(record, "client_secret") == "<REDACTED>"
        assert getattr(record, "chunk_size") == 500

    def test_scrubs_message_and_args(self) -> None:
        record = logging.LogRecord(
            "test", logging.INFO, __file__, 1, "Calling %s", ("https://x?access_token=abc",), None
        )

        _ = SecretRedactingFilter().filter(record)

        assert record.getMessage() == "Calling https://x?access_token=<REDACTED>"


@pytest.mark.usefixtures("restore_root_logger")
class TestConfigureLogging:
    def test_console_only(self) -> None:
        configure_logging(log_level="DEBUG", enable_syslog=False)

        root = logging.getLogger()
        assert root.level == logging.DEBUG
        assert len(root.handlers) == 1
        filter_types = {type(f) for f in root.handlers[0].filters}
        assert filter_types == {CorrelationIDFilter, SecretRedactingFilter}

    def test_all_handlers_disabled(self) -> None:
        configure_logging(enable_syslog=False, enable_console=False)

        assert logging.getLogger().handlers == []


def test_log_with_context_adds_correlation_id(caplog: pytest.LogCaptureFixture) -> None:
    logger = logging.getLogger("push_dispatch.tests.context")
    token = set_correlation_id("dispatch-7")
    try:
        with caplog.at_level(logging.INFO, logger=logger.name):
            log_with_context(logger, logging.INFO, "Chunk delivered", extra={"chunk_index": 3})
    finally:
        reset_correlation_id(token)

    record = caplog.records[0]
    assert getattr(record, "chunk_index") == 3
    assert getattr(record, "correlation_id") == "dispatch-7"


class TestLoggingEventSink:
    """Dispatch events become structured log records."""

    def test_levels_follow_event_kind(self, caplog: pytest.LogCaptureFixture) -> None:
        sink = LoggingEventSink(logging.getLogger("push_dispatch.tests.events"))

        with caplog.at_level(logging.DEBUG, logger="push_dispatch.tests.events"):
            sink(DispatchEvent(EventKind.DISPATCH_STARTED, "d-1", {"mode": "Broadcast"}))
            sink(DispatchEvent(EventKind.CHUNK_FAILED, "d-1", {"chunk_index": 1}))
            sink(DispatchEvent(EventKind.NO_ACTIVE_TOKENS, "d-1"))

        assert [record.levelno for record in caplog.records] == [logging.INFO, logging.ERROR, logging.WARNING]
        assert caplog.records[0].getMessage() == "Dispatch started"
        assert getattr(caplog.records[1], "event_kind") == "chunk_failed"
        assert getattr(caplog.records[1], "dispatch_id") == "d-1"

    def test_disabled_levels_are_skipped(self, caplog: pytest.LogCaptureFixture) -> None:
        sink = LoggingEventSink(logging.getLogger("push_dispatch.tests.quiet"))

        with caplog.at_level(logging.INFO, logger="push_dispatch.tests.quiet"):
            sink(DispatchEvent(EventKind.CHUNK_SENT, "d-1", {"chunk_index": 0}))

        assert caplog.records == []

    def test_reserved_field_names_are_dropped(self, caplog: pytest.LogCaptureFixture) -> None:
        sink = LoggingEventSink(logging.getLogger("push_dispatch.tests.reserved"))

        with caplog.at_level(logging.INFO, logger="push_dispatch.tests.reserved"):
            sink(DispatchEvent(EventKind.DISPATCH_COMPLETED, "d-2", {"name": "clash", "delivered": 3}))

        assert caplog.records[0].name == "push_dispatch.tests.reserved"
        assert getattr(caplog.records[0], "delivered") == 3
