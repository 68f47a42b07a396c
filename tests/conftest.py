"""Pytest configuration and shared fixtures."""

from __future__ import annotations

from collections.abc import Generator
from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest

from push_dispatch.core.dispatcher import DispatchEngine
from push_dispatch.core.registry import InMemoryTokenRegistry
from push_dispatch.core.sqlite_registry import SQLiteTokenRegistry
from push_dispatch.types import TokenRegistry
from push_dispatch.utils.logging import clear_correlation_id
from tests.fixtures.fakes import FakeGateway, RecordingSink


class SteppingClock:
    """Deterministic wall clock advancing one second per reading."""

    def __init__(self, start: datetime | None = None) -> None:
        self.current: datetime = start or datetime(2024, 1, 1, tzinfo=UTC)

    def __call__(self) -> datetime:
        self.current += timedelta(seconds=1)
        return self.current


@pytest.fixture(autouse=True)
def _reset_correlation_id() -> Generator[None]:
    clear_correlation_id()
    yield
    clear_correlation_id()


@pytest.fixture
def clock() -> SteppingClock:
    """Deterministic timestamp source for registries."""
    return SteppingClock()


@pytest.fixture(params=["memory", "sqlite"])
def registry(request: pytest.FixtureRequest, clock: SteppingClock) -> Generator[TokenRegistry]:
    """Every TokenRegistry implementation, so contract tests run against each."""
    if request.param == "memory":
        yield InMemoryTokenRegistry(clock=clock)
        return
    sqlite_registry = SQLiteTokenRegistry(":memory:", page_size=7, clock=clock)
    try:
        yield sqlite_registry
    finally:
        sqlite_registry.close()


@pytest.fixture
def memory_registry(clock: SteppingClock) -> InMemoryTokenRegistry:
    return InMemoryTokenRegistry(clock=clock)


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
def sink() -> RecordingSink:
    return RecordingSink()


@pytest.fixture
def engine(
    memory_registry: InMemoryTokenRegistry,
    gateway: FakeGateway,
    sink: RecordingSink,
) -> DispatchEngine:
    """Dispatch engine over the in-memory registry and the fake gateway."""
    return DispatchEngine(
        memory_registry,
        gateway,
        event_sink=sink,
        dispatch_id_factory=lambda: "dispatch-1",
    )


@pytest.fixture
def config_dir(tmp_path: Path) -> Path:
    """Directory holding a valid main config and fcm plugin config."""
    plugin_config = tmp_path / "fcm.yaml"
    _ = plugin_config.write_text(
        "app_name: push-dispatch-tests\nproject_id: demo-project\n",
        encoding="utf-8",
    )
    main_config = tmp_path / "push-dispatch.yaml"
    _ = main_config.write_text(
        "\n".join(
            [
                "application:",
                "  log_level: INFO",
                "  syslog_enabled: false",
                "dispatch:",
                "  batch_size: 500",
                "  max_concurrency: 2",
                "registry:",
                f"  database_path: {tmp_path / 'tokens.db'}",
                "gateway:",
                "  provider: fcm",
                f"  config_file: {plugin_config}",
                "",
            ]
        ),
        encoding="utf-8",
    )
    return tmp_path
