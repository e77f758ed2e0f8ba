"""Shared pytest configuration and fixtures."""

from collections.abc import Callable, Generator
from datetime import UTC, datetime, timedelta
from typing import Any
from unittest.mock import patch

import pytest

from quinn.config import Settings, get_settings
from quinn.telemetry.storage import MemoryStorage
from quinn.telemetry.store import TelemetryStore


def pytest_addoption(parser: pytest.Parser) -> None:
    parser.addoption(
        "--run-e2e",
        action="store_true",
        default=False,
        help="Run e2e tests that hit real services (requires .env with valid credentials)",
    )


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    if config.getoption("--run-e2e"):
        return
    skip_e2e = pytest.mark.skip(reason="Need --run-e2e flag to run")
    for item in items:
        if "e2e" in item.keywords:
            item.add_marker(skip_e2e)


@pytest.fixture(autouse=True)
def _no_dotenv(request: pytest.FixtureRequest) -> Generator[None]:
    """Block .env loading so a developer's local settings never leak into tests."""
    if "e2e" in request.keywords:
        yield
        return

    get_settings.cache_clear()
    original = Settings.model_config.get("env_file")
    Settings.model_config["env_file"] = None

    try:
        yield
    finally:
        Settings.model_config["env_file"] = original
        get_settings.cache_clear()


@pytest.fixture
def mock_settings() -> Generator[Any]:
    """Provide fake settings so tests don't need a .env file.

    Patches get_settings at every import site so cached references are overridden.
    """
    fake_settings = type(
        "FakeSettings",
        (),
        {
            "store_db_path": "",
            # Simulator off so the API lifespan doesn't start a scheduler
            "simulator_enabled": False,
            "simulator_initial_delay_min": 8.0,
            "simulator_initial_delay_max": 15.0,
            "simulator_interval_min": 30.0,
            "simulator_interval_max": 60.0,
            "simulator_auto_resolve_after_seconds": 90.0,
            "simulator_auto_resolve_probability": 0.3,
            # Current user
            "current_user_id": "u1",
            "current_user_name": "You",
            "current_user_role": "ops",
            # Upstream gateway
            "openai_api_key": "sk-test-fake",
            "openai_model": "gpt-4o-mini",
            "openai_base_url": "https://gateway.test/v1",
            # Analysis client
            "analysis_url": "http://quinn.test/analysis/chat",
            "analysis_timeout_seconds": 5.0,
        },
    )()
    with (
        patch("quinn.config.get_settings", return_value=fake_settings),
        patch("quinn.telemetry.lifecycle.get_settings", return_value=fake_settings),
        patch("quinn.telemetry.scheduler.get_settings", return_value=fake_settings),
        patch("quinn.analysis.stream.get_settings", return_value=fake_settings),
        patch("quinn.api.main.get_settings", return_value=fake_settings),
        patch("quinn.cli.get_settings", return_value=fake_settings),
    ):
        yield fake_settings


# ---------------------------------------------------------------------------
# Telemetry fakes
# ---------------------------------------------------------------------------


class FakeClock:
    """Settable clock; call it to read the current time."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2026, 10, 18, 12, 0, 0, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


class FakeTimer:
    def __init__(self, owner: "FakeTimers", delay: float, callback: Callable[[], None]) -> None:
        self.owner = owner
        self.delay = delay
        self.callback = callback
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True
        if self in self.owner.pending:
            self.owner.pending.remove(self)


class FakeTimers:
    """Records armed timers; tests fire them by hand."""

    def __init__(self) -> None:
        self.pending: list[FakeTimer] = []
        self.armed: list[FakeTimer] = []

    def call_later(self, delay: float, callback: Callable[[], None]) -> FakeTimer:
        timer = FakeTimer(self, delay, callback)
        self.pending.append(timer)
        self.armed.append(timer)
        return timer

    def fire_next(self) -> FakeTimer:
        timer = self.pending.pop(0)
        timer.callback()
        return timer


@pytest.fixture
def storage() -> MemoryStorage:
    return MemoryStorage()


@pytest.fixture
def store(storage: MemoryStorage) -> TelemetryStore:
    return TelemetryStore(storage)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def timers() -> FakeTimers:
    return FakeTimers()
