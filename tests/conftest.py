"""Pytest configuration and shared fixtures.

Organization:
    - Settings Fixtures: isolated EventCoreSettings
    - Bus Fixtures: EventBus, error observer, execution scope
    - Utility Fixtures: listener call recorder, event factory
"""

from __future__ import annotations

import os
import threading
from collections.abc import Callable, Generator
from typing import Any

import pytest

from transactional_events.core.events import (
    CollectingErrorObserver,
    Event,
    EventBus,
    ExecutionScope,
)
from transactional_events.core.settings import EventCoreSettings, clear_all_caches

# Never pick up a developer's conf/ directory
os.environ.setdefault("EVENTS_CONFIG_DIR", "/nonexistent-events-conf")
os.environ.setdefault("LOGGING_CONFIG_DIR", "/nonexistent-logging-conf")


# ============================================================================
# Settings Fixtures
# ============================================================================


@pytest.fixture(autouse=True)
def _clear_settings_cache() -> Generator[None]:
    """Reset cached settings around every test."""
    clear_all_caches()
    yield
    clear_all_caches()


@pytest.fixture
def event_settings() -> EventCoreSettings:
    """Settings with a small worker pool and tracing disabled."""
    return EventCoreSettings(async_max_workers=2, tracing_enabled=False)


# ============================================================================
# Bus Fixtures
# ============================================================================


@pytest.fixture
def observer() -> CollectingErrorObserver:
    """Error observer collecting listener failures."""
    return CollectingErrorObserver()


@pytest.fixture
def bus(event_settings: EventCoreSettings, observer: CollectingErrorObserver) -> Generator[EventBus]:
    """EventBus wired to the collecting observer; its worker pool is shut down afterwards."""
    event_bus = EventBus(settings=event_settings, error_observer=observer)
    yield event_bus
    event_bus.close()


@pytest.fixture
def scope() -> ExecutionScope:
    """Fresh execution scope."""
    return ExecutionScope("test")


# ============================================================================
# Utility Fixtures
# ============================================================================


class Recorder:
    """Thread-safe log of listener invocations.

    Example:
        def test_order(recorder):
            handler = recorder.handler("first")
            handler(event)
            assert recorder.names == ["first"]
    """

    def __init__(self) -> None:
        self.calls: list[tuple[str, Event]] = []
        self._lock = threading.Lock()

    def handler(self, name: str) -> Callable[[Event], None]:
        def _handle(event: Event) -> None:
            with self._lock:
                self.calls.append((name, event))

        _handle.__qualname__ = f"recorder.{name}"
        return _handle

    def failing(self, name: str, exc: Exception | None = None) -> Callable[[Event], None]:
        def _handle(event: Event) -> None:
            with self._lock:
                self.calls.append((name, event))
            raise exc or RuntimeError(f"{name} failed")

        _handle.__qualname__ = f"recorder.{name}"
        return _handle

    @property
    def names(self) -> list[str]:
        with self._lock:
            return [name for name, _ in self.calls]

    def events_for(self, name: str) -> list[Event]:
        with self._lock:
            return [event for n, event in self.calls if n == name]


@pytest.fixture
def recorder() -> Recorder:
    return Recorder()


@pytest.fixture
def make_event() -> Callable[..., Event]:
    """Factory for events with a default type id."""

    def _make(type_id: str = "user.created", **kwargs: Any) -> Event:
        return Event(type_id=type_id, **kwargs)

    return _make
