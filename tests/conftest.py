"""
Shared pytest fixtures for sprout tests.

Provides a controllable clock, a mocked action dispatcher and schedulers
wired to a private metrics registry so tests never share metric state.
"""

from __future__ import annotations

import threading
from datetime import UTC, datetime, timedelta
from unittest.mock import MagicMock

import pytest

from sprout.core.scheduling import JobScheduler
from sprout.core.settings import clear_settings_cache
from sprout.garden.protocols import ActionDispatcher
from sprout.observability.metrics import MetricsRegistry, SchedulerMetrics

# A Wednesday in May, so active-period and start-time tests have a fixed calendar.
FIXED_NOW = datetime(2024, 5, 15, 12, 0, 0, tzinfo=UTC)


class FrozenClock:
    """Callable clock that only moves when told to."""

    def __init__(self, now: datetime = FIXED_NOW):
        self.now = now
        self._lock = threading.Lock()

    def __call__(self) -> datetime:
        with self._lock:
            return self.now

    def advance(self, delta: timedelta) -> datetime:
        with self._lock:
            self.now += delta
            return self.now

    def set(self, now: datetime) -> None:
        with self._lock:
            self.now = now


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock()


@pytest.fixture
def metrics_registry() -> MetricsRegistry:
    return MetricsRegistry()


@pytest.fixture
def dispatcher() -> MagicMock:
    return MagicMock(spec=ActionDispatcher)


@pytest.fixture
def scheduler(clock, metrics_registry):
    """Scheduler on the frozen clock. Not started: jobs are registered but never fire."""
    sched = JobScheduler(clock=clock, metrics=SchedulerMetrics(metrics_registry))
    yield sched
    sched.stop()


@pytest.fixture
def running_scheduler(metrics_registry):
    """Scheduler on the real clock with its thread started."""
    sched = JobScheduler(max_workers=4, metrics=SchedulerMetrics(metrics_registry))
    sched.start()
    yield sched
    sched.stop()


@pytest.fixture(autouse=True)
def _fresh_settings():
    clear_settings_cache()
    yield
    clear_settings_cache()
