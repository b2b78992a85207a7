"""
Shared fixtures for the LiftLog test suite.

- Time is injected through ``FakeClock`` so countdowns and durations are exact.
- Sessions run against ``InMemoryWorkoutStore``; failure paths swap single
  store methods for ``AsyncMock`` instances.
"""

import pytest
from datetime import datetime, timedelta, timezone

from liftlog_mcp.liftlog.models import UserPreferences
from liftlog_mcp.liftlog.session import SessionRuntime
from liftlog_mcp.liftlog.store import InMemoryWorkoutStore

T0 = datetime(2024, 3, 4, 18, 0, tzinfo=timezone.utc)


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: datetime = T0):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> datetime:
        self.now += timedelta(seconds=seconds)
        return self.now


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def t0() -> datetime:
    return T0


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store() -> InMemoryWorkoutStore:
    return InMemoryWorkoutStore()


@pytest.fixture
def preferences() -> UserPreferences:
    return UserPreferences(bodyweight_kg=80)


@pytest.fixture
def runtime(store, clock, preferences) -> SessionRuntime:
    """Runtime of ``user-1`` with no session started."""
    return SessionRuntime("user-1", store, preferences, clock=clock)
