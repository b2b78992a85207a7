"""
Unit tests for history helpers.
"""

from datetime import datetime, timedelta, timezone

import pytest

from liftlog_mcp.liftlog.history import (
    is_partial_workout,
    last_performance,
    set_completion_counts,
    total_volume,
)
from liftlog_mcp.liftlog.models import Dropset, ExerciseEntry, HistoryRecord, WorkoutSet

pytestmark = pytest.mark.unit

NOW = datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)


def _record(*completed_flags, name="Bench Press", completed_at=NOW):
    return HistoryRecord(
        started_at=completed_at - timedelta(hours=1),
        completed_at=completed_at,
        exercises_completed=[ExerciseEntry(
            exercise_id="b",
            name=name,
            sets=[WorkoutSet(reps=5, weight=100, completed=flag) for flag in completed_flags],
        )],
    )


def test_set_completion_counts():
    counts = set_completion_counts(_record(True, True, False))
    assert (counts.completed_sets, counts.total_sets) == (2, 3)


def test_partial_workout_detection():
    assert is_partial_workout(_record(True, False)) is True
    assert is_partial_workout(_record(True, True)) is False
    assert is_partial_workout(_record()) is False


def test_total_volume_without_bodyweight():
    exercise = ExerciseEntry(
        exercise_id="b",
        name="Bench Press",
        includes_bodyweight=True,
        sets=[WorkoutSet(reps=5, weight=100, completed=True, dropsets=[Dropset(reps=5, weight=60, completed=True)])],
    )
    assert total_volume([exercise]) == 800


def test_last_performance_picks_most_recent():
    older = _record(True, name="Squat", completed_at=NOW - timedelta(days=3))
    newer = _record(True, True, name="Squat", completed_at=NOW)
    other = _record(True, name="Bench Press", completed_at=NOW + timedelta(days=1))

    found = last_performance([newer, other, older], "Squat")

    assert len(found.sets) == 2
    assert last_performance([other], "Squat") is None
