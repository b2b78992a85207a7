"""Persisted payload of the active session.

Stored rows mirror the ``active_workouts`` table: top-level ``id``,
``user_id``, ``routine_id``, ``routine_name`` and ``started_at`` columns plus a
``workout_data`` JSON document holding the mutable state. Reading never
raises: malformed or partial data degrades to an empty session.
"""

import logging
from datetime import date, datetime

from pydantic import BaseModel

from liftlog_mcp.liftlog.models import (
    ExerciseEntry,
    RestTimer,
    SessionStatus,
    WorkoutSession,
    WorkoutSet,
    new_id,
)
from liftlog_mcp.liftlog.rest_timer import to_safe_rest_seconds

logger = logging.getLogger(__name__)


class SnapshotData(BaseModel):
    """The ``workout_data`` document, read defensively."""
    exercises: list[ExerciseEntry] = []
    current_exercise_id: str | None = None
    current_set_index: int | None = None
    rest_timer: RestTimer | None = None
    override_date: date | None = None
    is_paused: bool = False
    paused_at: datetime | None = None
    total_paused_ms: int = 0
    version: int = 0


def ensure_set_ids(sets: list[WorkoutSet]) -> list[WorkoutSet]:
    """Give every set a stable id; set identity is never positional."""
    if all(s.id for s in sets):
        return sets
    return [s if s.id else s.model_copy(update={"id": new_id("set")}) for s in sets]


def build_workout_data(session: WorkoutSession) -> dict:
    return {
        "exercises": [e.model_dump(mode="json") for e in session.exercises],
        "current_exercise_id": session.current_exercise_id,
        "current_set_index": session.current_set_index,
        "rest_timer": session.rest_timer.model_dump(mode="json") if session.rest_timer else None,
        "override_date": session.override_date.isoformat() if session.override_date else None,
        "is_paused": session.is_paused,
        "paused_at": session.paused_at.isoformat() if session.paused_at else None,
        "total_paused_ms": session.total_paused_ms,
        "version": session.version,
    }


def build_snapshot(session: WorkoutSession) -> dict:
    return {
        "id": session.id,
        "user_id": session.user_id,
        "routine_id": session.routine_id,
        "routine_name": session.routine_name,
        "started_at": session.started_at.isoformat(),
        "workout_data": build_workout_data(session),
    }


def _parse_exercise(raw: object) -> ExerciseEntry | None:
    if not isinstance(raw, dict) or not isinstance(raw.get("exercise_id"), str):
        return None
    if not isinstance(raw.get("name"), str):
        return None
    try:
        exercise = ExerciseEntry.model_validate({k: v for k, v in raw.items() if k != "rest_seconds"})
    except ValueError:
        logger.warning("Dropping malformed exercise %r from snapshot", raw.get("exercise_id"))
        return None

    rest = raw.get("rest_seconds")
    if not isinstance(rest, (int, float)):
        # legacy snapshots kept rest on each set
        raw_sets = raw.get("sets") if isinstance(raw.get("sets"), list) else []
        legacy = [
            s["rest_seconds"] for s in raw_sets
            if isinstance(s, dict) and isinstance(s.get("rest_seconds"), (int, float))
        ]
        rest = legacy[0] if legacy else None
    return exercise.model_copy(update={
        "rest_seconds": to_safe_rest_seconds(rest),
        "sets": ensure_set_ids(exercise.sets),
    })


def parse_exercise_entries(raw: object) -> list[ExerciseEntry]:
    """Valid exercises of a stored list; malformed entries are dropped."""
    if not isinstance(raw, list):
        return []
    return [e for e in map(_parse_exercise, raw) if e is not None]


def _parse_rest_timer(raw: object) -> RestTimer | None:
    if not isinstance(raw, dict):
        return None
    required = {
        "exercise_id": str,
        "set_index": int,
        "duration_seconds": (int, float),
        "started_at": str,
        "instance_id": str,
    }
    for field, kind in required.items():
        if not isinstance(raw.get(field), kind) or isinstance(raw.get(field), bool):
            return None
    try:
        return RestTimer.model_validate({
            **{field: raw[field] for field in required},
            "duration_seconds": to_safe_rest_seconds(raw["duration_seconds"]),
            "paused_at": raw.get("paused_at") if isinstance(raw.get("paused_at"), str) else None,
            "paused_elapsed_seconds": (
                raw["paused_elapsed_seconds"]
                if isinstance(raw.get("paused_elapsed_seconds"), int)
                else None
            ),
        })
    except ValueError:
        return None


def _parse_date(raw: object) -> date | None:
    if not isinstance(raw, str):
        return None
    try:
        return date.fromisoformat(raw[:10])
    except ValueError:
        return None


def _parse_datetime(raw: object) -> datetime | None:
    if not isinstance(raw, str):
        return None
    try:
        return datetime.fromisoformat(raw.replace("Z", "+00:00"))
    except ValueError:
        return None


def read_workout_data(raw: object) -> SnapshotData:
    if not isinstance(raw, dict):
        return SnapshotData()

    current_exercise_id = raw.get("current_exercise_id")
    current_set_index = raw.get("current_set_index")
    total_paused_ms = raw.get("total_paused_ms")
    version = raw.get("version")

    return SnapshotData(
        exercises=parse_exercise_entries(raw.get("exercises")),
        current_exercise_id=current_exercise_id if isinstance(current_exercise_id, str) else None,
        current_set_index=(
            current_set_index
            if isinstance(current_set_index, int) and not isinstance(current_set_index, bool)
            else None
        ),
        rest_timer=_parse_rest_timer(raw.get("rest_timer")),
        override_date=_parse_date(raw.get("override_date")),
        is_paused=raw.get("is_paused") is True,
        paused_at=_parse_datetime(raw.get("paused_at")),
        total_paused_ms=(
            max(0, int(total_paused_ms)) if isinstance(total_paused_ms, (int, float)) else 0
        ),
        version=version if isinstance(version, int) and not isinstance(version, bool) else 0,
    )


def session_from_snapshot(row: object, user_id: str) -> WorkoutSession | None:
    """Rebuild a session from a stored row; None when the row is unusable."""
    if not isinstance(row, dict):
        return None
    started_at = _parse_datetime(row.get("started_at"))
    if started_at is None:
        return None

    data = read_workout_data(row.get("workout_data"))
    routine_name = row.get("routine_name")
    owner = row.get("user_id")
    paused = data.is_paused and data.paused_at is not None

    return WorkoutSession(
        id=row["id"] if isinstance(row.get("id"), str) else new_id("session"),
        user_id=owner if isinstance(owner, str) else user_id,
        routine_id=row.get("routine_id") if isinstance(row.get("routine_id"), str) else None,
        routine_name=routine_name if isinstance(routine_name, str) else "",
        started_at=started_at,
        override_date=data.override_date,
        is_paused=paused,
        paused_at=data.paused_at if paused else None,
        total_paused_ms=data.total_paused_ms,
        exercises=data.exercises,
        current_exercise_id=data.current_exercise_id,
        current_set_index=data.current_set_index,
        rest_timer=data.rest_timer,
        status=SessionStatus.paused if paused else SessionStatus.active,
        version=data.version,
    )
