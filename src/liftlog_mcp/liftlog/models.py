"""LiftLog data models."""

import uuid
from datetime import date, datetime, timezone
from enum import Enum
from typing import Annotated, Literal

from pydantic import AfterValidator, BaseModel, Field, field_validator


def _ensure_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


UtcDatetime = Annotated[datetime, AfterValidator(_ensure_utc)]

TrackingType = Literal["reps", "time"]


def new_id(prefix: str = "id") -> str:
    return f"{prefix}_{uuid.uuid4()}"


def _tracking_type(value: object) -> str:
    return "time" if value == "time" else "reps"


class SessionStatus(str, Enum):
    not_started = "not_started"
    active = "active"
    paused = "paused"
    finished = "finished"
    cancelled = "cancelled"


class Dropset(BaseModel):
    """A sub-series performed right after its parent set at reduced weight."""
    reps: int = 0
    weight: float = 0
    completed: bool = False


class WorkoutSet(BaseModel):
    """A single set of an exercise within a session."""
    id: str | None = None
    reps: int = 0
    weight: float = 0
    completed: bool = False
    is_warmup: bool = False
    dropsets: list[Dropset] = []

    @property
    def counts(self) -> bool:
        """Whether this set contributes to volume and records."""
        return self.completed and not self.is_warmup


class ExerciseEntry(BaseModel):
    """An exercise being performed (or performed) in a session."""
    exercise_id: str
    name: str
    primary_muscle: str = ""
    secondary_muscles: list[str] = []
    secondary_muscle_factor: float | None = None
    rest_seconds: int = 90
    tracking_type: TrackingType = "reps"
    sets: list[WorkoutSet] = []
    notes: str | None = None
    includes_bodyweight: bool = False

    @field_validator("tracking_type", mode="before")
    @classmethod
    def _normalize_tracking(cls, value: object) -> str:
        return _tracking_type(value)

    @property
    def counted_sets(self) -> list[WorkoutSet]:
        return [s for s in self.sets if s.counts]


class RestTimer(BaseModel):
    """One rest countdown, identified by ``instance_id``."""
    exercise_id: str
    set_index: int
    duration_seconds: int
    started_at: UtcDatetime
    paused_at: UtcDatetime | None = None
    paused_elapsed_seconds: int | None = None
    instance_id: str

    @property
    def is_paused(self) -> bool:
        return self.paused_at is not None


class WorkoutSession(BaseModel):
    """The one in-progress workout of a user."""
    id: str = Field(default_factory=lambda: new_id("session"))
    user_id: str
    routine_id: str | None = None
    routine_name: str = ""
    started_at: UtcDatetime
    override_date: date | None = None
    is_paused: bool = False
    paused_at: UtcDatetime | None = None
    total_paused_ms: int = 0
    exercises: list[ExerciseEntry] = []
    current_exercise_id: str | None = None
    current_set_index: int | None = None
    rest_timer: RestTimer | None = None
    status: SessionStatus = SessionStatus.active
    version: int = 0

    @property
    def is_open(self) -> bool:
        return self.status in (SessionStatus.active, SessionStatus.paused)

    def find_exercise(self, exercise_id: str) -> ExerciseEntry | None:
        for exercise in self.exercises:
            if exercise.exercise_id == exercise_id:
                return exercise
        return None


class HistoryRecord(BaseModel):
    """A finished workout session."""
    id: str = Field(default_factory=lambda: new_id("workout"))
    user_id: str | None = None
    routine_id: str | None = None
    routine_name: str = ""
    started_at: UtcDatetime
    completed_at: UtcDatetime
    exercises_completed: list[ExerciseEntry] = []
    total_volume: float = 0
    duration_minutes: int = 0


class PersistedRecord(BaseModel):
    """A best-record snapshot entry, keyed by exercise name in the store."""
    weight: float = 0
    reps: int = 0
    date: UtcDatetime | None = None


class PersonalRecordRow(BaseModel):
    """Lifetime bests of one exercise, with per-metric provenance."""
    exercise_key: str
    exercise_id: str | None = None
    exercise_name: str
    primary_muscle: str | None = None
    equipment: str | None = None
    best_e1rm: float | None = None
    best_reps: int | None = None
    best_time_seconds: int | None = None
    e1rm_updated_at: UtcDatetime | None = None
    reps_updated_at: UtcDatetime | None = None
    time_updated_at: UtcDatetime | None = None
    updated_at: UtcDatetime | None = None


class CatalogExercise(BaseModel):
    """An exercise in the library. ``user_id`` is None for shared seed data."""
    id: str | None = None
    name: str
    primary_muscle: str = "Full Body"
    secondary_muscles: list[str] = []
    equipment: str = "Other"
    category: str = "Strength"
    instructions: str | None = None
    tracking_type: TrackingType = "reps"
    user_id: str | None = None

    @field_validator("tracking_type", mode="before")
    @classmethod
    def _normalize_tracking(cls, value: object) -> str:
        return _tracking_type(value)


class RoutineSet(BaseModel):
    """A planned set within a routine."""
    id: str | None = None
    reps: int = 10
    weight: float = 0
    is_warmup: bool = False
    dropsets: list[Dropset] = []


class RoutineExercise(BaseModel):
    """An exercise within a routine."""
    id: str
    name: str
    muscle_group: str = ""
    notes: str | None = None
    sets: list[RoutineSet] = []
    rest_seconds: int | None = None
    secondary_muscles: list[str] = []
    secondary_muscle_factor: float | None = None
    includes_bodyweight: bool = False
    tracking_type: TrackingType = "reps"


class Routine(BaseModel):
    """A saved routine a session can start from."""
    id: str
    user_id: str | None = None
    name: str
    exercises: list[RoutineExercise] = []
    default_rest_seconds: int | None = None


class UserPreferences(BaseModel):
    """Per-user defaults used when seeding sessions."""
    bodyweight_kg: float = 0
    default_rest_seconds: int = 90
    default_sets_count: int = 3
    default_reps_count: int | None = None
    default_weight_kg: float = 0
