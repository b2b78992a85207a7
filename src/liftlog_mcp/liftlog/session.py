"""Workout session state machine.

Transitions are pure functions from one ``WorkoutSession`` value to the next;
each bumps ``version`` so a stale persisted snapshot can be detected.
``SessionRuntime`` is the explicit session context: it owns the identity, the
store and the clock, applies transitions and persists a full snapshot after
every mutation. It never raises across its boundary; callers check the
returned ``OperationResult``.
"""

import logging
import math
from collections.abc import Callable, Iterable, Mapping
from datetime import date, datetime, time, timezone
from enum import Enum

from pydantic import BaseModel

from liftlog_mcp.liftlog.exceptions import (
    AuthenticationError,
    AuthorizationError,
    InvalidStateError,
    LiftLogError,
    MissingContextError,
    PersistenceError,
    ValidationError,
)
from liftlog_mcp.liftlog.exercises import ensure_can_edit, normalize_name
from liftlog_mcp.liftlog.history import last_performance, total_volume
from liftlog_mcp.liftlog.models import (
    CatalogExercise,
    ExerciseEntry,
    HistoryRecord,
    PersistedRecord,
    PersonalRecordRow,
    Routine,
    RoutineExercise,
    RoutineSet,
    SessionStatus,
    UserPreferences,
    WorkoutSession,
    WorkoutSet,
    new_id,
)
from liftlog_mcp.liftlog.muscles import DEFAULT_SECONDARY_FACTOR
from liftlog_mcp.liftlog.records import derive_personal_records, heaviest_sets
from liftlog_mcp.liftlog.rest_timer import (
    extend_rest_timer,
    pause_rest_timer,
    remaining_seconds,
    resume_rest_timer,
    start_rest_timer,
    to_safe_rest_seconds,
)
from liftlog_mcp.liftlog.snapshot import build_snapshot, ensure_set_ids, read_workout_data, session_from_snapshot
from liftlog_mcp.liftlog.store import WorkoutStore

logger = logging.getLogger(__name__)

FREE_SESSION_NAME = "Entrenamiento libre"
BACKDATED_START = time(9, 0)
BACKDATED_END = time(10, 0)
BACKDATED_DURATION_MINUTES = 60
DEFAULT_TIME_SECONDS = 30
DEFAULT_REPS = 10


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ErrorCode(str, Enum):
    validation = "validation"
    authorization = "authorization"
    missing_context = "missing_context"
    persistence = "persistence"
    invalid_state = "invalid_state"


_ERROR_CODES: tuple[tuple[type[LiftLogError], ErrorCode], ...] = (
    (ValidationError, ErrorCode.validation),
    (AuthorizationError, ErrorCode.authorization),
    (MissingContextError, ErrorCode.missing_context),
    (AuthenticationError, ErrorCode.missing_context),
    (PersistenceError, ErrorCode.persistence),
    (InvalidStateError, ErrorCode.invalid_state),
)


class OperationResult(BaseModel):
    ok: bool
    error: ErrorCode | None = None
    message: str | None = None

    @classmethod
    def success(cls, **fields) -> "OperationResult":
        return cls(ok=True, **fields)

    @classmethod
    def failure(cls, exc: LiftLogError, **fields) -> "OperationResult":
        code = next((c for kind, c in _ERROR_CODES if isinstance(exc, kind)), ErrorCode.invalid_state)
        return cls(ok=False, error=code, message=str(exc), **fields)


class PersonalRecordEvent(BaseModel):
    """Raised once per exercise whose best set beats the persisted best."""
    exercise_name: str
    weight: float
    reps: int
    previous_weight: float = 0


class StaleCheck(OperationResult):
    stale: bool = False


class FinishResult(OperationResult):
    record: HistoryRecord | None = None
    personal_records: list[PersonalRecordEvent] = []
    notification: PersonalRecordEvent | None = None
    records: list[PersonalRecordRow] = []


# --- Pure transitions ---

def _bump(session: WorkoutSession, **changes) -> WorkoutSession:
    return session.model_copy(update={**changes, "version": session.version + 1})


def _require_open(session: WorkoutSession) -> None:
    if not session.is_open:
        raise InvalidStateError(f"Session is {session.status.value}")


def _at(day: date, at: time) -> datetime:
    return datetime.combine(day, at, tzinfo=timezone.utc)


def _replace_exercise(session: WorkoutSession, exercise_id: str, **changes) -> list[ExerciseEntry]:
    return [
        e.model_copy(update=changes) if e.exercise_id == exercise_id else e
        for e in session.exercises
    ]


def _cursor(session: WorkoutSession, exercise_id: str) -> str | None:
    if session.find_exercise(exercise_id) is None:
        return session.current_exercise_id
    return exercise_id


def _entry_from_routine(
    exercise: RoutineExercise,
    routine: Routine,
    history: list[HistoryRecord],
    preferences: UserPreferences,
) -> ExerciseEntry:
    planned = exercise.sets or [RoutineSet(reps=DEFAULT_REPS, weight=0)]
    last = last_performance(history, exercise.name)

    sets = []
    for index, planned_set in enumerate(planned):
        reps, weight = planned_set.reps, planned_set.weight
        if last is not None and index < len(last.sets):
            reps, weight = last.sets[index].reps, last.sets[index].weight
        sets.append(WorkoutSet(
            id=planned_set.id or new_id("set"),
            reps=reps,
            weight=weight,
            completed=False,
            is_warmup=planned_set.is_warmup,
            dropsets=[d.model_copy(update={"completed": False}) for d in planned_set.dropsets],
        ))

    factor = exercise.secondary_muscle_factor
    if factor is None:
        factor = DEFAULT_SECONDARY_FACTOR if exercise.secondary_muscles else 0.0

    return ExerciseEntry(
        exercise_id=exercise.id,
        name=exercise.name,
        primary_muscle=exercise.muscle_group,
        secondary_muscles=list(exercise.secondary_muscles),
        secondary_muscle_factor=factor,
        rest_seconds=to_safe_rest_seconds(
            exercise.rest_seconds
            or routine.default_rest_seconds
            or preferences.default_rest_seconds
            or None
        ),
        tracking_type=exercise.tracking_type,
        sets=sets,
        notes=exercise.notes,
        includes_bodyweight=exercise.includes_bodyweight,
    )


def new_session(
    user_id: str,
    routine: Routine | None,
    history: Iterable[HistoryRecord],
    preferences: UserPreferences,
    now: datetime,
    override_date: date | None = None,
) -> WorkoutSession:
    """Build a session from a routine, or an empty free session.

    Routine exercises are pre-filled, set by set, with the reps and weight of
    the most recent logged performance of the same exercise name.
    """
    history = list(history)
    exercises = []
    if routine is not None:
        exercises = [_entry_from_routine(e, routine, history, preferences) for e in routine.exercises]

    return WorkoutSession(
        user_id=user_id,
        routine_id=routine.id if routine else None,
        routine_name=routine.name if routine else FREE_SESSION_NAME,
        started_at=_at(override_date, BACKDATED_START) if override_date else now,
        override_date=override_date,
        exercises=exercises,
        current_exercise_id=exercises[0].exercise_id if exercises else None,
        current_set_index=0 if exercises else None,
        status=SessionStatus.active,
    )


def add_exercise(
    session: WorkoutSession, item: CatalogExercise, preferences: UserPreferences
) -> WorkoutSession:
    _require_open(session)
    if not item.name or not item.name.strip():
        raise ValidationError("Exercise name is required")

    is_time = item.tracking_type == "time"
    reps = preferences.default_reps_count
    if reps is None:
        reps = DEFAULT_TIME_SECONDS if is_time else DEFAULT_REPS
    weight = 0 if is_time else preferences.default_weight_kg
    set_count = preferences.default_sets_count or 3

    entry = ExerciseEntry(
        exercise_id=new_id("ex"),
        name=item.name.strip(),
        primary_muscle=item.primary_muscle,
        secondary_muscles=list(item.secondary_muscles),
        secondary_muscle_factor=DEFAULT_SECONDARY_FACTOR if item.secondary_muscles else 0.0,
        rest_seconds=to_safe_rest_seconds(preferences.default_rest_seconds),
        tracking_type=item.tracking_type,
        sets=[WorkoutSet(id=new_id("set"), reps=reps, weight=weight) for _ in range(set_count)],
    )
    return _bump(
        session,
        exercises=[*session.exercises, entry],
        current_exercise_id=entry.exercise_id,
        current_set_index=0,
    )


def update_sets(session: WorkoutSession, exercise_id: str, sets: list[WorkoutSet]) -> WorkoutSession:
    _require_open(session)
    return _bump(
        session,
        exercises=_replace_exercise(session, exercise_id, sets=ensure_set_ids(list(sets))),
        current_exercise_id=_cursor(session, exercise_id),
    )


def update_position(session: WorkoutSession, exercise_id: str, set_index: int) -> WorkoutSession:
    _require_open(session)
    if session.find_exercise(exercise_id) is None:
        return _bump(session)
    return _bump(session, current_exercise_id=exercise_id, current_set_index=max(0, set_index))


def update_notes(session: WorkoutSession, exercise_id: str, notes: str) -> WorkoutSession:
    _require_open(session)
    return _bump(
        session,
        exercises=_replace_exercise(session, exercise_id, notes=notes),
        current_exercise_id=_cursor(session, exercise_id),
    )


def update_rest(session: WorkoutSession, exercise_id: str, rest_seconds: object) -> WorkoutSession:
    _require_open(session)
    return _bump(
        session,
        exercises=_replace_exercise(session, exercise_id, rest_seconds=to_safe_rest_seconds(rest_seconds)),
        current_exercise_id=_cursor(session, exercise_id),
    )


def start_rest(
    session: WorkoutSession, exercise_id: str, set_index: int, duration_seconds: object, now: datetime
) -> WorkoutSession:
    _require_open(session)
    return _bump(
        session,
        current_exercise_id=exercise_id,
        current_set_index=set_index,
        rest_timer=start_rest_timer(exercise_id, set_index, duration_seconds, now),
    )


def _require_rest(session: WorkoutSession) -> None:
    _require_open(session)
    if session.rest_timer is None:
        raise InvalidStateError("No rest timer is running")


def pause_rest(session: WorkoutSession, now: datetime) -> WorkoutSession:
    _require_rest(session)
    return _bump(session, rest_timer=pause_rest_timer(session.rest_timer, now))


def resume_rest(session: WorkoutSession, now: datetime) -> WorkoutSession:
    _require_rest(session)
    return _bump(session, rest_timer=resume_rest_timer(session.rest_timer, now))


def extend_rest(session: WorkoutSession, seconds: object) -> WorkoutSession:
    _require_rest(session)
    return _bump(session, rest_timer=extend_rest_timer(session.rest_timer, seconds))


def clear_rest(session: WorkoutSession) -> WorkoutSession:
    _require_open(session)
    return _bump(session, rest_timer=None)


def pause_session(session: WorkoutSession, now: datetime) -> WorkoutSession:
    if session.status is not SessionStatus.active:
        raise InvalidStateError(f"Cannot pause a {session.status.value} session")
    return _bump(session, is_paused=True, paused_at=now, status=SessionStatus.paused)


def resume_session(session: WorkoutSession, now: datetime) -> WorkoutSession:
    if session.status is not SessionStatus.paused:
        raise InvalidStateError(f"Cannot resume a {session.status.value} session")
    paused_ms = 0
    if session.paused_at is not None:
        paused_ms = max(0, math.floor((now - session.paused_at).total_seconds() * 1000))
    return _bump(
        session,
        is_paused=False,
        paused_at=None,
        total_paused_ms=session.total_paused_ms + paused_ms,
        status=SessionStatus.active,
    )


def session_elapsed_seconds(session: WorkoutSession, now: datetime) -> int:
    """Wall-clock session time excluding paused intervals."""
    paused_ms = session.total_paused_ms
    if session.is_paused and session.paused_at is not None:
        paused_ms += max(0, (now - session.paused_at).total_seconds() * 1000)
    elapsed = (now - session.started_at).total_seconds() - paused_ms / 1000
    return max(0, math.floor(elapsed))


def summarize_finish(
    session: WorkoutSession, preferences: UserPreferences, now: datetime
) -> HistoryRecord:
    _require_open(session)
    if session.override_date is not None:
        started_at = _at(session.override_date, BACKDATED_START)
        completed_at = _at(session.override_date, BACKDATED_END)
        duration = BACKDATED_DURATION_MINUTES
    else:
        started_at = session.started_at
        completed_at = now
        duration = max(0, math.floor((now - session.started_at).total_seconds() / 60))

    return HistoryRecord(
        user_id=session.user_id,
        routine_id=session.routine_id,
        routine_name=session.routine_name,
        started_at=started_at,
        completed_at=completed_at,
        exercises_completed=list(session.exercises),
        total_volume=total_volume(session.exercises, preferences.bodyweight_kg),
        duration_minutes=duration,
    )


def detect_personal_records(
    exercises: Iterable[ExerciseEntry], persisted: Mapping[str, PersistedRecord]
) -> list[PersonalRecordEvent]:
    """Compare each exercise's heaviest counted set against the persisted best.

    Persisted names are matched the way record rows are, ignoring case and
    accents.
    """
    baseline: dict[str, float] = {}
    for name, record in persisted.items():
        key = normalize_name(name)
        baseline[key] = max(baseline.get(key, 0), record.weight)

    events = []
    for exercise in exercises:
        best: WorkoutSet | None = None
        for workout_set in exercise.counted_sets:
            if best is None or workout_set.weight > best.weight:
                best = workout_set
        if best is None or best.weight <= 0:
            continue

        previous_weight = baseline.get(normalize_name(exercise.name), 0)
        if best.weight > previous_weight:
            events.append(PersonalRecordEvent(
                exercise_name=exercise.name,
                weight=best.weight,
                reps=best.reps,
                previous_weight=previous_weight,
            ))
    return events


# --- Runtime ---

class SessionRuntime:
    """The active-session context of one user."""

    def __init__(
        self,
        user_id: str | None,
        store: WorkoutStore | None,
        preferences: UserPreferences | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.user_id = user_id
        self.store = store
        self.preferences = preferences or UserPreferences()
        self.session: WorkoutSession | None = None
        self.notification: PersonalRecordEvent | None = None
        self._clock = clock
        self._closed_status: SessionStatus | None = None
        self._sinks: list[Callable[[BaseModel], None]] = []

    @property
    def status(self) -> SessionStatus:
        if self.session is not None:
            return self.session.status
        return self._closed_status or SessionStatus.not_started

    def subscribe(self, sink: Callable[[BaseModel], None]) -> None:
        self._sinks.append(sink)

    def _emit(self, event: BaseModel) -> None:
        for sink in self._sinks:
            sink(event)

    def _require_context(self) -> None:
        if not self.user_id or self.store is None:
            raise MissingContextError("No active identity or session store")

    def _require_session(self) -> WorkoutSession:
        self._require_context()
        if self.session is None:
            raise InvalidStateError("No workout in progress")
        _require_open(self.session)
        ensure_can_edit(self.session.user_id, self.user_id)
        return self.session

    async def _persist(self, session: WorkoutSession) -> OperationResult:
        # the in-memory session stays authoritative when the write fails
        self.session = session
        try:
            await self.store.upsert_active_session(self.user_id, build_snapshot(session))
        except LiftLogError as exc:
            logger.warning("Failed to persist session %s: %s", session.id, exc)
            return OperationResult.failure(exc)
        return OperationResult.success()

    async def _apply(self, transition: Callable[[WorkoutSession], WorkoutSession]) -> OperationResult:
        try:
            updated = transition(self._require_session())
        except LiftLogError as exc:
            return OperationResult.failure(exc)
        return await self._persist(updated)

    # --- lifecycle ---

    async def start(
        self,
        routine: Routine | None = None,
        history: Iterable[HistoryRecord] | None = None,
        override_date: date | None = None,
    ) -> OperationResult:
        try:
            self._require_context()
            if self.session is not None and self.session.is_open:
                raise InvalidStateError("A workout is already in progress")
            if history is None:
                history = await self.store.list_history(self.user_id) if routine else []
            session = new_session(
                self.user_id, routine, history, self.preferences, self._clock(), override_date
            )
            await self.store.upsert_active_session(self.user_id, build_snapshot(session))
        except LiftLogError as exc:
            logger.warning("Could not start workout: %s", exc)
            return OperationResult.failure(exc)

        self.session = session
        self.notification = None
        self._closed_status = None
        logger.info("Started workout %s (%s)", session.id, session.routine_name)
        return OperationResult.success()

    async def start_empty(self, override_date: date | None = None) -> OperationResult:
        return await self.start(None, [], override_date)

    async def restore(self) -> OperationResult:
        """Reload the persisted active session, if any."""
        try:
            self._require_context()
            row = await self.store.get_active_session(self.user_id)
            session = session_from_snapshot(row, self.user_id) if row else None
            if session is not None:
                ensure_can_edit(session.user_id, self.user_id)
        except LiftLogError as exc:
            return OperationResult.failure(exc)

        self.session = session
        return OperationResult.success()

    async def is_stale(self) -> StaleCheck:
        """Check whether the stored snapshot was written by a newer session state."""
        try:
            self._require_context()
            if self.session is None:
                return StaleCheck.success()
            row = await self.store.get_active_session(self.user_id)
        except LiftLogError as exc:
            return StaleCheck.failure(exc)

        if not isinstance(row, dict):
            return StaleCheck.success()
        version = read_workout_data(row.get("workout_data")).version
        return StaleCheck.success(stale=version > self.session.version)

    async def finish(self, persisted: Mapping[str, PersistedRecord] | None = None) -> FinishResult:
        try:
            session = self._require_session()
            now = self._clock()
            record = summarize_finish(session, self.preferences, now)
            await self.store.append_history_record(self.user_id, record)
        except LiftLogError as exc:
            logger.warning("Could not finish workout: %s", exc)
            return FinishResult.failure(exc)

        # recorded in history: the session stays closed even if cleanup fails
        self.session = None
        self._closed_status = SessionStatus.finished
        logger.info(
            "Finished workout %s: %.1f kg in %d min",
            record.id, record.total_volume, record.duration_minutes,
        )

        cleanup_error: LiftLogError | None = None
        try:
            await self.store.delete_active_session(self.user_id)
        except LiftLogError as exc:
            logger.warning("Finished workout %s is still stored as active: %s", record.id, exc)
            cleanup_error = exc

        events: list[PersonalRecordEvent] = []
        try:
            if persisted is None:
                persisted = await self.store.get_best_records(self.user_id)
            stored_names = {normalize_name(name): name for name in persisted}
            events = detect_personal_records(record.exercises_completed, persisted)
            for event in events:
                await self.store.upsert_best_record(
                    self.user_id,
                    stored_names.get(normalize_name(event.exercise_name), event.exercise_name),
                    PersistedRecord(weight=event.weight, reps=event.reps, date=now),
                )
                logger.info("New personal record: %s %.1f kg", event.exercise_name, event.weight)
                self._emit(event)
            # only the latest improvement is surfaced
            self.notification = events[-1] if events else None

            rows = derive_personal_records(
                await self.store.list_history(self.user_id),
                await self.store.list_exercises(self.user_id),
                await self.store.get_best_records(self.user_id),
            )
        except LiftLogError as exc:
            logger.warning("Workout saved but record update failed: %s", exc)
            return FinishResult.failure(exc, record=record, personal_records=events)

        if cleanup_error is not None:
            return FinishResult.failure(
                cleanup_error,
                record=record,
                personal_records=events,
                notification=self.notification,
                records=rows,
            )
        return FinishResult.success(
            record=record,
            personal_records=events,
            notification=self.notification,
            records=rows,
        )

    async def cancel(self) -> OperationResult:
        try:
            self._require_session()
        except LiftLogError as exc:
            return OperationResult.failure(exc)

        self.session = None
        self._closed_status = SessionStatus.cancelled
        try:
            await self.store.delete_active_session(self.user_id)
        except LiftLogError as exc:
            logger.warning("Cancelled workout could not be deleted remotely: %s", exc)
            return OperationResult.failure(exc)
        return OperationResult.success()

    async def resync_best_records(self) -> OperationResult:
        """Replace the persisted best records with the heaviest sets in history.

        Run after history records are removed, since a deleted workout may
        have held the best set of an exercise.
        """
        try:
            self._require_context()
            bests = heaviest_sets(await self.store.list_history(self.user_id))
            await self.store.delete_all_best_records(self.user_id)
            for exercise_name, record in bests.items():
                await self.store.upsert_best_record(self.user_id, exercise_name, record)
        except LiftLogError as exc:
            logger.warning("Could not rebuild personal records: %s", exc)
            return OperationResult.failure(exc)

        logger.info("Rebuilt %d personal records", len(bests))
        return OperationResult.success()

    # --- mutations ---

    async def add_exercise(self, item: CatalogExercise) -> OperationResult:
        return await self._apply(lambda s: add_exercise(s, item, self.preferences))

    async def update_sets(self, exercise_id: str, sets: list[WorkoutSet]) -> OperationResult:
        return await self._apply(lambda s: update_sets(s, exercise_id, sets))

    async def update_position(self, exercise_id: str, set_index: int) -> OperationResult:
        return await self._apply(lambda s: update_position(s, exercise_id, set_index))

    async def update_notes(self, exercise_id: str, notes: str) -> OperationResult:
        return await self._apply(lambda s: update_notes(s, exercise_id, notes))

    async def update_rest(self, exercise_id: str, rest_seconds: object) -> OperationResult:
        return await self._apply(lambda s: update_rest(s, exercise_id, rest_seconds))

    async def start_rest(
        self, exercise_id: str, set_index: int, duration_seconds: object
    ) -> OperationResult:
        return await self._apply(
            lambda s: start_rest(s, exercise_id, set_index, duration_seconds, self._clock())
        )

    async def pause_rest(self) -> OperationResult:
        return await self._apply(lambda s: pause_rest(s, self._clock()))

    async def resume_rest(self) -> OperationResult:
        return await self._apply(lambda s: resume_rest(s, self._clock()))

    async def extend_rest(self, seconds: object) -> OperationResult:
        return await self._apply(lambda s: extend_rest(s, seconds))

    async def clear_rest(self) -> OperationResult:
        return await self._apply(clear_rest)

    async def pause(self) -> OperationResult:
        return await self._apply(lambda s: pause_session(s, self._clock()))

    async def resume(self) -> OperationResult:
        return await self._apply(lambda s: resume_session(s, self._clock()))

    # --- queries ---

    def elapsed_seconds(self) -> int:
        if self.session is None:
            return 0
        return session_elapsed_seconds(self.session, self._clock())

    def rest_remaining_seconds(self) -> int | None:
        if self.session is None or self.session.rest_timer is None:
            return None
        return remaining_seconds(self.session.rest_timer, self._clock())
