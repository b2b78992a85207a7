"""Personal record derivation and the record query surface."""

import math
from collections.abc import Iterable, Mapping
from datetime import datetime
from enum import Enum

from liftlog_mcp.liftlog.exercises import normalize_name
from liftlog_mcp.liftlog.models import (
    CatalogExercise,
    HistoryRecord,
    PersistedRecord,
    PersonalRecordRow,
)


class RecordType(str, Enum):
    all = "all"
    strength = "strength"
    reps = "reps"
    time = "time"


class RecordSort(str, Enum):
    e1rm_desc = "e1rm_desc"
    reps_desc = "reps_desc"
    time_desc = "time_desc"
    updated_desc = "updated_desc"
    name_asc = "name_asc"


def round_to_half(value: float) -> float:
    return math.floor(value * 2 + 0.5) / 2


def calculate_e1rm(weight: float, reps: float) -> float:
    """Epley estimate ``weight * (1 + reps / 30)`` rounded to the nearest 0.5."""
    if weight <= 0 or reps <= 0:
        return 0.0
    return round_to_half(weight * (1 + reps / 30))


def _positive(value: float | None) -> bool:
    return value is not None and value > 0


def _as_number(value: object, fallback: float = 0.0) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return fallback
    if math.isnan(value):
        return fallback
    return value


def _latest(*stamps: datetime | None) -> datetime | None:
    present = [s for s in stamps if s is not None]
    return max(present) if present else None


_METRICS = {
    "e1rm": ("best_e1rm", "e1rm_updated_at"),
    "reps": ("best_reps", "reps_updated_at"),
    "time": ("best_time_seconds", "time_updated_at"),
}


def _offer(row: PersonalRecordRow, metric: str, value: float, stamp: datetime | None) -> None:
    """Keep the larger value; on ties keep the earliest known timestamp."""
    if not _positive(value):
        return
    value_field, stamp_field = _METRICS[metric]
    best = getattr(row, value_field)
    if _positive(best):
        if value < best:
            return
        current = getattr(row, stamp_field)
        if value == best and (stamp is None or (current is not None and stamp >= current)):
            return
    setattr(row, value_field, value)
    setattr(row, stamp_field, stamp)


def _stamp(row: PersonalRecordRow) -> None:
    row.updated_at = _latest(row.e1rm_updated_at, row.reps_updated_at, row.time_updated_at)


class _RecordBuilder:
    """Accumulates rows by normalized exercise name."""

    def __init__(self, catalog: Iterable[CatalogExercise]):
        self.catalog: dict[str, CatalogExercise] = {}
        for exercise in catalog:
            if not exercise.name:
                continue
            self.catalog.setdefault(normalize_name(exercise.name), exercise)
        self.rows: dict[str, PersonalRecordRow] = {}

    def row(self, exercise_name: str) -> PersonalRecordRow:
        key = normalize_name(exercise_name)
        existing = self.rows.get(key)
        if existing is not None:
            return existing

        meta = self.catalog.get(key)
        row = PersonalRecordRow(
            exercise_key=key,
            exercise_id=meta.id if meta else None,
            exercise_name=(meta.name if meta else None) or exercise_name,
            primary_muscle=meta.primary_muscle if meta else None,
            equipment=meta.equipment if meta else None,
        )
        self.rows[key] = row
        return row

    def is_time_exercise(self, key: str) -> bool:
        meta = self.catalog.get(key)
        return meta is not None and meta.tracking_type == "time"

    def seed(self, exercise_name: str, record: PersistedRecord) -> None:
        row = self.row(exercise_name)
        weight = _as_number(record.weight)
        reps = math.floor(_as_number(record.reps) + 0.5)
        _offer(row, "e1rm", calculate_e1rm(weight, reps), record.date)
        _offer(row, "reps", reps, record.date)
        _stamp(row)

    def fold(self, session: HistoryRecord) -> None:
        stamp = session.completed_at
        for exercise in session.exercises_completed:
            if not exercise.name:
                continue
            row = self.row(exercise.name)
            is_time = exercise.tracking_type == "time" or self.is_time_exercise(row.exercise_key)

            for workout_set in exercise.sets:
                if not workout_set.completed:
                    continue
                reps = math.floor(_as_number(workout_set.reps) + 0.5)
                weight = _as_number(workout_set.weight)

                if is_time:
                    _offer(row, "time", reps, stamp)
                else:
                    _offer(row, "reps", reps, stamp)
                    _offer(row, "e1rm", calculate_e1rm(weight, reps), stamp)

            _stamp(row)


def derive_personal_records(
    history: Iterable[HistoryRecord],
    catalog: Iterable[CatalogExercise] = (),
    persisted: Mapping[str, PersistedRecord] | None = None,
) -> list[PersonalRecordRow]:
    """Derive one row of lifetime bests per exercise.

    Rows are seeded from the persisted best-record snapshot and then folded
    with every completed set in ``history``. Only maxima matter, so history
    order is irrelevant. Warmup sets are skipped like every other non-counted
    set. Each metric keeps the timestamp of the source that produced it, and
    ``updated_at`` is the latest of those. Rows with no positive metric are
    dropped.
    """
    builder = _RecordBuilder(catalog)

    for exercise_name, record in (persisted or {}).items():
        if exercise_name:
            builder.seed(exercise_name, record)

    for session in history:
        builder.fold(_without_warmups(session))

    return [
        row for row in builder.rows.values()
        if _positive(row.best_e1rm) or _positive(row.best_reps) or _positive(row.best_time_seconds)
    ]


def heaviest_sets(history: Iterable[HistoryRecord]) -> dict[str, PersistedRecord]:
    """Rebuild the best-record snapshot from history.

    One entry per exercise (matched by normalized name) holding its heaviest
    counted set, dated by the session that produced it. Sessions are visited
    oldest first and only a strictly heavier set replaces an entry, so ties
    keep the earliest date.
    """
    best: dict[str, PersistedRecord] = {}
    names: dict[str, str] = {}
    for session in sorted(history, key=lambda s: s.completed_at):
        for exercise in session.exercises_completed:
            if not exercise.name:
                continue
            key = normalize_name(exercise.name)
            for workout_set in exercise.counted_sets:
                weight = _as_number(workout_set.weight)
                current = best.get(key)
                if weight > (current.weight if current else 0):
                    best[key] = PersistedRecord(
                        weight=weight, reps=workout_set.reps, date=session.completed_at
                    )
                    names.setdefault(key, exercise.name)
    return {names[key]: record for key, record in best.items()}


def _without_warmups(session: HistoryRecord) -> HistoryRecord:
    if not any(s.is_warmup for e in session.exercises_completed for s in e.sets):
        return session
    exercises = [
        e.model_copy(update={"sets": [s for s in e.sets if not s.is_warmup]})
        for e in session.exercises_completed
    ]
    return session.model_copy(update={"exercises_completed": exercises})


def _name_key(row: PersonalRecordRow) -> str:
    return normalize_name(row.exercise_name)


def _metric_key(value: float | None) -> float:
    return value if _positive(value) else -1


def filter_and_sort_records(
    rows: Iterable[PersonalRecordRow],
    search_query: str = "",
    pr_type: RecordType | str = RecordType.all,
    sort_by: RecordSort | str = RecordSort.e1rm_desc,
) -> list[PersonalRecordRow]:
    pr_type = RecordType(pr_type)
    sort_by = RecordSort(sort_by)
    query = normalize_name(search_query or "")

    filtered = []
    for row in rows:
        if query and query not in normalize_name(row.exercise_name):
            continue
        if pr_type is RecordType.strength and not _positive(row.best_e1rm):
            continue
        if pr_type is RecordType.reps and not _positive(row.best_reps):
            continue
        if pr_type is RecordType.time and not _positive(row.best_time_seconds):
            continue
        filtered.append(row)

    if sort_by is RecordSort.e1rm_desc:
        return sorted(filtered, key=lambda r: (-_metric_key(r.best_e1rm), _name_key(r)))
    if sort_by is RecordSort.reps_desc:
        return sorted(filtered, key=lambda r: (-_metric_key(r.best_reps), _name_key(r)))
    if sort_by is RecordSort.time_desc:
        return sorted(filtered, key=lambda r: (-_metric_key(r.best_time_seconds), _name_key(r)))
    if sort_by is RecordSort.updated_desc:
        return sorted(
            filtered,
            key=lambda r: (-(r.updated_at.timestamp() if r.updated_at else 0), _name_key(r)),
        )
    return sorted(filtered, key=_name_key)


def format_duration(seconds: float) -> str:
    safe = max(0, math.floor(seconds or 0))
    hours, rest = divmod(safe, 3600)
    minutes, secs = divmod(rest, 60)
    if hours > 0:
        return f"{hours:02d}:{minutes:02d}:{secs:02d}"
    return f"{minutes:02d}:{secs:02d}"
