"""Training load distribution across canonical muscle groups."""

from collections.abc import Iterable, Mapping
from datetime import datetime

from liftlog_mcp.liftlog.exercises import normalize_name
from liftlog_mcp.liftlog.models import ExerciseEntry, HistoryRecord

DEFAULT_SECONDARY_FACTOR = 0.35

# Ordered: the first rule with a matching fragment wins. Names are matched
# without accents.
MUSCLE_RULES: tuple[tuple[str, tuple[str, ...]], ...] = (
    ("pecho", ("pecho", "chest")),
    ("espalda", ("espald", "back", "dorsal")),
    ("hombros", ("hombro", "shoulder", "deltoid")),
    ("biceps", ("biceps",)),
    ("triceps", ("triceps",)),
    ("cuadriceps", ("cuad", "quad")),
    ("isquios", ("femoral", "isquio", "hamstring")),
    ("gemelos", ("gemel", "calves")),
    ("gluteos", ("glut",)),
    ("abs", ("abdo", "core")),
    ("trapecios", ("trapec", "trap")),
    ("antebrazos", ("antebraz", "forearm")),
    ("lumbares", ("lumbar", "lower_back")),
)


def normalize_muscle_name(raw_muscle: str) -> str:
    muscle = normalize_name(raw_muscle)
    for key, fragments in MUSCLE_RULES:
        if any(fragment in muscle for fragment in fragments):
            return key
    return muscle


def series_count(exercise: ExerciseEntry, completed_only: bool = True) -> int:
    """Number of series an exercise contributes.

    Logged exercises count completed, non-warmup sets. With
    ``completed_only=False`` every planned set counts, which is what routine
    previews use.
    """
    if completed_only:
        return len(exercise.counted_sets)
    return len(exercise.sets)


def _clamp01(value: float) -> float:
    return min(1.0, max(0.0, value))


def accumulate_muscle_distribution(
    exercises: Iterable[ExerciseEntry],
    default_secondary_factor: float = DEFAULT_SECONDARY_FACTOR,
    completed_only: bool = True,
) -> dict[str, float]:
    distribution: dict[str, float] = {}

    for exercise in exercises:
        count = series_count(exercise, completed_only)
        if count <= 0:
            continue

        primary = normalize_muscle_name(exercise.primary_muscle) if exercise.primary_muscle else ""
        if not primary:
            continue

        secondary = [normalize_muscle_name(m) for m in exercise.secondary_muscles if m]
        raw_factor = exercise.secondary_muscle_factor
        if raw_factor is None:
            raw_factor = default_secondary_factor if secondary else 0.0
        factor = _clamp01(raw_factor)

        if not secondary or factor == 0:
            distribution[primary] = distribution.get(primary, 0.0) + count
            continue

        distribution[primary] = distribution.get(primary, 0.0) + count * (1 - factor)
        per_secondary = count * factor / len(secondary)
        for muscle in secondary:
            distribution[muscle] = distribution.get(muscle, 0.0) + per_secondary

    return distribution


def merge_distributions(*distributions: Mapping[str, float]) -> dict[str, float]:
    merged: dict[str, float] = {}
    for distribution in distributions:
        for muscle, value in distribution.items():
            merged[muscle] = merged.get(muscle, 0.0) + value
    return merged


def history_distribution(
    history: Iterable[HistoryRecord],
    since: datetime | None = None,
    until: datetime | None = None,
) -> dict[str, float]:
    """Sum per-session distributions for sessions completed in [since, until)."""
    per_session = []
    for session in history:
        if since is not None and session.completed_at < since:
            continue
        if until is not None and session.completed_at >= until:
            continue
        per_session.append(accumulate_muscle_distribution(session.exercises_completed))
    return merge_distributions(*per_session)
