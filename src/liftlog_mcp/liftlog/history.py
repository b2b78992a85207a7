"""Helpers over finished workout records."""

from collections.abc import Iterable

from pydantic import BaseModel

from liftlog_mcp.liftlog.models import ExerciseEntry, HistoryRecord


class SetCompletion(BaseModel):
    total_sets: int = 0
    completed_sets: int = 0


def total_volume(exercises: Iterable[ExerciseEntry], bodyweight_kg: float = 0) -> float:
    """Sum ``weight * reps`` over counted sets and their completed dropsets.

    Exercises flagged ``includes_bodyweight`` (dips, weighted pull-ups) add
    the lifter's bodyweight to the logged added weight.
    """
    volume = 0.0
    for exercise in exercises:
        extra = bodyweight_kg if exercise.includes_bodyweight else 0
        for workout_set in exercise.counted_sets:
            volume += (workout_set.weight + extra) * workout_set.reps
            for dropset in workout_set.dropsets:
                if dropset.completed:
                    volume += (dropset.weight + extra) * dropset.reps
    return volume


def set_completion_counts(record: HistoryRecord) -> SetCompletion:
    counts = SetCompletion()
    for exercise in record.exercises_completed:
        counts.total_sets += len(exercise.sets)
        counts.completed_sets += sum(1 for s in exercise.sets if s.completed)
    return counts


def is_partial_workout(record: HistoryRecord) -> bool:
    counts = set_completion_counts(record)
    return counts.total_sets > 0 and counts.completed_sets < counts.total_sets


def last_performance(history: Iterable[HistoryRecord], exercise_name: str) -> ExerciseEntry | None:
    """Most recent logged entry of ``exercise_name``, matched by exact name."""
    latest: tuple[HistoryRecord, ExerciseEntry] | None = None
    for record in history:
        for exercise in record.exercises_completed:
            if exercise.name != exercise_name:
                continue
            if latest is None or record.completed_at > latest[0].completed_at:
                latest = (record, exercise)
            break
    return latest[1] if latest else None
