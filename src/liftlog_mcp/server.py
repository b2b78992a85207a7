"""LiftLog MCP Server."""

import os
import logging
from datetime import datetime, timedelta, timezone

from mcp.server.fastmcp import FastMCP

from liftlog_mcp.liftlog.client import SupabaseWorkoutStore
from liftlog_mcp.liftlog.exceptions import AuthenticationError
from liftlog_mcp.liftlog.exercises import parse_locale_decimal
from liftlog_mcp.liftlog.history import set_completion_counts, is_partial_workout, total_volume
from liftlog_mcp.liftlog.models import UserPreferences
from liftlog_mcp.liftlog.muscles import accumulate_muscle_distribution, history_distribution
from liftlog_mcp.liftlog.records import (
    RecordSort, RecordType, derive_personal_records, filter_and_sort_records, format_duration,
)
from liftlog_mcp.liftlog.session import SessionRuntime
from liftlog_mcp.liftlog.store import WorkoutStore

logger = logging.getLogger(__name__)

mcp = FastMCP("liftlog")
store: WorkoutStore | None = None
user_id: str | None = None


async def _ensure_login() -> tuple[WorkoutStore, str]:
    """Auto-login using env vars if no store is connected yet."""
    global store, user_id
    if store is not None and user_id:
        return store, user_id

    url = os.environ.get("LIFTLOG_SUPABASE_URL")
    api_key = os.environ.get("LIFTLOG_SUPABASE_KEY")
    email = os.environ.get("LIFTLOG_EMAIL")
    password = os.environ.get("LIFTLOG_PASSWORD")
    if not url or not api_key or not email or not password:
        raise AuthenticationError(
            "LIFTLOG_SUPABASE_URL, LIFTLOG_SUPABASE_KEY, LIFTLOG_EMAIL and "
            "LIFTLOG_PASSWORD environment variables must be set."
        )

    client = SupabaseWorkoutStore(url, api_key)
    await client.login(email, password)
    store, user_id = client, client.user_id
    return store, user_id


def _preferences() -> UserPreferences:
    bodyweight = parse_locale_decimal(os.environ.get("LIFTLOG_BODYWEIGHT_KG", ""))
    return UserPreferences(bodyweight_kg=bodyweight if bodyweight and bodyweight > 0 else 0)


def _format_distribution(distribution: dict[str, float]) -> list[str]:
    ranked = sorted(distribution.items(), key=lambda item: (-item[1], item[0]))
    return [f"- {muscle}: {value:.1f} series" for muscle, value in ranked]


@mcp.tool()
async def get_personal_records(
    query: str = "", pr_type: str = "all", sort_by: str = "e1rm_desc"
) -> str:
    """List lifetime personal records per exercise.

    Args:
        query: Only show exercises whose name contains this text (accent-insensitive).
        pr_type: "all", "strength" (e1RM), "reps" or "time".
        sort_by: "e1rm_desc", "reps_desc", "time_desc", "updated_desc" or "name_asc".
    """
    try:
        record_type, record_sort = RecordType(pr_type), RecordSort(sort_by)
    except ValueError as exc:
        return f"Invalid argument: {exc}"

    workout_store, uid = await _ensure_login()
    rows = derive_personal_records(
        await workout_store.list_history(uid),
        await workout_store.list_exercises(uid),
        await workout_store.get_best_records(uid),
    )
    rows = filter_and_sort_records(rows, query, record_type, record_sort)

    if not rows:
        return "No personal records found."

    lines = [f"Found {len(rows)} personal records:\n"]
    for row in rows:
        parts = []
        if row.best_e1rm:
            parts.append(f"e1RM {row.best_e1rm:g} kg")
        if row.best_reps:
            parts.append(f"{row.best_reps} reps")
        if row.best_time_seconds:
            parts.append(format_duration(row.best_time_seconds))
        updated = f" (updated {row.updated_at:%Y-%m-%d})" if row.updated_at else ""
        lines.append(f"- **{row.exercise_name}**: {' | '.join(parts)}{updated}")

    return "\n".join(lines)


@mcp.tool()
async def get_muscle_distribution(since_days: int | None = None) -> str:
    """Weighted series per muscle group across logged workouts.

    Args:
        since_days: Only count workouts from the last N days. Omit for all workouts.
    """
    workout_store, uid = await _ensure_login()

    since = None
    if since_days is not None:
        today = datetime.now(timezone.utc).replace(hour=0, minute=0, second=0, microsecond=0)
        since = today - timedelta(days=since_days)

    distribution = history_distribution(await workout_store.list_history(uid), since=since)
    if not distribution:
        return "No completed series found."

    return "\n".join(["Series per muscle group:\n", *_format_distribution(distribution)])


@mcp.tool()
async def get_workout_history(limit: int = 20) -> str:
    """Fetch finished workouts, most recent first.

    Args:
        limit: Maximum number of workouts to return (default 20).
    """
    workout_store, uid = await _ensure_login()

    history = (await workout_store.list_history(uid))[:limit]
    if not history:
        return "No workouts found."

    lines = []
    for record in history:
        counts = set_completion_counts(record)
        partial = " [partial]" if is_partial_workout(record) else ""
        lines.append(
            f"## {record.routine_name or 'Workout'} | {record.started_at:%Y-%m-%d %H:%M} "
            f"({record.duration_minutes}min){partial}"
        )
        lines.append(
            f"Total volume: {record.total_volume:.0f} kg | "
            f"Sets: {counts.completed_sets}/{counts.total_sets}"
        )

        for exercise in record.exercises_completed:
            unit = "s" if exercise.tracking_type == "time" else ""
            warmup = [s for s in exercise.sets if s.completed and s.is_warmup]
            working = exercise.counted_sets
            if warmup:
                lines.append(f"  {exercise.name} (warmup): " + ", ".join(
                    f"{s.weight:g}kg x {s.reps}{unit}" for s in warmup
                ))
            if working:
                lines.append(f"  {exercise.name}: " + ", ".join(
                    f"{s.weight:g}kg x {s.reps}{unit}" + (f" +{len(s.dropsets)} drop" if s.dropsets else "")
                    for s in working
                ))

        lines.append("")

    return "\n".join(lines)


@mcp.tool()
async def get_active_workout() -> str:
    """Show the workout currently in progress, if any."""
    workout_store, uid = await _ensure_login()

    runtime = SessionRuntime(uid, workout_store, _preferences())
    result = await runtime.restore()
    if not result.ok:
        return f"Could not load the active workout: {result.message}"

    session = runtime.session
    if session is None:
        return "No workout in progress."

    lines = [
        f"# {session.routine_name or 'Workout'} ({session.status.value})",
        f"Elapsed: {format_duration(runtime.elapsed_seconds())}",
        f"Volume so far: {total_volume(session.exercises, runtime.preferences.bodyweight_kg):.0f} kg",
    ]
    if session.override_date:
        lines.append(f"Logging for: {session.override_date.isoformat()}")

    remaining = runtime.rest_remaining_seconds()
    if remaining is not None:
        state = "paused" if session.rest_timer.is_paused else "running"
        lines.append(f"Rest: {format_duration(remaining)} left ({state})")

    lines.append("")
    for exercise in session.exercises:
        marker = "> " if exercise.exercise_id == session.current_exercise_id else ""
        done = sum(1 for s in exercise.sets if s.completed)
        lines.append(f"- {marker}**{exercise.name}**: {done}/{len(exercise.sets)} sets")

    planned = accumulate_muscle_distribution(session.exercises, completed_only=False)
    if planned:
        lines.append("\nPlanned series per muscle group:")
        lines.extend(_format_distribution(planned))

    return "\n".join(lines)


def main():
    mcp.run()


if __name__ == "__main__":
    main()
