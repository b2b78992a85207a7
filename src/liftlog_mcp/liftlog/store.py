"""Persistence contract consumed by the session runtime."""

import copy
from typing import Protocol

from liftlog_mcp.liftlog.models import CatalogExercise, HistoryRecord, PersistedRecord


class WorkoutStore(Protocol):
    """Durable keyed storage.

    The active session is keyed by user, which is what guarantees at most one
    in-progress session per user.
    """

    async def upsert_active_session(self, user_id: str, snapshot: dict) -> None: ...

    async def get_active_session(self, user_id: str) -> dict | None: ...

    async def delete_active_session(self, user_id: str) -> None: ...

    async def append_history_record(self, user_id: str, record: HistoryRecord) -> None: ...

    async def list_history(self, user_id: str) -> list[HistoryRecord]: ...

    async def upsert_best_record(
        self, user_id: str, exercise_name: str, record: PersistedRecord
    ) -> None: ...

    async def get_best_records(self, user_id: str) -> dict[str, PersistedRecord]: ...

    async def delete_all_best_records(self, user_id: str) -> None: ...

    async def list_exercises(self, user_id: str) -> list[CatalogExercise]: ...


class InMemoryWorkoutStore:
    """Process-local store, used for tests and offline runs."""

    def __init__(self, exercises: list[CatalogExercise] | None = None):
        self.active: dict[str, dict] = {}
        self.history: dict[str, list[HistoryRecord]] = {}
        self.best_records: dict[str, dict[str, PersistedRecord]] = {}
        self.exercises: list[CatalogExercise] = list(exercises or [])

    async def upsert_active_session(self, user_id: str, snapshot: dict) -> None:
        self.active[user_id] = copy.deepcopy(snapshot)

    async def get_active_session(self, user_id: str) -> dict | None:
        snapshot = self.active.get(user_id)
        return copy.deepcopy(snapshot) if snapshot is not None else None

    async def delete_active_session(self, user_id: str) -> None:
        self.active.pop(user_id, None)

    async def append_history_record(self, user_id: str, record: HistoryRecord) -> None:
        self.history.setdefault(user_id, []).append(record)

    async def list_history(self, user_id: str) -> list[HistoryRecord]:
        records = self.history.get(user_id, [])
        return sorted(records, key=lambda r: r.completed_at, reverse=True)

    async def upsert_best_record(
        self, user_id: str, exercise_name: str, record: PersistedRecord
    ) -> None:
        self.best_records.setdefault(user_id, {})[exercise_name] = record

    async def get_best_records(self, user_id: str) -> dict[str, PersistedRecord]:
        return dict(self.best_records.get(user_id, {}))

    async def delete_all_best_records(self, user_id: str) -> None:
        self.best_records.pop(user_id, None)

    async def list_exercises(self, user_id: str) -> list[CatalogExercise]:
        return [e for e in self.exercises if e.user_id in (None, user_id)]
