"""LiftLog store backed by the Supabase REST API."""

import logging

import httpx

from liftlog_mcp.liftlog.auth import SupabaseAuth
from liftlog_mcp.liftlog.exceptions import AuthenticationError, PersistenceError
from liftlog_mcp.liftlog.models import CatalogExercise, HistoryRecord, PersistedRecord
from liftlog_mcp.liftlog.snapshot import parse_exercise_entries

logger = logging.getLogger(__name__)


class SupabaseWorkoutStore:
    """``WorkoutStore`` over the PostgREST tables of a LiftLog project.

    Tables: ``active_workouts`` (one row per user), ``workout_sessions``,
    ``personal_records`` (one row per user and exercise name) and
    ``exercises``.
    """

    def __init__(
        self,
        url: str,
        api_key: str,
        auth: SupabaseAuth | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.url = url.rstrip("/")
        self._auth = auth or SupabaseAuth(url, api_key, transport=transport)
        self._transport = transport

    @property
    def is_authenticated(self) -> bool:
        return self._auth.is_authenticated

    @property
    def user_id(self) -> str | None:
        return self._auth.user_id

    async def login(self, email: str, password: str) -> None:
        await self._auth.login(email, password)

    async def _ensure_authenticated(self) -> None:
        if not self._auth.is_authenticated:
            raise AuthenticationError("Not authenticated. Call login() first.")
        if self._auth.is_token_expired:
            await self._auth.refresh()

    async def _request(
        self, method: str, table: str, prefer: str | None = None, **kwargs
    ) -> list[dict]:
        await self._ensure_authenticated()

        async with httpx.AsyncClient(timeout=30, transport=self._transport) as client:
            async def send() -> httpx.Response:
                headers = self._auth.get_auth_headers()
                if prefer:
                    headers["Prefer"] = prefer
                return await client.request(
                    method, f"{self.url}/rest/v1/{table}", headers=headers, **kwargs
                )

            try:
                response = await send()
                if response.status_code == 401:
                    await self._auth.refresh()
                    response = await send()
            except httpx.HTTPError as exc:
                raise PersistenceError(f"Request to {table} failed: {exc}") from exc

            if response.status_code >= 400:
                raise PersistenceError(
                    f"Request to {table} failed: {response.text}",
                    status_code=response.status_code,
                )

            if not response.content:
                return []
            data = response.json()
            return data if isinstance(data, list) else [data]

    # --- Active session ---

    async def upsert_active_session(self, user_id: str, snapshot: dict) -> None:
        await self._request(
            "POST",
            "active_workouts",
            prefer="resolution=merge-duplicates,return=minimal",
            params={"on_conflict": "user_id"},
            json={**snapshot, "user_id": user_id},
        )

    async def get_active_session(self, user_id: str) -> dict | None:
        rows = await self._request(
            "GET",
            "active_workouts",
            params={"select": "*", "user_id": f"eq.{user_id}", "limit": 1},
        )
        return rows[0] if rows else None

    async def delete_active_session(self, user_id: str) -> None:
        await self._request("DELETE", "active_workouts", params={"user_id": f"eq.{user_id}"})

    # --- History ---

    async def append_history_record(self, user_id: str, record: HistoryRecord) -> None:
        await self._request(
            "POST",
            "workout_sessions",
            prefer="return=minimal",
            json={**record.model_dump(mode="json"), "user_id": user_id},
        )

    async def list_history(self, user_id: str) -> list[HistoryRecord]:
        rows = await self._request(
            "GET",
            "workout_sessions",
            params={"select": "*", "user_id": f"eq.{user_id}", "order": "completed_at.desc"},
        )
        history = []
        for row in rows:
            record = self._parse_history(row)
            if record:
                history.append(record)
        return history

    def _parse_history(self, row: dict) -> HistoryRecord | None:
        try:
            return HistoryRecord.model_validate({
                **row,
                "routine_name": row.get("routine_name") or "",
                "total_volume": row.get("total_volume") or 0,
                "duration_minutes": row.get("duration_minutes") or 0,
                "exercises_completed": parse_exercise_entries(row.get("exercises_completed")),
            })
        except ValueError:
            logger.warning("Skipping malformed workout row %r", row.get("id"))
            return None

    # --- Best records ---

    async def upsert_best_record(
        self, user_id: str, exercise_name: str, record: PersistedRecord
    ) -> None:
        await self._request(
            "POST",
            "personal_records",
            prefer="resolution=merge-duplicates,return=minimal",
            params={"on_conflict": "user_id,exercise_name"},
            json={
                "user_id": user_id,
                "exercise_name": exercise_name,
                **record.model_dump(mode="json"),
            },
        )

    async def get_best_records(self, user_id: str) -> dict[str, PersistedRecord]:
        rows = await self._request(
            "GET",
            "personal_records",
            params={"select": "exercise_name,weight,reps,date", "user_id": f"eq.{user_id}"},
        )
        records = {}
        for row in rows:
            name = row.get("exercise_name")
            if not isinstance(name, str) or not name:
                continue
            try:
                records[name] = PersistedRecord.model_validate({
                    "weight": row.get("weight") or 0,
                    "reps": row.get("reps") or 0,
                    "date": row.get("date"),
                })
            except ValueError:
                logger.warning("Skipping malformed record for %s", name)
        return records

    async def delete_all_best_records(self, user_id: str) -> None:
        await self._request("DELETE", "personal_records", params={"user_id": f"eq.{user_id}"})

    # --- Catalog ---

    async def list_exercises(self, user_id: str) -> list[CatalogExercise]:
        rows = await self._request(
            "GET",
            "exercises",
            params={
                "select": "*",
                "or": f"(user_id.is.null,user_id.eq.{user_id})",
                "order": "name.asc",
            },
        )
        exercises = []
        for row in rows:
            try:
                exercises.append(CatalogExercise.model_validate({
                    k: v for k, v in row.items() if v is not None
                }))
            except ValueError:
                logger.warning("Skipping malformed exercise %r", row.get("id"))
        return exercises

    def get_auth_state(self) -> dict:
        return self._auth.to_dict()

    def restore_auth_state(self, state: dict) -> None:
        self._auth = SupabaseAuth.from_dict(
            self.url, self._auth.api_key, state, transport=self._transport
        )
