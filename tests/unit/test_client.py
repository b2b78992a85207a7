"""
Unit tests for SupabaseAuth and SupabaseWorkoutStore.

The remote API is replaced with httpx.MockTransport; each test routes
requests through a small handler that records what it received.
"""

import json
from datetime import datetime, timezone

import httpx
import pytest

from liftlog_mcp.liftlog.auth import SupabaseAuth
from liftlog_mcp.liftlog.client import SupabaseWorkoutStore
from liftlog_mcp.liftlog.exceptions import AuthenticationError, PersistenceError, TokenExpiredError
from liftlog_mcp.liftlog.models import ExerciseEntry, HistoryRecord, PersistedRecord, WorkoutSet

pytestmark = pytest.mark.unit

URL = "https://project.supabase.co"
KEY = "anon-key"


def _token_response(request: httpx.Request) -> httpx.Response:
    grant = request.url.params["grant_type"]
    if grant == "password":
        body = json.loads(request.content)
        if body["password"] != "secret":
            return httpx.Response(400, json={"error_description": "Invalid login credentials"})
        return httpx.Response(200, json={
            "access_token": "tok-1",
            "refresh_token": "refresh-1",
            "expires_in": 3600,
            "user": {"id": "user-1"},
        })
    return httpx.Response(200, json={
        "access_token": "tok-2",
        "refresh_token": "refresh-2",
        "expires_in": 3600,
        "user": {"id": "user-1"},
    })


def make_store(rest_handler, requests=None):
    """Store whose auth and REST calls go through the given handler."""
    def handler(request: httpx.Request) -> httpx.Response:
        if requests is not None:
            requests.append(request)
        if request.url.path == "/auth/v1/token":
            return _token_response(request)
        return rest_handler(request)

    return SupabaseWorkoutStore(URL, KEY, transport=httpx.MockTransport(handler))


# ---------------------------------------------------------------------------
# Auth
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_login_stores_identity():
    store = make_store(lambda r: httpx.Response(200, json=[]))
    await store.login("me@example.com", "secret")

    assert store.is_authenticated
    assert store.user_id == "user-1"
    assert store.get_auth_state()["access_token"] == "tok-1"


@pytest.mark.asyncio
async def test_login_failure_raises_authentication_error():
    store = make_store(lambda r: httpx.Response(200, json=[]))
    with pytest.raises(AuthenticationError, match="Invalid login credentials"):
        await store.login("me@example.com", "wrong")


@pytest.mark.asyncio
async def test_requests_require_login():
    store = make_store(lambda r: httpx.Response(200, json=[]))
    with pytest.raises(AuthenticationError):
        await store.get_active_session("user-1")


@pytest.mark.asyncio
async def test_unreachable_token_endpoint_raises_authentication_error():
    def offline(request):
        raise httpx.ConnectError("offline", request=request)

    auth = SupabaseAuth(URL, KEY, transport=httpx.MockTransport(offline))
    with pytest.raises(AuthenticationError, match="Token request failed"):
        await auth.login("me@example.com", "secret")


@pytest.mark.asyncio
async def test_failed_refresh_after_401_raises_token_expired():
    def handler(request):
        if request.url.path == "/auth/v1/token" and request.url.params["grant_type"] == "password":
            return _token_response(request)
        return httpx.Response(401, json={"message": "JWT expired"})

    store = SupabaseWorkoutStore(URL, KEY, transport=httpx.MockTransport(handler))
    await store.login("me@example.com", "secret")

    with pytest.raises(TokenExpiredError):
        await store.upsert_active_session("user-1", {"id": "s"})


def test_auth_state_round_trip():
    auth = SupabaseAuth(URL, KEY)
    auth.access_token, auth.refresh_token, auth.user_id = "a", "r", "user-1"
    auth.token_expiry = datetime(2030, 1, 1, tzinfo=timezone.utc)

    restored = SupabaseAuth.from_dict(URL, KEY, auth.to_dict())

    assert restored.to_dict() == auth.to_dict()
    assert restored.get_auth_headers() == {"apikey": KEY, "Authorization": "Bearer a"}


# ---------------------------------------------------------------------------
# Requests
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_upsert_active_session_sends_merge_upsert():
    requests = []
    store = make_store(lambda r: httpx.Response(201), requests)
    await store.login("me@example.com", "secret")

    await store.upsert_active_session("user-1", {"id": "s", "workout_data": {"version": 2}})

    request = requests[-1]
    assert request.method == "POST"
    assert request.url.path == "/rest/v1/active_workouts"
    assert request.url.params["on_conflict"] == "user_id"
    assert "resolution=merge-duplicates" in request.headers["Prefer"]
    assert request.headers["Authorization"] == "Bearer tok-1"
    assert request.headers["apikey"] == KEY
    assert json.loads(request.content) == {"id": "s", "user_id": "user-1", "workout_data": {"version": 2}}


@pytest.mark.asyncio
async def test_get_active_session_returns_first_row_or_none():
    rows = [[{"id": "s", "user_id": "user-1"}], []]
    store = make_store(lambda r: httpx.Response(200, json=rows.pop(0)))
    await store.login("me@example.com", "secret")

    assert (await store.get_active_session("user-1"))["id"] == "s"
    assert await store.get_active_session("user-1") is None


@pytest.mark.asyncio
async def test_expired_token_is_refreshed_once():
    def rest(request):
        if request.headers["Authorization"] == "Bearer tok-1":
            return httpx.Response(401, json={"message": "JWT expired"})
        return httpx.Response(200, json=[])

    requests = []
    store = make_store(rest, requests)
    await store.login("me@example.com", "secret")

    await store.delete_active_session("user-1")

    paths = [(r.method, r.url.path) for r in requests]
    assert paths == [
        ("POST", "/auth/v1/token"),
        ("DELETE", "/rest/v1/active_workouts"),
        ("POST", "/auth/v1/token"),
        ("DELETE", "/rest/v1/active_workouts"),
    ]
    assert store.get_auth_state()["access_token"] == "tok-2"


@pytest.mark.asyncio
async def test_http_error_raises_persistence_error():
    store = make_store(lambda r: httpx.Response(500, text="boom"))
    await store.login("me@example.com", "secret")

    with pytest.raises(PersistenceError) as exc_info:
        await store.delete_all_best_records("user-1")
    assert exc_info.value.status_code == 500


@pytest.mark.asyncio
async def test_transport_error_raises_persistence_error():
    def rest(request):
        raise httpx.ConnectError("offline", request=request)

    store = make_store(rest)
    await store.login("me@example.com", "secret")

    with pytest.raises(PersistenceError):
        await store.list_history("user-1")


# ---------------------------------------------------------------------------
# Row parsing
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_list_history_parses_rows_and_skips_malformed():
    rows = [
        {
            "id": "w1",
            "user_id": "user-1",
            "routine_id": None,
            "routine_name": None,
            "started_at": "2024-03-01T17:00:00+00:00",
            "completed_at": "2024-03-01T18:00:00+00:00",
            "exercises_completed": [
                {"exercise_id": "b", "name": "Bench Press", "sets": [{"reps": 5, "weight": 100, "completed": True}]},
                {"bogus": True},
            ],
            "total_volume": 500,
            "duration_minutes": 60,
        },
        {"id": "w2", "user_id": "user-1"},
    ]
    requests = []
    store = make_store(lambda r: httpx.Response(200, json=rows), requests)
    await store.login("me@example.com", "secret")

    history = await store.list_history("user-1")

    assert [h.id for h in history] == ["w1"]
    assert history[0].routine_name == ""
    assert [e.name for e in history[0].exercises_completed] == ["Bench Press"]
    assert requests[-1].url.params["order"] == "completed_at.desc"


@pytest.mark.asyncio
async def test_append_history_record_posts_json():
    requests = []
    store = make_store(lambda r: httpx.Response(201), requests)
    await store.login("me@example.com", "secret")
    record = HistoryRecord(
        id="w1",
        started_at=datetime(2024, 3, 1, 17, tzinfo=timezone.utc),
        completed_at=datetime(2024, 3, 1, 18, tzinfo=timezone.utc),
        exercises_completed=[ExerciseEntry(exercise_id="b", name="Bench", sets=[WorkoutSet(reps=5, weight=100)])],
    )

    await store.append_history_record("user-1", record)

    body = json.loads(requests[-1].content)
    assert requests[-1].url.path == "/rest/v1/workout_sessions"
    assert body["user_id"] == "user-1"
    assert body["exercises_completed"][0]["sets"][0]["weight"] == 100


@pytest.mark.asyncio
async def test_best_records_round_trip_shapes():
    requests = []

    def rest(request):
        if request.method == "GET":
            return httpx.Response(200, json=[
                {"exercise_name": "Bench Press", "weight": 100, "reps": 5, "date": "2024-03-01T18:00:00Z"},
                {"exercise_name": None, "weight": 50, "reps": 5},
                {"exercise_name": "Squat", "weight": None, "reps": None, "date": None},
            ])
        return httpx.Response(201)

    store = make_store(rest, requests)
    await store.login("me@example.com", "secret")

    records = await store.get_best_records("user-1")
    await store.upsert_best_record("user-1", "Bench Press", PersistedRecord(weight=105, reps=3))

    assert set(records) == {"Bench Press", "Squat"}
    assert records["Bench Press"].weight == 100
    assert records["Squat"].weight == 0
    assert requests[-1].url.params["on_conflict"] == "user_id,exercise_name"
    assert json.loads(requests[-1].content)["weight"] == 105


@pytest.mark.asyncio
async def test_list_exercises_filters_shared_and_owned():
    requests = []
    rows = [
        {"id": "e1", "name": "Bench Press", "primary_muscle": "Pecho", "secondary_muscles": None, "user_id": None},
        {"id": "e2", "name": "Plank", "tracking_type": "time", "user_id": "user-1"},
        {"id": "e3"},
    ]
    store = make_store(lambda r: httpx.Response(200, json=rows), requests)
    await store.login("me@example.com", "secret")

    exercises = await store.list_exercises("user-1")

    assert [e.name for e in exercises] == ["Bench Press", "Plank"]
    assert exercises[1].tracking_type == "time"
    assert requests[-1].url.params["or"] == "(user_id.is.null,user_id.eq.user-1)"
