from __future__ import annotations

import json
from datetime import datetime, timezone

import httpx
import pytest

from liftlog.errors import RemoteError, RemoteErrorReason
from liftlog.services.remote_client import RemoteWorkoutStore, normalize_record

from conftest import make_record

BASE = "https://example-rtdb.test"


def make_store(handler, token: str | None = "secret") -> RemoteWorkoutStore:
    return RemoteWorkoutStore(base_url=BASE, auth_token=token, transport=httpx.MockTransport(handler))


@pytest.mark.asyncio
async def test_append_posts_under_user_namespace() -> None:
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["method"] = request.method
        seen["path"] = request.url.path
        seen["auth"] = request.url.params.get("auth")
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"name": "-NxKey1"})

    async with make_store(handler) as store:
        key = await store.append("user-a", make_record("temp-1", "2024-01-01"))

    assert key == "-NxKey1"
    assert seen["method"] == "POST"
    assert seen["path"] == "/users/user-a/workouts.json"
    assert seen["auth"] == "secret"
    assert "id" not in seen["body"]
    assert seen["body"]["createdAt"] == {".sv": "timestamp"}
    assert seen["body"]["exercises"][0]["name"] == "Bench Press"


@pytest.mark.asyncio
async def test_load_all_sorts_newest_first_by_created_at() -> None:
    payload = {
        "-a": {"name": "Old", "date": "2024-01-01T00:00:00Z", "createdAt": 1704067200000,
               "exercises": [{"id": 1, "name": "Squat", "category": "Legs", "sets": [{"reps": "5", "weight": "100"}]}]},
        "-b": {"name": "New", "date": "2024-02-01T00:00:00Z", "createdAt": 1706745600000,
               "exercises": [{"id": 1, "name": "Squat", "category": "Legs", "sets": [{"reps": "5", "weight": "110"}]}]},
    }

    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/users/user-a/workouts.json"
        return httpx.Response(200, json=payload)

    async with make_store(handler) as store:
        records = await store.load_all("user-a")

    assert [r.id for r in records] == ["-b", "-a"]
    assert records[0].name == "New"


@pytest.mark.asyncio
async def test_load_all_empty_namespace_is_not_an_error() -> None:
    async with make_store(lambda request: httpx.Response(200, content=b"null")) as store:
        assert await store.load_all("user-a") == ()


@pytest.mark.asyncio
async def test_load_all_skips_unreadable_children() -> None:
    payload = {
        "-good": {"name": "Ok", "createdAt": 1704067200000,
                  "exercises": [{"id": 1, "name": "Row", "sets": [{"reps": 8, "weight": 50}]}]},
        "-bad": {"name": "No date", "exercises": []},
        "-junk": "not a record",
    }
    async with make_store(lambda request: httpx.Response(200, json=payload)) as store:
        records = await store.load_all("user-a")
    assert [r.id for r in records] == ["-good"]


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "status, reason",
    [(401, RemoteErrorReason.AUTH), (403, RemoteErrorReason.AUTH), (500, RemoteErrorReason.SERVER), (404, RemoteErrorReason.SERVER)],
)
async def test_error_statuses_map_to_reasons(status: int, reason: RemoteErrorReason) -> None:
    async with make_store(lambda request: httpx.Response(status, json={"error": "nope"})) as store:
        with pytest.raises(RemoteError) as excinfo:
            await store.load_all("user-a")
    assert excinfo.value.reason is reason
    assert excinfo.value.status_code == status


@pytest.mark.asyncio
async def test_transport_failure_is_network_error_without_retry() -> None:
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        raise httpx.ConnectError("connection refused", request=request)

    async with make_store(handler) as store:
        with pytest.raises(RemoteError) as excinfo:
            await store.append("user-a", make_record("temp-1", "2024-01-01"))
    assert excinfo.value.reason is RemoteErrorReason.NETWORK
    assert len(calls) == 1


@pytest.mark.asyncio
async def test_append_without_key_is_server_error() -> None:
    async with make_store(lambda request: httpx.Response(200, json={})) as store:
        with pytest.raises(RemoteError) as excinfo:
            await store.append("user-a", make_record("temp-1", "2024-01-01"))
    assert excinfo.value.reason is RemoteErrorReason.SERVER


@pytest.mark.asyncio
async def test_remove_issues_delete() -> None:
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["method"] = request.method
        seen["path"] = request.url.path
        return httpx.Response(200, json=None)

    async with make_store(handler, token=None) as store:
        await store.remove("user-a", "-NxKey1")
    assert seen == {"method": "DELETE", "path": "/users/user-a/workouts/-NxKey1.json"}


def test_normalize_record_folds_field_variants() -> None:
    record = normalize_record(
        "-k",
        {
            "title": "Arms",
            "createdAt": 1704067200000,
            "logs": {
                "0": {
                    "name_translations": {"en": "Hammer Curl"},
                    "exerciseId": 81,
                    "category": {"name": "Arms"},
                    "set": [{"rep": 12, "weight_kg": 14}],
                }
            },
        },
    )
    assert record.name == "Arms"
    assert record.date == datetime(2024, 1, 1, tzinfo=timezone.utc)
    exercise = record.exercises[0]
    assert (exercise.id, exercise.name, exercise.category) == (81, "Hammer Curl", "Arms")
    assert exercise.sets[0].parsed_reps() == 12
    assert exercise.sets[0].parsed_weight() == 14.0


@pytest.mark.asyncio
async def test_user_id_is_escaped_in_path() -> None:
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["raw_path"] = request.url.raw_path
        return httpx.Response(200, content=b"null")

    async with make_store(handler, token=None) as store:
        await store.load_all("team/other-user")
    assert seen["raw_path"] == b"/users/team%2Fother-user/workouts.json"
