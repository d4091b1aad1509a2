from __future__ import annotations

import json
from pathlib import Path

import httpx
import pytest
from fastapi.testclient import TestClient

from liftlog.db import KeyValueStore
from liftlog.main import create_app
from liftlog.services.catalog import WgerCatalog
from liftlog.services.remote_client import RemoteWorkoutStore

WORKOUT = {
    "name": "Push Day",
    "exercises": [
        {
            "id": 192,
            "name": "Bench Press",
            "category": "Chest",
            "sets": [{"reps": "5", "weight": "100"}, {"reps": "5", "weight": "105"}, {"reps": "", "weight": ""}],
        }
    ],
}


class FakeRealtimeDb:
    """Just enough of the realtime-database REST API for the app."""

    def __init__(self) -> None:
        self.users = {}
        self.fail = False

    def __call__(self, request: httpx.Request) -> httpx.Response:
        if self.fail:
            return httpx.Response(503)
        parts = request.url.path.strip("/").removesuffix(".json").split("/")
        user = self.users.setdefault(parts[1], {})
        if request.method == "POST":
            key = f"-k{len(user) + 1}"
            body = json.loads(request.content)
            body["createdAt"] = 1714564800000 + len(user)
            user[key] = body
            return httpx.Response(200, json={"name": key})
        if request.method == "GET":
            return httpx.Response(200, json=user or None)
        return httpx.Response(405)


@pytest.fixture
def realtime_db() -> FakeRealtimeDb:
    return FakeRealtimeDb()


@pytest.fixture
def client(tmp_path: Path, realtime_db: FakeRealtimeDb):
    app = create_app(
        kv=KeyValueStore(f"sqlite:///{tmp_path / 'api.db'}"),
        remote=RemoteWorkoutStore(base_url="https://rtdb.test", auth_token="t", transport=httpx.MockTransport(realtime_db)),
        catalog=WgerCatalog(
            base_url="https://wger.test/api/v2",
            transport=httpx.MockTransport(
                lambda request: httpx.Response(200, json={"results": [{"id": 73, "name": "Bench Press", "category": {"name": "Chest"}}]})
            ),
        ),
    )
    with TestClient(app) as c:
        yield c


def test_healthz(client: TestClient) -> None:
    assert client.get("/healthz").json() == {"status": "ok"}


def test_guest_workflow(client: TestClient) -> None:
    assert client.get("/api/identity").json() == {"user_id": None, "state": "ready"}

    resp = client.post("/api/workouts", json=WORKOUT)
    assert resp.status_code == 201
    record = resp.json()["record"]
    assert record["id"].startswith("temp-")
    assert len(record["exercises"][0]["sets"]) == 2

    workouts = client.get("/api/workouts").json()["workouts"]
    assert [w["id"] for w in workouts] == [record["id"]]

    progress = client.get("/api/progress", params={"exercise": "bench press", "metric": "totalVolume"}).json()
    assert progress["values"] == [1025]
    assert progress["label"] == "Total Volume for bench press (kg)"
    assert [p["value"] for p in progress["prs"]] == [105]

    summary = client.get("/api/summary").json()
    assert summary["total_workouts"] == 1
    assert summary["total_sets"] == 2
    assert summary["average_reps"] == 5

    assert client.get("/api/exercises").json() == {"exercises": ["Bench Press"]}


def test_empty_workout_is_rejected(client: TestClient) -> None:
    resp = client.post("/api/workouts", json={"name": "x", "exercises": []})
    assert resp.status_code == 422
    assert resp.json()["record"] is None
    assert client.get("/api/workouts").json()["workouts"] == []


def test_signed_in_user_gets_server_ids(client: TestClient, realtime_db: FakeRealtimeDb) -> None:
    client.post("/api/workouts", json=WORKOUT)  # guest copy, must not leak into the user's view

    resp = client.post("/api/identity", json={"user_id": "user-a"})
    assert resp.json() == {"user_id": "user-a", "workouts": 0, "error": None}

    created = client.post("/api/workouts", json=WORKOUT).json()["record"]
    assert created["id"] == "-k1"
    assert "-k1" in realtime_db.users["user-a"]

    client.post("/api/identity", json={"user_id": None})
    assert len(client.get("/api/workouts").json()["workouts"]) == 1
    client.post("/api/identity", json={"user_id": "user-a"})
    assert [w["id"] for w in client.get("/api/workouts").json()["workouts"]] == ["-k1"]


def test_remote_failure_rolls_back(client: TestClient, realtime_db: FakeRealtimeDb) -> None:
    client.post("/api/identity", json={"user_id": "user-a"})
    realtime_db.fail = True

    resp = client.post("/api/workouts", json=WORKOUT)

    assert resp.status_code == 502
    assert resp.json()["rolled_back"] is True
    assert client.get("/api/workouts").json()["workouts"] == []


def test_load_failure_reports_error_without_blocking(client: TestClient, realtime_db: FakeRealtimeDb) -> None:
    realtime_db.fail = True
    body = client.post("/api/identity", json={"user_id": "user-b"}).json()
    assert body["workouts"] == 0
    assert "503" in body["error"]


def test_catalog_search(client: TestClient) -> None:
    body = client.get("/api/catalog", params={"term": "bench"}).json()
    assert body["exercises"][0]["name"] == "Bench Press"
    assert body["exercises"][0]["category"] == "Chest"


def test_delete_unknown_workout_is_404(client: TestClient) -> None:
    assert client.delete("/api/workouts/nope").status_code == 404


def test_manual_exercise_is_accepted(client: TestClient) -> None:
    resp = client.post(
        "/api/workouts",
        json={"name": "Home", "exercises": [{"name": "My Lift", "sets": [{"reps": "5", "weight": "50"}]}]},
    )
    assert resp.status_code == 201
    exercise = resp.json()["record"]["exercises"][0]
    assert exercise["id"] == "custom-my-lift"
    assert exercise["category"] == "Custom"
