from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, HTTPException, Query
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from .db import KeyValueStore
from .errors import LiftlogError, PersistenceError, RemoteError, RemoteErrorReason, ValidationError
from .services.catalog import WgerCatalog
from .services.identity import StaticIdentity
from .services.local_store import LocalWorkoutStore
from .services.progress import Metric, chart_data, compute_series, exercise_names, personal_records, summarize
from .services.remote_client import RemoteWorkoutStore
from .services.store import WorkoutStore, WriteResult
from .settings import get_settings


class IdentityIn(BaseModel):
    user_id: Optional[str] = None


class WorkoutIn(BaseModel):
    name: Optional[str] = None
    exercises: List[Dict[str, Any]] = []


def _status_for(error: LiftlogError) -> int:
    if isinstance(error, ValidationError):
        return 422
    if isinstance(error, PersistenceError):
        return 507
    if isinstance(error, RemoteError) and error.reason is RemoteErrorReason.AUTH:
        return 401
    return 502


def _write_response(result: WriteResult, success_status: int = 200) -> JSONResponse:
    content: Dict[str, Any] = {
        "record": result.record.model_dump(mode="json") if result.record is not None else None,
        "rolled_back": result.rolled_back,
    }
    if result.error is None:
        return JSONResponse(content, status_code=success_status)
    content["detail"] = str(result.error)
    return JSONResponse(content, status_code=_status_for(result.error))


def create_app(
    kv: Optional[KeyValueStore] = None,
    remote: Optional[RemoteWorkoutStore] = None,
    catalog: Optional[WgerCatalog] = None,
) -> FastAPI:
    settings = get_settings()
    logging.basicConfig(level=settings.log_level.upper(), format="[liftlog] %(name)s: %(message)s")

    app = FastAPI(title="Liftlog")
    kv = kv or KeyValueStore(settings.database_url)
    remote = remote or RemoteWorkoutStore()
    catalog = catalog or WgerCatalog()
    identity = StaticIdentity()
    store = WorkoutStore(LocalWorkoutStore(kv), remote)

    app.state.identity = identity
    app.state.store = store

    @app.on_event("startup")
    async def on_startup() -> None:
        await kv.init()
        store.attach(identity)
        await store.wait_ready()

    @app.on_event("shutdown")
    async def on_shutdown() -> None:
        await store.close()
        await remote.aclose()
        await catalog.aclose()
        await kv.dispose()

    @app.get("/healthz")
    async def healthz():
        return {"status": "ok"}

    @app.get("/api/identity")
    async def get_identity() -> Dict[str, Any]:
        return {"user_id": identity.current, "state": store.state.value}

    @app.post("/api/identity")
    async def set_identity(body: IdentityIn) -> Dict[str, Any]:
        identity.set(body.user_id)
        workouts = await store.wait_ready()
        return {
            "user_id": identity.current,
            "workouts": len(workouts),
            "error": str(store.last_error) if store.last_error else None,
        }

    @app.get("/api/workouts")
    async def list_workouts() -> Dict[str, Any]:
        workouts = await store.wait_ready()
        return {
            "workouts": [w.model_dump(mode="json") for w in workouts],
            "error": str(store.last_error) if store.last_error else None,
        }

    @app.post("/api/workouts")
    async def add_workout(body: WorkoutIn) -> JSONResponse:
        result = await store.add_workout(body.name, body.exercises)
        return _write_response(result, success_status=201)

    @app.delete("/api/workouts/{workout_id}")
    async def delete_workout(workout_id: str) -> JSONResponse:
        result = await store.delete_workout(workout_id)
        if result.record is None:
            raise HTTPException(status_code=404, detail="Workout not found")
        return _write_response(result)

    @app.get("/api/exercises")
    async def logged_exercises() -> Dict[str, Any]:
        return {"exercises": exercise_names(await store.wait_ready())}

    @app.get("/api/progress")
    async def progress(exercise: str, metric: Metric = Metric.MAX_WEIGHT) -> Dict[str, Any]:
        series = compute_series(await store.wait_ready(), exercise, metric)
        payload = chart_data(series, exercise, metric)
        payload["prs"] = [
            {"date": p.date.date().isoformat(), "value": p.value}
            for p in personal_records(compute_series(store.workouts, exercise, Metric.MAX_WEIGHT))
        ]
        return payload

    @app.get("/api/summary")
    async def summary() -> Dict[str, Any]:
        return summarize(await store.wait_ready()).as_dict()

    @app.get("/api/catalog")
    async def search_catalog(term: str = Query(default="")) -> Dict[str, Any]:
        try:
            results = await catalog.search(term)
        except RemoteError as e:
            raise HTTPException(status_code=502, detail=str(e))
        return {"exercises": [e.model_dump() for e in results]}

    return app
