from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import quote

import httpx
from pydantic import ValidationError as PydanticValidationError

from ..errors import RemoteError, RemoteErrorReason
from ..models import WorkoutRecord, parse_timestamp
from ..settings import get_settings

logger = logging.getLogger(__name__)

# Realtime-database placeholder resolved to the server clock on write.
SERVER_TIMESTAMP = {".sv": "timestamp"}

_EPOCH = datetime.fromtimestamp(0, tz=timezone.utc)


def _children(value: Any) -> List[Any]:
    # The realtime database returns arrays either as lists or as {"0": .., "1": ..} maps.
    if isinstance(value, list):
        return [v for v in value if v is not None]
    if isinstance(value, dict):
        def _order(k: str) -> Tuple[int, Any]:
            return (0, int(k)) if str(k).isdigit() else (1, str(k))
        return [value[k] for k in sorted(value.keys(), key=_order) if value[k] is not None]
    return []


def normalize_set(raw: Dict[str, Any]) -> Dict[str, Any]:
    reps = raw.get("reps") if raw.get("reps") is not None else raw.get("rep")
    weight = raw.get("weight")
    if weight is None:
        weight = raw.get("weight_kg") if raw.get("weight_kg") is not None else raw.get("kg")
    rest = raw.get("rest") if raw.get("rest") is not None else raw.get("rest_seconds")
    try:
        rest = int(rest) if rest not in (None, "") else None
    except (TypeError, ValueError):
        rest = None
    return {"reps": reps, "weight": weight, "rest": rest if rest is None or rest >= 0 else None}


def normalize_exercise(raw: Dict[str, Any]) -> Dict[str, Any]:
    translations = raw.get("name_translations") or {}
    name = str(
        raw.get("name") or raw.get("title") or translations.get("en") or raw.get("exerciseName") or ""
    ).strip()
    ex_id = raw.get("id") or raw.get("exerciseId") or raw.get("exercise_template_id") or name
    sets_list = raw.get("sets") or raw.get("set") or []
    return {
        "id": ex_id,
        "name": name,
        "category": raw.get("category"),
        "sets": [normalize_set(s) for s in _children(sets_list) if isinstance(s, dict)],
    }


def normalize_record(key: str, raw: Dict[str, Any]) -> WorkoutRecord:
    """Map one stored child into the fixed WorkoutRecord shape."""
    date = parse_timestamp(raw.get("date")) or parse_timestamp(raw.get("createdAt"))
    raw_exercises = raw.get("exercises") or raw.get("logs") or []
    return WorkoutRecord.model_validate(
        {
            "id": key,
            "name": raw.get("name") or raw.get("title") or "",
            "date": date,
            "exercises": [normalize_exercise(e) for e in _children(raw_exercises) if isinstance(e, dict)],
        }
    )


class RemoteWorkoutStore:
    """Per-user append-only store addressed as users/{userId}/workouts/{recordId}.

    Every call is a single attempt; retries belong to the caller.
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        auth_token: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        settings = get_settings()
        self.base_url = (base_url or settings.remote_base_url).rstrip("/")
        self.auth_token = auth_token if auth_token is not None else settings.remote_auth_token

        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            headers={"Accept": "application/json"},
            timeout=timeout or settings.remote_timeout,
            transport=transport,
        )

    async def __aenter__(self) -> "RemoteWorkoutStore":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    def _params(self) -> Dict[str, str]:
        return {"auth": self.auth_token} if self.auth_token else {}

    @staticmethod
    def _path(user_id: str, record_id: Optional[str] = None) -> str:
        if not user_id:
            raise RemoteError(RemoteErrorReason.AUTH, "missing user id")
        user = quote(user_id, safe="")
        if record_id:
            return f"/users/{user}/workouts/{quote(record_id, safe='')}.json"
        return f"/users/{user}/workouts.json"

    async def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        try:
            resp = await self._client.request(method, path, params=self._params(), **kwargs)
        except httpx.TransportError as e:
            raise RemoteError(RemoteErrorReason.NETWORK, f"{method} {path}: {e}") from e

        if resp.status_code in (401, 403):
            raise RemoteError(
                RemoteErrorReason.AUTH, f"{method} {path}: HTTP {resp.status_code}", resp.status_code
            )
        if resp.status_code >= 300:
            raise RemoteError(
                RemoteErrorReason.SERVER, f"{method} {path}: HTTP {resp.status_code}", resp.status_code
            )
        if not resp.content:
            return None
        try:
            return resp.json()
        except ValueError as e:
            raise RemoteError(
                RemoteErrorReason.SERVER, f"{method} {path}: malformed response body", resp.status_code
            ) from e

    async def append(self, user_id: str, record: WorkoutRecord) -> str:
        payload = record.model_dump(mode="json", exclude={"id"})
        payload["createdAt"] = SERVER_TIMESTAMP
        data = await self._request("POST", self._path(user_id), json=payload)
        key = data.get("name") if isinstance(data, dict) else None
        if not key:
            raise RemoteError(RemoteErrorReason.SERVER, "append: response carried no record id")
        logger.info("remote: appended workout %s for user %s", key, user_id)
        return str(key)

    async def load_all(self, user_id: str) -> Tuple[WorkoutRecord, ...]:
        data = await self._request("GET", self._path(user_id))
        if not data:
            return ()
        if not isinstance(data, dict):
            raise RemoteError(RemoteErrorReason.SERVER, "load_all: unexpected payload shape")

        keyed: List[Tuple[datetime, WorkoutRecord]] = []
        for key, raw in data.items():
            if not isinstance(raw, dict):
                continue
            try:
                record = normalize_record(key, raw)
            except PydanticValidationError as e:
                logger.warning("remote: skipping unreadable workout %s: %s", key, e)
                continue
            created = parse_timestamp(raw.get("createdAt")) or record.date or _EPOCH
            keyed.append((created, record))

        keyed.sort(key=lambda pair: pair[0], reverse=True)
        logger.info("remote: fetched %d workouts for user %s", len(keyed), user_id)
        return tuple(record for _, record in keyed)

    async def remove(self, user_id: str, record_id: str) -> None:
        await self._request("DELETE", self._path(user_id, record_id))
        logger.info("remote: removed workout %s for user %s", record_id, user_id)
