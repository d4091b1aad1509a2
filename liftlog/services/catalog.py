from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple, Union

import httpx
from pydantic import BaseModel

from ..errors import RemoteError, RemoteErrorReason
from ..models import ExerciseEntry, SetEntry
from ..settings import get_settings

logger = logging.getLogger(__name__)

ENGLISH = 2  # wger language id


class CatalogExercise(BaseModel):
    id: int
    name: str
    category: str = ""
    muscles: Tuple[str, ...] = ()

    def to_entry(self, sets: Iterable[Union[SetEntry, Mapping[str, Any]]] = ()) -> ExerciseEntry:
        return ExerciseEntry(
            id=self.id,
            name=self.name,
            category=self.category or None,
            sets=tuple(SetEntry.model_validate(s) for s in sets),
        )


def _english_name(raw: Dict[str, Any]) -> str:
    translations = raw.get("translations") or []
    for t in translations:
        if isinstance(t, dict) and t.get("language") == ENGLISH and t.get("name"):
            return str(t["name"]).strip()
    name_translations = raw.get("name_translations") or {}
    return str(raw.get("name") or name_translations.get("en") or "").strip()


def normalize_catalog_exercise(raw: Dict[str, Any]) -> Optional[CatalogExercise]:
    """Fold the shapes different wger endpoints return into one CatalogExercise."""
    name = _english_name(raw)
    if raw.get("id") is None or not name:
        return None
    category = raw.get("category")
    if isinstance(category, dict):
        category = category.get("name")
    muscles = []
    for m in raw.get("muscles") or []:
        if isinstance(m, dict):
            muscle = m.get("name_en") or m.get("name")
            if muscle:
                muscles.append(str(muscle))
    try:
        return CatalogExercise(
            id=int(raw["id"]),
            name=name,
            category=str(category) if category is not None else "",
            muscles=tuple(muscles),
        )
    except (TypeError, ValueError):
        return None


class WgerCatalog:
    """Read-only exercise lookup against the wger API."""

    def __init__(
        self,
        base_url: Optional[str] = None,
        api_key: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        settings = get_settings()
        self.base_url = (base_url or settings.catalog_base_url).rstrip("/")
        api_key = api_key or settings.catalog_api_key

        headers: Dict[str, str] = {"Accept": "application/json"}
        if api_key:
            headers["Authorization"] = f"Token {api_key}"
        self._client = httpx.AsyncClient(
            base_url=self.base_url, headers=headers, timeout=30.0, transport=transport
        )
        self._cache: Optional[List[CatalogExercise]] = None

    async def aclose(self) -> None:
        await self._client.aclose()

    async def all_exercises(self, limit: int = 300) -> List[CatalogExercise]:
        if self._cache is not None:
            return self._cache
        try:
            resp = await self._client.get("/exerciseinfo/", params={"limit": limit})
        except httpx.TransportError as e:
            raise RemoteError(RemoteErrorReason.NETWORK, f"catalog: {e}") from e
        if resp.status_code in (401, 403):
            raise RemoteError(RemoteErrorReason.AUTH, "catalog: invalid API key", resp.status_code)
        if resp.status_code >= 300:
            raise RemoteError(RemoteErrorReason.SERVER, f"catalog: HTTP {resp.status_code}", resp.status_code)
        try:
            data = resp.json()
        except ValueError as e:
            raise RemoteError(RemoteErrorReason.SERVER, "catalog: malformed response body") from e

        items = data.get("results") if isinstance(data, dict) else data
        exercises = []
        for raw in items or []:
            if not isinstance(raw, dict):
                continue
            exercise = normalize_catalog_exercise(raw)
            if exercise is not None:
                exercises.append(exercise)
        logger.info("catalog: fetched %d exercises", len(exercises))
        self._cache = exercises
        return exercises

    async def search(self, term: str = "") -> List[CatalogExercise]:
        """Exercises whose name or category contains `term` (case-insensitive)."""
        exercises = await self.all_exercises()
        term = term.strip().lower()
        if not term:
            return exercises
        return [e for e in exercises if term in e.name.lower() or term in e.category.lower()]
