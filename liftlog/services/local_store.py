from __future__ import annotations

import json
import logging
from typing import Any, Iterable, List, Optional, Tuple

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.exc import SQLAlchemyError

from ..db import KeyValueStore
from ..errors import PersistenceError
from ..models import WorkoutRecord, sort_newest_first
from ..settings import get_settings

logger = logging.getLogger(__name__)


class LocalWorkoutStore:
    """Guest persistence: the whole collection as one JSON list under one key."""

    def __init__(
        self,
        kv: KeyValueStore,
        key: Optional[str] = None,
        quota_bytes: Optional[int] = None,
    ) -> None:
        settings = get_settings()
        self.kv = kv
        self.key = key or settings.local_storage_key
        self.quota_bytes = quota_bytes if quota_bytes is not None else settings.local_quota_bytes

    async def load_all(self) -> Tuple[WorkoutRecord, ...]:
        try:
            raw = await self.kv.get(self.key)
        except (SQLAlchemyError, OSError) as e:
            logger.warning("local: storage unavailable on load, treating as empty: %s", e)
            return ()
        if not raw:
            return ()

        try:
            data: Any = json.loads(raw)
        except ValueError as e:
            logger.warning("local: corrupt snapshot under %r, treating as empty: %s", self.key, e)
            return ()
        if not isinstance(data, list):
            logger.warning("local: snapshot under %r is not a list, treating as empty", self.key)
            return ()

        try:
            records: List[WorkoutRecord] = [WorkoutRecord.model_validate(item) for item in data]
        except PydanticValidationError as e:
            logger.warning("local: snapshot under %r has invalid records, treating as empty: %s", self.key, e)
            return ()
        return sort_newest_first(records)

    async def save_all(self, collection: Iterable[WorkoutRecord]) -> None:
        payload = json.dumps([r.model_dump(mode="json") for r in collection])
        size = len(payload.encode("utf-8"))
        if size > self.quota_bytes:
            raise PersistenceError(
                f"local storage quota exceeded ({size} bytes > {self.quota_bytes} bytes)"
            )
        try:
            await self.kv.set(self.key, payload)
        except (SQLAlchemyError, OSError) as e:
            raise PersistenceError(f"local storage unavailable: {e}") from e
        logger.debug("local: saved snapshot (%d bytes)", size)

    async def clear(self) -> None:
        try:
            await self.kv.delete(self.key)
        except (SQLAlchemyError, OSError) as e:
            raise PersistenceError(f"local storage unavailable: {e}") from e
