from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Iterable, List, Mapping, Optional, Tuple, Union

from ..errors import LiftlogError, RemoteError, ValidationError
from ..models import ExerciseEntry, WorkoutRecord, build_workout_record, sort_newest_first
from .identity import IdentityProvider
from .local_store import LocalWorkoutStore
from .remote_client import RemoteWorkoutStore

logger = logging.getLogger(__name__)

Collection = Tuple[WorkoutRecord, ...]
Listener = Callable[[Collection], None]


class StoreState(str, Enum):
    UNINITIALIZED = "uninitialized"
    LOADING = "loading"
    READY = "ready"


@dataclass(frozen=True)
class WriteResult:
    """Outcome of a write. `record` is what the write was about, even on failure."""

    record: Optional[WorkoutRecord]
    error: Optional[LiftlogError] = None
    rolled_back: bool = False

    @property
    def ok(self) -> bool:
        return self.error is None

    def raise_for_error(self) -> None:
        if self.error is not None:
            raise self.error


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class WorkoutStore:
    """Owns the in-memory workout collection for one session.

    The backing adapter follows the identity: guests persist through the
    local store, signed-in users through the remote store. Writes are
    optimistic: the new record is published before any I/O finishes.
    """

    def __init__(
        self,
        local: LocalWorkoutStore,
        remote: RemoteWorkoutStore,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.local = local
        self.remote = remote
        self.clock = clock

        self._workouts: Collection = ()
        self._identity: Optional[str] = None
        self._state = StoreState.UNINITIALIZED
        self._generation = 0
        self._load_task: Optional[asyncio.Task[None]] = None
        self._ready = asyncio.Event()
        self._listeners: List[Listener] = []
        self._detach: Optional[Callable[[], None]] = None

        self.last_error: Optional[BaseException] = None
        self.saving = 0

    # -- observation -------------------------------------------------------

    @property
    def workouts(self) -> Collection:
        return self._workouts

    @property
    def state(self) -> StoreState:
        return self._state

    @property
    def identity(self) -> Optional[str]:
        return self._identity

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _publish(self) -> None:
        snapshot = self._workouts
        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception:
                logger.exception("sync: subscriber failed")

    async def wait_ready(self) -> Collection:
        if self._state is StoreState.UNINITIALIZED:
            raise RuntimeError("workout store has not observed an identity yet")
        # A new identity can start another load between the event firing and this resuming.
        while self._state is not StoreState.READY:
            await self._ready.wait()
        return self._workouts

    # -- identity / loading ------------------------------------------------

    def attach(self, provider: IdentityProvider) -> None:
        """Follow an identity provider; its current value starts the first load."""
        self.detach()
        self._detach = provider.subscribe(self._on_identity)
        self._on_identity(provider.current)

    def detach(self) -> None:
        if self._detach is not None:
            self._detach()
            self._detach = None

    def _on_identity(self, user_id: Optional[str]) -> None:
        if self._state is not StoreState.UNINITIALIZED and user_id == self._identity:
            return
        self.begin_load(user_id)

    def begin_load(self, user_id: Optional[str]) -> "asyncio.Task[None]":
        """Switch to `user_id` and start loading its collection.

        The previous collection is dropped, not merged. A load still running
        for an earlier identity is cancelled, and its result is ignored if it
        arrives anyway.
        """
        self._generation += 1
        generation = self._generation
        self._identity = user_id or None
        self._workouts = ()
        self._state = StoreState.LOADING
        self._ready.clear()
        if self._load_task is not None and not self._load_task.done():
            self._load_task.cancel()
        logger.info("sync: loading workouts for %s", self._identity or "guest")
        self._publish()
        self._load_task = asyncio.get_running_loop().create_task(self._load(generation, self._identity))
        return self._load_task

    async def set_identity(self, user_id: Optional[str]) -> Collection:
        task = self.begin_load(user_id)
        await asyncio.wait({task})
        return self._workouts

    async def reload(self) -> Collection:
        return await self.set_identity(self._identity)

    async def _load(self, generation: int, user_id: Optional[str]) -> None:
        error: Optional[BaseException] = None
        try:
            if user_id is None:
                records = await self.local.load_all()
            else:
                records = await self.remote.load_all(user_id)
        except LiftlogError as e:
            logger.error("sync: could not load workouts for %s: %s", user_id or "guest", e)
            records, error = (), e
        except Exception as e:
            logger.exception("sync: unexpected failure loading workouts for %s", user_id or "guest")
            records, error = (), e

        if generation != self._generation:
            logger.info("sync: discarding stale load for %s", user_id or "guest")
            return

        self._workouts = sort_newest_first(records)
        self.last_error = error
        self._state = StoreState.READY
        self._ready.set()
        logger.info("sync: loaded %d workouts for %s", len(self._workouts), user_id or "guest")
        self._publish()

    # -- writes ------------------------------------------------------------

    async def add_workout(
        self,
        name: Optional[str],
        exercises: Iterable[Union[ExerciseEntry, Mapping[str, Any]]],
    ) -> WriteResult:
        """Insert a workout optimistically, then persist it.

        Guest failures keep the record in memory (the local store is the only
        copy). Signed-in failures remove it again and republish.
        """
        try:
            record = build_workout_record(name, exercises, self.clock())
        except ValidationError as e:
            return WriteResult(record=None, error=e)

        await self.wait_ready()
        generation = self._generation
        user_id = self._identity

        self._workouts = sort_newest_first((record,) + self._workouts)
        self._publish()

        self.saving += 1
        try:
            if user_id is None:
                return await self._persist_guest(record)
            return await self._persist_remote(generation, user_id, record)
        finally:
            self.saving -= 1

    async def _persist_guest(self, record: WorkoutRecord) -> WriteResult:
        try:
            await self.local.save_all(self._workouts)
        except LiftlogError as e:
            logger.warning("sync: guest workout %s kept in memory but not saved: %s", record.id, e)
            self.last_error = e
            return WriteResult(record=record, error=e)
        logger.info("sync: saved guest workout %s", record.id)
        return WriteResult(record=record)

    async def _persist_remote(self, generation: int, user_id: str, record: WorkoutRecord) -> WriteResult:
        try:
            key = await self.remote.append(user_id, record)
        except RemoteError as e:
            logger.error("sync: reverting workout %s, save failed: %s", record.id, e)
            self._evict(generation, record.id)
            self.last_error = e
            return WriteResult(record=record, error=e, rolled_back=True)
        except BaseException:
            self._evict(generation, record.id)
            raise

        saved = record.model_copy(update={"id": key})
        if generation == self._generation:
            self._workouts = tuple(saved if r.id == record.id else r for r in self._workouts)
            self._publish()
        return WriteResult(record=saved)

    def _evict(self, generation: int, record_id: str) -> None:
        if generation != self._generation:
            return
        self._workouts = tuple(r for r in self._workouts if r.id != record_id)
        self._publish()

    async def delete_workout(self, record_id: str) -> WriteResult:
        """Evict a workout by id from memory and from the backing store."""
        await self.wait_ready()
        generation = self._generation
        user_id = self._identity

        before = self._workouts
        record = next((r for r in before if r.id == record_id), None)
        if record is None:
            return WriteResult(record=None, error=ValidationError(f"unknown workout id {record_id!r}"))

        self._workouts = tuple(r for r in before if r.id != record_id)
        self._publish()

        self.saving += 1
        try:
            if user_id is None:
                try:
                    await self.local.save_all(self._workouts)
                except LiftlogError as e:
                    self.last_error = e
                    return WriteResult(record=record, error=e)
            elif not record.is_provisional:
                try:
                    await self.remote.remove(user_id, record_id)
                except RemoteError as e:
                    logger.error("sync: restoring workout %s, delete failed: %s", record_id, e)
                    if generation == self._generation:
                        self._workouts = sort_newest_first((record,) + self._workouts)
                        self._publish()
                    self.last_error = e
                    return WriteResult(record=record, error=e, rolled_back=True)
        finally:
            self.saving -= 1
        logger.info("sync: deleted workout %s", record_id)
        return WriteResult(record=record)

    async def close(self) -> None:
        self.detach()
        if self._load_task is not None and not self._load_task.done():
            self._load_task.cancel()
            await asyncio.wait({self._load_task})
