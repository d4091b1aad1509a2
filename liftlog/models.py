from __future__ import annotations

import itertools
import math
import re
from datetime import datetime, timezone
from typing import Any, Iterable, Mapping, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic import ValidationError as PydanticValidationError

from .errors import ValidationError

PROVISIONAL_PREFIX = "temp-"
CUSTOM_CATEGORY = "Custom"

_provisional_counter = itertools.count(1)

RawNumber = Optional[Union[int, float, str]]


def _is_blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def parse_reps(value: Any) -> int:
    """Parse a reps field the way it was typed in; anything unusable counts as 0."""
    if _is_blank(value) or isinstance(value, bool):
        return 0
    try:
        number = float(str(value).strip())
    except ValueError:
        return 0
    if not math.isfinite(number) or number < 0:
        return 0
    return int(number)


def parse_weight(value: Any) -> float:
    if _is_blank(value) or isinstance(value, bool):
        return 0.0
    try:
        number = float(str(value).strip())
    except ValueError:
        return 0.0
    if not math.isfinite(number) or number < 0:
        return 0.0
    return number


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Accept ISO-8601 strings (trailing Z allowed) or epoch milliseconds."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, (int, float)):
        try:
            parsed = datetime.fromtimestamp(value / 1000.0, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
    elif isinstance(value, str):
        v = value.strip().replace("Z", "+00:00")
        try:
            parsed = datetime.fromisoformat(v)
        except ValueError:
            return None
    else:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


class SetEntry(BaseModel):
    model_config = ConfigDict(frozen=True)

    # Kept as entered; parsing happens when aggregating.
    reps: RawNumber = None
    weight: RawNumber = None
    rest: Optional[int] = Field(default=None, ge=0)

    def is_complete(self) -> bool:
        return not _is_blank(self.reps) and not _is_blank(self.weight)

    def parsed_reps(self) -> int:
        return parse_reps(self.reps)

    def parsed_weight(self) -> float:
        return parse_weight(self.weight)

    def volume(self) -> float:
        return self.parsed_reps() * self.parsed_weight()


class ExerciseEntry(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: Union[int, str]
    name: str
    category: str = CUSTOM_CATEGORY
    sets: Tuple[SetEntry, ...] = ()

    @field_validator("name")
    @classmethod
    def _name_not_blank(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("exercise name must not be empty")
        return v

    @field_validator("category", mode="before")
    @classmethod
    def _category_as_text(cls, v: Any) -> str:
        if _is_blank(v):
            return CUSTOM_CATEGORY
        if isinstance(v, Mapping):
            return str(v.get("name") or CUSTOM_CATEGORY)
        return str(v)

    def completed_sets(self) -> Tuple[SetEntry, ...]:
        return tuple(s for s in self.sets if s.is_complete())


class WorkoutRecord(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    date: datetime
    exercises: Tuple[ExerciseEntry, ...] = ()

    @model_validator(mode="before")
    @classmethod
    def _date_fallbacks(cls, data: Any) -> Any:
        # Older snapshots only carry createdAt (epoch ms or ISO).
        if isinstance(data, Mapping) and data.get("date") is None:
            created = data.get("createdAt") or data.get("created_at")
            if created is not None:
                data = dict(data)
                data["date"] = parse_timestamp(created)
        return data

    @field_validator("id", mode="before")
    @classmethod
    def _id_as_text(cls, v: Any) -> str:
        return str(v)

    @field_validator("date", mode="before")
    @classmethod
    def _date_as_utc(cls, v: Any) -> Any:
        parsed = parse_timestamp(v)
        return parsed if parsed is not None else v

    @property
    def is_provisional(self) -> bool:
        return self.id.startswith(PROVISIONAL_PREFIX)


def provisional_id(now: datetime) -> str:
    """Time-derived temporary id; the counter keeps ids distinct within a millisecond."""
    millis = int(now.timestamp() * 1000)
    return f"{PROVISIONAL_PREFIX}{millis}-{next(_provisional_counter)}"


def default_workout_name(now: datetime) -> str:
    return f"Workout on {now.date().isoformat()}"


def manual_exercise(name: str, sets: Iterable[Union[SetEntry, Mapping[str, Any]]] = ()) -> ExerciseEntry:
    """Build an ExerciseEntry for an exercise typed in by hand instead of picked from the catalog."""
    if _is_blank(name):
        raise ValidationError("exercise name must not be empty")
    slug = re.sub(r"[^a-z0-9]+", "-", name.strip().lower()).strip("-") or "exercise"
    try:
        return ExerciseEntry(
            id=f"custom-{slug}",
            name=name,
            category=CUSTOM_CATEGORY,
            sets=tuple(SetEntry.model_validate(s) for s in sets),
        )
    except PydanticValidationError as exc:
        raise ValidationError(str(exc)) from exc


def _coerce_exercise(entry: Union[ExerciseEntry, Mapping[str, Any]]) -> ExerciseEntry:
    if isinstance(entry, ExerciseEntry):
        return entry
    if isinstance(entry, Mapping) and entry.get("id") in (None, ""):
        return manual_exercise(entry.get("name") or "", entry.get("sets") or ())
    try:
        return ExerciseEntry.model_validate(entry)
    except PydanticValidationError as exc:
        raise ValidationError(str(exc)) from exc


def build_workout_record(
    name: Optional[str],
    exercise_entries: Iterable[Union[ExerciseEntry, Mapping[str, Any]]],
    now: Optional[datetime] = None,
) -> WorkoutRecord:
    """Assemble a provisional WorkoutRecord from submitted form data.

    Sets missing reps or weight are dropped here, at submit time, and
    exercises left without sets are dropped with them. Raises
    ValidationError when nothing remains.
    """
    now = parse_timestamp(now) if now is not None else datetime.now(timezone.utc)
    if now is None:
        raise ValidationError("invalid workout timestamp")

    kept = []
    for entry in exercise_entries:
        exercise = _coerce_exercise(entry)
        completed = exercise.completed_sets()
        if completed:
            kept.append(exercise.model_copy(update={"sets": completed}))

    if not kept:
        raise ValidationError("a workout needs at least one exercise with a completed set")

    return WorkoutRecord(
        id=provisional_id(now),
        name=name.strip() if not _is_blank(name) else default_workout_name(now),
        date=now,
        exercises=tuple(kept),
    )


def sort_newest_first(records: Iterable[WorkoutRecord]) -> Tuple[WorkoutRecord, ...]:
    """Stable sort, so equal timestamps keep their incoming (newest-insert-first) order."""
    return tuple(sorted(records, key=lambda r: r.date, reverse=True))
