from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

import pytest

from liftlog.db import KeyValueStore
from liftlog.models import WorkoutRecord


def make_record(
    record_id: str,
    day: str,
    exercises: Optional[List[Dict[str, Any]]] = None,
    name: str = "Push Day",
) -> WorkoutRecord:
    if exercises is None:
        exercises = [
            {
                "id": 192,
                "name": "Bench Press",
                "category": "Chest",
                "sets": [{"reps": "5", "weight": "100"}, {"reps": "5", "weight": "105"}],
            }
        ]
    return WorkoutRecord(
        id=record_id,
        name=name,
        date=datetime.fromisoformat(day).replace(tzinfo=timezone.utc),
        exercises=exercises,
    )


@pytest.fixture
def bench_sets() -> List[Dict[str, Any]]:
    return [{"reps": "5", "weight": "100"}, {"reps": "5", "weight": "105"}]


@pytest.fixture
async def kv(tmp_path: Path):
    store = KeyValueStore(f"sqlite:///{tmp_path / 'liftlog.db'}")
    await store.init()
    yield store
    await store.dispose()
