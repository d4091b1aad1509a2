from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Tuple, Union

from ..models import ExerciseEntry, WorkoutRecord


class Metric(str, Enum):
    MAX_WEIGHT = "maxWeight"
    TOTAL_VOLUME = "totalVolume"
    AVERAGE_REPS = "averageReps"


METRIC_LABELS: Dict[Metric, Tuple[str, str]] = {
    Metric.MAX_WEIGHT: ("Max Weight", "kg"),
    Metric.TOTAL_VOLUME: ("Total Volume", "kg"),
    Metric.AVERAGE_REPS: ("Average Reps", "reps"),
}


@dataclass(frozen=True)
class SeriesPoint:
    date: datetime
    value: float


@dataclass(frozen=True)
class Summary:
    total_workouts: int
    total_volume: float
    total_sets: int
    total_reps: int
    average_reps: float

    def as_dict(self) -> Dict[str, Any]:
        return {
            "total_workouts": self.total_workouts,
            "total_volume": round(self.total_volume, 1),
            "total_sets": self.total_sets,
            "total_reps": self.total_reps,
            "average_reps": round(self.average_reps, 1),
        }


def metric_value(exercise: ExerciseEntry, metric: Union[Metric, str]) -> float:
    """Scalar for one exercise entry; invalid reps/weight count as 0."""
    metric = Metric(metric)
    if metric is Metric.MAX_WEIGHT:
        return max((s.parsed_weight() for s in exercise.sets), default=0.0)
    if metric is Metric.TOTAL_VOLUME:
        return sum(s.volume() for s in exercise.sets)
    if not exercise.sets:
        return 0.0
    return sum(s.parsed_reps() for s in exercise.sets) / len(exercise.sets)


def find_exercise(record: WorkoutRecord, exercise_name: str) -> Optional[ExerciseEntry]:
    wanted = exercise_name.strip().lower()
    for exercise in record.exercises:
        if exercise.name.lower() == wanted:
            return exercise
    return None


def compute_series(
    collection: Iterable[WorkoutRecord],
    exercise_name: str,
    metric: Union[Metric, str],
) -> Tuple[SeriesPoint, ...]:
    """Per-workout values of `metric` for one exercise, oldest first.

    Workouts that don't contain the exercise are left out rather than
    counted as zero.
    """
    metric = Metric(metric)
    points: List[SeriesPoint] = []
    for record in collection:
        exercise = find_exercise(record, exercise_name)
        if exercise is None:
            continue
        points.append(SeriesPoint(date=record.date, value=metric_value(exercise, metric)))
    points.sort(key=lambda p: p.date)
    return tuple(points)


def personal_records(series: Iterable[SeriesPoint]) -> Tuple[SeriesPoint, ...]:
    # Points where the value beats every earlier one.
    prs: List[SeriesPoint] = []
    best = 0.0
    for point in series:
        if point.value > best:
            best = point.value
            prs.append(point)
    return tuple(prs)


def summarize(collection: Iterable[WorkoutRecord]) -> Summary:
    total_workouts = 0
    total_volume = 0.0
    total_sets = 0
    total_reps = 0
    for record in collection:
        total_workouts += 1
        for exercise in record.exercises:
            for s in exercise.sets:
                total_sets += 1
                total_reps += s.parsed_reps()
                total_volume += s.volume()
    return Summary(
        total_workouts=total_workouts,
        total_volume=total_volume,
        total_sets=total_sets,
        total_reps=total_reps,
        average_reps=total_reps / total_sets if total_sets else 0.0,
    )


def exercise_names(collection: Iterable[WorkoutRecord]) -> List[str]:
    """Distinct exercise names across the collection, in first-seen order."""
    seen: Dict[str, str] = {}
    for record in collection:
        for exercise in record.exercises:
            seen.setdefault(exercise.name.lower(), exercise.name)
    return list(seen.values())


def chart_label(exercise_name: str, metric: Union[Metric, str]) -> str:
    title, unit = METRIC_LABELS[Metric(metric)]
    return f"{title} for {exercise_name} ({unit})"


def chart_data(
    series: Iterable[SeriesPoint],
    exercise_name: str,
    metric: Union[Metric, str],
) -> Dict[str, Any]:
    """Payload for the charting collaborator: labels, values and a series label."""
    points = list(series)
    return {
        "labels": [p.date.date().isoformat() for p in points],
        "values": [round(p.value, 2) for p in points],
        "label": chart_label(exercise_name, metric),
    }
