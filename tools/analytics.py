"""Pure aggregations over logged sets, shared by the read tools and log_set."""

from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional, Sequence, Tuple

from pydantic import BaseModel, Field

from coach.models import TrendPoint
from journal.models import SetRecord

TREND_DAYS = 14

class ExerciseTotals(BaseModel):
    exercise_id: str
    exercise_name: str
    sets: int = 0
    reps: int = 0
    duration_seconds: int = 0

class TodaySummary(BaseModel):
    total_sets: int = 0
    total_reps: int = 0
    total_duration_seconds: int = 0
    top_exercises: List[ExerciseTotals] = Field(default_factory=list)

class ExercisePerformance(BaseModel):
    total_sets: int = 0
    total_reps: int = 0
    total_duration_seconds: int = 0
    best_reps: int = 0
    best_duration_seconds: int = 0
    last_performed_at: Optional[int] = None

class ExerciseTrend(BaseModel):
    metric: str
    points: List[TrendPoint]
    total: float
    best_day: float

# --- Time helpers (offset = minutes to add to UTC to get the user's local time) ---

def local_datetime(epoch_ms: int, offset_minutes: int) -> datetime:
    return datetime.fromtimestamp(epoch_ms / 1000, tz=timezone.utc) + timedelta(minutes=offset_minutes)

def day_key(epoch_ms: int, offset_minutes: int) -> str:
    return local_datetime(epoch_ms, offset_minutes).strftime("%Y-%m-%d")

def today_range(now_ms: int, offset_minutes: int) -> Tuple[int, int]:
    """[start, end) of the user's local day containing `now_ms`, as epoch ms."""
    local_now = local_datetime(now_ms, offset_minutes)
    local_midnight = local_now.replace(hour=0, minute=0, second=0, microsecond=0)
    start = local_midnight - timedelta(minutes=offset_minutes)
    start_ms = int(start.timestamp() * 1000)
    return start_ms, start_ms + 24 * 60 * 60 * 1000

def format_seconds_short(seconds: int) -> str:
    if seconds < 60:
        return f"{seconds} sec"
    if seconds % 60 == 0:
        return f"{seconds // 60} min"
    minutes, remainder = divmod(seconds, 60)
    return f"{minutes}:{remainder:02d}"

def format_weight(weight: float) -> str:
    return f"{weight:g}"

def format_set(record: SetRecord, default_unit: str) -> str:
    if record.duration is not None:
        text = format_seconds_short(record.duration)
    else:
        text = f"{record.reps or 0} reps"
    if record.weight is not None:
        text += f" @ {format_weight(record.weight)} {record.unit or default_unit}"
    return text

# --- Aggregations ---

def summarize_today(sets: Sequence[SetRecord], exercise_names: Dict[str, str]) -> TodaySummary:
    by_exercise: Dict[str, ExerciseTotals] = {}
    summary = TodaySummary(total_sets=len(sets))
    for record in sets:
        summary.total_reps += record.reps or 0
        summary.total_duration_seconds += record.duration or 0
        totals = by_exercise.setdefault(
            record.exercise_id,
            ExerciseTotals(
                exercise_id=record.exercise_id,
                exercise_name=exercise_names.get(record.exercise_id, "Unknown Exercise"),
            ),
        )
        totals.sets += 1
        totals.reps += record.reps or 0
        totals.duration_seconds += record.duration or 0

    summary.top_exercises = sorted(by_exercise.values(), key=lambda totals: totals.sets, reverse=True)[:4]
    return summary

def summarize_performance(sets: Sequence[SetRecord]) -> ExercisePerformance:
    performance = ExercisePerformance(total_sets=len(sets))
    for record in sets:
        reps = record.reps or 0
        duration = record.duration or 0
        performance.total_reps += reps
        performance.total_duration_seconds += duration
        performance.best_reps = max(performance.best_reps, reps)
        performance.best_duration_seconds = max(performance.best_duration_seconds, duration)
        performance.last_performed_at = max(performance.last_performed_at or 0, record.performed_at)
    return performance

def exercise_trend(sets: Sequence[SetRecord], now_ms: int, offset_minutes: int,
                   days: int = TREND_DAYS) -> ExerciseTrend:
    """Daily totals for the last `days` local days; reps if any set has reps, else duration."""
    metric = "reps" if any(record.reps is not None for record in sets) else "duration"
    by_day: Dict[str, float] = {}
    for record in sets:
        value = (record.reps or 0) if metric == "reps" else (record.duration or 0)
        key = day_key(record.performed_at, offset_minutes)
        by_day[key] = by_day.get(key, 0) + value

    today = local_datetime(now_ms, offset_minutes).date()
    points = []
    for index in range(days):
        current = today - timedelta(days=days - 1 - index)
        key = current.strftime("%Y-%m-%d")
        points.append(TrendPoint(date=key, label=f"{current.strftime('%b')} {current.day}", value=by_day.get(key, 0)))

    return ExerciseTrend(
        metric=metric,
        points=points,
        total=sum(point.value for point in points),
        best_day=max((point.value for point in points), default=0),
    )
