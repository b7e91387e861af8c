"""Read-only tools: today's summary, per-exercise report, focus suggestions."""

from typing import List, Optional

from pydantic import BaseModel, Field

from coach.blocks import unique_prompts
from coach.models import (
    MetricItem,
    MetricsBlock,
    StatusBlock,
    SuggestionsBlock,
    TableBlock,
    TableRow,
    ToolResult,
    TrendBlock,
)
from coach.registry import BlockCallback, ToolContext

from .analytics import (
    day_key,
    exercise_trend,
    format_seconds_short,
    format_set,
    summarize_performance,
    summarize_today,
    today_range,
)
from .lookup import exercise_names, find_exercise, recent_sets
from .schemas import ExerciseReportArgs, NoArgs

DAY_MS = 24 * 60 * 60 * 1000
FOCUS_WINDOW_DAYS = 30
STALE_AFTER_DAYS = 3
NEGLECTED_AFTER_DAYS = 7
IMBALANCE_SHARE = 0.5

class FocusSuggestion(BaseModel):
    title: str
    priority: str = Field(..., description="high | medium | low")
    reason: str
    suggested_exercises: List[str] = Field(default_factory=list)

# --- Today's summary ---

async def run_today_summary(args: NoArgs, ctx: ToolContext, on_blocks: Optional[BlockCallback] = None) -> ToolResult:
    start, end = today_range(ctx.now_ms(), ctx.preferences.timezone_offset_minutes)
    sets = [record for record in await ctx.activity.list_sets(ctx.user_id, since=start) if record.performed_at < end]
    summary = summarize_today(sets, await exercise_names(ctx))

    if summary.total_sets == 0:
        blocks = [StatusBlock(
            tone="info",
            title="No sets logged today",
            description="Log one now and I will generate your daily focus.",
        )]
    else:
        rows = []
        for entry in summary.top_exercises:
            if entry.reps > 0:
                meta = f"{entry.reps} reps"
            elif entry.duration_seconds > 0:
                meta = format_seconds_short(entry.duration_seconds)
            else:
                meta = None
            rows.append(TableRow(label=entry.exercise_name, value=f"{entry.sets} sets", meta=meta))
        blocks = [
            MetricsBlock(
                title="Today's totals",
                metrics=[
                    MetricItem(label="Sets", value=str(summary.total_sets)),
                    MetricItem(label="Reps", value=str(summary.total_reps)),
                    MetricItem(label="Duration", value=format_seconds_short(summary.total_duration_seconds)),
                    MetricItem(label="Exercises", value=str(len(summary.top_exercises))),
                ],
            ),
            TableBlock(title="Top exercises today", rows=rows),
        ]

    return ToolResult(
        summary="Prepared today's summary.",
        blocks=blocks,
        output_for_model={
            "status": "ok",
            "total_sets": summary.total_sets,
            "total_reps": summary.total_reps,
            "exercise_count": len(summary.top_exercises),
            "set_ids": [record.id for record in sets[:20]],
        },
    )

# --- Exercise report ---

async def run_exercise_report(args: ExerciseReportArgs, ctx: ToolContext,
                              on_blocks: Optional[BlockCallback] = None) -> ToolResult:
    exercises = await ctx.activity.list_exercises(ctx.user_id)
    exercise = find_exercise(exercises, args.exercise_name)
    if exercise is None:
        return ToolResult(
            summary=f'Exercise "{args.exercise_name}" not found.',
            blocks=[
                StatusBlock(
                    tone="error",
                    title=f'I can\'t find "{args.exercise_name}"'[:200],
                    description="Log a set first, then ask for a trend or report.",
                ),
                SuggestionsBlock(prompts=["10 pushups", "show today's summary"]),
            ],
            output_for_model={"status": "error", "error": "exercise_not_found", "exercise_name": args.exercise_name},
        )

    history = await recent_sets(ctx, exercise.id)
    if not history:
        return ToolResult(
            summary=f"No history for {exercise.name}.",
            blocks=[
                StatusBlock(
                    tone="info",
                    title=f"{exercise.name} has no history yet",
                    description="Log your first set to start trend tracking.",
                ),
                SuggestionsBlock(prompts=unique_prompts([f"10 {exercise.name.lower()}", "show today's summary"])),
            ],
            output_for_model={"status": "ok", "exercise_name": exercise.name, "total_sets": 0},
        )

    offset = ctx.preferences.timezone_offset_minutes
    trend = exercise_trend(history, ctx.now_ms(), offset)
    performance = summarize_performance(history)
    latest = history[0]
    by_duration = trend.metric == "duration"

    return ToolResult(
        summary=f"Prepared report for {exercise.name}.",
        blocks=[
            MetricsBlock(
                title=f"{exercise.name} snapshot",
                metrics=[
                    MetricItem(label="Total sets", value=str(performance.total_sets)),
                    MetricItem(
                        label="Total duration" if by_duration else "Total reps",
                        value=format_seconds_short(performance.total_duration_seconds) if by_duration else str(performance.total_reps),
                    ),
                    MetricItem(
                        label="Best hold" if by_duration else "Best set",
                        value=format_seconds_short(performance.best_duration_seconds) if by_duration else f"{performance.best_reps} reps",
                    ),
                    MetricItem(label="Latest", value=format_set(latest, ctx.default_unit)),
                ],
            ),
            TrendBlock(
                title=f"{exercise.name} 14-day trend",
                subtitle="Computed from recent logged sets.",
                metric=trend.metric,
                points=trend.points,
                total=trend.total,
                best_day=trend.best_day,
            ),
            SuggestionsBlock(prompts=unique_prompts([
                f"10 {exercise.name.lower()}",
                "what should I work on today?",
                "show today's summary",
            ])),
        ],
        output_for_model={
            "status": "ok",
            "exercise_name": exercise.name,
            "total_sets": performance.total_sets,
            "trend_metric": trend.metric,
            "trend_total": trend.total,
            "latest_set": {
                "set_id": latest.id,
                "performed_at": day_key(latest.performed_at, offset),
                "reps": latest.reps,
                "duration_seconds": latest.duration,
                "weight": latest.weight,
                "unit": latest.unit,
            },
        },
    )

# --- Focus suggestions ---

async def build_focus_suggestions(ctx: ToolContext) -> List[FocusSuggestion]:
    """Recency and balance checks over the last 30 days."""
    now = ctx.now_ms()
    sets = await ctx.activity.list_sets(ctx.user_id, since=now - FOCUS_WINDOW_DAYS * DAY_MS)
    if not sets:
        return []
    names = await exercise_names(ctx)

    last_seen = {}
    counts = {}
    for record in sets:
        last_seen[record.exercise_id] = max(last_seen.get(record.exercise_id, 0), record.performed_at)
        counts[record.exercise_id] = counts.get(record.exercise_id, 0) + 1

    suggestions: List[FocusSuggestion] = []
    for exercise_id, performed_at in sorted(last_seen.items(), key=lambda item: item[1]):
        days_idle = (now - performed_at) // DAY_MS
        name = names.get(exercise_id, "Unknown Exercise")
        if days_idle >= NEGLECTED_AFTER_DAYS:
            suggestions.append(FocusSuggestion(
                title=f"Train {name}", priority="high", reason=f"Last trained {days_idle} days ago.",
            ))
        elif days_idle >= STALE_AFTER_DAYS:
            suggestions.append(FocusSuggestion(
                title=f"Train {name}", priority="medium", reason=f"Last trained {days_idle} days ago.",
            ))

    if len(counts) > 1:
        dominant_id, dominant_count = max(counts.items(), key=lambda item: item[1])
        share = dominant_count / len(sets)
        if share > IMBALANCE_SHARE:
            least_trained = sorted((eid for eid in counts if eid != dominant_id), key=lambda eid: counts[eid])
            suggestions.append(FocusSuggestion(
                title="Balance your training",
                priority="low",
                reason=f"{names.get(dominant_id, 'One exercise')} is {round(share * 100)}% of your recent sets.",
                suggested_exercises=[names[eid] for eid in least_trained if eid in names][:3],
            ))

    return suggestions[:6]

async def run_focus_suggestions(args: NoArgs, ctx: ToolContext,
                                on_blocks: Optional[BlockCallback] = None) -> ToolResult:
    suggestions = await build_focus_suggestions(ctx)

    if not suggestions:
        return ToolResult(
            summary="No focus gaps found yet.",
            blocks=[
                StatusBlock(
                    tone="info",
                    title="No major training gaps detected",
                    description="Keep logging consistently and ask again after more sessions.",
                ),
                SuggestionsBlock(prompts=["show today's summary", "show trend for pushups", "show trend for squats"]),
            ],
            output_for_model={"status": "ok", "suggestions": []},
        )

    prompts = ["show today's summary"]
    for item in suggestions:
        if item.title.lower().startswith("train "):
            exercise = item.title[len("train "):].strip().lower()
            prompts.extend([f"show trend for {exercise}", f"10 {exercise}"])
        if item.suggested_exercises:
            prompts.append(f"show trend for {item.suggested_exercises[0].lower()}")

    return ToolResult(
        summary="Prepared focus suggestions.",
        blocks=[
            StatusBlock(
                tone="success",
                title="Today's focus plan",
                description="Based on your logged history and balance checks.",
            ),
            TableBlock(
                title="What to work on today",
                rows=[TableRow(label=item.title[:120], value=item.priority.upper(), meta=item.reason[:200]) for item in suggestions],
            ),
            SuggestionsBlock(prompts=unique_prompts(prompts)),
        ],
        output_for_model={
            "status": "ok",
            "suggestions": [item.model_dump(include={"title", "priority", "reason"}) for item in suggestions],
        },
    )
