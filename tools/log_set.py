from typing import Optional

import structlog

from coach.blocks import unique_prompts
from coach.errors import ActivityStoreError
from coach.models import MetricItem, MetricsBlock, StatusBlock, SuggestionsBlock, ToolResult, TrendBlock
from coach.registry import BlockCallback, ToolContext, tool_error_result
from journal.models import SetSnapshot

from .analytics import exercise_trend, format_seconds_short, summarize_performance, summarize_today, today_range
from .lookup import exercise_names, find_exercise, recent_sets
from .schemas import LogSetArgs

log = structlog.get_logger(__name__)

async def run_log_set(args: LogSetArgs, ctx: ToolContext, on_blocks: Optional[BlockCallback] = None) -> ToolResult:
    """Log one set, journal it for undo, then stream the impact on today's numbers."""
    emit = on_blocks or (lambda blocks: None)

    try:
        exercises = await ctx.activity.list_exercises(ctx.user_id)
        matched = find_exercise(exercises, args.exercise_name)
        if matched is not None:
            exercise, created = matched, False
        else:
            exercise, created = await ctx.activity.ensure_exercise(ctx.user_id, args.exercise_name)
    except ActivityStoreError as e:
        return tool_error_result("log_set", "exercise_create_failed", str(e), title="Couldn't create that exercise")

    unit = args.unit or ctx.default_unit
    try:
        record = await ctx.activity.insert_set(
            ctx.user_id,
            exercise.id,
            reps=args.reps,
            duration=args.duration_seconds,
            weight=args.weight,
            unit=unit if args.weight is not None else None,
        )
    except ActivityStoreError as e:
        return tool_error_result("log_set", "log_set_failed", str(e), title="Couldn't log that set")

    action_id, notices = await ctx.journal.record_best_effort(
        user_id=ctx.user_id,
        turn_id=ctx.turn_id,
        action_kind="log_set",
        affected_ids=[record.id],
        before_snapshot=SetSnapshot.of(record),
        performed_at=record.performed_at,
        args=args.model_dump(exclude_none=True),
    )

    if args.duration_seconds is not None:
        description = f"{format_seconds_short(args.duration_seconds)} {exercise.name}"
    else:
        description = f"{args.reps} {exercise.name.lower()}"
    status = StatusBlock(
        tone="success",
        title=f"Logged {description}",
        description=f'Created exercise "{exercise.name}" and saved your set.' if created else "Set saved successfully.",
    )
    emit([status, *notices])

    try:
        start, end = today_range(ctx.now_ms(), ctx.preferences.timezone_offset_minutes)
        today_sets = [s for s in await ctx.activity.list_sets(ctx.user_id, since=start) if s.performed_at < end]
        history = await recent_sets(ctx, exercise.id)
        names = await exercise_names(ctx)
    except ActivityStoreError as e:
        log.warning(f"Logged set {record.id} but could not build its summary", error=str(e))
        return ToolResult(
            summary=f"Logged set for {exercise.name}.",
            blocks=[
                status,
                *notices,
                StatusBlock(tone="info", title="Logged, but couldn't fetch summary", description=str(e)[:2000]),
                SuggestionsBlock(prompts=unique_prompts(["show today's summary", f"show trend for {exercise.name.lower()}"])),
            ],
            output_for_model={
                "status": "ok",
                "set_id": record.id,
                "exercise_name": exercise.name,
                "created_exercise": created,
                "undo_available": action_id is not None,
                "warning": "summary_fetch_failed",
            },
        )

    today = summarize_today(today_sets, names)
    performance = summarize_performance(history)
    trend = exercise_trend(history, ctx.now_ms(), ctx.preferences.timezone_offset_minutes)
    by_duration = trend.metric == "duration"

    metrics = MetricsBlock(
        title="Immediate impact",
        metrics=[
            MetricItem(label="Today's sets", value=str(today.total_sets)),
            MetricItem(label="Today's reps", value=str(today.total_reps)),
            MetricItem(label=f"{exercise.name} sets", value=str(performance.total_sets)),
            MetricItem(
                label=f"{exercise.name} duration" if by_duration else f"{exercise.name} reps",
                value=format_seconds_short(performance.total_duration_seconds) if by_duration else str(performance.total_reps),
            ),
        ],
    )
    emit([metrics])

    trend_block = TrendBlock(
        title=f"{exercise.name} 14-day trend",
        subtitle="Generated from your logged set history.",
        metric=trend.metric,
        points=trend.points,
        total=trend.total,
        best_day=trend.best_day,
    )
    emit([trend_block])

    suggestions = SuggestionsBlock(prompts=unique_prompts([
        "what should I work on today?",
        f"show trend for {exercise.name.lower()}",
        "show today's summary",
    ]))

    return ToolResult(
        summary=f"Logged set for {exercise.name}.",
        blocks=[status, *notices, metrics, trend_block, suggestions],
        output_for_model={
            "status": "ok",
            "set_id": record.id,
            "exercise_name": exercise.name,
            "created_exercise": created,
            "undo_available": action_id is not None,
            "today_sets": today.total_sets,
            "today_reps": today.total_reps,
            "trend_metric": trend.metric,
            "trend_total": trend.total,
        },
    )
