"""Tools that change or remove an existing set. Both are journaled so they can be undone."""

from typing import Any, Dict, Optional

import structlog

from coach.errors import ActivityStoreError
from coach.models import StatusBlock, SuggestionsBlock, ToolResult
from coach.registry import BlockCallback, ToolContext, tool_error_result
from journal.models import SetSnapshot, UpdateSetSnapshot

from .analytics import format_set
from .lookup import resolve_target_set
from .schemas import DeleteSetArgs, UpdateSetArgs

log = structlog.get_logger(__name__)

def _not_found(tool_name: str, label: str) -> ToolResult:
    return ToolResult(
        summary=f"Couldn't find {label}.",
        blocks=[
            StatusBlock(
                tone="error",
                title="Set not found",
                description=f"I couldn't find {label}. Provide a valid set id or exercise name.",
            ),
            SuggestionsBlock(prompts=["show today's summary"]),
        ],
        output_for_model={"status": "error", "error": "set_not_found", "tool": tool_name},
    )

async def run_update_set(args: UpdateSetArgs, ctx: ToolContext, on_blocks: Optional[BlockCallback] = None) -> ToolResult:
    record, label = await resolve_target_set(ctx, args.set_id, args.exercise_name)
    if record is None:
        return _not_found("update_set", label)

    changes: Dict[str, Any] = {}
    if args.reps is not None:
        changes.update(reps=args.reps, duration=None)
    if args.duration_seconds is not None:
        changes.update(duration=args.duration_seconds, reps=None)
    if args.weight is not None:
        changes.update(weight=args.weight, unit=args.unit or record.unit or ctx.default_unit)
    elif args.unit is not None and record.weight is not None:
        changes["unit"] = args.unit

    before = SetSnapshot.of(record)
    if all(getattr(before, field) == value for field, value in changes.items()):
        return ToolResult(
            summary=f"No change to {label}.",
            blocks=[StatusBlock(tone="info", title="Nothing to change", description=f"{label[:1].upper()}{label[1:]} already matches.")],
            output_for_model={"status": "ok", "updated": False, "set_id": record.id},
        )

    try:
        updated = await ctx.activity.patch_set(record.id, changes)
    except ActivityStoreError as e:
        return tool_error_result("update_set", "update_failed", str(e), title="Update failed")
    log.info(f"Updated set {record.id}", fields=sorted(changes), turn_id=ctx.turn_id)

    _, notices = await ctx.journal.record_best_effort(
        user_id=ctx.user_id,
        turn_id=ctx.turn_id,
        action_kind="update_set",
        affected_ids=[record.id],
        before_snapshot=UpdateSetSnapshot(before=before, after=SetSnapshot.of(updated)),
        args=args.model_dump(exclude_none=True),
    )

    was, now = format_set(record, ctx.default_unit), format_set(updated, ctx.default_unit)
    return ToolResult(
        summary=f"Updated {label}.",
        blocks=[
            StatusBlock(tone="success", title="Set updated", description=f"Changed {label} from {was} to {now}."),
            *notices,
        ],
        output_for_model={"status": "ok", "updated": True, "set_id": record.id, "before": was, "after": now},
    )

async def run_delete_set(args: DeleteSetArgs, ctx: ToolContext, on_blocks: Optional[BlockCallback] = None) -> ToolResult:
    record, label = await resolve_target_set(ctx, args.set_id, args.exercise_name)
    if record is None:
        return _not_found("delete_set", label)

    try:
        await ctx.activity.delete_set(record.id)
    except ActivityStoreError as e:
        return tool_error_result("delete_set", "delete_failed", str(e), title="Delete failed")
    log.info(f"Deleted set {record.id}", turn_id=ctx.turn_id)

    _, notices = await ctx.journal.record_best_effort(
        user_id=ctx.user_id,
        turn_id=ctx.turn_id,
        action_kind="delete_set",
        affected_ids=[record.id],
        before_snapshot=SetSnapshot.of(record),
        args=args.model_dump(exclude_none=True),
    )

    return ToolResult(
        summary=f"Deleted {label}.",
        blocks=[
            StatusBlock(tone="success", title="Set deleted", description=f"Deleted {label}."),
            *notices,
        ],
        output_for_model={"status": "ok", "deleted": True, "set_id": record.id},
    )
