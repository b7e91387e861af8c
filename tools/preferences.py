"""Client-side preference tools. They emit a client_action block and never touch the journal."""

from typing import Optional

from coach.models import ClientActionBlock, StatusBlock, ToolResult
from coach.registry import BlockCallback, ToolContext

from .schemas import SetSoundArgs, SetWeightUnitArgs

async def run_set_weight_unit(args: SetWeightUnitArgs, ctx: ToolContext,
                              on_blocks: Optional[BlockCallback] = None) -> ToolResult:
    return ToolResult(
        summary=f"Set default weight unit to {args.unit}.",
        blocks=[
            StatusBlock(tone="success", title=f"Default unit set to {args.unit.upper()}", description="Applied locally."),
            ClientActionBlock(action="set_weight_unit", payload={"unit": args.unit}),
        ],
        output_for_model={"status": "ok", "unit": args.unit},
    )

async def run_set_sound(args: SetSoundArgs, ctx: ToolContext,
                        on_blocks: Optional[BlockCallback] = None) -> ToolResult:
    state = "on" if args.enabled else "off"
    return ToolResult(
        summary=f"Set tactile sounds {state}.",
        blocks=[
            StatusBlock(
                tone="success",
                title=f"Tactile sounds {'enabled' if args.enabled else 'disabled'}",
                description="Applied locally.",
            ),
            ClientActionBlock(action="set_sound", payload={"enabled": args.enabled}),
        ],
        output_for_model={"status": "ok", "enabled": args.enabled},
    )
