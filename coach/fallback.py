"""Deterministic fallback: the classifier feeding the same dispatcher the planner uses."""

from typing import Any, Callable, List, Optional

import structlog

from .blocks import build_turn_response, tool_error_blocks
from .intent import classify
from .models import (
    DEFAULT_SUGGESTIONS,
    Block,
    StatusBlock,
    SuggestionsBlock,
    ToolResultEvent,
    ToolStartEvent,
    TurnResponse,
)
from .registry import ToolContext, ToolRegistry

log = structlog.get_logger(__name__)

FALLBACK_MODEL = "fallback-deterministic"
FALLBACK_DEFAULT_TEXT = "I can help with logging, summaries, reports, and focus suggestions."
FALLBACK_FAILED_TEXT = "Fallback execution failed."

EventCallback = Callable[[Any], None]

async def run_fallback(user_input: str,
                       context: ToolContext,
                       registry: ToolRegistry,
                       on_event: Optional[EventCallback] = None) -> TurnResponse:
    """
    Classify `user_input` and run at most one tool for it.

    Streams tool_start/tool_result through `on_event` when given. The returned response
    always has trace.fallback_used set, including when nothing matched.
    """
    tools_used: List[str] = []
    blocks: List[Block] = []
    assistant_text = FALLBACK_DEFAULT_TEXT

    try:
        call = classify(user_input)
        if call is None:
            log.info("Fallback found no matching intent", turn_id=context.turn_id)
            blocks = [
                StatusBlock(tone="info", title="Try a workout command", description="This fallback mode only handles core flows."),
                SuggestionsBlock(prompts=list(DEFAULT_SUGGESTIONS)),
            ]
        else:
            log.info(f"Fallback dispatching '{call.tool_name}'", turn_id=context.turn_id)
            tools_used.append(call.tool_name)
            on_blocks = None
            if on_event is not None:
                on_event(ToolStartEvent(tool_name=call.tool_name))
                on_blocks = lambda partial: on_event(ToolResultEvent(tool_name=call.tool_name, blocks=partial))
            result = await registry.execute(call.tool_name, call.arguments, context, on_blocks)
            blocks = list(result.blocks)
            assistant_text = result.summary
    except Exception as e:
        log.exception("Fallback execution failed", turn_id=context.turn_id)
        blocks = tool_error_blocks(str(e) or "Unknown fallback error")
        assistant_text = FALLBACK_FAILED_TEXT

    return build_turn_response(
        turn_id=context.turn_id,
        assistant_text=assistant_text,
        blocks=blocks,
        tools_used=tools_used,
        model=FALLBACK_MODEL,
        fallback_used=True,
    )
