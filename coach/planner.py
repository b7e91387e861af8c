"""Turn orchestrator: the bounded model/tool loop."""

import json
from typing import Any, Callable, Dict, List, Literal, Optional

import structlog
from pydantic import BaseModel, Field

from providers.base import ModelBackend, TextDelta

from .blocks import normalize_assistant_text, tool_error_blocks
from .cancellation import CancellationToken
from .errors import TurnCancelledError
from .models import Block, Message, StatusBlock, ToolResultEvent, ToolStartEvent
from .prompts import build_model_messages
from .registry import ToolContext, ToolRegistry

log = structlog.get_logger(__name__)

DEFAULT_MAX_TOOL_ROUNDS = 5
DEFAULT_ROUND_TIMEOUT_SECONDS = 30.0

INVALID_JSON_MESSAGE = "Tool arguments were not valid JSON."
STEP_LIMIT_TEXT = "I hit a step limit while finishing that. Here is what I have so far."
STEP_LIMIT_BLOCK = StatusBlock(
    tone="info",
    title="Step limit reached",
    description="I stopped early to avoid an infinite tool loop. Ask a follow-up and I will continue.",
)

EventCallback = Callable[[Any], None]

class PlannerResult(BaseModel):
    kind: Literal["ok", "error"]
    assistant_text: str = ""
    blocks: List[Block] = Field(default_factory=list)
    tools_used: List[str] = Field(default_factory=list)
    hit_tool_limit: bool = False
    error_message: Optional[str] = None
    rounds: int = 0

class RoundOutput(BaseModel):
    """What one streamed round produced. Tool calls keep the order their ids first appeared."""
    text: str = ""
    tool_calls: Dict[str, Dict[str, str]] = Field(default_factory=dict, description="call_id -> {name, arguments}")

class TurnOrchestrator:
    """
    Drives the model through up to `max_tool_rounds` rounds of tool calling.

    One instance serves many turns; all per-turn state lives in `run`.
    """

    def __init__(self, backend: ModelBackend, registry: ToolRegistry,
                 max_tool_rounds: int = DEFAULT_MAX_TOOL_ROUNDS,
                 round_timeout_seconds: float = DEFAULT_ROUND_TIMEOUT_SECONDS):
        self.backend = backend
        self.registry = registry
        self.max_tool_rounds = max_tool_rounds
        self.round_timeout_seconds = round_timeout_seconds

    @property
    def model(self) -> str:
        return self.backend.model

    async def run(self,
                  history: List[Message],
                  context: ToolContext,
                  on_event: Optional[EventCallback] = None,
                  cancel: Optional[CancellationToken] = None) -> PlannerResult:
        """
        Run one turn.

        Args:
            history: The conversation so far, latest user message last.
            context: Tool context for this user and turn.
            on_event: Receives tool_start / tool_result events in dispatch order.
            cancel: Checked before every model round and before a round's tools run.

        Returns:
            A PlannerResult. Backend failures and cancellation come back as kind "error"
            with whatever blocks were already produced; this method does not raise for them.
        """
        cancel = cancel or CancellationToken()
        emit = on_event or (lambda event: None)
        blocks: List[Block] = []
        tools_used: List[str] = []
        assistant_text = ""
        hit_tool_limit = False
        rounds = 0

        if cancel.cancelled:
            return PlannerResult(kind="error", error_message=cancel.reason or "Turn aborted.")

        messages = build_model_messages(history, context.preferences)
        tools = self.registry.tool_definitions()

        try:
            for round_index in range(self.max_tool_rounds):
                rounds = round_index + 1
                output = await cancel.run(
                    self._stream_round(messages, tools, emit, tools_used),
                    timeout=self.round_timeout_seconds,
                    timeout_reason="Model round timed out.",
                )

                # the model may have asked for tools after the caller gave up
                cancel.raise_if_cancelled()

                if not output.tool_calls:
                    assistant_text = normalize_assistant_text(output.text)
                    break

                messages.append({
                    "role": "assistant",
                    "content": output.text or None,
                    "tool_calls": [
                        {"id": call_id, "type": "function", "function": {"name": call["name"], "arguments": call["arguments"]}}
                        for call_id, call in output.tool_calls.items()
                    ],
                })

                for call_id, call in output.tool_calls.items():
                    blocks.extend(await self._run_tool_call(call_id, call, context, emit, messages))

                if round_index == self.max_tool_rounds - 1:
                    log.warning(f"Planner hit the {self.max_tool_rounds}-round limit", turn_id=context.turn_id)
                    hit_tool_limit = True
                    assistant_text = assistant_text or STEP_LIMIT_TEXT
                    blocks.append(STEP_LIMIT_BLOCK)
        except TurnCancelledError as e:
            log.info(f"Planner turn stopped: {e.reason}", turn_id=context.turn_id, tools_used=tools_used)
            return PlannerResult(
                kind="error",
                assistant_text=assistant_text,
                blocks=blocks,
                tools_used=tools_used,
                hit_tool_limit=hit_tool_limit,
                error_message=e.reason,
                rounds=rounds,
            )
        except Exception as e:
            log.exception("Planner turn failed", turn_id=context.turn_id, round=rounds)
            return PlannerResult(
                kind="error",
                assistant_text=assistant_text,
                blocks=blocks,
                tools_used=tools_used,
                hit_tool_limit=hit_tool_limit,
                error_message=str(e) or "Unknown planner error",
                rounds=rounds,
            )

        return PlannerResult(
            kind="ok",
            assistant_text=assistant_text,
            blocks=blocks,
            tools_used=tools_used,
            hit_tool_limit=hit_tool_limit,
            rounds=rounds,
        )

    async def _stream_round(self, messages: List[Dict[str, Any]], tools: List[Dict[str, Any]],
                            emit: EventCallback, tools_used: List[str]) -> RoundOutput:
        output = RoundOutput()
        text_parts: List[str] = []
        async for item in self.backend.stream_round(messages, tools):
            if isinstance(item, TextDelta):
                text_parts.append(item.text)
                continue
            call = output.tool_calls.get(item.call_id)
            if call is None:
                call = {"name": "", "arguments": ""}
                output.tool_calls[item.call_id] = call
            if item.name and not call["name"]:
                call["name"] = item.name
                tools_used.append(item.name)
                emit(ToolStartEvent(tool_name=item.name))
            call["arguments"] += item.arguments_delta
        output.text = "".join(text_parts)
        return output

    async def _run_tool_call(self, call_id: str, call: Dict[str, str], context: ToolContext,
                             emit: EventCallback, messages: List[Dict[str, Any]]) -> List[Block]:
        name = call["name"] or "unknown_tool"
        if not call["name"]:
            log.warning("Tool call arrived without a name", call_id=call_id)

        raw = call["arguments"].strip() or "{}"
        try:
            arguments = json.loads(raw)
        except ValueError:
            log.info(f"Model sent unparsable arguments for '{name}'", call_id=call_id)
            error_blocks = tool_error_blocks(f"{INVALID_JSON_MESSAGE} (tool: {name})")
            emit(ToolResultEvent(tool_name=name, blocks=error_blocks))
            messages.append({
                "role": "tool",
                "tool_call_id": call_id,
                "content": json.dumps({"status": "error", "tool": name, "error": INVALID_JSON_MESSAGE}),
            })
            return error_blocks

        result = await self.registry.execute(
            name, arguments, context,
            on_blocks=lambda partial: emit(ToolResultEvent(tool_name=name, blocks=partial)),
        )
        messages.append({
            "role": "tool",
            "tool_call_id": call_id,
            "content": json.dumps(result.output_for_model),
        })
        return list(result.blocks)
