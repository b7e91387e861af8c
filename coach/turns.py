"""Turn service: framing, planner/fallback selection and the final response."""

import uuid
from typing import Any, Callable, List, Optional

import structlog

from .blocks import attach_undo_block, build_turn_response, sanitize_error, tool_error_blocks
from .cancellation import CancellationToken
from .errors import JournalError
from .fallback import FALLBACK_MODEL, run_fallback
from .metrics import record_turn_completed, record_turn_started
from .models import ErrorEvent, FinalEvent, StartEvent, TurnRequest, TurnResponse
from .planner import PlannerResult, TurnOrchestrator
from .registry import ToolContext, ToolRegistry

log = structlog.get_logger(__name__)

DEFAULT_TURN_TIMEOUT_SECONDS = 60.0
PARTIAL_FAILURE_TEXT = "I hit an error while finishing that. Here's what I have so far."
TURN_TIMEOUT_REASON = "Turn timed out."

EventCallback = Callable[[Any], None]

def new_turn_id() -> str:
    return f"turn_{uuid.uuid4().hex}"

class TurnService:
    """Runs one turn end to end for a resolved user.

    With no model backend every turn goes to the deterministic fallback. A planner failure
    before any tool ran also falls back; a failure after tools ran returns what was produced.
    """

    def __init__(self,
                 registry: ToolRegistry,
                 journal,
                 activity,
                 orchestrator: Optional[TurnOrchestrator] = None,
                 turn_timeout_seconds: float = DEFAULT_TURN_TIMEOUT_SECONDS):
        self.registry = registry
        self.journal = journal
        self.activity = activity
        self.orchestrator = orchestrator
        self.turn_timeout_seconds = turn_timeout_seconds

    @property
    def model_label(self) -> str:
        return self.orchestrator.model if self.orchestrator is not None else FALLBACK_MODEL

    async def run_turn(self,
                       request: TurnRequest,
                       user_id: str,
                       on_event: Optional[EventCallback] = None,
                       cancel: Optional[CancellationToken] = None) -> TurnResponse:
        """
        Execute a turn and return its response.

        Events, when `on_event` is given, arrive as: start, then tool_start/tool_result in
        dispatch order, then an optional error, then final.
        """
        emit = on_event or (lambda event: None)
        cancel = cancel or CancellationToken()
        turn_id = request.turn_id or new_turn_id()
        user_text = request.latest_user_text() or ""
        context = ToolContext(
            user_id=user_id,
            turn_id=turn_id,
            activity=self.activity,
            journal=self.journal,
            preferences=request.preferences,
            user_input=user_text,
        )

        structlog.contextvars.bind_contextvars(turn_id=turn_id)
        log.info("Turn started", model=self.model_label, messages=len(request.messages))
        record_turn_started()
        cancel.cancel_after(self.turn_timeout_seconds, TURN_TIMEOUT_REASON)
        mode, status, rounds = "fallback", "error", 0
        try:
            emit(StartEvent(model=self.model_label))

            if self.orchestrator is None:
                response = await self._fallback_only(user_text, context, emit, cancel)
                status = "ok"
            else:
                mode = "planner"
                result = await self.orchestrator.run(request.messages, context, emit, cancel)
                rounds = result.rounds
                response = await self._planner_response(result, user_text, context, emit, cancel)
                status = result.kind

            response = attach_undo_block(response, await self._undoable_action_ids(user_id, turn_id))
            emit(FinalEvent(response=response))
            log.info("Turn finished", model=response.trace.model, tools_used=response.trace.tools_used,
                     fallback_used=response.trace.fallback_used)
            return response
        finally:
            cancel.clear_timer()
            record_turn_completed(mode, status, rounds)
            structlog.contextvars.unbind_contextvars("turn_id")

    async def _fallback_only(self, user_text: str, context: ToolContext,
                             emit: EventCallback, cancel: CancellationToken) -> TurnResponse:
        if cancel.cancelled:
            reason = cancel.reason or "Turn aborted."
            emit(ErrorEvent(message=reason))
            return build_turn_response(
                turn_id=context.turn_id,
                assistant_text=PARTIAL_FAILURE_TEXT,
                blocks=tool_error_blocks(reason),
                tools_used=[],
                model=FALLBACK_MODEL,
                fallback_used=True,
            )
        return await run_fallback(user_text, context, self.registry, emit)

    async def _planner_response(self, result: PlannerResult, user_text: str, context: ToolContext,
                                emit: EventCallback, cancel: CancellationToken) -> TurnResponse:
        model = self.orchestrator.model
        if result.kind == "ok":
            return build_turn_response(
                turn_id=context.turn_id,
                assistant_text=result.assistant_text,
                blocks=result.blocks,
                tools_used=result.tools_used,
                model=model,
                fallback_used=False,
                hit_tool_limit=result.hit_tool_limit,
            )

        message = sanitize_error(result.error_message)
        emit(ErrorEvent(message=message))

        if not result.tools_used and not cancel.cancelled:
            log.warning("Planner failed before any tool ran; using deterministic fallback", error=message)
            fallback = await run_fallback(user_text, context, self.registry)
            return fallback.model_copy(update={
                "blocks": [*tool_error_blocks(message), *fallback.blocks],
                "trace": fallback.trace.model_copy(update={"model": f"{FALLBACK_MODEL} (planner_failed)"}),
            })

        log.warning("Planner failed after tools ran; returning partial results", error=message,
                    tools_used=result.tools_used)
        return build_turn_response(
            turn_id=context.turn_id,
            assistant_text=PARTIAL_FAILURE_TEXT,
            blocks=[*tool_error_blocks(message), *result.blocks],
            tools_used=result.tools_used,
            model=f"{model} (planner_failed_partial)",
            fallback_used=False,
            hit_tool_limit=result.hit_tool_limit,
        )

    async def _undoable_action_ids(self, user_id: str, turn_id: str) -> List[str]:
        try:
            return await self.journal.active_action_ids(user_id, turn_id)
        except JournalError as e:
            log.warning(f"Could not list undoable actions for turn: {e}")
            return []
