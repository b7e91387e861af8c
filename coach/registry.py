"""Static tool registry and the dispatcher that isolates per-tool failures."""

import time
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Type

import structlog
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .blocks import sanitize_error
from .errors import ToolExecutionError, ToolNotFoundError
from .metrics import record_tool_call
from .models import Block, Preferences, StatusBlock, SuggestionsBlock, ToolInvocation, ToolResult

log = structlog.get_logger(__name__)

BlockCallback = Callable[[List[Block]], None]

class ToolContext(BaseModel):
    """Per-turn state handed to every tool handler."""
    model_config = ConfigDict(arbitrary_types_allowed=True)

    user_id: str
    turn_id: str
    activity: Any = Field(..., description="journal.base.ActivityStore")
    journal: Any = Field(..., description="journal.journal.ActionJournal")
    preferences: Preferences = Field(default_factory=Preferences)
    user_input: str = ""

    @property
    def default_unit(self) -> str:
        return self.preferences.unit

    def now_ms(self) -> int:
        return int(time.time() * 1000)

ToolHandler = Callable[[BaseModel, ToolContext, Optional[BlockCallback]], Awaitable[ToolResult]]

class ToolSpec(BaseModel):
    name: str
    description: str
    args_model: Type[BaseModel]
    handler: ToolHandler
    mutating: bool = False

    def definition(self) -> Dict[str, Any]:
        """OpenAI function-calling definition, parameters from the pydantic schema."""
        parameters = self.args_model.model_json_schema()
        parameters.pop("title", None)
        parameters.setdefault("properties", {})
        parameters["additionalProperties"] = False
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": parameters,
            },
        }

class BlockEmissionTracker:
    """Forwards a handler's partial blocks and remembers what was already sent.

    After the handler returns, `flush_final` sends only the returned blocks that were not
    streamed, so the caller never receives the same block twice for one call.
    """

    def __init__(self, sink: Optional[BlockCallback]):
        self._sink = sink
        self._emitted: List[Block] = []
        self.emissions = 0

    def emit(self, blocks: List[Block]) -> None:
        blocks = list(blocks)
        if not blocks:
            return
        self._emitted.extend(blocks)
        self.emissions += 1
        if self._sink is not None:
            self._sink(blocks)

    def remainder(self, final_blocks: Iterable[Block]) -> List[Block]:
        pending = list(self._emitted)
        unsent: List[Block] = []
        for block in final_blocks:
            if block in pending:
                pending.remove(block)
            else:
                unsent.append(block)
        return unsent

    def flush_final(self, final_blocks: List[Block]) -> None:
        if self.emissions == 0:
            # nothing streamed: exactly one emission carrying the whole result
            self.emissions += 1
            if self._sink is not None:
                self._sink(list(final_blocks))
            return
        unsent = self.remainder(final_blocks)
        if unsent:
            self.emit(unsent)

def unsupported_tool_result(tool_name: str) -> ToolResult:
    return ToolResult(
        summary=f"Unsupported tool: {tool_name}",
        blocks=[
            StatusBlock(tone="error", title="Unsupported action", description=f"{tool_name} is not available."),
            SuggestionsBlock(prompts=["show today's summary", "what should I work on today?"]),
        ],
        output_for_model={"status": "error", "error": "unsupported_tool", "tool": tool_name},
    )

def tool_error_result(tool_name: str, error: str, message: str, title: str = "Tool execution failed") -> ToolResult:
    description = sanitize_error(message)
    return ToolResult(
        summary=description,
        blocks=[
            StatusBlock(tone="error", title=title, description=description[:2000]),
            SuggestionsBlock(prompts=["show today's summary", "what should I work on today?"]),
        ],
        output_for_model={"status": "error", "error": error, "tool": tool_name, "message": description},
    )

def describe_validation_error(error: ValidationError) -> str:
    parts = []
    for detail in error.errors()[:3]:
        location = ".".join(str(part) for part in detail.get("loc", ())) or "arguments"
        parts.append(f"{location}: {detail.get('msg', 'invalid value')}")
    return "; ".join(parts)

class ToolRegistry:
    """Closed set of tools resolved once at startup. Unknown names fail closed."""

    def __init__(self, specs: Iterable[ToolSpec]):
        self._specs: Dict[str, ToolSpec] = {}
        for spec in specs:
            if spec.name in self._specs:
                raise ValueError(f"Duplicate tool name: {spec.name}")
            self._specs[spec.name] = spec
        log.info(f"ToolRegistry initialized with {len(self._specs)} tools", tools=sorted(self._specs))

    @property
    def names(self) -> List[str]:
        return list(self._specs)

    def get(self, name: str) -> ToolSpec:
        try:
            return self._specs[name]
        except KeyError as exc:
            raise ToolNotFoundError(name) from exc

    def tool_definitions(self) -> List[Dict[str, Any]]:
        return [spec.definition() for spec in self._specs.values()]

    async def execute(self, name: str, raw_arguments: Any, context: ToolContext,
                      on_blocks: Optional[BlockCallback] = None) -> ToolResult:
        """Validate, run and contain one tool call. Never raises for tool-level failures."""
        invocation = await self.invoke(name, raw_arguments, context, on_blocks)
        return invocation.result

    async def invoke(self, name: str, raw_arguments: Any, context: ToolContext,
                     on_blocks: Optional[BlockCallback] = None) -> ToolInvocation:
        """Like `execute` but returns the full invocation record."""
        invocation = ToolInvocation(name=name, raw_arguments=raw_arguments)
        tracker = BlockEmissionTracker(on_blocks)

        try:
            spec = self.get(name)
        except ToolNotFoundError:
            log.warning(f"Model requested unknown tool '{name}'")
            record_tool_call(name, "unsupported_tool")
            invocation.result = unsupported_tool_result(name)
            invocation.execution_error = "unsupported_tool"
            tracker.flush_final(invocation.result.blocks)
            return invocation

        try:
            if not isinstance(raw_arguments, dict):
                raise ValueError("Tool arguments must be a JSON object.")
            args = spec.args_model.model_validate(raw_arguments)
        except ValidationError as e:
            invocation.validation_error = describe_validation_error(e)
        except ValueError as e:
            invocation.validation_error = str(e)

        if invocation.validation_error is not None:
            log.info(f"Rejected arguments for tool '{name}'", error=invocation.validation_error)
            record_tool_call(name, "invalid_arguments")
            invocation.result = tool_error_result(
                name, "invalid_arguments", invocation.validation_error, title=f"Invalid input for {name}"
            )
            tracker.flush_final(invocation.result.blocks)
            return invocation

        invocation.validated_arguments = args.model_dump(exclude_none=True)
        log.debug(f"Executing tool '{name}'", arguments=invocation.validated_arguments, turn_id=context.turn_id)
        try:
            result = await spec.handler(args, context, tracker.emit)
        except Exception as e:
            wrapped = ToolExecutionError(name, e)
            log.exception(str(wrapped))
            record_tool_call(name, "error")
            invocation.execution_error = str(e) or type(e).__name__
            invocation.result = tool_error_result(name, "execution_failed", invocation.execution_error)
            tracker.flush_final(invocation.result.blocks)
            return invocation

        record_tool_call(name, "ok")
        invocation.result = result
        tracker.flush_final(result.blocks)
        return invocation
