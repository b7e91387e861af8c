"""Core data structures (messages, blocks, tool results, turns, stream events)."""

from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, Field, TypeAdapter, model_validator

MAX_TURN_MESSAGES = 30
MAX_TOTAL_MESSAGE_CHARS = 50_000

DEFAULT_SUGGESTIONS: List[str] = [
    "10 pushups",
    "show today's summary",
    "what should I work on today?",
    "show trend for squats",
]

WeightUnit = Literal["lbs", "kg"]

# --- Conversation ---

class Message(BaseModel):
    role: Literal["user", "assistant"]
    content: str = Field(..., min_length=1, max_length=4000)

    @model_validator(mode="after")
    def strip_content(self):
        self.content = self.content.strip()
        if not self.content:
            raise ValueError("Message content must not be blank.")
        return self

class Preferences(BaseModel):
    """User preferences that are allowed to reach the instruction template."""
    unit: WeightUnit = "lbs"
    sound_enabled: bool = True
    timezone_offset_minutes: int = Field(0, ge=-840, le=840, description="Client offset from UTC, in minutes.")

# --- Blocks (opaque, UI-routed result fragments) ---

class StatusBlock(BaseModel):
    type: Literal["status"] = "status"
    tone: Literal["success", "error", "info"]
    title: str = Field(..., max_length=200)
    description: str = Field(..., max_length=2000)

class MetricItem(BaseModel):
    label: str = Field(..., max_length=100)
    value: str = Field(..., max_length=100)

class MetricsBlock(BaseModel):
    type: Literal["metrics"] = "metrics"
    title: str = Field(..., max_length=200)
    metrics: List[MetricItem]

class TrendPoint(BaseModel):
    date: str = Field(..., max_length=32)
    label: str = Field(..., max_length=32)
    value: float

class TrendBlock(BaseModel):
    type: Literal["trend"] = "trend"
    title: str = Field(..., max_length=200)
    subtitle: str = Field(..., max_length=200)
    metric: Literal["reps", "duration"]
    points: List[TrendPoint] = Field(default_factory=list, max_length=90)
    total: float
    best_day: float

class TableRow(BaseModel):
    label: str = Field(..., max_length=120)
    value: str = Field(..., max_length=120)
    meta: Optional[str] = Field(None, max_length=200)

class TableBlock(BaseModel):
    type: Literal["table"] = "table"
    title: str = Field(..., max_length=200)
    rows: List[TableRow] = Field(default_factory=list, max_length=50)

class SuggestionsBlock(BaseModel):
    type: Literal["suggestions"] = "suggestions"
    prompts: List[str] = Field(default_factory=list, max_length=8)

class UndoBlock(BaseModel):
    type: Literal["undo"] = "undo"
    turn_id: str
    action_ids: List[str]
    label: str = Field("Undo", max_length=200)

class ClientActionBlock(BaseModel):
    type: Literal["client_action"] = "client_action"
    action: Literal["set_weight_unit", "set_sound"]
    payload: Dict[str, Any]

    @model_validator(mode="after")
    def check_payload_shape(self):
        if self.action == "set_weight_unit":
            if set(self.payload) != {"unit"} or self.payload["unit"] not in ("lbs", "kg"):
                raise ValueError("set_weight_unit payload must be { unit }.")
        elif self.action == "set_sound":
            if set(self.payload) != {"enabled"} or not isinstance(self.payload["enabled"], bool):
                raise ValueError("set_sound payload must be { enabled }.")
        return self

Block = Annotated[
    Union[StatusBlock, MetricsBlock, TrendBlock, TableBlock, SuggestionsBlock, UndoBlock, ClientActionBlock],
    Field(discriminator="type"),
]

# --- Tools ---

class ToolResult(BaseModel):
    summary: str
    blocks: List[Block] = Field(default_factory=list)
    output_for_model: Dict[str, Any] = Field(default_factory=dict, description="The only part fed back into the model context.")

class ToolCall(BaseModel):
    tool_name: str
    arguments: Dict[str, Any] = Field(default_factory=dict)

class ToolInvocation(BaseModel):
    """Transient record of one dispatched call; never persisted."""
    name: str
    raw_arguments: Any = None
    validated_arguments: Optional[Dict[str, Any]] = None
    validation_error: Optional[str] = None
    result: Optional[ToolResult] = None
    execution_error: Optional[str] = None

# --- Turn request / response ---

class TurnRequest(BaseModel):
    messages: List[Message] = Field(..., min_length=1, max_length=MAX_TURN_MESSAGES)
    preferences: Preferences = Field(default_factory=Preferences)
    turn_id: Optional[str] = Field(None, min_length=1, max_length=128)

    @model_validator(mode="after")
    def check_total_size(self):
        total = sum(len(message.content) for message in self.messages)
        if total > MAX_TOTAL_MESSAGE_CHARS:
            raise ValueError(f"Conversation too large (max {MAX_TOTAL_MESSAGE_CHARS} characters).")
        return self

    def latest_user_text(self) -> Optional[str]:
        for message in reversed(self.messages):
            if message.role == "user":
                return message.content
        return None

class TurnTrace(BaseModel):
    tools_used: List[str] = Field(default_factory=list)
    model: str
    fallback_used: bool
    hit_tool_limit: bool = False

class TurnResponse(BaseModel):
    turn_id: str
    assistant_text: str = Field(..., max_length=4000)
    blocks: List[Block]
    trace: TurnTrace

# --- Stream events ---

class StartEvent(BaseModel):
    type: Literal["start"] = "start"
    model: str

class ToolStartEvent(BaseModel):
    type: Literal["tool_start"] = "tool_start"
    tool_name: str

class ToolResultEvent(BaseModel):
    type: Literal["tool_result"] = "tool_result"
    tool_name: str
    blocks: List[Block]

class FinalEvent(BaseModel):
    type: Literal["final"] = "final"
    response: TurnResponse

class ErrorEvent(BaseModel):
    type: Literal["error"] = "error"
    message: str

StreamEvent = Annotated[
    Union[StartEvent, ToolStartEvent, ToolResultEvent, FinalEvent, ErrorEvent],
    Field(discriminator="type"),
]

STREAM_EVENT_ADAPTER: TypeAdapter = TypeAdapter(StreamEvent)
