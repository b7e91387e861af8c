"""Records owned by the activity store and the action journal."""

import re
from typing import Any, Dict, List, Literal, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field

SET_ID_PATTERN = re.compile(r"^set_[0-9a-f]{32}$")

ActionKind = Literal["log_set", "update_set", "delete_set"]
ActionStatus = Literal["active", "undone"]
UndoFailureReason = Literal["invalid_action", "missing_target", "conflict"]

# --- Activity entities ---

class Exercise(BaseModel):
    id: str
    user_id: str
    name: str
    created_at: int
    deleted_at: Optional[int] = None

class SetRecord(BaseModel):
    id: str
    user_id: str
    exercise_id: str
    reps: Optional[int] = None
    duration: Optional[int] = Field(None, description="Seconds, for timed holds.")
    weight: Optional[float] = None
    unit: Optional[str] = None
    performed_at: int = Field(..., description="Epoch milliseconds.")
    deleted_at: Optional[int] = None

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None

# --- Snapshots ---

class SetSnapshot(BaseModel):
    """The mutable fields of a set at the moment an action touched it.

    Parsed strictly: a wrongly-typed field makes the whole snapshot unusable rather than
    coerced, so a damaged record never produces a false "no conflict".
    """
    model_config = ConfigDict(strict=True, extra="ignore")

    user_id: str
    exercise_id: str
    reps: Optional[int] = None
    duration: Optional[int] = None
    weight: Optional[float] = None
    unit: Optional[str] = None
    performed_at: int

    @classmethod
    def of(cls, record: SetRecord) -> "SetSnapshot":
        return cls(
            user_id=record.user_id,
            exercise_id=record.exercise_id,
            reps=record.reps,
            duration=record.duration,
            weight=record.weight,
            unit=record.unit,
            performed_at=record.performed_at,
        )

    def mismatched_fields(self, record: SetRecord) -> List[str]:
        live = SetSnapshot.of(record)
        return [name for name in SetSnapshot.model_fields if getattr(self, name) != getattr(live, name)]

    def patch_fields(self) -> Dict[str, Any]:
        """Fields an edit may change; used to write this state back onto a set."""
        return {
            "exercise_id": self.exercise_id,
            "reps": self.reps,
            "duration": self.duration,
            "weight": self.weight,
            "unit": self.unit,
        }

class UpdateSetSnapshot(BaseModel):
    model_config = ConfigDict(strict=True, extra="ignore")

    before: SetSnapshot
    after: SetSnapshot

# Snapshot model per action kind. log_set and delete_set snapshot the single set they
# created / removed; update_set keeps both sides of the edit.
SNAPSHOT_MODELS = {
    "log_set": SetSnapshot,
    "update_set": UpdateSetSnapshot,
    "delete_set": SetSnapshot,
}

# --- Journal records ---

class AgentAction(BaseModel):
    id: str
    user_id: str
    turn_id: str
    action_kind: str
    args: Dict[str, Any] = Field(default_factory=dict)
    affected_ids: List[str] = Field(default_factory=list)
    before_snapshot: Optional[Dict[str, Any]] = Field(None, description="Serialized snapshot for action_kind.")
    performed_at: int
    seq: int = Field(0, description="Insertion order within the turn, assigned by the store.")
    status: ActionStatus = "active"
    undone_at: Optional[int] = None

    @property
    def order_key(self) -> Tuple[int, int]:
        """Chronological sort key; seq breaks ties between actions in the same millisecond."""
        return (self.performed_at, self.seq)

class UndoOutcome(BaseModel):
    ok: bool
    reason: Optional[UndoFailureReason] = None
    message: Optional[str] = None
    action_id: Optional[str] = None
    turn_id: Optional[str] = None
    already_undone: bool = False

    @classmethod
    def failure(cls, reason: str, message: str, action_id: Optional[str] = None) -> "UndoOutcome":
        return cls(ok=False, reason=reason, message=message, action_id=action_id)

class TurnUndoOutcome(BaseModel):
    ok: bool
    turn_id: Optional[str] = None
    undone_count: Optional[int] = None
    reason: Optional[UndoFailureReason] = None
    message: Optional[str] = None
    action_id: Optional[str] = None
