"""Action journal: records agent mutations and reverts them with conflict detection."""

import time
import uuid
from typing import Any, Callable, Dict, List, NamedTuple, Optional, Tuple, Union

import structlog
from pydantic import BaseModel, ValidationError

from coach.errors import ActivityStoreError, JournalError
from coach.metrics import record_journal_write_failure, record_undo
from coach.models import StatusBlock

from .base import ActivityStore, JournalStore
from .models import (
    SET_ID_PATTERN,
    SNAPSHOT_MODELS,
    AgentAction,
    SetRecord,
    TurnUndoOutcome,
    UndoOutcome,
    UpdateSetSnapshot,
)

log = structlog.get_logger(__name__)

LEGACY_SNAPSHOT_ARG = "expected_snapshot"

ACTION_NOT_FOUND_MESSAGE = "Action not found."
MISSING_TARGET_MESSAGE = "Set no longer exists, so undo cannot be applied safely."
CONFLICT_MESSAGE = "Set changed after the coach action. Review the latest value before undoing."
RESTORED_CONFLICT_MESSAGE = "Set was restored after the coach action, so there is nothing to undo."

UNDO_UNAVAILABLE_BLOCK = StatusBlock(
    tone="info",
    title="Undo unavailable",
    description="Your change was saved, but I couldn't record it for undo.",
)

def parse_set_id(value: Any) -> Optional[str]:
    """Returns the id when it is a structurally valid set reference, else None."""
    if isinstance(value, str) and SET_ID_PATTERN.match(value):
        return value
    return None

def _epoch_ms() -> int:
    return int(time.time() * 1000)

class _UndoPlan(NamedTuple):
    """A pre-flighted action: everything needed to apply its inverse."""
    action: AgentAction
    set_id: str
    snapshot: Optional[BaseModel]

class ActionJournal:
    """Single consistent mutation layer for agent actions.

    Every read and undo is scoped to the caller's user id; a foreign action is reported
    exactly like a missing one.
    """

    def __init__(self, store: JournalStore, activity: ActivityStore,
                 clock: Optional[Callable[[], int]] = None):
        self.store = store
        self.activity = activity
        self._clock = clock or _epoch_ms
        log.info(f"ActionJournal initialized with store {type(store).__name__}")

    # --- Recording ---

    async def record(self,
                     user_id: str,
                     turn_id: str,
                     action_kind: str,
                     affected_ids: List[str],
                     before_snapshot: Optional[Union[BaseModel, Dict[str, Any]]] = None,
                     expected_snapshot: Optional[Union[BaseModel, Dict[str, Any]]] = None,
                     performed_at: Optional[int] = None,
                     args: Optional[Dict[str, Any]] = None) -> str:
        """
        Persist one action record and return its id.

        Args:
            before_snapshot: Snapshot matching `action_kind` (see journal.models.SNAPSHOT_MODELS).
            expected_snapshot: Legacy location for the snapshot; stored under `args`.
                Ignored when `before_snapshot` is given.

        Raises:
            JournalError: The record could not be written.
        """
        record_args = dict(args or {})
        if before_snapshot is None and expected_snapshot is not None:
            record_args[LEGACY_SNAPSHOT_ARG] = _as_dict(expected_snapshot)

        action = AgentAction(
            id=f"act_{uuid.uuid4().hex}",
            user_id=user_id,
            turn_id=turn_id,
            action_kind=action_kind,
            args=record_args,
            affected_ids=list(affected_ids),
            before_snapshot=_as_dict(before_snapshot) if before_snapshot is not None else None,
            performed_at=performed_at if performed_at is not None else self._clock(),
        )
        try:
            await self.store.insert_action(action)
        except JournalError:
            raise
        except Exception as e:
            raise JournalError(f"Failed to record {action_kind} action: {e}") from e
        log.info(f"Recorded action {action.id} ({action_kind}) for turn {turn_id}", affected_ids=action.affected_ids)
        return action.id

    async def record_best_effort(self, **kwargs) -> Tuple[Optional[str], List[StatusBlock]]:
        """
        `record` for callers whose mutation already committed.

        Never raises. On failure returns no id and an "Undo unavailable" notice for the caller
        to append to its (still successful) result.
        """
        try:
            return await self.record(**kwargs), []
        except Exception as e:
            action_kind = kwargs.get("action_kind", "unknown")
            log.warning(f"Could not journal {action_kind} action; undo will be unavailable", error=str(e))
            record_journal_write_failure(action_kind)
            return None, [UNDO_UNAVAILABLE_BLOCK.model_copy()]

    # --- Reading ---

    async def list_actions_for_turn(self, user_id: str, turn_id: str) -> List[AgentAction]:
        """All of the user's actions for a turn, newest first."""
        actions = await self.store.list_actions_for_turn(user_id, turn_id)
        return sorted(
            (action for action in actions if action.user_id == user_id),
            key=lambda action: action.order_key,
            reverse=True,
        )

    async def active_action_ids(self, user_id: str, turn_id: str) -> List[str]:
        """Ids of the turn's actions that can still be undone, oldest first."""
        return [action.id for action in await self._active_actions(user_id, turn_id)]

    # --- Undo ---

    async def undo_one(self, user_id: str, action_id: str) -> UndoOutcome:
        action = await self.store.get_action(action_id)
        if action is None or action.user_id != user_id:
            record_undo("action", "invalid_action")
            return UndoOutcome.failure("invalid_action", ACTION_NOT_FOUND_MESSAGE)

        if action.status == "undone":
            log.info(f"Action {action_id} already undone; nothing to apply")
            record_undo("action", "already_undone")
            return UndoOutcome(ok=True, action_id=action.id, turn_id=action.turn_id, already_undone=True)

        checked = await self._check(user_id, action)
        if isinstance(checked, UndoOutcome):
            record_undo("action", checked.reason or "failed")
            return checked

        await self._apply(checked)
        record_undo("action", "ok")
        return UndoOutcome(ok=True, action_id=action.id, turn_id=action.turn_id)

    async def undo_turn(self, user_id: str, turn_id: str) -> TurnUndoOutcome:
        """
        Undo every active action of a turn, or none of them.

        All actions are checked before any inverse runs; inverses are then applied newest
        first. The check walks the same newest-first order against a simulated state, so an
        action is compared with the set as it will be once every later action is reverted
        (a set logged and then edited in one turn is therefore undoable).
        A third-party change landing between the check and the apply is not detected.
        """
        actions = await self._active_actions(user_id, turn_id)

        plans: List[_UndoPlan] = []
        simulated: Dict[str, Optional[SetRecord]] = {}
        for action in reversed(actions):
            checked = await self._check(user_id, action, simulated)
            if isinstance(checked, UndoOutcome):
                log.info(f"Turn undo for {turn_id} aborted at action {action.id}: {checked.reason}")
                record_undo("turn", checked.reason or "failed")
                return TurnUndoOutcome(ok=False, reason=checked.reason, message=checked.message, action_id=action.id)
            plans.append(checked)

        # plans are already newest first
        for plan in plans:
            await self._apply(plan)

        record_undo("turn", "ok")
        log.info(f"Turn {turn_id} undone", undone_count=len(plans))
        return TurnUndoOutcome(ok=True, turn_id=turn_id, undone_count=len(plans))

    async def _active_actions(self, user_id: str, turn_id: str) -> List[AgentAction]:
        actions = await self.store.list_actions_for_turn(user_id, turn_id)
        active = [action for action in actions if action.user_id == user_id and action.status == "active"]
        return sorted(active, key=lambda action: action.order_key)

    async def _check(self, user_id: str, action: AgentAction,
                     simulated: Optional[Dict[str, Optional[SetRecord]]] = None) -> Union[_UndoPlan, UndoOutcome]:
        """
        Conflict check only; never mutates the stores.

        Args:
            simulated: Set states keyed by id, standing in for the store. When given, the
                state this action's inverse would produce is written back into it.
        """
        snapshot_model = SNAPSHOT_MODELS.get(action.action_kind)
        if snapshot_model is None:
            return UndoOutcome.failure("invalid_action", f"Undo is not implemented for {action.action_kind}.", action.id)
        if not action.affected_ids:
            return UndoOutcome.failure("invalid_action", "Missing affected set id.", action.id)

        set_ids = [parse_set_id(value) for value in action.affected_ids]
        if any(set_id is None for set_id in set_ids):
            return UndoOutcome.failure("invalid_action", "Affected set id is invalid.", action.id)
        set_id = set_ids[0]

        snapshot = self._expected_snapshot(action)
        if action.action_kind == "update_set" and snapshot is None:
            # an edit without a before-image has nothing to restore to
            return UndoOutcome.failure("invalid_action", "Action has no prior values to restore.", action.id)

        if simulated is not None and set_id in simulated:
            record = simulated[set_id]
        else:
            try:
                record = await self.activity.get_set(set_id, include_deleted=True)
            except ActivityStoreError as e:
                raise JournalError(f"Could not load set {set_id}: {e}") from e

        if record is None or record.user_id != user_id:
            return UndoOutcome.failure("missing_target", MISSING_TARGET_MESSAGE, action.id)

        if action.action_kind == "delete_set":
            if not record.is_deleted:
                return UndoOutcome.failure("conflict", RESTORED_CONFLICT_MESSAGE, action.id)
        elif record.is_deleted:
            return UndoOutcome.failure("missing_target", MISSING_TARGET_MESSAGE, action.id)

        expected = snapshot.after if isinstance(snapshot, UpdateSetSnapshot) else snapshot
        if expected is not None:
            mismatched = expected.mismatched_fields(record)
            if mismatched:
                log.info(f"Undo conflict on action {action.id}", set_id=set_id, fields=mismatched)
                return UndoOutcome.failure("conflict", CONFLICT_MESSAGE, action.id)

        if simulated is not None:
            simulated[set_id] = self._reverted(action.action_kind, record, snapshot)
        return _UndoPlan(action=action, set_id=set_id, snapshot=snapshot)

    def _reverted(self, kind: str, record: SetRecord, snapshot: Optional[BaseModel]) -> SetRecord:
        """The set as it will look once the inverse of `kind` has been applied."""
        if kind == "log_set":
            return record.model_copy(update={"deleted_at": self._clock()})
        if kind == "delete_set":
            return record.model_copy(update={"deleted_at": None})
        return record.model_copy(update=snapshot.before.patch_fields())

    def _expected_snapshot(self, action: AgentAction) -> Optional[BaseModel]:
        """Snapshot from `before_snapshot`, else the legacy `args.expected_snapshot`, else None."""
        snapshot_model = SNAPSHOT_MODELS[action.action_kind]
        for candidate in (action.before_snapshot, action.args.get(LEGACY_SNAPSHOT_ARG)):
            if not isinstance(candidate, dict):
                continue
            try:
                return snapshot_model.model_validate(candidate)
            except ValidationError:
                log.debug(f"Ignoring unparseable snapshot on action {action.id}")
        return None

    async def _apply(self, plan: _UndoPlan) -> None:
        kind = plan.action.action_kind
        try:
            if kind == "log_set":
                await self.activity.delete_set(plan.set_id)
            elif kind == "delete_set":
                await self.activity.restore_set(plan.set_id)
            elif kind == "update_set":
                await self.activity.patch_set(plan.set_id, plan.snapshot.before.patch_fields())
        except ActivityStoreError as e:
            log.error(f"Inverse of action {plan.action.id} failed", error=str(e))
            raise JournalError(f"Could not undo action {plan.action.id}: {e}") from e

        await self.store.mark_undone(plan.action.id, self._clock())
        log.info(f"Undid action {plan.action.id} ({kind})", set_id=plan.set_id)

def _as_dict(snapshot: Union[BaseModel, Dict[str, Any]]) -> Dict[str, Any]:
    if isinstance(snapshot, BaseModel):
        return snapshot.model_dump()
    return dict(snapshot)
