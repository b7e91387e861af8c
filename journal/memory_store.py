"""In-process stores. Used by default, by the CLI and by the test-suite."""

import itertools
import re
import time
import uuid
from typing import Any, Dict, List, Optional, Tuple

import structlog

from coach.errors import ActivityStoreError, JournalError

from .base import ActivityStore, JournalStore
from .models import AgentAction, Exercise, SetRecord

log = structlog.get_logger(__name__)

_MUTABLE_SET_FIELDS = {"exercise_id", "reps", "duration", "weight", "unit"}

def now_ms() -> int:
    return int(time.time() * 1000)

def normalize_lookup(value: str) -> str:
    return re.sub(r"[^a-z0-9]", "", value.lower())

def title_case(value: str) -> str:
    return " ".join(part[:1].upper() + part[1:].lower() for part in value.strip().split())

class InMemoryActivityStore(ActivityStore):
    """Dictionary-backed exercises and sets.

    Records are copied on the way in and out so callers never hold a live reference.
    """

    def __init__(self):
        self._exercises: Dict[str, Exercise] = {}
        self._sets: Dict[str, SetRecord] = {}
        log.info("InMemoryActivityStore initialized.")

    async def ensure_exercise(self, user_id: str, name: str) -> Tuple[Exercise, bool]:
        key = normalize_lookup(name)
        if not key:
            raise ActivityStoreError("Exercise name must contain letters or digits.")
        for exercise in self._exercises.values():
            if exercise.user_id == user_id and exercise.deleted_at is None and normalize_lookup(exercise.name) == key:
                return exercise.model_copy(), False

        exercise = Exercise(id=f"ex_{uuid.uuid4().hex}", user_id=user_id, name=title_case(name), created_at=now_ms())
        self._exercises[exercise.id] = exercise
        log.debug(f"Created exercise {exercise.id} ({exercise.name}) for user {user_id}")
        return exercise.model_copy(), True

    async def list_exercises(self, user_id: str, include_deleted: bool = False) -> List[Exercise]:
        return [
            exercise.model_copy()
            for exercise in self._exercises.values()
            if exercise.user_id == user_id and (include_deleted or exercise.deleted_at is None)
        ]

    async def insert_set(self, user_id: str, exercise_id: str, reps: Optional[int] = None,
                         duration: Optional[int] = None, weight: Optional[float] = None,
                         unit: Optional[str] = None, performed_at: Optional[int] = None) -> SetRecord:
        exercise = self._exercises.get(exercise_id)
        if exercise is None or exercise.user_id != user_id:
            raise ActivityStoreError(f"Exercise {exercise_id} not found.")
        if (reps is None) == (duration is None):
            raise ActivityStoreError("A set needs exactly one of reps or duration.")

        record = SetRecord(
            id=f"set_{uuid.uuid4().hex}",
            user_id=user_id,
            exercise_id=exercise_id,
            reps=reps,
            duration=duration,
            weight=weight,
            unit=unit if weight is not None else None,
            performed_at=performed_at if performed_at is not None else now_ms(),
        )
        self._sets[record.id] = record
        return record.model_copy()

    async def get_set(self, set_id: str, include_deleted: bool = False) -> Optional[SetRecord]:
        record = self._sets.get(set_id)
        if record is None or (record.is_deleted and not include_deleted):
            return None
        return record.model_copy()

    async def patch_set(self, set_id: str, fields: Dict[str, Any]) -> SetRecord:
        record = self._sets.get(set_id)
        if record is None or record.is_deleted:
            raise ActivityStoreError(f"Set {set_id} not found.")
        unknown = set(fields) - _MUTABLE_SET_FIELDS
        if unknown:
            raise ActivityStoreError(f"Cannot patch set fields: {sorted(unknown)}")
        updated = record.model_copy(update=fields)
        self._sets[set_id] = updated
        return updated.model_copy()

    async def delete_set(self, set_id: str) -> None:
        record = self._sets.get(set_id)
        if record is None or record.is_deleted:
            raise ActivityStoreError(f"Set {set_id} not found.")
        self._sets[set_id] = record.model_copy(update={"deleted_at": now_ms()})

    async def restore_set(self, set_id: str) -> SetRecord:
        record = self._sets.get(set_id)
        if record is None or not record.is_deleted:
            raise ActivityStoreError(f"Set {set_id} is not deleted.")
        restored = record.model_copy(update={"deleted_at": None})
        self._sets[set_id] = restored
        return restored.model_copy()

    async def list_sets(self, user_id: str, since: Optional[int] = None,
                        exercise_id: Optional[str] = None) -> List[SetRecord]:
        records = [
            record.model_copy()
            for record in self._sets.values()
            if record.user_id == user_id
            and not record.is_deleted
            and (since is None or record.performed_at >= since)
            and (exercise_id is None or record.exercise_id == exercise_id)
        ]
        records.sort(key=lambda record: record.performed_at, reverse=True)
        return records

    def purge_set(self, set_id: str) -> None:
        """Hard-delete a set, as a retention job would."""
        self._sets.pop(set_id, None)

class InMemoryJournalStore(JournalStore):
    def __init__(self):
        self._actions: Dict[str, AgentAction] = {}
        self._seq = itertools.count(1)
        log.info("InMemoryJournalStore initialized.")

    async def insert_action(self, action: AgentAction) -> None:
        if action.id in self._actions:
            raise JournalError(f"Action {action.id} already exists.")
        self._actions[action.id] = action.model_copy(update={"seq": next(self._seq)}, deep=True)

    async def get_action(self, action_id: str) -> Optional[AgentAction]:
        action = self._actions.get(action_id)
        return action.model_copy(deep=True) if action else None

    async def list_actions_for_turn(self, user_id: str, turn_id: str) -> List[AgentAction]:
        return [
            action.model_copy(deep=True)
            for action in self._actions.values()
            if action.user_id == user_id and action.turn_id == turn_id
        ]

    async def mark_undone(self, action_id: str, undone_at: int) -> None:
        action = self._actions.get(action_id)
        if action is None:
            raise JournalError(f"Action {action_id} not found.")
        self._actions[action_id] = action.model_copy(update={"status": "undone", "undone_at": undone_at})
