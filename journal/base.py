from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Tuple

from .models import AgentAction, Exercise, SetRecord

class ActivityStore(ABC):
    """Abstract base class for the store that owns exercises and sets.

    Implementations raise `coach.errors.ActivityStoreError` for storage failures and for
    operations on ids that do not exist.
    """

    @abstractmethod
    async def ensure_exercise(self, user_id: str, name: str) -> Tuple[Exercise, bool]:
        """
        Find an active exercise by name, creating it when missing.

        Returns:
            The exercise and whether it was created by this call.
        """
        pass

    @abstractmethod
    async def list_exercises(self, user_id: str, include_deleted: bool = False) -> List[Exercise]:
        pass

    @abstractmethod
    async def insert_set(self, user_id: str, exercise_id: str, reps: Optional[int] = None,
                         duration: Optional[int] = None, weight: Optional[float] = None,
                         unit: Optional[str] = None, performed_at: Optional[int] = None) -> SetRecord:
        pass

    @abstractmethod
    async def get_set(self, set_id: str, include_deleted: bool = False) -> Optional[SetRecord]:
        """
        Read a set by id.

        Args:
            set_id: The set identifier.
            include_deleted: Return soft-deleted sets too. Purged sets are always None.
        """
        pass

    @abstractmethod
    async def patch_set(self, set_id: str, fields: Dict[str, Any]) -> SetRecord:
        """Overwrite the given fields; a None value clears the field."""
        pass

    @abstractmethod
    async def delete_set(self, set_id: str) -> None:
        """Soft-delete a live set."""
        pass

    @abstractmethod
    async def restore_set(self, set_id: str) -> SetRecord:
        pass

    @abstractmethod
    async def list_sets(self, user_id: str, since: Optional[int] = None,
                        exercise_id: Optional[str] = None) -> List[SetRecord]:
        """Live sets for a user, newest first."""
        pass

class JournalStore(ABC):
    """Abstract base class for action journal persistence."""

    @abstractmethod
    async def insert_action(self, action: AgentAction) -> None:
        """
        Persist a new action atomically. The store assigns `seq`, increasing in insertion
        order within the turn.

        Raises:
            JournalError: The id already exists or the write failed; nothing was stored.
        """
        pass

    @abstractmethod
    async def get_action(self, action_id: str) -> Optional[AgentAction]:
        pass

    @abstractmethod
    async def list_actions_for_turn(self, user_id: str, turn_id: str) -> List[AgentAction]:
        """All actions a user recorded under a turn, in insertion order."""
        pass

    @abstractmethod
    async def mark_undone(self, action_id: str, undone_at: int) -> None:
        pass
