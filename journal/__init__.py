"""Action journal and the stores behind it."""

from .base import ActivityStore, JournalStore
from .journal import ActionJournal, parse_set_id
from .memory_store import InMemoryActivityStore, InMemoryJournalStore
from .models import AgentAction, SetRecord, SetSnapshot, TurnUndoOutcome, UndoOutcome, UpdateSetSnapshot

__all__ = [
    "ActionJournal",
    "ActivityStore",
    "JournalStore",
    "InMemoryActivityStore",
    "InMemoryJournalStore",
    "AgentAction",
    "SetRecord",
    "SetSnapshot",
    "UpdateSetSnapshot",
    "UndoOutcome",
    "TurnUndoOutcome",
    "parse_set_id",
]
