# Pytest configuration file for the tests directory
import sys
import os

# Add the project root directory to the Python path so 'from coach.models import ...' works
project_root = os.path.abspath(os.path.join(os.path.dirname(__file__), '..'))
if project_root not in sys.path:
    sys.path.insert(0, project_root)

import asyncio
import json

import pytest

from coach.models import Preferences
from coach.registry import ToolContext
from journal import ActionJournal, InMemoryActivityStore, InMemoryJournalStore
from providers.base import ModelBackend, TextDelta, ToolCallFragment
from tools import build_registry

USER_ID = "user_1"
OTHER_USER_ID = "user_2"

@pytest.fixture
def activity() -> InMemoryActivityStore:
    return InMemoryActivityStore()

@pytest.fixture
def journal_store() -> InMemoryJournalStore:
    return InMemoryJournalStore()

@pytest.fixture
def journal(journal_store, activity) -> ActionJournal:
    return ActionJournal(journal_store, activity)

@pytest.fixture
def registry():
    return build_registry()

@pytest.fixture
def make_context(activity, journal):
    """Builds a ToolContext over the shared in-memory stores."""
    def _make(turn_id: str = "turn_a", user_id: str = USER_ID, unit: str = "lbs", user_input: str = "") -> ToolContext:
        return ToolContext(
            user_id=user_id,
            turn_id=turn_id,
            activity=activity,
            journal=journal,
            preferences=Preferences(unit=unit),
            user_input=user_input,
        )
    return _make

class ScriptedBackend(ModelBackend):
    """Model backend that replays one scripted list of stream items per round.

    A round may also be an exception instance (raised when the round starts) and an item may
    be a zero-argument callable (invoked mid-stream, e.g. to cancel the turn).
    """

    def __init__(self, rounds, model: str = "fake-model", delay: float = 0.0):
        self._rounds = list(rounds)
        self._model = model
        self.delay = delay
        self.calls = []
        self.closed = False

    @property
    def model(self) -> str:
        return self._model

    async def stream_round(self, messages, tools):
        self.calls.append([dict(message) for message in messages])
        script = self._rounds.pop(0) if self._rounds else [TextDelta(text="Done.")]
        if self.delay:
            await asyncio.sleep(self.delay)
        if isinstance(script, Exception):
            raise script
        for item in script:
            if callable(item):
                item()
                continue
            yield item

    async def close(self) -> None:
        self.closed = True

    @staticmethod
    def tool_call(call_id: str, name: str, arguments: dict) -> ToolCallFragment:
        return ToolCallFragment(call_id=call_id, name=name, arguments_delta=json.dumps(arguments))

    @staticmethod
    def text(value: str) -> TextDelta:
        return TextDelta(text=value)

@pytest.fixture
def scripted_backend():
    return ScriptedBackend
