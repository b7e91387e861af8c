"""Model backend interface and the normalized stream items it yields."""

import abc
from typing import Any, AsyncIterator, Dict, List, Optional, Union

from pydantic import BaseModel

class TextDelta(BaseModel):
    text: str

class ToolCallFragment(BaseModel):
    """One streamed piece of a tool call.

    `call_id` is always set, even when the vendor only sent an index. The same id may arrive
    many times; `arguments_delta` pieces are concatenated in arrival order.
    """
    call_id: str
    name: Optional[str] = None
    arguments_delta: str = ""

StreamItem = Union[TextDelta, ToolCallFragment]

class ModelBackend(abc.ABC):
    """A tool-calling chat model reached over a streaming API."""

    @property
    @abc.abstractmethod
    def model(self) -> str:
        """Identifier reported in the turn trace."""

    @abc.abstractmethod
    def stream_round(self, messages: List[Dict[str, Any]],
                     tools: List[Dict[str, Any]]) -> AsyncIterator[StreamItem]:
        """
        Streams one model round.

        Args:
            messages: Chat-completions style messages, system prompt first.
            tools: Function definitions from the tool registry.

        Raises:
            ProviderError: (or a subclass) when the vendor call fails.
        """

    async def close(self) -> None:
        pass
