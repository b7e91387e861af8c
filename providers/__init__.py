from .base import ModelBackend, StreamItem, TextDelta, ToolCallFragment
from .exceptions import (
    AuthenticationError,
    CallError,
    ConfigurationError,
    ProviderError,
    RateLimitError,
    StreamInterruptedError,
)

__all__ = [
    "ModelBackend",
    "StreamItem",
    "TextDelta",
    "ToolCallFragment",
    "ProviderError",
    "AuthenticationError",
    "RateLimitError",
    "ConfigurationError",
    "CallError",
    "StreamInterruptedError",
]
