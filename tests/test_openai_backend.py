# Tests for the OpenAI-compatible streaming backend

from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import openai
import pytest

from providers.base import TextDelta, ToolCallFragment
from providers.exceptions import AuthenticationError, ConfigurationError, StreamInterruptedError
from providers.openai import OpenAIBackend, map_openai_error

REQUEST = httpx.Request("POST", "https://api.example.test/v1/chat/completions")

def _chunk(content=None, tool_calls=None):
    return SimpleNamespace(choices=[SimpleNamespace(delta=SimpleNamespace(content=content, tool_calls=tool_calls))])

def _tool_delta(index, call_id=None, name=None, arguments=None):
    return SimpleNamespace(index=index, id=call_id, function=SimpleNamespace(name=name, arguments=arguments))

class _Stream:
    """Async iterator over prepared chunks; an exception instance is raised in place."""

    def __init__(self, items):
        self._items = list(items)

    def __aiter__(self):
        return self

    async def __anext__(self):
        if not self._items:
            raise StopAsyncIteration
        item = self._items.pop(0)
        if isinstance(item, Exception):
            raise item
        return item

@pytest.fixture
def mock_client():
    client = MagicMock()
    client.chat.completions.create = AsyncMock()
    client.close = AsyncMock()
    return client

@pytest.fixture
def backend(mock_client):
    with patch("providers.openai.AsyncOpenAI", return_value=mock_client):
        yield OpenAIBackend(api_key="sk-test", model="test-model", temperature=0.2)

async def _collect(backend, tools=None):
    return [item async for item in backend.stream_round([{"role": "user", "content": "hi"}], tools or [])]

def test_requires_api_key():
    with pytest.raises(ConfigurationError):
        OpenAIBackend(api_key="", model="test-model")

@pytest.mark.asyncio
async def test_text_stream(backend, mock_client):
    mock_client.chat.completions.create.return_value = _Stream([
        _chunk(content="Hel"), SimpleNamespace(choices=[]), _chunk(content="lo"),
    ])

    items = await _collect(backend)

    assert items == [TextDelta(text="Hel"), TextDelta(text="lo")]
    request = mock_client.chat.completions.create.await_args.kwargs
    assert request["model"] == "test-model"
    assert request["stream"] is True
    assert request["temperature"] == 0.2
    assert "tools" not in request

@pytest.mark.asyncio
async def test_tool_call_fragments_keep_the_first_id(backend, mock_client):
    tools = [{"type": "function", "function": {"name": "log_set", "parameters": {}}}]
    mock_client.chat.completions.create.return_value = _Stream([
        _chunk(tool_calls=[_tool_delta(0, call_id="call_abc", name="log_set", arguments="")]),
        _chunk(tool_calls=[_tool_delta(0, arguments='{"reps": ')]),
        _chunk(tool_calls=[_tool_delta(0, arguments="10}"), _tool_delta(1, name="get_today_summary", arguments="{}")]),
    ])

    items = await _collect(backend, tools)

    assert items == [
        ToolCallFragment(call_id="call_abc", name="log_set", arguments_delta=""),
        ToolCallFragment(call_id="call_abc", arguments_delta='{"reps": '),
        ToolCallFragment(call_id="call_abc", arguments_delta="10}"),
        ToolCallFragment(call_id="call_1", name="get_today_summary", arguments_delta="{}"),
    ]
    request = mock_client.chat.completions.create.await_args.kwargs
    assert request["tools"] == tools
    assert request["tool_choice"] == "auto"

@pytest.mark.asyncio
async def test_auth_error_on_open_is_mapped(backend, mock_client):
    response = httpx.Response(401, request=REQUEST)
    mock_client.chat.completions.create.side_effect = openai.AuthenticationError("bad key", response=response, body=None)

    with pytest.raises(AuthenticationError):
        await _collect(backend)
    assert mock_client.chat.completions.create.await_count == 1

@pytest.mark.asyncio
async def test_mid_stream_failure_is_interrupted(backend, mock_client):
    mock_client.chat.completions.create.return_value = _Stream([
        _chunk(content="partial"), openai.APIError("connection dropped", REQUEST, body=None),
    ])

    received = []
    with pytest.raises(StreamInterruptedError):
        async for item in backend.stream_round([], []):
            received.append(item)
    assert received == [TextDelta(text="partial")]

def test_map_openai_error_passthrough_and_fallback():
    original = AuthenticationError("already mapped")
    assert map_openai_error(original) is original
    assert "boom" in str(map_openai_error(RuntimeError("boom")))

@pytest.mark.asyncio
async def test_close(backend, mock_client):
    await backend.close()
    mock_client.close.assert_awaited_once()
