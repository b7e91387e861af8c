"""OpenAI-compatible streaming backend (api.openai.com, OpenRouter, ...)."""

import time
from typing import Any, AsyncIterator, Dict, List, Optional

from openai import (
    APIError as OpenAIAPIError,
    AsyncOpenAI,
    AuthenticationError as OpenAIAuthenticationError,
    BadRequestError as OpenAIBadRequestError,
    RateLimitError as OpenAIRateLimitError,
)
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential
import structlog

from coach.metrics import record_model_round

from .base import ModelBackend, StreamItem, TextDelta, ToolCallFragment
from .exceptions import AuthenticationError, CallError, ConfigurationError, ProviderError, RateLimitError, StreamInterruptedError

log = structlog.get_logger(__name__)

def map_openai_error(e: Exception) -> ProviderError:
    """Translate an SDK exception into our provider hierarchy."""
    if isinstance(e, ProviderError):
        return e
    if isinstance(e, OpenAIAuthenticationError):
        return AuthenticationError(f"OpenAI Auth Error: {e}")
    if isinstance(e, OpenAIRateLimitError):
        return RateLimitError(f"OpenAI Rate Limit Error: {e}")
    if isinstance(e, OpenAIBadRequestError):
        return CallError(f"OpenAI Bad Request Error: {e}")
    if isinstance(e, OpenAIAPIError):
        return ProviderError(f"OpenAI API Error: {e}")
    return ProviderError(f"Unexpected error in OpenAI stream: {e}")

class OpenAIBackend(ModelBackend):
    """Adapter for the chat completions streaming endpoint with function calling."""

    def __init__(self, api_key: str, model: str, base_url: Optional[str] = None,
                 default_headers: Optional[Dict[str, str]] = None, temperature: Optional[float] = None):
        """
        Initializes the OpenAI backend.

        Args:
            api_key: Key for the endpoint.
            model: Model id sent with every round.
            base_url: Alternative OpenAI-compatible endpoint; None means api.openai.com.
            default_headers: Extra headers sent with every request (e.g. OpenRouter attribution).
            temperature: Sampling temperature; None keeps the vendor default.
        """
        if not api_key:
            raise ConfigurationError("OpenAI-compatible backend requires an API key.")
        self._model = model
        self.temperature = temperature
        try:
            self.aclient = AsyncOpenAI(api_key=api_key, base_url=base_url, default_headers=default_headers or None)
            log.info("OpenAI Async Client initialized successfully.", model=model, base_url=base_url)
        except Exception as e:
            log.exception("Failed to initialize OpenAI client.")
            raise ConfigurationError(f"Failed to initialize OpenAI client: {e}") from e

    @property
    def model(self) -> str:
        return self._model

    @retry(stop=stop_after_attempt(3), wait=wait_exponential(multiplier=1, min=2, max=10),
           retry=retry_if_exception_type(RateLimitError), reraise=True)
    async def _open_stream(self, messages: List[Dict[str, Any]], tools: List[Dict[str, Any]]):
        request: Dict[str, Any] = {
            "model": self._model,
            "messages": messages,
            "stream": True,
        }
        if tools:
            request["tools"] = tools
            request["tool_choice"] = "auto"
        if self.temperature is not None:
            request["temperature"] = self.temperature
        try:
            return await self.aclient.chat.completions.create(**request)
        except OpenAIRateLimitError as e:
            log.warning(f"OpenAI rate limit exceeded: {e}")
            raise map_openai_error(e) from e
        except OpenAIAPIError as e:
            log.error(f"OpenAI error opening stream: {e}")
            raise map_openai_error(e) from e

    async def stream_round(self, messages: List[Dict[str, Any]],
                           tools: List[Dict[str, Any]]) -> AsyncIterator[StreamItem]:
        """
        Yields text deltas and tool-call fragments for one round.

        Some compatible endpoints only send a tool call's id on its first delta and identify
        later deltas by index; every fragment yielded here carries the resolved id.
        """
        log.debug(f"Opening model stream: model={self._model}, messages={len(messages)}, tools={len(tools)}")
        start_time = time.time()
        status = "success"
        index_to_id: Dict[int, str] = {}
        try:
            stream = await self._open_stream(messages, tools)
            async for chunk in stream:
                if not chunk.choices:
                    continue
                delta = chunk.choices[0].delta
                if delta is None:
                    continue
                if delta.content:
                    yield TextDelta(text=delta.content)
                for call in delta.tool_calls or []:
                    index = call.index if call.index is not None else len(index_to_id)
                    if index not in index_to_id:
                        index_to_id[index] = call.id or f"call_{index}"
                    function = call.function
                    yield ToolCallFragment(
                        call_id=index_to_id[index],
                        name=function.name if function is not None else None,
                        arguments_delta=(function.arguments or "") if function is not None else "",
                    )
        except ProviderError:
            status = "error"
            raise
        except OpenAIAPIError as e:
            status = "error"
            log.error(f"OpenAI stream failed mid-round: {e}")
            raise StreamInterruptedError(f"OpenAI stream interrupted: {e}") from e
        finally:
            record_model_round(self._model, time.time() - start_time, status)

    async def close(self) -> None:
        """Close the OpenAI client connection."""
        if self.aclient:
            try:
                await self.aclient.close()
                log.info("OpenAI async client closed.")
            except Exception as e:
                log.error(f"Error closing OpenAI async client: {e}", exc_info=True)
