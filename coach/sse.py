"""Server-sent-event framing for turn progress events.

Writer side: `encode_event` / `encode_comment` produce `event: <type>\\ndata: <json>\\n\\n`
frames and `:<text>\\n\\n` comments. Reader side: `SSEDecoder` accepts arbitrary network
chunks, buffers until a full frame is available, and turns every data frame into exactly
one validated stream event (or an `ErrorEvent` describing why it could not).
"""

import codecs
import json
from typing import AsyncIterable, AsyncIterator, List, Optional, Union

import structlog
from pydantic import ValidationError

from .models import STREAM_EVENT_ADAPTER, ErrorEvent, StreamEvent

log = structlog.get_logger(__name__)

SSE_HEADERS = {
    "Content-Type": "text/event-stream; charset=utf-8",
    "Cache-Control": "no-cache, no-transform",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}

MALFORMED_EVENT_MESSAGE = "Malformed stream event received."
INVALID_EVENT_MESSAGE = "Invalid stream event received."

def wants_event_stream(accept_header: Optional[str]) -> bool:
    return "text/event-stream" in (accept_header or "")

def encode_event(event: StreamEvent) -> str:
    return f"event: {event.type}\ndata: {event.model_dump_json()}\n\n"

def encode_comment(content: str) -> str:
    return f":{content}\n\n"

def _field_value(line: str, field: str) -> str:
    """Value of a `field:` line with at most one leading space removed."""
    value = line[len(field) + 1:]
    return value[1:] if value.startswith(" ") else value

def padding_comment(size: int) -> str:
    """Whitespace comment frame that pushes early events through buffering proxies."""
    return encode_comment(" " * size)

class SSEDecoder:
    """Incremental frame parser. Not thread-safe; one decoder per stream."""

    def __init__(self):
        self._buffer = ""
        self._utf8 = codecs.getincrementaldecoder("utf-8")(errors="replace")

    def feed(self, chunk: Union[bytes, str]) -> List[StreamEvent]:
        """Consumes one chunk and returns the events completed by it (possibly none)."""
        text = self._utf8.decode(chunk) if isinstance(chunk, bytes) else chunk
        # CRLF may straddle chunks, so normalise the whole buffer rather than the chunk
        self._buffer = (self._buffer + text).replace("\r\n", "\n")

        events: List[StreamEvent] = []
        while True:
            boundary = self._buffer.find("\n\n")
            if boundary == -1:
                break
            raw_frame = self._buffer[:boundary]
            self._buffer = self._buffer[boundary + 2:]
            event = self._parse_frame(raw_frame)
            if event is not None:
                events.append(event)
        return events

    @property
    def pending(self) -> str:
        """Buffered text that does not yet form a complete frame."""
        return self._buffer

    def _parse_frame(self, raw_frame: str) -> Optional[StreamEvent]:
        if not raw_frame.strip():
            return None

        event_name = "message"
        data_lines: List[str] = []
        for line in raw_frame.split("\n"):
            if line.startswith(":"):
                continue
            if line.startswith("event:"):
                event_name = _field_value(line, "event") or event_name
            elif line.startswith("data:"):
                data_lines.append(_field_value(line, "data"))

        if not data_lines:
            # comment-only frame (keep-alive / padding)
            return None

        data = "\n".join(data_lines)
        try:
            payload = json.loads(data)
        except ValueError:
            log.warning("Discarding stream frame with non-JSON data", event_name=event_name)
            return ErrorEvent(message=MALFORMED_EVENT_MESSAGE)

        try:
            return STREAM_EVENT_ADAPTER.validate_python(payload)
        except ValidationError as e:
            log.warning("Discarding stream frame that failed event validation", event_name=event_name, errors=e.error_count())
            return ErrorEvent(message=INVALID_EVENT_MESSAGE)

async def read_stream_events(chunks: AsyncIterable[Union[bytes, str]]) -> AsyncIterator[StreamEvent]:
    """Async-iterator form of `SSEDecoder`; a trailing partial frame at end of stream is dropped."""
    decoder = SSEDecoder()
    async for chunk in chunks:
        for event in decoder.feed(chunk):
            yield event
    if decoder.pending.strip():
        log.debug("Stream ended with an incomplete frame", pending_chars=len(decoder.pending))
