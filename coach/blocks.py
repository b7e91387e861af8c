"""Helpers for building user-facing blocks and turn responses."""

import re
from typing import Any, List, Optional, Sequence

from .models import (
    DEFAULT_SUGGESTIONS,
    Block,
    StatusBlock,
    SuggestionsBlock,
    TurnResponse,
    TurnTrace,
    UndoBlock,
)

DEFAULT_ASSISTANT_TEXT = "Done. I used your workout data and generated updates below."
DEFAULT_ERROR_MESSAGE = "Something went wrong. Please try again."
MAX_ASSISTANT_TEXT = 4000

_TRACEBACK_HEADER_RE = re.compile(r"^\s*Traceback \(most recent call last\):\s*$", re.MULTILINE)
_FRAME_LINE_RE = re.compile(r'^\s*File ".+", line \d+.*$', re.MULTILINE)
_JS_FRAME_LINE_RE = re.compile(r"^\s*at\s+\S+.+$", re.MULTILINE)
_INTERNAL_PATH_RE = re.compile(
    r"(?:/[\w.@-]+)*/?\b(?:coach|journal|tools|providers|site-packages|node_modules)/[\w/.@-]+\.(?:py|js|ts)(?::\d+(?::\d+)?)?"
)

def sanitize_error(raw: Any) -> str:
    """
    Strip stack traces and internal file paths from an error message before it reaches a user.

    Short messages with nothing to strip pass through unchanged.
    """
    if isinstance(raw, BaseException):
        raw = str(raw)
    if not isinstance(raw, str) or not raw.strip():
        return DEFAULT_ERROR_MESSAGE

    message = raw.strip()
    cleaned = _TRACEBACK_HEADER_RE.sub("", message)
    cleaned = _FRAME_LINE_RE.sub("", cleaned)
    cleaned = _JS_FRAME_LINE_RE.sub("", cleaned)
    cleaned = _INTERNAL_PATH_RE.sub("", cleaned)
    cleaned = re.sub(r"\n{2,}", "\n", cleaned).strip()

    if cleaned == message and len(message) < 200:
        return message
    return cleaned or DEFAULT_ERROR_MESSAGE

def tool_error_blocks(message: str) -> List[Block]:
    return [
        StatusBlock(tone="error", title="Tool execution failed", description=sanitize_error(message)[:2000]),
        SuggestionsBlock(prompts=list(DEFAULT_SUGGESTIONS)),
    ]

def unique_prompts(prompts: Sequence[str], limit: int = 4) -> List[str]:
    """Case-insensitive de-duplication, keeping the first spelling."""
    seen = set()
    output: List[str] = []
    for prompt in prompts:
        normalized = prompt.lower().strip()
        if not normalized or normalized in seen:
            continue
        seen.add(normalized)
        output.append(prompt)
        if len(output) >= limit:
            break
    return output

def normalize_assistant_text(content: Optional[str]) -> str:
    return content.strip() if isinstance(content, str) else ""

def undo_block(turn_id: str, action_ids: Sequence[str]) -> UndoBlock:
    label = "Undo" if len(action_ids) == 1 else f"Undo {len(action_ids)} changes"
    return UndoBlock(turn_id=turn_id, action_ids=list(action_ids), label=label)

def attach_undo_block(response: TurnResponse, action_ids: Sequence[str]) -> TurnResponse:
    """Returns a copy of `response` with an undo block for `action_ids` appended."""
    if not action_ids:
        return response
    return response.model_copy(update={"blocks": [*response.blocks, undo_block(response.turn_id, action_ids)]})

def build_turn_response(turn_id: str,
                        assistant_text: str,
                        blocks: List[Block],
                        tools_used: List[str],
                        model: str,
                        fallback_used: bool,
                        hit_tool_limit: bool = False,
                        undo_action_ids: Optional[List[str]] = None) -> TurnResponse:
    """Assemble the final response, filling in default text and suggestions when empty."""
    text = assistant_text.strip() or DEFAULT_ASSISTANT_TEXT
    if len(text) > MAX_ASSISTANT_TEXT:
        text = text[:MAX_ASSISTANT_TEXT - 1].rstrip() + "…"

    final_blocks: List[Block] = list(blocks) or [SuggestionsBlock(prompts=list(DEFAULT_SUGGESTIONS))]
    if undo_action_ids:
        final_blocks.append(undo_block(turn_id, undo_action_ids))

    return TurnResponse(
        turn_id=turn_id,
        assistant_text=text,
        blocks=final_blocks,
        trace=TurnTrace(
            tools_used=list(tools_used),
            model=model,
            fallback_used=fallback_used,
            hit_tool_limit=hit_tool_limit,
        ),
    )
