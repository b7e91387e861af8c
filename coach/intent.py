"""Deterministic intent classifier used when no model backend is available."""

import re
from typing import Any, Dict, Optional

from .models import ToolCall

STOPWORDS = {
    "show", "me", "my", "the", "for", "trend", "history", "report", "insight", "insights",
    "analyze", "analysis", "of", "on", "please", "stats", "stat", "summary", "today",
    "performance", "how", "am", "i", "doing",
}

EXERCISE_ALIASES = {
    "pushup": "Push-ups",
    "pushups": "Push-ups",
    "push-up": "Push-ups",
    "push-ups": "Push-ups",
    "squat": "Squats",
    "squats": "Squats",
    "pullup": "Pull-ups",
    "pullups": "Pull-ups",
    "pull-up": "Pull-ups",
    "pull-ups": "Pull-ups",
    "situp": "Sit-ups",
    "situps": "Sit-ups",
    "sit-up": "Sit-ups",
    "sit-ups": "Sit-ups",
    "plank": "Plank",
}

_LEADING_VERBS_RE = re.compile(r"^(log|add|did|completed|complete|i did|i completed)\s+", re.IGNORECASE)
_WEIGHT_RE = re.compile(r"^(.*?)(?:\s+(?:@|at)\s*(\d+(?:\.\d+)?)\s*(kg|kgs|lb|lbs))\s*$", re.IGNORECASE)
_DURATION_UNITS = r"(seconds?|secs?|s|minutes?|mins?|m)"
_DURATION_PREFIX_RE = re.compile(r"^(\d+(?:\.\d+)?)\s*" + _DURATION_UNITS + r"\s+(.+)$", re.IGNORECASE)
_DURATION_SUFFIX_RE = re.compile(r"^(.+?)\s+for\s+(\d+(?:\.\d+)?)\s*" + _DURATION_UNITS + r"$", re.IGNORECASE)
_REPS_PREFIX_RE = re.compile(r"^(\d{1,4})\s*(?:x|reps?|rep)?\s+(.+)$", re.IGNORECASE)
_REPS_SUFFIX_RE = re.compile(r"^(.+?)\s+(?:x\s*)?(\d{1,4})\s*(?:reps?|rep)?$", re.IGNORECASE)

_UNIT_RE = re.compile(r"\b(?:set|switch|change)?\s*(?:my\s+)?(?:weight\s+)?unit\b.*\b(kg|kgs|lb|lbs)\b", re.IGNORECASE)
_UNIT_SHORTHAND_RE = re.compile(r"\b(?:switch|change)\b.*\b(?:to|in)\s*(kg|kgs|lb|lbs)\b", re.IGNORECASE)
_SOUND_OFF_RE = re.compile(r"\b(?:sound|audio|click)\b.*\b(?:off|mute|disable|disabled)\b", re.IGNORECASE)
_SOUND_ON_RE = re.compile(r"\b(?:sound|audio|click)\b.*\b(?:on|enable|enabled)\b", re.IGNORECASE)

_TODAY_RE = re.compile(r"\b(?:today|todays)\b")
_SUMMARY_WORDS_RE = re.compile(r"\b(?:summary|stats|totals?|workout|sets?|progress|doing)\b")
_WHAT_DID_I_DO_RE = re.compile(r"\bwhat did i do today\b")
_REPORT_WORDS_RE = re.compile(r"\b(?:trend|history|report|insight|analysis|progress)\b")
_REPORT_TARGET_RE = re.compile(r"\b(?:for|on|about)\s+([a-z0-9 -]+)$", re.IGNORECASE)
FOCUS_RE = re.compile(r"\b(work on|focus|improve|today plan|what should i do)\b", re.IGNORECASE)

def normalize_whitespace(value: str) -> str:
    return re.sub(r"\s+", " ", value).strip()

def to_unit(token: str) -> str:
    return "kg" if token.lower().startswith("kg") else "lbs"

def normalize_exercise_alias(value: str) -> str:
    normalized = re.sub(r"[^a-z0-9\s-]", "", value.lower()).strip()
    if normalized in EXERCISE_ALIASES:
        return EXERCISE_ALIASES[normalized]
    return " ".join(word[:1].upper() + word[1:] for word in normalized.split(" ") if word)

def duration_to_seconds(value: float, unit: str) -> int:
    if unit.lower().startswith("m"):
        return round(value * 60)
    return round(value)

def _call(tool_name: str, **arguments: Any) -> ToolCall:
    return ToolCall(tool_name=tool_name, arguments={k: v for k, v in arguments.items() if v is not None})

# --- Individual parsers, in priority order ---

def parse_setting(text: str) -> Optional[ToolCall]:
    match = _UNIT_RE.search(text) or _UNIT_SHORTHAND_RE.search(text)
    if match:
        return _call("set_weight_unit", unit=to_unit(match.group(1)))
    if _SOUND_OFF_RE.search(text):
        return _call("set_sound", enabled=False)
    if _SOUND_ON_RE.search(text):
        return _call("set_sound", enabled=True)
    return None

def parse_summary(text: str) -> Optional[ToolCall]:
    if _TODAY_RE.search(text) and _SUMMARY_WORDS_RE.search(text):
        return _call("get_today_summary")
    if _WHAT_DID_I_DO_RE.search(text):
        return _call("get_today_summary")
    return None

def parse_exercise_report(text: str) -> Optional[ToolCall]:
    if not _REPORT_WORDS_RE.search(text):
        return None
    explicit = _REPORT_TARGET_RE.search(text)
    if explicit:
        raw = explicit.group(1)
    else:
        raw = " ".join(token for token in text.split(" ") if token not in STOPWORDS)
    exercise_name = normalize_exercise_alias(normalize_whitespace(raw))
    if not exercise_name:
        return None
    return _call("get_exercise_report", exercise_name=exercise_name)

def _extract_weight(text: str) -> Dict[str, Any]:
    match = _WEIGHT_RE.match(text)
    if not match:
        return {"body": text}
    weight = float(match.group(2))
    if weight <= 0:
        return {"body": text}
    return {"body": normalize_whitespace(match.group(1)), "weight": weight, "unit": to_unit(match.group(3))}

def parse_log_set(text: str) -> Optional[ToolCall]:
    """
    Recognizes "10 pushups", "squats x 5", "30s plank", "plank for 2 minutes", each
    optionally followed by "@ 135 lbs" or "at 60kg".
    """
    stripped = normalize_whitespace(_LEADING_VERBS_RE.sub("", text, count=1))
    parsed = _extract_weight(stripped)
    body = parsed.pop("body")
    if not body:
        return None

    for pattern, value_group, unit_group, name_group in (
        (_DURATION_PREFIX_RE, 1, 2, 3),
        (_DURATION_SUFFIX_RE, 2, 3, 1),
    ):
        match = pattern.match(body)
        if match:
            duration = duration_to_seconds(float(match.group(value_group)), match.group(unit_group))
            exercise_name = normalize_exercise_alias(match.group(name_group))
            if exercise_name and duration > 0:
                return _call("log_set", exercise_name=exercise_name, duration_seconds=duration, **parsed)

    for pattern, reps_group, name_group in ((_REPS_PREFIX_RE, 1, 2), (_REPS_SUFFIX_RE, 2, 1)):
        match = pattern.match(body)
        if match:
            reps = int(match.group(reps_group))
            exercise_name = normalize_exercise_alias(match.group(name_group))
            if exercise_name and reps > 0:
                return _call("log_set", exercise_name=exercise_name, reps=reps, **parsed)

    return None

def parse_focus(text: str) -> Optional[ToolCall]:
    if FOCUS_RE.search(text):
        return _call("get_focus_suggestions")
    return None

PARSERS = (parse_setting, parse_summary, parse_exercise_report, parse_log_set, parse_focus)

def classify(text: str) -> Optional[ToolCall]:
    """Maps free text to a single tool call, or None. First matching parser wins."""
    normalized = normalize_whitespace((text or "").lower())
    if not normalized:
        return None
    for parser in PARSERS:
        call = parser(normalized)
        if call is not None:
            return call
    return None
