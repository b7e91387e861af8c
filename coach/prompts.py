"""Instruction template for the planner."""

from typing import Dict, List

from .models import Message, Preferences

COACH_SYSTEM_PROMPT = """You are Volume Coach, an agentic workout coach.

Core contract:
1) The model decides WHAT to do.
2) Tools decide HOW it is done.
3) Blocks decide HOW it is rendered.

Rules:
- Prefer tools over guessing. Do not invent numbers.
- Preserve exact user numbers (reps, seconds). Do not round.
- For recommendations like "what should I work on today", call get_focus_suggestions.
- For summary requests, call get_today_summary.
- For exercise-specific questions, call get_exercise_report.
- For logging, call log_set. To fix or remove a set, call update_set or delete_set.
- For preference changes, call set_weight_unit or set_sound.
- Ask a short clarifying question only when tool args are missing.
- Keep final responses concise and actionable.
- After tool results arrive, synthesize a short human response and let the UI blocks carry detail.
"""

def render_preferences(preferences: Preferences) -> str:
    """Only enum and bounded-integer values are interpolated, never free text."""
    unit = "kg" if preferences.unit == "kg" else "lbs"
    sounds = "enabled" if preferences.sound_enabled is True else "disabled"
    offset = int(preferences.timezone_offset_minutes)
    return (
        "User local prefs:\n"
        f"- default weight unit: {unit}\n"
        f"- tactile sounds: {sounds}\n"
        f"- timezone offset minutes: {offset}\n"
    )

def build_system_prompt(preferences: Preferences) -> str:
    return f"{COACH_SYSTEM_PROMPT}\n{render_preferences(preferences)}"

def build_model_messages(history: List[Message], preferences: Preferences) -> List[Dict[str, object]]:
    """System instruction followed by the caller's conversation, in chat-completions format."""
    messages: List[Dict[str, object]] = [{"role": "system", "content": build_system_prompt(preferences)}]
    messages.extend({"role": message.role, "content": message.content} for message in history)
    return messages
