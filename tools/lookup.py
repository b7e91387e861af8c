from typing import Dict, List, Optional, Tuple

from coach.registry import ToolContext
from journal.memory_store import normalize_lookup
from journal.models import Exercise, SetRecord

RECENT_SET_LIMIT = 120

def find_exercise(exercises: List[Exercise], name: str) -> Optional[Exercise]:
    """Exact match on the normalized name first, then a containment match either way."""
    wanted = normalize_lookup(name)
    if not wanted:
        return None
    for exercise in exercises:
        if normalize_lookup(exercise.name) == wanted:
            return exercise
    for exercise in exercises:
        candidate = normalize_lookup(exercise.name)
        if candidate and (wanted in candidate or candidate in wanted):
            return exercise
    return None

async def exercise_names(ctx: ToolContext) -> Dict[str, str]:
    exercises = await ctx.activity.list_exercises(ctx.user_id, include_deleted=True)
    return {exercise.id: exercise.name for exercise in exercises}

async def recent_sets(ctx: ToolContext, exercise_id: str) -> List[SetRecord]:
    sets = await ctx.activity.list_sets(ctx.user_id, exercise_id=exercise_id)
    return sets[:RECENT_SET_LIMIT]

async def resolve_target_set(ctx: ToolContext, set_id: Optional[str],
                             exercise_name: Optional[str]) -> Tuple[Optional[SetRecord], str]:
    """
    Find the set a tool should act on.

    Returns:
        The live set (or None) and a human label for it, e.g. "latest Squats set".
    """
    if set_id:
        record = await ctx.activity.get_set(set_id)
        if record is None or record.user_id != ctx.user_id:
            return None, f"set {set_id}"
        return record, f"set {set_id}"

    exercises = await ctx.activity.list_exercises(ctx.user_id)
    exercise = find_exercise(exercises, exercise_name or "")
    if exercise is None:
        return None, f'"{exercise_name}"'
    sets = await ctx.activity.list_sets(ctx.user_id, exercise_id=exercise.id)
    if not sets:
        return None, f"latest {exercise.name} set"
    return sets[0], f"latest {exercise.name} set"
