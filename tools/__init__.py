"""The closed set of coach tools."""

from coach.registry import ToolRegistry, ToolSpec

from .edit_sets import run_delete_set, run_update_set
from .log_set import run_log_set
from .preferences import run_set_sound, run_set_weight_unit
from .reports import run_exercise_report, run_focus_suggestions, run_today_summary
from .schemas import (
    DeleteSetArgs,
    ExerciseReportArgs,
    LogSetArgs,
    NoArgs,
    SetSoundArgs,
    SetWeightUnitArgs,
    UpdateSetArgs,
)

TOOL_SPECS = [
    ToolSpec(
        name="log_set",
        description=(
            "Log a workout set. Exactly one of reps or duration_seconds is required. Use reps for "
            "rep-based movements and duration_seconds (integer seconds) for timed holds. Preserve "
            "exact user numbers; do not round."
        ),
        args_model=LogSetArgs,
        handler=run_log_set,
        mutating=True,
    ),
    ToolSpec(
        name="update_set",
        description=(
            "Correct an already logged set, identified by set_id or as the latest set of exercise_name. "
            "Only the provided fields change."
        ),
        args_model=UpdateSetArgs,
        handler=run_update_set,
        mutating=True,
    ),
    ToolSpec(
        name="delete_set",
        description="Delete a logged set, identified by set_id or as the latest set of exercise_name.",
        args_model=DeleteSetArgs,
        handler=run_delete_set,
        mutating=True,
    ),
    ToolSpec(
        name="get_today_summary",
        description="Get today's workout totals and top exercises.",
        args_model=NoArgs,
        handler=run_today_summary,
    ),
    ToolSpec(
        name="get_exercise_report",
        description="Get a focused report and trend for a specific exercise.",
        args_model=ExerciseReportArgs,
        handler=run_exercise_report,
    ),
    ToolSpec(
        name="get_focus_suggestions",
        description="Get prioritized suggestions for what the user should work on today based on imbalance and recency.",
        args_model=NoArgs,
        handler=run_focus_suggestions,
    ),
    ToolSpec(
        name="set_weight_unit",
        description="Set local default weight unit preference.",
        args_model=SetWeightUnitArgs,
        handler=run_set_weight_unit,
    ),
    ToolSpec(
        name="set_sound",
        description="Enable or disable local tactile sound preference.",
        args_model=SetSoundArgs,
        handler=run_set_sound,
    ),
]

def build_registry() -> ToolRegistry:
    return ToolRegistry(TOOL_SPECS)

__all__ = ["TOOL_SPECS", "build_registry"]
