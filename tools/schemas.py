"""Argument models for every tool. These double as the JSON schemas sent to the model."""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from coach.models import WeightUnit

class ToolArgs(BaseModel):
    model_config = ConfigDict(extra="forbid", str_strip_whitespace=True)

class NoArgs(ToolArgs):
    pass

class LogSetArgs(ToolArgs):
    exercise_name: str = Field(..., min_length=1, max_length=80)
    reps: Optional[int] = Field(None, ge=1, le=1000)
    duration_seconds: Optional[int] = Field(None, ge=1, le=86_400)
    weight: Optional[float] = Field(None, ge=0, le=5000)
    unit: Optional[WeightUnit] = None

    @model_validator(mode="after")
    def check_exactly_one_measure(self):
        if (self.reps is None) == (self.duration_seconds is None):
            raise ValueError("Provide exactly one of reps or duration_seconds.")
        return self

class SetTargetArgs(ToolArgs):
    """Identifies one set: by id, or the latest set of an exercise."""
    set_id: Optional[str] = Field(None, max_length=64, description="Exact set id from an earlier tool result.")
    exercise_name: Optional[str] = Field(None, min_length=1, max_length=80, description="Targets the most recent set of this exercise.")

    @model_validator(mode="after")
    def check_target(self):
        if not self.set_id and not self.exercise_name:
            raise ValueError("Provide set_id or exercise_name.")
        return self

class UpdateSetArgs(SetTargetArgs):
    reps: Optional[int] = Field(None, ge=1, le=1000)
    duration_seconds: Optional[int] = Field(None, ge=1, le=86_400)
    weight: Optional[float] = Field(None, ge=0, le=5000)
    unit: Optional[WeightUnit] = None

    @model_validator(mode="after")
    def check_changes(self):
        if self.reps is None and self.duration_seconds is None and self.weight is None and self.unit is None:
            raise ValueError("Provide at least one of reps, duration_seconds, weight or unit to change.")
        if self.reps is not None and self.duration_seconds is not None:
            raise ValueError("A set has either reps or duration_seconds, not both.")
        return self

class DeleteSetArgs(SetTargetArgs):
    pass

class ExerciseReportArgs(ToolArgs):
    exercise_name: str = Field(..., min_length=1, max_length=80)

class SetWeightUnitArgs(ToolArgs):
    unit: WeightUnit

class SetSoundArgs(ToolArgs):
    enabled: bool
