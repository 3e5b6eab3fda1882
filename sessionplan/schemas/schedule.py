from datetime import date
from enum import Enum as PyEnum

from pydantic import BaseModel, Field

from sessionplan.core.config import get_settings
from sessionplan.models.calendar import TimeSlot
from sessionplan.models.subtask import LearningPhase


class SchedulingMode(str, PyEnum):
    STRICT = "strict"
    FLEXIBLE = "flexible"


class SchedulingOptions(BaseModel):
    start_date: date | None = None
    skip_to_next_day: bool = Field(
        default_factory=lambda: get_settings().default_skip_to_next_day
    )
    horizon_days: int = Field(
        default_factory=lambda: get_settings().default_horizon_days, ge=1
    )
    inter_session_buffer_minutes: int = Field(
        default_factory=lambda: get_settings().default_buffer_minutes, ge=0
    )
    daily_cap_minutes: int | None = Field(default=None, ge=1)
    mode: SchedulingMode = Field(
        default_factory=lambda: SchedulingMode(get_settings().default_mode)
    )
    respect_dependencies: bool = True
    flexibility_factor: float = Field(
        default_factory=lambda: get_settings().default_flexibility_factor,
        ge=0.1,
        le=1.0,
    )
    due_date: date | None = None


class SubtaskSession(BaseModel):
    subtask_id: str
    date: date
    time_slot: TimeSlot
    duration: int
    order: int = 0
    phase: LearningPhase | None = None
    segment_index: int | None = None
    total_segments: int | None = None
    is_segmented: bool = False


class SchedulingResult(BaseModel):
    success: bool
    sessions: list[SubtaskSession] = Field(default_factory=list)
    unscheduled_subtask_ids: list[str] = Field(default_factory=list)
    partially_scheduled_subtask_ids: list[str] = Field(default_factory=list)
    total_scheduled_minutes: int = 0
    completion_date: date | None = None
    message: str = ""

    @property
    def scheduled_subtasks(self) -> list[SubtaskSession]:
        return self.sessions
