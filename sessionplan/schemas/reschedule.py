from datetime import date
from enum import Enum as PyEnum
from typing import Literal

from pydantic import BaseModel, Field

from sessionplan.core.config import get_settings
from sessionplan.models.calendar import TimeSlot
from sessionplan.models.subtask import LearningPhase, SubtaskDifficulty
from sessionplan.schemas.schedule import SchedulingResult, SubtaskSession


class ItemPriority(str, PyEnum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class UrgencyLevel(str, PyEnum):
    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class RescheduleReason(str, PyEnum):
    URGENT_DEADLINE = "urgent_deadline"
    NEXT_AVAILABLE = "next_available"
    OPTIMAL_TIME = "optimal_time"
    BEST_FIT = "best_fit"
    NO_AVAILABLE_SLOTS = "no_available_slots"
    TASK_TOO_LONG = "task_too_long"
    SYSTEM_ERROR = "system_error"


class RescheduleItem(BaseModel):
    id: str
    title: str = ""
    duration: int = Field(ge=0)
    original_duration: int | None = None
    priority: ItemPriority | None = None
    difficulty: SubtaskDifficulty | None = None
    due_date: date | None = None
    phase: LearningPhase | None = None


class RescheduleOptions(BaseModel):
    reference_date: date | None = None
    max_days_to_search: int = Field(
        default_factory=lambda: get_settings().reschedule_search_days, ge=1
    )
    preferred_time_of_day: Literal["morning", "afternoon", "evening", "any"] = "any"


class SlotChoice(BaseModel):
    date: date
    time_slot: TimeSlot
    score: float = 0
    time_of_day: str = ""


class RescheduleResult(BaseModel):
    success: bool
    original_slot: SlotChoice | None = None
    new_slot: SlotChoice | None = None
    reason: RescheduleReason
    explanation: str = ""
    suggestions: list[str] = Field(default_factory=list)
    urgency: UrgencyLevel = UrgencyLevel.LOW
    priority_score: int = 0
    days_shifted: int | None = None


class BulkRescheduleResult(BaseModel):
    success: bool
    kept_sessions: list[SubtaskSession] = Field(default_factory=list)
    discarded_sessions: list[SubtaskSession] = Field(default_factory=list)
    rescheduled: SchedulingResult | None = None
    sessions: list[SubtaskSession] = Field(default_factory=list)
    message: str = ""
