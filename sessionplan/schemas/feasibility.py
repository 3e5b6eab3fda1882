from enum import Enum as PyEnum

from pydantic import BaseModel, Field


class IssueType(str, PyEnum):
    INSUFFICIENT_TIME = "insufficient_time"
    SUBTASK_TOO_LONG = "subtask_too_long"
    DEADLINE_TOO_TIGHT = "deadline_too_tight"
    NO_SUITABLE_SLOTS = "no_suitable_slots"


class IssueSeverity(str, PyEnum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class SuggestionType(str, PyEnum):
    EXTEND_DEADLINE = "extend_deadline"
    REDUCE_SUBTASKS = "reduce_subtasks"
    REDUCE_DURATION = "reduce_duration"
    ENABLE_SPLITTING = "enable_splitting"
    INCREASE_AVAILABILITY = "increase_availability"


class SuggestionPriority(str, PyEnum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class FeasibilityIssue(BaseModel):
    type: IssueType
    severity: IssueSeverity
    description: str
    affected_subtask_ids: list[str] = Field(default_factory=list)
    suggested_actions: list[SuggestionType] = Field(default_factory=list)


class FeasibilitySuggestion(BaseModel):
    type: SuggestionType
    priority: SuggestionPriority
    description: str
    action_required: str
    estimated_impact_minutes: int = 0


class FeasibilityAnalysis(BaseModel):
    is_feasible: bool
    required_minutes: int
    available_minutes: int
    deficit_minutes: int
    feasibility_score: float
    largest_window_minutes: int = 0
    horizon_days: int = 0
    issues: list[FeasibilityIssue] = Field(default_factory=list)
    suggestions: list[FeasibilitySuggestion] = Field(default_factory=list)
    can_proceed_with_auto_scheduling: bool = False
