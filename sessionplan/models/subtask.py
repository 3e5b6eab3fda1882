from datetime import date, datetime
from enum import Enum as PyEnum

from pydantic import BaseModel, ConfigDict, Field, computed_field, model_validator


class LearningPhase(str, PyEnum):
    KNOWLEDGE = "knowledge"
    PRACTICE = "practice"
    APPLICATION = "application"
    REFLECTION = "reflection"
    OUTPUT = "output"
    REVIEW = "review"


PHASE_ORDER = [
    LearningPhase.KNOWLEDGE,
    LearningPhase.PRACTICE,
    LearningPhase.APPLICATION,
    LearningPhase.REFLECTION,
    LearningPhase.OUTPUT,
    LearningPhase.REVIEW,
]


class SubtaskDifficulty(str, PyEnum):
    EASY = "easy"
    MEDIUM = "medium"
    HARD = "hard"


class SessionRecord(BaseModel):
    model_config = ConfigDict(frozen=True)

    date: date
    duration: int = Field(ge=0)
    notes: str | None = None
    segment_index: int | None = None
    total_segments: int | None = None


class Subtask(BaseModel):
    """A unit of work with an immutable duration estimate.

    ``estimated_duration`` (or ``user_duration_override`` when the user has
    corrected it) is the only source of truth for how long the subtask takes.
    ``total_duration``, ``recorded_remaining`` and ``recorded_progress`` are
    snapshots a store may have persisted; they are never trusted and are
    recomputed from ``time_spent``.
    """

    model_config = ConfigDict(frozen=True)

    id: str
    title: str = ""
    order: int = 0
    phase: LearningPhase | None = None
    difficulty: SubtaskDifficulty = SubtaskDifficulty.MEDIUM
    estimated_duration: int = Field(ge=0)
    user_duration_override: int | None = Field(default=None, ge=0)
    time_spent: int = Field(default=0, ge=0)
    can_be_split: bool = True
    min_session_minutes: int = Field(default=25, ge=1)
    max_session_minutes: int = Field(default=120, ge=1)
    completed: bool = False
    completed_at: datetime | None = None
    depends_on: tuple[str, ...] = ()
    session_history: tuple[SessionRecord, ...] = ()

    total_duration: int | None = None
    recorded_remaining: int | None = None
    recorded_progress: int | None = None

    @model_validator(mode="after")
    def validate_session_bounds(self) -> "Subtask":
        if self.min_session_minutes > self.max_session_minutes:
            raise ValueError(
                f"min_session_minutes ({self.min_session_minutes}) must not exceed "
                f"max_session_minutes ({self.max_session_minutes})"
            )
        return self

    @computed_field
    @property
    def effective_duration(self) -> int:
        if self.user_duration_override is not None:
            return self.user_duration_override
        return self.estimated_duration

    @computed_field
    @property
    def remaining_time(self) -> int:
        effective = self.effective_duration
        return max(0, min(effective, effective - self.time_spent))

    @computed_field
    @property
    def progress_percentage(self) -> int:
        effective = self.effective_duration
        if effective <= 0:
            return 0
        return min(100, round(self.time_spent / effective * 100))
