from sessionplan.models.subtask import (
    LearningPhase,
    SessionRecord,
    Subtask,
    SubtaskDifficulty,
)
from sessionplan.models.calendar import (
    CalendarEvent,
    CommittedSession,
    DayTimeSlots,
    TimeSlot,
)

__all__ = [
    "LearningPhase",
    "SessionRecord",
    "Subtask",
    "SubtaskDifficulty",
    "CalendarEvent",
    "CommittedSession",
    "DayTimeSlots",
    "TimeSlot",
]
