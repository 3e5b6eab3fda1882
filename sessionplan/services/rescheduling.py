"""Moving sessions that no longer fit.

Two flavours: ``reschedule_conflicts`` re-runs the scheduler for every subtask
that lost a session to a new calendar event or an earlier due date, and
``intelligent_reschedule`` finds one new slot for a single overdue item.
"""

from __future__ import annotations

import logging
import math
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date
from typing import Iterable, Sequence

from sessionplan.core.time_arithmetic import (
    WEEKDAYS,
    add_days,
    days_until,
    minutes_to_time,
    time_of_day,
    try_parse_hhmm,
)
from sessionplan.models.calendar import (
    CalendarEvent,
    CommittedSession,
    DayTimeSlots,
    TimeSlot,
)
from sessionplan.models.subtask import LearningPhase, Subtask, SubtaskDifficulty
from sessionplan.schemas.reschedule import (
    BulkRescheduleResult,
    ItemPriority,
    RescheduleItem,
    RescheduleOptions,
    RescheduleReason,
    RescheduleResult,
    SlotChoice,
    UrgencyLevel,
)
from sessionplan.schemas.schedule import SchedulingOptions, SubtaskSession
from sessionplan.services.scheduling import schedule_subtasks, sessions_to_commitments
from sessionplan.services.windows import AvailabilityIndex, event_range_on, template_ranges

logger = logging.getLogger(__name__)

COMPRESSION_RATIO = 0.8
MIN_MEANINGFUL_MINUTES = 15
MIN_HARD_TASK_MINUTES = 30
EARLY_START = 8 * 60
LATE_END = 22 * 60

PRIORITY_POINTS = {
    ItemPriority.HIGH: 50,
    ItemPriority.MEDIUM: 30,
    ItemPriority.LOW: 10,
}
NO_PRIORITY_POINTS = 20

DIFFICULTY_POINTS = {
    SubtaskDifficulty.HARD: 25,
    SubtaskDifficulty.MEDIUM: 15,
    SubtaskDifficulty.EASY: 5,
}

PHASE_POINTS = {
    LearningPhase.KNOWLEDGE: 20,
    LearningPhase.PRACTICE: 15,
    LearningPhase.APPLICATION: 25,
    LearningPhase.REFLECTION: 10,
    LearningPhase.OUTPUT: 30,
    LearningPhase.REVIEW: 5,
}

# Times of day each phase works best in, with the bonus for matching.
PHASE_AFFINITY = {
    LearningPhase.KNOWLEDGE: (("morning",), 10),
    LearningPhase.PRACTICE: (("morning", "afternoon"), 8),
    LearningPhase.APPLICATION: (("afternoon",), 10),
    LearningPhase.REFLECTION: (("evening",), 12),
    LearningPhase.OUTPUT: (("morning", "afternoon"), 10),
}


def _ranges_overlap(a: tuple[int, int], b: tuple[int, int]) -> bool:
    return a[0] < b[1] and b[0] < a[1]


def _session_range(time_slot: TimeSlot) -> tuple[int, int] | None:
    start = try_parse_hhmm(time_slot.start)
    end = try_parse_hhmm(time_slot.end)
    if start is None or end is None or end <= start:
        return None
    return start, end


def _clashes_with_events(session: SubtaskSession, events: Sequence[CalendarEvent]) -> bool:
    occupied = _session_range(session.time_slot)
    if occupied is None:
        return False
    for event in events:
        busy = event_range_on(event, session.date)
        if busy and _ranges_overlap(occupied, busy):
            return True
    return False


def find_conflicting_sessions(
    sessions: Iterable[SubtaskSession],
    events: Iterable[CalendarEvent],
    due_date: date | None = None,
) -> tuple[list[SubtaskSession], list[SubtaskSession]]:
    """Split sessions into ``(conflicting, clean)``.

    A session conflicts when a timed event overlaps it on its date or when it
    falls after ``due_date``. All-day events never conflict.
    """
    events = [event for event in events if not event.is_all_day]
    conflicting: list[SubtaskSession] = []
    clean: list[SubtaskSession] = []
    for session in sessions:
        if due_date is not None and session.date > due_date:
            conflicting.append(session)
            continue
        if _clashes_with_events(session, events):
            conflicting.append(session)
        else:
            clean.append(session)
    return conflicting, clean


def reschedule_conflicts(
    subtasks: Sequence[Subtask],
    current_sessions: Sequence[SubtaskSession],
    availability: DayTimeSlots,
    commitments: Iterable[CommittedSession] = (),
    events: Iterable[CalendarEvent] = (),
    options: SchedulingOptions | None = None,
) -> BulkRescheduleResult:
    """Replace sessions that clash with ``events`` (or run past the due date).

    Only the owners of discarded sessions are rescheduled, and only for the
    minutes they lost. Sessions without a conflict are returned untouched and
    block time for the new placements.
    """
    try:
        return _reschedule_conflicts(
            subtasks, current_sessions, availability, list(commitments), list(events), options or SchedulingOptions()
        )
    except Exception:
        logger.exception("Unexpected error while rescheduling conflicting sessions")
        return BulkRescheduleResult(
            success=False, sessions=list(current_sessions), message="system error"
        )


def _renumber_segments(sessions: list[SubtaskSession], subtask_ids: set[str]) -> list[SubtaskSession]:
    """Re-annotate segments of ``subtask_ids`` across kept and new sessions.

    ``sessions`` must already be in date order.
    """
    counts: dict[str, int] = defaultdict(int)
    for session in sessions:
        if session.subtask_id in subtask_ids:
            counts[session.subtask_id] += 1

    seen: dict[str, int] = defaultdict(int)
    renumbered: list[SubtaskSession] = []
    for session in sessions:
        if session.subtask_id not in subtask_ids:
            renumbered.append(session)
            continue
        seen[session.subtask_id] += 1
        segmented = counts[session.subtask_id] > 1
        renumbered.append(
            session.model_copy(
                update={
                    "segment_index": seen[session.subtask_id] if segmented else None,
                    "total_segments": counts[session.subtask_id] if segmented else None,
                    "is_segmented": segmented,
                }
            )
        )
    return renumbered


def _reschedule_conflicts(
    subtasks: Sequence[Subtask],
    current_sessions: Sequence[SubtaskSession],
    availability: DayTimeSlots,
    commitments: list[CommittedSession],
    events: list[CalendarEvent],
    options: SchedulingOptions,
) -> BulkRescheduleResult:
    conflicting, clean = find_conflicting_sessions(current_sessions, events, options.due_date)
    if not conflicting:
        return BulkRescheduleResult(
            success=True,
            kept_sessions=list(current_sessions),
            sessions=list(current_sessions),
            message="No conflicting sessions",
        )

    lost_minutes: dict[str, int] = defaultdict(int)
    for session in conflicting:
        lost_minutes[session.subtask_id] += session.duration
    owners = [subtask for subtask in subtasks if subtask.id in lost_minutes]
    logger.info(
        f"Rescheduling {len(conflicting)} conflicting sessions for {len(owners)} subtasks, "
        f"keeping {len(clean)} sessions"
    )

    result = schedule_subtasks(
        owners,
        availability,
        [*commitments, *sessions_to_commitments(clean)],
        events,
        options,
        minutes_override=dict(lost_minutes),
    )
    sessions = _renumber_segments(
        sorted(
            [*clean, *result.sessions],
            key=lambda s: (s.date, try_parse_hhmm(s.time_slot.start) or 0, s.order),
        ),
        set(lost_minutes),
    )
    moved = result.total_scheduled_minutes
    lost = sum(lost_minutes.values())
    message = f"Moved {moved} of {lost} minutes from {len(conflicting)} conflicting sessions"
    if result.unscheduled_subtask_ids:
        message += f"; could not reschedule {len(result.unscheduled_subtask_ids)} subtasks"
    return BulkRescheduleResult(
        success=result.success,
        kept_sessions=clean,
        discarded_sessions=conflicting,
        rescheduled=result,
        sessions=sessions,
        message=message,
    )


@dataclass
class DurationCheck:
    is_valid: bool
    duration: int
    max_available_slot: int
    recommend_split: bool = False
    issues: list[str] = field(default_factory=list)
    suggestions: list[str] = field(default_factory=list)


def validate_task_duration(item: RescheduleItem, availability: DayTimeSlots) -> DurationCheck:
    """Sanity-check an item's duration before looking for a slot.

    A duration compressed below 80% of the original estimate is restored to the
    original; ``duration`` on the result is the one to schedule.
    """
    issues: list[str] = []
    suggestions: list[str] = []
    duration = item.duration

    largest = 0
    for weekday in WEEKDAYS:
        for start, end in template_ranges(availability, weekday):
            largest = max(largest, end - start)

    if item.original_duration and item.duration < item.original_duration * COMPRESSION_RATIO:
        compression = round((1 - item.duration / item.original_duration) * 100)
        issues.append(
            f"Duration compressed by {compression}% ({item.original_duration}min -> {item.duration}min)"
        )
        suggestions.append("Use original estimated duration for rescheduling")
        duration = item.original_duration
        logger.warning(f"Item {item.id}: restoring compressed duration {item.duration} -> {duration}")

    recommend_split = duration > largest
    if recommend_split:
        issues.append(f"Task duration ({duration}min) exceeds largest available slot ({largest}min)")
        if largest > 0:
            suggestions.append(f"Split task into {math.ceil(duration / largest)} sessions")
        suggestions.append("Extend available time slots")
        suggestions.append("Consider reducing task scope")

    if duration < MIN_MEANINGFUL_MINUTES:
        issues.append(f"Duration too short ({duration}min) for meaningful work")
        suggestions.append("Combine with related tasks")
        suggestions.append("Review task breakdown accuracy")

    if item.difficulty == SubtaskDifficulty.HARD and duration < MIN_HARD_TASK_MINUTES:
        issues.append("Hard task with very short duration may indicate compression")
        suggestions.append("Review task complexity and time estimates")

    return DurationCheck(
        is_valid=not issues,
        duration=duration,
        max_available_slot=largest,
        recommend_split=recommend_split,
        issues=issues,
        suggestions=suggestions,
    )


def urgency_level(due_date: date | None, reference: date) -> UrgencyLevel:
    if due_date is None:
        return UrgencyLevel.LOW
    days = days_until(due_date, reference)
    if days <= 1:
        return UrgencyLevel.CRITICAL
    if days <= 3:
        return UrgencyLevel.HIGH
    if days <= 7:
        return UrgencyLevel.MEDIUM
    return UrgencyLevel.LOW


def priority_score(item: RescheduleItem, reference: date) -> int:
    score = PRIORITY_POINTS.get(item.priority, NO_PRIORITY_POINTS)

    if item.due_date is not None:
        days = days_until(item.due_date, reference)
        if days <= 1:
            score += 100
        elif days <= 3:
            score += 60
        elif days <= 7:
            score += 30
        elif days <= 14:
            score += 15

    if item.difficulty is not None:
        score += DIFFICULTY_POINTS[item.difficulty]
    if item.phase is not None:
        score += PHASE_POINTS[item.phase]

    if item.duration >= 120:
        score += 20
    elif item.duration >= 90:
        score += 15
    elif item.duration >= 60:
        score += 10
    return score


def _slot_score(
    item: RescheduleItem,
    day: date,
    start: int,
    window_size: int,
    reference: date,
    preferred: str,
) -> float:
    period = time_of_day(start)
    score = 100.0
    if preferred == "any" or preferred == period:
        score += 20
    score -= 5 * days_until(day, reference)

    if item.difficulty == SubtaskDifficulty.HARD and period == "morning":
        score += 15
    elif item.difficulty == SubtaskDifficulty.MEDIUM and period != "evening":
        score += 10
    elif item.difficulty == SubtaskDifficulty.EASY:
        score += 5

    if item.phase in PHASE_AFFINITY:
        periods, bonus = PHASE_AFFINITY[item.phase]
        if period in periods:
            score += bonus

    if window_size >= 120:
        score += 10
    elif window_size >= 90:
        score += 5
    return score


def _original_slot(item: RescheduleItem, current_schedule: Sequence[CommittedSession]) -> SlotChoice | None:
    own = sorted(
        (c for c in current_schedule if c.owner_id == item.id),
        key=lambda c: (c.date, try_parse_hhmm(c.time_slot.start) or 0),
    )
    if not own:
        return None
    first = own[0]
    return SlotChoice(
        date=first.date,
        time_slot=first.time_slot,
        time_of_day=time_of_day(try_parse_hhmm(first.time_slot.start) or 0),
    )


def _no_slot_suggestions(item: RescheduleItem, duration: int, search_days: int) -> list[str]:
    suggestions = [
        f"Free up {duration} minutes in the next {search_days} days",
        "Add more available time slots",
    ]
    if item.due_date is not None:
        suggestions.insert(0, "Extend the due date to widen the search")
    if duration >= 60:
        suggestions.insert(0, f"Split the task into {math.ceil(duration / 45)} shorter sessions")
    return suggestions


def intelligent_reschedule(
    item: RescheduleItem,
    current_schedule: Sequence[CommittedSession],
    availability: DayTimeSlots,
    events: Iterable[CalendarEvent] = (),
    options: RescheduleOptions | None = None,
) -> RescheduleResult:
    """Find the best new slot for one overdue or conflicting item."""
    try:
        return _intelligent_reschedule(item, current_schedule, availability, list(events), options or RescheduleOptions())
    except Exception:
        logger.exception(f"Unexpected error while rescheduling item {item.id}")
        return RescheduleResult(
            success=False,
            reason=RescheduleReason.SYSTEM_ERROR,
            explanation="system error",
        )


def _intelligent_reschedule(
    item: RescheduleItem,
    current_schedule: Sequence[CommittedSession],
    availability: DayTimeSlots,
    events: list[CalendarEvent],
    options: RescheduleOptions,
) -> RescheduleResult:
    reference = options.reference_date or date.today()
    urgency = urgency_level(item.due_date, reference)
    score = priority_score(item, reference)
    original = _original_slot(item, current_schedule)

    check = validate_task_duration(item, availability)
    if check.recommend_split:
        return RescheduleResult(
            success=False,
            original_slot=original,
            reason=RescheduleReason.TASK_TOO_LONG,
            explanation=(
                f"'{item.title or item.id}' needs {check.duration} minutes, longer than any "
                f"available slot ({check.max_available_slot} minutes)."
            ),
            suggestions=check.suggestions,
            urgency=urgency,
            priority_score=score,
        )
    duration = check.duration

    others = [c for c in current_schedule if c.owner_id != item.id]
    index = AvailabilityIndex(
        availability,
        others,
        events,
        start_date=add_days(reference, 1),
        horizon_days=options.max_days_to_search,
    )
    candidates: list[SlotChoice] = []
    for day in index.dates:
        for window in index.windows_on(day):
            if window.size < duration:
                continue
            candidates.append(
                SlotChoice(
                    date=day,
                    time_slot=TimeSlot(
                        start=minutes_to_time(window.start),
                        end=minutes_to_time(window.start + duration),
                    ),
                    score=_slot_score(item, day, window.start, window.size, reference, options.preferred_time_of_day),
                    time_of_day=time_of_day(window.start),
                )
            )

    if not candidates:
        logger.warning(f"No slot found for item {item.id} within {options.max_days_to_search} days")
        return RescheduleResult(
            success=False,
            original_slot=original,
            reason=RescheduleReason.NO_AVAILABLE_SLOTS,
            explanation=(
                f"No free slot of {duration} minutes was found in the next "
                f"{options.max_days_to_search} days."
            ),
            suggestions=_no_slot_suggestions(item, duration, options.max_days_to_search),
            urgency=urgency,
            priority_score=score,
        )

    def earliest(choice: SlotChoice) -> tuple:
        return (choice.date, try_parse_hhmm(choice.time_slot.start) or 0)

    if urgency in (UrgencyLevel.CRITICAL, UrgencyLevel.HIGH):
        chosen = min(candidates, key=earliest)
    else:
        chosen = min(candidates, key=lambda c: (-c.score, *earliest(c)))

    days_shifted = days_until(chosen.date, original.date if original else reference)
    if urgency in (UrgencyLevel.CRITICAL, UrgencyLevel.HIGH):
        reason = RescheduleReason.URGENT_DEADLINE
        explanation = f"Due soon ({urgency.value} urgency), so the earliest free slot was taken."
    elif days_shifted <= 1:
        reason = RescheduleReason.NEXT_AVAILABLE
        explanation = "Moved to the next available slot."
    elif chosen.time_of_day == "morning":
        reason = RescheduleReason.OPTIMAL_TIME
        explanation = "Moved to a morning slot, when focus tends to be highest."
    else:
        reason = RescheduleReason.BEST_FIT
        explanation = "Moved to the slot that best fits the task's difficulty and phase."
    explanation += (
        f" New time: {chosen.date.isoformat()} {chosen.time_slot.start}-{chosen.time_slot.end}."
    )

    suggestions = list(check.suggestions)
    if urgency == UrgencyLevel.CRITICAL:
        suggestions.append("Start as soon as possible; the due date is within a day")
    if item.difficulty == SubtaskDifficulty.HARD and chosen.time_of_day == "evening":
        suggestions.append("Hard tasks usually go better earlier in the day")

    logger.info(f"Rescheduled item {item.id} to {chosen.date} {chosen.time_slot.start} ({reason.value})")
    return RescheduleResult(
        success=True,
        original_slot=original,
        new_slot=chosen,
        reason=reason,
        explanation=explanation,
        suggestions=suggestions,
        urgency=urgency,
        priority_score=score,
        days_shifted=days_shifted,
    )


def validate_slot_conflict(
    day: date,
    time_slot: TimeSlot,
    commitments: Iterable[CommittedSession],
    exclude_owner_id: str | None = None,
) -> dict:
    """Check a manually chosen slot against existing commitments."""
    occupied = _session_range(time_slot)
    if occupied is None:
        return {
            "has_conflict": True,
            "conflicts": [],
            "warnings": [f"Invalid time slot {time_slot.start}-{time_slot.end}"],
            "suggestions": ["Choose an end time after the start time"],
        }

    conflicts = []
    for commitment in commitments:
        if commitment.date != day or commitment.owner_id == exclude_owner_id:
            continue
        busy = _session_range(commitment.time_slot)
        if busy and _ranges_overlap(occupied, busy):
            conflicts.append(commitment.owner_id)

    warnings = []
    if occupied[0] < EARLY_START:
        warnings.append("Session starts before 08:00")
    if occupied[1] > LATE_END:
        warnings.append("Session ends after 22:00")

    suggestions = []
    if conflicts:
        suggestions.append("Pick a time that does not overlap existing sessions")
    if warnings:
        suggestions.append("Consider a time between 08:00 and 22:00")
    return {
        "has_conflict": bool(conflicts),
        "conflicts": conflicts,
        "warnings": warnings,
        "suggestions": suggestions,
    }
