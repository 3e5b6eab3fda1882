"""Workload analysis before and after scheduling.

``analyze_feasibility`` is the pre-flight check: it compares the time the
subtasks still need with the free time in the horizon and reports issues and
ranked suggestions. ``analyze_schedule`` reviews a generated schedule.
Neither modifies its inputs.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from datetime import date, timedelta
from typing import Any, Iterable, Sequence

from sessionplan.models.calendar import CalendarEvent, CommittedSession, DayTimeSlots
from sessionplan.models.subtask import Subtask
from sessionplan.schemas.feasibility import (
    FeasibilityAnalysis,
    FeasibilityIssue,
    FeasibilitySuggestion,
    IssueSeverity,
    IssueType,
    SuggestionPriority,
    SuggestionType,
)
from sessionplan.schemas.schedule import SchedulingOptions, SchedulingResult
from sessionplan.services.progress import validate_durations
from sessionplan.services.scheduling import effective_horizon, resolve_start_date
from sessionplan.services.windows import AvailabilityIndex

logger = logging.getLogger(__name__)

ACCEPTABLE_DEFICIT_RATIO = 0.2
CRITICAL_DEFICIT_RATIO = 0.5
TIGHT_DEADLINE_DAYS = 3
IMBALANCE_RATIO_LIMIT = 2.5
HEAVY_DAY_HOURS = 6

PRIORITY_RANK = {
    SuggestionPriority.HIGH: 0,
    SuggestionPriority.MEDIUM: 1,
    SuggestionPriority.LOW: 2,
}


def _suggestion_priority(severity: IssueSeverity) -> SuggestionPriority:
    if severity in (IssueSeverity.CRITICAL, IssueSeverity.HIGH):
        return SuggestionPriority.HIGH
    if severity == IssueSeverity.MEDIUM:
        return SuggestionPriority.MEDIUM
    return SuggestionPriority.LOW


def _hours(minutes: int) -> str:
    return f"{minutes / 60:.1f}"


def _deadline_issue(
    days_until_due: int, required: int
) -> tuple[list[FeasibilityIssue], list[FeasibilitySuggestion]]:
    if days_until_due <= 0:
        severity = IssueSeverity.CRITICAL
        description = "The due date has already passed or is today"
    elif days_until_due < TIGHT_DEADLINE_DAYS:
        severity = IssueSeverity.MEDIUM
        description = f"Only {days_until_due} day(s) left before the due date"
    else:
        return [], []
    issue = FeasibilityIssue(
        type=IssueType.DEADLINE_TOO_TIGHT,
        severity=severity,
        description=description,
        suggested_actions=[SuggestionType.EXTEND_DEADLINE],
    )
    suggestion = FeasibilitySuggestion(
        type=SuggestionType.EXTEND_DEADLINE,
        priority=_suggestion_priority(severity),
        description="Move the due date later to spread the work out",
        action_required=f"Extend the due date by at least {TIGHT_DEADLINE_DAYS - max(0, days_until_due)} day(s)",
        estimated_impact_minutes=required,
    )
    return [issue], [suggestion]


def _insufficient_time_issue(
    required: int, available: int, deficit: int, subtasks: Sequence[Subtask]
) -> tuple[list[FeasibilityIssue], list[FeasibilitySuggestion]]:
    if deficit <= 0:
        return [], []
    severity = IssueSeverity.CRITICAL if deficit > required * CRITICAL_DEFICIT_RATIO else IssueSeverity.HIGH
    priority = _suggestion_priority(severity)
    issue = FeasibilityIssue(
        type=IssueType.INSUFFICIENT_TIME,
        severity=severity,
        description=(
            f"Subtasks need {_hours(required)} hours but only {_hours(available)} hours "
            f"are free ({_hours(deficit)} hours short)"
        ),
        affected_subtask_ids=[s.id for s in subtasks],
        suggested_actions=[
            SuggestionType.INCREASE_AVAILABILITY,
            SuggestionType.EXTEND_DEADLINE,
            SuggestionType.REDUCE_SUBTASKS,
        ],
    )
    suggestions = [
        FeasibilitySuggestion(
            type=SuggestionType.INCREASE_AVAILABILITY,
            priority=priority,
            description="Add more available time slots to your weekly schedule",
            action_required=f"Add about {_hours(deficit)} hours of availability",
            estimated_impact_minutes=deficit,
        ),
        FeasibilitySuggestion(
            type=SuggestionType.EXTEND_DEADLINE,
            priority=priority,
            description="Push the due date back to gain more free time",
            action_required="Extend the due date",
            estimated_impact_minutes=deficit,
        ),
    ]
    # Longest subtasks first.
    recoverable = 0
    dropped = 0
    for subtask in sorted(subtasks, key=lambda s: -s.remaining_time):
        if recoverable >= deficit:
            break
        recoverable += subtask.remaining_time
        dropped += 1
    suggestions.append(
        FeasibilitySuggestion(
            type=SuggestionType.REDUCE_SUBTASKS,
            priority=SuggestionPriority.MEDIUM,
            description="Remove or postpone some subtasks",
            action_required=f"Postpone {dropped} of the longest subtask(s)",
            estimated_impact_minutes=min(recoverable, deficit),
        )
    )
    return [issue], suggestions


def _too_long_issues(
    subtasks: Sequence[Subtask], largest_window: int
) -> tuple[list[FeasibilityIssue], list[FeasibilitySuggestion]]:
    too_long = [s for s in subtasks if not s.can_be_split and s.remaining_time > largest_window]
    if not too_long:
        return [], []
    overflow = sum(s.remaining_time - largest_window for s in too_long)
    issue = FeasibilityIssue(
        type=IssueType.SUBTASK_TOO_LONG,
        severity=IssueSeverity.HIGH,
        description=(
            f"{len(too_long)} subtask(s) cannot be split and are longer than the "
            f"largest free window ({largest_window} minutes)"
        ),
        affected_subtask_ids=[s.id for s in too_long],
        suggested_actions=[SuggestionType.ENABLE_SPLITTING, SuggestionType.REDUCE_DURATION],
    )
    suggestions = [
        FeasibilitySuggestion(
            type=SuggestionType.ENABLE_SPLITTING,
            priority=SuggestionPriority.HIGH,
            description="Allow long subtasks to be split into several sessions",
            action_required=f"Enable splitting for: {', '.join(s.title or s.id for s in too_long)}",
            estimated_impact_minutes=sum(s.remaining_time for s in too_long),
        ),
        FeasibilitySuggestion(
            type=SuggestionType.REDUCE_DURATION,
            priority=SuggestionPriority.MEDIUM,
            description="Shorten the subtasks so each fits in one free window",
            action_required=f"Reduce each to at most {largest_window} minutes",
            estimated_impact_minutes=overflow,
        ),
    ]
    return [issue], suggestions


def _no_slots_issue(
    subtasks: Sequence[Subtask], smallest_session: int, largest_window: int
) -> tuple[list[FeasibilityIssue], list[FeasibilitySuggestion]]:
    if largest_window >= smallest_session:
        return [], []
    issue = FeasibilityIssue(
        type=IssueType.NO_SUITABLE_SLOTS,
        severity=IssueSeverity.CRITICAL,
        description=(
            f"No free window is at least {smallest_session} minutes long"
            if largest_window
            else "There is no free time in the scheduling horizon"
        ),
        affected_subtask_ids=[s.id for s in subtasks],
        suggested_actions=[SuggestionType.INCREASE_AVAILABILITY],
    )
    suggestion = FeasibilitySuggestion(
        type=SuggestionType.INCREASE_AVAILABILITY,
        priority=SuggestionPriority.HIGH,
        description="Add longer available time slots",
        action_required=f"Add at least one slot of {smallest_session} minutes or more",
        estimated_impact_minutes=smallest_session,
    )
    return [issue], [suggestion]


def _rank_suggestions(suggestions: Iterable[FeasibilitySuggestion]) -> list[FeasibilitySuggestion]:
    """Keep the strongest suggestion per type, high priority and big impact first."""
    best: dict[SuggestionType, FeasibilitySuggestion] = {}
    for suggestion in suggestions:
        current = best.get(suggestion.type)
        if current is None or (
            PRIORITY_RANK[suggestion.priority], -suggestion.estimated_impact_minutes
        ) < (PRIORITY_RANK[current.priority], -current.estimated_impact_minutes):
            best[suggestion.type] = suggestion
    return sorted(
        best.values(),
        key=lambda s: (PRIORITY_RANK[s.priority], -s.estimated_impact_minutes, s.type.value),
    )


def analyze_feasibility(
    subtasks: Sequence[Subtask],
    availability: DayTimeSlots,
    commitments: Iterable[CommittedSession] = (),
    events: Iterable[CalendarEvent] = (),
    options: SchedulingOptions | None = None,
) -> FeasibilityAnalysis:
    """Check whether ``subtasks`` can fit before committing to a schedule."""
    try:
        return _analyze_feasibility(subtasks, availability, commitments, events, options or SchedulingOptions())
    except Exception:
        logger.exception("Unexpected error while analyzing feasibility")
        return FeasibilityAnalysis(
            is_feasible=False,
            required_minutes=0,
            available_minutes=0,
            deficit_minutes=0,
            feasibility_score=0.0,
        )


def _analyze_feasibility(
    subtasks: Sequence[Subtask],
    availability: DayTimeSlots,
    commitments: Iterable[CommittedSession],
    events: Iterable[CalendarEvent],
    options: SchedulingOptions,
) -> FeasibilityAnalysis:
    targets = []
    for subtask in subtasks:
        subtask = validate_durations(subtask).corrected
        if not subtask.completed and subtask.remaining_time > 0:
            targets.append(subtask)

    start = resolve_start_date(options)
    horizon = effective_horizon(options, start)
    index = AvailabilityIndex(availability, commitments, events, start_date=start, horizon_days=horizon)

    required = sum(s.remaining_time for s in targets)
    available = index.total_minutes(options.daily_cap_minutes)
    largest_window = index.largest_window()
    if options.daily_cap_minutes is not None:
        largest_window = min(largest_window, options.daily_cap_minutes)
    deficit = max(0, required - available)

    issues: list[FeasibilityIssue] = []
    suggestions: list[FeasibilitySuggestion] = []
    if options.due_date is not None:
        found, suggested = _deadline_issue((options.due_date - start).days, required)
        issues.extend(found)
        suggestions.extend(suggested)

    has_usable_window = True
    if targets:
        smallest_session = min(s.min_session_minutes for s in targets)
        has_usable_window = largest_window >= smallest_session
        for found, suggested in (
            _insufficient_time_issue(required, available, deficit, targets),
            _too_long_issues(targets, largest_window),
            _no_slots_issue(targets, smallest_session, largest_window),
        ):
            issues.extend(found)
            suggestions.extend(suggested)

    analysis = FeasibilityAnalysis(
        is_feasible=deficit <= required * ACCEPTABLE_DEFICIT_RATIO and has_usable_window,
        required_minutes=required,
        available_minutes=available,
        deficit_minutes=deficit,
        feasibility_score=available / required if required else 1.0,
        largest_window_minutes=largest_window,
        horizon_days=horizon,
        issues=issues,
        suggestions=_rank_suggestions(suggestions),
        can_proceed_with_auto_scheduling=has_usable_window,
    )
    logger.info(
        f"Feasibility: required={required} available={available} deficit={deficit} "
        f"feasible={analysis.is_feasible}"
    )
    return analysis


def build_scheduling_guidance(analysis: FeasibilityAnalysis) -> dict[str, Any]:
    """Turn an analysis into a short message and the steps a user should take."""
    blocking = [
        issue for issue in analysis.issues
        if issue.severity in (IssueSeverity.CRITICAL, IssueSeverity.HIGH)
    ]
    steps = [
        s.action_required for s in analysis.suggestions if s.priority == SuggestionPriority.HIGH
    ]

    if analysis.is_feasible and not blocking:
        message = "There is enough free time to schedule everything."
    elif analysis.can_proceed_with_auto_scheduling:
        message = (
            f"Only {analysis.feasibility_score:.0%} of the needed time is available. "
            "A partial schedule can be generated, but some work may be left over."
        )
    else:
        message = "No usable free time was found, so nothing can be scheduled yet."

    if blocking:
        message += " " + " ".join(f"{issue.description}." for issue in blocking)

    return {
        "should_proceed": analysis.can_proceed_with_auto_scheduling,
        "user_message": message,
        "actionable_steps": steps,
    }


def _daily_minutes(result: SchedulingResult) -> dict[date, int]:
    totals: dict[date, int] = defaultdict(int)
    for session in result.sessions:
        totals[session.date] += session.duration
    return dict(sorted(totals.items()))


def _check_unscheduled_subtasks(
    unscheduled: list[Subtask], unscheduled_minutes: int
) -> list[dict[str, Any]]:
    if not unscheduled:
        return []
    return [{
        "type": "unscheduled_subtasks",
        "severity": "hard",
        "title": "Unscheduled Subtasks",
        "message": f"{len(unscheduled)} subtask(s) ({_hours(unscheduled_minutes)} hours) couldn't be placed in your available time.",
        "subtasks": [
            {"id": s.id, "title": s.title, "minutes": s.remaining_time}
            for s in unscheduled[:5]
        ],
        "suggestions": [
            f"Add about {_hours(unscheduled_minutes)} hours of availability",
            "Extend the due date",
            "Enable splitting for long subtasks",
        ],
    }]


def _check_partially_scheduled(result: SchedulingResult, missing_minutes: int) -> list[dict[str, Any]]:
    if not result.partially_scheduled_subtask_ids:
        return []
    return [{
        "type": "partially_scheduled",
        "severity": "soft",
        "title": "Partially Scheduled Subtasks",
        "message": f"{len(result.partially_scheduled_subtask_ids)} subtask(s) are missing {_hours(missing_minutes)} hours of sessions.",
        "subtask_ids": list(result.partially_scheduled_subtask_ids),
        "suggestions": [
            "Add shorter free slots to fit the remaining pieces",
            "Lower the minimum session length for these subtasks",
        ],
    }]


def _check_daily_cap(daily_minutes: dict[date, int], cap: int | None) -> list[dict[str, Any]]:
    if cap is None:
        return []
    over = {day: minutes for day, minutes in daily_minutes.items() if minutes > cap}
    if not over:
        return []
    return [{
        "type": "daily_cap_exceeded",
        "severity": "hard",
        "title": "Daily Limit Exceeded",
        "message": f"{len(over)} day(s) exceed the daily limit of {cap} minutes.",
        "days": [day.isoformat() for day in over],
        "suggestions": ["Regenerate the schedule with the same daily limit"],
    }]


def _check_schedule_imbalance(daily_minutes: dict[date, int]) -> list[dict[str, Any]]:
    if len(daily_minutes) < 2:
        return []
    max_day, max_minutes = max(daily_minutes.items(), key=lambda x: x[1])
    min_day, min_minutes = min(daily_minutes.items(), key=lambda x: x[1])
    ratio = max_minutes / min_minutes if min_minutes > 0 else float("inf")
    if ratio <= IMBALANCE_RATIO_LIMIT:
        return []
    return [{
        "type": "schedule_imbalance",
        "severity": "soft",
        "title": "Schedule Imbalance",
        "message": f"{max_day.isoformat()} ({_hours(max_minutes)}h) vs {min_day.isoformat()} ({_hours(min_minutes)}h) = {ratio:.1f}x difference.",
        "suggestions": [
            f"Redistribute: Move {(max_minutes - min_minutes) / 120:.1f} hours from {max_day.isoformat()} to {min_day.isoformat()}",
            "Or use a daily limit to spread the work",
        ],
    }]


def _check_consecutive_heavy_days(daily_minutes: dict[date, int]) -> list[dict[str, Any]]:
    """Three or more calendar days in a row above the heavy-day threshold."""
    streaks: list[list[tuple[date, int]]] = []
    current: list[tuple[date, int]] = []
    for day, minutes in sorted(daily_minutes.items()):
        heavy = minutes > HEAVY_DAY_HOURS * 60
        if heavy and current and day - current[-1][0] == timedelta(days=1):
            current.append((day, minutes))
            continue
        if len(current) >= 3:
            streaks.append(current)
        current = [(day, minutes)] if heavy else []
    if len(current) >= 3:
        streaks.append(current)
    if not streaks:
        return []

    longest = max(streaks, key=len)
    total = sum(minutes for _, minutes in longest)
    return [{
        "type": "consecutive_heavy_days",
        "severity": "soft",
        "title": "Consecutive Heavy Days",
        "message": f"{len(longest)} consecutive heavy days ({_hours(total)}h total) - burnout risk.",
        "days": [day.isoformat() for day, _ in longest],
        "suggestions": [
            f"Redistribute: Move {total / len(longest) / 60:.1f} hours to lighter days",
            "Add buffer days between heavy days",
        ],
    }]


def _check_deadline_overrun(result: SchedulingResult, due_date: date | None) -> list[dict[str, Any]]:
    if due_date is None or result.completion_date is None or result.completion_date <= due_date:
        return []
    late = [s for s in result.sessions if s.date > due_date]
    return [{
        "type": "deadline_overrun",
        "severity": "hard",
        "title": "Finishes After Due Date",
        "message": f"{len(late)} session(s) fall after the due date {due_date.isoformat()}.",
        "suggestions": [
            "Extend the due date",
            "Add availability before the due date",
        ],
    }]


def analyze_schedule(
    result: SchedulingResult,
    subtasks: Sequence[Subtask],
    options: SchedulingOptions | None = None,
) -> dict[str, Any]:
    """Review a generated schedule and return warnings plus summary metrics."""
    options = options or SchedulingOptions()
    by_id = {s.id: s for s in subtasks}
    daily_minutes = _daily_minutes(result)

    unscheduled = [by_id[i] for i in result.unscheduled_subtask_ids if i in by_id]
    unscheduled_minutes = sum(s.remaining_time for s in unscheduled)
    placed_by_id: dict[str, int] = defaultdict(int)
    for session in result.sessions:
        placed_by_id[session.subtask_id] += session.duration
    missing_minutes = sum(
        max(0, by_id[i].remaining_time - placed_by_id[i])
        for i in result.partially_scheduled_subtask_ids
        if i in by_id
    )

    warnings: list[dict[str, Any]] = []
    warnings.extend(_check_unscheduled_subtasks(unscheduled, unscheduled_minutes))
    warnings.extend(_check_partially_scheduled(result, missing_minutes))
    warnings.extend(_check_daily_cap(daily_minutes, options.daily_cap_minutes))
    warnings.extend(_check_schedule_imbalance(daily_minutes))
    warnings.extend(_check_consecutive_heavy_days(daily_minutes))
    warnings.extend(_check_deadline_overrun(result, options.due_date))

    values = list(daily_minutes.values())
    max_minutes = max(values) if values else 0
    min_minutes = min(values) if values else 0
    return {
        "warnings": warnings,
        "metrics": {
            "total_scheduled_hours": result.total_scheduled_minutes / 60,
            "unscheduled_hours": unscheduled_minutes / 60,
            "unscheduled_subtask_count": len(unscheduled),
            "daily_distribution": {day.isoformat(): minutes / 60 for day, minutes in daily_minutes.items()},
            "imbalance_ratio": max_minutes / min_minutes if min_minutes > 0 else 1.0,
        },
    }
