from datetime import date

import pytest

from sessionplan.models.calendar import DayTimeSlots, TimeSlot
from sessionplan.models.subtask import Subtask
from sessionplan.schemas.feasibility import (
    IssueSeverity,
    IssueType,
    SuggestionPriority,
    SuggestionType,
)
from sessionplan.schemas.schedule import SchedulingOptions, SchedulingResult, SubtaskSession
from sessionplan.services import workload_analyzer
from sessionplan.services.scheduling import schedule_subtasks
from sessionplan.services.workload_analyzer import (
    analyze_feasibility,
    analyze_schedule,
    build_scheduling_guidance,
)

MONDAY = date(2025, 1, 6)
DAYS = ("monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday")


def _build_subtask(subtask_id: str, minutes: int, **kwargs) -> Subtask:
    return Subtask(id=subtask_id, estimated_duration=minutes, **kwargs)


def _every_day(start: str, end: str) -> DayTimeSlots:
    return DayTimeSlots(**{day: [TimeSlot(start=start, end=end)] for day in DAYS})


def _options(**kwargs) -> SchedulingOptions:
    kwargs.setdefault("start_date", MONDAY)
    return SchedulingOptions(**kwargs)


def _session(subtask_id: str, day: date, start: str, end: str, minutes: int) -> SubtaskSession:
    return SubtaskSession(
        subtask_id=subtask_id, date=day, time_slot=TimeSlot(start=start, end=end), duration=minutes
    )


def test_enough_time_is_feasible_and_schedules():
    subtasks = [_build_subtask("a", 60), _build_subtask("b", 60)]
    availability = _every_day("09:00", "10:00")
    options = _options(horizon_days=7)

    analysis = analyze_feasibility(subtasks, availability, options=options)
    result = schedule_subtasks(subtasks, availability, options=options)

    assert analysis.is_feasible is True
    assert analysis.required_minutes == 120
    assert analysis.available_minutes == 420
    assert analysis.deficit_minutes == 0
    assert analysis.feasibility_score == pytest.approx(3.5)
    assert analysis.issues == []
    assert analysis.can_proceed_with_auto_scheduling is True
    assert result.success is True


def test_large_deficit_is_critical_with_ranked_suggestions():
    analysis = analyze_feasibility(
        [_build_subtask("thesis", 600)], _every_day("09:00", "10:00"), options=_options(horizon_days=3)
    )

    assert analysis.is_feasible is False
    assert analysis.can_proceed_with_auto_scheduling is True
    assert analysis.deficit_minutes == 420
    issue = analysis.issues[0]
    assert issue.type == IssueType.INSUFFICIENT_TIME
    assert issue.severity == IssueSeverity.CRITICAL
    assert [s.type for s in analysis.suggestions] == [
        SuggestionType.EXTEND_DEADLINE,
        SuggestionType.INCREASE_AVAILABILITY,
        SuggestionType.REDUCE_SUBTASKS,
    ]
    assert analysis.suggestions[0].priority == SuggestionPriority.HIGH
    assert all(s.estimated_impact_minutes == 420 for s in analysis.suggestions)


def test_small_deficit_is_still_feasible():
    analysis = analyze_feasibility(
        [_build_subtask("essay", 200)], _every_day("09:00", "10:00"), options=_options(horizon_days=3)
    )

    assert analysis.deficit_minutes == 20
    assert analysis.is_feasible is True
    assert [(i.type, i.severity) for i in analysis.issues] == [
        (IssueType.INSUFFICIENT_TIME, IssueSeverity.HIGH)
    ]


def test_non_splittable_subtask_longer_than_any_window():
    analysis = analyze_feasibility(
        [_build_subtask("exam", 150, can_be_split=False)],
        _every_day("09:00", "10:00"),
        options=_options(horizon_days=7),
    )

    too_long = [i for i in analysis.issues if i.type == IssueType.SUBTASK_TOO_LONG]
    assert len(too_long) == 1
    assert too_long[0].severity == IssueSeverity.HIGH
    assert too_long[0].affected_subtask_ids == ["exam"]
    assert analysis.largest_window_minutes == 60
    assert SuggestionType.ENABLE_SPLITTING in [s.type for s in analysis.suggestions]


def test_deadline_issues():
    availability = _every_day("09:00", "12:00")
    subtasks = [_build_subtask("a", 30)]

    passed = analyze_feasibility(subtasks, availability, options=_options(due_date=MONDAY))
    tight = analyze_feasibility(subtasks, availability, options=_options(due_date=date(2025, 1, 8)))
    relaxed = analyze_feasibility(subtasks, availability, options=_options(due_date=date(2025, 1, 20)))

    assert [(i.type, i.severity) for i in passed.issues] == [
        (IssueType.DEADLINE_TOO_TIGHT, IssueSeverity.CRITICAL)
    ]
    assert [(i.type, i.severity) for i in tight.issues] == [
        (IssueType.DEADLINE_TOO_TIGHT, IssueSeverity.MEDIUM)
    ]
    assert relaxed.issues == []
    assert passed.horizon_days == 7
    assert relaxed.horizon_days == 14


def test_no_window_long_enough_blocks_auto_scheduling():
    analysis = analyze_feasibility(
        [_build_subtask("a", 30, min_session_minutes=25)],
        _every_day("09:00", "09:20"),
        options=_options(horizon_days=7),
    )

    assert analysis.is_feasible is False
    assert analysis.can_proceed_with_auto_scheduling is False
    no_slots = [i for i in analysis.issues if i.type == IssueType.NO_SUITABLE_SLOTS]
    assert no_slots[0].severity == IssueSeverity.CRITICAL


def test_available_minutes_are_capped_per_day():
    analysis = analyze_feasibility(
        [_build_subtask("a", 60)],
        _every_day("09:00", "17:00"),
        options=_options(horizon_days=2, daily_cap_minutes=60),
    )

    assert analysis.available_minutes == 120


def test_nothing_to_do_is_feasible():
    analysis = analyze_feasibility(
        [_build_subtask("a", 30, completed=True)], DayTimeSlots(), options=_options()
    )

    assert analysis.required_minutes == 0
    assert analysis.feasibility_score == 1.0
    assert analysis.is_feasible is True


def test_unexpected_errors_return_infeasible(monkeypatch: pytest.MonkeyPatch):
    def _explode(*args, **kwargs):
        raise RuntimeError("boom")

    monkeypatch.setattr(workload_analyzer, "AvailabilityIndex", _explode)

    analysis = analyze_feasibility([_build_subtask("a", 30)], _every_day("09:00", "10:00"))

    assert analysis.is_feasible is False
    assert analysis.can_proceed_with_auto_scheduling is False


def test_guidance_summarizes_blocking_issues():
    ok = analyze_feasibility([_build_subtask("a", 30)], _every_day("09:00", "10:00"), options=_options())
    short = analyze_feasibility(
        [_build_subtask("thesis", 600)], _every_day("09:00", "10:00"), options=_options(horizon_days=3)
    )

    ok_guidance = build_scheduling_guidance(ok)
    short_guidance = build_scheduling_guidance(short)

    assert ok_guidance["should_proceed"] is True
    assert ok_guidance["actionable_steps"] == []
    assert short_guidance["should_proceed"] is True
    assert "30%" in short_guidance["user_message"]
    assert len(short_guidance["actionable_steps"]) == 2


def test_schedule_review_flags_unscheduled_and_heavy_days():
    subtasks = [_build_subtask("a", 1260), _build_subtask("b", 90)]
    result = SchedulingResult(
        success=False,
        sessions=[
            _session("a", date(2025, 1, 6), "08:00", "15:00", 420),
            _session("a", date(2025, 1, 7), "08:00", "15:00", 420),
            _session("a", date(2025, 1, 8), "08:00", "15:00", 420),
        ],
        unscheduled_subtask_ids=["b"],
        total_scheduled_minutes=1260,
        completion_date=date(2025, 1, 8),
    )

    review = analyze_schedule(result, subtasks, _options(due_date=date(2025, 1, 7)))

    types = [w["type"] for w in review["warnings"]]
    assert types == ["unscheduled_subtasks", "consecutive_heavy_days", "deadline_overrun"]
    assert review["metrics"]["total_scheduled_hours"] == 21
    assert review["metrics"]["unscheduled_hours"] == 1.5
    assert review["metrics"]["daily_distribution"]["2025-01-06"] == 7


def test_schedule_review_flags_imbalance_and_cap():
    subtasks = [_build_subtask("a", 360)]
    result = SchedulingResult(
        success=True,
        sessions=[
            _session("a", date(2025, 1, 6), "08:00", "13:00", 300),
            _session("a", date(2025, 1, 7), "08:00", "09:00", 60),
        ],
        total_scheduled_minutes=360,
        completion_date=date(2025, 1, 7),
    )

    review = analyze_schedule(result, subtasks, _options(daily_cap_minutes=240))

    types = [w["type"] for w in review["warnings"]]
    assert types == ["daily_cap_exceeded", "schedule_imbalance"]
    assert review["metrics"]["imbalance_ratio"] == 5
