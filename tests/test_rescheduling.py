from datetime import date, datetime

from sessionplan.models.calendar import CalendarEvent, CommittedSession, DayTimeSlots, TimeSlot
from sessionplan.models.subtask import LearningPhase, Subtask, SubtaskDifficulty
from sessionplan.schemas.reschedule import (
    ItemPriority,
    RescheduleItem,
    RescheduleOptions,
    RescheduleReason,
    UrgencyLevel,
)
from sessionplan.schemas.schedule import SchedulingMode, SchedulingOptions, SubtaskSession
from sessionplan.services.rescheduling import (
    find_conflicting_sessions,
    intelligent_reschedule,
    priority_score,
    reschedule_conflicts,
    urgency_level,
    validate_slot_conflict,
    validate_task_duration,
)
from sessionplan.services.scheduling import schedule_subtasks, sessions_to_commitments

MONDAY = date(2025, 1, 6)
TUESDAY = date(2025, 1, 7)
WEDNESDAY = date(2025, 1, 8)
DAYS = ("monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday")


def _every_day(*slots: tuple[str, str]) -> DayTimeSlots:
    return DayTimeSlots(**{day: [TimeSlot(start=s, end=e) for s, e in slots] for day in DAYS})


def _session(subtask_id: str, day: date, start: str, end: str) -> SubtaskSession:
    return SubtaskSession(subtask_id=subtask_id, date=day, time_slot=TimeSlot(start=start, end=end), duration=60)


def _commitment(owner: str, day: date, start: str, end: str) -> CommittedSession:
    return CommittedSession(owner_id=owner, date=day, time_slot=TimeSlot(start=start, end=end), duration=60)


def _event(start: datetime, end: datetime, all_day: bool = False) -> CalendarEvent:
    return CalendarEvent(id="event", title="Dentist", start=start, end=end, is_all_day=all_day)


def _reschedule_options(**kwargs) -> RescheduleOptions:
    kwargs.setdefault("reference_date", MONDAY)
    return RescheduleOptions(**kwargs)


def test_find_conflicting_sessions():
    sessions = [_session("a", MONDAY, "09:00", "10:00"), _session("b", TUESDAY, "09:00", "10:00")]
    events = [
        _event(datetime(2025, 1, 6, 0, 0), datetime(2025, 1, 6, 23, 59), all_day=True),
        _event(datetime(2025, 1, 7, 9, 59), datetime(2025, 1, 7, 11, 0)),
    ]

    conflicting, clean = find_conflicting_sessions(sessions, events)
    touching, _ = find_conflicting_sessions(sessions, [_event(datetime(2025, 1, 7, 10, 0), datetime(2025, 1, 7, 11, 0))])
    late, _ = find_conflicting_sessions(sessions, [], due_date=MONDAY)

    assert [s.subtask_id for s in conflicting] == ["b"]
    assert [s.subtask_id for s in clean] == ["a"]
    assert touching == []
    assert [s.subtask_id for s in late] == ["b"]


def test_bulk_reschedule_moves_only_conflicting_sessions():
    subtasks = [
        Subtask(id="a", estimated_duration=60, order=1),
        Subtask(id="b", estimated_duration=60, order=2),
    ]
    availability = _every_day(("09:00", "10:00"))
    options = SchedulingOptions(start_date=MONDAY, horizon_days=3, mode=SchedulingMode.STRICT)
    original = schedule_subtasks(subtasks, availability, options=options)
    event = _event(datetime(2025, 1, 7, 9, 0), datetime(2025, 1, 7, 10, 30))

    result = reschedule_conflicts(subtasks, original.sessions, availability, events=[event], options=options)

    assert result.success is True
    assert result.kept_sessions == [s for s in original.sessions if s.subtask_id == "a"]
    assert [s.subtask_id for s in result.discarded_sessions] == ["b"]
    assert [(s.subtask_id, s.date) for s in result.sessions] == [("a", MONDAY), ("b", WEDNESDAY)]
    assert result.rescheduled.total_scheduled_minutes == 60


def test_bulk_reschedule_renumbers_segments_of_moved_subtasks():
    essay = Subtask(id="essay", estimated_duration=180, max_session_minutes=90)
    availability = _every_day(("09:00", "10:30"))
    options = SchedulingOptions(start_date=MONDAY, horizon_days=3, mode=SchedulingMode.STRICT)
    original = schedule_subtasks([essay], availability, options=options)
    event = _event(datetime(2025, 1, 7, 9, 30), datetime(2025, 1, 7, 10, 0))

    result = reschedule_conflicts([essay], original.sessions, availability, events=[event], options=options)

    assert [(s.date, s.duration) for s in original.sessions] == [(MONDAY, 90), (TUESDAY, 90)]
    assert [(s.date, s.duration) for s in result.sessions] == [
        (MONDAY, 90),
        (TUESDAY, 30),
        (TUESDAY, 30),
        (WEDNESDAY, 30),
    ]
    assert [s.segment_index for s in result.sessions] == [1, 2, 3, 4]
    assert all(s.total_segments == 4 and s.is_segmented for s in result.sessions)
    owners = [c.owner_id for c in sessions_to_commitments(result.sessions, owner_id="t")]
    assert owners == ["t_essay_segment_1", "t_essay_segment_2", "t_essay_segment_3", "t_essay_segment_4"]


def test_bulk_reschedule_without_conflicts_returns_input():
    sessions = [_session("a", MONDAY, "09:00", "10:00")]

    result = reschedule_conflicts(
        [Subtask(id="a", estimated_duration=60)], sessions, _every_day(("09:00", "10:00")), events=[]
    )

    assert result.success is True
    assert result.sessions == sessions
    assert result.rescheduled is None


def test_urgency_levels():
    assert urgency_level(TUESDAY, MONDAY) == UrgencyLevel.CRITICAL
    assert urgency_level(date(2025, 1, 9), MONDAY) == UrgencyLevel.HIGH
    assert urgency_level(date(2025, 1, 13), MONDAY) == UrgencyLevel.MEDIUM
    assert urgency_level(date(2025, 1, 20), MONDAY) == UrgencyLevel.LOW
    assert urgency_level(None, MONDAY) == UrgencyLevel.LOW


def test_priority_score_adds_up_components():
    item = RescheduleItem(
        id="x",
        duration=120,
        priority=ItemPriority.HIGH,
        due_date=TUESDAY,
        difficulty=SubtaskDifficulty.HARD,
        phase=LearningPhase.OUTPUT,
    )

    assert priority_score(item, MONDAY) == 50 + 100 + 25 + 30 + 20
    assert priority_score(RescheduleItem(id="y", duration=30), MONDAY) == 20


def test_critical_item_takes_earliest_slot():
    item = RescheduleItem(id="x", duration=60, difficulty=SubtaskDifficulty.EASY, due_date=TUESDAY)

    result = intelligent_reschedule(
        item, [], _every_day(("09:00", "10:00"), ("19:00", "21:00")), options=_reschedule_options()
    )

    assert result.success is True
    assert result.urgency == UrgencyLevel.CRITICAL
    assert result.reason == RescheduleReason.URGENT_DEADLINE
    assert result.new_slot.date == TUESDAY
    assert result.new_slot.time_slot == TimeSlot(start="09:00", end="10:00")


def test_hard_knowledge_item_prefers_morning():
    item = RescheduleItem(id="x", duration=60, difficulty=SubtaskDifficulty.HARD, phase=LearningPhase.KNOWLEDGE)
    schedule = [_commitment("x", date(2025, 1, 3), "09:00", "10:00")]

    result = intelligent_reschedule(
        item, schedule, _every_day(("09:00", "10:00"), ("19:00", "21:00")), options=_reschedule_options()
    )

    assert result.new_slot.date == TUESDAY
    assert result.new_slot.time_of_day == "morning"
    assert result.new_slot.score == 140
    assert result.original_slot.date == date(2025, 1, 3)
    assert result.days_shifted == 4
    assert result.reason == RescheduleReason.OPTIMAL_TIME


def test_reflection_item_prefers_evening():
    item = RescheduleItem(id="x", duration=60, phase=LearningPhase.REFLECTION)

    result = intelligent_reschedule(
        item, [], _every_day(("09:00", "10:00"), ("19:00", "21:00")), options=_reschedule_options()
    )

    assert result.new_slot.time_slot == TimeSlot(start="19:00", end="20:00")
    assert result.reason == RescheduleReason.NEXT_AVAILABLE


def test_preferred_time_of_day_is_rewarded():
    item = RescheduleItem(id="x", duration=60, phase=LearningPhase.KNOWLEDGE)

    result = intelligent_reschedule(
        item,
        [],
        _every_day(("09:00", "10:00"), ("19:00", "21:00")),
        options=_reschedule_options(preferred_time_of_day="evening"),
    )

    assert result.new_slot.time_of_day == "evening"


def test_own_sessions_do_not_block_the_item():
    item = RescheduleItem(id="x", duration=60, due_date=WEDNESDAY)
    schedule = [_commitment("x", TUESDAY, "09:00", "10:00")]

    result = intelligent_reschedule(item, schedule, _every_day(("09:00", "10:00")), options=_reschedule_options())

    assert result.urgency == UrgencyLevel.HIGH
    assert result.new_slot.date == TUESDAY
    assert result.days_shifted == 0


def test_no_slot_returns_suggestions():
    item = RescheduleItem(id="x", duration=60, due_date=date(2025, 1, 20))
    schedule = [
        _commitment("other", TUESDAY, "09:00", "10:00"),
        _commitment("other", WEDNESDAY, "09:00", "10:00"),
    ]

    result = intelligent_reschedule(
        item, schedule, _every_day(("09:00", "10:00")), options=_reschedule_options(max_days_to_search=2)
    )

    assert result.success is False
    assert result.reason == RescheduleReason.NO_AVAILABLE_SLOTS
    assert result.new_slot is None
    assert result.suggestions[0] == "Split the task into 2 shorter sessions"
    assert "Extend the due date to widen the search" in result.suggestions


def test_item_longer_than_any_slot_is_rejected():
    item = RescheduleItem(id="x", duration=200)

    result = intelligent_reschedule(item, [], _every_day(("19:00", "21:00")), options=_reschedule_options())

    assert result.success is False
    assert result.reason == RescheduleReason.TASK_TOO_LONG
    assert "Split task into 2 sessions" in result.suggestions


def test_compressed_duration_is_restored():
    item = RescheduleItem(id="x", duration=50, original_duration=100)

    check = validate_task_duration(item, _every_day(("19:00", "21:00")))
    result = intelligent_reschedule(item, [], _every_day(("19:00", "21:00")), options=_reschedule_options())

    assert check.duration == 100
    assert check.is_valid is False
    assert "compressed by 50%" in check.issues[0]
    assert result.new_slot.time_slot == TimeSlot(start="19:00", end="20:40")


def test_short_durations_are_flagged():
    check = validate_task_duration(
        RescheduleItem(id="x", duration=10, difficulty=SubtaskDifficulty.HARD), _every_day(("09:00", "10:00"))
    )

    assert check.is_valid is False
    assert len(check.issues) == 2
    assert check.recommend_split is False


def test_validate_slot_conflict():
    commitments = [_commitment("other", MONDAY, "09:00", "10:00")]

    clash = validate_slot_conflict(MONDAY, TimeSlot(start="09:30", end="10:30"), commitments)
    own = validate_slot_conflict(MONDAY, TimeSlot(start="09:30", end="10:30"), commitments, exclude_owner_id="other")
    early = validate_slot_conflict(MONDAY, TimeSlot(start="07:00", end="08:00"), commitments)
    late = validate_slot_conflict(TUESDAY, TimeSlot(start="21:30", end="22:30"), commitments)
    invalid = validate_slot_conflict(MONDAY, TimeSlot(start="11:00", end="10:00"), commitments)

    assert clash["has_conflict"] is True
    assert clash["conflicts"] == ["other"]
    assert own["has_conflict"] is False
    assert early["warnings"] == ["Session starts before 08:00"]
    assert late["warnings"] == ["Session ends after 22:00"]
    assert invalid["has_conflict"] is True
