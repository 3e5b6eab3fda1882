"""Greedy subtask allocator.

Subtasks are ordered (dependencies first, then by mode), and each one is
placed into free windows over a bounded horizon. When no window is large
enough for a whole subtask it is split into segments; when the subtask's
minimum session length cannot be met, the minimum is relaxed over at most
four rounds before the subtask is given up on.
"""

from __future__ import annotations

import heapq
import logging
import math
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date
from typing import Iterable, Mapping, Sequence

from sessionplan.core.time_arithmetic import add_days, minutes_to_time, time_to_minutes
from sessionplan.models.calendar import (
    CalendarEvent,
    CommittedSession,
    DayTimeSlots,
    TimeSlot,
)
from sessionplan.models.subtask import PHASE_ORDER, Subtask, SubtaskDifficulty
from sessionplan.schemas.schedule import (
    SchedulingMode,
    SchedulingOptions,
    SchedulingResult,
    SubtaskSession,
)
from sessionplan.services.dependencies import resolve_dependencies
from sessionplan.services.progress import validate_durations
from sessionplan.services.windows import AvailabilityIndex, FreeWindow

logger = logging.getLogger(__name__)

# Smallest session the engine places.
MIN_VIABLE_SESSION = 5
SUCCESS_RATIO = 0.8
SUFFICIENT_PROGRESS_RATIO = 0.5
MIN_HORIZON_DAYS = 7
FULL_HORIZON_RATIO = 0.8

DIFFICULTY_RANK = {
    SubtaskDifficulty.EASY: 1,
    SubtaskDifficulty.MEDIUM: 2,
    SubtaskDifficulty.HARD: 3,
}


@dataclass
class _Allocation:
    subtask: Subtask
    position: int
    needed: int
    windows: list[FreeWindow] = field(default_factory=list)
    durations: list[int] = field(default_factory=list)

    @property
    def placed(self) -> int:
        return sum(self.durations)

    @property
    def outstanding(self) -> int:
        return self.needed - self.placed

    @property
    def fully_placed(self) -> bool:
        return self.placed > 0 and self.outstanding < MIN_VIABLE_SESSION


def resolve_start_date(options: SchedulingOptions) -> date:
    start = options.start_date or date.today()
    if options.skip_to_next_day:
        start = add_days(start, 1)
    return start


def effective_horizon(options: SchedulingOptions, start: date) -> int:
    """Horizon in days, shortened to the due date unless it is far away."""
    horizon = options.horizon_days
    if options.due_date is None:
        return horizon
    days_until_due = (options.due_date - start).days
    if days_until_due > horizon * FULL_HORIZON_RATIO:
        return horizon
    return min(horizon, max(MIN_HORIZON_DAYS, days_until_due))


def round_floors(min_session: int) -> list[int]:
    """Minimum session length for each relaxation round; never above the base."""
    return [
        min_session,
        min(min_session, max(15, min_session - 10)),
        min(min_session, max(10, min_session - 15)),
        min(min_session, MIN_VIABLE_SESSION),
    ]


def _mode_key(subtask: Subtask, mode: SchedulingMode) -> tuple:
    if mode == SchedulingMode.STRICT:
        return (-subtask.remaining_time, subtask.order)
    phase_rank = PHASE_ORDER.index(subtask.phase) if subtask.phase else len(PHASE_ORDER)
    return (
        phase_rank,
        DIFFICULTY_RANK[subtask.difficulty],
        subtask.remaining_time,
        subtask.order,
    )


def order_subtasks(
    subtasks: Sequence[Subtask], options: SchedulingOptions
) -> tuple[list[Subtask], dict[str, list[str]]]:
    """Order subtasks for placement.

    Returns the order and, per subtask id, the prerequisites that must be
    placed before it. Mode ordering is applied as a priority queue over the
    dependency graph, so it never puts a dependent ahead of its prerequisite.
    """
    if not options.respect_dependencies:
        ranked = sorted(enumerate(subtasks), key=lambda item: (_mode_key(item[1], options.mode), item[0]))
        return [subtask for _, subtask in ranked], {}

    resolution = resolve_dependencies(subtasks)
    candidates = resolution.order
    position = {subtask.id: index for index, subtask in enumerate(candidates)}
    prerequisites: dict[str, list[str]] = defaultdict(list)
    dependents: dict[str, list[str]] = defaultdict(list)
    for dependent, prereq in resolution.edges:
        if prereq not in prerequisites[dependent]:
            prerequisites[dependent].append(prereq)
            dependents[prereq].append(dependent)

    by_id = {subtask.id: subtask for subtask in candidates}
    waiting = {subtask.id: len(prerequisites[subtask.id]) for subtask in candidates}
    ready = [
        (_mode_key(subtask, options.mode), position[subtask.id], subtask.id)
        for subtask in candidates
        if waiting[subtask.id] == 0
    ]
    heapq.heapify(ready)
    ordered: list[Subtask] = []
    while ready:
        _, _, subtask_id = heapq.heappop(ready)
        ordered.append(by_id[subtask_id])
        for dependent in dependents[subtask_id]:
            waiting[dependent] -= 1
            if waiting[dependent] == 0:
                heapq.heappush(ready, (_mode_key(by_id[dependent], options.mode), position[dependent], dependent))
    return ordered, dict(prerequisites)


def _session_minutes(outstanding: int, floor: int, max_session: int, size: int, cap_left: float) -> int:
    minutes = int(min(outstanding, max_session, size, cap_left))
    tail = outstanding - minutes
    # Leave a tail of at least the floor.
    if 0 < tail < floor and outstanding - floor >= floor:
        minutes = outstanding - floor
    if minutes < floor:
        minutes = int(min(floor, outstanding, max_session, size, cap_left))
    return minutes


class _Allocator:
    def __init__(
        self,
        index: AvailabilityIndex,
        options: SchedulingOptions,
        start: date,
    ) -> None:
        self.index = index
        self.options = options
        self.start = start
        self.buffer = options.inter_session_buffer_minutes
        self.allocated_by_date: dict[date, int] = defaultdict(int)
        self.sessions_by_date: dict[date, int] = defaultdict(int)
        self.last_end: dict[str, tuple[date, int]] = {}

    def _cap_left(self, day: date) -> float:
        if self.options.daily_cap_minutes is None:
            return math.inf
        return self.options.daily_cap_minutes - self.allocated_by_date[day]

    def _not_before(self, prerequisites: Iterable[str]) -> tuple[date, int] | None:
        bounds = [self.last_end[prereq] for prereq in prerequisites if prereq in self.last_end]
        return max(bounds) if bounds else None

    def _rank_key(self, window: FreeWindow, outstanding: int, max_session: int) -> tuple:
        if self.options.mode == SchedulingMode.STRICT:
            return (window.date, -window.size, window.start)
        days_since_start = (window.date - self.start).days
        dispersal = math.floor(days_since_start * self.options.flexibility_factor) * 10
        score = dispersal - self.sessions_by_date[window.date] * 5
        if outstanding <= max_session:
            fit = abs(window.size - outstanding)
        else:
            fit = abs(window.size - min(90, max(30, outstanding)))
        return (-score, fit, window.date, window.start)

    def _candidates(
        self, allocation: _Allocation, floor: int, max_session: int, not_before: tuple[date, int] | None
    ) -> list[tuple[FreeWindow, int]]:
        outstanding = allocation.outstanding
        candidates: list[tuple[FreeWindow, int]] = []
        for day in self.index.dates:
            if not_before and day < not_before[0]:
                continue
            cap_left = self._cap_left(day)
            if cap_left <= 0:
                continue
            for window in self.index.windows_on(day):
                if not_before and day == not_before[0] and window.start < not_before[1]:
                    if window.end <= not_before[1]:
                        continue
                    window = FreeWindow(date=day, start=not_before[1], end=window.end)
                if window.size < floor:
                    continue
                minutes = _session_minutes(outstanding, floor, max_session, window.size, cap_left)
                if minutes >= 1 and (minutes >= floor or minutes >= outstanding):
                    candidates.append((window, minutes))
        return candidates

    def place(self, allocation: _Allocation, prerequisites: Sequence[str]) -> None:
        subtask = allocation.subtask
        if subtask.can_be_split:
            floors = round_floors(subtask.min_session_minutes)
            max_session = subtask.max_session_minutes
        else:
            floors = [allocation.needed]
            max_session = allocation.needed
        not_before = self._not_before(prerequisites)

        for round_number, floor in enumerate(floors, start=1):
            while allocation.outstanding > 0:
                candidates = self._candidates(allocation, floor, max_session, not_before)
                if not candidates:
                    break
                window, minutes = min(
                    candidates,
                    key=lambda item: self._rank_key(item[0], allocation.outstanding, max_session),
                )
                self._commit(allocation, window, minutes)
            if allocation.outstanding <= 0 or allocation.placed >= allocation.needed * SUFFICIENT_PROGRESS_RATIO:
                break
            logger.debug(
                f"Subtask {subtask.id}: round {round_number} placed {allocation.placed}/{allocation.needed} "
                f"minutes, relaxing minimum session length"
            )

        if allocation.windows:
            last = max((w.date, w.start + d) for w, d in zip(allocation.windows, allocation.durations))
            self.last_end[subtask.id] = last

    def _commit(self, allocation: _Allocation, window: FreeWindow, minutes: int) -> None:
        start = window.start
        end = start + minutes
        placed = FreeWindow(date=window.date, start=start, end=end)
        allocation.windows.append(placed)
        allocation.durations.append(minutes)
        self.allocated_by_date[window.date] += minutes
        self.sessions_by_date[window.date] += 1
        self.index.occupy(window.date, start - self.buffer, end + self.buffer)
        logger.debug(
            f"Placed {minutes} minutes of subtask {allocation.subtask.id} on "
            f"{window.date} {minutes_to_time(start)}-{minutes_to_time(end)}"
        )


def _build_sessions(allocations: Sequence[_Allocation]) -> list[SubtaskSession]:
    sessions: list[tuple[tuple, SubtaskSession]] = []
    for allocation in allocations:
        placements = sorted(zip(allocation.windows, allocation.durations), key=lambda p: (p[0].date, p[0].start))
        segmented = len(placements) > 1
        for segment_index, (window, minutes) in enumerate(placements, start=1):
            session = SubtaskSession(
                subtask_id=allocation.subtask.id,
                date=window.date,
                time_slot=window.time_slot,
                duration=minutes,
                order=allocation.subtask.order,
                phase=allocation.subtask.phase,
                segment_index=segment_index if segmented else None,
                total_segments=len(placements) if segmented else None,
                is_segmented=segmented,
            )
            sort_key = (window.date, window.start, allocation.subtask.order, allocation.position)
            sessions.append((sort_key, session))
    return [session for _, session in sorted(sessions, key=lambda item: item[0])]


def _build_message(
    allocations: Sequence[_Allocation],
    sessions: Sequence[SubtaskSession],
    completion_date: date | None,
    options: SchedulingOptions,
) -> str:
    total = len(allocations)
    full = sum(1 for a in allocations if a.fully_placed)
    partial = sum(1 for a in allocations if a.placed > 0 and not a.fully_placed)
    untouched = sum(1 for a in allocations if a.placed == 0)

    if full == total:
        message = f"Scheduled all {total} subtasks in {len(sessions)} sessions"
    elif full + partial == 0:
        return f"Could not schedule any of the {total} subtasks in the available time"
    else:
        message = f"Scheduled {full} of {total} subtasks"
        if partial:
            message += f", {partial} partially"
        if untouched:
            message += f", {untouched} not scheduled"

    segmented = {s.subtask_id for s in sessions if s.is_segmented}
    if segmented:
        message += f"; {len(segmented)} split into segments"

    missing = sum(max(0, a.outstanding) for a in allocations if not a.fully_placed)
    if missing:
        message += f"; {missing / 60:.1f} more hours needed"

    if options.due_date and completion_date:
        days_early = (options.due_date - completion_date).days
        if days_early > 0:
            message += f"; finishes {days_early} days before the due date"
        elif days_early < 0:
            message += f"; finishes {-days_early} days after the due date"
    return message


def schedule_subtasks(
    subtasks: Sequence[Subtask],
    availability: DayTimeSlots,
    commitments: Iterable[CommittedSession] = (),
    events: Iterable[CalendarEvent] = (),
    options: SchedulingOptions | None = None,
    *,
    minutes_override: Mapping[str, int] | None = None,
) -> SchedulingResult:
    """Allocate sessions for ``subtasks`` into the free time of ``availability``.

    ``minutes_override`` limits how many minutes to place per subtask id
    (capped at its remaining time); rescheduling uses it to re-place exactly
    the minutes it discarded.
    """
    try:
        return _schedule(subtasks, availability, commitments, events, options or SchedulingOptions(), minutes_override)
    except Exception:
        logger.exception("Unexpected error while scheduling subtasks")
        return SchedulingResult(success=False, message="system error")


def _schedule(
    subtasks: Sequence[Subtask],
    availability: DayTimeSlots,
    commitments: Iterable[CommittedSession],
    events: Iterable[CalendarEvent],
    options: SchedulingOptions,
    minutes_override: Mapping[str, int] | None,
) -> SchedulingResult:
    considered: list[Subtask] = []
    for subtask in subtasks:
        subtask = validate_durations(subtask).corrected
        if subtask.completed or subtask.remaining_time <= 0:
            continue
        if minutes_override is not None and minutes_override.get(subtask.id, 0) <= 0:
            continue
        considered.append(subtask)

    if not considered:
        return SchedulingResult(success=False, message="No subtasks to schedule")

    start = resolve_start_date(options)
    horizon = effective_horizon(options, start)
    index = AvailabilityIndex(
        availability, commitments, events, start_date=start, horizon_days=horizon
    )
    logger.info(
        f"Scheduling {len(considered)} subtasks from {start} over {horizon} days "
        f"in {options.mode.value} mode"
    )

    ordered, prerequisites = order_subtasks(considered, options)
    allocator = _Allocator(index, options, start)
    allocations: list[_Allocation] = []
    for position, subtask in enumerate(ordered):
        needed = subtask.remaining_time
        if minutes_override is not None:
            needed = min(needed, minutes_override[subtask.id])
        allocation = _Allocation(subtask=subtask, position=position, needed=needed)
        allocator.place(allocation, prerequisites.get(subtask.id, ()))
        allocations.append(allocation)

    sessions = _build_sessions(allocations)
    unscheduled = [a.subtask.id for a in allocations if a.placed == 0]
    partial = [a.subtask.id for a in allocations if a.placed > 0 and not a.fully_placed]
    fully_placed = sum(1 for a in allocations if a.fully_placed)
    completion_date = max((s.date for s in sessions), default=None)

    if unscheduled or partial:
        logger.warning(
            f"{len(unscheduled)} subtasks unscheduled and {len(partial)} partially scheduled"
        )

    return SchedulingResult(
        success=fully_placed / len(allocations) >= SUCCESS_RATIO,
        sessions=sessions,
        unscheduled_subtask_ids=unscheduled,
        partially_scheduled_subtask_ids=partial,
        total_scheduled_minutes=sum(s.duration for s in sessions),
        completion_date=completion_date,
        message=_build_message(allocations, sessions, completion_date, options),
    )


def sessions_to_commitments(
    sessions: Iterable[SubtaskSession], owner_id: str | None = None
) -> list[CommittedSession]:
    """Convert engine output into commitments, e.g. for persisting and feeding back in.

    Commitment owner ids are ``"{owner_id}_{subtask_id}"`` (plus
    ``"_segment_{n}"`` for segments), or just the subtask id without an owner.
    """
    commitments = []
    for session in sessions:
        commitment_id = f"{owner_id}_{session.subtask_id}" if owner_id else session.subtask_id
        if session.is_segmented:
            commitment_id += f"_segment_{session.segment_index}"
        commitments.append(
            CommittedSession(
                owner_id=commitment_id,
                date=session.date,
                time_slot=session.time_slot,
                duration=session.duration,
            )
        )
    return commitments


def occupied_slots_by_date(commitments: Iterable[CommittedSession]) -> dict[date, list[TimeSlot]]:
    grouped: dict[date, list[TimeSlot]] = defaultdict(list)
    for commitment in commitments:
        grouped[commitment.date].append(commitment.time_slot)
    for slots in grouped.values():
        slots.sort(key=lambda slot: time_to_minutes(slot.start))
    return dict(grouped)
