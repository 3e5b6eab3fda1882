"""Free-window computation over the weekly availability template.

A *window* is what is left of an availability slot on a concrete date after
every committed session and calendar event on that date is subtracted.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass
from datetime import date
from typing import Iterable, Sequence

from sessionplan.core.time_arithmetic import (
    MINUTES_PER_DAY,
    add_days,
    minutes_to_time,
    try_parse_hhmm,
    weekday_name,
)
from sessionplan.models.calendar import (
    CalendarEvent,
    CommittedSession,
    DayTimeSlots,
    TimeSlot,
)

logger = logging.getLogger(__name__)

Range = tuple[int, int]


@dataclass(frozen=True)
class FreeWindow:
    date: date
    start: int
    end: int

    @property
    def size(self) -> int:
        return self.end - self.start

    @property
    def time_slot(self) -> TimeSlot:
        return TimeSlot(start=minutes_to_time(self.start), end=minutes_to_time(self.end))


def merge_ranges(ranges: Iterable[Range]) -> list[Range]:
    """Sort and merge overlapping or touching ranges."""
    merged: list[Range] = []
    for start, end in sorted(r for r in ranges if r[1] > r[0]):
        if merged and start <= merged[-1][1]:
            merged[-1] = (merged[-1][0], max(merged[-1][1], end))
        else:
            merged.append((start, end))
    return merged


def subtract_ranges(slot: Range, occupied: Iterable[Range]) -> list[Range]:
    """Return the parts of ``slot`` not covered by ``occupied``, ordered by start."""
    slot_start, slot_end = slot
    if slot_end <= slot_start:
        return []
    free: list[Range] = []
    cursor = slot_start
    for busy_start, busy_end in merge_ranges(occupied):
        if busy_end <= cursor:
            continue
        if busy_start >= slot_end:
            break
        if busy_start > cursor:
            free.append((cursor, busy_start))
        cursor = max(cursor, busy_end)
        if cursor >= slot_end:
            break
    if cursor < slot_end:
        free.append((cursor, slot_end))
    return free


def _commitment_range(commitment: CommittedSession) -> Range | None:
    start = try_parse_hhmm(commitment.time_slot.start)
    end = try_parse_hhmm(commitment.time_slot.end)
    if start is None or end is None:
        logger.warning(
            f"Skipping commitment {commitment.owner_id} on {commitment.date}: "
            f"malformed slot {commitment.time_slot.start}-{commitment.time_slot.end}"
        )
        return None
    if end <= start:
        return None
    return start, end


def event_range_on(event: CalendarEvent, day: date) -> Range | None:
    """Portion of a timed event that falls on ``day``; multi-day events are clipped."""
    if event.is_all_day:
        return None
    first_day = event.start.date()
    last_day = event.end.date()
    if day < first_day or day > last_day:
        return None
    start = event.start.hour * 60 + event.start.minute if day == first_day else 0
    end = event.end.hour * 60 + event.end.minute if day == last_day else MINUTES_PER_DAY
    if end <= start:
        return None
    return start, end


def occupied_ranges_for_day(
    day: date,
    commitments: Iterable[CommittedSession] = (),
    events: Iterable[CalendarEvent] = (),
) -> list[Range]:
    ranges: list[Range] = []
    for commitment in commitments:
        if commitment.date != day:
            continue
        occupied = _commitment_range(commitment)
        if occupied:
            ranges.append(occupied)
    for event in events:
        occupied = event_range_on(event, day)
        if occupied:
            ranges.append(occupied)
    return merge_ranges(ranges)


def _windows_for_range(day: date, slot: Range, occupied: Sequence[Range]) -> list[FreeWindow]:
    return [FreeWindow(date=day, start=s, end=e) for s, e in subtract_ranges(slot, occupied)]


def find_free_windows(
    slot: TimeSlot,
    day: date,
    commitments: Iterable[CommittedSession] = (),
    events: Iterable[CalendarEvent] = (),
) -> list[FreeWindow]:
    """Free sub-windows of one availability slot on ``day``.

    Commitments and events on other dates are ignored. A degenerate or
    malformed slot yields no windows.
    """
    bounds = slot.to_minutes()
    if bounds is None:
        logger.warning(f"Ignoring unusable slot {slot.start}-{slot.end} on {day}")
        return []
    return _windows_for_range(day, bounds, occupied_ranges_for_day(day, commitments, events))


def template_ranges(availability: DayTimeSlots, weekday: str) -> list[Range]:
    """Usable slot ranges for a weekday; overlapping slots are merged."""
    ranges: list[Range] = []
    for slot in availability.for_weekday(weekday):
        bounds = slot.to_minutes()
        if bounds is None:
            logger.warning(f"Ignoring unusable {weekday} slot {slot.start}-{slot.end}")
            continue
        ranges.append(bounds)
    ordered = sorted(ranges)
    if any(nxt[0] < prev[1] for prev, nxt in zip(ordered, ordered[1:])):
        logger.warning(f"Overlapping {weekday} slots in availability template, merging them")
        return merge_ranges(ordered)
    return ordered


class AvailabilityIndex:
    """Every free window over a horizon, computed once per call.

    ``occupy`` records a new busy range and re-derives that date's windows
    through the same window computation, so lookups after a placement match
    what ``find_free_windows`` would return with the placement committed.
    """

    def __init__(
        self,
        availability: DayTimeSlots,
        commitments: Iterable[CommittedSession] = (),
        events: Iterable[CalendarEvent] = (),
        *,
        start_date: date,
        horizon_days: int,
    ) -> None:
        self.start_date = start_date
        self.horizon_days = max(0, horizon_days)
        self.dates = [add_days(start_date, offset) for offset in range(self.horizon_days)]

        commitments = list(commitments)
        events = [event for event in events if not event.is_all_day]
        commitments_by_date: dict[date, list[CommittedSession]] = defaultdict(list)
        for commitment in commitments:
            commitments_by_date[commitment.date].append(commitment)

        self._slots: dict[date, list[Range]] = {}
        self._busy: dict[date, list[Range]] = {}
        self._windows: dict[date, list[FreeWindow]] = {}
        template_cache: dict[str, list[Range]] = {}
        for day in self.dates:
            weekday = weekday_name(day)
            if weekday not in template_cache:
                template_cache[weekday] = template_ranges(availability, weekday)
            self._slots[day] = template_cache[weekday]
            self._busy[day] = occupied_ranges_for_day(day, commitments_by_date.get(day, ()), events)
            self._rebuild(day)

    def _rebuild(self, day: date) -> None:
        windows: list[FreeWindow] = []
        for slot in self._slots[day]:
            windows.extend(_windows_for_range(day, slot, self._busy[day]))
        self._windows[day] = windows

    def windows_on(self, day: date) -> list[FreeWindow]:
        return list(self._windows.get(day, ()))

    def entries(self) -> list[FreeWindow]:
        """All windows, largest first, ties broken by date then start."""
        flat = [window for day in self.dates for window in self._windows[day]]
        return sorted(flat, key=lambda w: (-w.size, w.date, w.start))

    def occupy(self, day: date, start: int, end: int) -> None:
        if day not in self._busy:
            return
        start = max(0, start)
        end = min(MINUTES_PER_DAY, end)
        if end <= start:
            return
        self._busy[day] = merge_ranges([*self._busy[day], (start, end)])
        self._rebuild(day)

    def minutes_by_date(self) -> dict[date, int]:
        return {day: sum(w.size for w in self._windows[day]) for day in self.dates}

    def total_minutes(self, daily_cap: int | None = None) -> int:
        total = 0
        for minutes in self.minutes_by_date().values():
            total += min(minutes, daily_cap) if daily_cap is not None else minutes
        return total

    def largest_window(self) -> int:
        entries = self.entries()
        return entries[0].size if entries else 0
