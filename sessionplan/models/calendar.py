from datetime import date, datetime

from pydantic import BaseModel, ConfigDict, Field

from sessionplan.core.time_arithmetic import try_parse_hhmm


class TimeSlot(BaseModel):
    model_config = ConfigDict(frozen=True)

    start: str
    end: str

    def to_minutes(self) -> tuple[int, int] | None:
        """Return ``(start, end)`` minute offsets, or ``None`` when unusable."""
        start = try_parse_hhmm(self.start)
        end = try_parse_hhmm(self.end)
        if start is None or end is None or end <= start:
            return None
        return start, end


class DayTimeSlots(BaseModel):
    """Recurring weekly availability template."""

    monday: list[TimeSlot] = Field(default_factory=list)
    tuesday: list[TimeSlot] = Field(default_factory=list)
    wednesday: list[TimeSlot] = Field(default_factory=list)
    thursday: list[TimeSlot] = Field(default_factory=list)
    friday: list[TimeSlot] = Field(default_factory=list)
    saturday: list[TimeSlot] = Field(default_factory=list)
    sunday: list[TimeSlot] = Field(default_factory=list)

    def for_weekday(self, weekday: str) -> list[TimeSlot]:
        return getattr(self, weekday)


class CalendarEvent(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    title: str = ""
    start: datetime
    end: datetime
    is_all_day: bool = False


class CommittedSession(BaseModel):
    """An already-placed block of time owned by some item."""

    model_config = ConfigDict(frozen=True)

    owner_id: str
    date: date
    time_slot: TimeSlot
    duration: int = Field(ge=0)
