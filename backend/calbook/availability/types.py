from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime


@dataclass(frozen=True)
class TimeSlot:
    """A half-open [start, end) span between two timezone-aware instants."""

    start: datetime
    end: datetime


BusyInterval = TimeSlot


@dataclass(frozen=True)
class RuleSpec:
    day_of_week: int  # 0 = Sunday
    start_time: str  # "HH:MM", host local
    end_time: str


@dataclass(frozen=True)
class OverrideSpec:
    date: date
    start_time: str | None = None
    end_time: str | None = None
    is_blocked: bool = False


@dataclass(frozen=True)
class ScheduleSpec:
    timezone: str
    rules: tuple[RuleSpec, ...] = ()
    overrides: tuple[OverrideSpec, ...] = ()


@dataclass(frozen=True)
class EventConfig:
    duration: int
    slot_interval: int | None = None
    buffer_before: int = 0
    buffer_after: int = 0
    minimum_notice: int = 0
    max_bookings_per_day: int | None = None

    @property
    def step(self) -> int:
        return self.slot_interval or self.duration


@dataclass(frozen=True)
class DayAvailability:
    date: date
    slots: list[TimeSlot] = field(default_factory=list)
