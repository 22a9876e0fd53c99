from __future__ import annotations

from collections import Counter
from datetime import date, datetime, timedelta
from typing import Sequence
from zoneinfo import ZoneInfo

from calbook.availability.busy import is_slot_free
from calbook.availability.slots import generate_slots
from calbook.availability.types import (
    BusyInterval,
    DayAvailability,
    EventConfig,
    ScheduleSpec,
    TimeSlot,
)
from calbook.availability.windows import local_date_of, resolve_time_windows


def get_available_slots(
    *,
    range_start: datetime,
    range_end: datetime,
    event: EventConfig,
    schedule: ScheduleSpec,
    busy_intervals: Sequence[BusyInterval],
    existing_bookings: Sequence[TimeSlot],
    now: datetime,
) -> list[DayAvailability]:
    """Free slots for every host-local day touched by [range_start, range_end].

    Pure: all rules, busy time and bookings come in as arguments and nothing is
    read or written elsewhere, so the result only depends on the inputs.
    """
    tz = ZoneInfo(schedule.timezone)
    earliest_start = now + timedelta(minutes=event.minimum_notice)
    all_busy = [*busy_intervals, *existing_bookings]
    bookings_per_day = Counter(local_date_of(booking.start, tz) for booking in existing_bookings)

    result: list[DayAvailability] = []
    for day in _iter_local_days(range_start, range_end, tz):
        if (
            event.max_bookings_per_day is not None
            and bookings_per_day[day] >= event.max_bookings_per_day
        ):
            result.append(DayAvailability(date=day, slots=[]))
            continue

        day_slots: list[TimeSlot] = []
        for window in resolve_time_windows(day, schedule.rules, schedule.overrides, tz):
            for candidate in generate_slots(window, event.duration, event.step):
                if candidate.start <= earliest_start:
                    continue
                if not is_slot_free(candidate, event.buffer_before, event.buffer_after, all_busy):
                    continue
                day_slots.append(candidate)

        day_slots.sort(key=lambda slot: slot.start)
        result.append(DayAvailability(date=day, slots=day_slots))
    return result


def available_dates(days: Sequence[DayAvailability]) -> list[date]:
    return [day.date for day in days if day.slots]


def format_slot_for_display(slot: TimeSlot, guest_timezone: str) -> dict[str, str]:
    local_start = slot.start.astimezone(ZoneInfo(guest_timezone))
    return {
        "time": local_start.strftime("%I:%M %p").lstrip("0"),
        "date": local_start.date().isoformat(),
    }


def _iter_local_days(range_start: datetime, range_end: datetime, tz: ZoneInfo):
    day = local_date_of(range_start, tz)
    last = local_date_of(range_end, tz)
    while day <= last:
        yield day
        day += timedelta(days=1)
