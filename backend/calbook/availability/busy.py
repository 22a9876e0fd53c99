from __future__ import annotations

from datetime import datetime, timedelta
from typing import Iterable

from calbook.availability.types import BusyInterval, TimeSlot


def intervals_overlap(
    left_start: datetime,
    left_end: datetime,
    right_start: datetime,
    right_end: datetime,
) -> bool:
    return left_start < right_end and right_start < left_end


def expand_interval(busy: BusyInterval, buffer_before: int, buffer_after: int) -> TimeSlot:
    return TimeSlot(
        start=busy.start - timedelta(minutes=buffer_before),
        end=busy.end + timedelta(minutes=buffer_after),
    )


def is_slot_free(
    slot: TimeSlot,
    buffer_before: int,
    buffer_after: int,
    busy_intervals: Iterable[BusyInterval],
) -> bool:
    """Buffers widen the busy interval, never the candidate slot."""
    for busy in busy_intervals:
        blocked = expand_interval(busy, buffer_before, buffer_after)
        if intervals_overlap(slot.start, slot.end, blocked.start, blocked.end):
            return False
    return True
