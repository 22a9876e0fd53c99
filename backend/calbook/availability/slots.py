from __future__ import annotations

from datetime import timedelta
from typing import Iterator

from calbook.availability.types import TimeSlot


class SlotSequence:
    """Step-aligned candidate slots inside one window.

    Iterating twice yields the same slots; nothing is materialized up front.
    """

    def __init__(self, window: TimeSlot, duration_minutes: int, step_minutes: int):
        if duration_minutes <= 0 or step_minutes <= 0:
            raise ValueError("Slot duration and step must be positive.")
        self.window = window
        self.duration = timedelta(minutes=duration_minutes)
        self.step = timedelta(minutes=step_minutes)

    def __iter__(self) -> Iterator[TimeSlot]:
        cursor = self.window.start
        while cursor + self.duration <= self.window.end:
            yield TimeSlot(start=cursor, end=cursor + self.duration)
            cursor += self.step


def generate_slots(window: TimeSlot, duration_minutes: int, step_minutes: int) -> SlotSequence:
    return SlotSequence(window, duration_minutes, step_minutes)
