from calbook.availability.busy import expand_interval, intervals_overlap, is_slot_free
from calbook.availability.engine import (
    available_dates,
    format_slot_for_display,
    get_available_slots,
)
from calbook.availability.slots import SlotSequence, generate_slots
from calbook.availability.types import (
    BusyInterval,
    DayAvailability,
    EventConfig,
    OverrideSpec,
    RuleSpec,
    ScheduleSpec,
    TimeSlot,
)
from calbook.availability.windows import local_to_instant, parse_local_time, resolve_time_windows

__all__ = [
    "BusyInterval",
    "DayAvailability",
    "EventConfig",
    "OverrideSpec",
    "RuleSpec",
    "ScheduleSpec",
    "SlotSequence",
    "TimeSlot",
    "available_dates",
    "expand_interval",
    "format_slot_for_display",
    "generate_slots",
    "get_available_slots",
    "intervals_overlap",
    "is_slot_free",
    "local_to_instant",
    "parse_local_time",
    "resolve_time_windows",
]
