from __future__ import annotations

from datetime import date, datetime, time, timedelta, timezone
from typing import Iterable
from zoneinfo import ZoneInfo

from calbook.availability.types import OverrideSpec, RuleSpec, TimeSlot


def parse_local_time(value: str) -> tuple[int, int]:
    """Split "HH:MM" into hours and minutes. "24:00" is the end of the day."""
    hours_text, minutes_text = value.strip().split(":")
    hours, minutes = int(hours_text), int(minutes_text)
    if not (0 <= minutes < 60) or not (0 <= hours < 24 or (hours == 24 and minutes == 0)):
        raise ValueError(f"Invalid local time: {value!r}")
    return hours, minutes


def local_to_instant(day: date, local_time: str, tz: ZoneInfo) -> datetime:
    hours, minutes = parse_local_time(local_time)
    naive = datetime.combine(day, time(0, 0)) + timedelta(hours=hours, minutes=minutes)
    # fold=0: ambiguous wall times take the first occurrence, times inside a
    # spring-forward gap land after the gap.
    return naive.replace(tzinfo=tz).astimezone(timezone.utc)


def day_of_week(day: date) -> int:
    return day.isoweekday() % 7


def local_date_of(instant: datetime, tz: ZoneInfo) -> date:
    return instant.astimezone(tz).date()


def resolve_time_windows(
    day: date,
    rules: Iterable[RuleSpec],
    overrides: Iterable[OverrideSpec],
    tz: ZoneInfo,
) -> list[TimeSlot]:
    override = next((item for item in overrides if item.date == day), None)
    if override is not None:
        if override.is_blocked:
            return []
        if override.start_time and override.end_time:
            return [
                TimeSlot(
                    start=local_to_instant(day, override.start_time, tz),
                    end=local_to_instant(day, override.end_time, tz),
                )
            ]
        return []

    weekday = day_of_week(day)
    windows = [
        TimeSlot(
            start=local_to_instant(day, rule.start_time, tz),
            end=local_to_instant(day, rule.end_time, tz),
        )
        for rule in rules
        if rule.day_of_week == weekday
    ]
    return sorted(windows, key=lambda window: window.start)
