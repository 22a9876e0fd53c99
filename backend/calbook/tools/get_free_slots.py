from __future__ import annotations

from datetime import date, datetime, timedelta, timezone
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import dateparser
from pydantic import BaseModel, ConfigDict, Field, field_validator

from calbook.availability import (
    EventConfig,
    OverrideSpec,
    RuleSpec,
    ScheduleSpec,
    TimeSlot,
    available_dates,
    format_slot_for_display,
    get_available_slots,
    local_to_instant,
)
from calbook.config import DEFAULT_GUEST_TIMEZONE
from calbook.db.models import ACTIVE_BOOKING_STATUSES, AvailabilitySchedule, EventType
from calbook.db.store import UnitOfWork, ensure_aware, parse_override_date
from calbook.errors import Failure, inactive, invalid_input, not_found
from calbook.integrations.google_calendar import get_busy_intervals

DEFAULT_RANGE_DAYS = 6
MAX_RANGE_DAYS = 62


class GetFreeSlotsArgs(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    username: str = Field(min_length=1)
    event_slug: str = Field(min_length=1)
    from_text: str | None = Field(default=None, alias="from")
    to_text: str | None = Field(default=None, alias="to")
    timezone: str = DEFAULT_GUEST_TIMEZONE

    @field_validator("timezone")
    @classmethod
    def _known_timezone(cls, value: str) -> str:
        return validate_timezone_name(value)


def parse_get_free_slots_args(raw_args: dict[str, Any]) -> GetFreeSlotsArgs:
    return GetFreeSlotsArgs.model_validate(raw_args)


def validate_timezone_name(value: str) -> str:
    try:
        ZoneInfo(value)
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise ValueError(f"Unknown timezone: {value}") from exc
    return value


def event_config_from_row(event_type: EventType) -> EventConfig:
    return EventConfig(
        duration=event_type.duration,
        slot_interval=event_type.slot_interval,
        buffer_before=event_type.buffer_before or 0,
        buffer_after=event_type.buffer_after or 0,
        minimum_notice=event_type.minimum_notice or 0,
        max_bookings_per_day=event_type.max_bookings_per_day,
    )


def load_schedule_spec(uow: UnitOfWork, schedule: AvailabilitySchedule) -> ScheduleSpec:
    rules = tuple(
        RuleSpec(day_of_week=rule.day_of_week, start_time=rule.start_time, end_time=rule.end_time)
        for rule in uow.list_rules(schedule.id)
    )
    overrides = tuple(
        OverrideSpec(
            date=parse_override_date(override.date),
            start_time=override.start_time,
            end_time=override.end_time,
            is_blocked=bool(override.is_blocked),
        )
        for override in uow.list_overrides(schedule.id)
    )
    return ScheduleSpec(timezone=schedule.timezone, rules=rules, overrides=overrides)


def resolve_date_range(
    from_text: str | None,
    to_text: str | None,
    tz: ZoneInfo,
    now: datetime,
) -> tuple[date, date] | Failure:
    """Host-local first and last day of the request, both inclusive."""
    reference = now.astimezone(tz)
    first_day = reference.date()
    if from_text:
        first_day = _parse_day(from_text, tz, reference)
        if first_day is None:
            return invalid_input(f"Could not understand the start date {from_text!r}.")

    last_day = first_day + timedelta(days=DEFAULT_RANGE_DAYS)
    if to_text:
        last_day = _parse_day(to_text, tz, reference)
        if last_day is None:
            return invalid_input(f"Could not understand the end date {to_text!r}.")

    if last_day < first_day:
        return invalid_input("The end date is before the start date.")
    if (last_day - first_day).days > MAX_RANGE_DAYS:
        return invalid_input(f"Ranges longer than {MAX_RANGE_DAYS} days are not supported.")
    return first_day, last_day


def get_free_slots(
    uow: UnitOfWork,
    args: GetFreeSlotsArgs,
    now: datetime | None = None,
) -> dict[str, Any] | Failure:
    now_utc = ensure_aware(now or datetime.now(timezone.utc))

    host = uow.get_host_by_username(args.username)
    if host is None:
        return not_found("Host")
    event_type = uow.get_event_type_by_slug(host.id, args.event_slug)
    if event_type is None:
        return not_found("Event type")
    if not event_type.is_active:
        return inactive()
    schedule = uow.resolve_schedule(event_type)
    if schedule is None:
        return not_found("Availability schedule")

    tz = ZoneInfo(schedule.timezone)
    day_range = resolve_date_range(args.from_text, args.to_text, tz, now_utc)
    if isinstance(day_range, Failure):
        return day_range
    first_day, last_day = day_range

    range_start = local_to_instant(first_day, "00:00", tz)
    range_end = local_to_instant(last_day, "24:00", tz)
    event = event_config_from_row(event_type)

    busy = get_busy_intervals(host.id, range_start, range_end, db=uow.db)
    bookings = uow.list_bookings(
        host.id,
        range_start=range_start - timedelta(minutes=event.buffer_after),
        range_end=range_end + timedelta(minutes=event.buffer_before),
        statuses=ACTIVE_BOOKING_STATUSES,
    )
    existing = [
        TimeSlot(start=ensure_aware(booking.start_time), end=ensure_aware(booking.end_time))
        for booking in bookings
    ]

    days = get_available_slots(
        range_start=range_start,
        # Last local midnight in range; the engine walks every day it touches.
        range_end=local_to_instant(last_day, "00:00", tz),
        event=event,
        schedule=load_schedule_spec(uow, schedule),
        busy_intervals=busy,
        existing_bookings=existing,
        now=now_utc,
    )

    return {
        "ok": True,
        "data": {
            "host": {"username": host.username, "name": host.name},
            "event_type": {
                "id": event_type.id,
                "slug": event_type.slug,
                "title": event_type.title,
                "duration": event_type.duration,
                "requires_confirmation": bool(event_type.requires_confirmation),
            },
            "schedule_timezone": schedule.timezone,
            "timezone": args.timezone,
            "from": first_day.isoformat(),
            "to": last_day.isoformat(),
            "days": [
                {
                    "date": day.date.isoformat(),
                    "slots": [_slot_payload(slot, args.timezone) for slot in day.slots],
                }
                for day in days
            ],
            "available_dates": [day.isoformat() for day in available_dates(days)],
        },
    }


def _slot_payload(slot: TimeSlot, guest_timezone: str) -> dict[str, str]:
    display = format_slot_for_display(slot, guest_timezone)
    return {
        "start": slot.start.isoformat(),
        "end": slot.end.isoformat(),
        "local_time": display["time"],
        "local_date": display["date"],
    }


def _parse_day(text: str, tz: ZoneInfo, reference: datetime) -> date | None:
    cleaned = text.strip()
    try:
        return date.fromisoformat(cleaned[:10])
    except ValueError:
        return _parse_natural_day(cleaned, tz, reference)


def _parse_natural_day(text: str, tz: ZoneInfo, reference: datetime) -> date | None:
    parsed = dateparser.parse(
        text,
        settings={
            "RETURN_AS_TIMEZONE_AWARE": True,
            "TIMEZONE": str(tz.key),
            "TO_TIMEZONE": str(tz.key),
            "RELATIVE_BASE": reference.replace(tzinfo=None),
            "PREFER_DATES_FROM": "future",
        },
    )
    if parsed is None:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=tz)
    return parsed.astimezone(tz).date()
