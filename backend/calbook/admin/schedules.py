from __future__ import annotations

from datetime import date as date_type
from typing import Any

from pydantic import BaseModel, Field, field_validator, model_validator
from sqlalchemy.orm import Session

from calbook.availability.windows import parse_local_time
from calbook.db.models import AvailabilityRule, AvailabilitySchedule, DateOverride
from calbook.db.store import UnitOfWork, parse_override_date
from calbook.tools.get_free_slots import validate_timezone_name

LOCAL_TIME_PATTERN = r"^\d{2}:\d{2}$"


class RuleArgs(BaseModel):
    day_of_week: int = Field(ge=0, le=6)
    start_time: str = Field(pattern=LOCAL_TIME_PATTERN)
    end_time: str = Field(pattern=LOCAL_TIME_PATTERN)

    @model_validator(mode="after")
    def validate_window(self) -> "RuleArgs":
        _check_window(self.start_time, self.end_time)
        return self


class DateOverrideArgs(BaseModel):
    date: date_type
    start_time: str | None = Field(default=None, pattern=LOCAL_TIME_PATTERN)
    end_time: str | None = Field(default=None, pattern=LOCAL_TIME_PATTERN)
    is_blocked: bool = False

    @model_validator(mode="after")
    def validate_window(self) -> "DateOverrideArgs":
        if self.is_blocked:
            return self
        if not self.start_time or not self.end_time:
            raise ValueError("Open overrides need both start_time and end_time.")
        _check_window(self.start_time, self.end_time)
        return self


class ScheduleArgs(BaseModel):
    name: str = Field(min_length=1, max_length=100)
    timezone: str = Field(min_length=1)
    rules: list[RuleArgs] = Field(default_factory=list)
    date_overrides: list[DateOverrideArgs] | None = None

    @field_validator("timezone")
    @classmethod
    def _known_timezone(cls, value: str) -> str:
        return validate_timezone_name(value)

    @field_validator("date_overrides")
    @classmethod
    def _one_override_per_date(
        cls, value: list[DateOverrideArgs] | None
    ) -> list[DateOverrideArgs] | None:
        if value is None:
            return value
        dates = [override.date for override in value]
        if len(dates) != len(set(dates)):
            raise ValueError("Only one override per date is allowed.")
        return value


def create_schedule(db: Session, host_id: int, args: ScheduleArgs) -> AvailabilitySchedule:
    store = UnitOfWork(db)
    schedule = AvailabilitySchedule(
        host_id=host_id,
        name=args.name,
        timezone=args.timezone,
        is_default=not store.list_schedules(host_id),
    )
    store.add(schedule)
    _replace_rules(store, schedule, args.rules)
    _replace_overrides(store, schedule, args.date_overrides or [])
    store.commit()
    return schedule


def list_schedules(db: Session, host_id: int) -> list[AvailabilitySchedule]:
    return UnitOfWork(db).list_schedules(host_id)


def get_schedule(db: Session, host_id: int, schedule_id: int) -> AvailabilitySchedule | None:
    schedule = UnitOfWork(db).get_schedule(schedule_id)
    if schedule is None or schedule.host_id != host_id:
        return None
    return schedule


def update_schedule(
    db: Session,
    host_id: int,
    schedule_id: int,
    args: ScheduleArgs,
) -> AvailabilitySchedule | None:
    """Rename the schedule and replace its rules (and overrides, when given)."""
    schedule = get_schedule(db, host_id=host_id, schedule_id=schedule_id)
    if schedule is None:
        return None
    store = UnitOfWork(db)
    schedule.name = args.name
    schedule.timezone = args.timezone
    _replace_rules(store, schedule, args.rules)
    if args.date_overrides is not None:
        _replace_overrides(store, schedule, args.date_overrides)
    store.commit()
    return schedule


def delete_schedule(db: Session, host_id: int, schedule_id: int) -> bool:
    schedule = get_schedule(db, host_id=host_id, schedule_id=schedule_id)
    if schedule is None:
        return False
    store = UnitOfWork(db)
    schedules = store.list_schedules(host_id)
    if len(schedules) <= 1:
        raise ValueError("You must have at least one availability schedule.")
    if any(
        event_type.schedule_id == schedule.id and event_type.is_active
        for event_type in store.list_event_types(host_id)
    ):
        raise ValueError("This schedule is assigned to event types. Reassign them before deleting.")

    was_default = schedule.is_default
    for rule in store.list_rules(schedule.id):
        store.delete(rule)
    for override in store.list_overrides(schedule.id):
        store.delete(override)
    for event_type in store.list_event_types(host_id):
        if event_type.schedule_id == schedule.id:
            event_type.schedule_id = None
    store.delete(schedule)
    if was_default:
        remaining = [row for row in schedules if row.id != schedule.id]
        remaining[0].is_default = True
    store.commit()
    return True


def set_default_schedule(db: Session, host_id: int, schedule_id: int) -> AvailabilitySchedule | None:
    schedule = get_schedule(db, host_id=host_id, schedule_id=schedule_id)
    if schedule is None:
        return None
    if schedule.is_default:
        return schedule
    store = UnitOfWork(db)
    for other in store.list_schedules(host_id):
        if other.is_default:
            other.is_default = False
    schedule.is_default = True
    store.commit()
    return schedule


def serialize_schedule(db: Session, schedule: AvailabilitySchedule) -> dict[str, Any]:
    store = UnitOfWork(db)
    rules = sorted(
        store.list_rules(schedule.id),
        key=lambda rule: (rule.day_of_week, rule.start_time),
    )
    overrides = sorted(
        store.list_overrides(schedule.id),
        key=lambda override: parse_override_date(override.date),
    )
    return {
        "id": schedule.id,
        "name": schedule.name,
        "timezone": schedule.timezone,
        "is_default": bool(schedule.is_default),
        "rules": [
            {
                "day_of_week": rule.day_of_week,
                "start_time": rule.start_time,
                "end_time": rule.end_time,
            }
            for rule in rules
        ],
        "date_overrides": [
            {
                "date": parse_override_date(override.date).isoformat(),
                "start_time": override.start_time,
                "end_time": override.end_time,
                "is_blocked": bool(override.is_blocked),
            }
            for override in overrides
        ],
    }


def _replace_rules(store: UnitOfWork, schedule: AvailabilitySchedule, rules: list[RuleArgs]) -> None:
    for rule in store.list_rules(schedule.id):
        store.delete(rule)
    for rule in rules:
        store.add(
            AvailabilityRule(
                schedule_id=schedule.id,
                day_of_week=rule.day_of_week,
                start_time=rule.start_time,
                end_time=rule.end_time,
            )
        )


def _replace_overrides(
    store: UnitOfWork,
    schedule: AvailabilitySchedule,
    overrides: list[DateOverrideArgs],
) -> None:
    for override in store.list_overrides(schedule.id):
        store.delete(override)
    for override in overrides:
        store.add(
            DateOverride(
                schedule_id=schedule.id,
                date=override.date,
                start_time=None if override.is_blocked else override.start_time,
                end_time=None if override.is_blocked else override.end_time,
                is_blocked=override.is_blocked,
            )
        )


def _check_window(start_time: str, end_time: str) -> None:
    if parse_local_time(start_time) >= parse_local_time(end_time):
        raise ValueError("start_time must be before end_time.")
