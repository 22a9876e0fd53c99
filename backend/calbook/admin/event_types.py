from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from calbook.db.models import ACTIVE_BOOKING_STATUSES, EventType, LocationType
from calbook.db.store import UnitOfWork
from calbook.schemas import CustomQuestion

SLUG_PATTERN = r"^[a-z0-9-]+$"

# Columns that cannot be cleared, so a PATCH may omit them but not send null.
REQUIRED_FIELDS = (
    "title",
    "slug",
    "duration",
    "buffer_before",
    "buffer_after",
    "minimum_notice",
    "requires_confirmation",
    "location_type",
    "is_active",
)


class CreateEventTypeArgs(BaseModel):
    title: str = Field(min_length=1, max_length=100)
    slug: str = Field(min_length=1, max_length=100, pattern=SLUG_PATTERN)
    description: str | None = Field(default=None, max_length=2000)
    duration: int = Field(default=30, ge=5, le=720)
    slot_interval: int | None = Field(default=None, ge=5, le=720)
    buffer_before: int = Field(default=0, ge=0, le=120)
    buffer_after: int = Field(default=0, ge=0, le=120)
    minimum_notice: int = Field(default=120, ge=0)
    max_bookings_per_day: int | None = Field(default=None, ge=1)
    requires_confirmation: bool = False
    location_type: LocationType = LocationType.GOOGLE_MEET
    location_value: str | None = Field(default=None, max_length=500)
    schedule_id: int | None = None
    is_active: bool = True
    custom_questions: list[CustomQuestion] | None = None


class UpdateEventTypeArgs(BaseModel):
    model_config = ConfigDict(extra="forbid")

    title: str | None = Field(default=None, min_length=1, max_length=100)
    slug: str | None = Field(default=None, min_length=1, max_length=100, pattern=SLUG_PATTERN)
    description: str | None = Field(default=None, max_length=2000)
    duration: int | None = Field(default=None, ge=5, le=720)
    slot_interval: int | None = Field(default=None, ge=5, le=720)
    buffer_before: int | None = Field(default=None, ge=0, le=120)
    buffer_after: int | None = Field(default=None, ge=0, le=120)
    minimum_notice: int | None = Field(default=None, ge=0)
    max_bookings_per_day: int | None = Field(default=None, ge=1)
    requires_confirmation: bool | None = None
    location_type: LocationType | None = None
    location_value: str | None = Field(default=None, max_length=500)
    schedule_id: int | None = None
    is_active: bool | None = None
    custom_questions: list[CustomQuestion] | None = None

    @model_validator(mode="after")
    def _required_fields_not_null(self) -> UpdateEventTypeArgs:
        cleared = sorted(
            field
            for field in REQUIRED_FIELDS
            if field in self.model_fields_set and getattr(self, field) is None
        )
        if cleared:
            raise ValueError(f"{', '.join(cleared)} cannot be null")
        return self


def create_event_type(db: Session, host_id: int, args: CreateEventTypeArgs) -> EventType:
    store = UnitOfWork(db)
    if store.get_event_type_by_slug(host_id, args.slug) is not None:
        raise ValueError("slug already exists")
    _check_schedule_owner(store, host_id, args.schedule_id)

    fields = args.model_dump(exclude={"custom_questions", "location_type"})
    event_type = EventType(
        host_id=host_id,
        location_type=args.location_type.value,
        custom_questions_json=_dump_questions(args.custom_questions),
        **fields,
    )
    db.add(event_type)
    _commit(db)
    return event_type


def list_event_types(db: Session, host_id: int) -> list[EventType]:
    return UnitOfWork(db).list_event_types(host_id)


def update_event_type(
    db: Session,
    host_id: int,
    event_type_id: int,
    args: UpdateEventTypeArgs,
) -> EventType | None:
    store = UnitOfWork(db)
    event_type = store.get_event_type(event_type_id)
    if event_type is None or event_type.host_id != host_id:
        return None

    patch = args.model_dump(exclude_unset=True)
    new_slug = patch.get("slug")
    if new_slug and new_slug != event_type.slug:
        if store.get_event_type_by_slug(host_id, new_slug) is not None:
            raise ValueError("slug already exists")
    if "schedule_id" in patch:
        _check_schedule_owner(store, host_id, patch["schedule_id"])
    if "custom_questions" in patch:
        patch.pop("custom_questions")
        event_type.custom_questions_json = _dump_questions(args.custom_questions)
    if patch.get("location_type") is not None:
        patch["location_type"] = patch["location_type"].value

    for field, value in patch.items():
        setattr(event_type, field, value)
    _commit(db)
    return event_type


def delete_event_type(
    db: Session,
    host_id: int,
    event_type_id: int,
    now: datetime | None = None,
) -> bool:
    """Delete one of the host's event types; False when it does not exist.

    Refused while confirmed or pending bookings of it are still ahead.
    """
    store = UnitOfWork(db)
    event_type = store.get_event_type(event_type_id)
    if event_type is None or event_type.host_id != host_id:
        return False

    upcoming = [
        booking
        for booking in store.list_bookings(
            host_id,
            range_start=now or datetime.now(timezone.utc),
            statuses=ACTIVE_BOOKING_STATUSES,
        )
        if booking.event_type_id == event_type_id
    ]
    if upcoming:
        raise ValueError("Cancel or move the upcoming bookings of this event type first.")

    store.delete(event_type)
    db.commit()
    return True


def serialize_event_type(event_type: EventType) -> dict[str, Any]:
    return {
        "id": event_type.id,
        "title": event_type.title,
        "slug": event_type.slug,
        "description": event_type.description,
        "duration": event_type.duration,
        "slot_interval": event_type.slot_interval,
        "buffer_before": event_type.buffer_before,
        "buffer_after": event_type.buffer_after,
        "minimum_notice": event_type.minimum_notice,
        "max_bookings_per_day": event_type.max_bookings_per_day,
        "requires_confirmation": bool(event_type.requires_confirmation),
        "location_type": event_type.location_type,
        "location_value": event_type.location_value,
        "schedule_id": event_type.schedule_id,
        "is_active": bool(event_type.is_active),
        "custom_questions": event_type.custom_questions_json or [],
    }


def _check_schedule_owner(store: UnitOfWork, host_id: int, schedule_id: int | None) -> None:
    if schedule_id is None:
        return
    schedule = store.get_schedule(schedule_id)
    if schedule is None or schedule.host_id != host_id:
        raise ValueError("schedule_id does not belong to this host")


def _dump_questions(questions: list[CustomQuestion] | None) -> list[dict[str, Any]] | None:
    if not questions:
        return None
    return [question.model_dump(mode="json") for question in questions]


def _commit(db: Session) -> None:
    try:
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        if "slug" in str(exc).lower():
            raise ValueError("slug already exists") from exc
        raise
