from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Callable

from pydantic import BaseModel, EmailStr, Field, field_validator
from sqlalchemy.orm import Session

from calbook.booking import side_effects
from calbook.booking.conflicts import BookingDraft, reserve_slot, run_booking_transaction
from calbook.db.models import Booking, BookingStatus, EventType, LocationType
from calbook.db.store import UnitOfWork, ensure_aware
from calbook.errors import Failure, inactive, invalid_input, not_found
from calbook.schemas import (
    AdditionalGuest,
    BookingMetadata,
    CustomQuestion,
    load_additional_guests,
    load_metadata,
    require_aware,
)
from calbook.tools.get_free_slots import validate_timezone_name

logger = logging.getLogger("calbook.tools.create_booking")

LOCATION_LABELS = {
    LocationType.GOOGLE_MEET.value: "Google Meet",
    LocationType.ZOOM.value: "Zoom",
    LocationType.PHONE.value: "Phone Call",
    LocationType.IN_PERSON.value: "In Person",
    LocationType.CUSTOM.value: "Custom",
}


class CreateBookingArgs(BaseModel):
    event_type_id: int
    start_time: datetime
    guest_name: str = Field(min_length=1, max_length=200)
    guest_email: EmailStr
    guest_timezone: str = Field(min_length=1, max_length=100)
    notes: str | None = Field(default=None, max_length=2000)
    responses: dict[str, str | bool | list[str]] | None = None
    additional_guests: list[AdditionalGuest] = Field(default_factory=list, max_length=10)

    @field_validator("start_time")
    @classmethod
    def _start_time_is_aware(cls, value: datetime) -> datetime:
        return require_aware(value)

    @field_validator("guest_timezone")
    @classmethod
    def _known_timezone(cls, value: str) -> str:
        return validate_timezone_name(value)


def parse_create_booking_args(raw_args: dict[str, Any]) -> CreateBookingArgs:
    return CreateBookingArgs.model_validate(raw_args)


def resolve_location(event_type: EventType) -> str | None:
    return event_type.location_value or LOCATION_LABELS.get(event_type.location_type)


def check_required_responses(
    event_type: EventType,
    responses: dict[str, str | bool | list[str]] | None,
) -> Failure | None:
    answers = responses or {}
    for raw in event_type.custom_questions_json or []:
        question = CustomQuestion.model_validate(raw)
        if not question.required:
            continue
        answer = answers.get(question.id)
        if answer is None or answer == "" or answer == [] or answer is False:
            return invalid_input(f"An answer to {question.label!r} is required.")
    return None


def create_booking(
    session_factory: Callable[[], Session],
    args: CreateBookingArgs,
    now: datetime | None = None,
) -> dict[str, Any] | Failure:
    """Book ``args.start_time`` for a guest if it is still free at commit time."""
    now_utc = ensure_aware(now or datetime.now(timezone.utc))
    start = args.start_time.astimezone(timezone.utc)

    def work(uow: UnitOfWork) -> Booking | Failure:
        event_type = uow.get_event_type(args.event_type_id)
        if event_type is None:
            return not_found("Event type")
        if not event_type.is_active:
            return inactive()
        if uow.resolve_schedule(event_type) is None:
            return invalid_input("No availability configured for this event type.")
        if start <= now_utc + timedelta(minutes=event_type.minimum_notice or 0):
            return invalid_input("This time is too soon to book.")
        missing = check_required_responses(event_type, args.responses)
        if missing is not None:
            return missing

        draft = BookingDraft(
            guest_name=args.guest_name.strip(),
            guest_email=args.guest_email,
            guest_timezone=args.guest_timezone,
            notes=args.notes,
            location=resolve_location(event_type),
            additional_guests_json=[
                guest.model_dump(mode="json") for guest in args.additional_guests
            ]
            or None,
            metadata_json=(
                BookingMetadata(responses=args.responses).model_dump(mode="json")
                if args.responses
                else None
            ),
        )
        return reserve_slot(uow, event_type=event_type, start=start, draft=draft)

    result = run_booking_transaction(session_factory, work)
    if isinstance(result, Failure):
        return result

    logger.info(
        "Booking created booking_id=%s uid=%s host_id=%s status=%s",
        result.id,
        result.uid,
        result.host_id,
        result.status,
    )
    side_effects.booking_created(result.id)
    return {"ok": True, "data": booking_payload(result)}


def booking_payload(booking: Booking) -> dict[str, Any]:
    metadata = load_metadata(booking.metadata_json)
    return {
        "id": booking.id,
        "uid": booking.uid,
        "event_type_id": booking.event_type_id,
        "guest_name": booking.guest_name,
        "guest_email": booking.guest_email,
        "guest_timezone": booking.guest_timezone,
        "start_time": ensure_aware(booking.start_time).isoformat(),
        "end_time": ensure_aware(booking.end_time).isoformat(),
        "status": booking.status,
        "notes": booking.notes,
        "location": booking.location,
        "cancel_reason": booking.cancel_reason,
        "additional_guests": [
            guest.model_dump(mode="json")
            for guest in load_additional_guests(booking.additional_guests_json)
        ],
        "metadata": metadata.model_dump(mode="json") if metadata else None,
        "rescheduled_from_id": booking.rescheduled_from_id,
        "pending_confirmation": booking.status == BookingStatus.PENDING.value,
    }
