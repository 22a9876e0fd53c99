"""Move a booking to a new time.

The old booking is never edited in place: it is marked RESCHEDULED and a new
booking pointing back at it is created in the same transaction, so a conflict
at the new time leaves the original untouched.
"""
from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Callable

from pydantic import BaseModel, EmailStr, Field, field_validator
from sqlalchemy.orm import Session

from calbook.booking import side_effects
from calbook.booking.access import Requester, can_manage
from calbook.booking.conflicts import BookingDraft, reserve_slot, run_booking_transaction
from calbook.db.models import ACTIVE_BOOKING_STATUSES, Booking
from calbook.db.store import UnitOfWork
from calbook.errors import Failure, inactive, invalid_state, not_authorized, not_found
from calbook.schemas import require_aware
from calbook.tools.create_booking import booking_payload

logger = logging.getLogger("calbook.tools.reschedule_booking")


class RescheduleBookingArgs(BaseModel):
    booking_uid: str = Field(min_length=1)
    start_time: datetime
    event_type_id: int | None = None

    @field_validator("start_time")
    @classmethod
    def _start_time_is_aware(cls, value: datetime) -> datetime:
        return require_aware(value)


class GuestRescheduleArgs(RescheduleBookingArgs):
    guest_email: EmailStr


def parse_reschedule_booking_args(raw_args: dict[str, Any]) -> RescheduleBookingArgs:
    return RescheduleBookingArgs.model_validate(raw_args)


def reschedule_booking(
    session_factory: Callable[[], Session],
    args: RescheduleBookingArgs,
    requester: Requester,
) -> dict[str, Any] | Failure:
    start = args.start_time.astimezone(timezone.utc)
    superseded: dict[str, int] = {}

    def work(uow: UnitOfWork) -> Booking | Failure:
        source = uow.get_booking_by_uid(args.booking_uid)
        if source is None:
            return not_found("Booking")
        if not can_manage(source, requester):
            return not_authorized("Not authorized to reschedule this booking.")
        if source.status not in ACTIVE_BOOKING_STATUSES:
            return invalid_state("Only confirmed or pending bookings can be rescheduled.")

        event_type = uow.get_event_type(args.event_type_id or source.event_type_id)
        if event_type is None or event_type.host_id != source.host_id:
            return not_found("Event type")
        if not event_type.is_active:
            return inactive()

        draft = BookingDraft(
            guest_name=source.guest_name,
            guest_email=source.guest_email,
            guest_timezone=source.guest_timezone,
            notes=source.notes,
            location=source.location,
            additional_guests_json=source.additional_guests_json,
            metadata_json=source.metadata_json,
        )
        superseded["id"] = source.id
        return reserve_slot(
            uow,
            event_type=event_type,
            start=start,
            draft=draft,
            supersede_booking_id=source.id,
        )

    result = run_booking_transaction(session_factory, work)
    if isinstance(result, Failure):
        return result

    logger.info(
        "Booking rescheduled booking_id=%s from_booking_id=%s host_id=%s status=%s",
        result.id,
        superseded["id"],
        result.host_id,
        result.status,
    )
    side_effects.booking_rescheduled(result.id, superseded["id"])
    return {"ok": True, "data": booking_payload(result)}
