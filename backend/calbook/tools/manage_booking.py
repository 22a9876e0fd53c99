from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Callable

from pydantic import BaseModel, EmailStr, Field
from sqlalchemy.orm import Session

from calbook.booking import side_effects
from calbook.booking.access import Requester, can_manage, is_owner
from calbook.booking.conflicts import run_booking_transaction
from calbook.db.models import ACTIVE_BOOKING_STATUSES, Booking, BookingStatus
from calbook.db.store import UnitOfWork, ensure_aware
from calbook.errors import (
    ErrorCode,
    Failure,
    invalid_state,
    not_authorized,
    not_found,
    update_contended,
)
from calbook.tools.create_booking import booking_payload

logger = logging.getLogger("calbook.tools.manage_booking")


class CancelBookingArgs(BaseModel):
    reason: str | None = Field(default=None, max_length=500)


class GuestCancelBookingArgs(CancelBookingArgs):
    guest_email: EmailStr


def parse_cancel_booking_args(raw_args: dict[str, Any]) -> CancelBookingArgs:
    return CancelBookingArgs.model_validate(raw_args)


def cancel_booking(
    session_factory: Callable[[], Session],
    uid: str,
    requester: Requester,
    reason: str | None = None,
) -> dict[str, Any] | Failure:
    def work(uow: UnitOfWork) -> Booking | Failure:
        booking = uow.get_booking_by_uid(uid)
        if booking is None:
            return not_found("Booking")
        if not can_manage(booking, requester):
            return not_authorized("Not authorized to cancel this booking.")
        if booking.status == BookingStatus.CANCELLED.value:
            return Failure(ErrorCode.ALREADY_CANCELLED, "Booking is already cancelled.")
        if booking.status not in ACTIVE_BOOKING_STATUSES:
            return invalid_state(f"A {booking.status.lower()} booking cannot be cancelled.")
        cleaned = reason.strip() if reason else None
        return uow.update_booking_status(booking.id, BookingStatus.CANCELLED.value, cleaned or None)

    result = run_booking_transaction(
        session_factory,
        work,
        on_exhausted=lambda: update_contended("cancelled"),
    )
    if isinstance(result, Failure):
        return result

    logger.info(
        "Booking cancelled booking_id=%s host_id=%s by_owner=%s",
        result.id,
        result.host_id,
        is_owner(result, requester),
    )
    side_effects.booking_cancelled(result.id)
    return {"ok": True, "data": booking_payload(result)}


def confirm_booking(
    session_factory: Callable[[], Session],
    uid: str,
    owner_id: int,
) -> dict[str, Any] | Failure:
    def work(uow: UnitOfWork) -> Booking | Failure:
        booking = _find_owned_booking(uow, uid, owner_id)
        if booking is None:
            return not_found("Booking")
        if booking.status != BookingStatus.PENDING.value:
            return invalid_state("Only pending bookings can be confirmed.")
        return uow.update_booking_status(booking.id, BookingStatus.CONFIRMED.value)

    result = run_booking_transaction(
        session_factory,
        work,
        on_exhausted=lambda: update_contended("confirmed"),
    )
    if isinstance(result, Failure):
        return result

    logger.info("Booking confirmed booking_id=%s host_id=%s", result.id, result.host_id)
    side_effects.booking_confirmed(result.id)
    return {"ok": True, "data": booking_payload(result)}


def mark_no_show(
    session_factory: Callable[[], Session],
    uid: str,
    owner_id: int,
    now: datetime | None = None,
) -> dict[str, Any] | Failure:
    now_utc = ensure_aware(now or datetime.now(timezone.utc))

    def work(uow: UnitOfWork) -> Booking | Failure:
        booking = _find_owned_booking(uow, uid, owner_id)
        if booking is None:
            return not_found("Booking")
        if booking.status != BookingStatus.CONFIRMED.value:
            return invalid_state("Only confirmed bookings can be marked as no-show.")
        if ensure_aware(booking.end_time) > now_utc:
            return invalid_state("A booking can only be marked as no-show after it has ended.")
        return uow.update_booking_status(booking.id, BookingStatus.NO_SHOW.value)

    result = run_booking_transaction(
        session_factory,
        work,
        on_exhausted=lambda: update_contended("marked as no-show"),
    )
    if isinstance(result, Failure):
        return result

    logger.info("Booking marked no-show booking_id=%s host_id=%s", result.id, result.host_id)
    return {"ok": True, "data": booking_payload(result)}


def _find_owned_booking(uow: UnitOfWork, uid: str, owner_id: int) -> Booking | None:
    # Another host's booking is reported as missing rather than forbidden.
    booking = uow.get_booking_by_uid(uid)
    if booking is None or booking.host_id != owner_id:
        return None
    return booking
