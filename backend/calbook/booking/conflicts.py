"""Commit-time conflict check for bookings.

The free-slot listing is read-only and can be stale by the time a guest
submits, so every write re-checks overlaps inside its own transaction. Only a
commit that went through ``reserve_slot`` may occupy time on a host's calendar.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable, TypeVar

from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import Session

from calbook.availability.busy import is_slot_free
from calbook.availability.types import TimeSlot
from calbook.db.models import ACTIVE_BOOKING_STATUSES, Booking, BookingStatus, EventType
from calbook.db.store import UnitOfWork, ensure_aware, unit_of_work
from calbook.errors import Failure, invalid_state, slot_unavailable

logger = logging.getLogger("calbook.booking.conflicts")

# Serialization failures, statement timeouts and lock timeouts all surface as
# OperationalError; a unique violation on insert means a concurrent writer won.
RETRYABLE_ERRORS = (OperationalError, IntegrityError)
MAX_ATTEMPTS = 2

T = TypeVar("T")


@dataclass(frozen=True)
class BookingDraft:
    guest_name: str
    guest_email: str
    guest_timezone: str
    notes: str | None = None
    location: str | None = None
    additional_guests_json: list[dict[str, Any]] | None = None
    metadata_json: dict[str, Any] | None = None


def initial_status(event_type: EventType) -> str:
    if event_type.requires_confirmation:
        return BookingStatus.PENDING.value
    return BookingStatus.CONFIRMED.value


def find_conflicts(
    uow: UnitOfWork,
    *,
    owner_id: int,
    start: datetime,
    end: datetime,
    buffer_before: int,
    buffer_after: int,
    exclude_booking_id: int | None = None,
) -> list[Booking]:
    # Widen the range so every booking whose buffered interval could reach the
    # candidate is fetched; the precise test below decides.
    existing = uow.list_bookings(
        owner_id,
        range_start=start - timedelta(minutes=buffer_after),
        range_end=end + timedelta(minutes=buffer_before),
        statuses=ACTIVE_BOOKING_STATUSES,
        exclude_booking_id=exclude_booking_id,
    )
    candidate = TimeSlot(start=start, end=end)
    return [
        booking
        for booking in existing
        if not is_slot_free(
            candidate,
            buffer_before,
            buffer_after,
            [TimeSlot(start=ensure_aware(booking.start_time), end=ensure_aware(booking.end_time))],
        )
    ]


def reserve_slot(
    uow: UnitOfWork,
    *,
    event_type: EventType,
    start: datetime,
    draft: BookingDraft,
    supersede_booking_id: int | None = None,
) -> Booking | Failure:
    """Check-then-insert inside the caller's transaction. Does not commit.

    With ``supersede_booking_id`` the source booking is excluded from the
    overlap set and moved to RESCHEDULED, and the new row links back to it.
    """
    end = start + timedelta(minutes=event_type.duration)

    if supersede_booking_id is not None:
        source = uow.get_booking(supersede_booking_id)
        if source is None or source.status not in ACTIVE_BOOKING_STATUSES:
            return invalid_state("Only confirmed or pending bookings can be rescheduled.")

    conflicts = find_conflicts(
        uow,
        owner_id=event_type.host_id,
        start=start,
        end=end,
        buffer_before=event_type.buffer_before,
        buffer_after=event_type.buffer_after,
        exclude_booking_id=supersede_booking_id,
    )
    if conflicts:
        logger.info(
            "Slot conflict host_id=%s start=%s conflicting_booking_ids=%s",
            event_type.host_id,
            start.isoformat(),
            [booking.id for booking in conflicts],
        )
        return slot_unavailable()

    if supersede_booking_id is not None:
        uow.update_booking_status(supersede_booking_id, BookingStatus.RESCHEDULED.value)

    return uow.insert_booking(
        host_id=event_type.host_id,
        event_type_id=event_type.id,
        guest_name=draft.guest_name,
        guest_email=draft.guest_email,
        guest_timezone=draft.guest_timezone,
        start_time=start,
        end_time=end,
        status=initial_status(event_type),
        notes=draft.notes,
        location=draft.location,
        additional_guests_json=draft.additional_guests_json,
        metadata_json=draft.metadata_json,
        rescheduled_from_id=supersede_booking_id,
    )


def run_booking_transaction(
    session_factory: Callable[[], Session],
    work: Callable[[UnitOfWork], T | Failure],
    on_exhausted: Callable[[], Failure] = slot_unavailable,
) -> T | Failure:
    """Run ``work`` in a fresh transaction and commit unless it returns a Failure.

    A transaction that fails to commit is retried once. When the second attempt
    fails too, ``on_exhausted`` supplies the result; for writes that occupy time
    that is SLOT_UNAVAILABLE, since the slot could not be proven free.
    """
    for attempt in range(1, MAX_ATTEMPTS + 1):
        try:
            with unit_of_work(session_factory) as uow:
                result = work(uow)
                if isinstance(result, Failure):
                    uow.rollback()
                    return result
                uow.commit()
                return result
        except RETRYABLE_ERRORS as exc:
            logger.warning(
                "Booking transaction failed attempt=%s/%s error=%s",
                attempt,
                MAX_ATTEMPTS,
                type(exc).__name__,
            )
    return on_exhausted()
