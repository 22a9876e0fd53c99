"""Best-effort work that follows a committed booking change.

Calendar sync and emails run on a small thread pool after the transaction has
committed. Each step is bounded by the integration's HTTP timeout, failures are
logged, and nothing here can undo the booking.
"""
from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Callable

from calbook.db.models import Booking, BookingStatus
from calbook.db.session import SessionLocal
from calbook.db.store import UnitOfWork, unit_of_work
from calbook.integrations import email_notify, google_calendar
from calbook.integrations.email_notify import NotificationKind, build_booking_email_facts

logger = logging.getLogger("calbook.booking.side_effects")

_executor = ThreadPoolExecutor(max_workers=4, thread_name_prefix="calbook-side-effects")


def submit(task: Callable[[], None], *, description: str) -> None:
    _executor.submit(_run_safely, task, description)


def _run_safely(task: Callable[[], None], description: str) -> None:
    try:
        task()
    except Exception:
        logger.exception("Side effect failed: %s", description)


def booking_created(booking_id: int) -> None:
    submit(lambda: _sync_created(booking_id), description=f"booking_created booking_id={booking_id}")


def booking_confirmed(booking_id: int) -> None:
    submit(lambda: _sync_created(booking_id), description=f"booking_confirmed booking_id={booking_id}")


def booking_cancelled(booking_id: int) -> None:
    submit(
        lambda: _sync_cancelled(booking_id),
        description=f"booking_cancelled booking_id={booking_id}",
    )


def booking_rescheduled(new_booking_id: int, old_booking_id: int) -> None:
    submit(
        lambda: _sync_rescheduled(new_booking_id, old_booking_id),
        description=f"booking_rescheduled booking_id={new_booking_id} from={old_booking_id}",
    )


def _sync_created(booking_id: int) -> None:
    with unit_of_work(SessionLocal) as uow:
        booking = uow.get_booking(booking_id)
        if booking is None:
            return
        location = _publish_calendar_event(uow, booking)
        _send(uow, booking, NotificationKind.CONFIRMATION, location=location)


def _sync_cancelled(booking_id: int) -> None:
    with unit_of_work(SessionLocal) as uow:
        booking = uow.get_booking(booking_id)
        if booking is None:
            return
        _remove_calendar_event(uow, booking)
        _send(uow, booking, NotificationKind.CANCELLATION)


def _sync_rescheduled(new_booking_id: int, old_booking_id: int) -> None:
    with unit_of_work(SessionLocal) as uow:
        old_booking = uow.get_booking(old_booking_id)
        new_booking = uow.get_booking(new_booking_id)
        if old_booking is None or new_booking is None:
            return
        _remove_calendar_event(uow, old_booking)
        location = _publish_calendar_event(uow, new_booking)
        _send(uow, new_booking, NotificationKind.RESCHEDULED, location=location, previous=old_booking)


def _publish_calendar_event(uow: UnitOfWork, booking: Booking) -> str | None:
    if booking.status != BookingStatus.CONFIRMED.value or booking.external_event_id:
        return booking.location
    host = uow.get_host(booking.host_id)
    event_type = uow.get_event_type(booking.event_type_id)
    if host is None or event_type is None:
        return booking.location
    try:
        result = google_calendar.create_event(host=host, booking=booking, event_type=event_type, db=uow.db)
    except Exception:
        uow.rollback()
        logger.exception(
            "Google calendar sync failed for booking_id=%s host_id=%s",
            booking.id,
            booking.host_id,
        )
        return booking.location
    if result is None:
        return booking.location

    booking.external_event_provider = "google"
    booking.external_event_id = result.external_event_id
    if result.conference_link:
        booking.location = result.conference_link
    uow.commit()
    return booking.location


def _remove_calendar_event(uow: UnitOfWork, booking: Booking) -> None:
    if booking.external_event_provider != "google" or not booking.external_event_id:
        return
    try:
        google_calendar.delete_event(
            booking.host_id,
            external_event_id=booking.external_event_id,
            db=uow.db,
        )
    except Exception:
        uow.rollback()
        logger.exception(
            "Google calendar delete failed for booking_id=%s host_id=%s",
            booking.id,
            booking.host_id,
        )


def _send(
    uow: UnitOfWork,
    booking: Booking,
    kind: NotificationKind,
    *,
    location: str | None = None,
    previous: Booking | None = None,
) -> None:
    host = uow.get_host(booking.host_id)
    event_type = uow.get_event_type(booking.event_type_id)
    if host is None or event_type is None:
        return
    facts = build_booking_email_facts(
        booking, host, event_type, location=location, previous=previous
    )
    try:
        email_notify.notify(kind, facts)
    except Exception:
        logger.exception(
            "Sending %s email failed for booking_id=%s host_id=%s",
            kind.value,
            booking.id,
            booking.host_id,
        )
