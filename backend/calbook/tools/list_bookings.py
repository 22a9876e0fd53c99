from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Literal

from pydantic import BaseModel, Field

from calbook.db.models import ACTIVE_BOOKING_STATUSES, BookingStatus
from calbook.db.store import UnitOfWork, ensure_aware
from calbook.tools.create_booking import booking_payload

BookingFilter = Literal["upcoming", "past", "cancelled", "pending"]

PAST_STATUSES = (BookingStatus.CONFIRMED.value, BookingStatus.NO_SHOW.value)


class ListBookingsArgs(BaseModel):
    filter: BookingFilter = "upcoming"
    limit: int = Field(default=50, ge=1, le=200)


def parse_list_bookings_args(raw_args: dict[str, Any]) -> ListBookingsArgs:
    return ListBookingsArgs.model_validate(raw_args)


def list_bookings(
    uow: UnitOfWork,
    owner_id: int,
    args: ListBookingsArgs,
    now: datetime | None = None,
) -> dict[str, Any]:
    now_utc = ensure_aware(now or datetime.now(timezone.utc))

    if args.filter == "upcoming":
        rows = [
            booking
            for booking in uow.list_bookings(owner_id, statuses=ACTIVE_BOOKING_STATUSES)
            if ensure_aware(booking.start_time) >= now_utc
        ]
    elif args.filter == "past":
        rows = [
            booking
            for booking in uow.list_bookings(owner_id, range_end=now_utc, statuses=PAST_STATUSES)
            if ensure_aware(booking.end_time) < now_utc
        ]
        rows.reverse()
    elif args.filter == "cancelled":
        rows = uow.list_bookings(owner_id, statuses=(BookingStatus.CANCELLED.value,))
        rows.reverse()
    else:
        rows = [
            booking
            for booking in uow.list_bookings(owner_id, statuses=(BookingStatus.PENDING.value,))
            if ensure_aware(booking.start_time) >= now_utc
        ]

    event_titles = {event_type.id: event_type.title for event_type in uow.list_event_types(owner_id)}
    items = []
    for booking in rows[: args.limit]:
        payload = booking_payload(booking)
        payload["event_title"] = event_titles.get(booking.event_type_id)
        items.append(payload)
    return {"ok": True, "data": {"filter": args.filter, "bookings": items}}
