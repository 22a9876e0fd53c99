from __future__ import annotations

from dataclasses import dataclass

from calbook.db.models import Booking


@dataclass(frozen=True)
class Requester:
    """Who is asking to change a booking.

    ``owner_id`` is set for API-key authenticated hosts, ``email`` for guests
    acting from a booking link.
    """

    owner_id: int | None = None
    email: str | None = None


def can_manage(booking: Booking, requester: Requester) -> bool:
    if requester.owner_id is not None and requester.owner_id == booking.host_id:
        return True
    if requester.email:
        return requester.email.strip().lower() == (booking.guest_email or "").strip().lower()
    return False


def is_owner(booking: Booking, requester: Requester) -> bool:
    return requester.owner_id is not None and requester.owner_id == booking.host_id
