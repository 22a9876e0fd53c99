from calbook.booking.access import Requester, can_manage, is_owner
from calbook.booking.conflicts import (
    BookingDraft,
    find_conflicts,
    initial_status,
    reserve_slot,
    run_booking_transaction,
)

__all__ = [
    "BookingDraft",
    "Requester",
    "can_manage",
    "find_conflicts",
    "initial_status",
    "is_owner",
    "reserve_slot",
    "run_booking_transaction",
]
