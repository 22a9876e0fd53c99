from calbook.tools.create_booking import (
    CreateBookingArgs,
    booking_payload,
    parse_create_booking_args,
)
from calbook.tools.get_free_slots import GetFreeSlotsArgs, parse_get_free_slots_args
from calbook.tools.list_bookings import ListBookingsArgs, parse_list_bookings_args
from calbook.tools.manage_booking import (
    CancelBookingArgs,
    GuestCancelBookingArgs,
    cancel_booking,
    confirm_booking,
    mark_no_show,
    parse_cancel_booking_args,
)
from calbook.tools.reschedule_booking import (
    GuestRescheduleArgs,
    RescheduleBookingArgs,
    parse_reschedule_booking_args,
)
from calbook.tools.send_reminders import send_due_reminders

# Entry points named like their module (create_booking, get_free_slots,
# list_bookings, reschedule_booking) are imported from the submodule itself.
__all__ = [
    "CancelBookingArgs",
    "CreateBookingArgs",
    "GetFreeSlotsArgs",
    "GuestCancelBookingArgs",
    "GuestRescheduleArgs",
    "ListBookingsArgs",
    "RescheduleBookingArgs",
    "booking_payload",
    "cancel_booking",
    "confirm_booking",
    "mark_no_show",
    "parse_cancel_booking_args",
    "parse_create_booking_args",
    "parse_get_free_slots_args",
    "parse_list_bookings_args",
    "parse_reschedule_booking_args",
    "send_due_reminders",
]
