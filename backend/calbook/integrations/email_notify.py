"""
Booking emails (confirmation, cancellation, rescheduled, reminder) via the Resend
HTTP API. Set RESEND_API_KEY and EMAIL_FROM; without an API key every send is skipped.
"""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from urllib import request
from zoneinfo import ZoneInfo

from calbook.config import NOTIFY_TIMEOUT_SECONDS, email_from, resend_api_key
from calbook.db.models import Booking, EventType, Host
from calbook.db.store import ensure_aware
from calbook.errors import UpstreamUnavailableError
from calbook.schemas import load_additional_guests

RESEND_ENDPOINT = "https://api.resend.com/emails"

logger = logging.getLogger("calbook.integrations.email_notify")


class NotificationKind(str, Enum):
    CONFIRMATION = "confirmation"
    CANCELLATION = "cancellation"
    RESCHEDULED = "rescheduled"
    REMINDER = "reminder"


SUBJECT_PREFIX = {
    NotificationKind.CONFIRMATION: "Confirmed",
    NotificationKind.CANCELLATION: "Cancelled",
    NotificationKind.RESCHEDULED: "Rescheduled",
    NotificationKind.REMINDER: "Reminder",
}


@dataclass(frozen=True)
class BookingEmailFacts:
    booking_uid: str
    guest_name: str
    guest_email: str
    host_name: str
    host_email: str
    event_title: str
    date_str: str
    time_str: str
    location: str | None = None
    notes: str | None = None
    cancel_reason: str | None = None
    additional_guest_emails: list[str] = field(default_factory=list)
    old_date_str: str | None = None
    old_time_str: str | None = None


def format_booking_window(start: datetime, end: datetime, tz_name: str) -> tuple[str, str]:
    tz = ZoneInfo(tz_name)
    local_start = ensure_aware(start).astimezone(tz)
    local_end = ensure_aware(end).astimezone(tz)
    date_str = local_start.strftime("%A, %B %d, %Y").replace(" 0", " ")
    time_str = (
        f"{local_start.strftime('%I:%M %p').lstrip('0')} - "
        f"{local_end.strftime('%I:%M %p').lstrip('0')}"
    )
    return date_str, time_str


def build_booking_email_facts(
    booking: Booking,
    host: Host,
    event_type: EventType,
    *,
    location: str | None = None,
    previous: Booking | None = None,
) -> BookingEmailFacts:
    date_str, time_str = format_booking_window(
        booking.start_time, booking.end_time, booking.guest_timezone
    )
    old_date_str = old_time_str = None
    if previous is not None:
        old_date_str, old_time_str = format_booking_window(
            previous.start_time, previous.end_time, previous.guest_timezone
        )
    return BookingEmailFacts(
        booking_uid=booking.uid,
        guest_name=booking.guest_name,
        guest_email=booking.guest_email,
        host_name=host.name,
        host_email=host.email,
        event_title=event_type.title,
        date_str=date_str,
        time_str=time_str,
        location=location or booking.location or event_type.location_value,
        notes=booking.notes,
        cancel_reason=booking.cancel_reason,
        additional_guest_emails=[
            str(guest.email) for guest in load_additional_guests(booking.additional_guests_json)
        ],
        old_date_str=old_date_str,
        old_time_str=old_time_str,
    )


def render_text(kind: NotificationKind, facts: BookingEmailFacts) -> str:
    lines = [f"Hi {facts.guest_name},", ""]
    if kind is NotificationKind.CONFIRMATION:
        lines.append(f"Your {facts.event_title} with {facts.host_name} is booked.")
    elif kind is NotificationKind.CANCELLATION:
        lines.append(f"Your {facts.event_title} with {facts.host_name} was cancelled.")
        if facts.cancel_reason:
            lines.append(f"Reason: {facts.cancel_reason}")
    elif kind is NotificationKind.REMINDER:
        lines.append(f"A reminder that your {facts.event_title} with {facts.host_name} is tomorrow.")
    else:
        lines.append(f"Your {facts.event_title} with {facts.host_name} was moved.")
        if facts.old_date_str:
            lines.append(f"Previously: {facts.old_date_str}, {facts.old_time_str}")
    lines.append(f"When: {facts.date_str}, {facts.time_str}")
    if facts.location:
        lines.append(f"Where: {facts.location}")
    if facts.notes:
        lines.append(f"Notes: {facts.notes}")
    lines.extend(["", f"Booking reference: {facts.booking_uid}"])
    return "\n".join(lines)


def notify(kind: NotificationKind, facts: BookingEmailFacts) -> bool:
    """Send one email to the guest (host and extra guests in cc).

    Returns False when sending is not configured. Raises
    UpstreamUnavailableError when the provider call fails.
    """
    api_key = resend_api_key()
    if not api_key:
        logger.debug("RESEND_API_KEY not set; skipping %s email", kind.value)
        return False

    payload = {
        "from": email_from(),
        "to": [facts.guest_email],
        "cc": [facts.host_email, *facts.additional_guest_emails],
        "subject": f"{SUBJECT_PREFIX[kind]}: {facts.event_title} with {facts.host_name}",
        "text": render_text(kind, facts),
    }
    req = request.Request(
        RESEND_ENDPOINT,
        data=json.dumps(payload, separators=(",", ":"), ensure_ascii=False).encode("utf-8"),
        headers={
            "Content-Type": "application/json",
            "Authorization": f"Bearer {api_key}",
        },
        method="POST",
    )
    try:
        with request.urlopen(req, timeout=NOTIFY_TIMEOUT_SECONDS) as resp:
            resp.read()
    except Exception as exc:
        raise UpstreamUnavailableError(f"Sending {kind.value} email failed.") from exc
    return True
