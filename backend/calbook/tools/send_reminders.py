from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Callable

from sqlalchemy.orm import Session

from calbook.db.store import ensure_aware, unit_of_work
from calbook.errors import UpstreamUnavailableError
from calbook.integrations import email_notify
from calbook.integrations.email_notify import NotificationKind, build_booking_email_facts

logger = logging.getLogger("calbook.tools.send_reminders")

# Bookings starting 23 to 25 hours from now are due, so an hourly run never
# misses one and never reminds twice.
REMINDER_LEAD = timedelta(hours=24)
REMINDER_SLACK = timedelta(hours=1)


def send_due_reminders(
    session_factory: Callable[[], Session],
    now: datetime | None = None,
) -> dict[str, Any]:
    now_utc = ensure_aware(now or datetime.now(timezone.utc))
    window_start = now_utc + REMINDER_LEAD - REMINDER_SLACK
    window_end = now_utc + REMINDER_LEAD + REMINDER_SLACK

    sent = failed = 0
    with unit_of_work(session_factory) as uow:
        due = uow.list_due_reminders(window_start, window_end)
        for booking in due:
            host = uow.get_host(booking.host_id)
            event_type = uow.get_event_type(booking.event_type_id)
            if host is None or event_type is None:
                continue
            facts = build_booking_email_facts(booking, host, event_type)
            try:
                delivered = email_notify.notify(NotificationKind.REMINDER, facts)
            except UpstreamUnavailableError:
                failed += 1
                logger.exception(
                    "Sending reminder email failed for booking_id=%s host_id=%s",
                    booking.id,
                    booking.host_id,
                )
                continue
            if not delivered:
                # Email is not configured; leave everything due for a later run.
                break
            booking.reminder_sent_at = now_utc
            uow.commit()
            sent += 1

    logger.info("Reminder run due=%s sent=%s failed=%s", len(due), sent, failed)
    return {"ok": True, "data": {"due": len(due), "sent": sent, "failed": failed}}
