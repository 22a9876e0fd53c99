"""Row access for the booking core.

``UnitOfWork`` wraps one SQLAlchemy session and is the only way the tools read
or write rows. Write paths open it with ``unit_of_work(BookingSessionLocal)``
and pass the handle down explicitly, so the transaction boundary is always an
argument rather than ambient state.
"""
from __future__ import annotations

import uuid
from contextlib import contextmanager
from datetime import date, datetime, timezone
from typing import Any, Callable, Iterable, Iterator

from sqlalchemy.orm import Session

from calbook.db.models import (
    ApiKey,
    AvailabilityRule,
    AvailabilitySchedule,
    Booking,
    BookingStatus,
    DateOverride,
    EventType,
    GoogleOAuthCredential,
    Host,
)


class UnitOfWork:
    def __init__(self, db: Session):
        self.db = db

    def get_host(self, host_id: int) -> Host | None:
        for host in self.db.query(Host).filter(Host.id == host_id).all():
            if host.id == host_id:
                return host
        return None

    def get_host_by_username(self, username: str) -> Host | None:
        target = (username or "").strip().lower()
        for host in self.db.query(Host).filter(Host.username == target).all():
            if (host.username or "").lower() == target:
                return host
        return None

    def get_host_by_api_key(self, key: str, now: datetime) -> Host | None:
        for api_key in self.db.query(ApiKey).filter(ApiKey.key == key).all():
            if api_key.key != key:
                continue
            expires_at = ensure_aware(api_key.expires_at)
            if expires_at is not None and expires_at < now:
                return None
            api_key.last_used_at = now
            return self.get_host(api_key.host_id)
        return None

    def list_api_keys(self, host_id: int) -> list[ApiKey]:
        """Newest first."""
        rows = self.db.query(ApiKey).filter(ApiKey.host_id == host_id).all()
        return sorted(
            (row for row in rows if row.host_id == host_id),
            key=lambda row: row.id,
            reverse=True,
        )

    def get_api_key(self, host_id: int, key_id: int) -> ApiKey | None:
        for api_key in self.db.query(ApiKey).filter(ApiKey.id == key_id).all():
            if api_key.id == key_id and api_key.host_id == host_id:
                return api_key
        return None

    def get_google_credentials(self, host_id: int) -> GoogleOAuthCredential | None:
        rows = (
            self.db.query(GoogleOAuthCredential)
            .filter(GoogleOAuthCredential.host_id == host_id)
            .all()
        )
        for credentials in rows:
            if credentials.host_id == host_id:
                return credentials
        return None

    def get_event_type(self, event_type_id: int) -> EventType | None:
        for event_type in self.db.query(EventType).filter(EventType.id == event_type_id).all():
            if event_type.id == event_type_id:
                return event_type
        return None

    def get_event_type_by_slug(self, host_id: int, slug: str) -> EventType | None:
        rows = (
            self.db.query(EventType)
            .filter(EventType.host_id == host_id)
            .filter(EventType.slug == slug)
            .all()
        )
        for event_type in rows:
            if event_type.host_id == host_id and event_type.slug == slug:
                return event_type
        return None

    def list_event_types(self, host_id: int) -> list[EventType]:
        rows = self.db.query(EventType).filter(EventType.host_id == host_id).all()
        return sorted((row for row in rows if row.host_id == host_id), key=lambda row: row.id)

    def get_schedule(self, schedule_id: int) -> AvailabilitySchedule | None:
        rows = (
            self.db.query(AvailabilitySchedule)
            .filter(AvailabilitySchedule.id == schedule_id)
            .all()
        )
        for schedule in rows:
            if schedule.id == schedule_id:
                return schedule
        return None

    def list_schedules(self, host_id: int) -> list[AvailabilitySchedule]:
        rows = (
            self.db.query(AvailabilitySchedule)
            .filter(AvailabilitySchedule.host_id == host_id)
            .all()
        )
        return sorted((row for row in rows if row.host_id == host_id), key=lambda row: row.id)

    def resolve_schedule(self, event_type: EventType) -> AvailabilitySchedule | None:
        if event_type.schedule_id is not None:
            schedule = self.get_schedule(event_type.schedule_id)
            if schedule is not None:
                return schedule
        for schedule in self.list_schedules(event_type.host_id):
            if schedule.is_default:
                return schedule
        return None

    def list_rules(self, schedule_id: int) -> list[AvailabilityRule]:
        rows = (
            self.db.query(AvailabilityRule)
            .filter(AvailabilityRule.schedule_id == schedule_id)
            .all()
        )
        return [row for row in rows if row.schedule_id == schedule_id]

    def list_overrides(self, schedule_id: int) -> list[DateOverride]:
        rows = self.db.query(DateOverride).filter(DateOverride.schedule_id == schedule_id).all()
        return [row for row in rows if row.schedule_id == schedule_id]

    def get_booking(self, booking_id: int) -> Booking | None:
        for booking in self.db.query(Booking).filter(Booking.id == booking_id).all():
            if booking.id == booking_id:
                return booking
        return None

    def get_booking_by_uid(self, uid: str) -> Booking | None:
        for booking in self.db.query(Booking).filter(Booking.uid == uid).all():
            if booking.uid == uid:
                return booking
        return None

    def list_bookings(
        self,
        owner_id: int,
        range_start: datetime | None = None,
        range_end: datetime | None = None,
        statuses: Iterable[str] | None = None,
        exclude_booking_id: int | None = None,
    ) -> list[Booking]:
        """Bookings of one owner whose [start, end) intersects the range."""
        status_set = set(statuses) if statuses is not None else None
        query = self.db.query(Booking).filter(Booking.host_id == owner_id)
        if range_end is not None:
            query = query.filter(Booking.start_time < range_end)
        if range_start is not None:
            query = query.filter(Booking.end_time > range_start)
        if status_set is not None:
            query = query.filter(Booking.status.in_(sorted(status_set)))
        if exclude_booking_id is not None:
            query = query.filter(Booking.id != exclude_booking_id)

        matches = []
        for booking in query.all():
            if booking.host_id != owner_id:
                continue
            if exclude_booking_id is not None and booking.id == exclude_booking_id:
                continue
            if status_set is not None and booking.status not in status_set:
                continue
            if range_end is not None and not ensure_aware(booking.start_time) < range_end:
                continue
            if range_start is not None and not ensure_aware(booking.end_time) > range_start:
                continue
            matches.append(booking)
        return sorted(matches, key=lambda booking: ensure_aware(booking.start_time))

    def list_due_reminders(self, window_start: datetime, window_end: datetime) -> list[Booking]:
        """Confirmed, not yet reminded bookings of any host starting inside the window."""
        query = (
            self.db.query(Booking)
            .filter(Booking.status == BookingStatus.CONFIRMED.value)
            .filter(Booking.reminder_sent_at.is_(None))
            .filter(Booking.start_time >= window_start)
            .filter(Booking.start_time <= window_end)
        )
        due = [
            booking
            for booking in query.all()
            if booking.status == BookingStatus.CONFIRMED.value
            and booking.reminder_sent_at is None
            and window_start <= ensure_aware(booking.start_time) <= window_end
        ]
        return sorted(due, key=lambda booking: (ensure_aware(booking.start_time), booking.id))

    def insert_booking(self, **fields: Any) -> Booking:
        fields.setdefault("uid", uuid.uuid4().hex)
        booking = Booking(**fields)
        self.db.add(booking)
        self.db.flush()
        return booking

    def update_booking_status(
        self,
        booking_id: int,
        status: str,
        reason: str | None = None,
    ) -> Booking | None:
        booking = self.get_booking(booking_id)
        if booking is None:
            return None
        booking.status = status
        if reason is not None:
            booking.cancel_reason = reason
        self.db.flush()
        return booking

    def add(self, row: Any) -> Any:
        self.db.add(row)
        self.db.flush()
        return row

    def delete(self, row: Any) -> None:
        self.db.delete(row)
        self.db.flush()

    def commit(self) -> None:
        self.db.commit()

    def rollback(self) -> None:
        self.db.rollback()


@contextmanager
def unit_of_work(session_factory: Callable[[], Session]) -> Iterator[UnitOfWork]:
    """Open a session; anything not committed by the caller is rolled back."""
    db = session_factory()
    uow = UnitOfWork(db)
    try:
        yield uow
    except BaseException:
        db.rollback()
        raise
    finally:
        db.close()


def ensure_aware(value: datetime | None) -> datetime | None:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def parse_override_date(value: date | datetime | str) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value)[:10])
