from __future__ import annotations

import json
import logging
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Iterator
from urllib import parse, request

from sqlalchemy.orm import Session

from calbook.availability.types import BusyInterval
from calbook.config import CALENDAR_TIMEOUT_SECONDS, google_oauth_settings
from calbook.db.models import Booking, EventType, GoogleOAuthCredential, Host, LocationType
from calbook.db.store import UnitOfWork, ensure_aware
from calbook.errors import UpstreamUnavailableError
from calbook.integrations.google_oauth import apply_grant, refresh_access_token

GOOGLE_FREEBUSY_ENDPOINT = "https://www.googleapis.com/calendar/v3/freeBusy"
GOOGLE_CALENDAR_EVENT_ENDPOINT_TEMPLATE = (
    "https://www.googleapis.com/calendar/v3/calendars/{calendar_id}/events"
)
GOOGLE_CALENDAR_EVENT_DELETE_ENDPOINT_TEMPLATE = (
    "https://www.googleapis.com/calendar/v3/calendars/{calendar_id}/events/{event_id}"
)
TOKEN_EXPIRY_MARGIN = timedelta(seconds=60)

logger = logging.getLogger("calbook.integrations.google_calendar")


@dataclass(frozen=True)
class CalendarEventResult:
    external_event_id: str
    conference_link: str | None = None


@contextmanager
def _session_scope(db: Session | None) -> Iterator[Session]:
    if db is not None:
        yield db
        return
    from calbook.db.session import SessionLocal

    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


def _fresh_access_token(session: Session, credentials: GoogleOAuthCredential) -> str:
    expiry = ensure_aware(credentials.token_expiry)
    if credentials.access_token and expiry and expiry > datetime.now(timezone.utc) + TOKEN_EXPIRY_MARGIN:
        return credentials.access_token
    if not credentials.refresh_token:
        raise UpstreamUnavailableError("Missing Google refresh token for host.")

    grant = refresh_access_token(credentials.refresh_token, google_oauth_settings())
    apply_grant(credentials, grant)
    session.commit()
    return credentials.access_token


def get_busy_intervals(
    host_id: int,
    range_start: datetime,
    range_end: datetime,
    db: Session | None = None,
) -> list[BusyInterval]:
    """Busy time from the host's Google calendar, or [] when it can't be read."""
    try:
        with _session_scope(db) as session:
            credentials = find_credentials(db=session, host_id=host_id)
            if credentials is None:
                return []
            access_token = _fresh_access_token(session, credentials)
            calendar_id = _calendar_id(credentials)
        body = {
            "timeMin": range_start.astimezone(timezone.utc).isoformat(),
            "timeMax": range_end.astimezone(timezone.utc).isoformat(),
            "items": [{"id": calendar_id}],
        }
        req = request.Request(
            GOOGLE_FREEBUSY_ENDPOINT,
            data=json.dumps(body, separators=(",", ":")).encode("utf-8"),
            headers={
                "Content-Type": "application/json",
                "Authorization": f"Bearer {access_token}",
            },
            method="POST",
        )
        payload = _send_json(req, failure_message="Google free/busy lookup failed.")
    except UpstreamUnavailableError:
        logger.warning("Google free/busy unavailable for host_id=%s; ignoring busy time", host_id)
        return []

    calendars = payload.get("calendars") or {}
    busy_rows = (calendars.get(calendar_id) or {}).get("busy") or []
    intervals = []
    for row in busy_rows:
        start = _parse_instant(row.get("start"))
        end = _parse_instant(row.get("end"))
        if start is not None and end is not None and start < end:
            intervals.append(BusyInterval(start=start, end=end))
    return intervals


def create_event(
    host: Host,
    booking: Booking,
    event_type: EventType,
    db: Session | None = None,
) -> CalendarEventResult | None:
    """Publish the booking to the host's calendar; None when no calendar is connected."""
    with _session_scope(db) as session:
        credentials = find_credentials(db=session, host_id=host.id)
        if credentials is None:
            return None
        access_token = _fresh_access_token(session, credentials)
        calendar_path = parse.quote(_calendar_id(credentials), safe="")

    endpoint = GOOGLE_CALENDAR_EVENT_ENDPOINT_TEMPLATE.format(calendar_id=calendar_path)
    wants_meet = event_type.location_type == LocationType.GOOGLE_MEET.value
    if wants_meet:
        endpoint = f"{endpoint}?conferenceDataVersion=1"

    attendees = [{"email": booking.guest_email, "displayName": booking.guest_name}]
    for guest in booking.additional_guests_json or []:
        if isinstance(guest, dict) and guest.get("email"):
            attendees.append({"email": guest["email"]})

    payload: dict[str, Any] = {
        "summary": f"{event_type.title} with {booking.guest_name}",
        "description": booking.notes or "",
        "start": {"dateTime": ensure_aware(booking.start_time).isoformat(), "timeZone": host.timezone},
        "end": {"dateTime": ensure_aware(booking.end_time).isoformat(), "timeZone": host.timezone},
        "attendees": attendees,
        "reminders": {"useDefault": True},
    }
    if booking.location and not wants_meet:
        payload["location"] = booking.location
    if wants_meet:
        payload["conferenceData"] = {
            "createRequest": {
                "requestId": booking.uid,
                "conferenceSolutionKey": {"type": "hangoutsMeet"},
            }
        }

    req = request.Request(
        endpoint,
        data=json.dumps(payload, separators=(",", ":"), ensure_ascii=False).encode("utf-8"),
        headers={
            "Content-Type": "application/json",
            "Authorization": f"Bearer {access_token}",
        },
        method="POST",
    )
    event_payload = _send_json(req, failure_message="Google calendar event creation failed.")

    event_id = event_payload.get("id")
    if not isinstance(event_id, str) or not event_id.strip():
        raise UpstreamUnavailableError("Google calendar event response missing id.")
    return CalendarEventResult(
        external_event_id=event_id.strip(),
        conference_link=_pick_conference_link(event_payload),
    )


def delete_event(
    host_id: int,
    *,
    external_event_id: str,
    db: Session | None = None,
) -> None:
    with _session_scope(db) as session:
        credentials = find_credentials(db=session, host_id=host_id)
        if credentials is None:
            raise UpstreamUnavailableError("Google calendar is no longer connected for host.")
        access_token = _fresh_access_token(session, credentials)
        calendar_path = parse.quote(_calendar_id(credentials), safe="")

    event_path = parse.quote(external_event_id.strip(), safe="")
    endpoint = GOOGLE_CALENDAR_EVENT_DELETE_ENDPOINT_TEMPLATE.format(
        calendar_id=calendar_path,
        event_id=event_path,
    )
    req = request.Request(
        endpoint,
        headers={"Authorization": f"Bearer {access_token}"},
        method="DELETE",
    )
    try:
        with request.urlopen(req, timeout=CALENDAR_TIMEOUT_SECONDS):
            return None
    except Exception as exc:
        # 404/410 mean the event is already gone, which is what we wanted.
        if getattr(exc, "code", None) in {404, 410}:
            return None
        raise UpstreamUnavailableError("Google calendar event delete failed.") from exc


def find_credentials(db: Session, host_id: int) -> GoogleOAuthCredential | None:
    return UnitOfWork(db).get_google_credentials(host_id)


def _send_json(req: request.Request, failure_message: str) -> dict[str, Any]:
    try:
        with request.urlopen(req, timeout=CALENDAR_TIMEOUT_SECONDS) as resp:
            body = resp.read().decode("utf-8")
    except Exception as exc:
        raise UpstreamUnavailableError(failure_message) from exc

    try:
        payload = json.loads(body)
    except json.JSONDecodeError as exc:
        raise UpstreamUnavailableError(f"{failure_message} Invalid JSON response.") from exc
    if not isinstance(payload, dict):
        raise UpstreamUnavailableError(f"{failure_message} Unexpected response shape.")
    return payload


def _calendar_id(credentials: GoogleOAuthCredential | None) -> str:
    if credentials is None:
        return "primary"
    return (credentials.calendar_id or "primary").strip() or "primary"


def _pick_conference_link(event_payload: dict[str, Any]) -> str | None:
    hangout_link = event_payload.get("hangoutLink")
    if isinstance(hangout_link, str) and hangout_link.strip():
        return hangout_link.strip()
    conference = event_payload.get("conferenceData") or {}
    for entry in conference.get("entryPoints") or []:
        if entry.get("entryPointType") == "video" and isinstance(entry.get("uri"), str):
            return entry["uri"]
    return None


def _parse_instant(value: Any) -> datetime | None:
    if not isinstance(value, str) or not value.strip():
        return None
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed
