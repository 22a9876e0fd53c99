from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.exc import OperationalError

from calbook.booking.access import Requester
from calbook.db.models import Host
from calbook.db.store import unit_of_work
from calbook.errors import ErrorCode
from calbook.integrations import google_calendar
from calbook.main import app
from calbook.tools.list_bookings import ListBookingsArgs, list_bookings
from calbook.tools.manage_booking import cancel_booking, mark_no_show


client = TestClient(app)

FUTURE = datetime(2030, 3, 4, 15, 0, tzinfo=timezone.utc)
PAST = datetime(2020, 3, 2, 15, 0, tzinfo=timezone.utc)


def _book(make_booking, seeded, uid, start, status="CONFIRMED", **fields):
    return make_booking(
        host_id=seeded.host_id,
        event_type_id=seeded.event_type_id,
        start=start,
        end=start + timedelta(minutes=30),
        status=status,
        uid=uid,
        **fields,
    )


def _status(session_factory, uid):
    with unit_of_work(session_factory) as uow:
        return uow.get_booking_by_uid(uid).status


def _owner_headers(seeded):
    return {"Authorization": f"Bearer {seeded.api_key}"}


def test_guest_cancel_stores_reason(wired_app, seeded, make_booking, side_effect_executor):
    booking = _book(make_booking, seeded, "bk_1", FUTURE)

    response = client.post(
        "/v1/bookings/bk_1/cancel",
        json={"guest_email": "GRACE@example.com", "reason": "  Conflict came up  "},
    )

    body = response.json()
    assert response.status_code == 200
    assert body["data"]["status"] == "CANCELLED"
    assert body["data"]["cancel_reason"] == "Conflict came up"
    assert side_effect_executor.descriptions == [f"booking_cancelled booking_id={booking.id}"]


def test_guest_cancel_requires_email(wired_app, seeded, make_booking):
    _book(make_booking, seeded, "bk_1", FUTURE)

    response = client.post("/v1/bookings/bk_1/cancel", json={})

    assert response.status_code == 400
    assert response.json()["error_code"] == "INVALID_INPUT"
    assert _status(wired_app, "bk_1") == "CONFIRMED"


def test_guest_cancel_with_wrong_email_is_not_authorized(wired_app, seeded, make_booking):
    _book(make_booking, seeded, "bk_1", FUTURE)

    response = client.post("/v1/bookings/bk_1/cancel", json={"guest_email": "eve@example.com"})

    assert response.status_code == 403
    assert response.json()["error_code"] == "NOT_AUTHORIZED"


def test_cancel_twice_returns_already_cancelled(wired_app, seeded, make_booking):
    _book(make_booking, seeded, "bk_1", FUTURE)

    first = client.post("/v1/me/bookings/bk_1/cancel", headers=_owner_headers(seeded))
    second = client.post("/v1/me/bookings/bk_1/cancel", headers=_owner_headers(seeded))

    assert first.status_code == 200
    assert second.status_code == 409
    assert second.json()["error_code"] == "ALREADY_CANCELLED"


def test_cancel_rescheduled_booking_is_invalid_state(wired_app, seeded, make_booking):
    _book(make_booking, seeded, "bk_1", FUTURE, status="RESCHEDULED")

    response = client.post("/v1/me/bookings/bk_1/cancel", headers=_owner_headers(seeded))

    assert response.status_code == 409
    assert response.json()["error_code"] == "INVALID_STATE"


def test_cancel_side_effect_removes_calendar_event(
    monkeypatch, wired_app, seeded, make_booking, side_effect_executor
):
    _book(
        make_booking,
        seeded,
        "bk_1",
        FUTURE,
        external_event_provider="google",
        external_event_id="evt_1",
    )
    deleted = []
    monkeypatch.setattr(
        google_calendar,
        "delete_event",
        lambda host_id, *, external_event_id, db=None: deleted.append(external_event_id),
    )

    response = client.post("/v1/me/bookings/bk_1/cancel", headers=_owner_headers(seeded))
    side_effect_executor.run_all()

    assert response.status_code == 200
    assert deleted == ["evt_1"]


def test_confirm_pending_booking(wired_app, seeded, make_booking, side_effect_executor):
    booking = _book(make_booking, seeded, "bk_1", FUTURE, status="PENDING")

    response = client.post("/v1/me/bookings/bk_1/confirm", headers=_owner_headers(seeded))

    assert response.status_code == 200
    assert response.json()["data"]["status"] == "CONFIRMED"
    assert _status(wired_app, "bk_1") == "CONFIRMED"
    assert side_effect_executor.descriptions == [f"booking_confirmed booking_id={booking.id}"]


def test_confirm_confirmed_booking_is_invalid_state(wired_app, seeded, make_booking):
    _book(make_booking, seeded, "bk_1", FUTURE)

    response = client.post("/v1/me/bookings/bk_1/confirm", headers=_owner_headers(seeded))

    assert response.status_code == 409
    assert response.json()["error_code"] == "INVALID_STATE"


def test_confirm_other_hosts_booking_is_not_found(wired_app, seeded, make_booking):
    db = wired_app()
    try:
        other = Host(username="bob", name="Bob", email="bob@example.com", timezone="UTC")
        db.add(other)
        db.commit()
        other_id = other.id
    finally:
        db.close()
    make_booking(
        host_id=other_id,
        event_type_id=seeded.event_type_id,
        start=FUTURE,
        end=FUTURE + timedelta(minutes=30),
        status="PENDING",
        uid="bk_bob",
    )

    response = client.post("/v1/me/bookings/bk_bob/confirm", headers=_owner_headers(seeded))

    assert response.status_code == 404
    assert _status(wired_app, "bk_bob") == "PENDING"


def test_mark_no_show_after_booking_ended(wired_app, seeded, make_booking):
    _book(make_booking, seeded, "bk_past", PAST)

    response = client.post("/v1/me/bookings/bk_past/no-show", headers=_owner_headers(seeded))

    assert response.status_code == 200
    assert response.json()["data"]["status"] == "NO_SHOW"


def test_mark_no_show_before_end_is_invalid_state(session_factory, seeded, make_booking):
    _book(make_booking, seeded, "bk_1", FUTURE)

    result = mark_no_show(session_factory, "bk_1", owner_id=seeded.host_id, now=FUTURE + timedelta(minutes=10))

    assert result.error_code == ErrorCode.INVALID_STATE
    assert _status(session_factory, "bk_1") == "CONFIRMED"


def test_list_bookings_filters(session_factory, seeded, make_booking):
    now = datetime(2030, 3, 1, 12, 0, tzinfo=timezone.utc)
    _book(make_booking, seeded, "upcoming_late", FUTURE + timedelta(days=1))
    _book(make_booking, seeded, "upcoming_early", FUTURE)
    _book(make_booking, seeded, "pending", FUTURE + timedelta(hours=2), status="PENDING")
    _book(make_booking, seeded, "past_old", PAST)
    _book(make_booking, seeded, "past_recent", PAST + timedelta(days=7), status="NO_SHOW")
    _book(make_booking, seeded, "cancelled", FUTURE + timedelta(hours=4), status="CANCELLED")
    _book(make_booking, seeded, "moved", FUTURE + timedelta(hours=6), status="RESCHEDULED")

    def _uids(filter_name, limit=50):
        with unit_of_work(session_factory) as uow:
            result = list_bookings(
                uow,
                seeded.host_id,
                ListBookingsArgs(filter=filter_name, limit=limit),
                now=now,
            )
        return [item["uid"] for item in result["data"]["bookings"]]

    assert _uids("upcoming") == ["upcoming_early", "pending", "upcoming_late"]
    assert _uids("past") == ["past_recent", "past_old"]
    assert _uids("cancelled") == ["cancelled"]
    assert _uids("pending") == ["pending"]
    assert _uids("upcoming", limit=1) == ["upcoming_early"]


def test_list_bookings_route_includes_event_title(wired_app, seeded, make_booking):
    _book(make_booking, seeded, "bk_1", FUTURE)

    response = client.get("/v1/me/bookings", headers=_owner_headers(seeded))

    body = response.json()
    assert response.status_code == 200
    assert body["data"]["filter"] == "upcoming"
    assert body["data"]["bookings"][0]["event_title"] == "Intro call"


def test_list_bookings_route_rejects_unknown_filter(wired_app, seeded):
    response = client.get("/v1/me/bookings?filter=someday", headers=_owner_headers(seeded))

    assert response.status_code == 400
    assert response.json()["error_code"] == "INVALID_INPUT"


def test_cancel_that_cannot_commit_reports_retry_not_slot(session_factory, seeded, make_booking):
    _book(make_booking, seeded, "bk_1", FUTURE)
    attempts = []

    def _factory():
        db = session_factory()

        def _failing_commit():
            attempts.append(1)
            raise OperationalError("COMMIT", {}, Exception("could not serialize access"))

        db.commit = _failing_commit
        return db

    result = cancel_booking(_factory, "bk_1", requester=Requester(owner_id=seeded.host_id))

    assert len(attempts) == 2
    assert result.error_code == ErrorCode.INVALID_STATE
    assert result.human_message == "The booking could not be cancelled right now. Please try again."
    assert _status(session_factory, "bk_1") == "CONFIRMED"


@pytest.mark.parametrize(
    "path",
    [
        "/v1/me/bookings/bk_1/confirm",
        "/v1/me/bookings/bk_1/no-show",
        "/v1/me/bookings/bk_1/cancel",
    ],
)
def test_owner_booking_routes_wrap_unexpected_errors(monkeypatch, wired_app, seeded, path):
    def _broken_factory():
        raise RuntimeError("database unreachable")

    monkeypatch.setattr("calbook.main.BookingSessionLocal", _broken_factory)

    response = client.post(path, headers=_owner_headers(seeded))

    body = response.json()
    assert response.status_code == 500
    assert body["ok"] is False
    assert body["error_code"] == "SYSTEM_DOWN"
    assert body["human_message"].startswith("Temporary issue")


def test_owner_reschedule_wraps_unexpected_errors(monkeypatch, wired_app, seeded):
    def _broken_factory():
        raise RuntimeError("database unreachable")

    monkeypatch.setattr("calbook.main.BookingSessionLocal", _broken_factory)

    response = client.post(
        "/v1/me/bookings/bk_1/reschedule",
        json={"start_time": "2030-03-05T10:00:00-05:00"},
        headers=_owner_headers(seeded),
    )

    assert response.status_code == 500
    assert response.json()["error_code"] == "SYSTEM_DOWN"
