from datetime import datetime, timezone

from fastapi.testclient import TestClient

from calbook.db.models import EventType, Host
from calbook.db.store import unit_of_work
from calbook.integrations import google_calendar
from calbook.integrations.google_calendar import CalendarEventResult
from calbook.main import app


client = TestClient(app)

ORIGINAL_START = datetime(2030, 3, 4, 15, 0, tzinfo=timezone.utc)
ORIGINAL_END = datetime(2030, 3, 4, 15, 30, tzinfo=timezone.utc)
# Tuesday 2030-03-05, 11:00 in New York.
NEW_START = "2030-03-05T11:00:00-05:00"


def _original(make_booking, seeded, **fields):
    return make_booking(
        host_id=seeded.host_id,
        event_type_id=seeded.event_type_id,
        start=ORIGINAL_START,
        end=ORIGINAL_END,
        uid="bk_original",
        notes="Bring the slides",
        location="Phone Call",
        additional_guests_json=[{"name": "Alan", "email": "alan@example.com"}],
        metadata_json={"version": 1, "responses": {"company": "Navy"}},
        **fields,
    )


def _booking(session_factory, uid):
    with unit_of_work(session_factory) as uow:
        return uow.get_booking_by_uid(uid)


def _owner_headers(seeded):
    return {"Authorization": f"Bearer {seeded.api_key}"}


def test_owner_reschedule_creates_linked_booking(wired_app, seeded, make_booking, side_effect_executor):
    source = _original(make_booking, seeded)

    response = client.post(
        "/v1/me/bookings/bk_original/reschedule",
        json={"start_time": NEW_START},
        headers=_owner_headers(seeded),
    )

    body = response.json()
    assert response.status_code == 200
    assert body["ok"] is True
    data = body["data"]
    assert data["uid"] != "bk_original"
    assert data["start_time"] == "2030-03-05T16:00:00+00:00"
    assert data["end_time"] == "2030-03-05T16:30:00+00:00"
    assert data["status"] == "CONFIRMED"
    assert data["rescheduled_from_id"] == source.id
    assert data["guest_email"] == "grace@example.com"
    assert data["notes"] == "Bring the slides"
    assert data["location"] == "Phone Call"
    assert data["additional_guests"] == [{"name": "Alan", "email": "alan@example.com"}]
    assert data["metadata"] == {"version": 1, "responses": {"company": "Navy"}}

    assert _booking(wired_app, "bk_original").status == "RESCHEDULED"
    assert side_effect_executor.descriptions == [
        f"booking_rescheduled booking_id={data['id']} from={source.id}"
    ]


def test_guest_reschedule_matches_email_case_insensitively(wired_app, seeded, make_booking):
    _original(make_booking, seeded)

    response = client.post(
        "/v1/bookings/reschedule",
        json={
            "booking_uid": "bk_original",
            "start_time": NEW_START,
            "guest_email": "Grace@Example.COM",
        },
    )

    assert response.status_code == 200
    assert response.json()["data"]["rescheduled_from_id"] is not None


def test_guest_reschedule_with_other_email_is_not_authorized(wired_app, seeded, make_booking):
    _original(make_booking, seeded)

    response = client.post(
        "/v1/bookings/reschedule",
        json={
            "booking_uid": "bk_original",
            "start_time": NEW_START,
            "guest_email": "mallory@example.com",
        },
    )

    assert response.status_code == 403
    assert response.json()["error_code"] == "NOT_AUTHORIZED"
    assert _booking(wired_app, "bk_original").status == "CONFIRMED"


def test_reschedule_conflict_leaves_source_untouched(wired_app, seeded, make_booking):
    _original(make_booking, seeded)
    make_booking(
        host_id=seeded.host_id,
        event_type_id=seeded.event_type_id,
        start=datetime(2030, 3, 5, 16, 0, tzinfo=timezone.utc),
        end=datetime(2030, 3, 5, 16, 30, tzinfo=timezone.utc),
        uid="bk_blocker",
        guest_email="someone@example.com",
    )

    response = client.post(
        "/v1/me/bookings/bk_original/reschedule",
        json={"start_time": NEW_START},
        headers=_owner_headers(seeded),
    )

    assert response.status_code == 409
    assert response.json()["error_code"] == "SLOT_UNAVAILABLE"
    source = _booking(wired_app, "bk_original")
    assert source.status == "CONFIRMED"
    with unit_of_work(wired_app) as uow:
        assert len(uow.list_bookings(seeded.host_id)) == 2


def test_reschedule_may_overlap_its_own_source(wired_app, seeded, make_booking):
    _original(make_booking, seeded)

    # 10:15 local overlaps the 10:00-10:30 source, which is being replaced.
    response = client.post(
        "/v1/me/bookings/bk_original/reschedule",
        json={"start_time": "2030-03-04T10:15:00-05:00"},
        headers=_owner_headers(seeded),
    )

    assert response.status_code == 200
    assert response.json()["data"]["start_time"] == "2030-03-04T15:15:00+00:00"


def test_reschedule_cancelled_booking_is_invalid_state(wired_app, seeded, make_booking):
    _original(make_booking, seeded, status="CANCELLED")

    response = client.post(
        "/v1/me/bookings/bk_original/reschedule",
        json={"start_time": NEW_START},
        headers=_owner_headers(seeded),
    )

    assert response.status_code == 409
    assert response.json()["error_code"] == "INVALID_STATE"


def test_reschedule_unknown_booking_returns_not_found(wired_app, seeded):
    response = client.post(
        "/v1/me/bookings/bk_missing/reschedule",
        json={"start_time": NEW_START},
        headers=_owner_headers(seeded),
    )

    assert response.status_code == 404
    assert response.json()["error_code"] == "NOT_FOUND"


def test_reschedule_to_another_hosts_event_type_returns_not_found(wired_app, seeded, make_booking):
    _original(make_booking, seeded)
    db = wired_app()
    try:
        other = Host(username="bob", name="Bob", email="bob@example.com", timezone="UTC")
        db.add(other)
        db.flush()
        foreign = EventType(
            host_id=other.id,
            title="Bob's call",
            slug="call",
            duration=30,
            buffer_before=0,
            buffer_after=0,
            minimum_notice=0,
            location_type="PHONE",
            is_active=True,
        )
        db.add(foreign)
        db.commit()
        foreign_id = foreign.id
    finally:
        db.close()

    response = client.post(
        "/v1/me/bookings/bk_original/reschedule",
        json={"start_time": NEW_START, "event_type_id": foreign_id},
        headers=_owner_headers(seeded),
    )

    assert response.status_code == 404
    assert _booking(wired_app, "bk_original").status == "CONFIRMED"


def test_reschedule_requires_owner_api_key(wired_app, seeded, make_booking):
    _original(make_booking, seeded)

    response = client.post(
        "/v1/me/bookings/bk_original/reschedule",
        json={"start_time": NEW_START},
        headers={"Authorization": "Bearer cb_wrong"},
    )

    assert response.status_code == 401
    assert response.json()["detail"]["error_code"] == "INVALID_API_KEY"


def test_reschedule_side_effects_move_calendar_event(
    monkeypatch, wired_app, seeded, make_booking, side_effect_executor
):
    _original(
        make_booking,
        seeded,
        external_event_provider="google",
        external_event_id="evt_old",
    )
    deleted = []
    monkeypatch.setattr(
        google_calendar,
        "delete_event",
        lambda host_id, *, external_event_id, db=None: deleted.append((host_id, external_event_id)),
    )
    monkeypatch.setattr(
        google_calendar,
        "create_event",
        lambda **_kwargs: CalendarEventResult(external_event_id="evt_new", conference_link=None),
    )

    response = client.post(
        "/v1/me/bookings/bk_original/reschedule",
        json={"start_time": NEW_START},
        headers=_owner_headers(seeded),
    )
    side_effect_executor.run_all()

    assert response.status_code == 200
    assert deleted == [(seeded.host_id, "evt_old")]
    moved = _booking(wired_app, response.json()["data"]["uid"])
    assert moved.external_event_id == "evt_new"
    assert moved.location == "Phone Call"
