from datetime import datetime, timedelta, timezone

from calbook.booking.conflicts import (
    BookingDraft,
    find_conflicts,
    reserve_slot,
    run_booking_transaction,
)
from calbook.db.models import ApiKey, AvailabilitySchedule
from calbook.db.store import unit_of_work
from calbook.errors import ErrorCode, invalid_state


NINE = datetime(2030, 3, 4, 14, 0, tzinfo=timezone.utc)


def _at(minutes):
    return NINE + timedelta(minutes=minutes)


def _book(make_booking, seeded, uid, start_minutes, duration=30, status="CONFIRMED"):
    return make_booking(
        host_id=seeded.host_id,
        event_type_id=seeded.event_type_id,
        start=_at(start_minutes),
        end=_at(start_minutes + duration),
        status=status,
        uid=uid,
    )


def test_list_bookings_returns_intersecting_rows_in_start_order(session_factory, seeded, make_booking):
    _book(make_booking, seeded, "late", 120)
    _book(make_booking, seeded, "early", 0)
    _book(make_booking, seeded, "touching", 60)
    _book(make_booking, seeded, "cancelled", 30, status="CANCELLED")

    with unit_of_work(session_factory) as uow:
        everything = [row.uid for row in uow.list_bookings(seeded.host_id)]
        # [00:15, 01:00) intersects "early" and "cancelled"; "touching" starts at the end.
        ranged = [
            row.uid
            for row in uow.list_bookings(seeded.host_id, range_start=_at(15), range_end=_at(60))
        ]
        active = [
            row.uid
            for row in uow.list_bookings(
                seeded.host_id,
                range_start=_at(15),
                range_end=_at(60),
                statuses=("CONFIRMED", "PENDING"),
            )
        ]

    assert everything == ["early", "cancelled", "touching", "late"]
    assert ranged == ["early", "cancelled"]
    assert active == ["early"]


def test_list_bookings_can_exclude_one_booking(session_factory, seeded, make_booking):
    early = _book(make_booking, seeded, "early", 0)
    _book(make_booking, seeded, "late", 120)

    with unit_of_work(session_factory) as uow:
        rows = uow.list_bookings(seeded.host_id, exclude_booking_id=early.id)

    assert [row.uid for row in rows] == ["late"]


def test_list_bookings_is_scoped_to_owner(session_factory, seeded, make_booking):
    _book(make_booking, seeded, "mine", 0)

    with unit_of_work(session_factory) as uow:
        assert uow.list_bookings(seeded.host_id + 1) == []


def test_get_host_by_api_key_updates_last_used_and_rejects_expired(session_factory, seeded):
    now = datetime(2030, 1, 1, tzinfo=timezone.utc)
    db = session_factory()
    try:
        db.add(
            ApiKey(
                host_id=seeded.host_id,
                key="cb_expired",
                expires_at=now - timedelta(days=1),
            )
        )
        db.commit()
    finally:
        db.close()

    with unit_of_work(session_factory) as uow:
        host = uow.get_host_by_api_key(seeded.api_key, now=now)
        expired = uow.get_host_by_api_key("cb_expired", now=now)
        unknown = uow.get_host_by_api_key("cb_unknown", now=now)
        uow.commit()

    assert host.id == seeded.host_id
    assert expired is None
    assert unknown is None
    db = session_factory()
    try:
        stored = db.query(ApiKey).filter(ApiKey.key == seeded.api_key).one()
        assert stored.last_used_at is not None
    finally:
        db.close()


def test_resolve_schedule_prefers_explicit_then_default(session_factory, seeded):
    with unit_of_work(session_factory) as uow:
        event_type = uow.get_event_type(seeded.event_type_id)
        assert uow.resolve_schedule(event_type).id == seeded.schedule_id

        other = uow.add(
            AvailabilitySchedule(
                host_id=seeded.host_id,
                name="Evenings",
                timezone="America/New_York",
                is_default=False,
            )
        )
        event_type.schedule_id = other.id
        assert uow.resolve_schedule(event_type).id == other.id


def test_find_conflicts_applies_buffers_to_existing_bookings(session_factory, seeded, make_booking):
    _book(make_booking, seeded, "existing", 60)

    with unit_of_work(session_factory) as uow:
        # A 10 minute tail after the 10:00-10:30 booking blocks a 10:30 start.
        tail = find_conflicts(
            uow,
            owner_id=seeded.host_id,
            start=_at(90),
            end=_at(120),
            buffer_before=0,
            buffer_after=10,
        )
        # A lead buffer only reaches backwards from the existing booking.
        lead = find_conflicts(
            uow,
            owner_id=seeded.host_id,
            start=_at(90),
            end=_at(120),
            buffer_before=10,
            buffer_after=0,
        )
        before = find_conflicts(
            uow,
            owner_id=seeded.host_id,
            start=_at(25),
            end=_at(55),
            buffer_before=10,
            buffer_after=0,
        )

    assert [row.uid for row in tail] == ["existing"]
    assert lead == []
    assert [row.uid for row in before] == ["existing"]


def _draft():
    return BookingDraft(
        guest_name="Grace Hopper",
        guest_email="grace@example.com",
        guest_timezone="America/New_York",
    )


def test_reserve_slot_supersede_conflict_changes_nothing(session_factory, seeded, make_booking):
    source = _book(make_booking, seeded, "source", 0)
    _book(make_booking, seeded, "blocker", 120)

    def work(uow):
        event_type = uow.get_event_type(seeded.event_type_id)
        return reserve_slot(
            uow,
            event_type=event_type,
            start=_at(120),
            draft=_draft(),
            supersede_booking_id=source.id,
        )

    result = run_booking_transaction(session_factory, work)

    assert result.error_code == ErrorCode.SLOT_UNAVAILABLE
    with unit_of_work(session_factory) as uow:
        assert uow.get_booking(source.id).status == "CONFIRMED"
        assert len(uow.list_bookings(seeded.host_id)) == 2


def test_reserve_slot_supersede_marks_source_and_links_successor(session_factory, seeded, make_booking):
    source = _book(make_booking, seeded, "source", 0)

    def work(uow):
        event_type = uow.get_event_type(seeded.event_type_id)
        return reserve_slot(
            uow,
            event_type=event_type,
            start=_at(15),
            draft=_draft(),
            supersede_booking_id=source.id,
        )

    successor = run_booking_transaction(session_factory, work)

    assert successor.rescheduled_from_id == source.id
    with unit_of_work(session_factory) as uow:
        assert uow.get_booking(source.id).status == "RESCHEDULED"
        assert uow.get_booking(successor.id).status == "CONFIRMED"


def test_run_booking_transaction_rolls_back_on_failure(session_factory, seeded):
    def work(uow):
        uow.add(
            AvailabilitySchedule(
                host_id=seeded.host_id,
                name="Scratch",
                timezone="UTC",
                is_default=False,
            )
        )
        return invalid_state("nope")

    result = run_booking_transaction(session_factory, work)

    assert result.error_code == ErrorCode.INVALID_STATE
    with unit_of_work(session_factory) as uow:
        assert [schedule.name for schedule in uow.list_schedules(seeded.host_id)] == ["Working hours"]
