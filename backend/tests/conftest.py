from types import SimpleNamespace

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

import calbook.main as main_module
from calbook.booking import side_effects
from calbook.db.base import Base
from calbook.db.models import (
    ApiKey,
    AvailabilityRule,
    AvailabilitySchedule,
    Booking,
    EventType,
    Host,
)
from calbook.security import dependencies

OWNER_API_KEY = "cb_test_owner_key"


class RecordingExecutor:
    """Stands in for the side-effect thread pool; tasks run only on request."""

    def __init__(self):
        self.calls = []

    def submit(self, fn, *args, **kwargs):
        self.calls.append((fn, args, kwargs))

    def run_all(self):
        calls, self.calls = self.calls, []
        for fn, args, kwargs in calls:
            fn(*args, **kwargs)

    @property
    def descriptions(self):
        return [args[1] for _fn, args, _kwargs in self.calls]


@pytest.fixture(autouse=True)
def side_effect_executor(monkeypatch):
    executor = RecordingExecutor()
    monkeypatch.setattr(side_effects, "_executor", executor)
    monkeypatch.delenv("RESEND_API_KEY", raising=False)
    return executor


@pytest.fixture
def session_factory():
    engine = create_engine(
        "sqlite+pysqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    factory = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    yield factory
    engine.dispose()


@pytest.fixture
def wired_app(monkeypatch, session_factory):
    """Point every session the app opens at the in-memory database."""
    monkeypatch.setattr(main_module, "SessionLocal", session_factory)
    monkeypatch.setattr(main_module, "BookingSessionLocal", session_factory)
    monkeypatch.setattr(dependencies, "SessionLocal", session_factory)
    monkeypatch.setattr(side_effects, "SessionLocal", session_factory)
    return session_factory


@pytest.fixture
def seeded(session_factory):
    """One host in New York with a Mon-Fri 09:00-17:00 schedule and a 30 minute event."""
    db = session_factory()
    try:
        host = Host(
            username="ada",
            name="Ada Lovelace",
            email="ada@example.com",
            timezone="America/New_York",
        )
        db.add(host)
        db.flush()

        schedule = AvailabilitySchedule(
            host_id=host.id,
            name="Working hours",
            timezone="America/New_York",
            is_default=True,
        )
        db.add(schedule)
        db.flush()
        for day in range(1, 6):
            db.add(
                AvailabilityRule(
                    schedule_id=schedule.id,
                    day_of_week=day,
                    start_time="09:00",
                    end_time="17:00",
                )
            )

        event_type = EventType(
            host_id=host.id,
            title="Intro call",
            slug="intro",
            duration=30,
            buffer_before=0,
            buffer_after=0,
            minimum_notice=0,
            requires_confirmation=False,
            location_type="PHONE",
            is_active=True,
        )
        db.add(event_type)
        db.add(ApiKey(host_id=host.id, key=OWNER_API_KEY, name="tests"))
        db.commit()
        return SimpleNamespace(
            host_id=host.id,
            schedule_id=schedule.id,
            event_type_id=event_type.id,
            api_key=OWNER_API_KEY,
        )
    finally:
        db.close()


@pytest.fixture
def make_booking(session_factory):
    def _make(*, host_id, event_type_id, start, end, status="CONFIRMED", **fields):
        db = session_factory()
        try:
            booking = Booking(
                uid=fields.pop("uid", f"uid-{start:%Y%m%d%H%M}-{status.lower()}"),
                host_id=host_id,
                event_type_id=event_type_id,
                guest_name=fields.pop("guest_name", "Grace Hopper"),
                guest_email=fields.pop("guest_email", "grace@example.com"),
                guest_timezone=fields.pop("guest_timezone", "America/New_York"),
                start_time=start,
                end_time=end,
                status=status,
                **fields,
            )
            db.add(booking)
            db.commit()
            return booking
        finally:
            db.close()

    return _make
