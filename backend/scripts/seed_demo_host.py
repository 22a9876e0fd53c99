import secrets

from calbook.db.models import ApiKey, AvailabilityRule, AvailabilitySchedule, EventType, Host
from calbook.db.session import SessionLocal


def seed_demo_host() -> None:
    session = SessionLocal()
    try:
        existing = session.query(Host).filter(Host.username == "demo").first()
        if existing is not None:
            print(f"Demo host already exists with id={existing.id}")
            return

        demo = Host(
            username="demo",
            name="Demo Host",
            email="demo@example.com",
            timezone="America/New_York",
        )
        session.add(demo)
        session.flush()

        schedule = AvailabilitySchedule(
            host_id=demo.id,
            name="Working hours",
            timezone="America/New_York",
            is_default=True,
        )
        session.add(schedule)
        session.flush()
        for day_of_week in range(1, 6):
            session.add(
                AvailabilityRule(
                    schedule_id=schedule.id,
                    day_of_week=day_of_week,
                    start_time="09:00",
                    end_time="17:00",
                )
            )

        session.add(
            EventType(
                host_id=demo.id,
                title="30 Minute Meeting",
                slug="30min",
                duration=30,
                minimum_notice=120,
                location_type="GOOGLE_MEET",
            )
        )
        api_key = ApiKey(host_id=demo.id, key=f"cb_{secrets.token_hex(32)}", name="demo")
        session.add(api_key)
        session.commit()
        print(f"Created demo host with id={demo.id}")
        print(f"Owner API key: {api_key.key}")
    finally:
        session.close()


if __name__ == "__main__":
    seed_demo_host()
