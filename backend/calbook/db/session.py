from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from calbook.config import BOOKING_TX_TIMEOUT_MS, DATABASE_URL


def _is_postgres(url: str) -> bool:
    return url.startswith("postgresql")


engine = create_engine(DATABASE_URL, pool_pre_ping=True)

# Booking writes get their own engine: every check-then-insert runs with
# SERIALIZABLE isolation and a bounded statement time.
if _is_postgres(DATABASE_URL):
    booking_engine = create_engine(
        DATABASE_URL,
        pool_pre_ping=True,
        isolation_level="SERIALIZABLE",
        connect_args={"options": f"-c statement_timeout={BOOKING_TX_TIMEOUT_MS}"},
    )
else:
    booking_engine = engine

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
BookingSessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    expire_on_commit=False,
    bind=booking_engine,
)
