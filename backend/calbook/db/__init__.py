from calbook.db.base import Base
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
    LocationType,
)

__all__ = [
    "Base",
    "ApiKey",
    "AvailabilityRule",
    "AvailabilitySchedule",
    "Booking",
    "BookingStatus",
    "DateOverride",
    "EventType",
    "GoogleOAuthCredential",
    "Host",
    "LocationType",
]
