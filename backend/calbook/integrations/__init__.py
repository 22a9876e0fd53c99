from calbook.integrations.email_notify import (
    BookingEmailFacts,
    NotificationKind,
    build_booking_email_facts,
    notify,
)
from calbook.integrations.google_calendar import (
    CalendarEventResult,
    create_event,
    delete_event,
    get_busy_intervals,
)
from calbook.integrations.google_oauth import (
    GoogleTokenGrant,
    build_google_auth_url,
    build_google_oauth_state,
    exchange_google_code_for_tokens,
    parse_google_oauth_state,
    persist_google_credentials,
)

__all__ = [
    "BookingEmailFacts",
    "CalendarEventResult",
    "GoogleTokenGrant",
    "NotificationKind",
    "build_booking_email_facts",
    "build_google_auth_url",
    "build_google_oauth_state",
    "create_event",
    "delete_event",
    "exchange_google_code_for_tokens",
    "get_busy_intervals",
    "notify",
    "parse_google_oauth_state",
    "persist_google_credentials",
]
