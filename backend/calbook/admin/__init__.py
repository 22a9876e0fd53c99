from calbook.admin.event_types import (
    CreateEventTypeArgs,
    UpdateEventTypeArgs,
    create_event_type,
    list_event_types,
    serialize_event_type,
    update_event_type,
)
from calbook.admin.hosts import (
    CreateApiKeyArgs,
    CreateHostArgs,
    create_api_key,
    create_host,
    list_hosts,
    serialize_api_key,
    serialize_host,
)
from calbook.admin.schedules import (
    ScheduleArgs,
    create_schedule,
    delete_schedule,
    list_schedules,
    serialize_schedule,
    set_default_schedule,
    update_schedule,
)

__all__ = [
    "CreateApiKeyArgs",
    "CreateEventTypeArgs",
    "CreateHostArgs",
    "ScheduleArgs",
    "UpdateEventTypeArgs",
    "create_api_key",
    "create_event_type",
    "create_host",
    "create_schedule",
    "delete_schedule",
    "list_event_types",
    "list_hosts",
    "list_schedules",
    "serialize_api_key",
    "serialize_event_type",
    "serialize_host",
    "serialize_schedule",
    "set_default_schedule",
    "update_event_type",
    "update_schedule",
]
