import json
import logging
import time
import uuid
from typing import Any

from fastapi import Depends, FastAPI, Request, Response
from fastapi.responses import HTMLResponse, JSONResponse
from pydantic import ValidationError

from calbook.admin.event_types import (
    CreateEventTypeArgs,
    UpdateEventTypeArgs,
    create_event_type,
    delete_event_type,
    list_event_types,
    serialize_event_type,
    update_event_type,
)
from calbook.admin.hosts import (
    CreateApiKeyArgs,
    CreateHostArgs,
    create_api_key,
    create_host,
    list_api_keys,
    list_hosts,
    revoke_api_key,
    serialize_api_key,
    serialize_host,
)
from calbook.admin.schedules import (
    ScheduleArgs,
    create_schedule,
    delete_schedule,
    get_schedule,
    list_schedules,
    serialize_schedule,
    set_default_schedule,
    update_schedule,
)
from calbook.booking.access import Requester
from calbook.config import GoogleOAuthSettings, google_oauth_settings
from calbook.db.session import BookingSessionLocal, SessionLocal
from calbook.db.store import unit_of_work
from calbook.errors import ErrorCode, Failure, map_validation_error
from calbook.integrations.google_oauth import (
    build_google_auth_url,
    build_google_oauth_state,
    exchange_google_code_for_tokens,
    parse_google_oauth_state,
    persist_google_credentials,
)
from calbook.security.dependencies import (
    require_admin_api_key,
    require_cron_secret,
    require_owner,
)
from calbook.tools.create_booking import create_booking, parse_create_booking_args
from calbook.tools.get_free_slots import get_free_slots, parse_get_free_slots_args
from calbook.tools.list_bookings import list_bookings, parse_list_bookings_args
from calbook.tools.manage_booking import (
    GuestCancelBookingArgs,
    cancel_booking,
    confirm_booking,
    mark_no_show,
    parse_cancel_booking_args,
)
from calbook.tools.reschedule_booking import (
    GuestRescheduleArgs,
    parse_reschedule_booking_args,
    reschedule_booking,
)
from calbook.tools.send_reminders import send_due_reminders


def configure_logging() -> logging.Logger:
    logging.basicConfig(level=logging.INFO, format="%(message)s")
    return logging.getLogger("calbook.backend")


logger = configure_logging()
app = FastAPI(title="calbook")


@app.middleware("http")
async def request_id_middleware(request: Request, call_next):
    request_id = request.headers.get("x-request-id") or str(uuid.uuid4())
    start_time = time.perf_counter()

    response = await call_next(request)

    duration_ms = round((time.perf_counter() - start_time) * 1000, 2)
    response.headers["x-request-id"] = request_id

    logger.info(
        json.dumps(
            {
                "event": "http_request",
                "request_id": request_id,
                "method": request.method,
                "path": request.url.path,
                "status_code": response.status_code,
                "duration_ms": duration_ms,
            }
        )
    )
    return response


def _invalid_args(exc: ValidationError) -> JSONResponse:
    return JSONResponse(content={"ok": False, **map_validation_error(exc)}, status_code=400)


def _result_response(result: dict[str, Any] | Failure) -> JSONResponse:
    if isinstance(result, Failure):
        return JSONResponse(content=result.to_response(), status_code=result.status_code)
    return JSONResponse(content=result)


def _system_down(message: str) -> JSONResponse:
    return JSONResponse(
        status_code=500,
        content={
            "ok": False,
            "error_code": ErrorCode.SYSTEM_DOWN.value,
            "human_message": message,
        },
    )


def _not_found(what: str) -> JSONResponse:
    return JSONResponse(
        status_code=404,
        content={
            "ok": False,
            "error_code": ErrorCode.NOT_FOUND.value,
            "human_message": f"{what} not found.",
        },
    )


def _conflict(exc: ValueError) -> JSONResponse:
    return JSONResponse(
        status_code=409,
        content={
            "ok": False,
            "error_code": ErrorCode.INVALID_STATE.value,
            "human_message": str(exc),
        },
    )


@app.get("/health")
async def health():
    return JSONResponse(content={"ok": True})


# Admin


@app.post("/v1/admin/hosts", dependencies=[Depends(require_admin_api_key)])
def admin_create_host(payload: dict[str, Any]) -> JSONResponse:
    try:
        args = CreateHostArgs.model_validate(payload)
    except ValidationError as exc:
        return _invalid_args(exc)

    db = SessionLocal()
    try:
        host = create_host(db=db, args=args)
        return JSONResponse(content={"ok": True, "data": {"host": serialize_host(host)}})
    except ValueError as exc:
        return _conflict(exc)
    except Exception:
        logger.exception("Creating host failed.")
        return _system_down("Temporary issue creating host.")
    finally:
        db.close()


@app.get("/v1/admin/hosts", dependencies=[Depends(require_admin_api_key)])
def admin_list_hosts() -> JSONResponse:
    db = SessionLocal()
    try:
        hosts = list_hosts(db=db)
        return JSONResponse(
            content={"ok": True, "data": {"hosts": [serialize_host(host) for host in hosts]}}
        )
    finally:
        db.close()


@app.post("/v1/admin/hosts/{host_id}/api-keys", dependencies=[Depends(require_admin_api_key)])
def admin_create_api_key(host_id: int, payload: dict[str, Any]) -> JSONResponse:
    try:
        args = CreateApiKeyArgs.model_validate(payload)
    except ValidationError as exc:
        return _invalid_args(exc)

    db = SessionLocal()
    try:
        api_key = create_api_key(db=db, host_id=host_id, args=args)
        if api_key is None:
            return _not_found("Host")
        return JSONResponse(
            content={"ok": True, "data": {"api_key": serialize_api_key(api_key, reveal=True)}}
        )
    finally:
        db.close()


# Google Calendar


def _oauth_not_configured() -> JSONResponse:
    return JSONResponse(
        status_code=500,
        content={
            "ok": False,
            "error_code": "GOOGLE_OAUTH_NOT_CONFIGURED",
            "human_message": "Google OAuth configuration is incomplete.",
        },
    )


def _oauth_error(error_code: str, message: str) -> JSONResponse:
    return JSONResponse(
        status_code=400,
        content={"ok": False, "error_code": error_code, "human_message": message},
    )


def _oauth_ready(settings: GoogleOAuthSettings, *, needs_secret: bool) -> bool:
    required = [settings.client_id, settings.redirect_uri, settings.state_secret]
    if needs_secret:
        required.append(settings.client_secret)
    return all(required)


@app.get("/v1/me/google/connect")
def google_connect(host_id: int = Depends(require_owner)) -> JSONResponse:
    settings = google_oauth_settings()
    if not _oauth_ready(settings, needs_secret=False):
        return _oauth_not_configured()

    state = build_google_oauth_state(host_id=host_id, secret=settings.state_secret)
    auth_url = build_google_auth_url(settings, state)
    return JSONResponse(content={"ok": True, "data": {"auth_url": auth_url}})


@app.get("/v1/integrations/google/oauth/callback")
def google_oauth_callback(code: str | None = None, state: str | None = None) -> Response:
    if not code or not state:
        return _oauth_error("INVALID_OAUTH_CALLBACK", "Missing OAuth code or state.")

    settings = google_oauth_settings()
    if not _oauth_ready(settings, needs_secret=True):
        return _oauth_not_configured()

    try:
        host_id = parse_google_oauth_state(state, secret=settings.state_secret)
    except ValueError as exc:
        return _oauth_error("INVALID_OAUTH_STATE", str(exc))

    try:
        grant = exchange_google_code_for_tokens(code=code, settings=settings)
    except ValueError as exc:
        return _oauth_error("OAUTH_TOKEN_EXCHANGE_FAILED", str(exc))

    try:
        with unit_of_work(SessionLocal) as uow:
            persist_google_credentials(uow, host_id=host_id, grant=grant)
    except (LookupError, ValueError) as exc:
        return _oauth_error("GOOGLE_OAUTH_PERSIST_FAILED", str(exc))
    except Exception:
        logger.exception("Persisting Google credentials failed for host_id=%s", host_id)
        return _system_down("Temporary issue completing Google OAuth.")

    logger.info("Google Calendar connected for host_id=%s", host_id)
    return HTMLResponse("<html><body>Google Calendar connected. You can close this tab.</body></html>")


# Guest booking flow


@app.get("/v1/availability/{username}")
def availability(
    username: str,
    request: Request,
) -> JSONResponse:
    try:
        args = parse_get_free_slots_args({**dict(request.query_params), "username": username})
    except ValidationError as exc:
        return _invalid_args(exc)

    try:
        with unit_of_work(SessionLocal) as uow:
            result = get_free_slots(uow, args)
    except Exception:
        logger.exception("Free slot lookup failed for username=%s", username)
        return _system_down("Temporary issue loading availability.")
    return _result_response(result)


@app.post("/v1/bookings")
def create_booking_route(payload: dict[str, Any]) -> JSONResponse:
    try:
        args = parse_create_booking_args(payload)
    except ValidationError as exc:
        return _invalid_args(exc)

    try:
        result = create_booking(BookingSessionLocal, args)
    except Exception:
        logger.exception("Creating booking failed for event_type_id=%s", args.event_type_id)
        return _system_down("Temporary issue creating booking.")
    return _result_response(result)


@app.post("/v1/bookings/reschedule")
def guest_reschedule_booking(payload: dict[str, Any]) -> JSONResponse:
    try:
        args = GuestRescheduleArgs.model_validate(payload)
    except ValidationError as exc:
        return _invalid_args(exc)

    try:
        result = reschedule_booking(
            BookingSessionLocal,
            args,
            requester=Requester(email=str(args.guest_email)),
        )
    except Exception:
        logger.exception("Rescheduling booking failed for uid=%s", args.booking_uid)
        return _system_down("Temporary issue rescheduling booking.")
    return _result_response(result)


@app.post("/v1/bookings/{uid}/cancel")
def guest_cancel_booking(uid: str, payload: dict[str, Any]) -> JSONResponse:
    try:
        args = GuestCancelBookingArgs.model_validate(payload)
    except ValidationError as exc:
        return _invalid_args(exc)

    try:
        result = cancel_booking(
            BookingSessionLocal,
            uid,
            requester=Requester(email=str(args.guest_email)),
            reason=args.reason,
        )
    except Exception:
        logger.exception("Cancelling booking failed for uid=%s", uid)
        return _system_down("Temporary issue cancelling booking.")
    return _result_response(result)


# Owner booking management


@app.get("/v1/me/bookings")
def owner_list_bookings(request: Request, host_id: int = Depends(require_owner)) -> JSONResponse:
    try:
        args = parse_list_bookings_args(dict(request.query_params))
    except ValidationError as exc:
        return _invalid_args(exc)

    try:
        with unit_of_work(SessionLocal) as uow:
            return JSONResponse(content=list_bookings(uow, host_id, args))
    except Exception:
        logger.exception("Listing bookings failed for host_id=%s", host_id)
        return _system_down("Temporary issue loading bookings.")


@app.post("/v1/me/bookings/{uid}/confirm")
def owner_confirm_booking(uid: str, host_id: int = Depends(require_owner)) -> JSONResponse:
    try:
        result = confirm_booking(BookingSessionLocal, uid, owner_id=host_id)
    except Exception:
        logger.exception("Confirming booking failed for uid=%s host_id=%s", uid, host_id)
        return _system_down("Temporary issue confirming booking.")
    return _result_response(result)


@app.post("/v1/me/bookings/{uid}/no-show")
def owner_mark_no_show(uid: str, host_id: int = Depends(require_owner)) -> JSONResponse:
    try:
        result = mark_no_show(BookingSessionLocal, uid, owner_id=host_id)
    except Exception:
        logger.exception("Marking no-show failed for uid=%s host_id=%s", uid, host_id)
        return _system_down("Temporary issue updating booking.")
    return _result_response(result)


@app.post("/v1/me/bookings/{uid}/cancel")
def owner_cancel_booking(
    uid: str,
    payload: dict[str, Any] | None = None,
    host_id: int = Depends(require_owner),
) -> JSONResponse:
    try:
        args = parse_cancel_booking_args(payload or {})
    except ValidationError as exc:
        return _invalid_args(exc)

    try:
        result = cancel_booking(
            BookingSessionLocal,
            uid,
            requester=Requester(owner_id=host_id),
            reason=args.reason,
        )
    except Exception:
        logger.exception("Cancelling booking failed for uid=%s host_id=%s", uid, host_id)
        return _system_down("Temporary issue cancelling booking.")
    return _result_response(result)


@app.post("/v1/me/bookings/{uid}/reschedule")
def owner_reschedule_booking(
    uid: str,
    payload: dict[str, Any],
    host_id: int = Depends(require_owner),
) -> JSONResponse:
    try:
        args = parse_reschedule_booking_args({**payload, "booking_uid": uid})
    except ValidationError as exc:
        return _invalid_args(exc)

    try:
        result = reschedule_booking(
            BookingSessionLocal,
            args,
            requester=Requester(owner_id=host_id),
        )
    except Exception:
        logger.exception("Rescheduling booking failed for uid=%s host_id=%s", uid, host_id)
        return _system_down("Temporary issue rescheduling booking.")
    return _result_response(result)


# Owner API keys


@app.get("/v1/me/api-keys")
def owner_list_api_keys(host_id: int = Depends(require_owner)) -> JSONResponse:
    db = SessionLocal()
    try:
        api_keys = [serialize_api_key(row) for row in list_api_keys(db, host_id)]
        return JSONResponse(content={"ok": True, "data": {"api_keys": api_keys}})
    finally:
        db.close()


@app.post("/v1/me/api-keys")
def owner_create_api_key(
    payload: dict[str, Any] | None = None,
    host_id: int = Depends(require_owner),
) -> JSONResponse:
    try:
        args = CreateApiKeyArgs.model_validate(payload or {})
    except ValidationError as exc:
        return _invalid_args(exc)

    db = SessionLocal()
    try:
        api_key = create_api_key(db=db, host_id=host_id, args=args)
        return JSONResponse(
            content={"ok": True, "data": {"api_key": serialize_api_key(api_key, reveal=True)}}
        )
    finally:
        db.close()


@app.delete("/v1/me/api-keys/{key_id}")
def owner_revoke_api_key(key_id: int, host_id: int = Depends(require_owner)) -> JSONResponse:
    db = SessionLocal()
    try:
        if not revoke_api_key(db, host_id=host_id, key_id=key_id):
            return _not_found("API key")
        return JSONResponse(content={"ok": True, "data": {"deleted_id": key_id}})
    finally:
        db.close()


# Scheduled jobs


@app.api_route(
    "/v1/cron/reminders",
    methods=["GET", "POST"],
    dependencies=[Depends(require_cron_secret)],
)
def cron_send_reminders() -> JSONResponse:
    try:
        return JSONResponse(content=send_due_reminders(SessionLocal))
    except Exception:
        logger.exception("Reminder run failed.")
        return _system_down("Temporary issue sending reminders.")


# Owner schedules


@app.get("/v1/me/schedules")
def owner_list_schedules(host_id: int = Depends(require_owner)) -> JSONResponse:
    db = SessionLocal()
    try:
        schedules = [serialize_schedule(db, schedule) for schedule in list_schedules(db, host_id)]
        return JSONResponse(content={"ok": True, "data": {"schedules": schedules}})
    finally:
        db.close()


@app.post("/v1/me/schedules")
def owner_create_schedule(payload: dict[str, Any], host_id: int = Depends(require_owner)) -> JSONResponse:
    try:
        args = ScheduleArgs.model_validate(payload)
    except ValidationError as exc:
        return _invalid_args(exc)

    db = SessionLocal()
    try:
        schedule = create_schedule(db, host_id=host_id, args=args)
        return JSONResponse(
            content={"ok": True, "data": {"schedule": serialize_schedule(db, schedule)}}
        )
    finally:
        db.close()


@app.get("/v1/me/schedules/{schedule_id}")
def owner_get_schedule(schedule_id: int, host_id: int = Depends(require_owner)) -> JSONResponse:
    db = SessionLocal()
    try:
        schedule = get_schedule(db, host_id=host_id, schedule_id=schedule_id)
        if schedule is None:
            return _not_found("Availability schedule")
        return JSONResponse(
            content={"ok": True, "data": {"schedule": serialize_schedule(db, schedule)}}
        )
    finally:
        db.close()


@app.put("/v1/me/schedules/{schedule_id}")
def owner_update_schedule(
    schedule_id: int,
    payload: dict[str, Any],
    host_id: int = Depends(require_owner),
) -> JSONResponse:
    try:
        args = ScheduleArgs.model_validate(payload)
    except ValidationError as exc:
        return _invalid_args(exc)

    db = SessionLocal()
    try:
        schedule = update_schedule(db, host_id=host_id, schedule_id=schedule_id, args=args)
        if schedule is None:
            return _not_found("Availability schedule")
        return JSONResponse(
            content={"ok": True, "data": {"schedule": serialize_schedule(db, schedule)}}
        )
    finally:
        db.close()


@app.delete("/v1/me/schedules/{schedule_id}")
def owner_delete_schedule(schedule_id: int, host_id: int = Depends(require_owner)) -> JSONResponse:
    db = SessionLocal()
    try:
        if not delete_schedule(db, host_id=host_id, schedule_id=schedule_id):
            return _not_found("Availability schedule")
        return JSONResponse(content={"ok": True, "data": {"deleted_id": schedule_id}})
    except ValueError as exc:
        db.rollback()
        return _conflict(exc)
    finally:
        db.close()


@app.post("/v1/me/schedules/{schedule_id}/default")
def owner_set_default_schedule(
    schedule_id: int,
    host_id: int = Depends(require_owner),
) -> JSONResponse:
    db = SessionLocal()
    try:
        schedule = set_default_schedule(db, host_id=host_id, schedule_id=schedule_id)
        if schedule is None:
            return _not_found("Availability schedule")
        return JSONResponse(
            content={"ok": True, "data": {"schedule": serialize_schedule(db, schedule)}}
        )
    finally:
        db.close()


# Owner event types


@app.get("/v1/me/event-types")
def owner_list_event_types(host_id: int = Depends(require_owner)) -> JSONResponse:
    db = SessionLocal()
    try:
        event_types = [serialize_event_type(row) for row in list_event_types(db, host_id)]
        return JSONResponse(content={"ok": True, "data": {"event_types": event_types}})
    finally:
        db.close()


@app.post("/v1/me/event-types")
def owner_create_event_type(
    payload: dict[str, Any],
    host_id: int = Depends(require_owner),
) -> JSONResponse:
    try:
        args = CreateEventTypeArgs.model_validate(payload)
    except ValidationError as exc:
        return _invalid_args(exc)

    db = SessionLocal()
    try:
        event_type = create_event_type(db, host_id=host_id, args=args)
        return JSONResponse(
            content={"ok": True, "data": {"event_type": serialize_event_type(event_type)}}
        )
    except ValueError as exc:
        return _conflict(exc)
    finally:
        db.close()


@app.patch("/v1/me/event-types/{event_type_id}")
def owner_update_event_type(
    event_type_id: int,
    payload: dict[str, Any],
    host_id: int = Depends(require_owner),
) -> JSONResponse:
    try:
        args = UpdateEventTypeArgs.model_validate(payload)
    except ValidationError as exc:
        return _invalid_args(exc)

    db = SessionLocal()
    try:
        event_type = update_event_type(
            db,
            host_id=host_id,
            event_type_id=event_type_id,
            args=args,
        )
        if event_type is None:
            return _not_found("Event type")
        return JSONResponse(
            content={"ok": True, "data": {"event_type": serialize_event_type(event_type)}}
        )
    except ValueError as exc:
        return _conflict(exc)
    finally:
        db.close()


@app.delete("/v1/me/event-types/{event_type_id}")
def owner_delete_event_type(event_type_id: int, host_id: int = Depends(require_owner)) -> JSONResponse:
    db = SessionLocal()
    try:
        if not delete_event_type(db, host_id=host_id, event_type_id=event_type_id):
            return _not_found("Event type")
        return JSONResponse(content={"ok": True, "data": {"deleted_id": event_type_id}})
    except ValueError as exc:
        db.rollback()
        return _conflict(exc)
    finally:
        db.close()
