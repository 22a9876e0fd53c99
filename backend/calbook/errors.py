"""Error taxonomy shared by the booking tools and the HTTP layer.

Expected business outcomes (a slot that was taken in the meantime, a booking in
the wrong state, ...) are returned as ``Failure`` values so that callers have to
branch on them. Exceptions are reserved for integration failures, which the
side-effect runner logs and swallows.
"""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any

from pydantic import ValidationError


class ErrorCode(str, Enum):
    NOT_FOUND = "NOT_FOUND"
    INACTIVE = "INACTIVE"
    INVALID_INPUT = "INVALID_INPUT"
    SLOT_UNAVAILABLE = "SLOT_UNAVAILABLE"
    INVALID_STATE = "INVALID_STATE"
    NOT_AUTHORIZED = "NOT_AUTHORIZED"
    ALREADY_CANCELLED = "ALREADY_CANCELLED"
    UPSTREAM_UNAVAILABLE = "UPSTREAM_UNAVAILABLE"
    SYSTEM_DOWN = "SYSTEM_DOWN"


SLOT_UNAVAILABLE_MESSAGE = "This time is no longer available."

HTTP_STATUS_BY_CODE = {
    ErrorCode.NOT_FOUND: 404,
    ErrorCode.INACTIVE: 404,
    ErrorCode.INVALID_INPUT: 400,
    ErrorCode.SLOT_UNAVAILABLE: 409,
    ErrorCode.INVALID_STATE: 409,
    ErrorCode.NOT_AUTHORIZED: 403,
    ErrorCode.ALREADY_CANCELLED: 409,
    ErrorCode.UPSTREAM_UNAVAILABLE: 502,
    ErrorCode.SYSTEM_DOWN: 500,
}


@dataclass(frozen=True)
class Failure:
    error_code: ErrorCode
    human_message: str

    @property
    def status_code(self) -> int:
        return HTTP_STATUS_BY_CODE[self.error_code]

    def to_response(self) -> dict[str, Any]:
        return {
            "ok": False,
            "error_code": self.error_code.value,
            "human_message": self.human_message,
        }


def not_found(what: str) -> Failure:
    return Failure(ErrorCode.NOT_FOUND, f"{what} not found.")


def inactive() -> Failure:
    return Failure(ErrorCode.INACTIVE, "This event type is not accepting bookings.")


def invalid_input(message: str) -> Failure:
    return Failure(ErrorCode.INVALID_INPUT, message)


def slot_unavailable() -> Failure:
    return Failure(ErrorCode.SLOT_UNAVAILABLE, SLOT_UNAVAILABLE_MESSAGE)


def invalid_state(message: str) -> Failure:
    return Failure(ErrorCode.INVALID_STATE, message)


def update_contended(action: str) -> Failure:
    return Failure(
        ErrorCode.INVALID_STATE,
        f"The booking could not be {action} right now. Please try again.",
    )


def not_authorized(message: str = "Not authorized to manage this booking.") -> Failure:
    return Failure(ErrorCode.NOT_AUTHORIZED, message)


def map_validation_error(error: ValidationError) -> dict[str, str]:
    first = error.errors()[0]
    location = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
    message = first["msg"]
    if location:
        message = f"{location}: {message}"
    return {
        "error_code": ErrorCode.INVALID_INPUT.value,
        "human_message": f"Invalid args: {message}",
    }


class UpstreamUnavailableError(Exception):
    """A calendar or notification dependency failed or timed out."""
