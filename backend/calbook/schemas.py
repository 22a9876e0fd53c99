from __future__ import annotations

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, EmailStr, Field


class AdditionalGuest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: str = Field(min_length=1, max_length=200)
    email: EmailStr


class BookingMetadata(BaseModel):
    """Versioned payload stored in ``bookings.metadata_json``."""

    model_config = ConfigDict(extra="forbid")

    version: Literal[1] = 1
    responses: dict[str, str | bool | list[str]] = Field(default_factory=dict)


class CustomQuestion(BaseModel):
    model_config = ConfigDict(extra="forbid")

    id: str = Field(min_length=1)
    type: Literal["text", "textarea", "select", "checkbox"]
    label: str = Field(min_length=1)
    required: bool = False
    options: list[str] | None = None


def require_aware(value: datetime) -> datetime:
    if value.tzinfo is None or value.utcoffset() is None:
        raise ValueError("Timestamp must include a UTC offset.")
    return value


def load_additional_guests(raw: Any) -> list[AdditionalGuest]:
    if not isinstance(raw, list):
        return []
    return [AdditionalGuest.model_validate(item) for item in raw]


def load_metadata(raw: Any) -> BookingMetadata | None:
    if not isinstance(raw, dict):
        return None
    return BookingMetadata.model_validate(raw)
