from __future__ import annotations

import secrets
from datetime import datetime
from typing import Any

from pydantic import BaseModel, EmailStr, Field, field_validator
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from calbook.db.models import ApiKey, Host
from calbook.db.store import UnitOfWork
from calbook.tools.get_free_slots import validate_timezone_name

API_KEY_PREFIX = "cb_"


class CreateHostArgs(BaseModel):
    username: str = Field(min_length=1, max_length=64, pattern=r"^[a-z0-9-]+$")
    name: str = Field(min_length=1, max_length=255)
    email: EmailStr
    timezone: str = "America/New_York"

    @field_validator("timezone")
    @classmethod
    def _known_timezone(cls, value: str) -> str:
        return validate_timezone_name(value)


class CreateApiKeyArgs(BaseModel):
    name: str | None = Field(default=None, max_length=100)
    expires_at: datetime | None = None


def create_host(db: Session, args: CreateHostArgs) -> Host:
    if UnitOfWork(db).get_host_by_username(args.username) is not None:
        raise ValueError("username already exists")

    host = Host(
        username=args.username,
        name=args.name,
        email=str(args.email),
        timezone=args.timezone,
    )
    db.add(host)
    try:
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        if "username" in str(exc).lower():
            raise ValueError("username already exists") from exc
        raise
    return host


def list_hosts(db: Session) -> list[Host]:
    return sorted(db.query(Host).all(), key=lambda h: h.id)


def create_api_key(db: Session, host_id: int, args: CreateApiKeyArgs) -> ApiKey | None:
    if UnitOfWork(db).get_host(host_id) is None:
        return None
    api_key = ApiKey(
        host_id=host_id,
        key=f"{API_KEY_PREFIX}{secrets.token_hex(32)}",
        name=args.name,
        expires_at=args.expires_at,
    )
    db.add(api_key)
    db.commit()
    return api_key


def list_api_keys(db: Session, host_id: int) -> list[ApiKey]:
    return UnitOfWork(db).list_api_keys(host_id)


def revoke_api_key(db: Session, host_id: int, key_id: int) -> bool:
    store = UnitOfWork(db)
    api_key = store.get_api_key(host_id, key_id)
    if api_key is None:
        return False
    store.delete(api_key)
    db.commit()
    return True


def serialize_host(host: Host) -> dict[str, Any]:
    return {
        "id": host.id,
        "username": host.username,
        "name": host.name,
        "email": host.email,
        "timezone": host.timezone,
        "created_at": host.created_at.isoformat() if host.created_at else None,
    }


def serialize_api_key(api_key: ApiKey, reveal: bool = False) -> dict[str, Any]:
    # The full key is only returned once, right after creation.
    key = api_key.key if reveal else f"{API_KEY_PREFIX}{'*' * 24}{api_key.key[-8:]}"
    return {
        "id": api_key.id,
        "host_id": api_key.host_id,
        "name": api_key.name,
        "key": key,
        "expires_at": api_key.expires_at.isoformat() if api_key.expires_at else None,
        "last_used_at": api_key.last_used_at.isoformat() if api_key.last_used_at else None,
        "created_at": api_key.created_at.isoformat() if api_key.created_at else None,
    }

