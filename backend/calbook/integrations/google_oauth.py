"""Google OAuth for connecting a host's calendar.

The connect URL carries a signed, short-lived ``state`` naming the host. The
callback trades the code for a ``GoogleTokenGrant`` and stores it as the host's
single ``GoogleOAuthCredential`` row. Refreshing an expired access token goes
through the same token endpoint.
"""
from __future__ import annotations

import base64
import hashlib
import hmac
import json
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any
from urllib import parse, request

from calbook.config import CALENDAR_TIMEOUT_SECONDS, GoogleOAuthSettings
from calbook.db.models import GoogleOAuthCredential
from calbook.db.store import UnitOfWork
from calbook.errors import UpstreamUnavailableError

GOOGLE_AUTH_ENDPOINT = "https://accounts.google.com/o/oauth2/v2/auth"
GOOGLE_TOKEN_ENDPOINT = "https://oauth2.googleapis.com/token"
GOOGLE_CALENDAR_SCOPES = (
    "https://www.googleapis.com/auth/calendar.readonly",
    "https://www.googleapis.com/auth/calendar.events",
)
STATE_MAX_AGE = timedelta(hours=1)


@dataclass(frozen=True)
class GoogleTokenGrant:
    access_token: str | None = None
    refresh_token: str | None = None
    scopes: str | None = None
    expires_at: datetime | None = None

    @classmethod
    def from_payload(cls, payload: dict[str, Any], now: datetime | None = None) -> GoogleTokenGrant:
        issued = now or datetime.now(timezone.utc)
        expires_at = None
        try:
            if payload.get("expires_in") is not None:
                expires_at = issued + timedelta(seconds=int(payload["expires_in"]))
        except (TypeError, ValueError):
            expires_at = None
        return cls(
            access_token=_text_or_none(payload.get("access_token")),
            refresh_token=_text_or_none(payload.get("refresh_token")),
            scopes=_text_or_none(payload.get("scope")),
            expires_at=expires_at,
        )


def build_google_oauth_state(host_id: int, secret: str, now: datetime | None = None) -> str:
    issued_at = int((now or datetime.now(timezone.utc)).timestamp())
    body = _b64encode(json.dumps({"host_id": host_id, "iat": issued_at}).encode("utf-8"))
    return f"{body}.{_sign(body, secret)}"


def parse_google_oauth_state(state: str, secret: str, now: datetime | None = None) -> int:
    """Return the host id a state was issued for, or raise ValueError."""
    body, dot, signature = state.partition(".")
    if not dot:
        raise ValueError("Invalid OAuth state format.")
    if not hmac.compare_digest(_sign(body, secret), signature):
        raise ValueError("Invalid OAuth state signature.")

    try:
        claims = json.loads(_b64decode(body))
        host_id = int(claims["host_id"])
        issued_at = datetime.fromtimestamp(int(claims["iat"]), tz=timezone.utc)
    except (KeyError, TypeError, ValueError) as exc:
        raise ValueError("Invalid OAuth state payload.") from exc
    if host_id <= 0:
        raise ValueError("Invalid OAuth state payload.")

    age = (now or datetime.now(timezone.utc)) - issued_at
    if age < timedelta(0) or age > STATE_MAX_AGE:
        raise ValueError("OAuth state expired.")
    return host_id


def build_google_auth_url(settings: GoogleOAuthSettings, state: str) -> str:
    query = parse.urlencode(
        {
            "client_id": settings.client_id,
            "redirect_uri": settings.redirect_uri,
            "response_type": "code",
            "scope": " ".join(GOOGLE_CALENDAR_SCOPES),
            "access_type": "offline",
            "prompt": "consent",
            "include_granted_scopes": "true",
            "state": state,
        }
    )
    return f"{GOOGLE_AUTH_ENDPOINT}?{query}"


def exchange_google_code_for_tokens(*, code: str, settings: GoogleOAuthSettings) -> GoogleTokenGrant:
    try:
        payload = _post_token_form(
            {
                "client_id": settings.client_id,
                "client_secret": settings.client_secret,
                "code": code,
                "redirect_uri": settings.redirect_uri,
                "grant_type": "authorization_code",
            }
        )
    except UpstreamUnavailableError as exc:
        raise ValueError(str(exc)) from exc

    grant = GoogleTokenGrant.from_payload(payload)
    if grant.access_token is None and grant.refresh_token is None:
        raise ValueError("Google token response missing required fields.")
    return grant


def refresh_access_token(refresh_token: str, settings: GoogleOAuthSettings) -> GoogleTokenGrant:
    if not settings.client_id or not settings.client_secret:
        raise UpstreamUnavailableError("Google OAuth client configuration is incomplete.")
    grant = GoogleTokenGrant.from_payload(
        _post_token_form(
            {
                "client_id": settings.client_id,
                "client_secret": settings.client_secret,
                "refresh_token": refresh_token,
                "grant_type": "refresh_token",
            }
        )
    )
    if grant.access_token is None:
        raise UpstreamUnavailableError("Google token refresh missing access_token.")
    return grant


def persist_google_credentials(
    uow: UnitOfWork,
    *,
    host_id: int,
    grant: GoogleTokenGrant,
) -> GoogleOAuthCredential:
    """Create or update the host's credentials and commit.

    Google omits the refresh token on reconnect, so an existing one is kept.
    """
    if uow.get_host(host_id) is None:
        raise LookupError("Host not found for OAuth callback.")

    credentials = uow.get_google_credentials(host_id)
    if credentials is None:
        if grant.refresh_token is None:
            raise ValueError("Google OAuth callback missing refresh_token.")
        credentials = uow.add(
            GoogleOAuthCredential(host_id=host_id, refresh_token=grant.refresh_token)
        )
    elif grant.refresh_token is not None:
        credentials.refresh_token = grant.refresh_token

    apply_grant(credentials, grant)
    uow.commit()
    return credentials


def apply_grant(credentials: GoogleOAuthCredential, grant: GoogleTokenGrant) -> None:
    credentials.access_token = grant.access_token
    credentials.token_expiry = grant.expires_at
    if grant.scopes is not None:
        credentials.scopes = grant.scopes
    credentials.calendar_id = credentials.calendar_id or "primary"
    credentials.updated_at = datetime.now(timezone.utc)


def _post_token_form(fields: dict[str, str]) -> dict[str, Any]:
    req = request.Request(
        GOOGLE_TOKEN_ENDPOINT,
        data=parse.urlencode(fields).encode("utf-8"),
        headers={"Content-Type": "application/x-www-form-urlencoded"},
        method="POST",
    )
    try:
        with request.urlopen(req, timeout=CALENDAR_TIMEOUT_SECONDS) as resp:
            payload = json.loads(resp.read().decode("utf-8"))
    except json.JSONDecodeError as exc:
        raise UpstreamUnavailableError("Google token response was invalid JSON.") from exc
    except Exception as exc:
        raise UpstreamUnavailableError("Google token request failed.") from exc
    if not isinstance(payload, dict):
        raise UpstreamUnavailableError("Google token response had an unexpected shape.")
    return payload


def _sign(body: str, secret: str) -> str:
    return hmac.new(secret.encode("utf-8"), body.encode("utf-8"), hashlib.sha256).hexdigest()


def _text_or_none(value: Any) -> str | None:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def _b64encode(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).decode("ascii").rstrip("=")


def _b64decode(text: str) -> bytes:
    return base64.urlsafe_b64decode(text + "=" * (-len(text) % 4))
