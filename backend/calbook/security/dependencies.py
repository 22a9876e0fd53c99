import hmac
import logging
from datetime import datetime, timezone

from fastapi import Header, HTTPException, status

from calbook.config import admin_api_key, cron_secret, is_dev_env
from calbook.db.session import SessionLocal
from calbook.db.store import UnitOfWork

logger = logging.getLogger("calbook.security")


def require_admin_api_key(
    x_admin_key: str | None = Header(default=None, alias="X-Admin-Key"),
) -> None:
    configured_key = admin_api_key()

    if not configured_key:
        if is_dev_env():
            logger.warning(
                "ADMIN_API_KEY is not set in dev; allowing admin request without key."
            )
            return
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={
                "error_code": "ADMIN_AUTH_NOT_CONFIGURED",
                "human_message": "Admin API key is not configured.",
            },
        )

    if x_admin_key != configured_key:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={
                "error_code": "INVALID_ADMIN_API_KEY",
                "human_message": "Invalid admin API key.",
            },
        )


def require_owner(
    authorization: str | None = Header(default=None, alias="Authorization"),
) -> int:
    """Resolve ``Authorization: Bearer <api key>`` to the owning host id."""
    unauthorized = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail={
            "error_code": "INVALID_API_KEY",
            "human_message": "Missing, invalid or expired API key.",
        },
    )
    scheme, _, token = (authorization or "").partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise unauthorized

    db = SessionLocal()
    try:
        host = UnitOfWork(db).get_host_by_api_key(token.strip(), now=datetime.now(timezone.utc))
        if host is None:
            logger.warning("Rejected owner request with unknown or expired API key.")
            raise unauthorized
        db.commit()
        return host.id
    finally:
        db.close()


def require_cron_secret(
    authorization: str | None = Header(default=None, alias="Authorization"),
) -> None:
    """Guard for scheduled jobs: ``Authorization: Bearer <CRON_SECRET>``."""
    expected = cron_secret()
    scheme, _, provided = (authorization or "").partition(" ")
    if (
        not expected
        or scheme.lower() != "bearer"
        or not hmac.compare_digest(provided.strip().encode("utf-8"), expected.encode("utf-8"))
    ):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={
                "error_code": "INVALID_CRON_SECRET",
                "human_message": "Missing or invalid cron secret.",
            },
        )
