"""HS256 session JWTs for logged-in hub users.

Payload format::

    {"user": {"username": "...", "isAdmin": false}, "iat": ..., "exp": ...}

``verify_session_token`` never raises: it returns a ``SessionTokenResult`` that
tells a missing credential apart from an expired or malformed one, so callers
can log the difference while still treating both as "no principal".
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

import jwt

from mcphub.security.principal import Principal

__all__ = ["SessionTokenResult", "create_session_token", "verify_session_token"]

logger = logging.getLogger(__name__)

_ALGORITHM = "HS256"


@dataclass(frozen=True)
class SessionTokenResult:
    principal: Principal | None = None
    error: str | None = None  # None | "missing" | "expired" | "invalid"

    @property
    def ok(self) -> bool:
        return self.principal is not None


def create_session_token(
    username: str, secret: str, *, is_admin: bool = False, ttl_hours: int = 24
) -> str:
    """Issue a session token for *username* that expires after *ttl_hours*."""
    now = datetime.now(UTC)
    payload = {
        "user": {"username": username, "isAdmin": is_admin},
        "iat": now,
        "exp": now + timedelta(hours=ttl_hours),
    }
    return jwt.encode(payload, secret, algorithm=_ALGORITHM)


def verify_session_token(token: str | None, secret: str) -> SessionTokenResult:
    if not token:
        return SessionTokenResult(error="missing")

    try:
        payload = jwt.decode(token, secret, algorithms=[_ALGORITHM])
    except jwt.ExpiredSignatureError:
        logger.debug("Session token expired")
        return SessionTokenResult(error="expired")
    except jwt.InvalidTokenError as exc:
        logger.debug("Session token rejected: %s", exc)
        return SessionTokenResult(error="invalid")

    user = payload.get("user")
    if not isinstance(user, dict) or not user.get("username"):
        return SessionTokenResult(error="invalid")

    return SessionTokenResult(
        principal=Principal(
            username=str(user["username"]),
            is_admin=bool(user.get("isAdmin", False)),
            auth_method="session",
        )
    )
