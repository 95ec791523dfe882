# app/core/session_tokens.py
"""
Bearer session tokens.

Two variants share one claim shape (``sub`` = email, ``name``, ``iat``, ``exp``):

- ``FullSession`` grants normal resource access.
- ``TemporarySession`` adds ``temp: true`` and a short expiry; it only allows a
  pending second factor to be completed.

Whichever path produced the token (federated login, passkey login, second
factor), downstream code sees the same claims.
"""

import logging
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Any

import jwt
from jwt.exceptions import ExpiredSignatureError, InvalidTokenError

from app.core.config import settings
from app.exceptions import TokenExpired, TokenInvalid

logger = logging.getLogger(__name__)

TEMP_CLAIM = "temp"


@dataclass(frozen=True)
class SessionClaims:
    email: str
    name: str | None
    issued_at: datetime
    expires_at: datetime

    @property
    def is_temporary(self) -> bool:
        return False


@dataclass(frozen=True)
class FullSession(SessionClaims):
    pass


@dataclass(frozen=True)
class TemporarySession(SessionClaims):
    @property
    def is_temporary(self) -> bool:
        return True


def _utcnow() -> datetime:
    return datetime.now(UTC)


def _encode(email: str, name: str | None, lifetime: timedelta, temporary: bool) -> str:
    now = _utcnow()
    payload: dict[str, Any] = {
        "sub": email,
        "name": name,
        "iat": int(now.timestamp()),
        "exp": int((now + lifetime).timestamp()),
    }
    if temporary:
        payload[TEMP_CLAIM] = True
    return jwt.encode(payload, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


def issue_full(email: str, name: str | None) -> str:
    """Mint a full session token."""
    return _encode(
        email, name, timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES), temporary=False
    )


def issue_temporary(email: str, name: str | None) -> str:
    """Mint a restricted token for a login that still owes a second factor."""
    return _encode(
        email, name, timedelta(minutes=settings.TEMP_TOKEN_EXPIRE_MINUTES), temporary=True
    )


def verify(token: str) -> FullSession | TemporarySession:
    """
    Decode and validate a session token.

    Raises:
        TokenExpired: signature valid but ``exp`` has passed
        TokenInvalid: anything else (bad signature, malformed, missing claims)
    """
    try:
        payload = jwt.decode(
            token,
            settings.SECRET_KEY,
            algorithms=[settings.ALGORITHM],
            options={"require": ["sub", "iat", "exp"]},
        )
    except ExpiredSignatureError as e:
        raise TokenExpired() from e
    except InvalidTokenError as e:
        logger.debug("Rejected session token: %s", e)
        raise TokenInvalid(detail=str(e)) from e

    email = payload.get("sub")
    if not isinstance(email, str) or not email:
        raise TokenInvalid(detail="sub claim missing or not a string")

    claims_cls = TemporarySession if payload.get(TEMP_CLAIM) is True else FullSession
    return claims_cls(
        email=email,
        name=payload.get("name"),
        issued_at=datetime.fromtimestamp(payload["iat"], tz=UTC),
        expires_at=datetime.fromtimestamp(payload["exp"], tz=UTC),
    )
