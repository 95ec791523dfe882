# app/core/security.py
"""
Request authentication dependencies.

Tokens are read from ``Authorization: Bearer <token>`` and, failing that, from
the httpOnly access cookie set at login.
"""

import logging
from typing import Annotated

from fastapi import Depends, HTTPException, Request, Response, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from app import crud
from app.core import session_tokens
from app.core.config import settings
from app.core.rate_limit import get_real_client_ip
from app.core.security_logger import security_log
from app.core.session_tokens import FullSession, TemporarySession
from app.db.models.user import User
from app.db.session import get_async_session
from app.exceptions import TokenExpired, TokenInvalid

logger = logging.getLogger(__name__)

bearer_scheme = HTTPBearer(auto_error=False)

_WWW_AUTHENTICATE = {"WWW-Authenticate": "Bearer"}


def _extract_token(
    request: Request, credentials: HTTPAuthorizationCredentials | None
) -> str | None:
    if credentials and credentials.scheme.lower() == "bearer" and credentials.credentials:
        return credentials.credentials
    return request.cookies.get(settings.ACCESS_TOKEN_COOKIE_NAME)


def _unauthorized(message: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED, detail=message, headers=_WWW_AUTHENTICATE
    )


def _decode(request: Request, token: str) -> FullSession | TemporarySession:
    try:
        return session_tokens.verify(token)
    except TokenExpired as e:
        raise _unauthorized(e.message) from e
    except TokenInvalid as e:
        security_log.bad_token(get_real_client_ip(request), "invalid_session_token")
        raise _unauthorized(e.message) from e


async def current_session(
    request: Request,
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(bearer_scheme)],
) -> FullSession:
    """Claims of a full session. Temporary tokens are refused."""
    token = _extract_token(request, credentials)
    if not token:
        raise _unauthorized("No token provided")

    claims = _decode(request, token)
    if isinstance(claims, TemporarySession):
        raise _unauthorized("Two-factor authentication required")
    return claims


async def current_active_user(
    claims: Annotated[FullSession, Depends(current_session)],
    db: Annotated[AsyncSession, Depends(get_async_session)],
) -> User:
    """The approved account behind a full session token."""
    user = await crud.user.get_by_email(db, email=claims.email)
    if user is None or not user.is_approved:
        logger.warning("Session token for unknown or unapproved account")
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Account not authorized")
    return user


async def optional_pending_session(
    request: Request,
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(bearer_scheme)],
) -> TemporarySession | None:
    """
    Claims of a temporary (second-factor pending) token if one is presented.

    Anything else, including no token or a full session token, yields None. An
    invalid or expired bearer token is still a 401.
    """
    if not credentials or not credentials.credentials:
        return None
    claims = _decode(request, credentials.credentials)
    return claims if isinstance(claims, TemporarySession) else None


def set_access_cookie(response: Response, token: str) -> None:
    response.set_cookie(
        key=settings.ACCESS_TOKEN_COOKIE_NAME,
        value=token,
        max_age=settings.ACCESS_TOKEN_EXPIRE_MINUTES * 60,
        path="/",
        secure=settings.COOKIE_SECURE,
        httponly=True,
        samesite=settings.COOKIE_SAMESITE,
    )


def clear_access_cookie(response: Response) -> None:
    response.delete_cookie(
        key=settings.ACCESS_TOKEN_COOKIE_NAME,
        path="/",
        secure=settings.COOKIE_SECURE,
        httponly=True,
        samesite=settings.COOKIE_SAMESITE,
    )
