# app/api/routers/passkey.py
"""
Passkey (WebAuthn) API endpoints.

Provides endpoints for:
- Enrolling passkeys (requires a full session)
- Authenticating with passkeys, standalone or as a second factor (public)
- Managing passkeys and the two-factor flag (requires a full session)

Protocol errors are raised as ``PasskeyAuthError`` subclasses and rendered by the
application-level handler.
"""

import logging
import uuid
from typing import Annotated

from fastapi import APIRouter, Depends, Request, Response, status
from pydantic import AliasChoices, BaseModel, Field, StrictBool
from sqlalchemy.ext.asyncio import AsyncSession
from webauthn.helpers import bytes_to_base64url

from app.core.log_utils import sanitize_for_log
from app.core.rate_limit import OPTIONS_RATE_LIMIT, VERIFY_RATE_LIMIT, get_real_client_ip, limiter
from app.core.security import current_active_user, optional_pending_session, set_access_cookie
from app.core.security_logger import security_log
from app.core.session_tokens import TemporarySession
from app.crud.crud_user import normalize_email
from app.db.models.passkey import AuthenticatorCategory
from app.db.models.user import User
from app.db.session import get_async_session
from app.exceptions import (
    ChallengeSessionMismatch,
    CounterNotIncrementing,
    CredentialNotFound,
    PasskeyAuthError,
)
from app.services import passkey_service, two_factor_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth/passkey", tags=["Passkey - WebAuthn Authentication"])


# --- Schemas ---


class RegistrationOptionsRequest(BaseModel):
    authenticatorCategory: AuthenticatorCategory = Field(
        ...,
        validation_alias=AliasChoices("authenticatorCategory", "authenticatorType"),
        description="'platform' or 'cross-platform'",
    )


class RegistrationVerifyRequest(BaseModel):
    """Request to verify a registration response."""

    credential: dict = Field(
        ...,
        validation_alias=AliasChoices("credential", "credentialResponse"),
        description="Credential from navigator.credentials.create()",
    )
    friendlyName: str | None = Field(None, description="User-friendly name for the passkey")


class RegistrationVerifyResponse(BaseModel):
    id: str
    credentialId: str
    authenticatorCategory: str
    friendlyName: str
    createdAt: str | None


class AuthenticationOptionsRequest(BaseModel):
    boundUserEmail: str | None = Field(
        None,
        validation_alias=AliasChoices("boundUserEmail", "userEmail"),
        description="Bind the challenge to this account (second-factor flow)",
    )


class AuthenticationOptionsResponse(BaseModel):
    """WebAuthn authentication options to pass to browser."""

    challenge: str
    timeout: int | None
    rpId: str
    allowCredentials: list[dict]
    userVerification: str


class AuthenticationVerifyRequest(BaseModel):
    credential: dict = Field(
        ...,
        validation_alias=AliasChoices("credential", "credentialResponse"),
        description="Credential from navigator.credentials.get()",
    )


class SessionUser(BaseModel):
    email: str
    name: str


class AuthenticationVerifyResponse(BaseModel):
    accessToken: str
    user: SessionUser


class PasskeyResponse(BaseModel):
    """Passkey information for display. No key material."""

    id: str
    authenticatorCategory: str
    friendlyName: str
    lastUsedAt: str | None
    createdAt: str | None


class PasskeyListResponse(BaseModel):
    credentials: list[PasskeyResponse]
    count: int


class PasskeyRenameResponse(BaseModel):
    credential: PasskeyResponse


class PasskeyDeleteResponse(BaseModel):
    message: str
    twoFactorDisabled: bool


class RenameRequest(BaseModel):
    # Length and characters are validated by the service
    name: str | None = None


class TwoFactorStatus(BaseModel):
    enabled: StrictBool


def _parse_passkey_id(passkey_id: str) -> uuid.UUID:
    # Malformed ids are reported exactly like unknown ones
    try:
        return uuid.UUID(passkey_id)
    except ValueError as e:
        raise CredentialNotFound(detail=f"malformed passkey id {passkey_id!r}") from e


# --- Registration Endpoints (Authenticated) ---


@router.post(
    "/registration-options",
    summary="Get passkey registration options",
)
@limiter.limit(OPTIONS_RATE_LIMIT)
async def get_registration_options(
    request: Request,  # noqa: ARG001 - required by rate limiter
    body: RegistrationOptionsRequest,
    current_user: Annotated[User, Depends(current_active_user)],
    db: Annotated[AsyncSession, Depends(get_async_session)],
) -> dict:
    """
    Get WebAuthn registration options.

    Returns options to be passed to navigator.credentials.create() in the browser.
    """
    return await passkey_service.get_registration_options(
        db, current_user, body.authenticatorCategory
    )


@router.post(
    "/registration-verify",
    response_model=RegistrationVerifyResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Verify and complete passkey registration",
)
@limiter.limit(VERIFY_RATE_LIMIT)
async def verify_registration(
    request: Request,
    body: RegistrationVerifyRequest,
    current_user: Annotated[User, Depends(current_active_user)],
    db: Annotated[AsyncSession, Depends(get_async_session)],
) -> dict:
    """
    Verify the registration response and store the passkey.

    Call this after navigator.credentials.create() returns successfully.
    """
    client_ip = get_real_client_ip(request)
    try:
        passkey = await passkey_service.verify_registration(
            db, current_user, body.credential, body.friendlyName
        )
    except PasskeyAuthError as e:
        security_log.passkey_failed(client_ip, reason=e.code)
        raise

    logger.info(
        "Passkey registered for user %s from %s",
        sanitize_for_log(current_user.email),
        sanitize_for_log(client_ip),
    )
    projection = passkey_service.serialize_passkey(passkey)
    return {
        "id": projection["id"],
        "credentialId": bytes_to_base64url(passkey.credential_id),
        "authenticatorCategory": projection["authenticatorCategory"],
        "friendlyName": projection["friendlyName"],
        "createdAt": projection["createdAt"],
    }


# --- Authentication Endpoints (Public) ---


@router.post(
    "/authentication-options",
    response_model=AuthenticationOptionsResponse,
    summary="Get passkey authentication options",
)
@limiter.limit(OPTIONS_RATE_LIMIT)
async def get_authentication_options(
    request: Request,  # noqa: ARG001 - required by rate limiter
    db: Annotated[AsyncSession, Depends(get_async_session)],
    pending: Annotated[TemporarySession | None, Depends(optional_pending_session)],
    body: AuthenticationOptionsRequest | None = None,
) -> dict:
    """
    Get WebAuthn authentication options.

    Without a bound email (and without a pending second-factor token) the
    challenge is unbound and any enrolled passkey may answer it. During the
    second-factor step the challenge is bound to the temporary token's subject
    and ``allowCredentials`` lists that account's passkeys. A bare
    ``boundUserEmail`` never lists credentials.
    """
    bound_email = body.boundUserEmail if body else None

    if pending is not None:
        if bound_email and normalize_email(bound_email) != normalize_email(pending.email):
            raise ChallengeSessionMismatch(detail="boundUserEmail differs from temporary token")
        bound_email = pending.email

    return await passkey_service.get_authentication_options(
        db, bound_email, list_credentials=pending is not None
    )


@router.post(
    "/authentication-verify",
    response_model=AuthenticationVerifyResponse,
    summary="Verify passkey authentication and login",
)
@limiter.limit(VERIFY_RATE_LIMIT)
async def verify_authentication(
    request: Request,
    response: Response,
    body: AuthenticationVerifyRequest,
    db: Annotated[AsyncSession, Depends(get_async_session)],
) -> dict:
    """
    Verify the authentication response and issue a full session.

    Call this after navigator.credentials.get() returns successfully.
    """
    client_ip = get_real_client_ip(request)
    try:
        outcome = await passkey_service.verify_authentication(db, body.credential)
    except CounterNotIncrementing:
        security_log.possible_clone(client_ip)
        raise
    except PasskeyAuthError as e:
        security_log.passkey_failed(client_ip, reason=e.code)
        logger.warning(
            "Passkey authentication failed from %s: %s",
            sanitize_for_log(client_ip),
            sanitize_for_log(e.detail),
        )
        raise

    user = outcome.user
    set_access_cookie(response, outcome.access_token)
    security_log.login_success(client_ip, str(user.id), method="passkey")
    logger.info(
        "Passkey login successful for user %s from %s",
        sanitize_for_log(user.email),
        sanitize_for_log(client_ip),
    )

    return {
        "accessToken": outcome.access_token,
        "user": {"email": user.email, "name": user.display_name},
    }


# --- Management Endpoints (Authenticated) ---


@router.get(
    "/credentials",
    response_model=PasskeyListResponse,
    summary="List user's passkeys",
)
async def list_passkeys(
    current_user: Annotated[User, Depends(current_active_user)],
    db: Annotated[AsyncSession, Depends(get_async_session)],
) -> dict:
    passkeys = await passkey_service.list_passkeys(db, current_user)
    return {
        "credentials": [passkey_service.serialize_passkey(pk) for pk in passkeys],
        "count": len(passkeys),
    }


@router.patch(
    "/credentials/{passkey_id}",
    response_model=PasskeyRenameResponse,
    summary="Rename a passkey",
)
async def rename_passkey(
    passkey_id: str,
    body: RenameRequest,
    current_user: Annotated[User, Depends(current_active_user)],
    db: Annotated[AsyncSession, Depends(get_async_session)],
) -> dict:
    """Rename a passkey to a new user-friendly name."""
    passkey = await passkey_service.rename_passkey(
        db, current_user, _parse_passkey_id(passkey_id), body.name
    )
    return {"credential": passkey_service.serialize_passkey(passkey)}


@router.delete(
    "/credentials/{passkey_id}",
    response_model=PasskeyDeleteResponse,
    summary="Delete a passkey",
)
async def delete_passkey(
    passkey_id: str,
    current_user: Annotated[User, Depends(current_active_user)],
    db: Annotated[AsyncSession, Depends(get_async_session)],
) -> dict:
    """
    Delete a passkey.

    Deleting the last passkey also turns two-factor authentication off.
    """
    two_factor_disabled = await passkey_service.delete_passkey(
        db, current_user, _parse_passkey_id(passkey_id)
    )
    if two_factor_disabled:
        message = (
            "Passkey deleted. 2FA has been automatically disabled as you have no remaining passkeys."
        )
    else:
        message = "Passkey deleted successfully"
    return {"message": message, "twoFactorDisabled": two_factor_disabled}


@router.get(
    "/two-factor-status",
    response_model=TwoFactorStatus,
    summary="Get passkey two-factor status",
)
async def get_two_factor_status(
    current_user: Annotated[User, Depends(current_active_user)],
) -> dict:
    return {"enabled": two_factor_service.get_status(current_user)}


@router.put(
    "/two-factor-status",
    response_model=TwoFactorStatus,
    summary="Enable or disable passkey two-factor authentication",
)
async def set_two_factor_status(
    body: TwoFactorStatus,
    current_user: Annotated[User, Depends(current_active_user)],
    db: Annotated[AsyncSession, Depends(get_async_session)],
) -> dict:
    """Enabling requires at least one enrolled passkey; disabling always succeeds."""
    enabled = await two_factor_service.set_status(db, current_user, body.enabled)
    return {"enabled": enabled}
