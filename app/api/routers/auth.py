# app/api/routers/auth.py
import logging
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Request, Response, status
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from app import crud
from app.core.log_utils import sanitize_for_log
from app.core.rate_limit import LOGIN_RATE_LIMIT, get_real_client_ip, limiter
from app.core.security import (
    clear_access_cookie,
    current_active_user,
    set_access_cookie,
)
from app.core.security_logger import security_log
from app.db.models.user import User
from app.db.session import get_async_session
from app.exceptions import AccountNotApproved, IdentityTokenInvalid
from app.services import two_factor_service
from app.services.identity_provider import IdentityProvider, get_identity_provider

logger = logging.getLogger(__name__)

auth_router = APIRouter(
    prefix="/auth",
    tags=["Auth - Authentication & Authorization"],
)


class LoginRequest(BaseModel):
    idToken: str = Field(..., min_length=1, description="ID token from the identity provider")


def _user_payload(user: User) -> dict:
    return {"email": user.email, "name": user.display_name}


# --- Federated Login Endpoint ---
@auth_router.post("/login", summary="Exchange an identity-provider token for a session")
@limiter.limit(LOGIN_RATE_LIMIT)
async def login(
    request: Request,
    response: Response,
    body: LoginRequest,
    db: Annotated[AsyncSession, Depends(get_async_session)],
    identity_provider: Annotated[IdentityProvider, Depends(get_identity_provider)],
) -> dict:
    """
    Primary login.

    Returns a full session (and sets the access cookie) unless the account has
    passkey two-factor enabled, in which case a temporary token is returned and
    the client must complete a passkey ceremony bound to this account.
    """
    client_ip = get_real_client_ip(request)

    try:
        identity = await identity_provider.verify(body.idToken)
    except IdentityTokenInvalid:
        security_log.bad_token(client_ip, "invalid_identity_token")
        raise

    if not identity.email:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST, detail="Email not found in token"
        )

    user = await crud.user.get_by_email(db, email=identity.email)
    try:
        outcome = await two_factor_service.begin_primary_login(db, user)
    except AccountNotApproved as e:
        security_log.failed_login(client_ip, identity.email, "NOT_APPROVED")
        logger.warning(
            "Login refused for unapproved email %s", sanitize_for_log(identity.email)
        )
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Access Denied: Your email is not authorized",
        ) from e

    if outcome.requires_second_factor:
        logger.info("Login for user %s pending passkey second factor", outcome.user.id)
        return {
            "requires2FA": True,
            "tempToken": outcome.temp_token,
            "user": _user_payload(outcome.user),
        }

    set_access_cookie(response, outcome.access_token)
    security_log.login_success(client_ip, str(outcome.user.id), method="federated")
    logger.info("User %s logged in from %s", outcome.user.id, sanitize_for_log(client_ip))
    return {
        "requires2FA": False,
        "accessToken": outcome.access_token,
        "user": _user_payload(outcome.user),
    }


@auth_router.post("/verify", summary="Validate the current session token")
async def verify_session(
    current_user: Annotated[User, Depends(current_active_user)],
) -> dict:
    return {"valid": True, "user": _user_payload(current_user)}


# --- Logout Endpoint ---
@auth_router.post("/logout", summary="Logout user", status_code=status.HTTP_200_OK)
async def logout(response: Response) -> dict:
    clear_access_cookie(response)
    return {"message": "Logged out successfully"}
