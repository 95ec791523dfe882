# app/services/two_factor_service.py
"""
Passkey second-factor gating.

Provides functions for:
- Reading and toggling the per-account two-factor flag
- Deciding what a successful primary (federated) login yields
- Finishing a login once the bound passkey ceremony succeeds

Login states:
    PrimaryAuthenticated -> FullySatisfied                  (flag off)
    PrimaryAuthenticated -> SecondFactorRequired
                         -> SecondFactorSatisfied           (flag on)

``last_login_at`` moves only on FullySatisfied / SecondFactorSatisfied.
"""

import enum
import logging
from dataclasses import dataclass

from sqlalchemy.ext.asyncio import AsyncSession

from app import crud
from app.core import session_tokens
from app.db.models.user import User
from app.exceptions import AccountNotApproved, TwoFactorRequiresCredential

logger = logging.getLogger(__name__)


class LoginState(str, enum.Enum):
    FULLY_SATISFIED = "fully_satisfied"
    SECOND_FACTOR_REQUIRED = "second_factor_required"
    SECOND_FACTOR_SATISFIED = "second_factor_satisfied"


@dataclass(frozen=True)
class LoginOutcome:
    state: LoginState
    user: User
    access_token: str | None = None
    temp_token: str | None = None

    @property
    def requires_second_factor(self) -> bool:
        return self.state is LoginState.SECOND_FACTOR_REQUIRED


def ensure_approved(user: User | None) -> User:
    if user is None or not user.is_approved:
        raise AccountNotApproved()
    return user


def get_status(user: User) -> bool:
    return bool(user.passkey_2fa_enabled)


async def set_status(db: AsyncSession, user: User, enabled: bool) -> bool:
    """
    Toggle the two-factor flag.

    Enabling requires at least one enrolled passkey at the time of the call.
    Disabling never looks at the passkey count.
    """
    if enabled:
        # Held until the flag write commits; a concurrent last-passkey delete waits
        await crud.user.lock_for_update(db, user_id=user.id)
        count = await crud.passkey.count_for_user(db, user_id=user.id)
        if count < 1:
            logger.info("Refusing to enable 2FA for user %s: no passkeys enrolled", user.id)
            raise TwoFactorRequiresCredential()

    await crud.user.set_two_factor_flag(db, user=user, enabled=enabled)
    logger.info("2FA %s for user %s", "enabled" if enabled else "disabled", user.id)
    return enabled


async def begin_primary_login(db: AsyncSession, user: User | None) -> LoginOutcome:
    """
    Gate a successful federated login.

    Returns a full session straight away when the flag is off; otherwise a
    temporary token and no last-login update.
    """
    user = ensure_approved(user)

    if user.passkey_2fa_enabled:
        logger.info("Primary login for user %s requires a passkey second factor", user.id)
        return LoginOutcome(
            state=LoginState.SECOND_FACTOR_REQUIRED,
            user=user,
            temp_token=session_tokens.issue_temporary(user.email, user.display_name),
        )

    access_token = session_tokens.issue_full(user.email, user.display_name)
    await crud.user.update_last_login(db, user=user)
    return LoginOutcome(state=LoginState.FULLY_SATISFIED, user=user, access_token=access_token)


async def complete_passkey_login(db: AsyncSession, user: User, *, bound: bool) -> LoginOutcome:
    """
    Finish a login after a committed passkey authentication ceremony.

    ``bound`` tells whether the ceremony answered a challenge bound to this user
    (second factor) or an unbound one (standalone passkey login). Either way the
    result is a full session.
    """
    access_token = session_tokens.issue_full(user.email, user.display_name)
    await crud.user.update_last_login(db, user=user)
    state = LoginState.SECOND_FACTOR_SATISFIED if bound else LoginState.FULLY_SATISFIED
    return LoginOutcome(state=state, user=user, access_token=access_token)
