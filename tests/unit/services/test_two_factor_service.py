# tests/unit/services/test_two_factor_service.py
"""
Tests for second-factor gating: flag toggling and what a primary login yields.
"""

from unittest.mock import patch

import jwt
import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from app import crud
from app.core import session_tokens
from app.core.config import settings
from app.core.session_tokens import FullSession, TemporarySession
from app.exceptions import AccountNotApproved, TwoFactorRequiresCredential
from app.services import two_factor_service
from app.services.two_factor_service import LoginState
from tests.factories import PasskeyFactory, UserFactory


@pytest.mark.asyncio
async def test_enable_requires_a_passkey(db_session: AsyncSession) -> None:
    user = UserFactory.create_user(session=db_session)
    await db_session.commit()

    with pytest.raises(TwoFactorRequiresCredential) as exc_info:
        await two_factor_service.set_status(db_session, user, True)

    assert exc_info.value.status_code == 400
    assert not two_factor_service.get_status(user)


@pytest.mark.asyncio
async def test_enable_and_disable(db_session: AsyncSession) -> None:
    user = UserFactory.create_user(session=db_session)
    await db_session.commit()
    PasskeyFactory.create_passkey(session=db_session, user_id=user.id)
    await db_session.commit()

    assert await two_factor_service.set_status(db_session, user, True) is True
    assert two_factor_service.get_status(user)

    await db_session.refresh(user)
    assert user.passkey_2fa_enabled is True

    assert await two_factor_service.set_status(db_session, user, False) is False
    assert not two_factor_service.get_status(user)


@pytest.mark.asyncio
async def test_disable_never_needs_passkeys(db_session: AsyncSession) -> None:
    user = UserFactory.create_user(session=db_session, passkey_2fa_enabled=True)
    await db_session.commit()

    assert await two_factor_service.set_status(db_session, user, False) is False


@pytest.mark.asyncio
async def test_primary_login_without_second_factor(db_session: AsyncSession) -> None:
    user = UserFactory.create_user(session=db_session, name="Alice")
    await db_session.commit()

    outcome = await two_factor_service.begin_primary_login(db_session, user)

    assert outcome.state is LoginState.FULLY_SATISFIED
    assert not outcome.requires_second_factor
    assert outcome.temp_token is None
    claims = session_tokens.verify(outcome.access_token)
    assert isinstance(claims, FullSession)
    assert claims.email == user.email
    assert claims.name == "Alice"
    assert user.last_login_at is not None


@pytest.mark.asyncio
async def test_primary_login_with_second_factor_pending(db_session: AsyncSession) -> None:
    user = UserFactory.create_user(session=db_session, passkey_2fa_enabled=True)
    await db_session.commit()

    outcome = await two_factor_service.begin_primary_login(db_session, user)

    assert outcome.state is LoginState.SECOND_FACTOR_REQUIRED
    assert outcome.requires_second_factor
    assert outcome.access_token is None
    assert isinstance(session_tokens.verify(outcome.temp_token), TemporarySession)
    # last login only moves once the second factor is done
    await db_session.refresh(user)
    assert user.last_login_at is None


@pytest.mark.asyncio
async def test_primary_login_refuses_unapproved_or_unknown(db_session: AsyncSession) -> None:
    user = UserFactory.create_user(session=db_session, is_approved=False)
    await db_session.commit()

    with pytest.raises(AccountNotApproved):
        await two_factor_service.begin_primary_login(db_session, user)
    with pytest.raises(AccountNotApproved):
        await two_factor_service.begin_primary_login(db_session, None)


@pytest.mark.asyncio
async def test_complete_passkey_login_states(db_session: AsyncSession) -> None:
    user = UserFactory.create_user(session=db_session, passkey_2fa_enabled=True)
    await db_session.commit()

    bound = await two_factor_service.complete_passkey_login(db_session, user, bound=True)
    unbound = await two_factor_service.complete_passkey_login(db_session, user, bound=False)

    assert bound.state is LoginState.SECOND_FACTOR_SATISFIED
    assert unbound.state is LoginState.FULLY_SATISFIED
    assert isinstance(session_tokens.verify(bound.access_token), FullSession)
    assert user.last_login_at is not None


def _claims(token: str) -> dict:
    return jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])


@pytest.mark.asyncio
async def test_second_factor_session_matches_direct_session(db_session: AsyncSession) -> None:
    user = UserFactory.create_user(session=db_session, name="Carol", passkey_2fa_enabled=True)
    await db_session.commit()
    PasskeyFactory.create_passkey(session=db_session, user_id=user.id)
    await db_session.commit()

    pending = await two_factor_service.begin_primary_login(db_session, user)
    completed = await two_factor_service.complete_passkey_login(db_session, user, bound=True)
    await two_factor_service.set_status(db_session, user, False)
    direct = await two_factor_service.begin_primary_login(db_session, user)

    time_fields = {"iat", "exp", session_tokens.TEMP_CLAIM}
    temp_claims = _claims(pending.temp_token)
    completed_claims = _claims(completed.access_token)
    direct_claims = _claims(direct.access_token)

    assert temp_claims[session_tokens.TEMP_CLAIM] is True
    assert session_tokens.TEMP_CLAIM not in completed_claims
    assert set(temp_claims) - time_fields == set(completed_claims) - time_fields
    assert set(completed_claims) == set(direct_claims)
    for claims in (temp_claims, completed_claims):
        assert claims["sub"] == direct_claims["sub"] == user.email
        assert claims["name"] == direct_claims["name"] == "Carol"


@pytest.mark.asyncio
async def test_repeated_disable_leaves_passkeys_untouched(db_session: AsyncSession) -> None:
    user = UserFactory.create_user(session=db_session, passkey_2fa_enabled=True)
    await db_session.commit()
    first = PasskeyFactory.create_passkey(session=db_session, user_id=user.id)
    second = PasskeyFactory.create_passkey(session=db_session, user_id=user.id)
    await db_session.commit()
    before = {first.id, second.id}

    for enabled in (False, False, True, False, False):
        assert await two_factor_service.set_status(db_session, user, enabled) is enabled

    passkeys = await crud.passkey.list_for_user(db_session, user_id=user.id)
    assert {pk.id for pk in passkeys} == before
    assert await crud.passkey.count_for_user(db_session, user_id=user.id) == 2
    await db_session.refresh(user)
    assert user.passkey_2fa_enabled is False


@pytest.mark.asyncio
async def test_enable_locks_account_before_counting(db_session: AsyncSession) -> None:
    user = UserFactory.create_user(session=db_session)
    await db_session.commit()
    PasskeyFactory.create_passkey(session=db_session, user_id=user.id)
    await db_session.commit()

    calls: list[str] = []
    real_lock = crud.user.lock_for_update
    real_count = crud.passkey.count_for_user

    async def lock(db, *, user_id):
        calls.append("lock")
        return await real_lock(db, user_id=user_id)

    async def count(db, *, user_id):
        calls.append("count")
        return await real_count(db, user_id=user_id)

    with (
        patch.object(crud.user, "lock_for_update", new=lock),
        patch.object(crud.passkey, "count_for_user", new=count),
    ):
        assert await two_factor_service.set_status(db_session, user, True) is True
        assert await two_factor_service.set_status(db_session, user, False) is False

    # Disabling never counts and never needs the lock
    assert calls == ["lock", "count"]
