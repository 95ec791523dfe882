# tests/unit/core/test_session_tokens.py
"""Unit tests for bearer session token minting and validation."""

from datetime import UTC, datetime, timedelta
from unittest.mock import patch

import jwt
import pytest

from app.core import session_tokens
from app.core.config import settings
from app.core.session_tokens import FullSession, TemporarySession
from app.exceptions import TokenExpired, TokenInvalid


def _claims(token: str) -> dict:
    return jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])


def test_full_token_round_trip() -> None:
    token = session_tokens.issue_full("alice@example.com", "Alice")

    claims = session_tokens.verify(token)

    assert isinstance(claims, FullSession)
    assert not claims.is_temporary
    assert claims.email == "alice@example.com"
    assert claims.name == "Alice"
    lifetime = claims.expires_at - claims.issued_at
    assert lifetime == timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)


def test_temporary_token_carries_temp_claim() -> None:
    token = session_tokens.issue_temporary("alice@example.com", "Alice")

    claims = session_tokens.verify(token)

    assert isinstance(claims, TemporarySession)
    assert claims.is_temporary
    assert _claims(token)[session_tokens.TEMP_CLAIM] is True
    lifetime = claims.expires_at - claims.issued_at
    assert lifetime == timedelta(minutes=settings.TEMP_TOKEN_EXPIRE_MINUTES)


def test_full_tokens_share_claim_shape_whatever_the_path() -> None:
    # Federated login and passkey login both call issue_full
    first = _claims(session_tokens.issue_full("bob@example.com", "Bob"))
    second = _claims(session_tokens.issue_full("bob@example.com", None))

    assert set(first) == set(second) == {"sub", "name", "iat", "exp"}


def test_expired_token() -> None:
    issued = datetime.now(UTC) - timedelta(hours=3)
    with patch("app.core.session_tokens._utcnow", return_value=issued):
        token = session_tokens.issue_full("alice@example.com", "Alice")

    with pytest.raises(TokenExpired) as exc_info:
        session_tokens.verify(token)
    assert exc_info.value.message == "Token has expired"


def test_wrong_signature_is_invalid() -> None:
    forged = jwt.encode(
        {
            "sub": "alice@example.com",
            "iat": int(datetime.now(UTC).timestamp()),
            "exp": int((datetime.now(UTC) + timedelta(hours=1)).timestamp()),
        },
        "a-completely-different-secret-key-value",
        algorithm="HS256",
    )

    with pytest.raises(TokenInvalid):
        session_tokens.verify(forged)


def test_garbage_is_invalid() -> None:
    with pytest.raises(TokenInvalid):
        session_tokens.verify("not-a-jwt")


def test_missing_subject_is_invalid() -> None:
    now = datetime.now(UTC)
    token = jwt.encode(
        {"iat": int(now.timestamp()), "exp": int((now + timedelta(minutes=5)).timestamp())},
        settings.SECRET_KEY,
        algorithm=settings.ALGORITHM,
    )

    with pytest.raises(TokenInvalid):
        session_tokens.verify(token)
