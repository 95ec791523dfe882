# tests/unit/services/test_identity_provider.py
from unittest.mock import MagicMock, patch

import pytest

from app.exceptions import IdentityTokenInvalid
from app.services.identity_provider import (
    FederatedIdentity,
    FirebaseIdentityProvider,
    get_identity_provider,
)


@pytest.mark.asyncio
async def test_verify_maps_decoded_claims() -> None:
    provider = FirebaseIdentityProvider()
    with (
        patch.object(provider, "_ensure_app", return_value=MagicMock()),
        patch(
            "app.services.identity_provider.firebase_auth.verify_id_token",
            return_value={"email": "alice@example.com", "name": "Alice", "uid": "abc"},
        ) as mock_verify,
    ):
        identity = await provider.verify("id-token")

    assert identity == FederatedIdentity(email="alice@example.com", name="Alice")
    assert mock_verify.call_args.args[0] == "id-token"


@pytest.mark.asyncio
async def test_verify_without_email_claim() -> None:
    provider = FirebaseIdentityProvider()
    with (
        patch.object(provider, "_ensure_app", return_value=MagicMock()),
        patch(
            "app.services.identity_provider.firebase_auth.verify_id_token",
            return_value={"uid": "abc"},
        ),
    ):
        identity = await provider.verify("id-token")

    assert identity.email is None
    assert identity.name is None


@pytest.mark.asyncio
async def test_rejected_token_raises_identity_error() -> None:
    provider = FirebaseIdentityProvider()
    with (
        patch.object(provider, "_ensure_app", return_value=MagicMock()),
        patch(
            "app.services.identity_provider.firebase_auth.verify_id_token",
            side_effect=ValueError("Illegal ID token provided"),
        ),
    ):
        with pytest.raises(IdentityTokenInvalid) as exc_info:
            await provider.verify("garbage")

    assert exc_info.value.status_code == 401
    assert "Illegal ID token" in exc_info.value.detail


def test_dependency_returns_singleton() -> None:
    assert get_identity_provider() is get_identity_provider()
