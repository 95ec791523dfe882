# app/services/credential_verifier.py
"""
WebAuthn response verification.

Wraps py_webauthn so every rejection surfaces as one of our protocol errors:

- clientDataJSON challenge, origin and type are checked up front with a distinct
  error per cause (the wire message for origin and signature is the same)
- attestation / assertion cryptography is delegated to py_webauthn
- the signature counter rule is applied here rather than inside py_webauthn so a
  counter regression is reported as ``CounterNotIncrementing`` and never as a
  generic signature failure

Nothing in this module touches the database.
"""

import hmac
import logging
from dataclasses import dataclass

from webauthn import verify_authentication_response, verify_registration_response
from webauthn.helpers import (
    bytes_to_base64url,
    parse_authentication_credential_json,
    parse_client_data_json,
    parse_registration_credential_json,
)
from webauthn.helpers.exceptions import WebAuthnException
from webauthn.helpers.structs import (
    AuthenticationCredential,
    ClientDataType,
    CollectedClientData,
    CredentialDeviceType,
    RegistrationCredential,
)

from app.core.config import settings
from app.exceptions import (
    ChallengeNotFoundOrExpired,
    ChallengeTypeMismatch,
    CounterNotIncrementing,
    MalformedCredential,
    OriginMismatch,
    SignatureInvalid,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class VerifiedRegistrationResult:
    credential_id: bytes
    public_key: bytes
    sign_count: int
    aaguid: str | None
    transports: list[str]
    backup_eligible: bool
    backup_state: bool


@dataclass(frozen=True)
class VerifiedAuthenticationResult:
    new_sign_count: int
    backup_state: bool


def counter_advanced(new_count: int, stored_count: int) -> bool:
    """
    Signature counter monotonicity.

    The new counter must be strictly greater than the stored one. The only
    exception is an authenticator that does not implement counters, which
    reports 0 every time against a stored 0.
    """
    if new_count == 0 and stored_count == 0:
        return True
    return new_count > stored_count


# --- Parsing ---


def parse_registration(credential_json: dict | str) -> RegistrationCredential:
    try:
        return parse_registration_credential_json(credential_json)
    except (WebAuthnException, ValueError, TypeError) as e:
        raise MalformedCredential(detail=f"registration response: {e}") from e


def parse_authentication(credential_json: dict | str) -> AuthenticationCredential:
    try:
        return parse_authentication_credential_json(credential_json)
    except (WebAuthnException, ValueError, TypeError) as e:
        raise MalformedCredential(detail=f"authentication response: {e}") from e


def _client_data(client_data_json: bytes) -> CollectedClientData:
    try:
        return parse_client_data_json(client_data_json)
    except (WebAuthnException, ValueError, TypeError) as e:
        raise MalformedCredential(detail=f"clientDataJSON: {e}") from e


def extract_challenge(credential: RegistrationCredential | AuthenticationCredential) -> str:
    """Return the base64url challenge the client signed over."""
    client_data = _client_data(credential.response.client_data_json)
    return bytes_to_base64url(client_data.challenge)


def _check_client_data(
    client_data_json: bytes,
    expected_challenge: bytes,
    expected_type: ClientDataType,
) -> None:
    client_data = _client_data(client_data_json)

    if not hmac.compare_digest(client_data.challenge, expected_challenge):
        raise ChallengeNotFoundOrExpired(detail="clientDataJSON challenge differs from stored")

    expected_origin = settings.RP_ORIGIN
    if client_data.origin != expected_origin:
        raise OriginMismatch(
            detail=f"origin {client_data.origin!r} != expected {expected_origin!r}"
        )

    if client_data.type != expected_type:
        raise ChallengeTypeMismatch(
            detail=f"client data type {client_data.type!r}, expected {expected_type.value!r}"
        )


# --- Ceremonies ---


def verify_registration(
    credential: RegistrationCredential,
    expected_challenge: bytes,
) -> VerifiedRegistrationResult:
    """
    Verify an attestation response and extract the new credential material.

    Does not persist anything; duplicate credential ids are detected by the
    repository on insert.
    """
    _check_client_data(
        credential.response.client_data_json, expected_challenge, ClientDataType.WEBAUTHN_CREATE
    )

    try:
        verification = verify_registration_response(
            credential=credential,
            expected_challenge=expected_challenge,
            expected_rp_id=settings.RP_ID,
            expected_origin=settings.RP_ORIGIN,
            require_user_verification=False,
        )
    except WebAuthnException as e:
        raise SignatureInvalid(detail=f"attestation rejected: {e}") from e

    return VerifiedRegistrationResult(
        credential_id=verification.credential_id,
        public_key=verification.credential_public_key,
        sign_count=verification.sign_count,
        aaguid=verification.aaguid or None,
        transports=[t.value for t in (credential.response.transports or [])],
        backup_eligible=verification.credential_device_type == CredentialDeviceType.MULTI_DEVICE,
        backup_state=bool(verification.credential_backed_up),
    )


def verify_authentication(
    credential: AuthenticationCredential,
    *,
    public_key: bytes,
    stored_sign_count: int,
    expected_challenge: bytes,
) -> VerifiedAuthenticationResult:
    """
    Verify an assertion against a stored credential.

    ``stored_sign_count`` must be the value read from the database for this
    attempt, not a cached copy.

    Raises:
        OriginMismatch, ChallengeTypeMismatch, ChallengeNotFoundOrExpired: client data checks
        SignatureInvalid: py_webauthn rejected the assertion
        CounterNotIncrementing: signature fine but the counter did not advance
    """
    _check_client_data(
        credential.response.client_data_json, expected_challenge, ClientDataType.WEBAUTHN_GET
    )

    try:
        # Counter is checked below; hand py_webauthn a zero so it only judges the signature.
        verification = verify_authentication_response(
            credential=credential,
            expected_challenge=expected_challenge,
            expected_rp_id=settings.RP_ID,
            expected_origin=settings.RP_ORIGIN,
            credential_public_key=public_key,
            credential_current_sign_count=0,
            require_user_verification=False,
        )
    except WebAuthnException as e:
        raise SignatureInvalid(detail=f"assertion rejected: {e}") from e

    new_count = verification.new_sign_count
    if not counter_advanced(new_count, stored_sign_count):
        logger.error(
            "Signature counter did not advance (stored=%d, reported=%d)",
            stored_sign_count,
            new_count,
        )
        raise CounterNotIncrementing(
            detail=f"counter {new_count} does not exceed stored {stored_sign_count}"
        )

    return VerifiedAuthenticationResult(
        new_sign_count=new_count,
        backup_state=bool(verification.credential_backed_up),
    )
