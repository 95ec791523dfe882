# app/services/passkey_service.py
"""
Passkey (WebAuthn) ceremony orchestration.

Provides functions for:
- Generating registration options and enrolling a verified credential
- Generating authentication options (standalone or bound to one user) and
  completing a passkey login
- Managing a user's passkeys (list, rename, delete)

Ceremony states:
    OptionsRequested -> ChallengeIssued -> ResponseReceived -> Verified -> Committed | Rejected

Security considerations:
- Challenges live in the database (``challenge_store``) with a fixed 5-minute TTL
  and are consumed exactly once
- A challenge bound to a user can only be answered by that user's credential;
  the check runs before any cryptographic verification
- The signature counter is read fresh for every attempt and the update is
  guarded on the value read, so two concurrent assertions cannot both commit
"""

import logging
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession
from webauthn import generate_authentication_options, generate_registration_options
from webauthn.helpers import bytes_to_base64url
from webauthn.helpers.structs import (
    AttestationConveyancePreference,
    AuthenticatorAttachment,
    AuthenticatorSelectionCriteria,
    AuthenticatorTransport,
    PublicKeyCredentialDescriptor,
    ResidentKeyRequirement,
    UserVerificationRequirement,
)

from app import crud
from app.core.config import settings
from app.core.log_utils import sanitize_for_log
from app.crud.crud_passkey import default_friendly_name, validate_friendly_name
from app.db.models.passkey import AuthenticatorCategory, Passkey
from app.db.models.user import User
from app.db.models.webauthn_challenge import ChallengePurpose
from app.exceptions import (
    ChallengeNotFoundOrExpired,
    ChallengeSessionMismatch,
    ChallengeTypeMismatch,
    CounterNotIncrementing,
    CredentialNotFound,
    CredentialNotRecognized,
    OriginMismatch,
    SignatureInvalid,
    StoreUnavailable,
)
from app.services import challenge_store, credential_verifier, two_factor_service
from app.services.challenge_store import Challenge
from app.services.two_factor_service import LoginOutcome

logger = logging.getLogger(__name__)

# Rejections on the enrolment path are reported as 400 rather than 401
_REGISTRATION_BAD_REQUEST = (
    ChallengeNotFoundOrExpired,
    ChallengeSessionMismatch,
    ChallengeTypeMismatch,
    OriginMismatch,
    SignatureInvalid,
)

_ATTACHMENT_BY_CATEGORY = {
    AuthenticatorCategory.PLATFORM: AuthenticatorAttachment.PLATFORM,
    AuthenticatorCategory.CROSS_PLATFORM: AuthenticatorAttachment.CROSS_PLATFORM,
}


def _transports(values: list[str] | None) -> list[AuthenticatorTransport]:
    transports = []
    for value in values or []:
        try:
            transports.append(AuthenticatorTransport(value))
        except ValueError:
            logger.debug("Ignoring unknown transport hint %s", sanitize_for_log(value))
    return transports


def _descriptors(passkeys: list[Passkey]) -> list[PublicKeyCredentialDescriptor]:
    return [
        PublicKeyCredentialDescriptor(id=pk.credential_id, transports=_transports(pk.transports))
        for pk in passkeys
    ]


def _descriptor_json(descriptors: list[PublicKeyCredentialDescriptor] | None) -> list[dict]:
    return [
        {
            "id": bytes_to_base64url(d.id),
            "type": d.type,
            "transports": [t.value for t in (d.transports or [])],
        }
        for d in (descriptors or [])
    ]


def _category_from_attachment(attachment: AuthenticatorAttachment | None) -> AuthenticatorCategory:
    if attachment == AuthenticatorAttachment.PLATFORM:
        return AuthenticatorCategory.PLATFORM
    return AuthenticatorCategory.CROSS_PLATFORM


async def _close_challenge(db: AsyncSession, challenge: Challenge) -> None:
    """Invalidate after every verification attempt, success or failure."""
    try:
        await challenge_store.invalidate(db, challenge.value)
    except StoreUnavailable:
        # consume() already removed the row; nothing left to replay
        logger.warning("Could not invalidate consumed challenge; row was already removed.")


def serialize_passkey(passkey: Passkey) -> dict:
    """Outward projection of a credential: no key material, no raw credential id."""
    return {
        "id": str(passkey.id),
        "authenticatorCategory": AuthenticatorCategory(passkey.authenticator_type).value,
        "friendlyName": passkey.friendly_name,
        "lastUsedAt": passkey.last_used_at.isoformat() if passkey.last_used_at else None,
        "createdAt": passkey.created_at.isoformat() if passkey.created_at else None,
    }


# --- Registration ---


async def get_registration_options(
    db: AsyncSession,
    user: User,
    category: AuthenticatorCategory,
) -> dict:
    """
    Generate WebAuthn registration options for an authenticated user.

    The challenge is bound to ``user``. Already enrolled credentials are listed in
    ``excludeCredentials`` so the same authenticator cannot be enrolled twice.
    """
    existing = await crud.passkey.list_for_user(db, user_id=user.id)
    challenge = await challenge_store.issue(db, ChallengePurpose.REGISTRATION, user_id=user.id)

    options = generate_registration_options(
        rp_id=settings.RP_ID,
        rp_name=settings.WEBAUTHN_RP_NAME,
        user_id=user.id.bytes,
        user_name=user.email,
        user_display_name=user.display_name,
        challenge=challenge.raw,
        timeout=settings.WEBAUTHN_TIMEOUT_MS,
        attestation=AttestationConveyancePreference.NONE,
        exclude_credentials=_descriptors(existing),
        authenticator_selection=AuthenticatorSelectionCriteria(
            authenticator_attachment=_ATTACHMENT_BY_CATEGORY[category],
            resident_key=ResidentKeyRequirement.PREFERRED,
            user_verification=UserVerificationRequirement.PREFERRED,
        ),
    )

    selection = options.authenticator_selection
    return {
        "rp": {"id": options.rp.id, "name": options.rp.name},
        "user": {
            "id": bytes_to_base64url(options.user.id),
            "name": options.user.name,
            "displayName": options.user.display_name,
        },
        "challenge": challenge.value,
        "pubKeyCredParams": [{"type": p.type, "alg": p.alg} for p in options.pub_key_cred_params],
        "timeout": options.timeout,
        "excludeCredentials": _descriptor_json(options.exclude_credentials),
        "authenticatorSelection": {
            "authenticatorAttachment": selection.authenticator_attachment.value
            if selection and selection.authenticator_attachment
            else None,
            "residentKey": selection.resident_key.value
            if selection and selection.resident_key
            else "preferred",
            "userVerification": selection.user_verification.value
            if selection and selection.user_verification
            else "preferred",
        },
        "attestation": options.attestation.value if options.attestation else "none",
        "authenticatorCategory": category.value,
    }


async def verify_registration(
    db: AsyncSession,
    user: User,
    credential_json: dict | str,
    friendly_name: str | None = None,
) -> Passkey:
    """
    Verify a registration response and enrol the credential.

    Raises:
        MalformedCredential: unparseable response (400)
        ChallengeNotFoundOrExpired, ChallengeTypeMismatch, ChallengeSessionMismatch,
        OriginMismatch, SignatureInvalid: rejected ceremony (400)
        NameValidationFailed: bad friendly name (400)
        CredentialConflict: credential id already enrolled (409)
    """
    # Validate the label first so a bad name never burns the challenge
    name = validate_friendly_name(friendly_name) if friendly_name is not None else None

    credential = credential_verifier.parse_registration(credential_json)
    try:
        challenge = await challenge_store.consume(
            db, credential_verifier.extract_challenge(credential)
        )
        try:
            if challenge.purpose is not ChallengePurpose.REGISTRATION:
                raise ChallengeTypeMismatch(detail="authentication challenge used for registration")
            if challenge.user_id != user.id:
                raise ChallengeSessionMismatch(detail="registration challenge issued to another user")
            verified = credential_verifier.verify_registration(credential, challenge.raw)
        finally:
            await _close_challenge(db, challenge)
    except _REGISTRATION_BAD_REQUEST as e:
        logger.warning(
            "Passkey registration rejected for user %s: %s", user.id, sanitize_for_log(e.detail)
        )
        e.status_code = 400
        raise

    category = _category_from_attachment(credential.authenticator_attachment)
    passkey = await crud.passkey.create(
        db,
        user_id=user.id,
        verified=verified,
        category=category,
        friendly_name=name or default_friendly_name(category),
    )
    logger.info(
        "Passkey %s registered for user %s (%s)", passkey.id, user.id, category.value
    )
    return passkey


# --- Authentication ---


async def get_authentication_options(
    db: AsyncSession,
    bound_email: str | None = None,
    *,
    list_credentials: bool = False,
) -> dict:
    """
    Generate WebAuthn authentication options.

    Without ``bound_email`` the challenge is unbound (standalone passkey login).
    With it, the challenge is bound to that account when one exists; the response
    looks the same either way, so it cannot be used to enumerate accounts.

    ``allowCredentials`` is empty unless ``list_credentials`` is set, which the
    caller only does once the email comes from a verified temporary token.
    """
    bound_user = None
    allow_credentials: list[PublicKeyCredentialDescriptor] = []

    if bound_email:
        bound_user = await crud.user.get_by_email(db, email=bound_email)
        if bound_user is None:
            logger.info(
                "No account for bound email %s; issuing an unbound challenge",
                sanitize_for_log(bound_email),
            )
        elif list_credentials:
            allow_credentials = _descriptors(
                await crud.passkey.list_for_user(db, user_id=bound_user.id)
            )

    challenge = await challenge_store.issue(
        db,
        ChallengePurpose.AUTHENTICATION,
        user_id=bound_user.id if bound_user else None,
    )

    options = generate_authentication_options(
        rp_id=settings.RP_ID,
        challenge=challenge.raw,
        timeout=settings.WEBAUTHN_TIMEOUT_MS,
        allow_credentials=allow_credentials,
        user_verification=UserVerificationRequirement.PREFERRED,
    )

    return {
        "challenge": challenge.value,
        "timeout": options.timeout,
        "rpId": options.rp_id,
        "allowCredentials": _descriptor_json(options.allow_credentials),
        "userVerification": options.user_verification.value
        if options.user_verification
        else "preferred",
    }


async def verify_authentication(db: AsyncSession, credential_json: dict | str) -> LoginOutcome:
    """
    Verify an assertion and complete the login.

    Raises:
        MalformedCredential: unparseable response (400)
        ChallengeNotFoundOrExpired, ChallengeTypeMismatch: bad challenge (401)
        CredentialNotRecognized: no such credential (401)
        ChallengeSessionMismatch: bound challenge answered by another user's credential (401)
        OriginMismatch, SignatureInvalid: verification failure (401)
        CounterNotIncrementing: possible cloned authenticator (401)
        AccountNotApproved: owner not approved (403)
    """
    credential = credential_verifier.parse_authentication(credential_json)
    challenge = await challenge_store.consume(db, credential_verifier.extract_challenge(credential))

    try:
        if challenge.purpose is not ChallengePurpose.AUTHENTICATION:
            raise ChallengeTypeMismatch(detail="registration challenge used for authentication")

        passkey = await crud.passkey.get_by_credential_id(db, credential_id=credential.raw_id)
        if passkey is None:
            raise CredentialNotRecognized(detail="unknown credential id")

        if challenge.is_bound and passkey.user_id != challenge.user_id:
            logger.warning(
                "Bound challenge for user %s answered with passkey %s of user %s",
                challenge.user_id,
                passkey.id,
                passkey.user_id,
            )
            raise ChallengeSessionMismatch(detail="credential owner differs from bound user")

        stored_sign_count = passkey.sign_count
        verified = credential_verifier.verify_authentication(
            credential,
            public_key=passkey.public_key,
            stored_sign_count=stored_sign_count,
            expected_challenge=challenge.raw,
        )
    finally:
        await _close_challenge(db, challenge)

    user = two_factor_service.ensure_approved(
        await crud.user.get_by_id(db, user_id=passkey.user_id)
    )

    committed = await crud.passkey.record_use(
        db,
        passkey=passkey,
        expected_sign_count=stored_sign_count,
        new_sign_count=verified.new_sign_count,
        backup_state=verified.backup_state,
    )
    if not committed:
        logger.error("Concurrent use of passkey %s; counter already moved", passkey.id)
        raise CounterNotIncrementing(detail="stored counter changed during verification")

    outcome = await two_factor_service.complete_passkey_login(db, user, bound=challenge.is_bound)
    logger.info(
        "User %s authenticated via passkey %s (%s)", user.id, passkey.id, outcome.state.value
    )
    return outcome


# --- Management ---


async def list_passkeys(db: AsyncSession, user: User) -> list[Passkey]:
    return await crud.passkey.list_for_user(db, user_id=user.id)


async def rename_passkey(
    db: AsyncSession, user: User, passkey_id: UUID, new_name: str | None
) -> Passkey:
    """Validate ``new_name`` and rename a passkey owned by ``user``."""
    name = validate_friendly_name(new_name)
    passkey = await crud.passkey.get_owned(db, passkey_id=passkey_id, user_id=user.id)
    if passkey is None:
        raise CredentialNotFound()
    passkey = await crud.passkey.rename(db, passkey=passkey, friendly_name=name)
    logger.info("Passkey %s renamed by user %s", passkey.id, user.id)
    return passkey


async def delete_passkey(db: AsyncSession, user: User, passkey_id: UUID) -> bool:
    """
    Delete a passkey owned by ``user``.

    When it was the last one, the two-factor flag is forced off in the same
    transaction, whatever its previous value. Returns True in that case.
    """
    # Held until commit so a concurrent delete or 2FA enable sees our count
    await crud.user.lock_for_update(db, user_id=user.id)

    removed = await crud.passkey.remove_owned(db, passkey_id=passkey_id, user_id=user.id)
    if removed is None:
        raise CredentialNotFound()

    remaining = await crud.passkey.count_for_user(db, user_id=user.id)
    last_removed = remaining == 0
    if last_removed:
        await crud.user.set_two_factor_flag(db, user=user, enabled=False, commit=False)

    await crud.passkey.commit(db)

    logger.info("Passkey %s deleted for user %s", passkey_id, user.id)
    if last_removed:
        logger.info("2FA disabled for user %s after deleting last passkey", user.id)
    return last_removed
