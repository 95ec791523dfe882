# app/crud/crud_passkey.py
"""
Repository for enrolled passkeys.

Every read or write that takes a passkey id also takes the owning user id; a
passkey that belongs to someone else is indistinguishable from one that does
not exist.
"""

import logging
import re
from datetime import UTC, datetime
from uuid import UUID

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.attributes import set_committed_value

from app.crud.base import CRUDBase
from app.db.models.passkey import AuthenticatorCategory, Passkey
from app.db.session import store_errors
from app.exceptions import CredentialConflict, NameValidationFailed
from app.services.credential_verifier import VerifiedRegistrationResult

logger = logging.getLogger(__name__)

FRIENDLY_NAME_MAX_LENGTH = 100

_DISALLOWED_NAME_CHARS_RE = re.compile(r"[^\w\s\-.,!?()&@#]")
_WHITESPACE_RE = re.compile(r"\s+")


def validate_friendly_name(name: str | None) -> str:
    """
    Normalise a user-supplied passkey label.

    Characters outside letters, digits, whitespace and ``-.,!?()&@#`` are dropped,
    runs of whitespace (including tabs and newlines) collapse to one space.

    Raises:
        NameValidationFailed: empty after normalisation or longer than 100 characters
    """
    if name is None or not name.strip():
        raise NameValidationFailed("Passkey name cannot be empty")

    cleaned = _DISALLOWED_NAME_CHARS_RE.sub("", name)
    cleaned = _WHITESPACE_RE.sub(" ", cleaned).strip()

    if not cleaned:
        raise NameValidationFailed("Passkey name contains no valid characters")
    if len(cleaned) > FRIENDLY_NAME_MAX_LENGTH:
        raise NameValidationFailed(
            f"Passkey name must be {FRIENDLY_NAME_MAX_LENGTH} characters or fewer"
        )
    return cleaned


def default_friendly_name(category: AuthenticatorCategory, when: datetime | None = None) -> str:
    when = when or datetime.now(UTC)
    return f"{category.label} - {when.strftime('%b')} {when.day}, {when.year}"


class CRUDPasskey(CRUDBase[Passkey]):
    async def list_for_user(self, db: AsyncSession, *, user_id: UUID) -> list[Passkey]:
        return await self.get_multi(
            db,
            filters=[Passkey.user_id == user_id],
            order_by=[Passkey.created_at.desc(), Passkey.id],
            limit=1000,
        )

    async def count_for_user(self, db: AsyncSession, *, user_id: UUID) -> int:
        with store_errors("passkeys.count"):
            result = await db.execute(
                select(func.count()).select_from(Passkey).where(Passkey.user_id == user_id)
            )
        return result.scalar() or 0

    async def get_owned(
        self, db: AsyncSession, *, passkey_id: UUID, user_id: UUID
    ) -> Passkey | None:
        with store_errors("passkeys.get_owned"):
            result = await db.execute(
                select(Passkey).where(Passkey.id == passkey_id, Passkey.user_id == user_id)
            )
        return result.scalars().first()

    async def get_by_credential_id(self, db: AsyncSession, *, credential_id: bytes) -> Passkey | None:
        """
        Look up a credential by its raw id.

        ``populate_existing`` makes the returned counter the latest persisted
        value even if the row already sits in the session's identity map.
        """
        with store_errors("passkeys.get_by_credential_id"):
            result = await db.execute(
                select(Passkey)
                .where(Passkey.credential_id == credential_id)
                .execution_options(populate_existing=True)
            )
        return result.scalars().first()

    async def create(
        self,
        db: AsyncSession,
        *,
        user_id: UUID,
        verified: VerifiedRegistrationResult,
        category: AuthenticatorCategory,
        friendly_name: str,
    ) -> Passkey:
        """
        Persist a newly verified credential.

        Raises:
            CredentialConflict: the credential id is already enrolled (any user)
        """
        passkey = Passkey(
            user_id=user_id,
            credential_id=verified.credential_id,
            public_key=verified.public_key,
            sign_count=verified.sign_count,
            transports=verified.transports,
            aaguid=verified.aaguid,
            authenticator_type=category,
            friendly_name=friendly_name,
            backup_eligible=verified.backup_eligible,
            backup_state=verified.backup_state,
        )
        with store_errors("passkeys.create"):
            db.add(passkey)
            try:
                await db.commit()
            except IntegrityError as e:
                await db.rollback()
                logger.warning("Duplicate credential id on enrollment for user %s", user_id)
                raise CredentialConflict(detail="credential_id unique constraint") from e
            await db.refresh(passkey)
        return passkey

    async def record_use(
        self,
        db: AsyncSession,
        *,
        passkey: Passkey,
        expected_sign_count: int,
        new_sign_count: int,
        backup_state: bool,
        used_at: datetime | None = None,
    ) -> bool:
        """
        Persist the advanced counter and last-used timestamp.

        The update only applies if the stored counter still equals the value the
        verification was made against. Returns False when another request got
        there first; the caller must treat that as a counter failure.
        """
        used_at = used_at or datetime.now(UTC)
        with store_errors("passkeys.record_use"):
            result = await db.execute(
                update(Passkey)
                .where(Passkey.id == passkey.id, Passkey.sign_count == expected_sign_count)
                .values(sign_count=new_sign_count, last_used_at=used_at, backup_state=backup_state)
                .execution_options(synchronize_session=False)
            )
            await db.commit()

        if not result.rowcount:  # type: ignore[attr-defined]
            return False
        set_committed_value(passkey, "sign_count", new_sign_count)
        set_committed_value(passkey, "last_used_at", used_at)
        set_committed_value(passkey, "backup_state", backup_state)
        return True

    async def rename(self, db: AsyncSession, *, passkey: Passkey, friendly_name: str) -> Passkey:
        with store_errors("passkeys.rename"):
            passkey.friendly_name = friendly_name
            db.add(passkey)
            await db.commit()
            await db.refresh(passkey)
        return passkey

    async def remove_owned(
        self, db: AsyncSession, *, passkey_id: UUID, user_id: UUID
    ) -> Passkey | None:
        """
        Delete a passkey if ``user_id`` owns it. Does not commit; the caller
        finishes the transaction (the two-factor flag may change alongside).
        """
        passkey = await self.get_owned(db, passkey_id=passkey_id, user_id=user_id)
        if passkey is None:
            return None
        with store_errors("passkeys.remove"):
            await db.delete(passkey)
            await db.flush()
        return passkey


passkey = CRUDPasskey(Passkey)
