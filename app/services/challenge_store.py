# app/services/challenge_store.py
"""
Durable store for WebAuthn ceremony challenges.

Provides functions for:
- Issuing a random, time-boxed challenge, optionally bound to a user
- Consuming a challenge exactly once
- Invalidating a challenge after a verification attempt
- Sweeping expired rows (maintenance only)

Security considerations:
- 32 random bytes per challenge, base64url encoded as the client will echo it
- Lifetime is exactly five minutes from issuance and not configurable
- ``consume`` is a single ``DELETE ... RETURNING`` filtered on expiry, so two
  concurrent consumers of one value cannot both see it
- Expired rows compare as absent even before the sweep removes them
"""

import logging
import secrets
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from uuid import UUID

from sqlalchemy import delete
from sqlalchemy.ext.asyncio import AsyncSession
from webauthn.helpers import base64url_to_bytes, bytes_to_base64url

from app.db.models.webauthn_challenge import ChallengePurpose, WebAuthnChallenge
from app.db.session import store_errors
from app.exceptions import ChallengeNotFoundOrExpired

logger = logging.getLogger(__name__)

CHALLENGE_TTL = timedelta(minutes=5)
CHALLENGE_BYTES = 32


@dataclass(frozen=True)
class Challenge:
    value: str
    purpose: ChallengePurpose
    user_id: UUID | None
    expires_at: datetime

    @property
    def raw(self) -> bytes:
        return base64url_to_bytes(self.value)

    @property
    def is_bound(self) -> bool:
        return self.user_id is not None


def _utcnow() -> datetime:
    return datetime.now(UTC)


def _as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes; everything stored is UTC
    return value if value.tzinfo else value.replace(tzinfo=UTC)


async def issue(
    db: AsyncSession,
    purpose: ChallengePurpose,
    user_id: UUID | None = None,
) -> Challenge:
    """Generate and persist a fresh challenge."""
    value = bytes_to_base64url(secrets.token_bytes(CHALLENGE_BYTES))
    expires_at = _utcnow() + CHALLENGE_TTL

    with store_errors("challenge.issue"):
        db.add(
            WebAuthnChallenge(
                challenge=value, purpose=purpose, user_id=user_id, expires_at=expires_at
            )
        )
        await db.commit()

    logger.debug(
        "Issued %s challenge (bound=%s), expires %s",
        purpose.value,
        user_id is not None,
        expires_at.isoformat(),
    )
    return Challenge(value=value, purpose=purpose, user_id=user_id, expires_at=expires_at)


async def consume(db: AsyncSession, value: str) -> Challenge:
    """
    Atomically take a live challenge out of the store.

    Raises:
        ChallengeNotFoundOrExpired: unknown, already consumed, or ``now >= expires_at``
    """
    stmt = (
        delete(WebAuthnChallenge)
        .where(WebAuthnChallenge.challenge == value, WebAuthnChallenge.expires_at > _utcnow())
        .execution_options(synchronize_session=False)
        .returning(
            WebAuthnChallenge.purpose,
            WebAuthnChallenge.user_id,
            WebAuthnChallenge.expires_at,
        )
    )
    with store_errors("challenge.consume"):
        result = await db.execute(stmt)
        row = result.first()
        await db.commit()

    if row is None:
        logger.info("Challenge lookup missed (absent, consumed or expired).")
        raise ChallengeNotFoundOrExpired()

    purpose, user_id, expires_at = row
    return Challenge(
        value=value,
        purpose=ChallengePurpose(purpose),
        user_id=user_id,
        expires_at=_as_utc(expires_at),
    )


async def invalidate(db: AsyncSession, value: str) -> None:
    """Delete a challenge whatever its state. Safe to call on an already consumed value."""
    with store_errors("challenge.invalidate"):
        await db.execute(
            delete(WebAuthnChallenge)
            .where(WebAuthnChallenge.challenge == value)
            .execution_options(synchronize_session=False)
        )
        await db.commit()


async def sweep_expired(db: AsyncSession) -> int:
    """Remove every challenge past its expiry. Returns the number of rows deleted."""
    with store_errors("challenge.sweep"):
        result = await db.execute(
            delete(WebAuthnChallenge)
            .where(WebAuthnChallenge.expires_at <= _utcnow())
            .execution_options(synchronize_session=False)
        )
        await db.commit()

    count = result.rowcount or 0  # type: ignore[attr-defined]
    if count:
        logger.info("Swept %d expired WebAuthn challenges", count)
    return count
