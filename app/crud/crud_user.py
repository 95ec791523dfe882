# app/crud/crud_user.py
import logging
from datetime import UTC, datetime
from uuid import UUID

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.attributes import set_committed_value

from app.crud.base import CRUDBase
from app.db.models.user import User
from app.db.session import store_errors

logger = logging.getLogger(__name__)


def normalize_email(email: str) -> str:
    return email.strip().lower()


class CRUDUser(CRUDBase[User]):
    async def get_by_email(self, db: AsyncSession, *, email: str) -> User | None:
        """
        Get an account by email (case-insensitive).
        """
        with store_errors("users.get_by_email"):
            result = await db.execute(
                select(self.model).where(func.lower(self.model.email) == normalize_email(email))
            )
        return result.scalars().first()

    async def get_by_id(self, db: AsyncSession, *, user_id: UUID) -> User | None:
        return await super().get(db, id=user_id)

    async def lock_for_update(self, db: AsyncSession, *, user_id: UUID) -> User | None:
        """
        Row-lock an account until the current transaction ends.

        Serializes per-user read-then-write sequences (passkey count vs. the
        two-factor flag) across concurrent requests. A no-op on SQLite.
        """
        with store_errors("users.lock_for_update"):
            result = await db.execute(
                select(self.model)
                .where(self.model.id == user_id)
                .with_for_update()
                .execution_options(populate_existing=True)
            )
        return result.scalars().first()

    async def update_last_login(
        self, db: AsyncSession, *, user: User, when: datetime | None = None
    ) -> None:
        """Stamp the primary-login timestamp. Only called once a login is fully satisfied."""
        when = when or datetime.now(UTC)
        with store_errors("users.update_last_login"):
            await db.execute(
                update(self.model)
                .where(self.model.id == user.id)
                .values(last_login_at=when)
                .execution_options(synchronize_session=False)
            )
            await db.commit()
        set_committed_value(user, "last_login_at", when)
        logger.debug("Updated last_login_at for user %s", user.id)

    async def set_two_factor_flag(
        self, db: AsyncSession, *, user: User, enabled: bool, commit: bool = True
    ) -> None:
        with store_errors("users.set_two_factor_flag"):
            await db.execute(
                update(self.model)
                .where(self.model.id == user.id)
                .values(passkey_2fa_enabled=enabled)
                .execution_options(synchronize_session=False)
            )
            if commit:
                await db.commit()
        set_committed_value(user, "passkey_2fa_enabled", enabled)


user = CRUDUser(User)
