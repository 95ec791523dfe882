# /app/db/models/webauthn_challenge.py

import enum
import uuid
from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, String, Uuid, func
from sqlalchemy import Enum as SQLAlchemyEnum
from sqlalchemy.orm import Mapped, mapped_column

from app.db.base_class import Base


class ChallengePurpose(str, enum.Enum):
    REGISTRATION = "registration"
    AUTHENTICATION = "authentication"


class WebAuthnChallenge(Base):
    """
    A single-use ceremony challenge.

    Rows are deleted the moment they are consumed; ``expires_at`` is checked on
    every lookup, the periodic sweep only reclaims space.
    """

    __tablename__ = "webauthn_challenges"

    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    # base64url of the random bytes, exactly as embedded in clientDataJSON
    challenge: Mapped[str] = mapped_column(String(128), nullable=False, unique=True, index=True)
    purpose: Mapped[ChallengePurpose] = mapped_column(
        SQLAlchemyEnum(
            ChallengePurpose,
            name="purpose",
            native_enum=False,
            create_constraint=True,
            length=20,
            values_callable=lambda enum_cls: [member.value for member in enum_cls],
        ),
        nullable=False,
    )
    # None means unbound (standalone login)
    user_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=True
    )
    expires_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, index=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    def __repr__(self) -> str:
        return (
            f"<WebAuthnChallenge(purpose={self.purpose.value}, user_id={self.user_id}, "
            f"expires_at={self.expires_at})>"
        )
