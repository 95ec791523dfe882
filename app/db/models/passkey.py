# /app/db/models/passkey.py
"""
Model for WebAuthn/Passkey credentials.

Each row is one enrolled authenticator. A user can hold several (laptop
Touch ID, phone, hardware key); a credential id is never shared between users.
"""

import enum
import uuid
from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    DateTime,
    ForeignKey,
    LargeBinary,
    String,
    Uuid,
    func,
)
from sqlalchemy import Enum as SQLAlchemyEnum
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.db.base_class import Base

if TYPE_CHECKING:
    from app.db.models.user import User


class AuthenticatorCategory(str, enum.Enum):
    PLATFORM = "platform"  # built into the device (Touch ID, Windows Hello)
    CROSS_PLATFORM = "cross-platform"  # roaming key (USB, NFC, BLE, hybrid)

    @property
    def label(self) -> str:
        return "Platform" if self is AuthenticatorCategory.PLATFORM else "Security Key"


class Passkey(Base):
    """Stores WebAuthn credentials (passkeys) for users."""

    __tablename__ = "user_passkeys"

    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)

    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    # Raw credential id from the authenticator; globally unique
    credential_id: Mapped[bytes] = mapped_column(
        LargeBinary, nullable=False, unique=True, index=True
    )

    # COSE-encoded public key
    public_key: Mapped[bytes] = mapped_column(LargeBinary, nullable=False)

    # Signature counter; only ever moves forward
    sign_count: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)

    # Transport hints (e.g. ["usb", "internal", "hybrid", "ble"])
    transports: Mapped[list[str] | None] = mapped_column(JSON, nullable=True)

    # Authenticator model identifier
    aaguid: Mapped[str | None] = mapped_column(String(36), nullable=True)

    authenticator_type: Mapped[AuthenticatorCategory] = mapped_column(
        SQLAlchemyEnum(
            AuthenticatorCategory,
            name="authenticator_type",
            native_enum=False,
            create_constraint=True,
            length=20,
            values_callable=lambda enum_cls: [member.value for member in enum_cls],
        ),
        nullable=False,
    )

    friendly_name: Mapped[str] = mapped_column(String(100), nullable=False)

    # Backup eligibility (BE) and state (BS) flags for synced passkeys
    backup_eligible: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    backup_state: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )
    last_used_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    user: Mapped["User"] = relationship("User", back_populates="passkeys", lazy="noload")

    def __repr__(self) -> str:
        return (
            f"<Passkey(id={self.id}, user_id={self.user_id}, "
            f"name={self.friendly_name!r}, sign_count={self.sign_count})>"
        )
