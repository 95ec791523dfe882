"""Create user_passkeys table for WebAuthn credentials.

Revision ID: b2d1f6e3a4c5
Revises: a1c0e5d2f3b4
Create Date: 2026-01-18

"""

from collections.abc import Sequence

import sqlalchemy as sa

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "b2d1f6e3a4c5"
down_revision: str | None = "a1c0e5d2f3b4"
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    op.create_table(
        "user_passkeys",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("user_id", sa.Uuid(), nullable=False),
        # Raw credential id from the authenticator
        sa.Column("credential_id", sa.LargeBinary(), nullable=False),
        # COSE-encoded public key
        sa.Column("public_key", sa.LargeBinary(), nullable=False),
        sa.Column("sign_count", sa.BigInteger(), server_default="0", nullable=False),
        sa.Column("transports", sa.JSON(), nullable=True),
        sa.Column("aaguid", sa.String(length=36), nullable=True),
        sa.Column("authenticator_type", sa.String(length=20), nullable=False),
        sa.Column("friendly_name", sa.String(length=100), nullable=False),
        sa.Column("backup_eligible", sa.Boolean(), server_default=sa.false(), nullable=False),
        sa.Column("backup_state", sa.Boolean(), server_default=sa.false(), nullable=False),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.Column("last_used_at", sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint(
            "authenticator_type IN ('platform', 'cross-platform')",
            name=op.f("ck_user_passkeys_authenticator_type"),
        ),
        sa.ForeignKeyConstraint(
            ["user_id"],
            ["users.id"],
            name=op.f("fk_user_passkeys_user_id_users"),
            ondelete="CASCADE",
        ),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_user_passkeys")),
    )
    op.create_index(
        op.f("ix_user_passkeys_credential_id"), "user_passkeys", ["credential_id"], unique=True
    )
    op.create_index(op.f("ix_user_passkeys_user_id"), "user_passkeys", ["user_id"], unique=False)


def downgrade() -> None:
    op.drop_index(op.f("ix_user_passkeys_user_id"), table_name="user_passkeys")
    op.drop_index(op.f("ix_user_passkeys_credential_id"), table_name="user_passkeys")
    op.drop_table("user_passkeys")
