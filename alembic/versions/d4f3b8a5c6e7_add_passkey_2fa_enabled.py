"""Add passkey_2fa_enabled to users.

Revision ID: d4f3b8a5c6e7
Revises: c3e2a7f4b5d6
Create Date: 2026-02-02

"""

from collections.abc import Sequence

import sqlalchemy as sa

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "d4f3b8a5c6e7"
down_revision: str | None = "c3e2a7f4b5d6"
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    # Existing accounts start with two-factor off
    op.add_column(
        "users",
        sa.Column(
            "passkey_2fa_enabled", sa.Boolean(), server_default=sa.false(), nullable=False
        ),
    )


def downgrade() -> None:
    op.drop_column("users", "passkey_2fa_enabled")
