# app/db/base.py

# Importing every model registers it on Base.metadata. Alembic's env.py and the
# test fixtures rely on this module to see the full schema.
from app.db.base_class import Base  # noqa: F401
from app.db.models.passkey import Passkey  # noqa: F401
from app.db.models.user import User  # noqa: F401
from app.db.models.webauthn_challenge import WebAuthnChallenge  # noqa: F401
