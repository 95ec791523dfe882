# app/services/identity_provider.py
"""
Federated identity verification (primary login factor).

The rest of the service only sees ``FederatedIdentity``; which provider issued
the assertion is an implementation detail of this module. Production uses
Firebase Authentication ID tokens via firebase-admin.
"""

import logging
import threading
from dataclasses import dataclass
from typing import Protocol

import firebase_admin
from fastapi.concurrency import run_in_threadpool
from firebase_admin import auth as firebase_auth
from firebase_admin import credentials

from app.core.config import settings
from app.exceptions import IdentityTokenInvalid

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FederatedIdentity:
    email: str | None
    name: str | None


class IdentityProvider(Protocol):
    async def verify(self, id_token: str) -> FederatedIdentity: ...


class FirebaseIdentityProvider:
    """Verifies Firebase ID tokens. The Firebase app is initialised on first use."""

    _init_lock = threading.Lock()

    def _ensure_app(self) -> firebase_admin.App:
        with self._init_lock:
            try:
                return firebase_admin.get_app()
            except ValueError:
                pass

            options = None
            if settings.FIREBASE_PROJECT_ID:
                options = {"projectId": settings.FIREBASE_PROJECT_ID}
            if settings.FIREBASE_CREDENTIALS_PATH:
                cred = credentials.Certificate(settings.FIREBASE_CREDENTIALS_PATH)
                logger.info("[firebase] Initialising with service account file.")
            else:
                cred = credentials.ApplicationDefault()
                logger.info("[firebase] Initialising with application default credentials.")
            return firebase_admin.initialize_app(cred, options)

    def _verify_sync(self, id_token: str) -> dict:
        app = self._ensure_app()
        return firebase_auth.verify_id_token(id_token, app=app)

    async def verify(self, id_token: str) -> FederatedIdentity:
        try:
            decoded = await run_in_threadpool(self._verify_sync, id_token)
        except (ValueError, firebase_auth.InvalidIdTokenError) as e:
            logger.info("Federated token rejected: %s", e)
            raise IdentityTokenInvalid(detail=str(e)) from e

        return FederatedIdentity(email=decoded.get("email"), name=decoded.get("name"))


_provider: IdentityProvider | None = None


def get_identity_provider() -> IdentityProvider:
    """FastAPI dependency; tests override it with a fake provider."""
    global _provider
    if _provider is None:
        _provider = FirebaseIdentityProvider()
    return _provider
