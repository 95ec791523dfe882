# tests/conftest.py
import os
import tempfile
from collections.abc import AsyncGenerator
from pathlib import Path

# Settings are read at import time; provide what the suite needs before importing app
os.environ.setdefault("SECRET_KEY", "test-secret-key-for-session-tokens-0123456789")
os.environ.setdefault("FRONTEND_URL", "http://localhost:5173")
os.environ.setdefault("COOKIE_SECURE", "false")
os.environ.setdefault(
    "SECURITY_LOG_PATH", str(Path(tempfile.gettempdir()) / "passkey-auth-tests" / "security.log")
)

import pytest_asyncio  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402
from sqlalchemy.ext.asyncio import (  # noqa: E402
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool  # noqa: E402

from app.core.rate_limit import limiter  # noqa: E402
from app.db.base import Base  # noqa: E402
from app.db.session import get_async_session  # noqa: E402
from app.exceptions import IdentityTokenInvalid  # noqa: E402
from app.main import app as fastapi_app  # noqa: E402
from app.services.identity_provider import FederatedIdentity, get_identity_provider  # noqa: E402

TEST_DATABASE_URL = os.environ.get("TEST_DATABASE_URL", "sqlite+aiosqlite:///:memory:")

limiter.enabled = False


class FakeIdentityProvider:
    """Accepts tokens of the form ``valid:<email>[:<name>]``."""

    async def verify(self, id_token: str) -> FederatedIdentity:
        if not id_token.startswith("valid:"):
            raise IdentityTokenInvalid(detail="fake provider rejected token")
        _, email, *rest = id_token.split(":")
        return FederatedIdentity(email=email or None, name=rest[0] if rest else None)


@pytest_asyncio.fixture(scope="function")
async def test_engine():
    """Creates/Disposes an async engine FOR EACH TEST FUNCTION."""
    if TEST_DATABASE_URL.startswith("sqlite"):
        engine = create_async_engine(
            TEST_DATABASE_URL,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    else:
        engine = create_async_engine(TEST_DATABASE_URL)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)
    try:
        yield engine
    finally:
        await engine.dispose()


@pytest_asyncio.fixture(scope="function")
async def db_session(test_engine) -> AsyncGenerator[AsyncSession, None]:
    """Yields a database session per function, using the function-scoped engine."""
    TestSessionFactory = async_sessionmaker(
        test_engine, expire_on_commit=False, class_=AsyncSession
    )
    async with TestSessionFactory() as session:
        try:
            yield session
        except Exception:
            await session.rollback()
            raise


@pytest_asyncio.fixture(scope="function")
async def test_client(db_session: AsyncSession) -> AsyncGenerator[AsyncClient, None]:
    """
    httpx AsyncClient bound to the app in-process, sharing the test session and
    using the fake identity provider.
    """

    async def override_get_async_session() -> AsyncGenerator[AsyncSession, None]:
        yield db_session

    fastapi_app.dependency_overrides[get_async_session] = override_get_async_session
    fastapi_app.dependency_overrides[get_identity_provider] = FakeIdentityProvider

    async with AsyncClient(
        transport=ASGITransport(app=fastapi_app), base_url="http://test"
    ) as client:
        yield client

    fastapi_app.dependency_overrides.clear()
