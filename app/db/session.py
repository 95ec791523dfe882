# app/db/session.py
import asyncio
import contextlib
import logging
from collections.abc import AsyncGenerator, Iterator

from sqlalchemy import text
from sqlalchemy.exc import InterfaceError, OperationalError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from app.core.config import settings
from app.exceptions import StoreUnavailable

logger = logging.getLogger(__name__)


# --- Store error translation ---


@contextlib.contextmanager
def store_errors(operation: str) -> Iterator[None]:
    """
    Translate connectivity failures from the database into ``StoreUnavailable``.

    Integrity violations and programming errors pass through untouched; they are
    not transient.
    """
    try:
        yield
    except (OperationalError, InterfaceError, ConnectionError, asyncio.TimeoutError) as e:
        logger.error("Store unavailable during %s: %s", operation, e)
        raise StoreUnavailable(detail=f"{operation}: {e}") from e


# --- Asynchronous Engine and Session Setup (for FastAPI) ---
fastapi_async_engine: AsyncEngine | None = None
FastAPISessionLocal: async_sessionmaker[AsyncSession] | None = None


def _initialize_fastapi_db_resources_sync():
    """
    Initialize FastAPI's async database engine and session maker.
    Called by the lifespan manager.
    """
    global fastapi_async_engine, FastAPISessionLocal

    if fastapi_async_engine is not None:
        logger.info("FastAPI: Asynchronous database resources already initialized.")
        return

    logger.info("FastAPI: Initializing asynchronous database engine and session maker.")
    try:
        db_url_fastapi_str = settings.ASYNC_SQLALCHEMY_DATABASE_URL
        current_engine = create_async_engine(
            db_url_fastapi_str,
            pool_pre_ping=True,
            echo=settings.DB_ECHO,
        )
        current_session_local = async_sessionmaker(
            bind=current_engine,
            autocommit=False,
            autoflush=False,
            expire_on_commit=False,
            class_=AsyncSession,
        )
        fastapi_async_engine = current_engine
        FastAPISessionLocal = current_session_local
        logger.info(
            "FastAPI: Asynchronous database engine (%s@...) and session maker configured.",
            db_url_fastapi_str.split("@")[0].rsplit(":", 1)[0],
        )
    except Exception as e:
        logger.critical(
            "CRITICAL: FastAPI: Failed to initialize asynchronous database engine: %s",
            e,
            exc_info=True,
        )
        fastapi_async_engine = None
        FastAPISessionLocal = None
        raise RuntimeError(
            f"FastAPI: Failed to initialize asynchronous database engine during startup: {e}"
        ) from e


async def _dispose_fastapi_db_resources_async():
    global fastapi_async_engine, FastAPISessionLocal
    if fastapi_async_engine:
        logger.info("FastAPI: Disposing asynchronous database engine.")
        await fastapi_async_engine.dispose()
        fastapi_async_engine = None
        FastAPISessionLocal = None
    else:
        logger.info("FastAPI: No asynchronous database engine to dispose.")


async def get_async_session() -> AsyncGenerator[AsyncSession, None]:
    if FastAPISessionLocal is None:
        logger.critical("FastAPI: FastAPISessionLocal is not initialized.")
        raise RuntimeError(
            "FastAPI: FastAPISessionLocal is not initialized. "
            "Ensure DB resources are initialized via lifespan."
        )
    async with FastAPISessionLocal() as session:
        try:
            yield session
        except Exception:
            await session.rollback()
            logger.error(
                "FastAPI: Async DB session rolled back due to an exception.", exc_info=True
            )
            raise


# --- Resources for Celery Worker ---
worker_async_engine: AsyncEngine | None = None
WorkerSessionLocal: async_sessionmaker[AsyncSession] | None = None


def initialize_worker_db_resources():
    global worker_async_engine, WorkerSessionLocal
    if worker_async_engine is not None:
        logger.debug("CELERY_WORKER: Database engine already initialized for this process.")
        return

    logger.info("CELERY_WORKER: Initializing database engine and session factory.")
    try:
        db_url_worker_str = settings.ASYNC_SQLALCHEMY_DATABASE_URL_WORKER
        current_worker_engine = create_async_engine(
            db_url_worker_str,
            pool_pre_ping=True,
            echo=settings.DB_ECHO_WORKER,
        )
        WorkerSessionLocal = async_sessionmaker(
            bind=current_worker_engine,
            class_=AsyncSession,
            expire_on_commit=False,
            autocommit=False,
            autoflush=False,
        )
        worker_async_engine = current_worker_engine
    except Exception as e:
        logger.critical(
            "CRITICAL: CELERY_WORKER: Failed to initialize database engine: %s", e, exc_info=True
        )
        worker_async_engine = None
        WorkerSessionLocal = None
        raise RuntimeError(f"CELERY_WORKER: Failed to initialize database engine: {e}") from e


def dispose_worker_db_resources_sync():
    global worker_async_engine, WorkerSessionLocal
    if not worker_async_engine:
        logger.info("CELERY_WORKER: No database engine to dispose for this worker process.")
        return

    logger.info("CELERY_WORKER: Disposing database engine.")
    try:
        asyncio.run(worker_async_engine.dispose())
    except RuntimeError as e:
        logger.warning("CELERY_WORKER: asyncio.run() failed during dispose: %s", e)
    finally:
        worker_async_engine = None
        WorkerSessionLocal = None


# --- FastAPI Lifespan Event Handler Integration ---
async def lifespan_db_manager(_app_instance, event_type: str):
    lifespan_logger = logging.getLogger("app.db.lifespan")

    if event_type == "startup":
        lifespan_logger.info("FastAPI Lifespan: Startup event - Initializing DB resources.")
        _initialize_fastapi_db_resources_sync()

        if fastapi_async_engine is None:
            raise RuntimeError("FastAPI engine failed to initialize during startup.")

        try:
            async with fastapi_async_engine.connect() as connection:
                await connection.execute(text("SELECT 1"))
            lifespan_logger.info("FastAPI Lifespan: Database connection successful on startup.")
        except Exception as e:
            lifespan_logger.error(
                "FastAPI Lifespan: Database connection test failed: %s", e, exc_info=True
            )
            await _dispose_fastapi_db_resources_async()
            raise RuntimeError(f"FastAPI: Database connection test failed on startup: {e}") from e

    elif event_type == "shutdown":
        lifespan_logger.info("FastAPI Lifespan: Shutdown event - Disposing DB resources.")
        await _dispose_fastapi_db_resources_async()
