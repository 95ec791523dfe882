# app/tasks/maintenance.py
"""
Maintenance tasks for database hygiene.

Expired challenges are already unusable (``consume`` filters on expiry); the
sweep only keeps the table small.
"""

import asyncio
import logging

from app.db import session as db_session
from app.services import challenge_store
from app.tasks.celery_app import celery_app

logger = logging.getLogger(__name__)


@celery_app.task(name="app.tasks.maintenance.sweep_expired_challenges")
def sweep_expired_challenges_task() -> int:
    """Periodic task; runs the async sweep to completion."""
    return asyncio.run(sweep_expired_challenges())


async def sweep_expired_challenges() -> int:
    logger.info("Maintenance: Sweeping expired WebAuthn challenges.")

    db_session.initialize_worker_db_resources()
    if db_session.WorkerSessionLocal is None:
        raise RuntimeError("WorkerSessionLocal not initialized")

    try:
        async with db_session.WorkerSessionLocal() as db:
            count = await challenge_store.sweep_expired(db)
    finally:
        # Pooled connections are bound to this task's event loop
        if db_session.worker_async_engine is not None:
            await db_session.worker_async_engine.dispose()

    logger.info("Maintenance: Removed %d expired challenges.", count)
    return count
