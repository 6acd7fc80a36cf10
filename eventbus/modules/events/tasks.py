"""Celery tasks for the retry sweep and stale-claim recovery."""

from __future__ import annotations

import asyncio
import logging

from celery_app import celery
from eventbus.database.engine import async_session, engine
from eventbus.modules.events.gateway import HttpPlatformGateway
from eventbus.modules.events.registry import build_default_registry
from eventbus.modules.events.sweeper import RetrySweeper

logger = logging.getLogger(__name__)


async def _retry_failed_async() -> dict:
    """Async implementation: re-dispatch every FAILED event that is due."""
    gateway = HttpPlatformGateway()
    try:
        sweeper = RetrySweeper(async_session, build_default_registry(gateway))
        return await sweeper.sweep()
    finally:
        await gateway.aclose()
        # Pooled connections belong to this task's event loop.
        await engine.dispose()


async def _timeout_stale_async() -> int:
    """Async implementation: fail events whose dispatcher never released them."""
    gateway = HttpPlatformGateway()
    try:
        sweeper = RetrySweeper(async_session, build_default_registry(gateway))
        return await sweeper.recover_stale()
    finally:
        await gateway.aclose()
        await engine.dispose()


# ---------------------------------------------------------------------------
# Celery task definitions
# ---------------------------------------------------------------------------


@celery.task(name="eventbus.modules.events.tasks.retry_failed_events")
def retry_failed_events():
    """Retry failed events whose next_retry_at has passed."""
    stats = asyncio.run(_retry_failed_async())
    logger.info("retry_failed_events complete: %s", stats)
    return stats


@celery.task(name="eventbus.modules.events.tasks.timeout_stale_events")
def timeout_stale_events():
    """Count stale PROCESSING events as failed attempts."""
    recovered = asyncio.run(_timeout_stale_async())
    logger.info("timeout_stale_events complete: recovered=%d", recovered)
    return {"recovered": recovered}
