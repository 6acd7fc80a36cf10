"""RetrySweeper: periodic re-dispatch of failed events and stale-claim recovery."""

from __future__ import annotations

import asyncio
import logging
import uuid
from datetime import datetime

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from eventbus.config import settings
from eventbus.database.base import utcnow
from eventbus.models.enums import EventStatus
from eventbus.modules.events.dispatcher import Dispatcher, DispatchResult
from eventbus.modules.events.registry import HandlerRegistry
from eventbus.modules.events.retry import RetryManager, RetryPolicy
from eventbus.modules.events.runtime import HandlerRuntime
from eventbus.modules.events.store import EventStore

logger = logging.getLogger(__name__)


class RetrySweeper:
    """The only path by which a FAILED event goes back to PROCESSING.

    Due events are dispatched concurrently, each in its own session. The
    dispatcher's atomic claim (FAILED -> PROCESSING, still due) keeps two
    overlapping sweeps from running the same event twice.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        registry: HandlerRegistry,
        runtime: HandlerRuntime | None = None,
        retry_policy: RetryPolicy | None = None,
        batch_size: int | None = None,
        concurrency: int | None = None,
    ) -> None:
        self.session_factory = session_factory
        self.registry = registry
        self.runtime = runtime or HandlerRuntime()
        self.retry_policy = retry_policy or RetryPolicy()
        self.batch_size = batch_size or settings.retry_sweep_batch_size
        self.concurrency = max(1, concurrency or settings.retry_sweep_concurrency)

    async def sweep(self, now: datetime | None = None) -> dict:
        """Retry every due FAILED event. Returns counters for the task result."""
        now = now or utcnow()
        stats = {"found": 0, "retried": 0, "succeeded": 0, "skipped": 0, "errors": 0}

        async with self.session_factory() as session:
            due = await EventStore(session).due_for_retry(now, self.batch_size)
        stats["found"] = len(due)
        if not due:
            return stats

        semaphore = asyncio.Semaphore(self.concurrency)

        async def _retry(event_id: uuid.UUID) -> DispatchResult:
            async with semaphore:
                async with self.session_factory() as session:
                    dispatcher = Dispatcher(session, self.registry, self.runtime, self.retry_policy)
                    return await dispatcher.dispatch(
                        event_id, from_statuses=(EventStatus.FAILED,), due_before=now
                    )

        results = await asyncio.gather(*(_retry(event_id) for event_id in due), return_exceptions=True)

        for event_id, result in zip(due, results):
            if isinstance(result, BaseException):
                logger.error("Retry of event %s errored", event_id, exc_info=result)
                stats["errors"] += 1
            elif not result.claimed:
                stats["skipped"] += 1
            else:
                stats["retried"] += 1
                if result.all_success:
                    stats["succeeded"] += 1

        logger.info(
            "Retry sweep: found=%d retried=%d succeeded=%d skipped=%d errors=%d",
            stats["found"], stats["retried"], stats["succeeded"], stats["skipped"], stats["errors"],
        )
        return stats

    async def recover_stale(self, now: datetime | None = None) -> int:
        async with self.session_factory() as session:
            return await RetryManager(session, self.retry_policy).recover_stale(now)
