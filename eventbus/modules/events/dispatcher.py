"""Dispatcher: one attempt to run every registered handler for an event."""

from __future__ import annotations

import logging
import uuid
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy.ext.asyncio import AsyncSession

from eventbus.database.base import utcnow
from eventbus.models.enums import EventStatus
from eventbus.modules.events.constants import CLAIMABLE_STATUSES
from eventbus.modules.events.registry import HandlerRegistry
from eventbus.modules.events.retry import RetryManager, RetryPolicy
from eventbus.modules.events.runtime import HandlerRuntime
from eventbus.modules.events.store import EventStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DispatchResult:
    event_id: uuid.UUID
    claimed: bool
    all_success: bool
    handlers_run: int
    status: EventStatus


class Dispatcher:
    """Runs an event's handlers sequentially, in registry order.

    A handler failure never stops the handlers after it; every invocation is
    logged. The event ends COMPLETED only when all handlers succeeded,
    otherwise the RetryManager decides between FAILED and MAX_RETRIES_EXCEEDED.
    """

    def __init__(
        self,
        session: AsyncSession,
        registry: HandlerRegistry,
        runtime: HandlerRuntime | None = None,
        retry_policy: RetryPolicy | None = None,
    ) -> None:
        self.session = session
        self.registry = registry
        self.runtime = runtime or HandlerRuntime()
        self.store = EventStore(session)
        self.retry_manager = RetryManager(session, retry_policy)

    async def dispatch(
        self,
        event_id: uuid.UUID,
        *,
        from_statuses: Iterable[EventStatus] = CLAIMABLE_STATUSES,
        due_before: datetime | None = None,
    ) -> DispatchResult:
        claimed_at = utcnow()
        if not await self.store.claim(event_id, from_statuses, now=claimed_at, due_before=due_before):
            event = await self.store.get_or_raise(event_id, fresh=True)
            logger.info(
                "Event %s not claimed (status=%s), another dispatch owns it or it is settled",
                event_id, event.status.value,
            )
            return DispatchResult(
                event_id=event_id,
                claimed=False,
                all_success=event.status == EventStatus.COMPLETED,
                handlers_run=0,
                status=event.status,
            )

        try:
            return await self._run_claimed(event_id, claimed_at)
        except Exception:
            # The event stays PROCESSING; the stale sweep turns it into a failed attempt.
            await self.session.rollback()
            logger.exception("Dispatch of event %s aborted", event_id)
            raise

    async def _run_claimed(self, event_id: uuid.UUID, claimed_at: datetime) -> DispatchResult:
        event = await self.store.get_or_raise(event_id, fresh=True)
        handlers = self.registry.handlers_for(event.event_type)
        if not handlers:
            logger.info("No handlers registered for %s, completing event %s", event.event_type, event_id)

        attempt = await self.store.next_attempt(event_id)
        payload = dict(event.payload or {})
        last_error: str | None = None

        for position, handler in enumerate(handlers):
            outcome = await self.runtime.run(
                handler.name,
                handler.func,
                event.event_type,
                payload,
                event.aggregate_id,
                event.store_id,
            )
            await self.store.append_log(event_id, outcome, attempt, position)
            if not outcome.success:
                last_error = outcome.result.error
                logger.warning(
                    "Handler %s failed for event %s (%s): %s",
                    handler.name, event_id, event.idempotency_key, last_error,
                )

        if last_error is None:
            if await self.store.mark_completed(event_id, claimed_at):
                logger.info(
                    "Event %s (%s) completed, %d handler(s) run",
                    event_id, event.idempotency_key, len(handlers),
                )
            else:
                logger.warning(
                    "Event %s (%s) claim was taken over before completion, leaving status as is",
                    event_id, event.idempotency_key,
                )
            event = await self.store.get_or_raise(event_id, fresh=True)
        else:
            await self.retry_manager.record_failure(event, last_error, claimed_at)

        return DispatchResult(
            event_id=event_id,
            claimed=True,
            all_success=last_error is None,
            handlers_run=len(handlers),
            status=event.status,
        )
