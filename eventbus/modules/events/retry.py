"""Retry policy and dead-letter transitions for failed dispatches."""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timedelta

from sqlalchemy.ext.asyncio import AsyncSession

from eventbus.config import settings
from eventbus.database.base import utcnow
from eventbus.exceptions import InvalidTransitionException
from eventbus.models.enums import BackoffStrategy, EventStatus
from eventbus.models.event import Event
from eventbus.modules.events.constants import REQUEUEABLE_STATUSES, STALE_DISPATCH_ERROR
from eventbus.modules.events.store import EventStore

logger = logging.getLogger(__name__)


class RetryPolicy:
    """Delay before the next attempt, given how many attempts have failed.

    ``fixed`` waits ``base_seconds`` every time. ``exponential`` waits
    ``base_seconds * factor ** retry_count`` capped at ``max_seconds``
    (5 min base, factor 3: 15 min, 45 min, 135 min, ...).
    """

    def __init__(
        self,
        strategy: BackoffStrategy | str | None = None,
        base_seconds: int | None = None,
        factor: int | None = None,
        max_seconds: int | None = None,
    ) -> None:
        self.strategy = BackoffStrategy(strategy or settings.retry_backoff_strategy)
        self.base_seconds = base_seconds if base_seconds is not None else settings.retry_backoff_seconds
        self.factor = factor if factor is not None else settings.retry_backoff_factor
        self.max_seconds = max_seconds if max_seconds is not None else settings.retry_backoff_max_seconds

    def next_delay(self, retry_count: int) -> timedelta:
        if self.strategy == BackoffStrategy.EXPONENTIAL:
            seconds = min(self.base_seconds * (self.factor ** retry_count), self.max_seconds)
        else:
            seconds = self.base_seconds
        return timedelta(seconds=seconds)


class RetryManager:
    """Owns the FAILED -> (retry | MAX_RETRIES_EXCEEDED) decision for one session."""

    def __init__(self, session: AsyncSession, policy: RetryPolicy | None = None) -> None:
        self.store = EventStore(session)
        self.policy = policy or RetryPolicy()

    async def record_failure(
        self,
        event: Event,
        error: str,
        claimed_at: datetime,
        now: datetime | None = None,
    ) -> EventStatus:
        """Count a failed attempt and either schedule a retry or dead-letter the event.

        ``claimed_at`` is the ``locked_at`` of the caller's claim; if the claim
        has since been taken over, nothing is written and the current status
        is returned.
        """
        now = now or utcnow()
        retry_count = event.retry_count + 1

        if retry_count < event.max_retries:
            next_retry_at = now + self.policy.next_delay(retry_count)
        else:
            next_retry_at = None

        released = await self.store.mark_failed(
            event.id, claimed_at, error, retry_count, next_retry_at, now
        )
        if not released:
            logger.warning(
                "Event %s (%s) claim was taken over, dropping failure of this attempt: %s",
                event.id, event.idempotency_key, error,
            )
        elif next_retry_at is not None:
            logger.warning(
                "Event %s (%s) failed attempt %d/%d, retry at %s: %s",
                event.id, event.idempotency_key, retry_count, event.max_retries,
                next_retry_at.isoformat(), error,
            )
        else:
            logger.error(
                "Event %s (%s) exhausted %d retries, dead-lettered: %s",
                event.id, event.idempotency_key, event.max_retries, error,
            )

        event = await self.store.get_or_raise(event.id, fresh=True)
        return event.status

    async def requeue(self, event_id: uuid.UUID, now: datetime | None = None) -> Event:
        """Operator action: give a failed or dead-lettered event a fresh retry budget.

        The event is left FAILED and due immediately, so the next sweep picks it up.
        """
        event = await self.store.get_or_raise(event_id, fresh=True)
        if event.status not in REQUEUEABLE_STATUSES:
            raise InvalidTransitionException(
                event_id,
                event.status.value,
                "requeue",
                [status.value for status in REQUEUEABLE_STATUSES],
            )
        await self.store.reset_for_requeue(event, now)
        logger.info("Event %s requeued by operator", event_id)
        return event

    async def recover_stale(
        self,
        now: datetime | None = None,
        stale_after_seconds: int | None = None,
        limit: int = 100,
    ) -> int:
        """Fail events left PROCESSING by a dispatcher that never finished.

        The abandoned attempt counts against the retry budget like any other failure.
        """
        now = now or utcnow()
        stale_after = stale_after_seconds if stale_after_seconds is not None else settings.stale_processing_seconds
        cutoff = now - timedelta(seconds=stale_after)

        recovered = 0
        for event_id in await self.store.stale_processing(cutoff, limit):
            if not await self.store.steal_stale(event_id, cutoff, now):
                continue
            event = await self.store.get_or_raise(event_id, fresh=True)
            await self.record_failure(event, STALE_DISPATCH_ERROR, claimed_at=now, now=now)
            recovered += 1

        if recovered:
            logger.warning("Recovered %d stale processing event(s)", recovered)
        return recovered
