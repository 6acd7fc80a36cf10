"""EventStore: persistence for events and their handler execution logs.

The ``events.idempotency_key`` unique constraint is what guarantees one row
per logical event; ``create`` relies on it rather than on a prior SELECT, so
two concurrent producers can never both insert.

Status changes that decide who may dispatch an event (``claim``,
``steal_stale``) are single conditional UPDATEs, so concurrent dispatchers
racing for the same row see exactly one winner. The writes that release a
claim (``mark_completed``, ``mark_failed``) are conditional on the same
``locked_at`` the claim set, so only the current owner can settle the row.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Iterable
from datetime import datetime

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from eventbus.database.base import utcnow
from eventbus.exceptions import EventNotFoundException
from eventbus.models.enums import EventStatus, HandlerRunStatus
from eventbus.models.event import Event
from eventbus.models.event_handler_log import HandlerExecutionLog
from eventbus.modules.events.constants import IDEMPOTENCY_KEY_SEPARATOR
from eventbus.modules.events.runtime import ExecutionOutcome

logger = logging.getLogger(__name__)


def make_idempotency_key(event_type: str, aggregate_id: str) -> str:
    return f"{event_type}{IDEMPOTENCY_KEY_SEPARATOR}{aggregate_id}"


def default_aggregate_type(event_type: str) -> str:
    """``order.created`` -> ``order``."""
    return event_type.split(".", 1)[0]


class EventStore:
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get(self, event_id: uuid.UUID, *, fresh: bool = False) -> Event | None:
        """Load an event; ``fresh=True`` overwrites any stale in-session copy."""
        return await self.session.get(Event, event_id, populate_existing=fresh)

    async def get_or_raise(self, event_id: uuid.UUID, *, fresh: bool = False) -> Event:
        event = await self.get(event_id, fresh=fresh)
        if event is None:
            raise EventNotFoundException(event_id)
        return event

    async def get_by_key(self, idempotency_key: str) -> Event | None:
        result = await self.session.execute(
            select(Event).where(Event.idempotency_key == idempotency_key)
        )
        return result.scalar_one_or_none()

    async def logs_for(self, event_id: uuid.UUID) -> list[HandlerExecutionLog]:
        """All handler logs for an event, attempt by attempt, in registry order."""
        result = await self.session.execute(
            select(HandlerExecutionLog)
            .where(HandlerExecutionLog.event_id == event_id)
            .order_by(
                HandlerExecutionLog.attempt.asc(),
                HandlerExecutionLog.position.asc(),
                HandlerExecutionLog.created_at.asc(),
            )
        )
        return list(result.scalars().all())

    async def next_attempt(self, event_id: uuid.UUID) -> int:
        """1-based number for the next dispatch attempt, monotonic across requeues."""
        result = await self.session.execute(
            select(func.max(HandlerExecutionLog.attempt))
            .where(HandlerExecutionLog.event_id == event_id)
        )
        return (result.scalar() or 0) + 1

    async def due_for_retry(self, now: datetime, limit: int) -> list[uuid.UUID]:
        """Ids of FAILED events whose retry time has come, oldest due first."""
        result = await self.session.execute(
            select(Event.id)
            .where(
                Event.status == EventStatus.FAILED,
                Event.next_retry_at.is_not(None),
                Event.next_retry_at <= now,
            )
            .order_by(Event.next_retry_at.asc())
            .limit(limit)
        )
        return list(result.scalars().all())

    async def stale_processing(self, cutoff: datetime, limit: int) -> list[uuid.UUID]:
        """Ids of events claimed before ``cutoff`` and never released."""
        result = await self.session.execute(
            select(Event.id)
            .where(
                Event.status == EventStatus.PROCESSING,
                Event.locked_at.is_not(None),
                Event.locked_at < cutoff,
            )
            .order_by(Event.locked_at.asc())
            .limit(limit)
        )
        return list(result.scalars().all())

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def create(
        self,
        event_type: str,
        aggregate_type: str,
        aggregate_id: str,
        store_id: str | None,
        payload: dict,
        max_retries: int,
    ) -> tuple[Event, bool]:
        """Insert a PENDING event, or return the row that already owns the key.

        Returns ``(event, created)``.
        """
        key = make_idempotency_key(event_type, aggregate_id)
        event = Event(
            idempotency_key=key,
            event_type=event_type,
            aggregate_type=aggregate_type,
            aggregate_id=aggregate_id,
            store_id=store_id,
            payload=payload,
            status=EventStatus.PENDING,
            retry_count=0,
            max_retries=max_retries,
        )
        self.session.add(event)
        try:
            await self.session.commit()
        except IntegrityError:
            await self.session.rollback()
            existing = await self.get_by_key(key)
            if existing is None:
                raise
            logger.info("Lost insert race for %s, reusing event %s", key, existing.id)
            return existing, False
        return event, True

    async def claim(
        self,
        event_id: uuid.UUID,
        from_statuses: Iterable[EventStatus],
        now: datetime | None = None,
        due_before: datetime | None = None,
    ) -> bool:
        """Atomically flip an event to PROCESSING if it is in ``from_statuses``.

        Only one concurrent caller can win; the loser gets ``False``.
        """
        now = now or utcnow()
        statement = (
            update(Event)
            .where(Event.id == event_id, Event.status.in_(list(from_statuses)))
            .values(status=EventStatus.PROCESSING, locked_at=now, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        if due_before is not None:
            statement = statement.where(Event.next_retry_at <= due_before)
        result = await self.session.execute(statement)
        await self.session.commit()
        return result.rowcount == 1

    async def steal_stale(
        self, event_id: uuid.UUID, cutoff: datetime, now: datetime | None = None
    ) -> bool:
        """Take over a PROCESSING event whose claim is older than ``cutoff``."""
        now = now or utcnow()
        result = await self.session.execute(
            update(Event)
            .where(
                Event.id == event_id,
                Event.status == EventStatus.PROCESSING,
                Event.locked_at < cutoff,
            )
            .values(locked_at=now, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        await self.session.commit()
        return result.rowcount == 1

    async def append_log(
        self,
        event_id: uuid.UUID,
        outcome: ExecutionOutcome,
        attempt: int,
        position: int,
    ) -> HandlerExecutionLog:
        """Append one handler execution row. Logs are never updated afterwards."""
        log = HandlerExecutionLog(
            event_id=event_id,
            handler_name=outcome.handler_name,
            status=HandlerRunStatus.SUCCESS if outcome.success else HandlerRunStatus.FAILED,
            duration_ms=outcome.duration_ms,
            error_message=outcome.result.error,
            attempt=attempt,
            position=position,
            created_at=outcome.started_at,
        )
        self.session.add(log)
        await self.session.commit()
        return log

    def _owned(self, event_id: uuid.UUID, claimed_at: datetime):
        """UPDATE that only matches while the caller's claim is still the current one."""
        return (
            update(Event)
            .where(
                Event.id == event_id,
                Event.status == EventStatus.PROCESSING,
                Event.locked_at == claimed_at,
            )
            .execution_options(synchronize_session=False)
        )

    async def mark_completed(
        self, event_id: uuid.UUID, claimed_at: datetime, now: datetime | None = None
    ) -> bool:
        """Release a successful attempt. ``False`` when the claim was taken over."""
        now = now or utcnow()
        result = await self.session.execute(
            self._owned(event_id, claimed_at).values(
                status=EventStatus.COMPLETED,
                processed_at=now,
                error_message=None,
                next_retry_at=None,
                locked_at=None,
                updated_at=now,
            )
        )
        await self.session.commit()
        return result.rowcount == 1

    async def mark_failed(
        self,
        event_id: uuid.UUID,
        claimed_at: datetime,
        error: str,
        retry_count: int,
        next_retry_at: datetime | None,
        now: datetime | None = None,
    ) -> bool:
        """Release a failed attempt: FAILED while retries remain, else dead-lettered.

        Like ``mark_completed`` this only lands while ``claimed_at`` still
        matches ``locked_at``; a dispatcher whose claim was stolen by the stale
        sweep gets ``False`` and leaves the row alone.
        """
        now = now or utcnow()
        status = EventStatus.FAILED if next_retry_at is not None else EventStatus.MAX_RETRIES_EXCEEDED
        result = await self.session.execute(
            self._owned(event_id, claimed_at).values(
                status=status,
                retry_count=retry_count,
                error_message=error,
                next_retry_at=next_retry_at,
                processed_at=None,
                locked_at=None,
                updated_at=now,
            )
        )
        await self.session.commit()
        return result.rowcount == 1

    async def reset_for_requeue(self, event: Event, now: datetime | None = None) -> None:
        now = now or utcnow()
        event.status = EventStatus.FAILED
        event.retry_count = 0
        event.next_retry_at = now
        event.locked_at = None
        await self.session.commit()
