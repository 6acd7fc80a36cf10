"""IngestionService: idempotent entry point for producer events."""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass

from sqlalchemy.ext.asyncio import AsyncSession

from eventbus.config import settings
from eventbus.exceptions import BadRequestException
from eventbus.models.enums import EventStatus
from eventbus.modules.events.constants import REASON_ALREADY_COMPLETED, REASON_IN_PROGRESS
from eventbus.modules.events.dispatcher import Dispatcher
from eventbus.modules.events.registry import HandlerRegistry
from eventbus.modules.events.retry import RetryPolicy
from eventbus.modules.events.runtime import HandlerRuntime
from eventbus.modules.events.store import EventStore, default_aggregate_type, make_idempotency_key

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class IngestResult:
    event_id: uuid.UUID
    success: bool
    skipped: bool
    handlers_run: int
    status: EventStatus
    reason: str | None = None


class IngestionService:
    """Accepts an event, deduplicates it by idempotency key and runs one dispatch.

    The caller waits for this one attempt only; later retries happen in the
    background sweep.
    """

    def __init__(
        self,
        session: AsyncSession,
        registry: HandlerRegistry,
        runtime: HandlerRuntime | None = None,
        retry_policy: RetryPolicy | None = None,
        default_max_retries: int | None = None,
    ) -> None:
        self.store = EventStore(session)
        self.dispatcher = Dispatcher(session, registry, runtime, retry_policy)
        self.default_max_retries = (
            default_max_retries if default_max_retries is not None
            else settings.event_default_max_retries
        )

    async def ingest(
        self,
        event_type: str | None,
        aggregate_id: str | None,
        aggregate_type: str | None = None,
        store_id: str | None = None,
        payload: dict | None = None,
    ) -> IngestResult:
        event_type = (event_type or "").strip()
        aggregate_id = str(aggregate_id).strip() if aggregate_id is not None else ""
        if not event_type or not aggregate_id:
            missing = [
                {"field": name, "message": "required"}
                for name, value in (("event_type", event_type), ("aggregate_id", aggregate_id))
                if not value
            ]
            raise BadRequestException("event_type and aggregate_id required", details=missing)

        key = make_idempotency_key(event_type, aggregate_id)
        event = await self.store.get_by_key(key)
        created = False
        if event is None:
            event, created = await self.store.create(
                event_type=event_type,
                aggregate_type=aggregate_type or default_aggregate_type(event_type),
                aggregate_id=aggregate_id,
                store_id=store_id or None,
                payload=payload or {},
                max_retries=self.default_max_retries,
            )

        if created:
            logger.info("Ingested event %s (%s)", event.id, key)
        elif event.status == EventStatus.COMPLETED:
            logger.info("Event %s (%s) already completed, skipping", event.id, key)
            return IngestResult(
                event_id=event.id,
                success=True,
                skipped=True,
                handlers_run=0,
                status=EventStatus.COMPLETED,
                reason=REASON_ALREADY_COMPLETED,
            )
        else:
            logger.info(
                "Re-ingested event %s (%s) in status %s, dispatching again",
                event.id, key, event.status.value,
            )

        result = await self.dispatcher.dispatch(event.id)
        if not result.claimed:
            return IngestResult(
                event_id=event.id,
                success=result.status == EventStatus.COMPLETED,
                skipped=True,
                handlers_run=0,
                status=result.status,
                reason=(
                    REASON_ALREADY_COMPLETED if result.status == EventStatus.COMPLETED
                    else REASON_IN_PROGRESS
                ),
            )

        return IngestResult(
            event_id=event.id,
            success=result.all_success,
            skipped=False,
            handlers_run=result.handlers_run,
            status=result.status,
        )
