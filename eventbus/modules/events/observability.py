"""Read-only views over events and handler logs for dashboards and health checks."""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta

from sqlalchemy import case, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from eventbus.config import settings
from eventbus.database.base import utcnow
from eventbus.models.enums import EventStatus, HandlerRunStatus
from eventbus.models.event import Event
from eventbus.models.event_handler_log import HandlerExecutionLog
from eventbus.modules.events.store import EventStore


@dataclass(frozen=True)
class HealthMetrics:
    window_hours: int
    since: datetime
    total_events: int
    completed: int
    failed: int
    dead_lettered: int
    pending: int
    processing: int
    success_rate: float
    failure_rate: float
    handler_invocations: int
    handler_failures: int
    avg_handler_latency_ms: float | None


@dataclass(frozen=True)
class HandlerStats:
    handler_name: str
    invocations: int
    failures: int
    avg_duration_ms: float | None


def _percentage(part: int, whole: int) -> float:
    return round(part * 100.0 / whole, 1) if whole else 0.0


class EventQueryService:
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def list_events(
        self,
        status: EventStatus | None = None,
        event_type: str | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> tuple[list[Event], int]:
        """Events newest first, optionally filtered by status and type."""
        query = select(Event)
        count_query = select(func.count()).select_from(Event)

        if status is not None:
            query = query.where(Event.status == status)
            count_query = count_query.where(Event.status == status)

        if event_type is not None:
            query = query.where(Event.event_type == event_type)
            count_query = count_query.where(Event.event_type == event_type)

        total = (await self.session.execute(count_query)).scalar_one()
        result = await self.session.execute(
            query.order_by(Event.created_at.desc(), Event.id.desc()).limit(limit).offset(offset)
        )
        return list(result.scalars().all()), total

    async def get_event_detail(
        self, event_id: uuid.UUID
    ) -> tuple[Event, list[HandlerExecutionLog]]:
        store = EventStore(self.session)
        event = await store.get_or_raise(event_id)
        return event, await store.logs_for(event_id)

    async def list_dead_letters(
        self, limit: int = 50, offset: int = 0
    ) -> tuple[list[Event], int]:
        return await self.list_events(
            status=EventStatus.MAX_RETRIES_EXCEEDED, limit=limit, offset=offset
        )

    async def status_counts(self) -> dict[str, int]:
        """All-time event counts per status; every status is present."""
        result = await self.session.execute(
            select(Event.status, func.count()).group_by(Event.status)
        )
        counts = {status.value: 0 for status in EventStatus}
        for status, count in result.all():
            counts[EventStatus(status).value] = count
        return counts

    async def health_metrics(
        self, window_hours: int | None = None, now: datetime | None = None
    ) -> HealthMetrics:
        window_hours = window_hours or settings.metrics_window_hours
        since = (now or utcnow()) - timedelta(hours=window_hours)

        result = await self.session.execute(
            select(Event.status, func.count())
            .where(Event.created_at >= since)
            .group_by(Event.status)
        )
        by_status = {EventStatus(status): count for status, count in result.all()}
        total = sum(by_status.values())
        completed = by_status.get(EventStatus.COMPLETED, 0)
        failed = by_status.get(EventStatus.FAILED, 0)
        dead = by_status.get(EventStatus.MAX_RETRIES_EXCEEDED, 0)

        log_row = (
            await self.session.execute(
                select(
                    func.count(HandlerExecutionLog.id),
                    func.sum(case((HandlerExecutionLog.status == HandlerRunStatus.FAILED, 1), else_=0)),
                    func.avg(HandlerExecutionLog.duration_ms),
                ).where(HandlerExecutionLog.created_at >= since)
            )
        ).one()
        invocations, failures, avg_latency = log_row

        return HealthMetrics(
            window_hours=window_hours,
            since=since,
            total_events=total,
            completed=completed,
            failed=failed,
            dead_lettered=dead,
            pending=by_status.get(EventStatus.PENDING, 0),
            processing=by_status.get(EventStatus.PROCESSING, 0),
            success_rate=_percentage(completed, total),
            failure_rate=_percentage(failed + dead, total),
            handler_invocations=invocations or 0,
            handler_failures=int(failures or 0),
            avg_handler_latency_ms=round(float(avg_latency), 1) if avg_latency is not None else None,
        )

    async def handler_stats(
        self, window_hours: int | None = None, now: datetime | None = None
    ) -> list[HandlerStats]:
        """Per-handler invocation count, failures and mean latency, busiest first."""
        window_hours = window_hours or settings.metrics_window_hours
        since = (now or utcnow()) - timedelta(hours=window_hours)

        invocations = func.count(HandlerExecutionLog.id)
        result = await self.session.execute(
            select(
                HandlerExecutionLog.handler_name,
                invocations,
                func.sum(case((HandlerExecutionLog.status == HandlerRunStatus.FAILED, 1), else_=0)),
                func.avg(HandlerExecutionLog.duration_ms),
            )
            .where(HandlerExecutionLog.created_at >= since)
            .group_by(HandlerExecutionLog.handler_name)
            .order_by(invocations.desc(), HandlerExecutionLog.handler_name.asc())
        )
        return [
            HandlerStats(
                handler_name=name,
                invocations=count,
                failures=int(failures or 0),
                avg_duration_ms=round(float(avg), 1) if avg is not None else None,
            )
            for name, count, failures, avg in result.all()
        ]
