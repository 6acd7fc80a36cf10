"""Event bus API: ingestion plus the operator views and actions."""

import uuid

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from eventbus.config import settings
from eventbus.database.session import get_db
from eventbus.models.enums import EventStatus
from eventbus.modules.events.dependencies import get_registry, get_retry_policy, get_runtime
from eventbus.modules.events.ingestion import IngestionService
from eventbus.modules.events.observability import EventQueryService
from eventbus.modules.events.registry import HandlerRegistry
from eventbus.modules.events.retry import RetryManager, RetryPolicy
from eventbus.modules.events.runtime import HandlerRuntime
from eventbus.modules.events.schemas import (
    DeadLetterListResponse,
    DeadLetterResponse,
    EventDetailResponse,
    EventListResponse,
    EventResponse,
    HandlerLogResponse,
    HandlerStatsListResponse,
    HandlerStatsResponse,
    HealthMetricsResponse,
    IngestRequest,
    IngestResponse,
)
from eventbus.rate_limit import limiter
from eventbus.schemas.responses import ERROR_RESPONSES

router = APIRouter(prefix="/events", tags=["events"])


# ---------------------------------------------------------------------------
# Ingestion
# ---------------------------------------------------------------------------


@router.post("", response_model=IngestResponse, responses={400: ERROR_RESPONSES[400]})
@limiter.limit(settings.ingest_rate_limit)
async def ingest_event(
    request: Request,
    body: IngestRequest,
    db: AsyncSession = Depends(get_db),
    registry: HandlerRegistry = Depends(get_registry),
    runtime: HandlerRuntime = Depends(get_runtime),
    retry_policy: RetryPolicy = Depends(get_retry_policy),
):
    """Accept a domain event and run one dispatch attempt synchronously."""
    svc = IngestionService(db, registry, runtime, retry_policy)
    result = await svc.ingest(
        event_type=body.event_type,
        aggregate_id=body.aggregate_id,
        aggregate_type=body.aggregate_type,
        store_id=body.store_id,
        payload=body.payload,
    )
    return IngestResponse(
        success=result.success,
        event_id=result.event_id,
        skipped=result.skipped,
        handlers_run=result.handlers_run,
        status=result.status,
        reason=result.reason,
    )


# ---------------------------------------------------------------------------
# Operator views (read-only)
# ---------------------------------------------------------------------------


@router.get("", response_model=EventListResponse)
async def list_events(
    status: EventStatus | None = Query(None),
    event_type: str | None = Query(None),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    db: AsyncSession = Depends(get_db),
):
    """List events, newest first."""
    svc = EventQueryService(db)
    items, total = await svc.list_events(
        status=status, event_type=event_type, limit=limit, offset=offset
    )
    return EventListResponse(
        items=[EventResponse.model_validate(e) for e in items],
        total=total,
        limit=limit,
        offset=offset,
    )


@router.get("/dead-letter", response_model=DeadLetterListResponse)
async def list_dead_letters(
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    db: AsyncSession = Depends(get_db),
):
    """Events that exhausted their retry budget, with their last error."""
    svc = EventQueryService(db)
    items, total = await svc.list_dead_letters(limit=limit, offset=offset)
    return DeadLetterListResponse(
        items=[DeadLetterResponse.model_validate(e) for e in items],
        total=total,
        limit=limit,
        offset=offset,
    )


@router.get("/metrics", response_model=HealthMetricsResponse)
async def get_health_metrics(
    window_hours: int = Query(settings.metrics_window_hours, ge=1, le=24 * 90),
    db: AsyncSession = Depends(get_db),
):
    """Aggregate bus health over a trailing window."""
    svc = EventQueryService(db)
    metrics = await svc.health_metrics(window_hours=window_hours)
    response = HealthMetricsResponse.model_validate(metrics)
    response.status_counts = await svc.status_counts()
    return response


@router.get("/metrics/handlers", response_model=HandlerStatsListResponse)
async def get_handler_stats(
    window_hours: int = Query(settings.metrics_window_hours, ge=1, le=24 * 90),
    db: AsyncSession = Depends(get_db),
):
    """Per-handler invocations, failures and latency over a trailing window."""
    svc = EventQueryService(db)
    stats = await svc.handler_stats(window_hours=window_hours)
    return HandlerStatsListResponse(
        window_hours=window_hours,
        items=[HandlerStatsResponse.model_validate(s) for s in stats],
    )


@router.get("/{event_id}", response_model=EventDetailResponse, responses={404: ERROR_RESPONSES[404]})
async def get_event(
    event_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
):
    """One event with its full handler execution history."""
    svc = EventQueryService(db)
    event, logs = await svc.get_event_detail(event_id)
    response = EventDetailResponse.model_validate(event)
    response.handler_logs = [HandlerLogResponse.model_validate(log) for log in logs]
    return response


# ---------------------------------------------------------------------------
# Operator actions
# ---------------------------------------------------------------------------


@router.post(
    "/{event_id}/requeue",
    response_model=EventResponse,
    responses={404: ERROR_RESPONSES[404], 409: ERROR_RESPONSES[409]},
)
async def requeue_event(
    event_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    retry_policy: RetryPolicy = Depends(get_retry_policy),
):
    """Reset a failed or dead-lettered event so the next retry sweep runs it."""
    manager = RetryManager(db, retry_policy)
    event = await manager.requeue(event_id)
    return EventResponse.model_validate(event)
