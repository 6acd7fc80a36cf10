"""Pydantic v2 schemas for the event bus API."""

from __future__ import annotations

import uuid
from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from eventbus.models.enums import EventStatus, HandlerRunStatus

# ---------------------------------------------------------------------------
# Ingestion
# ---------------------------------------------------------------------------


class IngestRequest(BaseModel):
    # event_type / aggregate_id are validated by the service so that a missing
    # field is a 400 caller error rather than a schema error.
    model_config = ConfigDict(coerce_numbers_to_str=True)

    event_type: str | None = Field(None, max_length=255)
    aggregate_type: str | None = Field(None, max_length=255)
    aggregate_id: str | None = Field(None, max_length=255)
    store_id: str | None = Field(None, max_length=255)
    payload: dict = Field(default_factory=dict)


class IngestResponse(BaseModel):
    success: bool
    event_id: uuid.UUID
    skipped: bool = False
    handlers_run: int = 0
    status: EventStatus
    reason: str | None = None


# ---------------------------------------------------------------------------
# Events / logs
# ---------------------------------------------------------------------------


class HandlerLogResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    event_id: uuid.UUID
    handler_name: str
    status: HandlerRunStatus
    duration_ms: int
    error_message: str | None = None
    attempt: int
    position: int
    created_at: datetime


class EventResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    idempotency_key: str
    event_type: str
    aggregate_type: str
    aggregate_id: str
    store_id: str | None = None
    payload: dict
    status: EventStatus
    retry_count: int
    max_retries: int
    next_retry_at: datetime | None = None
    error_message: str | None = None
    processed_at: datetime | None = None
    created_at: datetime
    updated_at: datetime


class EventDetailResponse(EventResponse):
    handler_logs: list[HandlerLogResponse] = []


class EventListResponse(BaseModel):
    items: list[EventResponse]
    total: int
    limit: int
    offset: int


# ---------------------------------------------------------------------------
# Dead letters
# ---------------------------------------------------------------------------


class DeadLetterResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    event_type: str
    aggregate_type: str
    aggregate_id: str
    store_id: str | None = None
    error_message: str | None = None
    retry_count: int
    max_retries: int
    created_at: datetime
    updated_at: datetime


class DeadLetterListResponse(BaseModel):
    items: list[DeadLetterResponse]
    total: int
    limit: int
    offset: int


# ---------------------------------------------------------------------------
# Metrics
# ---------------------------------------------------------------------------


class HealthMetricsResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

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
    avg_handler_latency_ms: float | None = None
    status_counts: dict[str, int] = {}


class HandlerStatsResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    handler_name: str
    invocations: int
    failures: int
    avg_duration_ms: float | None = None


class HandlerStatsListResponse(BaseModel):
    window_hours: int
    items: list[HandlerStatsResponse]
