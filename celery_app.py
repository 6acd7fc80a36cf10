"""Celery application configuration for event bus background tasks."""

from celery import Celery
from celery.signals import setup_logging

from eventbus.config import settings

celery = Celery("eventbus")

celery.conf.update(
    broker_url=settings.celery_broker_url,
    result_backend=settings.celery_result_backend,
    task_serializer="json",
    result_serializer="json",
    accept_content=["json"],
    timezone="UTC",
    enable_utc=True,
    # --- Queue routing ---
    task_routes={
        "eventbus.modules.events.tasks.*": {"queue": "event-bus"},
    },
    # --- Reliability settings ---
    task_acks_late=True,
    worker_prefetch_multiplier=1,
    result_expires=86400,  # 24 hours
    # --- Broker transport options (Redis reliability) ---
    broker_transport_options={
        "max_retries": 10,
        "interval_start": 0.2,
        "interval_step": 0.5,
        "interval_max": 5.0,
        "retry_on_timeout": True,
        "visibility_timeout": 3600,
    },
    # --- Beat schedule ---
    beat_schedule={
        "retry-failed-events": {
            "task": "eventbus.modules.events.tasks.retry_failed_events",
            "schedule": settings.retry_sweep_seconds,
        },
        "timeout-stale-events": {
            "task": "eventbus.modules.events.tasks.timeout_stale_events",
            "schedule": settings.stale_sweep_seconds,
        },
    },
)


@setup_logging.connect
def _configure_worker_logging(**kwargs):
    # Same format (and request-id field) as the API process.
    from eventbus.logging_config import configure_logging

    configure_logging()


celery.autodiscover_tasks(["eventbus.modules.events"])
