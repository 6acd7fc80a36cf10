"""Tests for logging setup and the Celery beat wiring."""

import logging

from celery_app import celery
from eventbus.config import settings
from eventbus.logging_config import RequestIdFilter, configure_logging, request_id_var


class TestRequestIdLogging:
    def test_filter_stamps_current_request_id(self):
        record = logging.LogRecord("eventbus", logging.INFO, __file__, 1, "hello", None, None)
        token = request_id_var.set("req-123")
        try:
            RequestIdFilter().filter(record)
        finally:
            request_id_var.reset(token)
        assert record.request_id == "req-123"

    def test_filter_outside_request(self):
        record = logging.LogRecord("eventbus", logging.INFO, __file__, 1, "hello", None, None)
        RequestIdFilter().filter(record)
        assert record.request_id == "-"

    def test_configure_logging_installs_one_handler(self):
        root = logging.getLogger()
        saved_handlers, saved_level = root.handlers[:], root.level
        try:
            configure_logging("debug")
            configure_logging("warning")
            assert len(root.handlers) == 1
            assert root.level == logging.WARNING
        finally:
            root.handlers[:] = saved_handlers
            root.setLevel(saved_level)


class TestCeleryBeat:
    def test_sweeps_are_scheduled(self):
        schedule = celery.conf.beat_schedule
        assert schedule["retry-failed-events"]["task"] == "eventbus.modules.events.tasks.retry_failed_events"
        assert schedule["retry-failed-events"]["schedule"] == settings.retry_sweep_seconds
        assert schedule["timeout-stale-events"]["schedule"] == settings.stale_sweep_seconds

    def test_tasks_route_to_event_bus_queue(self):
        assert celery.conf.task_routes["eventbus.modules.events.tasks.*"] == {"queue": "event-bus"}
