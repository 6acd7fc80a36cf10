"""Tests for RetrySweeper: due-time selection and double-processing guard."""

import asyncio
from datetime import timedelta

import pytest

from eventbus.database.base import utcnow
from eventbus.models.enums import EventStatus
from eventbus.modules.events.dispatcher import Dispatcher
from eventbus.modules.events.registry import HandlerRegistry
from eventbus.modules.events.retry import RetryManager
from eventbus.modules.events.runtime import HandlerResult, HandlerRuntime
from eventbus.modules.events.store import EventStore
from eventbus.modules.events.sweeper import RetrySweeper


class FlakyHandler:
    """Fails the first ``failures`` calls per aggregate, then succeeds."""

    def __init__(self, failures: int = 1) -> None:
        self.failures = failures
        self.calls: dict[str, int] = {}

    async def __call__(self, event_type, payload, aggregate_id, store_id):
        self.calls[aggregate_id] = self.calls.get(aggregate_id, 0) + 1
        if self.calls[aggregate_id] <= self.failures:
            return HandlerResult.failed("temporarily unavailable")
        return HandlerResult.ok()


@pytest.fixture
def flaky():
    return FlakyHandler()


@pytest.fixture
def flaky_registry(flaky):
    return HandlerRegistry.build({"thing.happened": ("flaky",)}, {"flaky": flaky})


async def _failed_event(session_factory, registry, retry_policy, aggregate_id):
    async with session_factory() as session:
        event, _ = await EventStore(session).create(
            event_type="thing.happened",
            aggregate_type="thing",
            aggregate_id=aggregate_id,
            store_id=None,
            payload={},
            max_retries=5,
        )
        result = await Dispatcher(session, registry, HandlerRuntime(1), retry_policy).dispatch(event.id)
        assert result.status == EventStatus.FAILED
        return event.id


class TestRetrySweep:
    @pytest.mark.asyncio
    async def test_nothing_due_before_backoff_elapses(self, session_factory, flaky_registry, retry_policy):
        await _failed_event(session_factory, flaky_registry, retry_policy, "t-1")
        sweeper = RetrySweeper(session_factory, flaky_registry, HandlerRuntime(1), retry_policy)

        stats = await sweeper.sweep(now=utcnow())

        assert stats["found"] == 0
        assert stats["retried"] == 0

    @pytest.mark.asyncio
    async def test_due_events_are_retried(self, session_factory, flaky_registry, flaky, retry_policy):
        ids = [
            await _failed_event(session_factory, flaky_registry, retry_policy, f"t-{n}")
            for n in range(3)
        ]
        sweeper = RetrySweeper(
            session_factory, flaky_registry, HandlerRuntime(1), retry_policy, concurrency=2
        )

        stats = await sweeper.sweep(now=utcnow() + timedelta(seconds=301))

        assert stats == {"found": 3, "retried": 3, "succeeded": 3, "skipped": 0, "errors": 0}
        async with session_factory() as session:
            store = EventStore(session)
            for event_id in ids:
                event = await store.get(event_id)
                assert event.status == EventStatus.COMPLETED
                assert event.retry_count == 1
        assert set(flaky.calls.values()) == {2}

    @pytest.mark.asyncio
    async def test_overlapping_sweeps_run_each_event_once(
        self, session_factory, flaky_registry, flaky, retry_policy
    ):
        await _failed_event(session_factory, flaky_registry, retry_policy, "t-1")
        await _failed_event(session_factory, flaky_registry, retry_policy, "t-2")
        sweeper = RetrySweeper(session_factory, flaky_registry, HandlerRuntime(1), retry_policy)
        later = utcnow() + timedelta(seconds=301)

        first, second = await asyncio.gather(sweeper.sweep(now=later), sweeper.sweep(now=later))

        assert first["retried"] + second["retried"] == 2
        assert flaky.calls == {"t-1": 2, "t-2": 2}

    @pytest.mark.asyncio
    async def test_requeued_dead_letter_is_picked_up(self, session_factory, retry_policy):
        fixed = {"value": False}

        async def _eventually_fixed(event_type, payload, aggregate_id, store_id):
            return HandlerResult.ok() if fixed["value"] else HandlerResult.failed("still broken")

        registry = HandlerRegistry.build({"thing.happened": ("h",)}, {"h": _eventually_fixed})
        async with session_factory() as session:
            event, _ = await EventStore(session).create(
                event_type="thing.happened",
                aggregate_type="thing",
                aggregate_id="t-9",
                store_id=None,
                payload={},
                max_retries=1,
            )
            result = await Dispatcher(session, registry, HandlerRuntime(1), retry_policy).dispatch(event.id)
            assert result.status == EventStatus.MAX_RETRIES_EXCEEDED

            await RetryManager(session, retry_policy).requeue(event.id)

        fixed["value"] = True
        sweeper = RetrySweeper(session_factory, registry, HandlerRuntime(1), retry_policy)
        stats = await sweeper.sweep(now=utcnow() + timedelta(seconds=1))

        assert stats["succeeded"] == 1
        async with session_factory() as session:
            event = await EventStore(session).get(event.id)
            assert event.status == EventStatus.COMPLETED


class TestStaleSweep:
    @pytest.mark.asyncio
    async def test_recover_stale_uses_its_own_session(self, session_factory, flaky_registry, retry_policy):
        async with session_factory() as session:
            event, _ = await EventStore(session).create(
                event_type="thing.happened",
                aggregate_type="thing",
                aggregate_id="t-1",
                store_id=None,
                payload={},
                max_retries=5,
            )
            await EventStore(session).claim(
                event.id, [EventStatus.PENDING], now=utcnow() - timedelta(hours=2)
            )

        sweeper = RetrySweeper(session_factory, flaky_registry, HandlerRuntime(1), retry_policy)
        assert await sweeper.recover_stale() == 1
