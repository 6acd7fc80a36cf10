"""EventStore tests: idempotent insert and claim ownership of status writes."""

from datetime import timedelta

import pytest
from sqlalchemy import func, select

from eventbus.database.base import utcnow
from eventbus.models.enums import EventStatus
from eventbus.models.event import Event
from eventbus.modules.events.store import EventStore, make_idempotency_key


def _create_kwargs(aggregate_id="ord-1"):
    return dict(
        event_type="order.created",
        aggregate_type="order",
        aggregate_id=aggregate_id,
        store_id="store-1",
        payload={"total": 100},
        max_retries=5,
    )


class TestCreate:
    @pytest.mark.asyncio
    async def test_second_insert_of_same_key_returns_existing_row(self, session_factory):
        async with session_factory() as first_session, session_factory() as second_session:
            first, first_created = await EventStore(first_session).create(**_create_kwargs())
            second, second_created = await EventStore(second_session).create(**_create_kwargs())

            assert (first_created, second_created) == (True, False)
            assert second.id == first.id
            assert second.idempotency_key == make_idempotency_key("order.created", "ord-1")

            count = await second_session.execute(select(func.count()).select_from(Event))
            assert count.scalar_one() == 1

    @pytest.mark.asyncio
    async def test_session_is_usable_after_losing_the_insert(self, session_factory):
        async with session_factory() as first_session, session_factory() as second_session:
            await EventStore(first_session).create(**_create_kwargs())
            store = EventStore(second_session)
            await store.create(**_create_kwargs())

            other, created = await store.create(**_create_kwargs(aggregate_id="ord-2"))

            assert created is True
            assert other.status == EventStatus.PENDING


class TestClaimOwnership:
    @pytest.mark.asyncio
    async def test_completion_after_claim_was_stolen_is_ignored(self, async_test_session):
        store = EventStore(async_test_session)
        event, _ = await store.create(**_create_kwargs())
        claimed_at = utcnow() - timedelta(hours=1)
        assert await store.claim(event.id, [EventStatus.PENDING], now=claimed_at)
        assert await store.steal_stale(event.id, cutoff=utcnow() - timedelta(minutes=10))

        assert await store.mark_completed(event.id, claimed_at) is False

        event = await store.get(event.id, fresh=True)
        assert event.status == EventStatus.PROCESSING
        assert event.processed_at is None

    @pytest.mark.asyncio
    async def test_failure_after_claim_was_stolen_is_ignored(self, async_test_session):
        store = EventStore(async_test_session)
        event, _ = await store.create(**_create_kwargs())
        claimed_at = utcnow() - timedelta(hours=1)
        await store.claim(event.id, [EventStatus.PENDING], now=claimed_at)
        await store.steal_stale(event.id, cutoff=utcnow() - timedelta(minutes=10))

        released = await store.mark_failed(event.id, claimed_at, "boom", 1, utcnow())

        assert released is False
        event = await store.get(event.id, fresh=True)
        assert event.status == EventStatus.PROCESSING
        assert event.retry_count == 0

    @pytest.mark.asyncio
    async def test_owner_releases_its_claim(self, async_test_session):
        store = EventStore(async_test_session)
        event, _ = await store.create(**_create_kwargs())
        claimed_at = utcnow()
        await store.claim(event.id, [EventStatus.PENDING], now=claimed_at)

        assert await store.mark_completed(event.id, claimed_at) is True

        event = await store.get(event.id, fresh=True)
        assert event.status == EventStatus.COMPLETED
        assert event.locked_at is None

    @pytest.mark.asyncio
    async def test_unclaimed_event_cannot_be_completed(self, async_test_session):
        store = EventStore(async_test_session)
        event, _ = await store.create(**_create_kwargs())

        assert await store.mark_completed(event.id, utcnow()) is False

        event = await store.get(event.id, fresh=True)
        assert event.status == EventStatus.PENDING
