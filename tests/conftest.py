"""Pytest fixtures for the event bus test suite.

Service tests run against a throwaway SQLite file (aiosqlite) so that several
sessions can work on the same database, as the dispatcher and sweeper do in
production.
"""

from collections.abc import AsyncGenerator

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

import eventbus.models  # noqa: F401  (registers tables on Base.metadata)
from eventbus.database.base import Base
from eventbus.modules.events.gateway import PlatformGateway
from eventbus.modules.events.registry import build_default_registry
from eventbus.modules.events.retry import RetryPolicy
from eventbus.modules.events.runtime import HandlerRuntime


class FakeGateway(PlatformGateway):
    """In-memory platform: records every call, escrows live in a dict.

    Set ``failures[method_name] = SomeError(...)`` to make a call raise.
    """

    def __init__(self) -> None:
        self.calls: list[tuple] = []
        self.escrows: dict[str, dict] = {}
        self.failures: dict[str, Exception] = {}

    def _record(self, name: str, *args) -> None:
        self.calls.append((name, *args))
        exc = self.failures.get(name)
        if exc is not None:
            raise exc

    def called(self, name: str) -> list[tuple]:
        return [call for call in self.calls if call[0] == name]

    async def get_escrow(self, order_id):
        self._record("get_escrow", order_id)
        return self.escrows.get(order_id)

    async def create_escrow(self, order_id):
        self._record("create_escrow", order_id)
        escrow = {"id": f"esc-{order_id}", "order_id": order_id, "status": "held"}
        self.escrows[order_id] = escrow
        return escrow

    async def release_escrow(self, escrow_id):
        self._record("release_escrow", escrow_id)
        for escrow in self.escrows.values():
            if str(escrow["id"]) == escrow_id:
                escrow["status"] = "released"

    async def update_order(self, order_id, fields):
        self._record("update_order", order_id, fields)

    async def create_notification(self, store_id, kind, title, body, metadata):
        self._record("create_notification", store_id, kind, title, body, metadata)

    async def send_order_confirmation(self, message):
        self._record("send_order_confirmation", message)

    async def append_audit_log(self, store_id, action, target_type, target_id, metadata):
        self._record("append_audit_log", store_id, action, target_type, target_id, metadata)

    async def request_risk_recalculation(self, target_type, target_id):
        self._record("request_risk_recalculation", target_type, target_id)

    async def request_ranking_recalculation(self, product_ids):
        self._record("request_ranking_recalculation", product_ids)

    async def request_inventory_recalculation(self, product_ids):
        self._record("request_inventory_recalculation", product_ids)


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
def registry(gateway):
    return build_default_registry(gateway)


@pytest.fixture
def runtime() -> HandlerRuntime:
    return HandlerRuntime(timeout_seconds=2)


@pytest.fixture
def retry_policy() -> RetryPolicy:
    return RetryPolicy(strategy="fixed", base_seconds=300)


@pytest_asyncio.fixture
async def async_test_engine(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'eventbus.db'}", echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(async_test_engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(async_test_engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def async_test_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture
async def async_client(
    session_factory, registry, runtime, retry_policy
) -> AsyncGenerator[AsyncClient, None]:
    """httpx AsyncClient wired to the app, a test database and the fake gateway."""
    from eventbus.app import app
    from eventbus.database.session import get_db

    async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    # The lifespan does not run under ASGITransport; wire state directly.
    app.state.registry = registry
    app.state.runtime = runtime
    app.state.retry_policy = retry_policy

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()
