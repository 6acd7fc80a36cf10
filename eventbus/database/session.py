from collections.abc import AsyncGenerator

from sqlalchemy.ext.asyncio import AsyncSession

from eventbus.database.engine import async_session


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency that yields a database session.

    Event bus services commit their own units of work (an ingested row, each
    handler log, each status change), so nothing is committed here; anything
    left uncommitted by a failing request is rolled back.
    """
    async with async_session() as session:
        try:
            yield session
        except Exception:
            await session.rollback()
            raise
