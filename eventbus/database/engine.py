from sqlalchemy import create_engine
from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from eventbus.config import settings


def _pool_options(url: str, pool_size: int, max_overflow: int) -> dict:
    """Pool sizing for server databases; SQLite (local runs) uses the driver default."""
    if make_url(url).get_backend_name() == "sqlite":
        return {}
    return {
        "pool_size": pool_size,
        "max_overflow": max_overflow,
        "pool_pre_ping": True,
        "pool_recycle": 3600,
    }


engine = create_async_engine(
    settings.database_url,
    echo=settings.database_echo,
    **_pool_options(settings.database_url, settings.database_pool_size, settings.database_max_overflow),
)

# Dispatch commits between handlers and re-reads rows it needs fresh, so
# instances must stay usable after commit.
async_session = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

# Synchronous engine for Alembic migrations
sync_engine = create_engine(
    settings.database_url_sync,
    **_pool_options(settings.database_url_sync, 5, 0),
)
