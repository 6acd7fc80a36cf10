from eventbus.database.base import Base, TimestampMixin, UUIDPrimaryKeyMixin, utcnow
from eventbus.database.engine import async_session, engine, sync_engine
from eventbus.database.session import get_db

__all__ = [
    "Base",
    "TimestampMixin",
    "UUIDPrimaryKeyMixin",
    "async_session",
    "engine",
    "sync_engine",
    "get_db",
    "utcnow",
]
