# Import all models so SQLAlchemy metadata is populated for Alembic autogenerate
from eventbus.models.enums import BackoffStrategy, EventStatus, HandlerRunStatus
from eventbus.models.event import Event
from eventbus.models.event_handler_log import HandlerExecutionLog

__all__ = [
    "BackoffStrategy",
    "Event",
    "EventStatus",
    "HandlerExecutionLog",
    "HandlerRunStatus",
]
