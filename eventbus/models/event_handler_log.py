"""HandlerExecutionLog model: append-only trail of handler invocations."""

import uuid
from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, Index, Integer, String, Text, Uuid
from sqlalchemy import Enum as SQLAlchemyEnum
from sqlalchemy.orm import Mapped, mapped_column

from eventbus.database.base import Base, UUIDPrimaryKeyMixin, utcnow
from eventbus.models.enums import HandlerRunStatus, enum_values


class HandlerExecutionLog(UUIDPrimaryKeyMixin, Base):
    __tablename__ = "event_handler_logs"

    event_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("events.id", ondelete="RESTRICT"), nullable=False
    )
    handler_name: Mapped[str] = mapped_column(String(255), nullable=False)
    status: Mapped[HandlerRunStatus] = mapped_column(
        SQLAlchemyEnum(
            HandlerRunStatus,
            name="handlerrunstatus",
            values_callable=enum_values,
        ),
        nullable=False,
    )
    duration_ms: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    attempt: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    # Handler start time, set by the dispatcher
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )

    __table_args__ = (
        Index("ix_event_handler_logs_event", "event_id", "attempt", "position"),
        Index("ix_event_handler_logs_created_at", "created_at"),
        Index("ix_event_handler_logs_handler", "handler_name"),
    )

    def __repr__(self) -> str:
        return (
            f"<HandlerExecutionLog event={self.event_id} handler={self.handler_name} "
            f"attempt={self.attempt} status={self.status}>"
        )
