"""Event model: durable, idempotent record of one domain event."""

from datetime import datetime

from sqlalchemy import JSON, CheckConstraint, DateTime, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy import Enum as SQLAlchemyEnum
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from eventbus.database.base import Base, TimestampMixin, UUIDPrimaryKeyMixin
from eventbus.models.enums import EventStatus, enum_values


class Event(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    __tablename__ = "events"

    idempotency_key: Mapped[str] = mapped_column(String(512), nullable=False)
    event_type: Mapped[str] = mapped_column(String(255), nullable=False)
    aggregate_type: Mapped[str] = mapped_column(String(255), nullable=False)
    aggregate_id: Mapped[str] = mapped_column(String(255), nullable=False)
    store_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    payload: Mapped[dict] = mapped_column(
        JSON().with_variant(JSONB, "postgresql"), nullable=False, default=dict
    )
    status: Mapped[EventStatus] = mapped_column(
        SQLAlchemyEnum(EventStatus, name="eventstatus", values_callable=enum_values),
        nullable=False,
        default=EventStatus.PENDING,
        server_default=EventStatus.PENDING.value,
    )
    retry_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    max_retries: Mapped[int] = mapped_column(Integer, nullable=False, default=5, server_default="5")
    next_retry_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    processed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    locked_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        UniqueConstraint("idempotency_key", name="uq_events_idempotency_key"),
        CheckConstraint("retry_count >= 0", name="ck_events_retry_count"),
        Index("ix_events_status", "status"),
        Index("ix_events_event_type", "event_type"),
        Index("ix_events_created_at", "created_at"),
        Index("ix_events_aggregate", "aggregate_type", "aggregate_id"),
        Index("ix_events_retry_due", "status", "next_retry_at"),
    )

    def __repr__(self) -> str:
        return (
            f"<Event id={self.id} key={self.idempotency_key} "
            f"status={self.status} retries={self.retry_count}/{self.max_retries}>"
        )
