"""Event bus tables

Revision ID: 001
Revises:
Create Date: 2026-10-18

Creates: events, event_handler_logs
Enums: eventstatus, handlerrunstatus
"""

from typing import Sequence, Union

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # ── 1. Enum types (lowercase values, as stored by the ORM) ────────────
    op.execute("""
        CREATE TYPE eventstatus AS ENUM (
            'pending', 'processing', 'completed', 'failed', 'max_retries_exceeded'
        );
    """)
    op.execute("""
        CREATE TYPE handlerrunstatus AS ENUM (
            'success', 'failed'
        );
    """)

    # ── 2. events ─────────────────────────────────────────────────────────
    op.execute("""
        CREATE TABLE events (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            idempotency_key VARCHAR(512) NOT NULL,
            event_type VARCHAR(255) NOT NULL,
            aggregate_type VARCHAR(255) NOT NULL,
            aggregate_id VARCHAR(255) NOT NULL,
            store_id VARCHAR(255),
            payload JSONB NOT NULL DEFAULT '{}'::jsonb,
            status eventstatus NOT NULL DEFAULT 'pending',
            retry_count INTEGER NOT NULL DEFAULT 0,
            max_retries INTEGER NOT NULL DEFAULT 5,
            next_retry_at TIMESTAMPTZ,
            error_message TEXT,
            processed_at TIMESTAMPTZ,
            locked_at TIMESTAMPTZ,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            CONSTRAINT uq_events_idempotency_key UNIQUE (idempotency_key),
            CONSTRAINT ck_events_retry_count CHECK (retry_count >= 0)
        );
    """)
    op.execute("CREATE INDEX ix_events_status ON events (status);")
    op.execute("CREATE INDEX ix_events_event_type ON events (event_type);")
    op.execute("CREATE INDEX ix_events_created_at ON events (created_at);")
    op.execute("CREATE INDEX ix_events_aggregate ON events (aggregate_type, aggregate_id);")
    op.execute("CREATE INDEX ix_events_retry_due ON events (status, next_retry_at);")

    # ── 3. event_handler_logs (append-only) ───────────────────────────────
    op.execute("""
        CREATE TABLE event_handler_logs (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            event_id UUID NOT NULL REFERENCES events(id) ON DELETE RESTRICT,
            handler_name VARCHAR(255) NOT NULL,
            status handlerrunstatus NOT NULL,
            duration_ms INTEGER NOT NULL DEFAULT 0,
            error_message TEXT,
            attempt INTEGER NOT NULL DEFAULT 1,
            position INTEGER NOT NULL DEFAULT 0,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now()
        );
    """)
    op.execute(
        "CREATE INDEX ix_event_handler_logs_event ON event_handler_logs (event_id, attempt, position);"
    )
    op.execute("CREATE INDEX ix_event_handler_logs_created_at ON event_handler_logs (created_at);")
    op.execute("CREATE INDEX ix_event_handler_logs_handler ON event_handler_logs (handler_name);")


def downgrade() -> None:
    op.execute("DROP INDEX IF EXISTS ix_event_handler_logs_handler;")
    op.execute("DROP INDEX IF EXISTS ix_event_handler_logs_created_at;")
    op.execute("DROP INDEX IF EXISTS ix_event_handler_logs_event;")
    op.execute("DROP TABLE IF EXISTS event_handler_logs;")

    op.execute("DROP INDEX IF EXISTS ix_events_retry_due;")
    op.execute("DROP INDEX IF EXISTS ix_events_aggregate;")
    op.execute("DROP INDEX IF EXISTS ix_events_created_at;")
    op.execute("DROP INDEX IF EXISTS ix_events_event_type;")
    op.execute("DROP INDEX IF EXISTS ix_events_status;")
    op.execute("DROP TABLE IF EXISTS events;")

    op.execute("DROP TYPE IF EXISTS handlerrunstatus;")
    op.execute("DROP TYPE IF EXISTS eventstatus;")
