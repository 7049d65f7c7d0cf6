"""Initial schema with job_queue table

Revision ID: 001
Revises:
Create Date: 2024-01-01 00:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # Create enum using raw SQL with IF NOT EXISTS
    op.execute("""
        DO $$ BEGIN
            CREATE TYPE job_status AS ENUM ('pending', 'processing', 'completed', 'failed');
        EXCEPTION
            WHEN duplicate_object THEN null;
        END $$;
    """)

    op.create_table(
        "job_queue",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("tenant_id", sa.String(255), nullable=True),
        sa.Column("type", sa.String(64), nullable=False),
        sa.Column("payload", postgresql.JSONB, nullable=False, server_default="{}"),
        sa.Column(
            "status",
            postgresql.ENUM(
                "pending", "processing", "completed", "failed",
                name="job_status", create_type=False,
            ),
            nullable=False,
            server_default="pending",
        ),
        sa.Column(
            "scheduled_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.Column("attempts", sa.Integer, nullable=False, server_default="0"),
        sa.Column("max_attempts", sa.Integer, nullable=False, server_default="3"),
        sa.Column("error", sa.Text, nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )

    op.create_index("ix_job_queue_tenant_id", "job_queue", ["tenant_id"])
    op.create_index("ix_job_queue_type", "job_queue", ["type"])

    # Partial index for claim scans
    op.execute("""
        CREATE INDEX ix_job_queue_pending_scheduled
        ON job_queue (status, scheduled_at)
        WHERE status = 'pending'
    """)

    # Partial index for stale processing recovery
    op.execute("""
        CREATE INDEX ix_job_queue_processing_started
        ON job_queue (started_at)
        WHERE status = 'processing'
    """)


def downgrade() -> None:
    op.execute("DROP INDEX IF EXISTS ix_job_queue_processing_started")
    op.execute("DROP INDEX IF EXISTS ix_job_queue_pending_scheduled")
    op.drop_index("ix_job_queue_type")
    op.drop_index("ix_job_queue_tenant_id")

    op.drop_table("job_queue")

    op.execute("DROP TYPE IF EXISTS job_status")
