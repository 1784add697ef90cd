"""Initial schema with jobs and job_steps tables

Revision ID: 001
Revises:
Create Date: 2026-10-16 00:00:00.000000

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
    # Parent workflow instances
    op.create_table(
        "jobs",
        sa.Column(
            "id",
            postgresql.UUID(as_uuid=True),
            nullable=False,
            server_default=sa.text("gen_random_uuid()"),
        ),
        sa.Column("status", sa.String(16), nullable=False, server_default="running"),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.PrimaryKeyConstraint("id"),
        sa.CheckConstraint(
            "status IN ('running', 'completed', 'failed', 'cancelled')",
            name="jobs_status_check",
        ),
    )
    op.create_index("idx_jobs_status", "jobs", ["status"])

    # Individual units of work within a job
    op.create_table(
        "job_steps",
        sa.Column(
            "id",
            postgresql.UUID(as_uuid=True),
            nullable=False,
            server_default=sa.text("gen_random_uuid()"),
        ),
        sa.Column("job_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("seq", sa.Integer, nullable=False),
        sa.Column("status", sa.String(16), nullable=False, server_default="pending"),
        sa.Column("input", postgresql.JSONB, nullable=True),
        sa.Column("output", postgresql.JSONB, nullable=True),
        sa.Column("error", postgresql.JSONB, nullable=True),
        sa.Column("locked_by", sa.Text, nullable=True),
        sa.Column("lease_expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("attempt", sa.Integer, nullable=False, server_default="0"),
        sa.Column("max_attempts", sa.Integer, nullable=False, server_default="3"),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["job_id"], ["jobs.id"], ondelete="CASCADE"),
        sa.UniqueConstraint("job_id", "seq", name="job_steps_job_id_seq_key"),
        sa.CheckConstraint(
            "status IN ('pending', 'running', 'completed', 'failed', 'cancelled')",
            name="job_steps_status_check",
        ),
        sa.CheckConstraint(
            "attempt >= 0 AND max_attempts >= 1",
            name="job_steps_attempt_check",
        ),
    )

    # Claim path: pending steps in creation order
    op.execute("""
        CREATE INDEX idx_job_steps_pending
        ON job_steps (status, created_at)
        WHERE status = 'pending'
    """)

    # Recovery path: running steps by lease expiry
    op.execute("""
        CREATE INDEX idx_job_steps_expired
        ON job_steps (status, lease_expires_at)
        WHERE status = 'running'
    """)

    op.create_index("idx_job_steps_job_id", "job_steps", ["job_id"])


def downgrade() -> None:
    op.drop_index("idx_job_steps_job_id", table_name="job_steps")
    op.execute("DROP INDEX IF EXISTS idx_job_steps_expired")
    op.execute("DROP INDEX IF EXISTS idx_job_steps_pending")
    op.drop_table("job_steps")

    op.drop_index("idx_jobs_status", table_name="jobs")
    op.drop_table("jobs")
