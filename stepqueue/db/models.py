"""
SQLAlchemy database models.
Defines the jobs and job_steps tables.
"""

from datetime import datetime
from typing import Any
from uuid import UUID as PyUUID
from uuid import uuid4

from sqlalchemy import (
    CheckConstraint,
    Column,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    Text,
    UniqueConstraint,
    func,
    text,
)
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from stepqueue.constants import DEFAULT_MAX_ATTEMPTS, JobStatus, StepStatus


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""

    pass


def _status_enum(enum_cls: type, name: str) -> Enum:
    # Stored as text with a CHECK constraint rather than a native enum type
    return Enum(
        enum_cls,
        name=name,
        native_enum=False,
        create_constraint=True,
        length=16,
        values_callable=lambda x: [e.value for e in x],
    )


class Job(Base):
    """
    Parent workflow instance.

    Only the status matters to the step queue: steps are claimable
    while their job is RUNNING.
    """

    __tablename__ = "jobs"

    id: Mapped[PyUUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid4,
        server_default=text("gen_random_uuid()"),
    )
    status: Mapped[JobStatus] = mapped_column(
        _status_enum(JobStatus, "jobs_status_check"),
        nullable=False,
        default=JobStatus.RUNNING,
        server_default=JobStatus.RUNNING.value,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )

    __table_args__ = (
        Index("idx_jobs_status", "status"),
    )

    def __repr__(self) -> str:
        return f"Job(id={self.id}, status={self.status})"


class JobStep(Base):
    """
    A unit of work within a job, claimed by at most one worker at a time.

    Key constraints:
    - (job_id, seq) is unique
    - locked_by and lease_expires_at are set together or cleared together
    - status RUNNING always carries a lease, which may have expired
    - attempt counts claims and never passes max_attempts
    """

    __tablename__ = "job_steps"

    id: Mapped[PyUUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid4,
        server_default=text("gen_random_uuid()"),
    )
    job_id: Mapped[PyUUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("jobs.id", ondelete="CASCADE"),
        nullable=False,
    )
    seq: Mapped[int] = mapped_column(Integer, nullable=False)

    status: Mapped[StepStatus] = mapped_column(
        _status_enum(StepStatus, "job_steps_status_check"),
        nullable=False,
        default=StepStatus.PENDING,
        server_default=StepStatus.PENDING.value,
    )

    # Payloads
    input: Mapped[Any] = mapped_column(JSONB, nullable=True)
    output: Mapped[dict[str, Any] | None] = mapped_column(JSONB, nullable=True)
    error: Mapped[dict[str, Any] | None] = mapped_column(JSONB, nullable=True)

    # Lease management
    locked_by: Mapped[str | None] = mapped_column(Text, nullable=True)
    lease_expires_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    # Retry tracking
    attempt: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
        server_default="0",
    )
    max_attempts: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=DEFAULT_MAX_ATTEMPTS,
        server_default=str(DEFAULT_MAX_ATTEMPTS),
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )

    __table_args__ = (
        UniqueConstraint("job_id", "seq", name="job_steps_job_id_seq_key"),
        CheckConstraint(
            "attempt >= 0 AND max_attempts >= 1",
            name="job_steps_attempt_check",
        ),
        # Claim path: pending steps in creation order
        Index(
            "idx_job_steps_pending",
            "status",
            "created_at",
            postgresql_where=(Column("status") == StepStatus.PENDING.value),
        ),
        # Recovery path: running steps by lease expiry
        Index(
            "idx_job_steps_expired",
            "status",
            "lease_expires_at",
            postgresql_where=(Column("status") == StepStatus.RUNNING.value),
        ),
        Index("idx_job_steps_job_id", "job_id"),
    )

    @property
    def has_attempts_left(self) -> bool:
        """Check if another claim is allowed."""
        return self.attempt < self.max_attempts

    def is_lease_expired(self, now: datetime) -> bool:
        """Check if the step holds a lease that has run out at ``now``."""
        if self.lease_expires_at is None:
            return False
        return self.lease_expires_at < now

    def __repr__(self) -> str:
        return (
            f"JobStep(id={self.id}, job={self.job_id}, seq={self.seq}, "
            f"status={self.status}, attempt={self.attempt}/{self.max_attempts})"
        )
