"""
Step repository for database operations.
Implements the claim/complete protocol and the supporting data access.
"""

import logging
from datetime import datetime, timedelta
from typing import Any, Sequence
from uuid import UUID

from sqlalchemy import Interval, and_, func, literal, null, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import aliased

from stepqueue.config import get_settings
from stepqueue.constants import JobStatus, StepStatus
from stepqueue.db.models import Job, JobStep

logger = logging.getLogger(__name__)


def claimable(step: Any = JobStep, job: Any = Job):
    """
    Eligibility predicate for a claim.

    A step qualifies when its job is running, it has attempts left, and it
    is either pending or running under a lease that has already expired.
    Lease times are compared against the database clock.
    """
    return and_(
        job.status == JobStatus.RUNNING,
        step.attempt < step.max_attempts,
        or_(
            step.status == StepStatus.PENDING,
            and_(
                step.status == StepStatus.RUNNING,
                step.lease_expires_at.is_not(None),
                step.lease_expires_at < func.now(),
            ),
        ),
    )


class StepRepository:
    """
    Repository for step database operations.

    Implements atomic operations for:
    - Step claiming with FOR UPDATE SKIP LOCKED
    - Ownership-checked completion
    - Job and step creation and inspection
    """

    def __init__(self, session: AsyncSession):
        """
        Initialize the repository with a database session.

        Args:
            session: The async database session.
        """
        self._session = session
        self._settings = get_settings()

    async def claim_next_step(
        self,
        worker_id: str,
        lease_duration: timedelta,
    ) -> JobStep | None:
        """
        Claim the best eligible step for a worker.

        This is the critical path for step distribution. The candidate is
        selected and locked with FOR UPDATE SKIP LOCKED inside the same
        UPDATE that claims it, so two concurrent callers can never win the
        same step and a row held by an in-flight claim is skipped instead of
        waited on.

        Args:
            worker_id: The worker identifier.
            lease_duration: How long the lease lasts from now.

        Returns:
            The claimed step, or None if nothing is eligible.

        Raises:
            ValueError: If worker_id is empty or lease_duration is not positive.
        """
        if not worker_id:
            raise ValueError("worker_id must not be empty")
        if lease_duration <= timedelta(0):
            raise ValueError("lease_duration must be positive")

        candidate = aliased(JobStep, name="candidate")
        candidate_id = (
            select(candidate.id)
            .join(Job, Job.id == candidate.job_id)
            .where(claimable(candidate, Job))
            .order_by(
                candidate.created_at.asc(),
                candidate.job_id.asc(),
                candidate.seq.asc(),
                candidate.id.asc(),
            )
            .limit(1)
            .with_for_update(of=candidate, skip_locked=True)
            .correlate(None)
            .scalar_subquery()
        )

        stmt = (
            update(JobStep)
            .where(JobStep.id == candidate_id)
            .values(
                status=StepStatus.RUNNING,
                locked_by=worker_id,
                lease_expires_at=func.now() + literal(lease_duration, Interval()),
                attempt=JobStep.attempt + 1,
            )
            .returning(JobStep)
            .execution_options(synchronize_session=False, populate_existing=True)
        )

        result = await self._session.execute(stmt)
        step = result.scalar_one_or_none()

        if step is not None:
            logger.info(
                "Claimed step",
                extra={
                    "step_id": str(step.id),
                    "job_id": str(step.job_id),
                    "seq": step.seq,
                    "worker_id": worker_id,
                    "attempt": step.attempt,
                },
            )

        return step

    async def complete_step(
        self,
        step_id: UUID,
        worker_id: str,
        output: dict[str, Any] | None,
    ) -> JobStep | None:
        """
        Mark a step completed if the worker still owns an unexpired lease.

        The ownership check and the write are one conditional UPDATE, so the
        lease holder is judged at the instant of the update. Wrong worker,
        expired lease, reclaimed or already completed all look the same:
        nothing changes and None is returned.

        Args:
            step_id: The step UUID.
            worker_id: The worker identifier.
            output: Step output to store.

        Returns:
            Updated step or None if validation failed.
        """
        stmt = (
            update(JobStep)
            .where(
                and_(
                    JobStep.id == step_id,
                    JobStep.status == StepStatus.RUNNING,
                    JobStep.locked_by == worker_id,
                    JobStep.lease_expires_at.is_not(None),
                    JobStep.lease_expires_at > func.now(),
                )
            )
            .values(
                status=StepStatus.COMPLETED,
                output=output if output is not None else null(),
                locked_by=None,
                lease_expires_at=None,
            )
            .returning(JobStep)
            .execution_options(synchronize_session=False, populate_existing=True)
        )

        result = await self._session.execute(stmt)
        step = result.scalar_one_or_none()

        if step is not None:
            logger.info(
                "Step completed",
                extra={"step_id": str(step_id), "worker_id": worker_id},
            )

        return step

    async def create_job(self, status: JobStatus = JobStatus.RUNNING) -> Job:
        """
        Create a new job.

        Args:
            status: Initial job status.

        Returns:
            The created Job.
        """
        job = Job(status=status)
        self._session.add(job)
        await self._session.flush()
        await self._session.refresh(job)
        return job

    async def add_step(
        self,
        job_id: UUID,
        seq: int,
        input: Any = None,
        max_attempts: int | None = None,
        created_at: datetime | None = None,
    ) -> JobStep:
        """
        Add a pending step to a job.

        Args:
            job_id: The owning job.
            seq: Position within the job, unique per job.
            input: Step input payload.
            max_attempts: Claim ceiling. Defaults to the configured value.
            created_at: Override the creation time (claim ordering key).

        Returns:
            The created JobStep.
        """
        step = JobStep(
            job_id=job_id,
            seq=seq,
            input=input,
            status=StepStatus.PENDING,
            attempt=0,
            max_attempts=max_attempts or self._settings.default_max_attempts,
        )
        if created_at is not None:
            step.created_at = created_at
        self._session.add(step)
        await self._session.flush()
        await self._session.refresh(step)
        return step

    async def get_job(self, job_id: UUID) -> Job | None:
        """Get a job by ID."""
        stmt = select(Job).where(Job.id == job_id)
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_step(self, step_id: UUID) -> JobStep | None:
        """
        Get a step by ID, always re-read from the database.

        Args:
            step_id: The step UUID.

        Returns:
            The JobStep or None if not found.
        """
        stmt = (
            select(JobStep)
            .where(JobStep.id == step_id)
            .execution_options(populate_existing=True)
        )
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def list_steps(self, job_id: UUID) -> Sequence[JobStep]:
        """List a job's steps in sequence order."""
        stmt = (
            select(JobStep)
            .where(JobStep.job_id == job_id)
            .order_by(JobStep.seq.asc())
            .execution_options(populate_existing=True)
        )
        result = await self._session.execute(stmt)
        return result.scalars().all()

    async def set_job_status(self, job_id: UUID, status: JobStatus) -> Job | None:
        """
        Set a job's status, e.g. to cancel it.

        Steps of a job that is not running stop being claimable; steps
        already leased are left alone.

        Args:
            job_id: The job UUID.
            status: The new status.

        Returns:
            Updated Job or None if not found.
        """
        stmt = (
            update(Job)
            .where(Job.id == job_id)
            .values(status=status)
            .returning(Job)
            .execution_options(synchronize_session=False, populate_existing=True)
        )
        result = await self._session.execute(stmt)
        job = result.scalar_one_or_none()

        if job:
            logger.info(
                "Job status changed",
                extra={"job_id": str(job_id), "status": status.value},
            )

        return job

    async def count_claimable_steps(self) -> int:
        """
        Count steps a claim could return right now.

        Uses the claim predicate without locking anything.

        Returns:
            Number of claimable steps.
        """
        stmt = (
            select(func.count())
            .select_from(JobStep)
            .join(Job, Job.id == JobStep.job_id)
            .where(claimable())
        )
        result = await self._session.execute(stmt)
        return result.scalar() or 0

    async def get_step_stats(self, job_id: UUID | None = None) -> dict[str, int]:
        """
        Get step counts by status.

        Args:
            job_id: Optional job filter.

        Returns:
            Dictionary of status -> count.
        """
        stmt = select(JobStep.status, func.count()).group_by(JobStep.status)
        if job_id is not None:
            stmt = stmt.where(JobStep.job_id == job_id)

        result = await self._session.execute(stmt)
        return {status.value: count for status, count in result.all()}
