"""
Step-related type definitions for internal use.
"""

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any
from uuid import UUID

from pydantic import BaseModel

from stepqueue.db.models import JobStep


class StepResult(BaseModel):
    """
    Result of step execution.
    Returned by step handlers after processing.
    """

    output: dict[str, Any] | None = None
    duration_ms: float | None = None


def _copy_input(value: Any) -> Any:
    if value is None:
        return {}
    if isinstance(value, Mapping):
        return dict(value)
    return value


@dataclass
class StepContext:
    """
    Context passed to step handlers during execution.
    Snapshot of the claimed row plus the worker holding its lease.
    """

    step_id: UUID
    job_id: UUID
    seq: int
    attempt: int
    max_attempts: int
    worker_id: str
    lease_expires_at: datetime
    # Any JSON value; handlers that take options expect an object
    input: Any = field(default_factory=dict)

    @classmethod
    def from_step(cls, step: JobStep, worker_id: str) -> "StepContext":
        """Build a context from a freshly claimed step."""
        if step.lease_expires_at is None:
            raise ValueError(f"Step {step.id} has no lease")
        return cls(
            step_id=step.id,
            job_id=step.job_id,
            seq=step.seq,
            attempt=step.attempt,
            max_attempts=step.max_attempts,
            worker_id=worker_id,
            lease_expires_at=step.lease_expires_at,
            input=_copy_input(step.input),
        )

    @property
    def is_last_attempt(self) -> bool:
        """Check if this is the last allowed attempt."""
        return self.attempt >= self.max_attempts

    def lease_time_remaining(self, now: datetime | None = None) -> float:
        """
        Seconds left on the lease by this process's clock.

        Only an estimate: the store judges expiry by its own clock.
        """
        now = now or datetime.now(timezone.utc)
        return max(0.0, (self.lease_expires_at - now).total_seconds())

    def is_lease_expired(self, now: datetime | None = None) -> bool:
        """Check if the lease has run out by this process's clock."""
        return self.lease_time_remaining(now) <= 0.0
