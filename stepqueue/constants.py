"""
Application constants.
Centralized location for all constant values used across the application.
"""

from enum import StrEnum


class JobStatus(StrEnum):
    """
    Job lifecycle states.

    Steps are only claimable while their job is RUNNING. Transitions out of
    RUNNING are made by whoever owns the workflow, never by the step queue.
    """

    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class StepStatus(StrEnum):
    """
    Step lifecycle states.

    State transitions:
    - PENDING -> RUNNING (claimed, lease set, attempt + 1)
    - RUNNING -> RUNNING (expired lease reclaimed by another worker)
    - RUNNING -> COMPLETED (lease holder completed before expiry)
    """

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class WorkerPhase(StrEnum):
    """Phases of the worker control loop."""

    IDLE = "idle"
    CLAIMING = "claiming"
    PROCESSING = "processing"
    COMPLETING = "completing"
    STOPPED = "stopped"


# Default values
DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_LEASE_DURATION_SECONDS = 300.0
DEFAULT_BACKOFF_FLOOR_SECONDS = 1.0
DEFAULT_BACKOFF_CEILING_SECONDS = 30.0
DEFAULT_BACKOFF_JITTER_FRACTION = 0.2
DEFAULT_HANDLER = "simulate"
DEFAULT_SIMULATED_WORK_SECONDS = 2.0

# Metrics names
METRIC_STEPS_CLAIMED = "steps_claimed_total"
METRIC_CLAIMS_EMPTY = "claims_empty_total"
METRIC_STEPS_COMPLETED = "steps_completed_total"
METRIC_STEP_DURATION = "step_duration_seconds"
METRIC_STORE_ERRORS = "store_errors_total"
METRIC_PROCESSING_ERRORS = "processing_errors_total"
METRIC_BACKOFF_DELAY = "backoff_delay_seconds"

# Trace span names
SPAN_CLAIM_STEP = "claim_step"
SPAN_PROCESS_STEP = "process_step"
SPAN_COMPLETE_STEP = "complete_step"
