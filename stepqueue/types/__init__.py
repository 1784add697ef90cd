"""
Type definitions for the step queue.
Contains value types passed between the worker loop and step handlers.
"""

from stepqueue.types.step import StepContext, StepResult
from stepqueue.types.worker import WorkerState, WorkerStats

__all__ = [
    "StepContext",
    "StepResult",
    "WorkerState",
    "WorkerStats",
]
