"""
Worker loop state.
"""

import logging
from dataclasses import dataclass

from stepqueue.constants import WorkerPhase
from stepqueue.types.step import StepContext

logger = logging.getLogger(__name__)


@dataclass
class WorkerState:
    """
    Current phase of a worker loop and the step it holds, if any.

    Owned by a single running loop. A worker holds at most one step.
    """

    phase: WorkerPhase = WorkerPhase.IDLE
    held: StepContext | None = None

    def transition(self, phase: WorkerPhase) -> None:
        logger.debug(
            "Worker phase change",
            extra={"from_phase": self.phase.value, "to_phase": phase.value},
        )
        self.phase = phase

    def hold(self, context: StepContext) -> None:
        if self.held is not None:
            raise RuntimeError(
                f"Worker already holds step {self.held.step_id}"
            )
        self.held = context

    def release(self) -> StepContext | None:
        held, self.held = self.held, None
        return held


@dataclass
class WorkerStats:
    """Counters for one worker run."""

    claimed: int = 0
    completed: int = 0
    lost: int = 0
    empty_claims: int = 0
    store_errors: int = 0
    processing_errors: int = 0
