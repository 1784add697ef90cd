"""
Worker process for executing steps.

The worker claims one step at a time, runs it, and completes it if it still
holds the lease. Many worker processes run against the same database; the
claim statement is the only coordination between them.
"""

import asyncio
import logging
import os
from datetime import timedelta
from uuid import uuid4

from stepqueue.config import get_settings
from stepqueue.constants import (
    SPAN_CLAIM_STEP,
    SPAN_COMPLETE_STEP,
    SPAN_PROCESS_STEP,
    WorkerPhase,
)
from stepqueue.db import SessionStepStore, StepStore, close_db, get_engine, init_db
from stepqueue.db.models import JobStep
from stepqueue.errors import StoreUnavailableError
from stepqueue.observability.logging import bind_context, clear_context, setup_logging
from stepqueue.observability.metrics import (
    MetricsCollector,
    get_metrics,
    start_metrics_server,
)
from stepqueue.observability.tracing import (
    get_tracer,
    instrument_sqlalchemy,
    setup_tracing,
)
from stepqueue.types.step import StepContext, StepResult
from stepqueue.types.worker import WorkerState, WorkerStats
from stepqueue.worker.backoff import Backoff
from stepqueue.worker.handlers import execute_step
from stepqueue.worker.lifecycle import ShutdownSignal

logger = logging.getLogger(__name__)


def default_worker_id() -> str:
    """Unique identifier for this worker process."""
    return f"{os.uname().nodename}-{os.getpid()}-{uuid4().hex[:8]}"


class Worker:
    """
    Step worker that polls for, executes and completes steps.

    Loop: Idle -> Claiming -> Processing -> Completing -> Idle.

    Features:
    - Exponential backoff with jitter when there is no work or the store fails
    - Lost ownership on completion is accepted silently, never retried
    - Graceful shutdown: finishes the held step, then stops claiming
    """

    def __init__(
        self,
        store: StepStore | None = None,
        worker_id: str | None = None,
        lease_duration: timedelta | None = None,
        backoff: Backoff | None = None,
        executor=None,
        metrics: MetricsCollector | None = None,
    ):
        """
        Initialize the worker.

        Args:
            store: Queue store. Defaults to the database-backed store.
            worker_id: Unique worker identifier. Defaults to hostname + PID + random suffix.
            lease_duration: Lease requested on each claim.
            backoff: Backoff policy for unproductive cycles.
            executor: Coroutine function running a StepContext to a StepResult.
            metrics: Metrics collector.
        """
        settings = get_settings()

        self.worker_id = worker_id or settings.worker_id or default_worker_id()
        self.lease_duration = lease_duration or timedelta(
            seconds=settings.lease_duration_seconds
        )
        self.stats = WorkerStats()

        self._store = store or SessionStepStore()
        self._backoff = backoff or Backoff.from_settings()
        self._execute = executor or execute_step
        self._metrics = metrics or get_metrics()
        self._tracer = get_tracer()

    async def run(self, shutdown: ShutdownSignal) -> WorkerStats:
        """
        Run the worker loop until shutdown is requested.

        Shutdown is only checked before a new claim, so a step that has been
        claimed is always processed and completed first.

        Args:
            shutdown: Cancellation token from the process lifecycle.

        Returns:
            Counters for this run.
        """
        logger.info(
            "Worker starting",
            extra={
                "worker_id": self.worker_id,
                "lease_seconds": self.lease_duration.total_seconds(),
            },
        )

        state = WorkerState()

        while not shutdown.is_requested:
            state.transition(WorkerPhase.CLAIMING)
            try:
                step = await self._claim()
            except StoreUnavailableError as e:
                self.stats.store_errors += 1
                self._metrics.record_store_error(e.operation)
                logger.warning(
                    f"Error claiming step: {e}",
                    extra={"worker_id": self.worker_id},
                )
                state.transition(WorkerPhase.IDLE)
                await self._back_off(shutdown)
                continue
            except Exception as e:
                self.stats.store_errors += 1
                self._metrics.record_store_error("claim_next_step")
                logger.exception(
                    f"Unexpected error claiming step: {e}",
                    extra={"worker_id": self.worker_id},
                )
                state.transition(WorkerPhase.IDLE)
                await self._back_off(shutdown)
                continue

            if step is None:
                self.stats.empty_claims += 1
                self._metrics.record_empty_claim(self.worker_id)
                state.transition(WorkerPhase.IDLE)
                await self._back_off(shutdown)
                continue

            self._backoff.reset()
            self.stats.claimed += 1
            self._metrics.record_claim(self.worker_id)

            failed = False
            context: StepContext | None = None
            try:
                context = StepContext.from_step(step, self.worker_id)
                state.hold(context)

                state.transition(WorkerPhase.PROCESSING)
                result = await self._process(context)

                state.transition(WorkerPhase.COMPLETING)
                await self._complete(context, result)
            except Exception as e:
                # The lease stays in place and expires; another claim picks it up
                failed = True
                self.stats.processing_errors += 1
                self._metrics.record_processing_error()
                logger.exception(
                    f"Unexpected error handling step: {e}",
                    extra={
                        "worker_id": self.worker_id,
                        "step_id": str(step.id),
                        "last_attempt": context is not None and context.is_last_attempt,
                    },
                )
            finally:
                state.release()
                state.transition(WorkerPhase.IDLE)

            if failed:
                await self._back_off(shutdown)

        state.transition(WorkerPhase.STOPPED)
        logger.info(
            "Worker stopped",
            extra={
                "worker_id": self.worker_id,
                "claimed": self.stats.claimed,
                "completed": self.stats.completed,
                "lost": self.stats.lost,
            },
        )
        return self.stats

    async def _claim(self) -> JobStep | None:
        with self._tracer.start_as_current_span(SPAN_CLAIM_STEP) as span:
            span.set_attribute("worker_id", self.worker_id)
            step = await self._store.claim_next_step(
                worker_id=self.worker_id,
                lease_duration=self.lease_duration,
            )
            span.set_attribute("claimed", step is not None)

        if step is not None:
            logger.info(
                f"Claimed step {step.id}",
                extra={
                    "worker_id": self.worker_id,
                    "job_id": str(step.job_id),
                    "seq": step.seq,
                    "attempt": step.attempt,
                },
            )
        return step

    async def _process(self, context: StepContext) -> StepResult:
        with self._tracer.start_as_current_span(SPAN_PROCESS_STEP) as span:
            span.set_attribute("step_id", str(context.step_id))
            span.set_attribute("job_id", str(context.job_id))
            span.set_attribute("attempt", context.attempt)
            return await self._execute(context)

    async def _complete(self, context: StepContext, result: StepResult) -> bool:
        """
        Complete a processed step.

        A store failure is retried with backoff for as long as the lease
        still looks valid locally. A refused completion is final.

        Returns:
            True if the step was completed by this worker.
        """
        duration_seconds = (result.duration_ms or 0.0) / 1000

        while True:
            try:
                with self._tracer.start_as_current_span(SPAN_COMPLETE_STEP) as span:
                    span.set_attribute("step_id", str(context.step_id))
                    completed = await self._store.complete_step(
                        step_id=context.step_id,
                        worker_id=self.worker_id,
                        output=result.output,
                    )
                    span.set_attribute("completed", completed is not None)
                break
            except StoreUnavailableError as e:
                self.stats.store_errors += 1
                self._metrics.record_store_error(e.operation)
                if context.is_lease_expired():
                    logger.warning(
                        f"Abandoning step {context.step_id}: lease expired while store unavailable",
                        extra={"worker_id": self.worker_id, "error": str(e)},
                    )
                    completed = None
                    break
                delay = self._backoff.next_delay()
                logger.warning(
                    f"Error completing step {context.step_id}, retrying in {delay:.2f}s",
                    extra={"worker_id": self.worker_id, "error": str(e)},
                )
                await asyncio.sleep(delay)

        self._backoff.reset()

        if completed is None:
            self.stats.lost += 1
            self._metrics.record_step_finished("lost", duration_seconds)
            logger.warning(
                f"Failed to complete step {context.step_id} (lease expired or reclaimed)",
                extra={"worker_id": self.worker_id, "attempt": context.attempt},
            )
            return False

        self.stats.completed += 1
        self._metrics.record_step_finished("completed", duration_seconds)
        logger.info(
            f"Completed step {context.step_id}",
            extra={
                "worker_id": self.worker_id,
                "duration": f"{duration_seconds:.2f}s",
            },
        )
        return True

    async def _back_off(self, shutdown: ShutdownSignal) -> None:
        """Wait out the next backoff delay, ending early on shutdown."""
        delay = self._backoff.next_delay()
        self._metrics.set_backoff_delay(self.worker_id, delay)
        logger.debug(
            f"No work available. Backing off for {delay:.2f}s",
            extra={"worker_id": self.worker_id},
        )
        await shutdown.wait_for(delay)


async def run_async() -> None:
    """Run the worker asynchronously."""
    setup_logging()
    settings = get_settings()

    if settings.metrics_enabled:
        start_metrics_server(settings.prometheus_port)
    if settings.otel_enabled:
        setup_tracing()

    await init_db()
    if settings.otel_enabled:
        instrument_sqlalchemy(get_engine().sync_engine)

    shutdown = ShutdownSignal()
    shutdown.install(asyncio.get_running_loop())

    worker = Worker()
    bind_context(worker_id=worker.worker_id)

    try:
        await worker.run(shutdown)
    finally:
        clear_context()
        await close_db()


def run() -> None:
    """Run the worker."""
    asyncio.run(run_async())


if __name__ == "__main__":
    run()
