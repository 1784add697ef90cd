"""
Integration tests for workers running against PostgreSQL.
"""

import asyncio
from datetime import timedelta

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession

from stepqueue.constants import StepStatus
from stepqueue.db import SessionStepStore, close_db, init_db
from stepqueue.db.repository import StepRepository
from stepqueue.observability.metrics import MetricsCollector
from stepqueue.worker.backoff import Backoff
from stepqueue.worker.lifecycle import ShutdownSignal
from stepqueue.worker.main import Worker

pytestmark = pytest.mark.integration


async def wait_for_stats(session: AsyncSession, expected: dict[str, int], timeout: float = 15):
    """Poll step counts until they match or time runs out."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while True:
        stats = await StepRepository(session).get_step_stats()
        await session.commit()
        if stats == expected or loop.time() > deadline:
            return stats
        await asyncio.sleep(0.05)


class TestWorkerIntegration:
    """End-to-end worker runs over the database store."""

    @pytest_asyncio.fixture
    async def store(self, async_engine: AsyncEngine, db_session: AsyncSession):
        """Database-backed store on the test engine."""
        await init_db(async_engine)
        yield SessionStepStore()
        await close_db()

    def make_worker(self, store, worker_id, backoff, metrics) -> Worker:
        return Worker(
            store=store,
            worker_id=worker_id,
            lease_duration=timedelta(seconds=30),
            backoff=backoff,
            metrics=metrics,
        )

    async def test_worker_drains_queue(
        self,
        store: SessionStepStore,
        db_session: AsyncSession,
        fast_backoff: Backoff,
        metrics: MetricsCollector,
    ):
        """Test claim -> process -> complete for every step, then shutdown."""
        repo = StepRepository(db_session)
        job = await repo.create_job()
        for seq in (1, 2, 3):
            await repo.add_step(job.id, seq, {"handler": "echo", "task": f"step-{seq}"})
        await db_session.commit()

        shutdown = ShutdownSignal()
        worker = self.make_worker(store, "worker-a", fast_backoff, metrics)
        task = asyncio.create_task(worker.run(shutdown))

        stats = await wait_for_stats(db_session, {StepStatus.COMPLETED.value: 3})
        shutdown.request("test")
        result = await asyncio.wait_for(task, timeout=5)

        assert stats == {"completed": 3}
        assert result.claimed == 3
        assert result.completed == 3
        assert result.lost == 0

        for step in await repo.list_steps(job.id):
            assert step.output == {"echo": {"handler": "echo", "task": f"step-{step.seq}"}}
            assert step.locked_by is None
            assert step.lease_expires_at is None
            assert step.attempt == 1

    async def test_workers_share_queue_without_overlap(
        self,
        store: SessionStepStore,
        db_session: AsyncSession,
        metrics: MetricsCollector,
    ):
        """Test that concurrent workers complete every step exactly once."""
        repo = StepRepository(db_session)
        for _ in range(2):
            job = await repo.create_job()
            for seq in range(1, 6):
                await repo.add_step(job.id, seq, {"handler": "echo"})
        await db_session.commit()

        shutdown = ShutdownSignal()
        workers = [
            self.make_worker(
                store,
                f"worker-{i}",
                Backoff(floor=0.001, ceiling=0.008, jitter_fraction=0.0),
                metrics,
            )
            for i in range(3)
        ]
        tasks = [asyncio.create_task(w.run(shutdown)) for w in workers]

        stats = await wait_for_stats(db_session, {StepStatus.COMPLETED.value: 10})
        shutdown.request("test")
        results = await asyncio.wait_for(asyncio.gather(*tasks), timeout=5)

        assert stats == {"completed": 10}
        assert sum(r.completed for r in results) == 10
        assert sum(r.claimed for r in results) == 10

    async def test_worker_recovers_crashed_step(
        self,
        store: SessionStepStore,
        db_session: AsyncSession,
        fast_backoff: Backoff,
        metrics: MetricsCollector,
    ):
        """Test that a step left behind by a dead worker is finished on attempt 2."""
        repo = StepRepository(db_session)
        job = await repo.create_job()
        await repo.add_step(job.id, 1, {"handler": "echo"})
        await db_session.commit()

        # A worker that claims with a short lease and never completes
        abandoned = await repo.claim_next_step("dead-worker", timedelta(seconds=1))
        await db_session.commit()
        step_id = abandoned.id

        shutdown = ShutdownSignal()
        worker = self.make_worker(store, "worker-b", fast_backoff, metrics)
        task = asyncio.create_task(worker.run(shutdown))

        stats = await wait_for_stats(db_session, {StepStatus.COMPLETED.value: 1})
        shutdown.request("test")
        await asyncio.wait_for(task, timeout=5)

        assert stats == {"completed": 1}
        step = await repo.get_step(step_id)
        assert step.attempt == 2
        assert worker.stats.empty_claims > 0
