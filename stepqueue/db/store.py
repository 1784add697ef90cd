"""
Queue store interface consumed by workers.

Each operation runs in its own short transaction. No transaction is held
open while a worker processes a step.
"""

import asyncio
import logging
from datetime import timedelta
from typing import Any, Protocol
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError

from stepqueue.db.connection import get_session_context
from stepqueue.db.models import JobStep
from stepqueue.db.repository import StepRepository
from stepqueue.errors import StoreUnavailableError

logger = logging.getLogger(__name__)

# Failures that mean the store, not the caller, is at fault
TRANSIENT_ERRORS: tuple[type[BaseException], ...] = (
    SQLAlchemyError,
    OSError,
    asyncio.TimeoutError,
)


class StepStore(Protocol):
    """The two atomic operations the worker loop needs from a store."""

    async def claim_next_step(
        self,
        worker_id: str,
        lease_duration: timedelta,
    ) -> JobStep | None: ...

    async def complete_step(
        self,
        step_id: UUID,
        worker_id: str,
        output: dict[str, Any] | None,
    ) -> JobStep | None: ...


class SessionStepStore:
    """
    StepStore backed by the configured database.

    Opens a session per call, runs one repository operation and commits.
    Infrastructure errors surface as StoreUnavailableError; an empty claim
    or a refused completion is returned as None.
    """

    async def claim_next_step(
        self,
        worker_id: str,
        lease_duration: timedelta,
    ) -> JobStep | None:
        try:
            async with get_session_context() as session:
                return await StepRepository(session).claim_next_step(
                    worker_id=worker_id,
                    lease_duration=lease_duration,
                )
        except TRANSIENT_ERRORS as e:
            raise StoreUnavailableError("claim_next_step", str(e)) from e

    async def complete_step(
        self,
        step_id: UUID,
        worker_id: str,
        output: dict[str, Any] | None,
    ) -> JobStep | None:
        try:
            async with get_session_context() as session:
                return await StepRepository(session).complete_step(
                    step_id=step_id,
                    worker_id=worker_id,
                    output=output,
                )
        except TRANSIENT_ERRORS as e:
            raise StoreUnavailableError("complete_step", str(e)) from e
