"""
Database module.
Contains database connection, models, repository and store implementations.
"""

from stepqueue.db.connection import (
    close_db,
    get_engine,
    get_session_context,
    init_db,
)
from stepqueue.db.models import Base, Job, JobStep
from stepqueue.db.repository import StepRepository
from stepqueue.db.store import SessionStepStore, StepStore

__all__ = [
    "get_session_context",
    "get_engine",
    "init_db",
    "close_db",
    "Base",
    "Job",
    "JobStep",
    "StepRepository",
    "StepStore",
    "SessionStepStore",
]
