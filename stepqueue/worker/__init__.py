"""
Worker module.
Contains the step worker loop, its backoff and shutdown handling, and step handlers.
"""

from stepqueue.worker.backoff import Backoff
from stepqueue.worker.lifecycle import ShutdownSignal
from stepqueue.worker.main import Worker, run

__all__ = ["Worker", "Backoff", "ShutdownSignal", "run"]
