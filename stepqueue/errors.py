"""
Exception types.

"Nothing to claim" and "completion refused" are ordinary return values, not
exceptions. Only infrastructure and configuration problems are raised.
"""


class StepQueueError(Exception):
    """Base class for step queue errors."""


class StoreUnavailableError(StepQueueError):
    """The queue store could not be reached or the operation errored.

    Transient: the worker backs off and tries again.
    """

    def __init__(self, operation: str, message: str | None = None):
        self.operation = operation
        super().__init__(message or f"Queue store unavailable during {operation}")


class UnknownHandlerError(StepQueueError):
    """A step names a handler that is not registered."""

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"No handler registered for step handler: {name}")
