"""
Step handler registry and implementations.

Step handlers must be idempotent - a step whose lease expires mid-run is
reclaimed and executed again by another worker.
"""

import asyncio
import logging
import time
from datetime import datetime, timezone
from collections.abc import Mapping
from typing import Any, Awaitable, Callable

from stepqueue.config import get_settings
from stepqueue.errors import UnknownHandlerError
from stepqueue.types.step import StepContext, StepResult

logger = logging.getLogger(__name__)

# Type alias for step handler functions
StepHandler = Callable[[StepContext], Awaitable[dict[str, Any] | None]]

# Handler registry
_handlers: dict[str, StepHandler] = {}


def register_handler(name: str) -> Callable[[StepHandler], StepHandler]:
    """
    Decorator to register a step handler.

    Args:
        name: The handler name steps refer to in ``input["handler"]``.

    Returns:
        Decorator function.

    Example:
        @register_handler("resize_image")
        async def handle_resize(context: StepContext) -> dict:
            ...
    """
    def decorator(handler: StepHandler) -> StepHandler:
        _handlers[name] = handler
        logger.debug(f"Registered step handler: {name}")
        return handler
    return decorator


def get_handler(name: str) -> StepHandler | None:
    """
    Get the handler registered under a name.

    Args:
        name: The handler name.

    Returns:
        The handler function or None if not found.
    """
    return _handlers.get(name)


def list_handlers() -> list[str]:
    """List all registered handler names."""
    return list(_handlers.keys())


def step_options(context: StepContext) -> Mapping[str, Any]:
    """Keyword options carried in the step input, empty when it is not an object."""
    if isinstance(context.input, Mapping):
        return context.input
    return {}


# ============================================================================
# Built-in step handlers
# ============================================================================


@register_handler("simulate")
async def handle_simulate(context: StepContext) -> dict[str, Any]:
    """
    Simulated unit of work.

    Waits ``input["duration_seconds"]`` (default: the configured simulated
    work time) and reports who finished it and when.
    """
    duration = float(
        step_options(context).get("duration_seconds", get_settings().simulated_work_seconds)
    )

    logger.info(
        "Simulating work",
        extra={"step_id": str(context.step_id), "duration": duration},
    )

    await asyncio.sleep(duration)

    return {
        "completed_at": datetime.now(timezone.utc).isoformat(),
        "worker": context.worker_id,
    }


@register_handler("echo")
async def handle_echo(context: StepContext) -> dict[str, Any]:
    """Return the step input as output."""
    return {"echo": context.input}


@register_handler("sleep")
async def handle_sleep(context: StepContext) -> dict[str, Any]:
    """
    Sleep for ``input["duration_seconds"]`` (default 1).

    Useful for exercising lease expiry with long steps.
    """
    duration = float(step_options(context).get("duration_seconds", 1))
    await asyncio.sleep(duration)
    return {"slept_for": duration}


async def execute_step(context: StepContext) -> StepResult:
    """
    Execute a step using the handler named in its input.

    Handler exceptions propagate to the caller.

    Args:
        context: The step context.

    Returns:
        StepResult with the handler output and wall time.

    Raises:
        UnknownHandlerError: If the step names an unregistered handler.
    """
    name = step_options(context).get("handler") or get_settings().default_handler

    handler = get_handler(name)
    if handler is None:
        raise UnknownHandlerError(name)

    start = time.monotonic()
    output = await handler(context)
    duration_ms = (time.monotonic() - start) * 1000

    return StepResult(output=output, duration_ms=duration_ms)
