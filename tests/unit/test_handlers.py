"""
Unit tests for step handlers.
"""

from datetime import datetime, timedelta, timezone
from uuid import uuid4

import pytest

from stepqueue.config import get_settings
from stepqueue.errors import UnknownHandlerError
from stepqueue.types.step import StepContext
from stepqueue.worker.handlers import (
    execute_step,
    get_handler,
    handle_echo,
    handle_simulate,
    list_handlers,
    step_options,
)


class TestStepHandlers:
    """Tests for step handlers."""

    @pytest.fixture
    def step_context(self) -> StepContext:
        """Create a test step context."""
        return StepContext(
            step_id=uuid4(),
            job_id=uuid4(),
            seq=1,
            attempt=1,
            max_attempts=3,
            worker_id="test-worker",
            lease_expires_at=datetime.now(timezone.utc) + timedelta(seconds=30),
            input={"handler": "echo", "task": "step-1"},
        )

    def test_list_handlers(self):
        """Test listing registered handlers."""
        handlers = list_handlers()

        assert "simulate" in handlers
        assert "echo" in handlers
        assert "sleep" in handlers

    def test_get_handler_exists(self):
        """Test getting an existing handler."""
        assert get_handler("echo") is handle_echo

    def test_get_handler_not_exists(self):
        """Test getting a non-existent handler."""
        assert get_handler("nonexistent") is None

    async def test_echo_handler(self, step_context: StepContext):
        """Test the echo handler."""
        output = await handle_echo(step_context)

        assert output == {"echo": step_context.input}

    async def test_simulate_handler(self, step_context: StepContext):
        """Test that the simulated work reports the worker and a timestamp."""
        step_context.input = {"duration_seconds": 0}

        output = await handle_simulate(step_context)

        assert output["worker"] == "test-worker"
        assert datetime.fromisoformat(output["completed_at"]).tzinfo is not None

    async def test_execute_step_with_named_handler(self, step_context: StepContext):
        """Test execute_step dispatches on input["handler"]."""
        result = await execute_step(step_context)

        assert result.output == {"echo": step_context.input}
        assert result.duration_ms is not None
        assert result.duration_ms >= 0

    async def test_execute_step_uses_default_handler(self, step_context: StepContext):
        """Test that steps without a handler name get the default."""
        step_context.input = {"task": "step-1", "duration_seconds": 0}

        result = await execute_step(step_context)

        assert result.output["worker"] == "test-worker"

    async def test_execute_step_with_array_input(self, step_context: StepContext, monkeypatch):
        """Test that non-object input falls back to the default handler."""
        monkeypatch.setattr(get_settings(), "default_handler", "echo")
        step_context.input = ["payload"]

        result = await execute_step(step_context)

        assert result.output == {"echo": ["payload"]}

    async def test_simulate_handler_with_scalar_input(
        self,
        step_context: StepContext,
        monkeypatch,
    ):
        """Test that handler options default when the input is not an object."""
        monkeypatch.setattr(get_settings(), "simulated_work_seconds", 0)
        step_context.input = 7

        output = await handle_simulate(step_context)

        assert step_options(step_context) == {}
        assert output["worker"] == "test-worker"

    async def test_execute_step_with_unknown_handler(self, step_context: StepContext):
        """Test execute_step with an unregistered handler name."""
        step_context.input["handler"] = "nonexistent_handler"

        with pytest.raises(UnknownHandlerError) as exc_info:
            await execute_step(step_context)

        assert exc_info.value.name == "nonexistent_handler"

    async def test_execute_step_propagates_handler_errors(self, step_context: StepContext):
        """Test that handler exceptions reach the caller."""
        from stepqueue.worker.handlers import _handlers, register_handler

        @register_handler("explode")
        async def explode(context: StepContext) -> dict:
            raise RuntimeError("boom")

        step_context.input["handler"] = "explode"
        try:
            with pytest.raises(RuntimeError, match="boom"):
                await execute_step(step_context)
        finally:
            _handlers.pop("explode", None)
