"""
Shutdown signalling for worker processes.
"""

import asyncio
import logging
import signal
from collections.abc import Iterable

logger = logging.getLogger(__name__)


class ShutdownSignal:
    """
    Cancellation token passed from the process into the worker loop.

    Requesting shutdown never interrupts anything. The loop checks the
    token before it starts a new claim and stops once nothing is held.
    """

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self.reason: str | None = None

    @property
    def is_requested(self) -> bool:
        return self._event.is_set()

    def request(self, reason: str = "requested") -> None:
        """Request shutdown. Safe to call any number of times."""
        if self._event.is_set():
            return
        self.reason = reason
        self._event.set()
        logger.info("Shutdown requested", extra={"reason": reason})

    async def wait_for(self, timeout: float) -> bool:
        """
        Wait up to ``timeout`` seconds for a shutdown request.

        Returns:
            True if shutdown was requested before the timeout.
        """
        try:
            await asyncio.wait_for(self._event.wait(), timeout=timeout)
        except asyncio.TimeoutError:
            return False
        return True

    def install(
        self,
        loop: asyncio.AbstractEventLoop,
        signals: Iterable[signal.Signals] = (signal.SIGTERM, signal.SIGINT),
    ) -> None:
        """
        Request shutdown when the process receives one of ``signals``.

        Args:
            loop: The running event loop.
            signals: Signals that trigger graceful shutdown.
        """
        for sig in signals:
            loop.add_signal_handler(sig, self.request, sig.name)
