"""
Polling backoff for workers.

Doubling delay between unproductive cycles, capped, with proportional jitter
so that many idle workers do not poll the store in lockstep.
"""

import random

from stepqueue.config import get_settings


class Backoff:
    """
    Exponential backoff with jitter.

    Each call to ``next_delay`` returns the current delay, jittered by up to
    ``jitter_fraction`` of itself in either direction, and then doubles the
    current delay up to ``ceiling``. ``reset`` goes back to ``floor``.
    """

    def __init__(
        self,
        floor: float,
        ceiling: float,
        jitter_fraction: float = 0.2,
        rng: random.Random | None = None,
    ):
        """
        Args:
            floor: Initial delay in seconds.
            ceiling: Maximum delay in seconds.
            jitter_fraction: Jitter bound as a fraction of the current delay.
            rng: Random source. Defaults to a private instance.
        """
        if floor <= 0:
            raise ValueError("floor must be positive")
        if ceiling < floor:
            raise ValueError("ceiling must be >= floor")
        if not 0 <= jitter_fraction < 1:
            raise ValueError("jitter_fraction must be in [0, 1)")

        self.floor = floor
        self.ceiling = ceiling
        self.jitter_fraction = jitter_fraction
        self._rng = rng or random.Random()
        self._current = floor

    @classmethod
    def from_settings(cls) -> "Backoff":
        """Create a backoff from application settings."""
        settings = get_settings()
        return cls(
            floor=settings.backoff_floor_seconds,
            ceiling=settings.backoff_ceiling_seconds,
            jitter_fraction=settings.backoff_jitter_fraction,
        )

    @property
    def current(self) -> float:
        """Un-jittered delay the next call will be based on."""
        return self._current

    def next_delay(self) -> float:
        """Get the delay to wait now and advance to the next one."""
        delay = self._current
        jitter = delay * self.jitter_fraction * self._rng.uniform(-1.0, 1.0)
        self._current = min(self._current * 2, self.ceiling)
        return max(0.0, delay + jitter)

    def reset(self) -> None:
        """Return to the floor delay after a productive cycle."""
        self._current = self.floor
