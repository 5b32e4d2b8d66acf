"""Cleanup scheduling for in-process state.

Sweeps are only ever triggered from request handling. A short-lived or
serverless process cannot rely on a background timer surviving between
invocations, so no timers are started here.
"""

import random
import time
from abc import ABC, abstractmethod
from typing import Callable, Optional

from abouttown.app.core.config import Settings
from abouttown.app.core.logging import get_logger

logger = get_logger(__name__)

SweepFn = Callable[[], int]


class Sweeper(ABC):
    """Decides whether a cleanup pass should run on the current request."""

    @abstractmethod
    def due(self) -> bool:
        pass

    def maybe_sweep(self, *sweeps: SweepFn) -> Optional[int]:
        """Run all ``sweeps`` if a pass is due.

        Returns:
            Total number of removed entries, or None if no pass ran
        """
        if not self.due():
            return None
        removed = sum(sweep() for sweep in sweeps)
        if removed:
            logger.debug(f"Sweep removed {removed} expired entries")
        return removed


class EveryRequestSweeper(Sweeper):
    """Sweep on every request."""

    def due(self) -> bool:
        return True


class ProbabilisticSweeper(Sweeper):
    """Sweep on a random fraction of requests."""

    def __init__(self, probability: float = 0.01, rng: Optional[random.Random] = None) -> None:
        if not 0.0 <= probability <= 1.0:
            raise ValueError("probability must be between 0 and 1")
        self.probability = probability
        self._rng = rng or random.Random()

    def due(self) -> bool:
        return self._rng.random() < self.probability


class IntervalSweeper(Sweeper):
    """Sweep at most once per ``interval_seconds``, checked on request."""

    def __init__(self, interval_seconds: float = 60.0, clock: Callable[[], float] = time.time) -> None:
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be positive")
        self.interval_seconds = interval_seconds
        self._clock = clock
        self._last_run: Optional[float] = None

    def due(self) -> bool:
        now = self._clock()
        if self._last_run is not None and now - self._last_run < self.interval_seconds:
            return False
        self._last_run = now
        return True


def create_sweeper(settings: Settings, clock: Callable[[], float] = time.time) -> Sweeper:
    """Build the sweeper selected by ``settings.cleanup_strategy``."""
    if settings.cleanup_strategy == "every_request":
        return EveryRequestSweeper()
    if settings.cleanup_strategy == "probabilistic":
        return ProbabilisticSweeper(settings.cleanup_probability)
    return IntervalSweeper(settings.cleanup_interval_seconds, clock=clock)
