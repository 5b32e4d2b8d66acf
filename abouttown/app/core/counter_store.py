"""In-process fixed-window counters.

``TimedCounterStore`` is the leaf storage used by the rate limiter and the
in-memory cache fallback. Records expire lazily: a record whose window has
elapsed is treated as absent on access and removed by ``sweep()``.

State is per process. Counters held here are only globally accurate when a
single process serves all traffic.
"""

import time
from dataclasses import dataclass, replace
from typing import Callable, Dict, Optional

Clock = Callable[[], float]


@dataclass
class CounterRecord:
    """A single counting window."""
    count: int
    window_start: float
    window_seconds: float

    @property
    def window_end(self) -> float:
        return self.window_start + self.window_seconds

    def is_expired(self, now: float) -> bool:
        return now > self.window_end


class TimedCounterStore:
    """Map of string key to a fixed-window counter.

    All operations are synchronous, so an increment-and-check sequence
    cannot interleave with another one on the same event loop.
    """

    def __init__(self, clock: Clock = time.time) -> None:
        self._clock = clock
        self._records: Dict[str, CounterRecord] = {}

    def __len__(self) -> int:
        return len(self._records)

    def __contains__(self, key: str) -> bool:
        return self._live(key) is not None

    def _live(self, key: str) -> Optional[CounterRecord]:
        record = self._records.get(key)
        if record is None:
            return None
        if record.is_expired(self._clock()):
            del self._records[key]
            return None
        return record

    def increment(self, key: str, window_seconds: float) -> int:
        """Count one event for ``key``.

        Starts a fresh window with ``count=1`` when no live record exists,
        otherwise increments the existing record without touching its window.

        Args:
            key: Counter key
            window_seconds: Window length used when a new record is created

        Returns:
            The count after this increment

        Raises:
            ValueError: If ``window_seconds`` is not positive
        """
        if window_seconds <= 0:
            raise ValueError(f"window_seconds must be positive, got {window_seconds!r}")

        record = self._live(key)
        if record is None:
            self._records[key] = CounterRecord(
                count=1,
                window_start=self._clock(),
                window_seconds=window_seconds,
            )
            return 1

        record.count += 1
        return record.count

    def decrement(self, key: str, window_start: Optional[float] = None) -> int:
        """Take one event back from ``key``.

        If ``window_start`` is given and the live record belongs to a
        different window, nothing changes. The count never drops below 0.
        """
        record = self._live(key)
        if record is None:
            return 0
        if window_start is not None and record.window_start != window_start:
            return record.count
        record.count = max(0, record.count - 1)
        return record.count

    def peek(self, key: str) -> int:
        record = self._records.get(key)
        if record is None or record.is_expired(self._clock()):
            return 0
        return record.count

    def get(self, key: str) -> Optional[CounterRecord]:
        """Return a copy of the live record for ``key``, if any."""
        record = self._live(key)
        return replace(record) if record is not None else None

    def reset(self, key: str) -> None:
        self._records.pop(key, None)

    def clear(self) -> None:
        self._records.clear()

    def sweep(self) -> int:
        """Remove every expired record.

        Returns:
            Number of records removed
        """
        now = self._clock()
        expired = [key for key, record in list(self._records.items()) if record.is_expired(now)]
        for key in expired:
            self._records.pop(key, None)
        return len(expired)
