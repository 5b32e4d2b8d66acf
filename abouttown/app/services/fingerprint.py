"""Detection of floods of near-identical requests.

A fingerprint is the client IP plus a truncated User-Agent and
Accept-Language. Browsers sending real traffic vary these rarely but also
rarely fire dozens of requests a minute; scripted clients do both.
"""

import time
from collections import deque
from dataclasses import dataclass
from typing import Deque, Dict, Optional

from abouttown.app.core.counter_store import Clock
from abouttown.app.core.logging import get_log_context, get_logger
from abouttown.app.services.suspicion import SuspicionLedger

logger = get_logger(__name__)

USER_AGENT_PREFIX = 100
LANGUAGE_PREFIX = 50
FLOOD_REASON = "rapid-identical-requests"


@dataclass(frozen=True)
class FingerprintVerdict:
    count: int
    flagged: bool
    denied: bool


def fingerprint_key(ip: str, user_agent: Optional[str], accept_language: Optional[str]) -> str:
    return f"{ip}|{(user_agent or '')[:USER_AGENT_PREFIX]}|{(accept_language or '')[:LANGUAGE_PREFIX]}"


class FingerprintTracker:
    """Sliding window of request timestamps per fingerprint."""

    def __init__(
        self,
        ledger: SuspicionLedger,
        window_seconds: float = 60,
        max_identical_requests: int = 20,
        clock: Clock = time.time,
    ) -> None:
        if window_seconds <= 0:
            raise ValueError("window_seconds must be positive")
        if max_identical_requests < 1:
            raise ValueError("max_identical_requests must be at least 1")
        self.ledger = ledger
        self.window_seconds = window_seconds
        self.max_identical_requests = max_identical_requests
        self._clock = clock
        self._windows: Dict[str, Deque[float]] = {}

    def __len__(self) -> int:
        return len(self._windows)

    def _prune(self, samples: Deque[float], now: float) -> None:
        while samples and now - samples[0] >= self.window_seconds:
            samples.popleft()

    def record(self, ip: str, user_agent: Optional[str], accept_language: Optional[str]) -> FingerprintVerdict:
        now = self._clock()
        key = fingerprint_key(ip, user_agent, accept_language)
        samples = self._windows.setdefault(key, deque())
        self._prune(samples, now)
        samples.append(now)

        count = len(samples)
        flagged = count > self.max_identical_requests
        denied = count > 2 * self.max_identical_requests

        if flagged:
            self.ledger.mark_suspicious(ip, FLOOD_REASON)
        if denied:
            logger.warning(
                f"Fingerprint flood: {count} identical requests in {self.window_seconds}s",
                extra=get_log_context(client_ip=ip, reason=FLOOD_REASON),
            )

        return FingerprintVerdict(count=count, flagged=flagged, denied=denied)

    def count(self, ip: str, user_agent: Optional[str], accept_language: Optional[str]) -> int:
        samples = self._windows.get(fingerprint_key(ip, user_agent, accept_language))
        if not samples:
            return 0
        now = self._clock()
        return sum(1 for t in samples if now - t < self.window_seconds)

    def clear(self) -> None:
        self._windows.clear()

    def sweep(self) -> int:
        """Prune every window and drop empty ones.

        Returns:
            Number of windows removed
        """
        now = self._clock()
        removed = 0
        for key in list(self._windows):
            samples = self._windows.get(key)
            if samples is None:
                continue
            self._prune(samples, now)
            if not samples:
                del self._windows[key]
                removed += 1
        return removed
