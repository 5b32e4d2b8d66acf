"""Per-IP suspicion tracking and temporary blocking.

Every suspicious signal about an IP (scraper User-Agent, missing browser
headers, honeypot hit, request flood, ...) is recorded here. Once an IP
collects ``block_threshold`` marks it is blocked. A blocked IP that stays
quiet for ``block_duration`` seconds is unblocked and starts from zero.

State is per process.
"""

import time
from dataclasses import dataclass, field, replace
from typing import Dict, List, Optional, Set

from abouttown.app.core.counter_store import Clock
from abouttown.app.core.logging import get_log_context, get_logger

logger = get_logger(__name__)


@dataclass
class SuspicionEntry:
    ip: str
    count: int
    first_seen_at: float
    last_seen_at: float
    blocked: bool = False
    reasons: Set[str] = field(default_factory=set)

    def copy(self) -> "SuspicionEntry":
        return replace(self, reasons=set(self.reasons))


class SuspicionLedger:
    """Suspicion counts and block state keyed by client IP."""

    def __init__(
        self,
        block_threshold: int = 10,
        block_duration: float = 60 * 60,
        idle_eviction: float = 2 * 60 * 60,
        clock: Clock = time.time,
    ) -> None:
        if block_threshold < 1:
            raise ValueError("block_threshold must be at least 1")
        if block_duration <= 0 or idle_eviction <= 0:
            raise ValueError("block_duration and idle_eviction must be positive")
        self.block_threshold = block_threshold
        self.block_duration = block_duration
        self.idle_eviction = idle_eviction
        self._clock = clock
        self._entries: Dict[str, SuspicionEntry] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def mark_suspicious(self, ip: str, reason: str) -> SuspicionEntry:
        """Record one suspicious signal for ``ip``.

        Returns:
            A copy of the entry after the update
        """
        now = self._clock()
        entry = self._entries.get(ip)
        if entry is None:
            entry = SuspicionEntry(ip=ip, count=0, first_seen_at=now, last_seen_at=now)
            self._entries[ip] = entry
        else:
            self._expire_block(entry, now)

        entry.count += 1
        entry.reasons.add(reason)
        entry.last_seen_at = now

        if entry.count >= self.block_threshold and not entry.blocked:
            entry.blocked = True
            logger.warning(
                f"IP blocked after {entry.count} suspicious requests",
                extra=get_log_context(client_ip=ip, reason=",".join(sorted(entry.reasons))),
            )

        return entry.copy()

    def _expire_block(self, entry: SuspicionEntry, now: float) -> bool:
        if entry.blocked and now - entry.last_seen_at > self.block_duration:
            entry.blocked = False
            entry.count = 0
            entry.reasons = set()
            logger.info("IP block expired", extra=get_log_context(client_ip=entry.ip))
            return True
        return False

    def is_blocked(self, ip: str) -> bool:
        entry = self._entries.get(ip)
        if entry is None:
            return False
        self._expire_block(entry, self._clock())
        return entry.blocked

    def get(self, ip: str) -> Optional[SuspicionEntry]:
        entry = self._entries.get(ip)
        return entry.copy() if entry is not None else None

    def snapshot(self) -> List[SuspicionEntry]:
        return [entry.copy() for entry in list(self._entries.values())]

    def blocked_count(self) -> int:
        return sum(1 for entry in self._entries.values() if entry.blocked)

    def clear(self) -> None:
        self._entries.clear()

    def sweep(self) -> int:
        """Unblock cooled-down IPs and evict idle unblocked ones.

        Returns:
            Number of entries evicted
        """
        now = self._clock()
        evicted = 0
        for ip in list(self._entries):
            entry = self._entries.get(ip)
            if entry is None:
                continue
            if entry.blocked:
                self._expire_block(entry, now)
            elif now - entry.last_seen_at > self.idle_eviction:
                del self._entries[ip]
                evicted += 1
        return evicted
