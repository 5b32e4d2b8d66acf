"""Composition root for the admission pipeline.

``build_context`` wires every stateful component for one application
instance. ``create_app`` keeps the result on ``app.state.context`` so tests
can build as many isolated applications as they need.
"""

import time
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from abouttown.app.core.cache import Cache, create_cache
from abouttown.app.core.config import Settings, get_settings
from abouttown.app.core.counter_store import Clock
from abouttown.app.core.sweep import SweepFn, Sweeper, create_sweeper
from abouttown.app.middleware.bot_detection import BotDetectionStage
from abouttown.app.middleware.fingerprint import FingerprintStage
from abouttown.app.middleware.pipeline import AdmissionStage
from abouttown.app.middleware.rate_limit import RateLimiter
from abouttown.app.middleware.rate_limit.presets import PRESET_NAMES, create_preset
from abouttown.app.middleware.security_headers import SecurityHeadersStage
from abouttown.app.services.bot_classifier import BotClassifier
from abouttown.app.services.fingerprint import FingerprintTracker
from abouttown.app.services.suspicion import SuspicionLedger

HONEYPOT_PATHS = (
    "/api/v1/bills",
    "/api/v2/bills",
    "/api/export",
    "/api/download",
    "/api/dump",
    "/api/all-data",
    "/api/bulk",
    "/api/backup",
    "/api/data.json",
    "/api/bills.json",
    "/api/sitemap",
    "/api/admin",
    "/api/internal",
    "/wp-admin",
    "/wp-login.php",
    "/.env",
    "/.git/config",
)


@dataclass
class AppContext:
    """All per-application admission state."""
    settings: Settings
    cache: Cache
    ledger: SuspicionLedger
    classifier: BotClassifier
    fingerprints: FingerprintTracker
    limiters: Dict[str, RateLimiter]
    sweeper: Sweeper
    clock: Clock = time.time
    honeypot_paths: List[str] = field(default_factory=lambda: list(HONEYPOT_PATHS))

    @property
    def exempt_paths(self) -> List[str]:
        return self.honeypot_paths if self.settings.honeypot_enabled else []

    def pipeline_limiters(self) -> List[RateLimiter]:
        """Limiters applied to every protected request, in order."""
        names = ["burst", "api"] if self.settings.rate_limit_burst_enabled else ["api"]
        return [self.limiters[name] for name in names]

    def stages(self) -> List[AdmissionStage]:
        settings = self.settings
        prefixes = settings.bot_protected_prefixes
        stages: List[AdmissionStage] = [
            SecurityHeadersStage(),
            BotDetectionStage(
                self.classifier,
                self.ledger,
                block_bots=settings.bot_block_bots,
                strict_mode=settings.bot_strict_mode,
                log_suspicious=settings.bot_log_suspicious,
                max_query_params=settings.bot_max_query_params,
                max_url_length=settings.bot_max_url_length,
                prefixes=prefixes,
            ),
            FingerprintStage(self.fingerprints, prefixes=prefixes),
        ]
        stages.extend(limiter.stage(prefixes) for limiter in self.pipeline_limiters())
        return stages

    def sweeps(self) -> List[SweepFn]:
        """Cleanups run by the pipeline's own sweeper."""
        return [self.ledger.sweep, self.fingerprints.sweep, self.cache.sweep]


def build_context(
    settings: Optional[Settings] = None,
    clock: Clock = time.time,
    cache: Optional[Cache] = None,
) -> AppContext:
    """Create a fresh set of admission components.

    Args:
        settings: Settings to build from (default: ``get_settings()``)
        clock: Time source shared by every component
        cache: Pre-built cache, mainly for tests with a mocked remote
    """
    settings = settings or get_settings()
    cache = cache or create_cache(settings, clock=clock)

    ledger = SuspicionLedger(
        block_threshold=settings.suspicion_block_threshold,
        block_duration=settings.suspicion_block_duration_seconds,
        idle_eviction=settings.suspicion_idle_eviction_seconds,
        clock=clock,
    )
    classifier = BotClassifier(
        allow_search_engines=settings.bot_allow_search_engines,
        min_user_agent_length=settings.bot_min_user_agent_length,
    )
    fingerprints = FingerprintTracker(
        ledger,
        window_seconds=settings.fingerprint_window_seconds,
        max_identical_requests=settings.fingerprint_max_identical_requests,
        clock=clock,
    )
    limiters = {
        name: create_preset(
            name,
            settings,
            cache=cache,
            sweeper=create_sweeper(settings, clock=clock),
            clock=clock,
        )
        for name in PRESET_NAMES
    }

    return AppContext(
        settings=settings,
        cache=cache,
        ledger=ledger,
        classifier=classifier,
        fingerprints=fingerprints,
        limiters=limiters,
        sweeper=create_sweeper(settings, clock=clock),
        clock=clock,
    )
