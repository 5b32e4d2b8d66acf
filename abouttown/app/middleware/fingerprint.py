"""Fingerprint stage: refuses floods of near-identical requests."""

from typing import Optional, Sequence

from fastapi import Request

from abouttown.app.core.utils import get_client_ip
from abouttown.app.exceptions import FingerprintFlood
from abouttown.app.middleware.bot_detection import is_verified_crawler
from abouttown.app.middleware.pipeline import AdmissionStage
from abouttown.app.services.fingerprint import FingerprintTracker, FingerprintVerdict


class FingerprintStage(AdmissionStage):
    name = "fingerprint"

    def __init__(self, tracker: FingerprintTracker, prefixes: Optional[Sequence[str]] = ("/api",)):
        super().__init__(prefixes)
        self.tracker = tracker

    async def admit(self, request: Request) -> Optional[FingerprintVerdict]:
        # Verified search engine crawlers go straight to rate limiting.
        if is_verified_crawler(request):
            return None

        verdict = self.tracker.record(
            get_client_ip(request),
            request.headers.get("user-agent"),
            request.headers.get("accept-language"),
        )
        if verdict.denied:
            raise FingerprintFlood()
        return verdict
