"""Bot detection stage.

Refuses requests from blocked IPs and from automated clients identified by
their User-Agent. In strict mode it also flags requests that do not look
like browser traffic and answers path scans with a 404.
"""

from typing import Optional, Sequence

from fastapi import Request

from abouttown.app.core.logging import get_log_context, get_logger
from abouttown.app.core.utils import get_client_ip
from abouttown.app.exceptions import AccessDenied, ScanDetected
from abouttown.app.middleware.pipeline import AdmissionStage
from abouttown.app.services.bot_classifier import BotClassifier, Decision
from abouttown.app.services.bot_patterns import SCAN_PATTERNS
from abouttown.app.services.suspicion import SuspicionLedger

logger = get_logger(__name__)

BLOCKED_IP_MESSAGE = "Your IP has been temporarily blocked due to suspicious activity."
INVALID_REQUEST_MESSAGE = "Invalid request."
AUTOMATION_MESSAGE = "Automated access is not permitted."


def is_verified_crawler(request: Request) -> bool:
    return bool(getattr(request.state, "verified_crawler", False))


class BotDetectionStage(AdmissionStage):
    name = "bot-detection"

    def __init__(
        self,
        classifier: BotClassifier,
        ledger: SuspicionLedger,
        block_bots: bool = True,
        strict_mode: bool = True,
        log_suspicious: bool = True,
        max_query_params: int = 15,
        max_url_length: int = 2000,
        prefixes: Optional[Sequence[str]] = ("/api",),
    ):
        super().__init__(prefixes)
        self.classifier = classifier
        self.ledger = ledger
        self.block_bots = block_bots
        self.strict_mode = strict_mode
        self.log_suspicious = log_suspicious
        self.max_query_params = max_query_params
        self.max_url_length = max_url_length

    def _warn(self, message: str, request: Request, ip: str, reason: str) -> None:
        if self.log_suspicious:
            logger.warning(
                message,
                extra=get_log_context(
                    request_id=getattr(request.state, "request_id", None),
                    client_ip=ip,
                    path=request.url.path,
                    reason=reason,
                ),
            )

    async def admit(self, request: Request) -> None:
        ip = get_client_ip(request)
        request.state.verified_crawler = False

        if self.ledger.is_blocked(ip):
            self._warn("Request from blocked IP", request, ip, "blocked-ip")
            raise AccessDenied(BLOCKED_IP_MESSAGE)

        user_agent = request.headers.get("user-agent", "")
        classification = self.classifier.classify(user_agent, request.headers)

        if classification.decision is Decision.ALLOW_CRAWLER:
            request.state.verified_crawler = True
            return None

        if classification.suspicious_user_agent:
            self.ledger.mark_suspicious(ip, "missing-user-agent")
            if self.block_bots:
                self._warn("Missing or short User-Agent", request, ip, "missing-user-agent")
                raise AccessDenied(INVALID_REQUEST_MESSAGE)

        if classification.decision is Decision.DENY and self.block_bots:
            self.ledger.mark_suspicious(ip, f"blocked-user-agent:{user_agent[:50]}")
            self._warn(f"Blocked scraper User-Agent: {user_agent[:100]}", request, ip, classification.matched_pattern)
            raise AccessDenied(AUTOMATION_MESSAGE)

        if self.strict_mode:
            self._check_strict(request, ip, classification.missing_headers)
        return None

    def _check_strict(self, request: Request, ip: str, missing_headers: Sequence[str]) -> None:
        for header in missing_headers:
            self.ledger.mark_suspicious(ip, f"missing-header:{header}")
            self._warn(f"Request missing {header} header", request, ip, f"missing-header:{header}")

        query_param_count = len(request.query_params.keys())
        if query_param_count > self.max_query_params:
            self.ledger.mark_suspicious(ip, "too-many-query-params")
            self._warn(f"Request with {query_param_count} query params", request, ip, "too-many-query-params")

        target = request.url.path
        if request.url.query:
            target = f"{target}?{request.url.query}"

        if len(target) > self.max_url_length:
            self.ledger.mark_suspicious(ip, "url-too-long")
            self._warn(f"Long URL ({len(target)} chars)", request, ip, "url-too-long")

        for pattern in SCAN_PATTERNS:
            if pattern.search(target):
                self.ledger.mark_suspicious(ip, f"scanning-attempt:{pattern.pattern}")
                self._warn(f"Possible scanning attempt: {target[:200]}", request, ip, "scanning-attempt")
                raise ScanDetected()
