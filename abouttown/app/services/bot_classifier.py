"""User-Agent classification for the bot detection stage."""

from dataclasses import dataclass
from enum import Enum
from typing import Mapping, Optional, Sequence, Tuple

from abouttown.app.services.bot_patterns import (
    ALLOWED_CRAWLERS,
    DENIED_AGENTS,
    REQUIRED_BROWSER_HEADERS,
    UserAgentRule,
)


class Decision(str, Enum):
    ALLOW_CRAWLER = "allow-crawler"
    DENY = "deny"
    UNCLASSIFIED = "unclassified"


@dataclass(frozen=True)
class Classification:
    decision: Decision
    matched_pattern: Optional[str] = None
    suspicious_user_agent: bool = False
    # Browser headers absent from the request; empty when no headers were given
    missing_headers: Tuple[str, ...] = ()


class BotClassifier:
    """Matches a User-Agent against the allow and deny tables.

    A missing or very short User-Agent is reported through
    ``suspicious_user_agent`` regardless of the pattern decision. When the
    request headers are passed, the browser headers they lack are reported
    through ``missing_headers``.
    """

    def __init__(
        self,
        allow_search_engines: bool = True,
        min_user_agent_length: int = 10,
        allow_rules: Sequence[UserAgentRule] = ALLOWED_CRAWLERS,
        deny_rules: Sequence[UserAgentRule] = DENIED_AGENTS,
    ) -> None:
        self.allow_search_engines = allow_search_engines
        self.min_user_agent_length = min_user_agent_length
        self._allow_rules = list(allow_rules)
        self._deny_rules = list(deny_rules)

    def classify(self, user_agent: Optional[str], headers: Optional[Mapping[str, str]] = None) -> Classification:
        user_agent = user_agent or ""
        suspicious = len(user_agent) < self.min_user_agent_length
        missing = self._missing_headers(headers)

        if self.allow_search_engines:
            for rule in self._allow_rules:
                if rule.pattern.search(user_agent):
                    return Classification(Decision.ALLOW_CRAWLER, rule.label, suspicious, missing)

        for rule in self._deny_rules:
            if rule.pattern.search(user_agent):
                return Classification(Decision.DENY, rule.label, suspicious, missing)

        return Classification(Decision.UNCLASSIFIED, None, suspicious, missing)

    @staticmethod
    def _missing_headers(headers: Optional[Mapping[str, str]]) -> Tuple[str, ...]:
        if headers is None:
            return ()
        present = {name.lower() for name, value in headers.items() if value}
        return tuple(name for name in REQUIRED_BROWSER_HEADERS if name not in present)
