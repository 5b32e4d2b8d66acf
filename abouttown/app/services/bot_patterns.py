"""User-Agent policy table.

Allow rules are checked before deny rules and the first match wins. The
table is data only; ``bot_classifier`` walks it.
"""

import re
from dataclasses import dataclass
from enum import Enum
from typing import List, Tuple


class RuleCategory(str, Enum):
    ALLOW = "allow"
    DENY = "deny"


@dataclass(frozen=True)
class UserAgentRule:
    pattern: re.Pattern
    category: RuleCategory
    label: str


# Engines whose crawler names end in a generic word ("bot", "spider").
_ENGINE_NAMES = ("google", "bing", "yahoo", "duckduck", "baidu", "yandex")
_NAMED_BOTS = ("google", "bing", "duckduck", "yandex", "twitter", "linkedin", "telegram", "discord", "slack")

_LOOKAHEAD = "(?!.*(?:" + "|".join(_ENGINE_NAMES) + "))"


def _not_preceded_by(names: Tuple[str, ...]) -> str:
    return "".join(f"(?<!{name})" for name in names)


def _rule(pattern: str, category: RuleCategory, label: str = "") -> UserAgentRule:
    return UserAgentRule(re.compile(pattern, re.IGNORECASE), category, label or pattern)


ALLOWED_CRAWLERS: List[UserAgentRule] = [
    _rule(pattern, RuleCategory.ALLOW)
    for pattern in (
        "googlebot",
        "bingbot",
        "slurp",  # Yahoo
        "duckduckbot",
        "baiduspider",
        "yandexbot",
        "facebookexternalhit",
        "twitterbot",
        "linkedinbot",
        "whatsapp",
        "telegrambot",
        "discordbot",
        "slackbot",
    )
]

DENIED_AGENTS: List[UserAgentRule] = [
    # Scraping tools and HTTP libraries
    _rule("scrapy", RuleCategory.DENY),
    _rule("python-requests", RuleCategory.DENY),
    _rule("python-urllib", RuleCategory.DENY),
    _rule("curl", RuleCategory.DENY),
    _rule("wget", RuleCategory.DENY),
    _rule("httpie", RuleCategory.DENY),
    _rule("postman", RuleCategory.DENY),
    _rule("insomnia", RuleCategory.DENY),
    _rule("axios", RuleCategory.DENY),
    _rule("node-fetch", RuleCategory.DENY),
    _rule("got/", RuleCategory.DENY),
    _rule("undici", RuleCategory.DENY),
    # Headless browsers and drivers
    _rule("headless", RuleCategory.DENY),
    _rule("phantomjs", RuleCategory.DENY),
    _rule("selenium", RuleCategory.DENY),
    _rule("puppeteer", RuleCategory.DENY),
    _rule("playwright", RuleCategory.DENY),
    _rule("webdriver", RuleCategory.DENY),
    # Generic automation, excluding the search engines' own crawlers
    _rule(_not_preceded_by(_NAMED_BOTS) + "bot" + _LOOKAHEAD, RuleCategory.DENY, "bot"),
    _rule("crawler" + _LOOKAHEAD, RuleCategory.DENY, "crawler"),
    _rule(_not_preceded_by(("baidu",)) + "spider" + _LOOKAHEAD, RuleCategory.DENY, "spider"),
    _rule("scraper", RuleCategory.DENY),
    _rule("harvest", RuleCategory.DENY),
    # Site copiers
    _rule("httrack", RuleCategory.DENY),
    _rule("offline.*explorer", RuleCategory.DENY),
    _rule("teleport", RuleCategory.DENY),
    _rule("websitequester", RuleCategory.DENY),
    _rule("webcopier", RuleCategory.DENY),
    _rule("webcollector", RuleCategory.DENY),
    _rule("sitesnagger", RuleCategory.DENY),
    _rule("webripper", RuleCategory.DENY),
    _rule("grabber", RuleCategory.DENY),
    # Vulnerability scanners
    _rule("nikto", RuleCategory.DENY),
    _rule("sqlmap", RuleCategory.DENY),
    _rule("nmap", RuleCategory.DENY),
    _rule("masscan", RuleCategory.DENY),
    _rule("zmeu", RuleCategory.DENY),
    _rule("morfeus", RuleCategory.DENY),
]

# Path fragments probed by vulnerability scanners.
SCAN_PATTERNS: List[re.Pattern] = [
    re.compile(pattern, re.IGNORECASE)
    for pattern in (
        r"\.env",
        r"\.git",
        r"wp-admin",
        r"wp-login",
        r"phpmyadmin",
        r"\.sql",
        r"backup",
        r"config\.",
        r"\.bak",
    )
]

REQUIRED_BROWSER_HEADERS: Tuple[str, ...] = ("accept", "accept-language")
