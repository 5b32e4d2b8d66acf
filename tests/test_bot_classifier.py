"""Tests for User-Agent classification."""

import pytest

from abouttown.app.services.bot_classifier import BotClassifier, Decision

CHROME = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)


@pytest.fixture
def classifier():
    return BotClassifier()


@pytest.mark.parametrize(
    "user_agent",
    [
        "Mozilla/5.0 (compatible; Googlebot/2.1; +http://www.google.com/bot.html)",
        "Mozilla/5.0 (compatible; bingbot/2.0; +http://www.bing.com/bingbot.htm)",
        "Mozilla/5.0 (compatible; Yahoo! Slurp; http://help.yahoo.com/help/us/ysearch/slurp)",
        "DuckDuckBot/1.1; (+http://duckduckgo.com/duckduckbot.html)",
        "Mozilla/5.0 (compatible; Baiduspider/2.0; +http://www.baidu.com/search/spider.html)",
        "facebookexternalhit/1.1 (+http://www.facebook.com/externalhit_uatext.php)",
        "Slackbot-LinkExpanding 1.0 (+https://api.slack.com/robots)",
    ],
)
def test_search_engines_are_allowed(classifier, user_agent):
    result = classifier.classify(user_agent)
    assert result.decision is Decision.ALLOW_CRAWLER
    assert result.suspicious_user_agent is False


def test_googlebot_compatible_string(classifier):
    result = classifier.classify("Mozilla/5.0 (compatible; Googlebot/2.1)")
    assert result.decision is Decision.ALLOW_CRAWLER
    assert result.matched_pattern == "googlebot"


@pytest.mark.parametrize(
    ("user_agent", "label"),
    [
        ("python-requests/2.31.0", "python-requests"),
        ("Scrapy/2.11.0 (+https://scrapy.org)", "scrapy"),
        ("Wget/1.21.4 (linux-gnu)", "wget"),
        ("Mozilla/5.0 (X11; Linux x86_64) HeadlessChrome/120.0.0.0", "headless"),
        ("axios/1.6.2 something", "axios"),
        ("Mozilla/5.0 (compatible; AhrefsBot/7.0; +http://ahrefs.com/robot/)", "bot"),
        ("SomeCrawler/3.0 (data collection)", "crawler"),
        ("Mozilla/5.0 sqlmap/1.7 (https://sqlmap.org)", "sqlmap"),
        ("Offline Explorer/8.2 (Windows)", "offline.*explorer"),
    ],
)
def test_scrapers_are_denied(classifier, user_agent, label):
    result = classifier.classify(user_agent)
    assert result.decision is Decision.DENY
    assert result.matched_pattern == label


def test_browser_is_unclassified(classifier):
    result = classifier.classify(CHROME)
    assert result.decision is Decision.UNCLASSIFIED
    assert result.matched_pattern is None
    assert result.suspicious_user_agent is False


def test_generic_rules_do_not_match_search_engine_names():
    # Without the allow list, the generic deny rules still skip named crawlers.
    classifier = BotClassifier(allow_search_engines=False)
    result = classifier.classify("Mozilla/5.0 (compatible; Googlebot/2.1)")
    assert result.decision is Decision.UNCLASSIFIED


def test_allow_list_can_be_disabled_for_other_matches():
    classifier = BotClassifier(allow_search_engines=False)
    result = classifier.classify("TelegramBot (like TwitterBot) curl")
    assert result.decision is Decision.DENY
    assert result.matched_pattern == "curl"


@pytest.mark.parametrize("user_agent", [None, "", "curl/8.0", "Mozilla"])
def test_missing_or_short_user_agent_is_suspicious(classifier, user_agent):
    assert classifier.classify(user_agent).suspicious_user_agent is True


def test_short_user_agent_is_independent_of_decision(classifier):
    result = classifier.classify("curl/8.0")
    assert result.decision is Decision.DENY
    assert result.suspicious_user_agent is True


def test_minimum_length_is_configurable():
    classifier = BotClassifier(min_user_agent_length=3)
    assert classifier.classify("Mozilla").suspicious_user_agent is False


def test_missing_browser_headers_are_reported(classifier):
    result = classifier.classify(CHROME, {"Accept": "text/html", "Accept-Language": ""})
    assert result.decision is Decision.UNCLASSIFIED
    assert result.missing_headers == ("accept-language",)


def test_complete_browser_headers(classifier):
    result = classifier.classify(CHROME, {"accept": "text/html", "accept-language": "en-US"})
    assert result.missing_headers == ()


def test_headers_not_given_reports_nothing_missing(classifier):
    assert classifier.classify(CHROME).missing_headers == ()
