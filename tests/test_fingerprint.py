"""Tests for the fingerprint tracker."""

import pytest

from abouttown.app.services.fingerprint import FLOOD_REASON, FingerprintTracker, fingerprint_key
from abouttown.app.services.suspicion import SuspicionLedger

UA = "Mozilla/5.0 (X11; Linux x86_64) Firefox/121.0"


@pytest.fixture
def ledger(clock):
    return SuspicionLedger(block_threshold=100, clock=clock)


@pytest.fixture
def tracker(ledger, clock):
    return FingerprintTracker(ledger, window_seconds=60, max_identical_requests=20, clock=clock)


def test_key_truncates_user_agent_and_language():
    key = fingerprint_key("192.0.2.1", "u" * 150, "l" * 80)
    ip, ua, lang = key.split("|")
    assert ip == "192.0.2.1"
    assert len(ua) == 100
    assert len(lang) == 50


def test_missing_headers_in_key():
    assert fingerprint_key("192.0.2.1", None, None) == "192.0.2.1||"


def test_max_plus_one_flags_but_does_not_deny(tracker, ledger):
    for _ in range(20):
        verdict = tracker.record("192.0.2.1", UA, "en")
        assert verdict.flagged is False

    verdict = tracker.record("192.0.2.1", UA, "en")
    assert verdict.count == 21
    assert verdict.flagged is True
    assert verdict.denied is False
    assert FLOOD_REASON in ledger.get("192.0.2.1").reasons


def test_twice_max_plus_one_is_denied(tracker, ledger):
    for _ in range(40):
        verdict = tracker.record("192.0.2.1", UA, "en")
    assert verdict.denied is False

    verdict = tracker.record("192.0.2.1", UA, "en")
    assert verdict.denied is True
    # Requests 21..41 each left a mark.
    assert ledger.get("192.0.2.1").count == 21


def test_samples_expire_with_window(tracker, clock):
    for _ in range(20):
        tracker.record("192.0.2.1", UA, "en")

    clock.advance(60)
    verdict = tracker.record("192.0.2.1", UA, "en")
    assert verdict.count == 1


def test_different_fingerprints_are_counted_separately(tracker):
    for _ in range(21):
        tracker.record("192.0.2.1", UA, "en")

    assert tracker.record("192.0.2.1", UA, "de").count == 1
    assert tracker.record("192.0.2.2", UA, "en").count == 1


def test_sweep_drops_empty_windows(tracker, clock):
    tracker.record("192.0.2.1", UA, "en")
    clock.advance(30)
    tracker.record("192.0.2.2", UA, "en")

    clock.advance(31)
    assert tracker.sweep() == 1
    assert len(tracker) == 1
    assert tracker.count("192.0.2.2", UA, "en") == 1


def test_invalid_configuration(ledger):
    with pytest.raises(ValueError):
        FingerprintTracker(ledger, window_seconds=0)
    with pytest.raises(ValueError):
        FingerprintTracker(ledger, max_identical_requests=0)
