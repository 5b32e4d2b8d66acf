"""Shared fixtures for the admission pipeline tests."""

from typing import Dict, Optional

import pytest
from starlette.requests import Request

from abouttown.app.core.config import Settings

BROWSER_UA = (
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0 Safari/537.36"
)

BROWSER_HEADERS = {
    "User-Agent": BROWSER_UA,
    "Accept": "application/json",
    "Accept-Language": "en-US,en;q=0.9",
}


class FakeClock:
    """Deterministic clock; call it to read the time, ``advance`` to move it."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def settings() -> Settings:
    """Settings isolated from the environment and any .env file."""
    return Settings(_env_file=None, honeypot_delay_seconds=0)


def build_request(
    path: str = "/api/bills",
    headers: Optional[Dict[str, str]] = None,
    client_ip: Optional[str] = "203.0.113.10",
    query_string: str = "",
    method: str = "GET",
) -> Request:
    """Build a bare Starlette request for unit tests."""
    raw_headers = [
        (name.lower().encode("latin-1"), value.encode("latin-1"))
        for name, value in (headers if headers is not None else BROWSER_HEADERS).items()
    ]
    scope = {
        "type": "http",
        "http_version": "1.1",
        "method": method,
        "scheme": "http",
        "path": path,
        "raw_path": path.encode(),
        "query_string": query_string.encode(),
        "headers": raw_headers,
        "client": (client_ip, 50000) if client_ip else None,
        "server": ("testserver", 80),
    }
    return Request(scope)


@pytest.fixture
def make_request():
    return build_request
