"""Utility functions for the About Town application."""

from datetime import datetime, timezone

from starlette.requests import Request


def get_client_ip(request: Request) -> str:
    """Resolve the client address for a request.

    Uses the first hop of ``X-Forwarded-For`` when present, then the socket
    peer, then ``"unknown"``.

    Examples:
        X-Forwarded-For: 203.0.113.7, 10.0.0.2  ->  "203.0.113.7"
    """
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        first_hop = forwarded.split(",")[0].strip()
        if first_hop:
            return first_hop
    if request.client and request.client.host:
        return request.client.host
    return "unknown"


def iso_utc(timestamp: float) -> str:
    """Render a POSIX timestamp as ISO-8601 UTC with milliseconds and ``Z``.

    >>> iso_utc(0)
    '1970-01-01T00:00:00.000Z'
    """
    moment = datetime.fromtimestamp(timestamp, tz=timezone.utc)
    return moment.isoformat(timespec="milliseconds").replace("+00:00", "Z")
