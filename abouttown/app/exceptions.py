"""Custom exceptions for the About Town API."""

from typing import Any, Dict, Optional

from fastapi.responses import JSONResponse


class AboutTownException(Exception):
    """Base class for application exceptions with an HTTP status code.

    All custom exceptions should inherit from this class and define
    their specific status_code for consistent HTTP response handling.
    """
    status_code: int = 500

    def __init__(self, message: str = "Internal server error"):
        self.message = message
        super().__init__(message)


class PolicyViolation(AboutTownException):
    """A request was refused by the admission pipeline.

    Subclasses render a stable JSON body that never includes the internal
    reason for the refusal.
    """
    status_code = 403
    error = "Access denied"

    def __init__(self, message: Optional[str] = None, headers: Optional[Dict[str, str]] = None):
        self.headers = dict(headers or {})
        super().__init__(message or self.error)

    def body(self) -> Dict[str, Any]:
        return {"error": self.error, "message": self.message}

    def to_response(self) -> JSONResponse:
        return JSONResponse(
            status_code=self.status_code,
            content=self.body(),
            headers=self.headers or None,
        )


class AccessDenied(PolicyViolation):
    """Blocked IP, scraper User-Agent, or missing User-Agent.

    Maps to HTTP 403 Forbidden.
    """
    status_code = 403
    error = "Access denied"


class ScanDetected(PolicyViolation):
    """Request path looks like a vulnerability scan.

    Maps to HTTP 404 so the client cannot tell detection happened.
    """
    status_code = 404
    error = "Not found"

    def body(self) -> Dict[str, Any]:
        return {"error": self.error}


class FingerprintFlood(PolicyViolation):
    """Too many near-identical requests in a short window.

    Maps to HTTP 429 Too Many Requests.
    """
    status_code = 429
    error = "Too many requests"

    def __init__(self, message: str = "Please slow down."):
        super().__init__(message)


class RateLimitExceeded(PolicyViolation):
    """A rate limiter's window quota is used up.

    Maps to HTTP 429 Too Many Requests. The body carries the limit and
    window so clients can back off correctly.
    """
    status_code = 429

    def __init__(
        self,
        message: str,
        retry_after: int,
        limit: int,
        window_ms: int,
        headers: Optional[Dict[str, str]] = None,
    ):
        self.retry_after = retry_after
        self.limit = limit
        self.window_ms = window_ms
        super().__init__(message, headers=headers)

    def body(self) -> Dict[str, Any]:
        return {
            "error": self.message,
            "retryAfter": self.retry_after,
            "limit": self.limit,
            "windowMs": self.window_ms,
        }


class ConfigurationError(AboutTownException):
    """An operation was called without the configuration it requires.

    This is a programming error and is never converted into a fallback.
    """


class CacheBackendError(AboutTownException):
    """A remote cache call failed (bad status, malformed payload, ...).

    Always caught inside the cache layer and turned into a local fallback.
    """
    status_code = 503
