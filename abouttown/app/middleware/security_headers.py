"""Security and no-store caching headers for every response."""

from typing import Dict, Mapping, Optional

from fastapi import Request, Response

from abouttown.app.middleware.pipeline import AdmissionStage

SECURITY_HEADERS: Dict[str, str] = {
    "X-Frame-Options": "DENY",
    "X-Content-Type-Options": "nosniff",
    "X-XSS-Protection": "1; mode=block",
    "Referrer-Policy": "strict-origin-when-cross-origin",
    "Content-Security-Policy": (
        "default-src 'self'; "
        "script-src 'self' 'unsafe-inline' 'unsafe-eval'; "
        "style-src 'self' 'unsafe-inline';"
    ),
    # API responses must not be cached by browsers or proxies.
    "Cache-Control": "no-store, no-cache, must-revalidate, proxy-revalidate",
    "Pragma": "no-cache",
    "Expires": "0",
}


class SecurityHeadersStage(AdmissionStage):
    """Sets ``SECURITY_HEADERS`` on every response. Never refuses."""

    name = "security-headers"
    run_on_exempt_paths = True

    def __init__(self, headers: Optional[Mapping[str, str]] = None):
        super().__init__(prefixes=None)
        self.headers = dict(SECURITY_HEADERS if headers is None else headers)

    async def admit(self, request: Request) -> None:
        return None

    async def on_response(self, request: Request, response: Response, token: None) -> None:
        for header, value in self.headers.items():
            response.headers[header] = value
