"""Security status endpoint."""

from typing import Any

from fastapi import APIRouter, Depends

from abouttown.app.context import AppContext
from abouttown.app.core.utils import iso_utc


def create_security_router(context: AppContext) -> APIRouter:
    """Router for ``/api/security/status``, limited by the ``sensitive`` preset."""
    router = APIRouter(prefix="/api/security", tags=["security"])
    limiter = context.limiters["sensitive"]

    @router.get("/status", dependencies=[Depends(limiter.dependency())])
    async def security_status() -> dict[str, Any]:
        """Report enabled protections and aggregate counts. Never lists IPs."""
        settings = context.settings
        return {
            "status": "operational",
            "blockedIPs": context.ledger.blocked_count(),
            "trackedIPs": len(context.ledger),
            "protections": {
                "botDetection": True,
                "strictMode": settings.bot_strict_mode,
                "rateLimit": True,
                "fingerprinting": True,
                "honeypots": settings.honeypot_enabled,
                "securityHeaders": True,
            },
            "cache": context.cache.status(),
            "timestamp": iso_utc(context.clock()),
        }

    return router
