"""Decoy endpoints that only automated clients ever request.

Nothing links to these paths, so any hit is treated as a bot: the IP
collects several suspicion marks at once and the client gets a slow,
plausible-looking fake payload.
"""

import asyncio
from typing import Any, Dict, Iterable

from fastapi import APIRouter, Request

from abouttown.app.core.logging import get_log_context, get_logger
from abouttown.app.core.utils import get_client_ip

logger = get_logger(__name__)

HONEYPOT_REASON = "honeypot-triggered"
HONEYPOT_METHODS = ["GET", "POST", "PUT", "PATCH", "DELETE"]


def fake_payload(size: int = 100) -> Dict[str, Any]:
    return {
        "data": [],
        "message": "Success",
        "bills": [
            {"id": i, "title": f"Sample Bill {i}", "status": "pending"}
            for i in range(size)
        ],
    }


async def honeypot_hit(request: Request) -> Dict[str, Any]:
    context = request.app.state.context
    ip = get_client_ip(request)

    for _ in range(context.settings.honeypot_multiplier):
        context.ledger.mark_suspicious(ip, HONEYPOT_REASON)

    logger.warning(
        "Bot accessed honeypot endpoint",
        extra=get_log_context(
            request_id=getattr(request.state, "request_id", None),
            client_ip=ip,
            path=request.url.path,
            reason=HONEYPOT_REASON,
        ),
    )

    if context.settings.honeypot_delay_seconds > 0:
        await asyncio.sleep(context.settings.honeypot_delay_seconds)
    return fake_payload()


def create_honeypot_router(paths: Iterable[str]) -> APIRouter:
    router = APIRouter(tags=["honeypot"], include_in_schema=False)
    for path in paths:
        router.add_api_route(path, honeypot_hit, methods=HONEYPOT_METHODS)
    return router
