"""Shared HTTP client management for connection pooling.

The REST cache backend talks to its Redis-compatible endpoint through one
pooled ``httpx.AsyncClient`` opened for the lifetime of the application.
"""

from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator, Optional

import httpx

from abouttown.app.core.config import Settings, get_settings


@asynccontextmanager
async def init_http_client(settings: Optional[Settings] = None) -> AsyncGenerator[httpx.AsyncClient, None]:
    """Open the pooled HTTP client for the application lifetime.

    This context manager should be used in the FastAPI lifespan:

        @asynccontextmanager
        async def lifespan(app: FastAPI):
            async with init_http_client(settings) as client:
                cache.attach_http_client(client)
                yield
    """
    client = create_http_client(settings)
    try:
        yield client
    finally:
        await client.aclose()


def create_http_client(settings: Optional[Settings] = None, **kwargs: Any) -> httpx.AsyncClient:
    """Create a new HTTP client with the configured timeouts and pool limits.

    Note: The returned client should be closed when done.

    Args:
        settings: Settings to read ``httpx_*`` values from
        **kwargs: Passed through to ``httpx.AsyncClient`` (e.g. ``transport``
            in tests). A ``timeout`` here overrides the granular timeouts.

    Returns:
        A new httpx.AsyncClient instance.
    """
    settings = settings or get_settings()

    kwargs.setdefault(
        "timeout",
        httpx.Timeout(
            connect=settings.httpx_connect_timeout,
            read=settings.httpx_read_timeout,
            write=settings.httpx_write_timeout,
            pool=settings.httpx_pool_timeout,
        ),
    )
    kwargs.setdefault(
        "limits",
        httpx.Limits(
            max_connections=settings.httpx_max_connections,
            max_keepalive_connections=settings.httpx_max_keepalive_connections,
            keepalive_expiry=settings.httpx_keepalive_expiry,
        ),
    )
    return httpx.AsyncClient(**kwargs)
