from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator, Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from abouttown.app.api.honeypot import create_honeypot_router
from abouttown.app.api.security import create_security_router
from abouttown.app.context import AppContext, build_context
from abouttown.app.core.cache import OutcomeKind
from abouttown.app.core.config import Settings, get_settings
from abouttown.app.core.http_client import init_http_client
from abouttown.app.core.logging import get_logger, setup_logging
from abouttown.app.exceptions import PolicyViolation
from abouttown.app.middleware.pipeline import AdmissionPipeline
from abouttown.app.middleware.request_id import RequestIdMiddleware

HEALTH_CHECK_KEY = "_health_check_test"


def create_app(settings: Optional[Settings] = None, context: Optional[AppContext] = None) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        settings: Settings to use (default: ``get_settings()``)
        context: Pre-built admission state; built from ``settings`` if omitted

    Returns:
        Configured FastAPI application instance
    """
    settings = settings or (context.settings if context is not None else get_settings())
    setup_logging(settings)
    logger = get_logger(__name__)

    context = context or build_context(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        """Open the shared HTTP client for the cache and close it on shutdown."""
        async with init_http_client(settings) as http_client:
            context.cache.attach_http_client(http_client)
            logger.info(
                "Application startup complete",
                extra={
                    "cache": context.cache.status(),
                    "debug_mode": settings.debug,
                },
            )

            yield

            await context.cache.close()

        logger.info("Application shutdown complete")

    app = FastAPI(
        title="About Town API",
        description="Request admission and anti-abuse layer for the About Town backend",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.context = context

    # Add middleware (order matters: last added = first executed)
    app.add_middleware(
        AdmissionPipeline,
        stages=context.stages(),
        exempt_paths=context.exempt_paths,
        sweeper=context.sweeper,
        sweeps=context.sweeps(),
    )

    # Request ID wraps the pipeline so refused requests are tagged too
    app.add_middleware(RequestIdMiddleware)

    # CORS middleware (outermost - handles preflight requests first)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials="*" not in settings.cors_origins,
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS", "PATCH"],
        allow_headers=["*"],
        expose_headers=[
            "X-Request-ID",
            "X-RateLimit-Limit",
            "X-RateLimit-Remaining",
            "X-RateLimit-Reset",
            "Retry-After",
        ],
        max_age=600,  # Cache preflight requests for 10 minutes
    )

    # Include routers
    app.include_router(create_security_router(context))
    if settings.honeypot_enabled:
        app.include_router(create_honeypot_router(context.honeypot_paths))

    @app.get("/health")
    async def health() -> dict[str, Any]:
        """Health check with a cache set/get/delete probe."""
        health_status: dict[str, Any] = {
            "status": "ok",
            "components": {},
        }

        cache = context.cache
        await cache.set(HEALTH_CHECK_KEY, "ping", ttl_seconds=5)
        value = await cache.get(HEALTH_CHECK_KEY)
        await cache.delete(HEALTH_CHECK_KEY)

        cache_status = {"status": "ok", **cache.status()}
        if value != "ping":
            health_status["status"] = "degraded"
            cache_status["status"] = "error"
        elif cache.last_outcome is not None and cache.last_outcome.kind is OutcomeKind.ERROR:
            # Remote backend is down; answers come from the local fallback.
            health_status["status"] = "degraded"
            cache_status["status"] = "fallback"

        health_status["components"]["cache"] = cache_status
        return health_status

    @app.exception_handler(PolicyViolation)
    async def policy_violation_handler(request: Request, exc: PolicyViolation) -> JSONResponse:
        """Render refusals raised from route dependencies."""
        return exc.to_response()

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """Global exception handler for unhandled exceptions.

        Never returns a traceback. Outside debug mode the client gets a
        generic message; full details are logged server-side.
        """
        request_id = getattr(request.state, "request_id", "unknown")

        logger.exception(
            f"Unhandled exception [request_id={request_id}]",
            extra={
                "request_id": request_id,
                "exception_type": type(exc).__name__,
            },
        )

        # Debug mode: exception type and message, never a traceback
        if settings.debug:
            return JSONResponse(
                status_code=500,
                content={
                    "error": "internal_error",
                    "message": str(exc),
                    "exception_type": type(exc).__name__,
                    "request_id": request_id,
                },
            )

        return JSONResponse(
            status_code=500,
            content={
                "error": "internal_error",
                "message": "Internal server error",
                "request_id": request_id,  # Include for support correlation
            },
        )

    return app


# Create the application instance
app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("abouttown.app.main:app", host="0.0.0.0", port=8000)
