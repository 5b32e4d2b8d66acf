"""Request admission pipeline.

``AdmissionPipeline`` runs an ordered list of ``AdmissionStage`` objects
before the route handler. A stage ends the request by raising a
``PolicyViolation``; the violation is rendered as the response and the
handler never runs. After the response exists (from the handler or from a
violation) the ``on_response`` hook of every stage that admitted the request
runs in order.
"""

import time
from abc import ABC, abstractmethod
from typing import Any, Iterable, List, Optional, Sequence, Tuple

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from abouttown.app.core.logging import get_log_context, get_logger
from abouttown.app.core.sweep import SweepFn, Sweeper
from abouttown.app.core.utils import get_client_ip
from abouttown.app.exceptions import PolicyViolation

logger = get_logger(__name__)


def path_matches(path: str, prefixes: Iterable[str]) -> bool:
    """Whether ``path`` is one of ``prefixes`` or lies below one of them."""
    for prefix in prefixes:
        prefix = prefix.rstrip("/")
        if not prefix or path == prefix or path.startswith(prefix + "/"):
            return True
    return False


class AdmissionStage(ABC):
    """One step of the admission pipeline.

    ``prefixes`` restricts the stage to matching paths; None means every
    path. Stages with ``run_on_exempt_paths`` also run for honeypot paths.
    """

    name: str = "stage"
    run_on_exempt_paths: bool = False

    def __init__(self, prefixes: Optional[Sequence[str]] = None) -> None:
        self.prefixes = list(prefixes) if prefixes is not None else None

    def applies(self, request: Request) -> bool:
        if self.prefixes is None:
            return True
        return path_matches(request.url.path, self.prefixes)

    @abstractmethod
    async def admit(self, request: Request) -> Any:
        """Admit the request or raise a ``PolicyViolation``.

        Returns:
            A value handed back to ``on_response`` for this request
        """
        pass

    async def on_response(self, request: Request, response: Response, token: Any) -> None:
        """Post-process the response. Runs only if ``admit`` returned."""
        return None


class AdmissionPipeline(BaseHTTPMiddleware):
    """Middleware that runs the admission stages for every request.

    Exempt paths (the honeypot decoys) only see stages flagged with
    ``run_on_exempt_paths``.
    """

    def __init__(
        self,
        app,
        stages: Sequence[AdmissionStage],
        exempt_paths: Iterable[str] = (),
        sweeper: Optional[Sweeper] = None,
        sweeps: Sequence[SweepFn] = (),
    ):
        super().__init__(app)
        self.stages = list(stages)
        self.exempt_paths = frozenset(exempt_paths)
        self.sweeper = sweeper
        self.sweeps = list(sweeps)

    def _active_stages(self, request: Request) -> List[AdmissionStage]:
        exempt = request.url.path in self.exempt_paths
        return [
            stage for stage in self.stages
            if (stage.run_on_exempt_paths or not exempt) and stage.applies(request)
        ]

    async def dispatch(
        self,
        request: Request,
        call_next: RequestResponseEndpoint
    ) -> Response:
        """Run admission stages, the handler, then the response hooks."""
        start = time.perf_counter()

        if self.sweeper is not None and self.sweeps:
            self.sweeper.maybe_sweep(*self.sweeps)

        admitted: List[Tuple[AdmissionStage, Any]] = []
        violation: Optional[PolicyViolation] = None

        try:
            for stage in self._active_stages(request):
                token = await stage.admit(request)
                admitted.append((stage, token))
        except PolicyViolation as exc:
            violation = exc

        if violation is None:
            response = await call_next(request)
        else:
            response = violation.to_response()
            logger.info(
                f"Request refused with {violation.status_code}",
                extra=get_log_context(
                    request_id=getattr(request.state, "request_id", None),
                    client_ip=get_client_ip(request),
                    path=request.url.path,
                    method=request.method,
                    status_code=violation.status_code,
                    duration_ms=round((time.perf_counter() - start) * 1000, 2),
                ),
            )

        for stage, token in admitted:
            await stage.on_response(request, response, token)

        # The refusing stage has the final say on headers it set itself.
        if violation is not None and violation.headers:
            response.headers.update(violation.headers)

        return response
