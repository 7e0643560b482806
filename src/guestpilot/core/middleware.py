"""Request middleware binding correlation IDs, request logs and HTTP metrics."""

from __future__ import annotations

import time
import uuid
from collections.abc import Awaitable, Callable
from contextvars import ContextVar

import structlog
from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

from .logging import get_logger
from .metrics import REQUEST_COUNTER, REQUEST_LATENCY

_correlation_id_ctx: ContextVar[str | None] = ContextVar("correlation_id", default=None)


def get_correlation_id() -> str | None:
    """Return the correlation ID bound to the current context."""

    return _correlation_id_ctx.get()


class RequestContextMiddleware(BaseHTTPMiddleware):
    """Bind a correlation ID per request and record its outcome."""

    def __init__(self, app: ASGIApp, *, service_name: str) -> None:
        super().__init__(app)
        self._service_name = service_name
        self._logger = get_logger(service_name)

    async def dispatch(
        self,
        request: Request,
        call_next: Callable[[Request], Awaitable[Response]],
    ) -> Response:
        correlation_id = request.headers.get("x-request-id") or uuid.uuid4().hex
        token = _correlation_id_ctx.set(correlation_id)
        structlog.contextvars.bind_contextvars(correlation_id=correlation_id)
        started = time.perf_counter()
        status_code = 500
        try:
            response = await call_next(request)
        except Exception:
            self._logger.exception(
                "http.request.error",
                method=request.method,
                path=request.url.path,
            )
            self._observe(request, status_code, started)
            raise
        else:
            status_code = response.status_code
            response.headers["X-Request-ID"] = correlation_id
            duration = self._observe(request, status_code, started)
            self._logger.info(
                "http.request.completed",
                method=request.method,
                path=request.url.path,
                status_code=status_code,
                duration_ms=round(duration * 1000, 2),
            )
            return response
        finally:
            structlog.contextvars.unbind_contextvars("correlation_id")
            _correlation_id_ctx.reset(token)

    def _observe(self, request: Request, status_code: int, started: float) -> float:
        duration = time.perf_counter() - started
        route = request.scope.get("route")
        route_path = getattr(route, "path", None) or request.url.path
        labels = (self._service_name, request.method, route_path, str(status_code))
        REQUEST_COUNTER.labels(*labels).inc()
        REQUEST_LATENCY.labels(*labels).observe(duration)
        return duration
