"""FastAPI application factory for the GuestPilot API."""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, Response
from fastapi.responses import JSONResponse

from guestpilot import __version__
from guestpilot.core.errors import CoreError
from guestpilot.core.http import HealthResponse
from guestpilot.core.logging import configure_logging
from guestpilot.core.metrics import metrics_response
from guestpilot.core.middleware import RequestContextMiddleware
from guestpilot.core.telemetry import init_tracing, instrument_fastapi_app

from .dependencies import (
    get_event_publisher,
    get_platform_client,
    get_redis_client,
    get_settings,
    get_sync_platform_client,
)
from .routers import knowledge, webhooks

logger = logging.getLogger(__name__)

SERVICE_NAME = "guestpilot_api"


@asynccontextmanager
async def lifespan(_: FastAPI) -> AsyncIterator[None]:
    yield
    if get_event_publisher.cache_info().currsize:
        await get_event_publisher().close()
    for getter in (get_platform_client, get_sync_platform_client):
        if getter.cache_info().currsize:
            await getter().close()
    if get_redis_client.cache_info().currsize:
        await get_redis_client().aclose()


async def core_error_handler(_: Request, exc: CoreError) -> JSONResponse:
    """Render ``CoreError`` subclasses as their problem-details payload."""

    if exc.status_code >= 500:
        logger.error("request failed", extra={"code": exc.code, "error": exc.message})
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""

    settings = get_settings()
    configure_logging(settings.log_level)
    if init_tracing(SERVICE_NAME, settings.telemetry):
        logger.info("tracing active", extra={"service_name": SERVICE_NAME})

    app = FastAPI(title="GuestPilot API", version=__version__, lifespan=lifespan)

    instrument_fastapi_app(app)
    app.add_middleware(RequestContextMiddleware, service_name=SERVICE_NAME)
    app.add_exception_handler(CoreError, core_error_handler)

    @app.get("/health", response_model=HealthResponse, tags=["health"])
    def health() -> HealthResponse:
        return HealthResponse()

    @app.get("/metrics", tags=["health"])
    async def metrics() -> Response:
        return metrics_response()

    app.include_router(webhooks.router)
    app.include_router(knowledge.router)

    return app
