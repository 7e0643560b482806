from __future__ import annotations

from contextlib import contextmanager
from uuid import uuid4

import pytest

from guestpilot.core.config import AppSettings
from guestpilot.events import worker
from guestpilot.events.worker import WorkerSettings, process_platform_event

pytestmark = pytest.mark.unit


def _ctx(session, platform, messaging) -> dict:  # noqa: ANN001
    @contextmanager
    def session_factory():  # noqa: ANN202
        yield session

    return {
        "settings": AppSettings.load(openai={"api_key": None}),
        "platform": platform,
        "messaging": messaging,
        "chat": None,
        "embedder": None,
        "session_factory": session_factory,
    }


def test_worker_settings_register_job() -> None:
    assert process_platform_event in WorkerSettings.functions
    assert WorkerSettings.on_startup is worker.startup
    assert WorkerSettings.queue_name == "guestpilot:events"


@pytest.mark.asyncio
async def test_unknown_tenant_is_skipped(session, platform, messaging) -> None:  # noqa: ANN001
    result = await process_platform_event(
        _ctx(session, platform, messaging), str(uuid4()), {"event": "message.received"}
    )

    assert result == {"status": "skipped"}


@pytest.mark.asyncio
async def test_event_is_processed_for_tenant(session, tenant, platform, messaging) -> None:  # noqa: ANN001
    platform.add_reservation("r-1", guestPhone="+34600")

    result = await process_platform_event(
        _ctx(session, platform, messaging),
        str(tenant.id),
        {"event": "message.received", "reservationId": "r-1", "id": "m-1", "body": "Checkout time?"},
    )

    assert result == {"status": "processed"}
    assert messaging.whatsapp and "11:00 AM" in messaging.whatsapp[0][1]


@pytest.mark.asyncio
async def test_failed_event_reports_status(session, tenant, platform, messaging) -> None:  # noqa: ANN001
    result = await process_platform_event(
        _ctx(session, platform, messaging),
        str(tenant.id),
        {"event": "message.received", "reservationId": "unknown", "body": "hello there"},
    )

    assert result == {"status": "failed"}
