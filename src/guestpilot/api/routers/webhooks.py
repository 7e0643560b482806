"""Hostaway webhook endpoint."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Body

from ..dependencies import WebhookServiceDep
from ..schemas import WebhookAck

router = APIRouter(prefix="/webhooks", tags=["webhooks"])


@router.post("/hostaway", response_model=WebhookAck)
async def receive_hostaway_webhook(
    service: WebhookServiceDep,
    payload: dict[str, Any] = Body(...),
) -> WebhookAck:
    """Record and queue one Hostaway delivery."""

    await service.handle(payload)
    return WebhookAck()
