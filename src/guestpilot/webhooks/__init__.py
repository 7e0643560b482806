"""Inbound platform webhook handling."""

from .service import WebhookOutcome, WebhookService

__all__ = ["WebhookOutcome", "WebhookService"]
