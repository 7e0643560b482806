"""Prometheus instruments for HTTP traffic and the guest-messaging pipeline."""

from __future__ import annotations

from fastapi import Response
from prometheus_client import CONTENT_TYPE_LATEST, Counter, Histogram, generate_latest

REQUEST_LATENCY = Histogram(
    "guestpilot_http_request_latency_seconds",
    "Latency of HTTP requests.",
    ["service", "method", "route", "status_code"],
)

REQUEST_COUNTER = Counter(
    "guestpilot_http_requests_total",
    "Total number of processed HTTP requests.",
    ["service", "method", "route", "status_code"],
)

WEBHOOK_EVENTS = Counter(
    "guestpilot_webhook_events_total",
    "Hostaway webhook deliveries accepted, by event name.",
    ["event"],
)

INTENTS = Counter(
    "guestpilot_intents_total",
    "Guest messages classified, by intent.",
    ["intent"],
)

ESCALATIONS = Counter(
    "guestpilot_escalations_total",
    "Human escalations triggered, by kind.",
    ["kind"],
)

KNOWLEDGE_DOCUMENTS_SYNCED = Counter(
    "guestpilot_knowledge_documents_synced_total",
    "Knowledge documents created from conversation history.",
)


def metrics_response() -> Response:
    """Generate a Prometheus metrics response."""

    return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)
