from __future__ import annotations

import logging
from typing import Any

import pytest

from guestpilot.core import telemetry
from guestpilot.core.config import TelemetrySettings
from guestpilot.core.telemetry import init_tracing, parse_exporter_headers

pytestmark = pytest.mark.unit


def test_parse_exporter_headers_handles_malformed_segments():
    headers = parse_exporter_headers("authorization=Bearer token,invalid,env=prod")
    assert headers == {"authorization": "Bearer token", "env": "prod"}


def test_parse_exporter_headers_empty():
    assert parse_exporter_headers(None) is None
    assert parse_exporter_headers(" , ") is None


def test_init_tracing_logs_warning_when_endpoint_missing(monkeypatch, caplog):
    monkeypatch.setattr(telemetry, "_TRACING_INITIALISED", False)
    caplog.set_level(logging.WARNING)

    enabled = init_tracing("test-service", TelemetrySettings(exporter_endpoint=None))

    assert enabled is False
    assert any(
        "distributed tracing disabled" in record.message for record in caplog.records
    )


def test_init_tracing_installs_provider_when_endpoint_supplied(monkeypatch, caplog):
    class DummyExporter:  # pragma: no cover - simple stub
        def __init__(self, *args: Any, **kwargs: Any) -> None:
            self.kwargs = kwargs

    class DummyProcessor:  # pragma: no cover - simple stub
        def __init__(self, exporter: DummyExporter) -> None:
            self.exporter = exporter
            self.shut_down = False
            processors.append(self)

        def on_start(self, span: Any, parent_context: Any = None) -> None:
            return None

        def on_end(self, span: Any) -> None:
            return None

        def force_flush(self, timeout_millis: int = 30000) -> bool:
            return True

        def shutdown(self) -> None:
            self.shut_down = True

    class DummyInstrumentor:
        def instrument(self) -> None:
            return None

    providers: list[Any] = []
    processors: list[Any] = []
    monkeypatch.setattr(telemetry, "OTLPSpanExporter", DummyExporter)
    monkeypatch.setattr(telemetry, "BatchSpanProcessor", DummyProcessor)
    monkeypatch.setattr(telemetry, "HTTPXClientInstrumentor", DummyInstrumentor)
    monkeypatch.setattr(telemetry.trace, "set_tracer_provider", providers.append)
    monkeypatch.setattr(telemetry, "_TRACING_INITIALISED", False)
    caplog.set_level(logging.INFO)

    enabled = init_tracing(
        "test-service",
        TelemetrySettings(
            exporter_endpoint="http://collector:4318/v1/traces",
            exporter_headers="x-team=ops",
        ),
    )

    assert enabled is True
    assert len(providers) == 1
    assert any("tracing initialised" in record.message for record in caplog.records)

    # The provider registers an atexit hook; shut it down while the stub is in place.
    [provider] = providers
    provider.shutdown()
    assert [processor.shut_down for processor in processors] == [True]
