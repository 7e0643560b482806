"""Structlog configuration with OpenTelemetry trace enrichment.

Two kinds of loggers run side by side: structlog loggers (``get_logger``) used
at the HTTP edge, and stdlib ``logging.getLogger(__name__)`` loggers used by
the domain modules with ``extra={...}`` fields. Both render as one JSON object
per line carrying the active trace and span ids.
"""

from __future__ import annotations

import logging
import sys
from collections.abc import MutableMapping
from typing import Any

import structlog
from opentelemetry.trace import get_current_span

_CONFIGURED = False


def current_trace_ids() -> dict[str, str]:
    """Return the active trace/span identifiers, or an empty mapping."""

    span_context = get_current_span().get_span_context()
    if not span_context.is_valid:
        return {}
    return {
        "trace_id": f"{span_context.trace_id:032x}",
        "span_id": f"{span_context.span_id:016x}",
    }


def _otel_enricher(
    _: Any,
    __: str,
    event_dict: MutableMapping[str, Any],
) -> MutableMapping[str, Any]:
    for key, value in current_trace_ids().items():
        event_dict.setdefault(key, value)
    return event_dict


def resolve_level(level: int | str) -> int:
    """Accept ``logging`` constants or names such as ``"debug"``."""

    if isinstance(level, int):
        return level
    resolved = logging.getLevelName(level.strip().upper())
    return resolved if isinstance(resolved, int) else logging.INFO


class _StderrHandler(logging.StreamHandler):
    """Stream handler bound to whatever ``sys.stderr`` is at emit time."""

    @property
    def stream(self) -> Any:
        return sys.stderr

    @stream.setter
    def stream(self, _: Any) -> None:
        pass


def _stdlib_handler() -> logging.Handler:
    handler = _StderrHandler()
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=[
                structlog.contextvars.merge_contextvars,
                structlog.stdlib.add_log_level,
                structlog.stdlib.add_logger_name,
                structlog.stdlib.ExtraAdder(),
                structlog.processors.TimeStamper(fmt="iso", key="timestamp"),
                _otel_enricher,
            ],
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                structlog.processors.format_exc_info,
                structlog.processors.JSONRenderer(default=str),
            ],
        )
    )
    return handler


def configure_logging(level: int | str = logging.INFO) -> None:
    """Configure structlog and the stdlib root logger for JSON output."""

    global _CONFIGURED
    if _CONFIGURED:
        return

    numeric_level = resolve_level(level)
    root = logging.getLogger()
    root.addHandler(_stdlib_handler())
    root.setLevel(numeric_level)

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", key="timestamp"),
            _otel_enricher,
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(default=str),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(numeric_level),
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )

    _CONFIGURED = True


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    """Return a structlog logger bound to the provided name."""

    configure_logging()
    if name is None:
        return structlog.get_logger()
    return structlog.get_logger(name)
