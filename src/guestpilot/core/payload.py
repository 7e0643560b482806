"""Lookup helpers for loosely-structured platform JSON.

Hostaway payloads are inconsistent about key casing (``reservationId`` vs
``reservationid``) and about whether identifiers are strings or numbers. All
raw-payload access in GuestPilot goes through these helpers so the rest of the
code only deals with normalized values.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping, Sequence
from typing import Any

_MISSING = object()


def _lookup(container: Any, key: str) -> Any:
    if not isinstance(container, Mapping):
        return _MISSING
    if key in container:
        return container[key]
    lowered = key.lower()
    for candidate, value in container.items():
        if isinstance(candidate, str) and candidate.lower() == lowered:
            return value
    return _MISSING


def resolve_path(payload: Any, path: str | Sequence[str]) -> Any:
    """Return the value at a dotted path, or ``None`` when any segment is missing."""

    segments = path.split(".") if isinstance(path, str) else list(path)
    current = payload
    for segment in segments:
        current = _lookup(current, segment)
        if current is _MISSING:
            return None
    return current


def coerce_string(value: Any) -> str | None:
    """Return a trimmed non-empty string for strings and numbers."""

    if isinstance(value, bool):
        return None
    if isinstance(value, str):
        stripped = value.strip()
        return stripped or None
    if isinstance(value, int):
        return str(value)
    if isinstance(value, float):
        return str(int(value)) if value.is_integer() else str(value)
    return None


def read_string(payload: Any, paths: Iterable[str]) -> str | None:
    """Return the first non-empty string or number found among ``paths``."""

    for path in paths:
        value = coerce_string(resolve_path(payload, path))
        if value is not None:
            return value
    return None


def read_mapping(payload: Any, path: str) -> dict[str, Any]:
    """Return the mapping at ``path`` or an empty dict."""

    value = resolve_path(payload, path)
    if isinstance(value, Mapping):
        return dict(value)
    return {}
