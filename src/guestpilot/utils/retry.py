"""Backoff helpers for rate-limited upstream calls."""

from __future__ import annotations

import random


def exponential_backoff(
    attempt: int,
    *,
    base: float = 1.0,
    factor: float = 2.0,
    max_delay: float = 60.0,
    jitter_ratio: float = 0.1,
) -> float:
    """Return jittered exponential backoff for the provided attempt number."""

    bounded_attempt = attempt if attempt > 0 else 1
    delay = base * (factor ** (bounded_attempt - 1))
    delay = min(delay, max_delay)
    jitter = random.uniform(0, delay * jitter_ratio) if jitter_ratio else 0.0
    return delay + jitter


def retry_after_seconds(value: str | None, *, default: float, cap: float) -> float:
    """Parse a ``Retry-After`` style header value into a bounded delay."""

    if value is None:
        return min(default, cap)
    try:
        seconds = float(value)
    except ValueError:
        return min(default, cap)
    if seconds < 0:
        return 0.0
    return min(seconds, cap)
