"""Utility helpers shared across services."""

from .retry import exponential_backoff

__all__ = ["exponential_backoff"]
