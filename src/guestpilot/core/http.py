"""Shared HTTP response schemas."""

from __future__ import annotations

from typing import Generic, TypeVar

from pydantic import BaseModel

T = TypeVar("T")


class HealthResponse(BaseModel):
    status: str = "ok"


class ResponseEnvelope(BaseModel, Generic[T]):
    """Uniform ``{"data": ...}`` wrapper for API responses."""

    data: T
