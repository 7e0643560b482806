"""Shared exception hierarchy for services."""

from __future__ import annotations

from collections.abc import Mapping
from http import HTTPStatus
from typing import Any


class CoreError(Exception):
    """Base exception capturing rich problem details."""

    def __init__(
        self,
        message: str,
        *,
        status_code: int = HTTPStatus.INTERNAL_SERVER_ERROR,
        code: str = "core_error",
        details: Mapping[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = int(status_code)
        self.code = code
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        """FastAPI/JSON-serializable representation of the error."""

        payload: dict[str, Any] = {
            "error": self.message,
            "status": self.status_code,
            "code": self.code,
        }
        if self.details:
            payload["details"] = dict(self.details)
        return payload


class NotFoundError(CoreError):
    """Raised when a resource cannot be located."""

    def __init__(self, message: str, *, details: Mapping[str, Any] | None = None) -> None:
        super().__init__(
            message=message,
            status_code=HTTPStatus.NOT_FOUND,
            code="not_found",
            details=details,
        )


class ValidationError(CoreError):
    """Raised when a request payload fails validation."""

    def __init__(
        self,
        message: str,
        *,
        details: Mapping[str, Any] | None = None,
    ) -> None:
        super().__init__(
            message=message,
            status_code=HTTPStatus.BAD_REQUEST,
            code="validation_error",
            details=details,
        )


class ConflictError(CoreError):
    """Raised when a write collides with existing state."""

    def __init__(self, message: str, *, details: Mapping[str, Any] | None = None) -> None:
        super().__init__(
            message=message,
            status_code=HTTPStatus.CONFLICT,
            code="conflict",
            details=details,
        )


class UnidentifiedClientError(CoreError):
    """Raised when a webhook payload carries no platform account identifier."""

    def __init__(self) -> None:
        super().__init__(
            message="Unable to identify Hostaway client in webhook payload",
            status_code=HTTPStatus.BAD_REQUEST,
            code="unidentified_client",
        )


class UnknownTenantError(CoreError):
    """Raised when no tenant owns the platform account identifier."""

    def __init__(self, identifier: str) -> None:
        super().__init__(
            message="Unknown Hostaway client identifier",
            status_code=HTTPStatus.BAD_REQUEST,
            code="unknown_tenant",
            details={"identifier": identifier},
        )


class BookingNotFoundError(CoreError):
    """Raised when no local booking mirrors an external reservation."""

    def __init__(self, reservation_id: str) -> None:
        super().__init__(
            message=f"Booking not found for reservation {reservation_id}",
            status_code=HTTPStatus.NOT_FOUND,
            code="booking_not_found",
            details={"reservation_id": reservation_id},
        )
        self.reservation_id = reservation_id


class ConfigurationError(CoreError):
    """Raised when required configuration or key material is missing."""

    def __init__(self, message: str) -> None:
        super().__init__(
            message=message,
            status_code=HTTPStatus.INTERNAL_SERVER_ERROR,
            code="configuration_error",
        )


class IntegrationError(CoreError):
    """Raised when an upstream platform call fails."""

    def __init__(
        self,
        message: str,
        *,
        status_code: int = HTTPStatus.BAD_GATEWAY,
        code: str = "integration_error",
        details: Mapping[str, Any] | None = None,
    ) -> None:
        super().__init__(message, status_code=status_code, code=code, details=details)


class HostawayError(IntegrationError):
    """Raised for non-retryable Hostaway API failures."""

    def __init__(
        self,
        message: str,
        *,
        upstream_status: int | None = None,
    ) -> None:
        super().__init__(
            message,
            code="hostaway_error",
            details={"upstream_status": upstream_status} if upstream_status else None,
        )
        self.upstream_status = upstream_status


class RateLimitError(IntegrationError):
    """Raised when an upstream API answers HTTP 429."""

    def __init__(self, message: str, *, retry_after: float | None = None) -> None:
        super().__init__(
            message,
            status_code=HTTPStatus.TOO_MANY_REQUESTS,
            code="rate_limited",
            details={"retry_after": retry_after} if retry_after is not None else None,
        )
        self.retry_after = retry_after
