"""Async client for the Hostaway public API."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Any, Protocol

import httpx

from guestpilot.core.config import HostawaySettings
from guestpilot.core.db.models import Tenant
from guestpilot.core.errors import ConfigurationError, HostawayError, RateLimitError
from guestpilot.core.security import CredentialCipher
from guestpilot.utils.retry import retry_after_seconds

from .normalize import (
    Listing,
    PlatformConversation,
    PlatformMessage,
    Reservation,
    normalize_list,
    to_conversation,
    to_listing,
    to_message,
    to_reservation,
    unwrap_result,
)

logger = logging.getLogger(__name__)

Sleeper = Callable[[float], Awaitable[None]]


class PlatformClient(Protocol):
    """Operations the pipeline needs from the property-management platform."""

    async def get_reservation(self, tenant: Tenant, reservation_id: str) -> Reservation: ...

    async def get_listing(self, tenant: Tenant, listing_id: str) -> Listing | None: ...

    async def list_conversations(
        self,
        tenant: Tenant,
        *,
        limit: int | None = None,
        offset: int | None = None,
        reservation_id: str | None = None,
        include_resources: int = 1,
    ) -> list[PlatformConversation]: ...

    async def get_reservation_conversations(
        self, tenant: Tenant, reservation_id: str
    ) -> list[PlatformConversation]: ...

    async def get_conversation_messages(
        self, tenant: Tenant, conversation_id: str, *, include_scheduled: bool = True
    ) -> list[PlatformMessage]: ...

    async def send_conversation_message(
        self, tenant: Tenant, conversation_id: str, body: str
    ) -> dict[str, Any]: ...

    async def send_message_to_guest(
        self, tenant: Tenant, reservation_id: str, message: str
    ) -> dict[str, Any]: ...


class HostawayClient:
    """Thin typed wrapper over ``httpx.AsyncClient``.

    HTTP 429 responses are retried after the server-provided delay (capped by
    ``max_rate_limit_wait_seconds``) up to ``rate_limit_retries`` times and then
    surface as ``RateLimitError`` so batch callers can apply their own policy.
    """

    def __init__(
        self,
        settings: HostawaySettings,
        cipher: CredentialCipher | None,
        *,
        rate_limit_retries: int = 1,
        transport: httpx.AsyncBaseTransport | None = None,
        sleep: Sleeper = asyncio.sleep,
    ) -> None:
        self._settings = settings
        self._cipher = cipher
        self._rate_limit_retries = rate_limit_retries
        self._sleep = sleep
        self._client = httpx.AsyncClient(
            base_url=settings.api_base_url,
            timeout=settings.timeout_seconds,
            transport=transport,
        )

    @property
    def dry_run(self) -> bool:
        return self._settings.dry_run

    async def close(self) -> None:
        await self._client.aclose()

    async def get_reservation(self, tenant: Tenant, reservation_id: str) -> Reservation:
        path = f"/v1/reservations/{reservation_id}"
        payload = await self._request(tenant, "GET", path, params={"includeResources": 1})
        record = unwrap_result(payload)
        reservation = to_reservation(
            record if isinstance(record, dict) else {}, fallback_id=reservation_id
        )
        if reservation is None:  # pragma: no cover - fallback id always present
            raise HostawayError(f"reservation {reservation_id} has no identifier")
        return reservation

    async def get_listing(self, tenant: Tenant, listing_id: str) -> Listing | None:
        payload = await self._request(
            tenant, "GET", f"/v1/listings/{listing_id}", params={"includeResources": 1}
        )
        record = unwrap_result(payload)
        if not isinstance(record, dict):
            return None
        return to_listing(record, fallback_id=listing_id)

    async def list_conversations(
        self,
        tenant: Tenant,
        *,
        limit: int | None = None,
        offset: int | None = None,
        reservation_id: str | None = None,
        include_resources: int = 1,
    ) -> list[PlatformConversation]:
        params: dict[str, Any] = {"includeResources": include_resources}
        if limit is not None:
            params["limit"] = limit
        if offset is not None:
            params["offset"] = offset
        if reservation_id:
            params["reservationId"] = reservation_id
        records = await self._list(tenant, "/v1/conversations", params)
        return [conv for conv in map(to_conversation, records) if conv is not None]

    async def get_reservation_conversations(
        self, tenant: Tenant, reservation_id: str
    ) -> list[PlatformConversation]:
        records = await self._list(
            tenant,
            f"/v1/reservations/{reservation_id}/conversations",
            {"includeResources": 1},
        )
        return [conv for conv in map(to_conversation, records) if conv is not None]

    async def get_conversation_messages(
        self, tenant: Tenant, conversation_id: str, *, include_scheduled: bool = True
    ) -> list[PlatformMessage]:
        params = {"includeScheduledMessages": 1} if include_scheduled else {}
        records = await self._list(
            tenant, f"/v1/conversations/{conversation_id}/messages", params
        )
        return [to_message(record) for record in records]

    async def send_conversation_message(
        self, tenant: Tenant, conversation_id: str, body: str
    ) -> dict[str, Any]:
        if self.dry_run:
            logger.info(
                "(dry-run) hostaway conversation message",
                extra={
                    "tenant_id": str(tenant.id),
                    "conversation_id": conversation_id,
                    "body": body,
                },
            )
            return {"dryRun": True}
        payload = await self._request(
            tenant,
            "POST",
            f"/v1/conversations/{conversation_id}/messages",
            json={"body": body, "communicationType": "channel"},
        )
        return payload if isinstance(payload, dict) else {"result": payload}

    async def send_message_to_guest(
        self, tenant: Tenant, reservation_id: str, message: str
    ) -> dict[str, Any]:
        if self.dry_run:
            logger.info(
                "(dry-run) hostaway reservation message",
                extra={
                    "tenant_id": str(tenant.id),
                    "reservation_id": reservation_id,
                    "body": message,
                },
            )
            return {"dryRun": True}
        payload = await self._request(
            tenant,
            "POST",
            f"/v1/reservations/{reservation_id}/messages",
            json={"message": message},
        )
        return payload if isinstance(payload, dict) else {"result": payload}

    async def _list(
        self, tenant: Tenant, path: str, params: dict[str, Any]
    ) -> list[dict[str, Any]]:
        try:
            payload = await self._request(tenant, "GET", path, params=params)
        except HostawayError as exc:
            if exc.upstream_status == 404:
                return []
            raise
        return normalize_list(payload)

    async def _request(
        self,
        tenant: Tenant,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        json: dict[str, Any] | None = None,
    ) -> Any:
        headers = {"Authorization": f"Bearer {self._access_token(tenant)}"}
        attempt = 0
        while True:
            try:
                response = await self._client.request(
                    method, path, params=params, json=json, headers=headers
                )
            except httpx.HTTPError as exc:
                logger.exception(
                    "hostaway request failed",
                    extra={"tenant_id": str(tenant.id), "path": path},
                )
                raise HostawayError(f"Hostaway request to {path} failed") from exc

            if response.status_code == 429:
                wait = retry_after_seconds(
                    response.headers.get("x-ratelimit-retry-after")
                    or response.headers.get("retry-after"),
                    default=self._settings.max_rate_limit_wait_seconds,
                    cap=self._settings.max_rate_limit_wait_seconds,
                )
                if attempt >= self._rate_limit_retries:
                    raise RateLimitError(
                        f"Hostaway rate limit exceeded for {path}", retry_after=wait
                    )
                attempt += 1
                logger.warning(
                    "hostaway rate limit hit; waiting before retry",
                    extra={"path": path, "wait_seconds": wait, "attempt": attempt},
                )
                await self._sleep(wait)
                continue

            if response.status_code >= 400:
                if response.status_code != 404:
                    logger.error(
                        "hostaway rejected request",
                        extra={
                            "tenant_id": str(tenant.id),
                            "path": path,
                            "status": response.status_code,
                            "body": response.text[:500],
                        },
                    )
                raise HostawayError(
                    f"Hostaway request to {path} returned {response.status_code}",
                    upstream_status=response.status_code,
                )
            if not response.content:
                return {}
            return response.json()

    def _access_token(self, tenant: Tenant) -> str:
        if not tenant.encrypted_hostaway_access_token:
            raise ConfigurationError("Tenant Hostaway access token is not configured")
        if self._cipher is None:
            raise ConfigurationError("SECURITY_ENCRYPTION_KEY is not configured")
        return self._cipher.decrypt(tenant.encrypted_hostaway_access_token)
