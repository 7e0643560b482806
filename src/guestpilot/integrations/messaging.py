"""Outbound WhatsApp, SMS and voice delivery through the Twilio REST API."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Protocol

import httpx

from guestpilot.core.config import TwilioSettings
from guestpilot.core.db.models import Tenant
from guestpilot.core.security import CredentialCipher

logger = logging.getLogger(__name__)


class DeliveryStatus(str, Enum):
    SENT = "sent"
    DRY_RUN = "dry_run"
    FAILED = "failed"


@dataclass(slots=True, frozen=True)
class DeliveryResult:
    status: DeliveryStatus
    channel: str
    to: str
    sid: str | None = None
    error: str | None = None

    @property
    def failed(self) -> bool:
        return self.status is DeliveryStatus.FAILED


@dataclass(slots=True, frozen=True)
class TwilioCredentials:
    account_sid: str
    auth_token: str


class MessagingGateway(Protocol):
    async def send_whatsapp(self, tenant: Tenant, to: str, body: str) -> DeliveryResult: ...

    async def send_sms(self, tenant: Tenant, to: str, body: str) -> DeliveryResult: ...

    async def send_voice(self, tenant: Tenant, to: str, message: str) -> DeliveryResult: ...


def escape_for_twiml(text: str) -> str:
    return text.replace("&", "&amp;").replace("<", "&lt;").replace(">", "&gt;")


def _whatsapp_address(number: str) -> str:
    return number if number.startswith("whatsapp:") else f"whatsapp:{number}"


class TwilioMessagingGateway:
    """Send through Twilio; never raises on delivery problems.

    A tenant's own credentials and sender numbers take precedence over the
    global ``TWILIO_*`` settings. Without credentials or a sender the message is
    only logged, as it is when ``TWILIO_DRY_RUN`` is enabled.
    """

    def __init__(
        self,
        settings: TwilioSettings,
        cipher: CredentialCipher | None,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._settings = settings
        self._cipher = cipher
        self._client = httpx.AsyncClient(
            base_url=settings.api_base_url,
            timeout=settings.timeout_seconds,
            transport=transport,
        )

    async def close(self) -> None:
        await self._client.aclose()

    async def send_whatsapp(self, tenant: Tenant, to: str, body: str) -> DeliveryResult:
        sender = tenant.twilio_whatsapp_from or self._settings.whatsapp_from
        form = {"To": _whatsapp_address(to), "Body": body}
        if sender:
            form["From"] = _whatsapp_address(sender)
        return await self._deliver(
            tenant, "whatsapp", to, "Messages.json", form, ready=bool(sender), preview=body
        )

    async def send_sms(self, tenant: Tenant, to: str, body: str) -> DeliveryResult:
        service_sid = (
            tenant.twilio_messaging_service_sid or self._settings.messaging_service_sid
        )
        form = {"To": to, "Body": body}
        if service_sid:
            form["MessagingServiceSid"] = service_sid
        return await self._deliver(
            tenant, "sms", to, "Messages.json", form, ready=bool(service_sid), preview=body
        )

    async def send_voice(self, tenant: Tenant, to: str, message: str) -> DeliveryResult:
        sender = tenant.twilio_voice_from or self._settings.voice_from
        form = {
            "To": to,
            "Twiml": f"<Response><Say>{escape_for_twiml(message)}</Say></Response>",
        }
        if sender:
            form["From"] = sender
        return await self._deliver(
            tenant, "voice", to, "Calls.json", form, ready=bool(sender), preview=message
        )

    def credentials_for(self, tenant: Tenant) -> TwilioCredentials | None:
        if tenant.twilio_account_sid and tenant.encrypted_twilio_auth_token:
            if self._cipher is None:
                logger.warning(
                    "tenant twilio token present but no encryption key configured",
                    extra={"tenant_id": str(tenant.id)},
                )
                return None
            return TwilioCredentials(
                account_sid=tenant.twilio_account_sid,
                auth_token=self._cipher.decrypt(tenant.encrypted_twilio_auth_token),
            )
        if self._settings.account_sid and self._settings.auth_token:
            return TwilioCredentials(
                account_sid=self._settings.account_sid,
                auth_token=self._settings.auth_token,
            )
        return None

    async def _deliver(
        self,
        tenant: Tenant,
        channel: str,
        to: str,
        resource: str,
        form: dict[str, Any],
        *,
        ready: bool,
        preview: str,
    ) -> DeliveryResult:
        try:
            credentials = self.credentials_for(tenant)
        except ValueError as exc:
            logger.exception(
                "unable to decrypt tenant twilio credentials",
                extra={"tenant_id": str(tenant.id), "channel": channel},
            )
            return DeliveryResult(
                status=DeliveryStatus.FAILED, channel=channel, to=to, error=str(exc)
            )
        if self._settings.dry_run or credentials is None or not ready:
            logger.info(
                "(dry-run) twilio delivery",
                extra={
                    "tenant_id": str(tenant.id),
                    "channel": channel,
                    "to": to,
                    "body": preview,
                },
            )
            return DeliveryResult(status=DeliveryStatus.DRY_RUN, channel=channel, to=to)

        path = f"/2010-04-01/Accounts/{credentials.account_sid}/{resource}"
        try:
            response = await self._client.post(
                path,
                data=form,
                auth=(credentials.account_sid, credentials.auth_token),
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            logger.error(
                "twilio rejected delivery",
                extra={
                    "tenant_id": str(tenant.id),
                    "channel": channel,
                    "to": to,
                    "status": exc.response.status_code,
                    "body": exc.response.text[:500],
                },
            )
            return DeliveryResult(
                status=DeliveryStatus.FAILED, channel=channel, to=to, error=str(exc)
            )
        except httpx.HTTPError as exc:
            logger.exception(
                "twilio delivery failed",
                extra={"tenant_id": str(tenant.id), "channel": channel, "to": to},
            )
            return DeliveryResult(
                status=DeliveryStatus.FAILED, channel=channel, to=to, error=str(exc)
            )

        sid = response.json().get("sid") if response.content else None
        return DeliveryResult(status=DeliveryStatus.SENT, channel=channel, to=to, sid=sid)
