"""Guest reply generation: fixed templates or a chat model."""

from __future__ import annotations

import json
import logging
from typing import Any, Protocol

from guestpilot.core.config import OpenAISettings
from guestpilot.core.domain import Intent

from .llm import ChatClient
from .retriever import RetrievedContext

logger = logging.getLogger(__name__)


class ResponseGenerator(Protocol):
    async def generate(
        self,
        intent: Intent,
        tenant_name: str,
        guest_name: str | None,
        message: str,
        context: RetrievedContext,
        history_context: str | None = None,
    ) -> str: ...


class TemplateResponseGenerator:
    """Deterministic per-intent replies."""

    async def generate(
        self,
        intent: Intent,
        tenant_name: str,
        guest_name: str | None,
        message: str,
        context: RetrievedContext,
        history_context: str | None = None,
    ) -> str:
        return self.render(intent, tenant_name, guest_name, context)

    def render(
        self,
        intent: Intent,
        tenant_name: str,
        guest_name: str | None,
        context: RetrievedContext,
    ) -> str:
        name = guest_name or "there"
        reservation = context.reservation

        if intent is Intent.CHECK_IN_INFO:
            door_code = reservation.lookup("doorCode", "door_code") if reservation else None
            return (
                f"Hi {name}! Check-in details for {tenant_name}: your door code is "
                f"{door_code or 'available in your guest portal'}. "
                "Let us know if you need anything else!"
            )
        if intent is Intent.CHECK_OUT_INFO:
            checkout = (
                reservation.lookup("checkoutTime", "checkOut", "check_out")
                if reservation
                else None
            )
            return (
                f"Hi {name}! Checkout is by {checkout or '11:00 AM'}. "
                "Please leave the keys on the kitchen counter. Safe travels!"
            )
        if intent is Intent.EMERGENCY:
            return (
                f"Hi {name}, we're alerting our on-call team now. "
                "If you're in immediate danger, dial emergency services."
            )
        if intent is Intent.SUPPORT_REQUEST:
            return (
                f"Hi {name}, thanks for letting us know. Our support team is reviewing "
                "your message and will follow up shortly."
            )
        if intent is Intent.GENERAL_INFO:
            lines = "\n".join(
                f"- {entry.title or 'Info'}: {entry.content[:200]}"
                for entry in context.knowledge_entries
            )
            return f"Hi {name}! Here's what I found:\n{lines or 'I will follow up with more details soon.'}"
        return (
            f"Hi {name}, thanks for reaching out. "
            "We'll review your message and get back to you shortly."
        )


def _as_json(value: Any) -> str:
    return json.dumps(value or {}, indent=2, default=str, ensure_ascii=False)


def build_reply_prompt(
    intent: Intent,
    tenant_name: str,
    guest_name: str | None,
    message: str,
    context: RetrievedContext,
    history_context: str | None = None,
) -> str:
    snippets = "\n".join(
        f"- {entry.title or 'Info'}: {entry.content}" for entry in context.knowledge_entries
    )
    history_section = (
        "\n\nConversation context (recent messages for reference):"
        f"{history_context}\n\n"
        "Use this context to understand what the guest is responding to. For example, "
        'if a guest says "yes please", check the conversation history to see what '
        "question they're answering."
        if history_context
        else ""
    )
    reservation = dict(context.reservation.raw) if context.reservation else {}
    listing = dict(context.listing.raw) if context.listing else {}
    return (
        f"You are the AI concierge for {tenant_name}. "
        "Respond to the guest in a friendly, concise tone.\n"
        f"Guest name: {guest_name or 'Guest'}\n"
        f"Intent: {intent.value}\n"
        f"Guest message: {message}{history_section}\n"
        f"Reservation data: {_as_json(reservation)}\n"
        f"Listing data: {_as_json(listing)}\n"
        "Knowledge base snippets:\n"
        f"{snippets or 'None'}\n\n"
        "Compose a clear response tailored to the guest. If the guest's message seems "
        'like a response (e.g., "yes please", "sounds good"), use the conversation '
        "context to understand what they're responding to."
    )


class LLMResponseGenerator:
    """Chat-model replies with the template generator as a safety net."""

    def __init__(
        self,
        chat: ChatClient,
        *,
        model: str,
        fallback: TemplateResponseGenerator | None = None,
    ) -> None:
        self._chat = chat
        self._model = model
        self._fallback = fallback or TemplateResponseGenerator()

    async def generate(
        self,
        intent: Intent,
        tenant_name: str,
        guest_name: str | None,
        message: str,
        context: RetrievedContext,
        history_context: str | None = None,
    ) -> str:
        logger.debug(
            "generating reply",
            extra={"intent": intent.value, "knowledge_entries": len(context.knowledge_entries)},
        )
        prompt = build_reply_prompt(
            intent, tenant_name, guest_name, message, context, history_context
        )
        try:
            output = await self._chat.complete(
                model=self._model,
                system=prompt,
                temperature=0.7,
                max_tokens=300,
            )
        except Exception:
            logger.warning("openai reply generation failed; using template", exc_info=True)
            output = ""
        if not output.strip():
            return self._fallback.render(intent, tenant_name, guest_name, context)
        return output.strip()


def build_response_generator(
    settings: OpenAISettings, chat: ChatClient | None
) -> ResponseGenerator:
    template = TemplateResponseGenerator()
    if chat is None:
        return template
    return LLMResponseGenerator(chat, model=settings.response_model, fallback=template)
