"""Per-message AI pipeline: classify, escalate or retrieve, generate, persist."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from uuid import UUID

from guestpilot.conversations.store import ConversationStore
from guestpilot.core.config import AppSettings, EscalationSettings
from guestpilot.core.db.models import Conversation, Tenant
from guestpilot.core.domain import (
    ConversationStatus,
    GuestContext,
    HistoryMessage,
    Intent,
    IntentClassification,
)
from guestpilot.core.metrics import INTENTS
from guestpilot.integrations.hostaway import PlatformClient
from guestpilot.integrations.messaging import MessagingGateway
from guestpilot.rag.embeddings import Embedder
from guestpilot.rag.knowledge import KnowledgeStore

from .classifier import IntentClassifier, build_intent_classifier
from .escalation import EscalationController, resolve_reservation_id
from .generator import ResponseGenerator, build_response_generator
from .llm import ChatClient
from .retriever import ContextRetriever

logger = logging.getLogger(__name__)

LOW_CONFIDENCE_REPLY = (
    "Thanks for your message! I'm looping in our team to make sure we give you "
    "the best answer shortly."
)
_TOKEN_SPLIT = re.compile(r"[^a-z0-9]+")


@dataclass(slots=True, frozen=True)
class AIReply:
    message: str
    log_id: UUID
    classification: IntentClassification


def emergency_reply(guest: GuestContext) -> str:
    return (
        f"Hi {guest.name or 'there'}, we've alerted our emergency response team "
        "and will reach out immediately."
    )


def message_keywords(message: str, limit: int = 5) -> list[str]:
    return [token for token in _TOKEN_SPLIT.split(message.lower()) if len(token) > 3][:limit]


def render_history(history: list[HistoryMessage], size: int) -> str:
    if not history:
        return ""
    lines = "\n".join(item.render() for item in history[-size:])
    return f"\n\nRecent conversation history:\n{lines}"


class ConversationEngine:
    """Turn one inbound guest message into at most one persisted AI reply."""

    def __init__(
        self,
        *,
        classifier: IntentClassifier,
        retriever: ContextRetriever,
        generator: ResponseGenerator,
        escalation: EscalationController,
        conversations: ConversationStore,
        settings: EscalationSettings,
    ) -> None:
        self._classifier = classifier
        self._retriever = retriever
        self._generator = generator
        self._escalation = escalation
        self._conversations = conversations
        self._settings = settings

    async def process_message(
        self,
        tenant: Tenant,
        conversation: Conversation,
        guest: GuestContext,
        message: str,
    ) -> AIReply | None:
        """Return the pending reply, or ``None`` when a human has taken over."""

        if conversation.status == ConversationStatus.PAUSED_BY_HUMAN.value:
            logger.debug(
                "conversation paused by human; skipping ai response",
                extra={"conversation_id": str(conversation.id)},
            )
            return None

        history = self._conversations.get_conversation_history_for_ai(
            conversation.id,
            self._settings.history_limit,
            exclude_log_id=guest.guest_message_log_id,
        )
        history_context = render_history(history, self._settings.history_context_size)

        classification = await self._classifier.classify(f"{message}{history_context}")
        INTENTS.labels(classification.intent.value).inc()
        logger.info(
            "guest message classified",
            extra={
                "tenant_id": str(tenant.id),
                "conversation_id": str(conversation.id),
                "intent": classification.intent.value,
                "confidence": round(classification.confidence, 2),
            },
        )

        reservation_id = resolve_reservation_id(guest)
        if classification.intent is Intent.EMERGENCY:
            await self._escalation.trigger_emergency_call(tenant, guest, message)
            reply = emergency_reply(guest)
        elif classification.confidence < self._settings.confidence_threshold:
            await self._escalation.notify_low_confidence(
                tenant, guest, message, classification.intent
            )
            reply = LOW_CONFIDENCE_REPLY
        else:
            context = await self._retriever.retrieve(
                classification.intent,
                tenant,
                reservation_id=reservation_id,
                message=message,
                topic_keywords=message_keywords(message),
            )
            if context.reservation is None and reservation_id:
                context.reservation = await self._retriever.fetch_reservation(
                    tenant, reservation_id
                )
            reply = await self._generator.generate(
                classification.intent,
                tenant.name,
                guest.name,
                message,
                context,
                history_context or None,
            )

        if not reply:
            return None

        log_id = self._conversations.create_pending_ai_reply(
            conversation,
            reply,
            {
                "intent": classification.intent.value,
                "confidence": classification.confidence,
                "reason": classification.reason,
                "reservationId": reservation_id,
                "guestMessageLogId": (
                    str(guest.guest_message_log_id) if guest.guest_message_log_id else None
                ),
            },
        )
        return AIReply(message=reply, log_id=log_id, classification=classification)


def build_conversation_engine(
    conversations: ConversationStore,
    settings: AppSettings,
    *,
    platform: PlatformClient,
    messaging: MessagingGateway,
    chat: ChatClient | None = None,
    embedder: Embedder | None = None,
) -> ConversationEngine:
    """Wire the pipeline strategies for one database session."""

    knowledge = KnowledgeStore(conversations.session, embedder)
    return ConversationEngine(
        classifier=build_intent_classifier(settings.openai, chat),
        retriever=ContextRetriever(platform, knowledge.search_strategy),
        generator=build_response_generator(settings.openai, chat),
        escalation=EscalationController(messaging, conversations, settings.escalation),
        conversations=conversations,
        settings=settings.escalation,
    )
