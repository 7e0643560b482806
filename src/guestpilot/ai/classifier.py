"""Guest message intent classification."""

from __future__ import annotations

import json
import logging
import re
from typing import Protocol

from guestpilot.core.config import OpenAISettings
from guestpilot.core.domain import Intent, IntentClassification

from .llm import ChatClient

logger = logging.getLogger(__name__)

INTENT_LABELS = tuple(intent.value for intent in Intent)

_KEYWORD_RULES: tuple[tuple[re.Pattern[str], Intent, float], ...] = (
    (re.compile(r"(fire|flood|ambulance|emergency|help asap)"), Intent.EMERGENCY, 0.9),
    (
        re.compile(r"(check-in|checkin|arrival|door code|access code|lock)"),
        Intent.CHECK_IN_INFO,
        0.7,
    ),
    (re.compile(r"(check-out|checkout|departure|late checkout)"), Intent.CHECK_OUT_INFO, 0.7),
    (re.compile(r"(wifi|internet|password)"), Intent.GENERAL_INFO, 0.6),
    (re.compile(r"(support|issue|problem|maintenance|broken)"), Intent.SUPPORT_REQUEST, 0.6),
)
_FENCED_JSON = re.compile(r"```(?:json)?\s*([\s\S]*?)```")

EMPTY_MESSAGE = IntentClassification(Intent.UNKNOWN, 0.0, "Empty message")


class IntentClassifier(Protocol):
    async def classify(self, message: str) -> IntentClassification: ...


class KeywordIntentClassifier:
    """Ordered regex rules; the first match wins."""

    async def classify(self, message: str) -> IntentClassification:
        return self.classify_text(message)

    def classify_text(self, message: str) -> IntentClassification:
        if not message or not message.strip():
            return EMPTY_MESSAGE
        normalized = message.lower()
        for pattern, intent, confidence in _KEYWORD_RULES:
            if pattern.search(normalized):
                return IntentClassification(intent, confidence, "Keyword match")
        return IntentClassification(Intent.UNKNOWN, 0.3, "Fallback")


def extract_json(text: str) -> str:
    """Strip markdown fences and stray backticks around a JSON answer."""

    cleaned = text.strip()
    match = _FENCED_JSON.search(cleaned)
    if match:
        cleaned = match.group(1).strip()
    return cleaned.strip("`")


def _build_prompt(message: str) -> str:
    return (
        "You are an intent classification system for a hospitality guest messaging platform."
        f" Classify the guest's message into one of the following intents: {', '.join(INTENT_LABELS)}."
        " Also provide a confidence score between 0 and 1."
        f'\nGuest message: "{message}"\n'
        "Return a JSON object with keys intent, confidence, and an optional reason."
    )


class LLMIntentClassifier:
    """Model-backed classifier; any failure defers to ``fallback``."""

    def __init__(
        self,
        chat: ChatClient,
        *,
        model: str,
        fallback: KeywordIntentClassifier | None = None,
    ) -> None:
        self._chat = chat
        self._model = model
        self._fallback = fallback or KeywordIntentClassifier()

    async def classify(self, message: str) -> IntentClassification:
        if not message or not message.strip():
            return EMPTY_MESSAGE

        try:
            output = await self._chat.complete(
                model=self._model,
                system=_build_prompt(message),
                temperature=0,
                max_tokens=200,
            )
            if not output:
                raise ValueError("empty completion")
            return self._parse(output)
        except Exception:
            logger.warning(
                "openai intent classification failed; using keyword fallback",
                exc_info=True,
            )
            return self._fallback.classify_text(message)

    @staticmethod
    def _parse(output: str) -> IntentClassification:
        parsed = json.loads(extract_json(output))
        if not isinstance(parsed, dict):
            raise ValueError("classification output is not a JSON object")
        confidence = parsed.get("confidence")
        if isinstance(confidence, bool) or not isinstance(confidence, (int, float)):
            confidence = 0.5
        reason = parsed.get("reason")
        return IntentClassification(
            intent=Intent.parse(parsed.get("intent")),
            confidence=min(max(float(confidence), 0.0), 1.0),
            reason=reason if isinstance(reason, str) and reason else "Classified by OpenAI",
        )


def build_intent_classifier(
    settings: OpenAISettings, chat: ChatClient | None
) -> IntentClassifier:
    """Pick the model-backed classifier when a chat client is available."""

    keyword = KeywordIntentClassifier()
    if chat is None:
        return keyword
    return LLMIntentClassifier(chat, model=settings.intent_model, fallback=keyword)
