from __future__ import annotations

import pytest

from guestpilot.ai.classifier import (
    KeywordIntentClassifier,
    LLMIntentClassifier,
    build_intent_classifier,
    extract_json,
)
from guestpilot.core.config import OpenAISettings
from guestpilot.core.domain import Intent

pytestmark = pytest.mark.unit


@pytest.mark.parametrize(
    ("message", "intent", "confidence"),
    [
        ("There is a FIRE in the kitchen", Intent.EMERGENCY, 0.9),
        ("What's the door code?", Intent.CHECK_IN_INFO, 0.7),
        ("Can we get a late checkout?", Intent.CHECK_OUT_INFO, 0.7),
        ("What is the wifi password", Intent.GENERAL_INFO, 0.6),
        ("The shower is broken", Intent.SUPPORT_REQUEST, 0.6),
        ("Lovely place, thanks", Intent.UNKNOWN, 0.3),
    ],
)
def test_keyword_rules(message: str, intent: Intent, confidence: float) -> None:
    result = KeywordIntentClassifier().classify_text(message)

    assert result.intent is intent
    assert result.confidence == confidence


def test_keyword_rules_are_ordered() -> None:
    result = KeywordIntentClassifier().classify_text("emergency! the lock at check-in is broken")

    assert result.intent is Intent.EMERGENCY


def test_keyword_classifier_is_deterministic() -> None:
    classifier = KeywordIntentClassifier()
    message = "Is there parking and what's the wifi?"

    assert {classifier.classify_text(message) for _ in range(5)} == {
        classifier.classify_text(message)
    }


@pytest.mark.asyncio
async def test_empty_message_short_circuits(stub_chat) -> None:  # noqa: ANN001
    chat = stub_chat('{"intent": "emergency", "confidence": 1}')
    result = await LLMIntentClassifier(chat, model="gpt-test").classify("   ")

    assert result.intent is Intent.UNKNOWN
    assert result.confidence == 0.0
    assert result.reason == "Empty message"
    assert chat.calls == []


@pytest.mark.asyncio
async def test_llm_output_is_parsed_and_clamped(stub_chat) -> None:  # noqa: ANN001
    chat = stub_chat('```json\n{"intent": "Check_Out_Info", "confidence": 1.7}\n```')
    result = await LLMIntentClassifier(chat, model="gpt-test").classify("When do we leave?")

    assert result.intent is Intent.CHECK_OUT_INFO
    assert result.confidence == 1.0
    assert result.reason == "Classified by OpenAI"
    assert chat.calls[0]["model"] == "gpt-test"
    assert chat.calls[0]["temperature"] == 0


@pytest.mark.asyncio
async def test_llm_unknown_label_and_missing_confidence(stub_chat) -> None:  # noqa: ANN001
    chat = stub_chat('{"intent": "refund_request", "reason": "money"}')
    result = await LLMIntentClassifier(chat, model="gpt-test").classify("I want my money back")

    assert result.intent is Intent.UNKNOWN
    assert result.confidence == 0.5
    assert result.reason == "money"


@pytest.mark.asyncio
@pytest.mark.parametrize("reply", ["not json", "[1, 2]", ""])
async def test_llm_failures_use_keyword_fallback(stub_chat, reply: str) -> None:  # noqa: ANN001
    result = await LLMIntentClassifier(stub_chat(reply), model="gpt-test").classify(
        "The heater is broken"
    )

    assert result.intent is Intent.SUPPORT_REQUEST
    assert result.reason == "Keyword match"


@pytest.mark.asyncio
async def test_llm_transport_error_uses_keyword_fallback(stub_chat) -> None:  # noqa: ANN001
    chat = stub_chat(error=RuntimeError("timeout"))
    result = await LLMIntentClassifier(chat, model="gpt-test").classify("flood in the bathroom")

    assert result.intent is Intent.EMERGENCY


def test_extract_json_strips_fences() -> None:
    assert extract_json('```json\n{"a": 1}\n```') == '{"a": 1}'
    assert extract_json('`{"a": 1}`') == '{"a": 1}'


def test_build_intent_classifier_selects_strategy(stub_chat) -> None:  # noqa: ANN001
    settings = OpenAISettings(api_key=None)

    assert isinstance(build_intent_classifier(settings, None), KeywordIntentClassifier)
    assert isinstance(build_intent_classifier(settings, stub_chat("")), LLMIntentClassifier)
