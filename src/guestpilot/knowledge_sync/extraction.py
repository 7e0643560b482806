"""Question/answer mining from guest conversation threads."""

from __future__ import annotations

import re
from collections.abc import Iterable, Sequence
from dataclasses import dataclass

from guestpilot.integrations.normalize import PlatformMessage, parse_timestamp

MIN_MESSAGE_LENGTH = 10
MIN_QUESTION_LENGTH = 3
MIN_DOCUMENT_LENGTH = 30

GREETINGS = frozenset({"hi", "hello", "hey", "ok", "okay", "thanks", "thank you"})

_WIFI_QUESTION_PATTERNS = tuple(
    re.compile(pattern, re.IGNORECASE)
    for pattern in (
        r"\bwifi\b",
        r"\bwi-fi\b",
        r"\bwireless\b",
        r"\binternet\b",
        r"\bnetwork\b",
        r"\bpassword.*wifi",
        r"\bwifi.*password",
        r"\bnetwork.*password",
        r"\binternet.*password",
        r"\bwifi.*code",
        r"\bwireless.*code",
    )
)
_CODE_ANSWER_PATTERNS = tuple(
    re.compile(pattern, re.IGNORECASE)
    for pattern in (
        r"keybox.*code",
        r"code to your property",
        r"door.*code",
        r"access.*code",
        r"wifi.*password",
        r"wifi.*code",
        r"network.*password",
    )
)
_CODE_ONLY = re.compile(r"^[^a-zA-Z]*[\d-]{8,}[^a-zA-Z]*$")


@dataclass(slots=True, frozen=True)
class ThreadMessage:
    body: str
    is_incoming: bool
    date: str | None = None
    conversation_id: str | None = None


@dataclass(slots=True, frozen=True)
class QAPair:
    question: str
    answer: str
    index: int

    def render(self) -> str:
        return f"Q: {self.question}\nA: {self.answer}"


def usable_messages(
    messages: Iterable[PlatformMessage], conversation_id: str | None = None
) -> list[ThreadMessage]:
    """Keep substantive, fully rendered messages in chronological order."""

    kept = [
        ThreadMessage(
            body=message.body.strip(),
            is_incoming=message.is_incoming,
            date=message.date,
            conversation_id=conversation_id,
        )
        for message in messages
        if len(message.body.strip()) > MIN_MESSAGE_LENGTH and "{{" not in message.body
    ]
    return sort_chronologically(kept)


def sort_chronologically(messages: Sequence[ThreadMessage]) -> list[ThreadMessage]:
    """Order dated messages by time; undated ones keep their original slots."""

    result = list(messages)
    dated = [
        (index, timestamp)
        for index, message in enumerate(result)
        if (timestamp := parse_timestamp(message.date)) is not None
    ]
    slots = [index for index, _ in dated]
    ordered = sorted(dated, key=lambda item: item[1])
    originals = list(result)
    for slot, (source, _) in zip(slots, ordered, strict=True):
        result[slot] = originals[source]
    return result


def is_wifi_question(question: str) -> bool:
    return any(pattern.search(question) for pattern in _WIFI_QUESTION_PATTERNS)


def is_code_delivery(body: str) -> bool:
    """True for host messages that only hand out codes or credentials."""

    dash_count = body.count("-")
    if body and dash_count / len(body) > 0.3 and len(body) > 30 and dash_count > 10:
        return True
    stripped = body.strip()
    if len(stripped) < 100 and any(pattern.search(body) for pattern in _CODE_ANSWER_PATTERNS):
        return True
    return len(stripped) < 50 and bool(_CODE_ONLY.match(stripped))


def extract_qa_pairs(messages: Iterable[ThreadMessage]) -> list[QAPair]:
    """Pair each guest question with the first usable host answer that follows it."""

    pairs: list[QAPair] = []
    question: str | None = None
    for message in messages:
        body = message.body.strip()
        if message.is_incoming:
            if len(body) < MIN_QUESTION_LENGTH or body.lower() in GREETINGS:
                continue
            question = None if is_wifi_question(body) else body
            continue
        if is_code_delivery(message.body):
            continue
        if question:
            pairs.append(QAPair(question=question, answer=message.body, index=len(pairs)))
            question = None
    return pairs
