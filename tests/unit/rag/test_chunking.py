from __future__ import annotations

import pytest

from guestpilot.rag.chunking import ChunkingConfig, chunk_text

pytestmark = pytest.mark.unit


def test_default_chunking_config() -> None:
    config = ChunkingConfig()
    assert config.chunk_size == 800
    assert config.overlap == 200


@pytest.mark.parametrize(
    ("chunk_size", "overlap"),
    [(0, 0), (100, -1), (100, 100)],
)
def test_invalid_config_rejected(chunk_size: int, overlap: int) -> None:
    with pytest.raises(ValueError):
        ChunkingConfig(chunk_size=chunk_size, overlap=overlap)


def test_short_text_is_single_chunk() -> None:
    assert chunk_text("Checkout is at 11am.") == ["Checkout is at 11am."]


def test_chunks_prefer_sentence_boundaries() -> None:
    text = " ".join(f"Sentence number {index} describes the house rules." for index in range(40))
    chunks = chunk_text(text, ChunkingConfig(chunk_size=200, overlap=50))

    assert len(chunks) > 1
    assert all(len(chunk) <= 200 for chunk in chunks)
    assert all(chunk.endswith(".") for chunk in chunks[:-1])


def test_chunks_cover_every_word() -> None:
    words = [f"word{index}" for index in range(400)]
    text = " ".join(words)
    chunks = chunk_text(text, ChunkingConfig(chunk_size=120, overlap=30))

    covered = set(" ".join(chunks).split())
    assert set(words) <= covered
    assert chunks[0].startswith("word0")
    assert chunks[-1].endswith("word399")


def test_unbroken_text_still_terminates() -> None:
    text = "x" * 1000
    chunks = chunk_text(text, ChunkingConfig(chunk_size=300, overlap=100))

    assert chunks[0] == "x" * 300
    assert "".join(chunks).count("x") >= 1000


def _span_of(text: str, chunk: str, after: int) -> tuple[int, int]:
    start = text.find(chunk, after)
    assert start >= 0, chunk
    return start, start + len(chunk)


def test_chunk_offsets_increase_and_cover_the_document() -> None:
    sentences = [
        f"Guest note {index} mentions {'parking ' * (index % 5)}and towels."
        for index in range(200)
    ]
    text = " ".join(sentences)[:2000].rstrip()
    chunks = chunk_text(text, ChunkingConfig(chunk_size=800, overlap=200))

    spans: list[tuple[int, int]] = []
    previous = -1
    for chunk in chunks:
        span = _span_of(text, chunk, previous + 1)
        assert span[0] > previous
        assert span[1] - span[0] <= 800
        spans.append(span)
        previous = span[0]

    assert spans[0][0] == 0
    assert spans[-1][1] == len(text)
    for (_, prev_end), (next_start, _) in zip(spans, spans[1:]):
        assert next_start <= prev_end
    assert len(chunks) <= 4


def test_early_sentence_break_does_not_stall_progress() -> None:
    text = "Hi. " + "word " * 400
    chunks = chunk_text(text.strip(), ChunkingConfig(chunk_size=300, overlap=100))

    assert len(chunks[0]) > 200
    assert all(len(chunk) > 100 for chunk in chunks[:-1])
