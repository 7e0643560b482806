"""Boundary-aware text chunking for knowledge documents."""

from __future__ import annotations

from dataclasses import dataclass

_SENTENCE_BOUNDARIES = (". ", ".\n", "! ", "?\n")


@dataclass(slots=True, frozen=True)
class ChunkingConfig:
    """Configuration parameters controlling chunk sizes and overlap."""

    chunk_size: int = 800
    overlap: int = 200

    def __post_init__(self) -> None:
        if self.chunk_size <= 0:
            msg = "chunk_size must be greater than zero"
            raise ValueError(msg)
        if self.overlap < 0:
            msg = "overlap must be non-negative"
            raise ValueError(msg)
        if self.overlap >= self.chunk_size:
            msg = "overlap must be smaller than chunk_size"
            raise ValueError(msg)


def _last_boundary(text: str, end: int) -> int:
    """Return the index of the latest sentence boundary starting before ``end``."""

    return max(text.rfind(marker, 0, end + len(marker) - 1) for marker in _SENTENCE_BOUNDARIES)


def chunk_text(text: str, config: ChunkingConfig | None = None) -> list[str]:
    """Split ``text`` into overlapping chunks, preferring sentence then word breaks.

    Consecutive chunks share up to ``overlap`` characters and their start
    offsets strictly increase, so the chunks always cover the whole input.
    """

    config = config or ChunkingConfig()
    if len(text) <= config.chunk_size:
        return [text]

    chunks: list[str] = []
    start = 0
    while start < len(text):
        end = start + config.chunk_size
        if end < len(text):
            # Breaks inside the overlap window would stall the next start.
            floor = start + config.overlap
            boundary = _last_boundary(text, end)
            if boundary >= floor:
                end = boundary + 1
            else:
                space = text.rfind(" ", 0, end + 1)
                if space > floor:
                    end = space
        else:
            end = len(text)

        piece = text[start:end].strip()
        if piece:
            chunks.append(piece)
        if end >= len(text):
            break
        start = max(end - config.overlap, start + 1)
    return chunks
