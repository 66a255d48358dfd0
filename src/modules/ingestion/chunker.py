"""Sentence-based text chunking bounded by word count.

Sentences are grouped greedily until adding the next one would push the
chunk past max_words. A single sentence longer than the limit becomes a
chunk of its own rather than being cut mid-sentence.
"""

import re
from dataclasses import dataclass

import structlog

logger = structlog.get_logger()

# A sentence is a run of text ending in terminal punctuation; any trailing
# text without punctuation is kept as a final sentence
_SENTENCE_PATTERN = re.compile(r"[^.!?]+[.!?]+|[^.!?]+$")


@dataclass
class ChunkingConfig:
    """Configuration for text chunking."""

    max_words: int = 1000

    def __post_init__(self) -> None:
        if self.max_words < 1:
            raise ValueError("max_words must be at least 1")


@dataclass(frozen=True)
class TextChunk:
    """A chunk of document text awaiting an embedding."""

    id: str
    text: str
    word_count: int
    index: int


def split_sentences(text: str) -> list[str]:
    """Split text into trimmed, non-empty sentences."""
    return [
        sentence
        for sentence in (m.group(0).strip() for m in _SENTENCE_PATTERN.finditer(text))
        if sentence
    ]


def _word_count(text: str) -> int:
    return len(text.split())


def chunk_text(
    text: str,
    config: ChunkingConfig | None = None,
    *,
    id_prefix: str = "",
) -> list[TextChunk]:
    """Chunk text on sentence boundaries.

    Args:
        text: Full document text.
        config: Chunking configuration (uses defaults if not provided).
        id_prefix: Prepended to each chunk id ("chunk-0", "chunk-1", ...)
            so chunks from different documents do not collide.

    Returns:
        Chunks in document order; empty for blank text.
    """
    config = config or ChunkingConfig()
    sentences = split_sentences(text)

    groups: list[tuple[list[str], int]] = []
    current: list[str] = []
    current_words = 0

    for sentence in sentences:
        words = _word_count(sentence)
        if current and current_words + words > config.max_words:
            groups.append((current, current_words))
            current = []
            current_words = 0
        current.append(sentence)
        current_words += words

    if current:
        groups.append((current, current_words))

    chunks = [
        TextChunk(
            id=f"{id_prefix}chunk-{i}",
            text=" ".join(group),
            word_count=words,
            index=i,
        )
        for i, (group, words) in enumerate(groups)
    ]

    logger.debug(
        "document_chunked",
        chunks_created=len(chunks),
        sentences=len(sentences),
        max_words=config.max_words,
        content_length=len(text),
    )
    return chunks
