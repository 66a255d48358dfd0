"""Schemas for the RAG module."""

from dataclasses import dataclass, field

from src.modules.vectorstore.schemas import MetadataValue


@dataclass(frozen=True)
class RetrievedChunk:
    """A chunk selected as grounding context for a query."""

    text: str
    source: str
    similarity_score: float
    metadata: dict[str, MetadataValue] = field(default_factory=dict)


@dataclass
class RAGResponse:
    """Response from the RAG pipeline."""

    answer: str
    chunks_used: list[RetrievedChunk]
    question: str
    model: str | None = None

    @property
    def sources(self) -> list[str]:
        """Distinct sources in retrieval order."""
        return list(dict.fromkeys(c.source for c in self.chunks_used))
