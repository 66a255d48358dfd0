"""Request and response models for the HTTP API."""

from typing import Any, Literal

from pydantic import BaseModel, Field

from src.modules.rag import RetrievedChunk
from src.modules.vectorstore import ChunkRecord, SaveResult

MAX_QUERY_LENGTH = 2000
MAX_TOP_K = 50


class StatsResponse(BaseModel):
    total_documents: int
    average_embedding_length: float
    total_count_field: float
    count_field: str


class DocumentOut(BaseModel):
    id: str
    text: str
    metadata: dict[str, Any]
    embedding_length: int

    @classmethod
    def from_record(cls, record: ChunkRecord) -> "DocumentOut":
        return cls(
            id=record.id,
            text=record.text,
            metadata=dict(record.metadata),
            embedding_length=len(record.embedding),
        )


class DocumentListResponse(BaseModel):
    total: int
    documents: list[DocumentOut]


class SaveOut(BaseModel):
    outcome: Literal["full_success", "degraded_success", "failure"]
    key: str | None
    record_count: int
    error: str | None = None

    @classmethod
    def from_result(cls, result: SaveResult | None) -> "SaveOut | None":
        if result is None:
            return None
        return cls(
            outcome=result.outcome.value,
            key=result.key,
            record_count=result.record_count,
            error=result.error,
        )


class ClearResponse(BaseModel):
    removed: int


class DeleteResponse(BaseModel):
    id: str
    removed: bool
    save: SaveOut | None = None


class ImportResponse(BaseModel):
    sources: int
    merged_records: int
    inserted: int
    replaced: int
    rejected_records: int
    errors: list[str]
    save: SaveOut | None = None


class ChunkOut(BaseModel):
    text: str
    source: str
    similarity_score: float
    metadata: dict[str, Any]

    @classmethod
    def from_chunk(cls, chunk: RetrievedChunk) -> "ChunkOut":
        return cls(
            text=chunk.text,
            source=chunk.source,
            similarity_score=chunk.similarity_score,
            metadata=dict(chunk.metadata),
        )


class QueryRequest(BaseModel):
    query: str = Field(min_length=1, max_length=MAX_QUERY_LENGTH)
    top_k: int | None = Field(default=None, ge=1, le=MAX_TOP_K)


class QueryResponse(BaseModel):
    query: str
    results: list[ChunkOut]


class HistoryMessage(BaseModel):
    role: Literal["user", "assistant"]
    content: str


class AskRequest(BaseModel):
    question: str = Field(min_length=1, max_length=MAX_QUERY_LENGTH)
    history: list[HistoryMessage] = Field(default_factory=list)
    top_k: int | None = Field(default=None, ge=1, le=MAX_TOP_K)


class AskResponse(BaseModel):
    question: str
    answer: str
    sources: list[str]
    chunks: list[ChunkOut]


class IngestResponse(BaseModel):
    source: str
    chunks_total: int
    chunks_stored: int
    failed_chunk_ids: list[str]
    save: SaveOut | None = None
