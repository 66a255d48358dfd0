"""Ingestion module: document loading, chunking and embedding."""

from src.modules.ingestion.analysis import ContentAnalysis, analyze_content
from src.modules.ingestion.chunker import (
    ChunkingConfig,
    TextChunk,
    chunk_text,
    split_sentences,
)
from src.modules.ingestion.loader import (
    DocumentLoadError,
    LoadedDocument,
    list_documents,
    load_document,
)
from src.modules.ingestion.service import (
    ChunkPayloadError,
    IngestionResult,
    IngestionService,
)

__all__ = [
    "ChunkPayloadError",
    "ChunkingConfig",
    "ContentAnalysis",
    "DocumentLoadError",
    "IngestionResult",
    "IngestionService",
    "LoadedDocument",
    "TextChunk",
    "analyze_content",
    "chunk_text",
    "list_documents",
    "load_document",
    "split_sentences",
]
