"""Ingestion service: load, chunk, embed and store documents."""

import asyncio
import json
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import structlog

from src.infrastructure.embeddings import EmbeddingProvider, EmbeddingProviderError
from src.infrastructure.observability import get_tracer
from src.modules.ingestion.analysis import analyze_content
from src.modules.ingestion.chunker import ChunkingConfig, TextChunk, chunk_text
from src.modules.ingestion.loader import LoadedDocument, load_document
from src.modules.vectorstore import (
    ChunkRecord,
    PersistenceAdapter,
    SaveResult,
    VectorStore,
)
from src.modules.vectorstore.schemas import (
    CHUNK_INDEX_KEY,
    SOURCE_FILE_KEY,
    WORD_COUNT_KEY,
    MetadataValue,
)

logger = structlog.get_logger()
tracer = get_tracer(__name__)


class ChunkPayloadError(ValueError):
    """Raised when a pre-chunked JSON payload has the wrong shape."""


@dataclass
class IngestionResult:
    """Outcome of ingesting one document."""

    source: str
    chunks_total: int
    chunks_stored: int
    failed_chunk_ids: list[str] = field(default_factory=list)
    save: SaveResult | None = None

    @property
    def success(self) -> bool:
        return self.chunks_stored > 0 or self.chunks_total == 0


def _info_keywords(raw_metadata: Mapping[str, Any]) -> list[str]:
    value = raw_metadata.get("Keywords")
    if not isinstance(value, str):
        return []
    return [k.strip() for k in value.split(",") if k.strip()]


def document_metadata(doc: LoadedDocument) -> dict[str, MetadataValue]:
    """Metadata shared by every chunk of a document.

    documentType is the content category from analyze_content and fileType
    the source format. Keywords from the PDF info dictionary take precedence
    over the ones found by word frequency.
    """
    analysis = analyze_content(doc.content)
    metadata: dict[str, MetadataValue] = {
        "title": doc.title,
        "fileType": doc.document_type,
        "documentType": analysis.category,
        "keywords": _info_keywords(doc.raw_metadata) or analysis.keywords,
        "contentFeatures": analysis.content_features(),
        "pageCount": doc.page_count,
        "totalWordCount": doc.word_count,
    }
    if analysis.detected_title:
        metadata["detectedTitle"] = analysis.detected_title
    if doc.raw_metadata:
        metadata["documentInfo"] = dict(doc.raw_metadata)
    return metadata


class IngestionService:
    """Turns documents into stored, embedded chunks.

    Embedding calls run concurrently up to max_concurrency. Records are
    then written to the store in one batch, in chunk order, and the store
    is persisted when an adapter is configured. A chunk whose embedding
    fails is skipped and reported; it never aborts the document.
    """

    def __init__(
        self,
        embedding_provider: EmbeddingProvider,
        store: VectorStore,
        *,
        adapter: PersistenceAdapter | None = None,
        chunking_config: ChunkingConfig | None = None,
        max_concurrency: int = 4,
    ) -> None:
        """Initialize the ingestion service.

        Args:
            embedding_provider: Provider for chunk embeddings.
            store: Store receiving the records.
            adapter: Persists the store after each ingestion when set.
            chunking_config: Chunk size settings.
            max_concurrency: Maximum in-flight embedding calls.
        """
        if max_concurrency < 1:
            raise ValueError("max_concurrency must be at least 1")
        self._embeddings = embedding_provider
        self._store = store
        self._adapter = adapter
        self._chunking_config = chunking_config or ChunkingConfig()
        self._max_concurrency = max_concurrency

    async def _embed_all(self, texts: Sequence[str]) -> list[list[float] | None]:
        """Embed texts concurrently; failed or empty embeddings become None."""
        semaphore = asyncio.Semaphore(self._max_concurrency)

        async def embed_one(position: int, text: str) -> list[float] | None:
            async with semaphore:
                try:
                    embedding = await self._embeddings.embed(text)
                except EmbeddingProviderError as e:
                    logger.warning(
                        "ingestion_chunk_embedding_failed",
                        position=position,
                        error=str(e),
                        error_type=type(e).__name__,
                    )
                    return None
            if not embedding:
                logger.warning("ingestion_chunk_embedding_empty", position=position)
                return None
            return embedding

        return await asyncio.gather(
            *(embed_one(i, text) for i, text in enumerate(texts))
        )

    def _persist(self) -> SaveResult | None:
        if self._adapter is None:
            return None
        return self._store.save_to(self._adapter)

    async def ingest_chunks(
        self,
        chunks: Sequence[TextChunk],
        *,
        source: str,
        base_metadata: Mapping[str, MetadataValue] | None = None,
        stale_prefix: str | None = None,
    ) -> IngestionResult:
        """Embed and store already chunked text.

        Args:
            chunks: Chunks in document order.
            source: File name recorded as sourceFile on every record.
            base_metadata: Document-level metadata copied onto each record.
            stale_prefix: When set, stored records whose id starts with it
                and matches none of chunks are removed in the same batch.

        Returns:
            IngestionResult listing any chunks that could not be embedded.
        """
        with tracer.start_as_current_span("ingestion.ingest") as span:
            span.set_attribute("ingestion.source", source)
            span.set_attribute("ingestion.chunk_count", len(chunks))

            embeddings = await self._embed_all([c.text for c in chunks])

            records: list[ChunkRecord] = []
            failed: list[str] = []
            for chunk, embedding in zip(chunks, embeddings, strict=True):
                if embedding is None:
                    failed.append(chunk.id)
                    continue
                records.append(
                    ChunkRecord(
                        id=chunk.id,
                        text=chunk.text,
                        embedding=embedding,
                        metadata={
                            **(base_metadata or {}),
                            WORD_COUNT_KEY: chunk.word_count,
                            CHUNK_INDEX_KEY: chunk.index,
                            SOURCE_FILE_KEY: source,
                        },
                    )
                )

            if stale_prefix is None:
                batch = self._store.upsert_many(records)
            else:
                batch = self._store.replace_prefixed(
                    stale_prefix, records, keep=[c.id for c in chunks]
                )
            failed.extend(r.record_id or "?" for r in batch.rejected)
            save = self._persist() if batch.accepted or batch.removed else None

            span.set_attribute("ingestion.chunks_stored", batch.accepted)
            span.set_attribute("ingestion.chunks_failed", len(failed))

            logger.info(
                "ingestion_document_stored",
                source=source,
                chunks_total=len(chunks),
                chunks_stored=batch.accepted,
                chunks_failed=len(failed),
                stale_removed=batch.removed,
                save_outcome=save.outcome.value if save else None,
                store_size=self._store.count(),
            )
            return IngestionResult(
                source=source,
                chunks_total=len(chunks),
                chunks_stored=batch.accepted,
                failed_chunk_ids=failed,
                save=save,
            )

    async def ingest_text(
        self,
        text: str,
        *,
        source: str,
        base_metadata: Mapping[str, MetadataValue] | None = None,
    ) -> IngestionResult:
        """Chunk raw text and ingest it under source.

        Chunk ids are "<source>#chunk-<n>". Chunks left over from an earlier,
        longer version of the same source are removed.
        """
        prefix = f"{source}#"
        chunks = chunk_text(text, self._chunking_config, id_prefix=prefix)
        return await self.ingest_chunks(
            chunks, source=source, base_metadata=base_metadata, stale_prefix=prefix
        )

    async def ingest_document(self, file_path: Path) -> IngestionResult:
        """Load a document from disk and ingest it.

        Raises:
            DocumentLoadError: If the file cannot be read.
        """
        doc = load_document(file_path)
        return await self.ingest_text(
            doc.content,
            source=doc.source,
            base_metadata=document_metadata(doc),
        )

    async def ingest_chunk_payload(
        self, payload: bytes | str | Mapping[str, Any], *, source: str
    ) -> IngestionResult:
        """Ingest a pre-chunked export: {"chunks": [...], "metadata": {...}}.

        Each chunk needs id and text; wordCount is optional and computed
        when missing. Document metadata is copied onto every record.

        Raises:
            ChunkPayloadError: If the payload is not in that shape.
        """
        data: Any = payload
        if isinstance(data, bytes | str):
            try:
                data = json.loads(data)
            except (UnicodeDecodeError, json.JSONDecodeError) as e:
                raise ChunkPayloadError(f"Invalid JSON in {source}: {e}") from e

        if not isinstance(data, Mapping) or not isinstance(data.get("chunks"), list):
            raise ChunkPayloadError(f"{source} must contain a 'chunks' array")
        metadata = data.get("metadata") or {}
        if not isinstance(metadata, Mapping):
            raise ChunkPayloadError(f"{source} 'metadata' must be an object")

        chunks: list[TextChunk] = []
        for index, item in enumerate(data["chunks"]):
            if (
                not isinstance(item, Mapping)
                or not isinstance(item.get("id"), str)
                or not isinstance(item.get("text"), str)
                or not item["text"].strip()
            ):
                raise ChunkPayloadError(
                    f"{source} chunk {index} needs string 'id' and 'text'"
                )
            word_count = item.get(WORD_COUNT_KEY)
            if isinstance(word_count, bool) or not isinstance(word_count, int):
                word_count = len(item["text"].split())
            chunks.append(
                TextChunk(
                    id=item["id"],
                    text=item["text"],
                    word_count=word_count,
                    index=index,
                )
            )

        return await self.ingest_chunks(
            chunks, source=source, base_metadata=dict(metadata)
        )

    async def reembed_records(self, records: Sequence[ChunkRecord]) -> IngestionResult:
        """Restore records that were loaded without embeddings.

        Used after a degraded load: each record's text is embedded again and
        the record is upserted with its original id and metadata.
        """
        embeddings = await self._embed_all([r.text for r in records])
        restored: list[ChunkRecord] = []
        failed: list[str] = []
        for record, embedding in zip(records, embeddings, strict=True):
            if embedding is None:
                failed.append(record.id)
            else:
                restored.append(
                    ChunkRecord(
                        id=record.id,
                        text=record.text,
                        embedding=embedding,
                        metadata=dict(record.metadata),
                    )
                )

        batch = self._store.upsert_many(restored)
        save = self._persist() if batch.accepted else None
        logger.info(
            "ingestion_records_reembedded",
            records=len(records),
            restored=batch.accepted,
            failed=len(failed),
        )
        return IngestionResult(
            source="reembed",
            chunks_total=len(records),
            chunks_stored=batch.accepted,
            failed_chunk_ids=failed,
            save=save,
        )
