"""Tests for the ingestion service."""

import asyncio
import json
from unittest.mock import AsyncMock

import pytest

from src.infrastructure.embeddings import EmbeddingProviderError
from src.infrastructure.kvstore import InMemoryKeyValueStore
from src.modules.ingestion import (
    ChunkingConfig,
    ChunkPayloadError,
    DocumentLoadError,
    IngestionService,
    LoadedDocument,
    TextChunk,
    analyze_content,
)
from src.modules.ingestion.analysis import (
    classify_document,
    detect_title,
    extract_keywords,
)
from src.modules.ingestion.service import document_metadata
from src.modules.vectorstore import PersistenceAdapter, SaveOutcome, VectorStore
from tests.factories import make_record


@pytest.fixture
def embeddings():
    """Embedding provider returning a fixed vector."""
    provider = AsyncMock()
    provider.embed = AsyncMock(return_value=[0.1, 0.2, 0.3])
    return provider


@pytest.fixture
def store():
    """An empty store."""
    return VectorStore()


@pytest.fixture
def adapter():
    """Persistence over an in-memory medium."""
    return PersistenceAdapter(InMemoryKeyValueStore())


@pytest.fixture
def service(embeddings, store, adapter):
    """Ingestion service with small chunks."""
    return IngestionService(
        embeddings,
        store,
        adapter=adapter,
        chunking_config=ChunkingConfig(max_words=4),
    )


class TestIngestText:
    """Tests for IngestionService.ingest_text()."""

    async def test_stores_one_record_per_chunk(self, service, store):
        """Each chunk becomes a record with chunk metadata."""
        result = await service.ingest_text(
            "One two three. Four five six. Seven.",
            source="notes.txt",
            base_metadata={"title": "Notes"},
        )

        assert result.success
        assert result.chunks_total == 2
        assert result.chunks_stored == 2
        records = store.all()
        assert [r.id for r in records] == ["notes.txt#chunk-0", "notes.txt#chunk-1"]
        assert records[1].metadata == {
            "title": "Notes",
            "wordCount": 4,
            "chunkIndex": 1,
            "sourceFile": "notes.txt",
        }

    async def test_persists_after_storing(self, service, adapter):
        """A successful ingestion saves the store."""
        result = await service.ingest_text("Hello there.", source="a.txt")

        assert result.save.outcome is SaveOutcome.FULL_SUCCESS
        assert [r.id for r in adapter.load().records] == ["a.txt#chunk-0"]

    async def test_failed_chunk_is_reported_not_fatal(self, service, embeddings, store):
        """An embedding failure skips that chunk only."""
        embeddings.embed = AsyncMock(
            side_effect=[
                [1.0, 0.0],
                EmbeddingProviderError("boom", provider="mock"),
                [0.0, 1.0],
            ]
        )

        result = await service.ingest_text(
            "One two three four. Five six seven eight. Nine.", source="doc.txt"
        )

        assert result.chunks_stored == 2
        assert result.failed_chunk_ids == ["doc.txt#chunk-1"]
        assert [r.id for r in store.all()] == ["doc.txt#chunk-0", "doc.txt#chunk-2"]

    async def test_empty_embedding_counts_as_failure(self, service, embeddings):
        """A provider returning an empty vector does not produce a record."""
        embeddings.embed = AsyncMock(return_value=[])

        result = await service.ingest_text("Hello.", source="a.txt")

        assert not result.success
        assert result.failed_chunk_ids == ["a.txt#chunk-0"]
        assert result.save is None

    async def test_blank_text_is_a_no_op(self, service, embeddings):
        """Nothing to chunk means nothing to embed."""
        result = await service.ingest_text("   ", source="empty.txt")

        assert result.success
        assert result.chunks_total == 0
        embeddings.embed.assert_not_awaited()

    async def test_reingest_removes_leftover_chunks(self, service, store, adapter):
        """A shorter new version of a source drops its old trailing chunks."""
        store.upsert(make_record("other.txt#chunk-1"))
        await service.ingest_text(
            "One two three. Four five six. Seven.", source="notes.txt"
        )

        result = await service.ingest_text("Hello there.", source="notes.txt")

        assert result.chunks_stored == 1
        assert [r.id for r in store.all()] == ["other.txt#chunk-1", "notes.txt#chunk-0"]
        assert store.get("notes.txt#chunk-0").text == "Hello there."
        assert [r.id for r in adapter.load().records] == [
            "other.txt#chunk-1",
            "notes.txt#chunk-0",
        ]

    async def test_reingest_keeps_old_chunk_when_embedding_fails(
        self, service, embeddings, store
    ):
        """A chunk that fails to embed keeps its previous record."""
        await service.ingest_text(
            "One two three. Four five six. Seven.", source="notes.txt"
        )
        embeddings.embed = AsyncMock(
            side_effect=EmbeddingProviderError("down", provider="mock")
        )

        result = await service.ingest_text("Hello there.", source="notes.txt")

        assert result.failed_chunk_ids == ["notes.txt#chunk-0"]
        assert [r.id for r in store.all()] == ["notes.txt#chunk-0"]
        assert store.get("notes.txt#chunk-0").text == "One two three."

    async def test_concurrency_is_bounded(self, store):
        """No more than max_concurrency embeddings are in flight."""
        in_flight = 0
        peak = 0

        async def slow_embed(text: str) -> list[float]:
            nonlocal in_flight, peak
            in_flight += 1
            peak = max(peak, in_flight)
            await asyncio.sleep(0.01)
            in_flight -= 1
            return [1.0]

        provider = AsyncMock()
        provider.embed = slow_embed
        service = IngestionService(
            provider,
            store,
            chunking_config=ChunkingConfig(max_words=1),
            max_concurrency=2,
        )

        result = await service.ingest_text(
            "A. B. C. D. E. F.", source="letters.txt"
        )

        assert result.chunks_stored == 6
        assert peak == 2
        assert [r.metadata["chunkIndex"] for r in store.all()] == [0, 1, 2, 3, 4, 5]

    def test_rejects_zero_concurrency(self, embeddings, store):
        """max_concurrency must be positive."""
        with pytest.raises(ValueError):
            IngestionService(embeddings, store, max_concurrency=0)


class TestIngestDocument:
    """Tests for IngestionService.ingest_document()."""

    async def test_document_metadata_on_every_chunk(self, service, store, tmp_path):
        """Title, type, page and word counts come from the loaded document."""
        path = tmp_path / "guide.md"
        path.write_text("# Guide\n\nFirst part here. Second part here.")

        result = await service.ingest_document(path)

        assert result.source == "guide.md"
        for record in store.all():
            assert record.metadata["title"] == "Guide"
            assert record.metadata["fileType"] == "markdown"
            assert record.metadata["documentType"] == "General Document"
            assert record.metadata["pageCount"] == 1
            assert record.metadata["totalWordCount"] == 8
            assert record.source_file == "guide.md"

    async def test_content_analysis_in_metadata(self, service, store, tmp_path):
        """Keywords, category, detected title and features describe the text."""
        path = tmp_path / "annual.txt"
        path.write_text(
            "Annual Report. Revenue grew.\n\n"
            "- revenue up\n"
            "- costs down\n"
            "| a | b |\n"
            "revenue revenue costs"
        )

        await service.ingest_document(path)

        metadata = store.all()[0].metadata
        assert metadata["documentType"] == "Report"
        assert metadata["fileType"] == "text"
        assert metadata["detectedTitle"] == "Annual Report"
        assert metadata["keywords"] == [
            "revenue",
            "costs",
            "annual",
            "report",
            "grew",
            "down",
        ]
        assert metadata["contentFeatures"]["hasLists"] is True
        assert metadata["contentFeatures"]["hasTables"] is True

    def test_info_keywords_take_precedence(self, tmp_path):
        """PDF info keywords replace the frequency-based ones."""
        doc = LoadedDocument(
            content="Strategy strategy strategy.",
            source="plan.pdf",
            file_path=tmp_path / "plan.pdf",
            title="Plan",
            document_type="pdf",
            raw_metadata={"Keywords": "growth, , markets "},
        )

        metadata = document_metadata(doc)

        assert metadata["keywords"] == ["growth", "markets"]
        assert metadata["documentType"] == "Strategy Document"
        assert metadata["documentInfo"] == {"Keywords": "growth, , markets "}

    async def test_missing_file_raises(self, service, tmp_path):
        """Load errors propagate to the caller."""
        with pytest.raises(DocumentLoadError):
            await service.ingest_document(tmp_path / "missing.md")


class TestIngestChunkPayload:
    """Tests for IngestionService.ingest_chunk_payload()."""

    async def test_ingests_prechunked_payload(self, service, store):
        """Chunks keep their ids; document metadata is copied onto each."""
        payload = json.dumps(
            {
                "chunks": [
                    {"id": "chunk-0", "text": "Alpha beta.", "wordCount": 2},
                    {"id": "chunk-1", "text": "Gamma delta epsilon."},
                ],
                "metadata": {"title": "Report", "pageCount": 3},
            }
        )

        result = await service.ingest_chunk_payload(payload, source="report.json")

        assert result.chunks_stored == 2
        second = store.get("chunk-1")
        assert second.metadata["wordCount"] == 3
        assert second.metadata["pageCount"] == 3
        assert second.metadata["sourceFile"] == "report.json"

    @pytest.mark.parametrize(
        "payload",
        [
            b"not json",
            json.dumps([{"id": "a", "text": "t"}]),
            json.dumps({"chunks": [{"id": "a"}]}),
            json.dumps({"chunks": [], "metadata": "nope"}),
        ],
    )
    async def test_invalid_payload(self, service, payload):
        """Wrongly shaped payloads raise ChunkPayloadError."""
        with pytest.raises(ChunkPayloadError):
            await service.ingest_chunk_payload(payload, source="bad.json")


class TestReembedRecords:
    """Tests for IngestionService.reembed_records()."""

    async def test_restores_embeddings(self, service, store, embeddings):
        """Reduced records come back with fresh vectors and same metadata."""
        reduced = [
            make_record("a", [], sourceFile="x.pdf"),
            make_record("b", [], sourceFile="y.pdf"),
        ]

        result = await service.reembed_records(reduced)

        assert result.chunks_stored == 2
        assert store.get("a").embedding == [0.1, 0.2, 0.3]
        assert store.get("b").metadata == {"sourceFile": "y.pdf"}
        assert embeddings.embed.await_count == 2

    async def test_reports_records_that_fail_again(self, service, store, embeddings):
        """Records that still cannot be embedded are listed."""
        embeddings.embed = AsyncMock(
            side_effect=[EmbeddingProviderError("down", provider="mock"), [1.0]]
        )

        result = await service.reembed_records(
            [make_record("a", []), make_record("b", [])]
        )

        assert result.failed_chunk_ids == ["a"]
        assert [r.id for r in store.all()] == ["b"]


class TestAnalyzeContent:
    """Tests for analyze_content() and its helpers."""

    def test_keywords_skip_short_and_stop_words(self):
        """Words under four letters and common fillers are not keywords."""
        keywords = extract_keywords("This that with from then than the cat, cats! Cats")

        assert keywords == ["cats"]

    def test_keywords_capped_at_ten(self):
        """Only the ten most frequent words are kept."""
        text = " ".join(f"word{i}" for i in range(12)) + " word11 word11"

        keywords = extract_keywords(text)

        assert len(keywords) == 10
        assert keywords[0] == "word11"

    @pytest.mark.parametrize(
        ("text", "expected"),
        [
            ("Financial statement for strategy and audit", "Financial Document"),
            ("Financial strategy review", "Strategy Document"),
            ("Internal AUDIT findings", "Audit Document"),
            ("Quarterly report", "Report"),
            ("Meeting notes", "General Document"),
        ],
    )
    def test_classification_order(self, text, expected):
        """The first matching rule decides the category."""
        assert classify_document(text) == expected

    def test_title_from_first_sentence_of_first_line(self):
        """Blank lines are skipped and the line is cut at the first stop."""
        assert detect_title("\n\n  # Roadmap! Details follow.\nMore") == "Roadmap"

    def test_blank_text(self):
        """Empty input yields no title, no keywords and no features."""
        analysis = analyze_content("   \n")

        assert analysis.detected_title is None
        assert analysis.keywords == []
        assert analysis.category == "General Document"
        assert analysis.content_features() == {
            "hasFormulas": False,
            "hasTables": False,
            "hasLists": False,
        }

    def test_numbered_list_and_formula(self):
        """Numbered items count as lists and operators as formulas."""
        analysis = analyze_content("Steps\n1. total = a + b\n2. done")

        assert analysis.has_lists
        assert analysis.has_formulas
        assert not analysis.has_tables
