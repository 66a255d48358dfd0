"""Tests for merging exported vector stores."""

import json
from datetime import UTC, datetime

import pytest

from src.modules.vectorstore import (
    ImportSource,
    MalformedImportSourceError,
    VectorStore,
    export_filename,
    export_records,
    import_into,
    load_sources,
    merge_sources,
    parse_source,
)
from tests.factories import make_record

STAMP = "2024-05-01T12:00:00Z"


def _source(name: str, *records: dict) -> ImportSource:
    return ImportSource(name=name, payload=json.dumps(list(records)).encode())


def _raw(record_id: str, text: str = "t", **metadata) -> dict:
    return {"id": record_id, "text": text, "embedding": [1.0, 0.0], "metadata": metadata}


class TestParseSource:
    """Tests for parse_source()."""

    def test_stamps_provenance(self):
        """Every record gets sourceFile and importedAt."""
        records = parse_source(_source("one.json", _raw("a")), STAMP)

        assert records[0].metadata["sourceFile"] == "one.json"
        assert records[0].metadata["importedAt"] == STAMP

    def test_provenance_overrides_prior_values(self):
        """The current import's tags replace stale ones, other keys survive."""
        records = parse_source(
            _source(
                "new.json",
                _raw("a", sourceFile="old.pdf", importedAt="2020-01-01", wordCount=7),
            ),
            STAMP,
        )

        assert records[0].metadata == {
            "sourceFile": "new.json",
            "importedAt": STAMP,
            "wordCount": 7,
        }

    def test_default_timestamp_is_utc_iso(self):
        """Without an explicit stamp the current UTC time is used."""
        records = parse_source(_source("one.json", _raw("a")))

        assert records[0].imported_at.endswith("Z")

    def test_accepts_decoded_payload(self):
        """An already decoded list is parsed as is."""
        records = parse_source(ImportSource(name="x", payload=[_raw("a")]), STAMP)

        assert [r.id for r in records] == ["a"]

    def test_not_an_array(self):
        """A JSON object is not a valid store."""
        with pytest.raises(MalformedImportSourceError) as exc_info:
            parse_source(ImportSource(name="bad.json", payload=b'{"id": "a"}'))

        assert exc_info.value.source == "bad.json"
        assert "Invalid vector store file format" in str(exc_info.value)

    def test_invalid_json_names_source(self):
        """Undecodable JSON is reported with the source name."""
        with pytest.raises(MalformedImportSourceError, match="Error processing bad.json"):
            parse_source(ImportSource(name="bad.json", payload=b"[{"))

    def test_all_records_invalid(self):
        """A non-empty array without a single valid record is malformed."""
        with pytest.raises(MalformedImportSourceError, match="No valid records"):
            parse_source(_source("junk.json", {"id": "a"}, {"text": "t"}))

    def test_empty_array_is_valid(self):
        """An empty export merges to nothing without an error."""
        assert parse_source(_source("empty.json"), STAMP) == []

    def test_invalid_records_are_rejected_individually(self):
        """Bad records are dropped and reported, good ones kept."""
        rejected = []

        records = parse_source(
            _source("mixed.json", _raw("a"), {"id": "b", "text": "t"}, _raw("c")),
            STAMP,
            rejected=rejected,
        )

        assert [r.id for r in records] == ["a", "c"]
        assert len(rejected) == 1
        assert rejected[0].source == "mixed.json"
        assert rejected[0].position == 1
        assert rejected[0].record_id == "b"


class TestMergeSources:
    """Tests for merge_sources()."""

    def test_later_source_wins(self):
        """A duplicate id resolves to the version from the later store."""
        result = merge_sources(
            [
                _source("first.json", _raw("a", text="old")),
                _source("second.json", _raw("a", text="new"), _raw("b")),
            ],
            imported_at=STAMP,
        )

        assert result.ok
        assert len(result.records) == 2
        assert [r.id for r in result.records] == ["a", "b"]
        assert result.records[0].text == "new"
        assert result.records[0].source_file == "second.json"

    def test_duplicates_within_one_source(self):
        """Last occurrence wins inside a single source too."""
        result = merge_sources(
            [_source("one.json", _raw("a", text="1"), _raw("b"), _raw("a", text="2"))],
            imported_at=STAMP,
        )

        assert [(r.id, r.text) for r in result.records] == [("a", "2"), ("b", "t")]

    def test_matches_incremental_upsert(self):
        """Merging gives the same order and values as replaying upserts."""
        sources = [
            _source("x.json", _raw("a", text="1"), _raw("b")),
            _source("y.json", _raw("c"), _raw("a", text="2")),
        ]
        result = merge_sources(sources, imported_at=STAMP)

        store = VectorStore()
        for source in sources:
            for record in parse_source(source, STAMP):
                store.upsert(record)

        assert result.records == store.all()

    def test_malformed_source_does_not_abort(self):
        """A bad source is reported; the others still merge."""
        result = merge_sources(
            [
                _source("good.json", _raw("a")),
                ImportSource(name="broken.json", payload=b"not json"),
                _source("also-good.json", _raw("b")),
            ],
            imported_at=STAMP,
        )

        assert not result.ok
        assert [r.id for r in result.records] == ["a", "b"]
        assert len(result.errors) == 1
        assert result.errors[0].source == "broken.json"
        assert result.source_count == 3

    def test_one_timestamp_per_run(self):
        """All records from one run share the same importedAt."""
        result = merge_sources(
            [_source("x.json", _raw("a")), _source("y.json", _raw("b"))]
        )

        assert len({r.imported_at for r in result.records}) == 1

    def test_no_sources(self):
        """Merging nothing yields an empty, successful result."""
        result = merge_sources([])

        assert result.ok
        assert result.records == []


class TestImportInto:
    """Tests for import_into()."""

    def test_replace_clears_existing(self):
        """With replace the merged set becomes the whole store."""
        store = VectorStore([make_record("old")])
        merged = merge_sources([_source("x.json", _raw("a"))], imported_at=STAMP)

        batch = import_into(store, merged)

        assert batch.accepted == 1
        assert [r.id for r in store.all()] == ["a"]

    def test_replace_is_one_step_for_readers(self):
        """Readers never observe the cleared store while a replace runs."""
        store = VectorStore([make_record("old-1"), make_record("old-2")])
        merged = merge_sources([_source("x.json", _raw("a"), _raw("b"), _raw("c"))])
        seen: list[int] = []
        put = store._put_locked

        def spy(record):
            seen.append(store.count())
            return put(record)

        store._put_locked = spy
        import_into(store, merged)

        assert seen == [2, 2, 2]
        assert [r.id for r in store.all()] == ["a", "b", "c"]

    def test_without_replace_upserts_on_top(self):
        """Without replace existing records stay and duplicates are replaced."""
        store = VectorStore([make_record("old"), make_record("a", text="stale")])
        merged = merge_sources([_source("x.json", _raw("a", text="fresh"))])

        import_into(store, merged, replace=False)

        assert [r.id for r in store.all()] == ["old", "a"]
        assert store.get("a").text == "fresh"


class TestExport:
    """Tests for export helpers."""

    def test_export_records_is_indented_array(self):
        """Export writes a pretty-printed array in the interchange format."""
        data = export_records([make_record("a", [0.5], wordCount=1)])

        assert data.startswith(b"[\n  {")
        assert json.loads(data) == [
            {"id": "a", "text": "text of a", "embedding": [0.5], "metadata": {"wordCount": 1}}
        ]

    def test_exported_file_merges_back(self):
        """An export is a valid merge source."""
        data = export_records([make_record("a"), make_record("b")])

        result = merge_sources([ImportSource(name="export.json", payload=data)])

        assert [r.id for r in result.records] == ["a", "b"]

    def test_export_filename_uses_date(self):
        """The default filename carries the UTC date."""
        name = export_filename(datetime(2024, 3, 9, 23, 59, tzinfo=UTC))

        assert name == "merged_vector_store_2024-03-09.json"


class TestLoadSources:
    """Tests for load_sources()."""

    def test_reads_files_by_name(self, tmp_path):
        """Files become sources named after the file."""
        path = tmp_path / "store.json"
        path.write_text(json.dumps([_raw("a")]))

        sources, errors = load_sources([path])

        assert errors == []
        assert sources[0].name == "store.json"
        assert json.loads(sources[0].payload) == [_raw("a")]

    def test_missing_file_is_reported(self, tmp_path):
        """An unreadable file is an error, not an exception."""
        good = tmp_path / "good.json"
        good.write_text("[]")

        sources, errors = load_sources([tmp_path / "missing.json", good])

        assert [s.name for s in sources] == ["good.json"]
        assert len(errors) == 1
        assert errors[0].source == "missing.json"
