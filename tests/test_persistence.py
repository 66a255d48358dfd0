"""Tests for vector store persistence."""

import json
from datetime import UTC, datetime
from unittest.mock import MagicMock

import pytest

from src.infrastructure.kvstore import (
    FileKeyValueStore,
    InMemoryKeyValueStore,
    KeyValueCapacityError,
    KeyValueStoreError,
)
from src.modules.vectorstore import (
    ChunkRecord,
    ImportSource,
    PersistenceAdapter,
    PersistenceParseError,
    PersistenceReadError,
    SaveOutcome,
    VectorStore,
    import_into,
    merge_sources,
)
from tests.factories import make_record


@pytest.fixture
def kv():
    """Unbounded in-memory medium."""
    return InMemoryKeyValueStore()


@pytest.fixture
def adapter(kv):
    """Adapter over the default key."""
    return PersistenceAdapter(kv)


@pytest.fixture
def store():
    """A store with two records."""
    s = VectorStore()
    s.upsert_many(
        [
            make_record("a", [0.5, 0.25], wordCount=3, sourceFile="x.pdf"),
            make_record("b", [0.125, -1.0], tags=["t1", "t2"]),
        ]
    )
    return s


def _tight_kv(store: VectorStore) -> InMemoryKeyValueStore:
    """A medium that fits the reduced payload but not the full one."""
    reduced = json.dumps(
        [r.to_reduced_dict() for r in store.all()], ensure_ascii=False
    ).encode("utf-8")
    return InMemoryKeyValueStore(capacity_bytes=len(reduced) + 10)


class TestSave:
    """Tests for PersistenceAdapter.save()."""

    def test_full_save_writes_export_format(self, adapter, kv, store):
        """A full save stores every field under the main key."""
        result = adapter.save(store)

        assert result.outcome is SaveOutcome.FULL_SUCCESS
        assert result.key == "vectorStore"
        assert result.record_count == 2
        payload = json.loads(kv.get("vectorStore"))
        assert payload[0] == {
            "id": "a",
            "text": "text of a",
            "embedding": [0.5, 0.25],
            "metadata": {"wordCount": 3, "sourceFile": "x.pdf"},
        }

    def test_round_trip_is_exact(self, adapter, store):
        """Saving then loading reproduces the same records in order."""
        adapter.save(store)

        loaded = adapter.load()

        assert not loaded.degraded
        assert loaded.error is None
        assert loaded.records == store.all()

    def test_capacity_fallback_saves_reduced(self, store):
        """When the full payload does not fit, the reduced one is saved."""
        kv = _tight_kv(store)
        adapter = PersistenceAdapter(kv)

        result = adapter.save(store)

        assert result.outcome is SaveOutcome.DEGRADED_SUCCESS
        assert result.key == "vectorStore_reduced"
        assert result.ok
        assert kv.get("vectorStore") is None
        reduced = json.loads(kv.get("vectorStore_reduced"))
        assert all("embedding" not in item for item in reduced)
        assert [item["id"] for item in reduced] == ["a", "b"]

    def test_degraded_load_has_empty_embeddings(self, store):
        """Reduced records come back with ids, text and metadata only."""
        adapter = PersistenceAdapter(_tight_kv(store))
        adapter.save(store)

        loaded = adapter.load()

        assert loaded.degraded
        assert [r.id for r in loaded.records] == ["a", "b"]
        assert all(r.embedding == [] for r in loaded.records)
        assert loaded.records[0].metadata["wordCount"] == 3

    def test_failure_when_both_writes_rejected(self, store):
        """Both puts failing is a FAILURE outcome, not an exception."""
        adapter = PersistenceAdapter(InMemoryKeyValueStore(capacity_bytes=10))

        result = adapter.save(store)

        assert result.outcome is SaveOutcome.FAILURE
        assert not result.ok
        assert result.key is None
        assert result.error

    def test_fallback_on_generic_medium_error(self, store):
        """Any medium error on the full write triggers the fallback."""
        kv = MagicMock()
        kv.put.side_effect = [KeyValueStoreError("disk gone", backend="mock"), None]
        adapter = PersistenceAdapter(kv)

        result = adapter.save(store)

        assert result.outcome is SaveOutcome.DEGRADED_SUCCESS
        assert kv.put.call_args_list[1].args[0] == "vectorStore_reduced"
        kv.remove.assert_called_once_with("vectorStore")

    def test_full_save_removes_stale_reduced_payload(self, kv, store):
        """A later full save must not leave an older reduced copy behind."""
        kv.put("vectorStore_reduced", b"[]")
        adapter = PersistenceAdapter(kv)

        adapter.save(store)

        assert kv.get("vectorStore_reduced") is None

    def test_degraded_save_removes_stale_full_payload(self, store):
        """A degraded save removes the older full snapshot."""
        kv = InMemoryKeyValueStore(capacity_bytes=400)
        adapter = PersistenceAdapter(kv)
        small = VectorStore([make_record("old", [1.0])])
        assert adapter.save(small).outcome is SaveOutcome.FULL_SUCCESS

        big = VectorStore(
            [make_record(f"r{i}", [0.123456789] * 8) for i in range(4)]
        )
        result = adapter.save(big)

        assert result.outcome is SaveOutcome.DEGRADED_SUCCESS
        loaded = adapter.load()
        assert loaded.degraded
        assert [r.id for r in loaded.records] == ["r0", "r1", "r2", "r3"]

    def test_save_to_marks_clean(self, adapter, store):
        """store.save_to clears the dirty flag on success."""
        assert store.is_dirty
        store.save_to(adapter)
        assert not store.is_dirty

    def test_save_to_keeps_dirty_on_failure(self, store):
        """A failed save leaves the store dirty."""
        adapter = PersistenceAdapter(InMemoryKeyValueStore(capacity_bytes=1))
        store.save_to(adapter)
        assert store.is_dirty

    @pytest.mark.parametrize(
        "value", [datetime(2024, 5, 1, tzinfo=UTC), float("nan")]
    )
    def test_unencodable_record_is_a_failure(self, kv, adapter, value):
        """A record JSON cannot represent yields FAILURE instead of raising."""
        store = MagicMock()
        store.snapshot_for_save.return_value = (
            [ChunkRecord(id="d", text="t", embedding=[1.0], metadata={"when": value})],
            [],
        )

        result = adapter.save(store)

        assert result.outcome is SaveOutcome.FAILURE
        assert "Cannot encode" in result.error
        assert kv.get("vectorStore") is None

    def test_unencodable_pending_record_is_a_failure(self, store):
        """The reduced fallback reports encoding errors the same way."""
        adapter = PersistenceAdapter(InMemoryKeyValueStore(capacity_bytes=0))
        bad = ChunkRecord(id="p", text="t", embedding=[], metadata={"at": object()})
        store.snapshot_for_save = MagicMock(return_value=(store.all(), [bad]))

        result = adapter.save(store)

        assert result.outcome is SaveOutcome.FAILURE


class TestLoad:
    """Tests for PersistenceAdapter.load()."""

    def test_missing_payload_is_empty_without_error(self, adapter):
        """Nothing saved yet means an empty, error-free result."""
        loaded = adapter.load()

        assert loaded.records == []
        assert loaded.error is None
        assert not loaded.degraded

    def test_prefers_full_payload(self, kv):
        """When both keys exist the full payload wins."""
        kv.put(
            "vectorStore",
            json.dumps([{"id": "full", "text": "t", "embedding": [1.0]}]).encode(),
        )
        kv.put("vectorStore_reduced", json.dumps([{"id": "red", "text": "t"}]).encode())

        loaded = PersistenceAdapter(kv).load()

        assert [r.id for r in loaded.records] == ["full"]
        assert not loaded.degraded

    def test_corrupt_json_reports_error(self, kv):
        """Undecodable JSON yields an empty result with a parse error."""
        kv.put("vectorStore", b"{not json")

        loaded = PersistenceAdapter(kv).load()

        assert loaded.records == []
        assert isinstance(loaded.error, PersistenceParseError)
        assert loaded.error.key == "vectorStore"

    def test_wrong_shape_reports_error(self, kv):
        """A JSON object instead of an array is a parse error."""
        kv.put("vectorStore", b'{"items": []}')

        loaded = PersistenceAdapter(kv).load()

        assert loaded.records == []
        assert "array" in str(loaded.error)

    def test_bad_entries_are_skipped(self, kv):
        """Invalid entries are counted and skipped, valid ones kept."""
        kv.put(
            "vectorStore",
            json.dumps(
                [
                    {"id": "ok", "text": "t", "embedding": [1.0]},
                    {"id": "no-embedding", "text": "t"},
                    42,
                ]
            ).encode(),
        )

        loaded = PersistenceAdapter(kv).load()

        assert [r.id for r in loaded.records] == ["ok"]
        assert loaded.skipped == 2

    def test_custom_key(self, kv, store):
        """A custom key and its reduced sibling are used."""
        adapter = PersistenceAdapter(kv, key="other")
        adapter.save(store)

        assert kv.get("other") is not None
        assert adapter.reduced_key == "other_reduced"

    def test_medium_read_error_is_reported(self):
        """A failing read becomes an empty result with error set."""
        kv = MagicMock()
        kv.get.side_effect = KeyValueStoreError("disk gone", backend="mock")

        result = PersistenceAdapter(kv).load()

        assert isinstance(result.error, PersistenceReadError)
        assert result.error.key == "vectorStore"
        assert result.records == []

    def test_unreadable_file_is_reported(self, tmp_path):
        """A payload path that cannot be read does not escape load()."""
        (tmp_path / "vectorStore.json").mkdir()

        result = PersistenceAdapter(FileKeyValueStore(tmp_path)).load()

        assert isinstance(result.error, PersistenceReadError)

    def test_reduced_leftovers_beside_full_payload(self, kv):
        """Reduced records missing from the full payload come back unembedded."""
        kv.put("vectorStore", json.dumps([make_record("a").to_dict()]).encode())
        kv.put(
            "vectorStore_reduced",
            json.dumps([{"id": "a", "text": "x"}, {"id": "old", "text": "y"}]).encode(),
        )

        result = PersistenceAdapter(kv).load()

        assert [r.id for r in result.records] == ["a"]
        assert [r.id for r in result.unembedded] == ["old"]
        assert result.needs_embedding == result.unembedded


class TestWipeAndHydrate:
    """Tests for wipe() and hydrate()."""

    def test_wipe_removes_both_keys(self, kv, adapter):
        """wipe() removes full and reduced payloads."""
        kv.put("vectorStore", b"[]")
        kv.put("vectorStore_reduced", b"[]")

        adapter.wipe()

        assert kv.get("vectorStore") is None
        assert kv.get("vectorStore_reduced") is None

    def test_hydrate_fills_store(self, adapter, store):
        """hydrate() loads full records into a fresh, clean store."""
        adapter.save(store)
        fresh = VectorStore()

        result = adapter.hydrate(fresh)

        assert not result.degraded
        assert fresh.all() == store.all()
        assert not fresh.is_dirty

    def test_hydrate_leaves_reduced_records_out(self, store):
        """Reduced records are returned for re-embedding, not inserted."""
        adapter = PersistenceAdapter(_tight_kv(store))
        adapter.save(store)
        fresh = VectorStore()

        result = adapter.hydrate(fresh)

        assert result.degraded
        assert len(result.records) == 2
        assert fresh.count() == 0

    def test_wipe_failure_returns_false(self):
        """A medium error while wiping is reported, not raised."""
        kv = MagicMock()
        kv.remove.side_effect = KeyValueStoreError("read-only", backend="mock")

        assert PersistenceAdapter(kv).wipe() is False

    def test_hydrate_read_error_leaves_store_alone(self):
        """hydrate() returns the error and does not touch the store."""
        kv = MagicMock()
        kv.get.side_effect = KeyValueStoreError("disk gone", backend="mock")
        target = VectorStore([make_record("keep")])

        result = PersistenceAdapter(kv).hydrate(target)

        assert result.error is not None
        assert [r.id for r in target.all()] == ["keep"]
        assert target.pending() == []

    def test_capacity_error_is_a_medium_error(self):
        """Capacity errors are caught by the generic fallback path."""
        assert issubclass(KeyValueCapacityError, KeyValueStoreError)


class TestUnembeddedRecords:
    """Records restored without embeddings survive later saves."""

    @pytest.fixture
    def kv(self):
        """Medium holding only a reduced payload."""
        medium = InMemoryKeyValueStore()
        medium.put("vectorStore_reduced", json.dumps([{"id": "old", "text": "o"}]).encode())
        return medium

    def test_upsert_on_top_then_save_keeps_them(self, kv):
        """Importing without replace and saving does not lose reduced records."""
        adapter = PersistenceAdapter(kv)
        store = VectorStore()
        adapter.hydrate(store)
        merged = merge_sources(
            [ImportSource(name="x.json", payload=json.dumps([make_record("new").to_dict()]))]
        )

        import_into(store, merged, replace=False)
        result = store.save_to(adapter)

        loaded = adapter.load()
        assert result.outcome is SaveOutcome.FULL_SUCCESS
        assert [r.id for r in loaded.records] == ["new"]
        assert [r.id for r in loaded.unembedded] == ["old"]

    def test_hydrate_then_save_again_keeps_them(self, kv):
        """A second restart still finds the records pending."""
        adapter = PersistenceAdapter(kv)
        first = VectorStore()
        adapter.hydrate(first)
        first.upsert(make_record("new"))
        first.save_to(adapter)

        second = VectorStore()
        result = adapter.hydrate(second)

        assert [r.id for r in second.all()] == ["new"]
        assert [r.id for r in second.pending()] == ["old"]
        assert [r.id for r in result.needs_embedding] == ["old"]

    def test_reembedding_discards_reduced_payload(self, kv):
        """Once every record has an embedding the reduced key goes away."""
        adapter = PersistenceAdapter(kv)
        store = VectorStore()
        adapter.hydrate(store)

        store.upsert(make_record("old"))
        store.save_to(adapter)

        assert kv.get("vectorStore_reduced") is None
        assert [r.id for r in adapter.load().records] == ["old"]

    def test_replace_drops_them(self, kv):
        """Replacing the whole collection also replaces pending records."""
        adapter = PersistenceAdapter(kv)
        store = VectorStore()
        adapter.hydrate(store)
        merged = merge_sources(
            [ImportSource(name="x.json", payload=json.dumps([make_record("new").to_dict()]))]
        )

        import_into(store, merged)
        store.save_to(adapter)

        assert kv.get("vectorStore_reduced") is None
        assert adapter.load().unembedded == []

    def test_degraded_save_includes_them(self, kv):
        """When only the reduced payload fits, pending records are in it."""
        adapter = PersistenceAdapter(kv)
        store = VectorStore()
        adapter.hydrate(store)
        store.upsert(make_record("new"))
        kv.put = MagicMock(
            side_effect=[KeyValueCapacityError("full", backend="mock"), None]
        )

        result = store.save_to(adapter)

        assert result.degraded
        written = json.loads(kv.put.call_args_list[1].args[1])
        assert [item["id"] for item in written] == ["new", "old"]
