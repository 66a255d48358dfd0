"""In-memory vector store with upsert-by-id semantics."""

import threading
from collections.abc import Iterable, Mapping
from typing import TYPE_CHECKING, Any

import structlog

from src.infrastructure.observability import get_tracer
from src.modules.vectorstore.exceptions import ChunkValidationError
from src.modules.vectorstore.schemas import (
    WORD_COUNT_KEY,
    BatchUpsertResult,
    ChunkRecord,
    MetadataValue,
    ScoredRecord,
    StoreStats,
    UpsertResult,
    validate_record,
)
from src.modules.vectorstore.similarity import DEFAULT_TOP_K, rank_by_query

if TYPE_CHECKING:
    from src.modules.vectorstore.persistence import PersistenceAdapter, SaveResult

logger = structlog.get_logger()
tracer = get_tracer(__name__)


class VectorStore:
    """Ordered collection of chunk records keyed by id.

    Upserting an existing id replaces the record in place, so it keeps its
    original position; untouched records keep insertion order.

    Mutations hold a single lock. Readers take an immutable snapshot under
    the same lock and iterate outside it, so they observe either the state
    before a mutation or after it, never a partial batch.

    The store never persists on its own: mutations set is_dirty and callers
    decide when to flush (see save_to).

    Records restored without embeddings cannot be ranked, so they are held
    apart as pending until re-embedded. They are never returned by all() or
    rank(), but the persistence adapter writes them back so a save cannot
    drop them. Upserting a pending id resolves it; remove() and clear()
    discard pending records as well.
    """

    def __init__(self, records: Iterable[ChunkRecord] = ()) -> None:
        self._records: list[ChunkRecord] = []
        self._index: dict[str, int] = {}
        self._snapshot: tuple[ChunkRecord, ...] = ()
        self._pending: dict[str, ChunkRecord] = {}
        self._lock = threading.Lock()
        self._dirty = False

        if records:
            result = self.upsert_many(records)
            if result.rejected:
                logger.warning(
                    "vectorstore_initial_records_rejected",
                    rejected=len(result.rejected),
                )
            self._dirty = False

    @property
    def is_dirty(self) -> bool:
        """True when the collection changed since the last mark_clean()."""
        return self._dirty

    def mark_clean(self) -> None:
        self._dirty = False

    def _coerce(self, record: ChunkRecord | Mapping[str, Any]) -> ChunkRecord:
        if isinstance(record, ChunkRecord):
            return validate_record(record)
        return ChunkRecord.from_dict(record)

    def _put_locked(self, record: ChunkRecord) -> bool:
        """Insert or replace; caller holds the lock. Returns True on replace."""
        self._pending.pop(record.id, None)
        position = self._index.get(record.id)
        if position is None:
            self._index[record.id] = len(self._records)
            self._records.append(record)
            return False
        self._records[position] = record
        return True

    def _publish_locked(self) -> None:
        self._snapshot = tuple(self._records)
        self._dirty = True

    def _reject(self, record: Any, error: ChunkValidationError) -> UpsertResult:
        record_id = error.record_id
        if record_id is None and isinstance(record, Mapping):
            raw = record.get("id")
            record_id = raw if isinstance(raw, str) else None
        logger.warning(
            "vectorstore_record_rejected",
            record_id=record_id,
            reason=str(error),
        )
        return UpsertResult(accepted=False, record_id=record_id, error=str(error))

    def upsert(self, record: ChunkRecord | Mapping[str, Any]) -> UpsertResult:
        """Insert a record, or replace the record with the same id.

        Args:
            record: A ChunkRecord or its serialized mapping.

        Returns:
            UpsertResult; accepted is False (and the store is unchanged)
            when the record lacks a valid id, text or embedding.
        """
        try:
            valid = self._coerce(record)
        except ChunkValidationError as e:
            return self._reject(record, e)

        with self._lock:
            replaced = self._put_locked(valid)
            self._publish_locked()
            total = len(self._records)

        logger.debug(
            "vectorstore_upserted",
            record_id=valid.id,
            replaced=replaced,
            total=total,
        )
        return UpsertResult(accepted=True, record_id=valid.id, replaced=replaced)

    def upsert_many(
        self, records: Iterable[ChunkRecord | Mapping[str, Any]]
    ) -> BatchUpsertResult:
        """Upsert a batch as one serialized mutation.

        Invalid records are rejected individually and never abort the batch.
        """
        result = BatchUpsertResult()
        valid: list[ChunkRecord] = []
        for record in records:
            try:
                valid.append(self._coerce(record))
            except ChunkValidationError as e:
                result.rejected.append(self._reject(record, e))

        if not valid:
            return result

        with self._lock:
            for record in valid:
                if self._put_locked(record):
                    result.replaced += 1
                else:
                    result.inserted += 1
            self._publish_locked()
            total = len(self._records)

        logger.info(
            "vectorstore_batch_upserted",
            inserted=result.inserted,
            replaced=result.replaced,
            rejected=len(result.rejected),
            total=total,
        )
        return result

    def replace_all(
        self, records: Iterable[ChunkRecord | Mapping[str, Any]]
    ) -> BatchUpsertResult:
        """Make records the whole collection in one serialized mutation.

        Readers see either the old collection or the new one, never the
        empty store in between. Pending records are dropped. Invalid records
        are rejected individually; duplicate ids resolve to the last one,
        kept at the first one's position.
        """
        result = BatchUpsertResult()
        valid: list[ChunkRecord] = []
        for record in records:
            try:
                valid.append(self._coerce(record))
            except ChunkValidationError as e:
                result.rejected.append(self._reject(record, e))

        with self._lock:
            previous = len(self._records)
            self._records = []
            self._index = {}
            self._pending = {}
            for record in valid:
                if self._put_locked(record):
                    result.replaced += 1
                else:
                    result.inserted += 1
            self._publish_locked()
            total = len(self._records)

        logger.info(
            "vectorstore_replaced",
            previous=previous,
            inserted=result.inserted,
            rejected=len(result.rejected),
            total=total,
        )
        return result

    def replace_prefixed(
        self,
        prefix: str,
        records: Iterable[ChunkRecord | Mapping[str, Any]],
        *,
        keep: Iterable[str] = (),
    ) -> BatchUpsertResult:
        """Upsert records and drop stale ids under prefix, in one mutation.

        Used when a document is ingested again: every stored or pending id
        starting with prefix that is neither in records nor in keep is
        removed. Survivors keep their positions.
        """
        result = BatchUpsertResult()
        valid: list[ChunkRecord] = []
        for record in records:
            try:
                valid.append(self._coerce(record))
            except ChunkValidationError as e:
                result.rejected.append(self._reject(record, e))

        wanted = {*keep, *(r.id for r in valid)}

        def is_stale(record_id: str) -> bool:
            return record_id.startswith(prefix) and record_id not in wanted

        with self._lock:
            survivors = [r for r in self._records if not is_stale(r.id)]
            result.removed = len(self._records) - len(survivors)
            stale_pending = [i for i in self._pending if is_stale(i)]
            for record_id in stale_pending:
                del self._pending[record_id]
            if result.removed:
                self._records = survivors
                self._index = {r.id: i for i, r in enumerate(survivors)}
            for record in valid:
                if self._put_locked(record):
                    result.replaced += 1
                else:
                    result.inserted += 1
            if valid or result.removed:
                self._publish_locked()
            elif stale_pending:
                self._dirty = True
            total = len(self._records)

        logger.info(
            "vectorstore_prefix_replaced",
            prefix=prefix,
            inserted=result.inserted,
            replaced=result.replaced,
            removed=result.removed + len(stale_pending),
            rejected=len(result.rejected),
            total=total,
        )
        return result

    def set_pending(self, records: Iterable[ChunkRecord]) -> int:
        """Hold records that still need embeddings.

        Ids already stored with an embedding are ignored. Returns the number
        of pending records afterwards. Does not mark the store dirty.
        """
        with self._lock:
            for record in records:
                if record.id not in self._index:
                    self._pending[record.id] = record
            return len(self._pending)

    def pending(self) -> list[ChunkRecord]:
        """Records waiting for re-embedding, in the order they were added."""
        with self._lock:
            return list(self._pending.values())

    def remove(self, record_id: str) -> bool:
        """Remove a record by id. Returns False if it was not present."""
        with self._lock:
            # An id is never both pending and stored
            if self._pending.pop(record_id, None) is not None:
                self._dirty = True
                logger.info("vectorstore_pending_removed", record_id=record_id)
                return True
            position = self._index.pop(record_id, None)
            if position is None:
                return False
            del self._records[position]
            for i in range(position, len(self._records)):
                self._index[self._records[i].id] = i
            self._publish_locked()

        logger.info("vectorstore_removed", record_id=record_id)
        return True

    def clear(self) -> int:
        """Remove every record.

        Returns:
            Number of records removed (0 when already empty).
        """
        with self._lock:
            removed = len(self._records)
            had_pending = bool(self._pending)
            self._records = []
            self._index = {}
            self._pending = {}
            self._snapshot = ()
            if removed or had_pending:
                self._dirty = True

        logger.info("vectorstore_cleared", removed=removed)
        return removed

    def get(self, record_id: str) -> ChunkRecord | None:
        with self._lock:
            position = self._index.get(record_id)
            return None if position is None else self._records[position]

    def count(self) -> int:
        return len(self._snapshot)

    def __len__(self) -> int:
        return self.count()

    def all(
        self, metadata_filter: Mapping[str, MetadataValue] | None = None
    ) -> list[ChunkRecord]:
        """Return records in insertion order.

        Args:
            metadata_filter: Optional exact-match constraints on metadata
                fields; a record must match all of them.

        Returns:
            A new list; the store is never mutated.
        """
        snapshot = self._snapshot
        if not metadata_filter:
            return list(snapshot)

        missing = object()
        return [
            record
            for record in snapshot
            if all(
                record.metadata.get(key, missing) == value
                for key, value in metadata_filter.items()
            )
        ]

    def rank(
        self, query_embedding: list[float], top_k: int = DEFAULT_TOP_K
    ) -> list[ScoredRecord]:
        """Rank stored records by cosine similarity to query_embedding."""
        snapshot = self._snapshot
        with tracer.start_as_current_span("vectorstore.rank") as span:
            span.set_attribute("vectorstore.collection_size", len(snapshot))
            span.set_attribute("vectorstore.top_k", top_k)
            results = rank_by_query(query_embedding, snapshot, top_k)
            span.set_attribute("vectorstore.results_count", len(results))
            if results:
                span.set_attribute("vectorstore.top_score", results[0].score)
        return results

    def stats(self, count_field: str = WORD_COUNT_KEY) -> StoreStats:
        """Summarize the store.

        Args:
            count_field: Numeric metadata field to sum; records without it
                contribute 0.
        """
        snapshot = self._snapshot
        total = len(snapshot)
        average = (
            sum(len(r.embedding) for r in snapshot) / total if total else 0.0
        )
        return StoreStats(
            total_documents=total,
            average_embedding_length=average,
            total_count_field=sum(r.numeric(count_field) for r in snapshot),
            count_field=count_field,
        )

    def snapshot_for_save(self) -> tuple[list[ChunkRecord], list[ChunkRecord]]:
        """Stored and pending records, taken together under the lock."""
        with self._lock:
            return list(self._snapshot), list(self._pending.values())

    def save_to(self, adapter: "PersistenceAdapter") -> "SaveResult":
        """Persist through adapter and clear the dirty flag unless saving failed."""
        result = adapter.save(self)
        if result.ok:
            self.mark_clean()
        return result
