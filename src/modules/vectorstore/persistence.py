"""Vector store persistence over a key-value medium.

Two payload formats share one logical key:

- full: JSON array of {id, text, embedding, metadata} under ``key``
- reduced: JSON array of {id, text, metadata} under ``key + "_reduced"``

The reduced format is the fallback when the medium refuses the full payload
(usually capacity). It also holds records that are still waiting for
re-embedding next to a full payload, so a save never drops them.
"""

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any

import structlog

from src.infrastructure.kvstore import KeyValueStore, KeyValueStoreError
from src.infrastructure.observability import get_tracer, traced
from src.modules.vectorstore.exceptions import (
    ChunkValidationError,
    PersistenceParseError,
    PersistenceReadError,
    VectorStoreError,
)
from src.modules.vectorstore.schemas import ChunkRecord

if TYPE_CHECKING:
    from src.modules.vectorstore.store import VectorStore

logger = structlog.get_logger()
tracer = get_tracer(__name__)

DEFAULT_STORE_KEY = "vectorStore"
REDUCED_SUFFIX = "_reduced"


class SaveOutcome(str, Enum):
    FULL_SUCCESS = "full_success"
    DEGRADED_SUCCESS = "degraded_success"
    FAILURE = "failure"


@dataclass(frozen=True)
class SaveResult:
    """Outcome of a save; key is where the payload landed (None on failure)."""

    outcome: SaveOutcome
    key: str | None
    record_count: int
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.outcome is not SaveOutcome.FAILURE

    @property
    def degraded(self) -> bool:
        return self.outcome is SaveOutcome.DEGRADED_SUCCESS


@dataclass
class LoadResult:
    """Records read back from the medium.

    degraded is True when they came from the reduced payload alone, in which
    case every record has an empty embedding and must be re-embedded before
    it can be ranked. unembedded holds reduced records found next to a full
    payload whose ids the full payload lacks.
    """

    records: list[ChunkRecord] = field(default_factory=list)
    degraded: bool = False
    error: VectorStoreError | None = None
    skipped: int = 0
    unembedded: list[ChunkRecord] = field(default_factory=list)

    @property
    def needs_embedding(self) -> list[ChunkRecord]:
        """Every loaded record that has no embedding yet."""
        return self.records if self.degraded else self.unembedded


def _encode(items: list[dict[str, Any]]) -> bytes:
    return json.dumps(items, ensure_ascii=False, allow_nan=False).encode("utf-8")


class PersistenceAdapter:
    """Saves and restores a VectorStore through a KeyValueStore.

    Medium and encoding failures never escape: save reports them as a
    FAILURE outcome and load as an empty result with error set.
    """

    def __init__(self, kv: KeyValueStore, *, key: str = DEFAULT_STORE_KEY) -> None:
        self._kv = kv
        self._key = key
        self._reduced_key = key + REDUCED_SUFFIX

    @property
    def key(self) -> str:
        return self._key

    @property
    def reduced_key(self) -> str:
        return self._reduced_key

    def _failure(self, record_count: int, error: str, span: Any) -> SaveResult:
        span.set_attribute("persistence.outcome", SaveOutcome.FAILURE.value)
        logger.error(
            "persistence_failed", key=self._key, record_count=record_count, error=error
        )
        return SaveResult(
            outcome=SaveOutcome.FAILURE, key=None, record_count=record_count, error=error
        )

    def save(self, store: "VectorStore") -> SaveResult:
        """Write the store's records to the medium.

        The full payload is tried first. If the medium rejects it, the
        reduced payload (no embeddings) is written instead and the full key
        removed. After a full save the reduced key is removed, unless the
        store still has pending records; they are rewritten there instead.

        Args:
            store: Store to snapshot.

        Returns:
            SaveResult; FAILURE when nothing could be written or a record
            cannot be encoded.
        """
        records, pending = store.snapshot_for_save()

        with tracer.start_as_current_span("persistence.save") as span:
            span.set_attribute("persistence.key", self._key)
            span.set_attribute("persistence.record_count", len(records))
            span.set_attribute("persistence.pending_count", len(pending))

            try:
                payload = _encode([r.to_dict() for r in records])
            except (TypeError, ValueError) as e:
                span.record_exception(e)
                return self._failure(len(records), f"Cannot encode store: {e}", span)

            span.set_attribute("persistence.payload_bytes", len(payload))
            try:
                self._kv.put(self._key, payload)
            except KeyValueStoreError as full_error:
                logger.warning(
                    "persistence_full_save_rejected",
                    key=self._key,
                    backend=full_error.backend,
                    error=str(full_error),
                )
                return self._save_reduced(records, pending, full_error, span)

            if pending:
                self._keep_pending(pending)
            else:
                self._discard(self._reduced_key)
            span.set_attribute("persistence.outcome", SaveOutcome.FULL_SUCCESS.value)
            logger.info(
                "persistence_saved",
                key=self._key,
                record_count=len(records),
                pending_count=len(pending),
                payload_bytes=len(payload),
            )
            return SaveResult(
                outcome=SaveOutcome.FULL_SUCCESS,
                key=self._key,
                record_count=len(records),
            )

    def _save_reduced(
        self,
        records: list[ChunkRecord],
        pending: list[ChunkRecord],
        full_error: KeyValueStoreError,
        span: Any,
    ) -> SaveResult:
        try:
            payload = _encode([r.to_reduced_dict() for r in [*records, *pending]])
            self._kv.put(self._reduced_key, payload)
        except (KeyValueStoreError, TypeError, ValueError) as reduced_error:
            span.record_exception(reduced_error)
            logger.warning("persistence_reduced_save_rejected", full_error=str(full_error))
            return self._failure(len(records), str(reduced_error), span)

        self._discard(self._key)
        span.set_attribute("persistence.outcome", SaveOutcome.DEGRADED_SUCCESS.value)
        logger.warning(
            "persistence_degraded",
            key=self._reduced_key,
            record_count=len(records),
            pending_count=len(pending),
            payload_bytes=len(payload),
            reason=str(full_error),
        )
        return SaveResult(
            outcome=SaveOutcome.DEGRADED_SUCCESS,
            key=self._reduced_key,
            record_count=len(records),
            error=str(full_error),
        )

    def _keep_pending(self, pending: list[ChunkRecord]) -> None:
        """Rewrite the reduced key with just the pending records.

        On failure the previous reduced payload stays, and it still holds
        them because pending records only ever come from that payload.
        """
        try:
            self._kv.put(
                self._reduced_key, _encode([r.to_reduced_dict() for r in pending])
            )
        except (KeyValueStoreError, TypeError, ValueError) as e:
            logger.warning(
                "persistence_pending_not_rewritten",
                key=self._reduced_key,
                pending_count=len(pending),
                error=str(e),
            )

    def _discard(self, key: str) -> None:
        try:
            self._kv.remove(key)
        except KeyValueStoreError as e:
            logger.warning("persistence_stale_key_not_removed", key=key, error=str(e))

    def _read(self, key: str) -> bytes | None:
        try:
            return self._kv.get(key)
        except KeyValueStoreError as e:
            raise PersistenceReadError(f"Failed to read payload: {e}", key=key) from e

    def _parse(self, raw: bytes, key: str, *, degraded: bool) -> LoadResult:
        try:
            items = json.loads(raw)
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            error = PersistenceParseError(f"Invalid JSON: {e}", key=key)
            logger.error("persistence_parse_failed", key=key, error=str(error))
            return LoadResult(degraded=degraded, error=error)

        if not isinstance(items, list):
            error = PersistenceParseError(
                f"Expected a JSON array, got {type(items).__name__}", key=key
            )
            logger.error("persistence_parse_failed", key=key, error=str(error))
            return LoadResult(degraded=degraded, error=error)

        result = LoadResult(degraded=degraded)
        for item in items:
            try:
                result.records.append(
                    ChunkRecord.from_dict(item, require_embedding=not degraded)
                )
            except ChunkValidationError as e:
                result.skipped += 1
                logger.warning(
                    "persistence_entry_skipped",
                    key=key,
                    record_id=e.record_id,
                    reason=str(e),
                )
        return result

    def _unembedded_beside(self, full: LoadResult) -> list[ChunkRecord]:
        """Reduced records whose ids the full payload does not contain."""
        try:
            raw = self._read(self._reduced_key)
        except PersistenceReadError as e:
            logger.warning("persistence_pending_unreadable", key=e.key, error=str(e))
            return []
        if raw is None:
            return []
        leftovers = self._parse(raw, self._reduced_key, degraded=True)
        if leftovers.error is not None:
            return []
        stored = {r.id for r in full.records}
        return [r for r in leftovers.records if r.id not in stored]

    def load(self) -> LoadResult:
        """Read records back, preferring the full payload.

        Returns:
            LoadResult. A missing payload yields an empty result with no
            error; an unreadable or undecodable one yields an empty result
            with error set.
        """
        with tracer.start_as_current_span("persistence.load") as span:
            key = self._key
            try:
                raw = self._read(self._key)
                degraded = False
                if raw is None:
                    key = self._reduced_key
                    raw = self._read(self._reduced_key)
                    degraded = raw is not None
            except PersistenceReadError as e:
                span.record_exception(e)
                logger.error("persistence_read_failed", key=e.key, error=str(e))
                return LoadResult(error=e)

            span.set_attribute("persistence.key", key)
            span.set_attribute("persistence.degraded", degraded)

            if raw is None:
                logger.info("persistence_empty", key=self._key)
                return LoadResult()

            result = self._parse(raw, key, degraded=degraded)
            if result.error is not None:
                span.record_exception(result.error)
                return result
            if not degraded:
                result.unembedded = self._unembedded_beside(result)

            span.set_attribute("persistence.record_count", len(result.records))
            logger.info(
                "persistence_loaded",
                key=key,
                record_count=len(result.records),
                unembedded=len(result.unembedded),
                skipped=result.skipped,
                degraded=degraded,
            )
            return result

    @traced("persistence.wipe")
    def wipe(self) -> bool:
        """Remove both payloads from the medium.

        Returns:
            False when the medium failed to remove either key.
        """
        try:
            self._kv.remove(self._key)
            self._kv.remove(self._reduced_key)
        except KeyValueStoreError as e:
            logger.error("persistence_wipe_failed", key=self._key, error=str(e))
            return False
        logger.info("persistence_wiped", key=self._key)
        return True

    def hydrate(self, store: "VectorStore") -> LoadResult:
        """Load into store.

        Full-fidelity records are upserted in one batch. Records without
        embeddings cannot be ranked, so they are handed to the store as
        pending and also returned in the result for re-embedding. The store
        is left clean.
        """
        result = self.load()
        if result.records and not result.degraded:
            store.upsert_many(result.records)
        store.set_pending(result.needs_embedding)
        store.mark_clean()
        return result
