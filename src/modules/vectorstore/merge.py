"""Merge independently exported vector stores into one collection."""

import json
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

import structlog

from src.infrastructure.observability import traced
from src.modules.vectorstore.exceptions import (
    ChunkValidationError,
    MalformedImportSourceError,
)
from src.modules.vectorstore.schemas import (
    IMPORTED_AT_KEY,
    SOURCE_FILE_KEY,
    BatchUpsertResult,
    ChunkRecord,
)
from src.modules.vectorstore.store import VectorStore

logger = structlog.get_logger()

EXPORT_FILENAME_TEMPLATE = "merged_vector_store_{date}.json"


@dataclass(frozen=True)
class ImportSource:
    """One exported store to merge.

    payload is the raw file content (bytes or str) or an already decoded
    JSON value.
    """

    name: str
    payload: bytes | str | list[Any] | Any


@dataclass(frozen=True)
class RejectedRecord:
    """A record dropped from an otherwise valid source."""

    source: str
    position: int
    record_id: str | None
    reason: str


@dataclass
class MergeResult:
    """Merged records plus everything that did not make it in."""

    records: list[ChunkRecord] = field(default_factory=list)
    errors: list[MalformedImportSourceError] = field(default_factory=list)
    rejected: list[RejectedRecord] = field(default_factory=list)
    source_count: int = 0

    @property
    def ok(self) -> bool:
        return not self.errors


def _now_iso() -> str:
    return datetime.now(UTC).isoformat().replace("+00:00", "Z")


def _decode(source: ImportSource) -> Any:
    payload = source.payload
    if isinstance(payload, bytes):
        try:
            payload = payload.decode("utf-8")
        except UnicodeDecodeError as e:
            raise MalformedImportSourceError(
                "File is not valid UTF-8", source=source.name
            ) from e
    if isinstance(payload, str):
        try:
            return json.loads(payload)
        except json.JSONDecodeError as e:
            raise MalformedImportSourceError(
                f"Invalid JSON ({e.msg} at line {e.lineno})", source=source.name
            ) from e
    return payload


def parse_source(
    source: ImportSource,
    imported_at: str | None = None,
    *,
    rejected: list[RejectedRecord] | None = None,
) -> list[ChunkRecord]:
    """Decode one source and stamp provenance onto every record.

    sourceFile and importedAt are written over any value the record already
    carried for those keys. Invalid records inside a valid array are dropped
    and appended to rejected.

    Args:
        source: The source to parse.
        imported_at: ISO timestamp to stamp; defaults to now (UTC).
        rejected: Optional list collecting dropped records.

    Returns:
        Valid records in file order.

    Raises:
        MalformedImportSourceError: If the payload is not a JSON array, or
            it is non-empty and none of its entries is a valid record.
    """
    data = _decode(source)
    if not isinstance(data, list):
        raise MalformedImportSourceError(
            "Invalid vector store file format", source=source.name
        )

    stamp = {
        SOURCE_FILE_KEY: source.name,
        IMPORTED_AT_KEY: imported_at or _now_iso(),
    }
    records: list[ChunkRecord] = []
    dropped: list[RejectedRecord] = []

    for position, item in enumerate(data):
        try:
            records.append(ChunkRecord.from_dict(item).with_metadata(stamp))
        except ChunkValidationError as e:
            dropped.append(
                RejectedRecord(
                    source=source.name,
                    position=position,
                    record_id=e.record_id,
                    reason=str(e),
                )
            )

    if dropped:
        logger.warning(
            "merge_records_rejected",
            source=source.name,
            rejected=len(dropped),
            accepted=len(records),
        )
        if rejected is not None:
            rejected.extend(dropped)

    if data and not records:
        raise MalformedImportSourceError(
            "No valid records found", source=source.name
        )
    return records


def dedupe_last_writer_wins(records: Iterable[ChunkRecord]) -> list[ChunkRecord]:
    """Collapse duplicate ids, keeping the last record for each.

    The surviving record sits where its id first appeared, which is the
    same order replaying the records through VectorStore.upsert produces.
    """
    position: dict[str, int] = {}
    merged: list[ChunkRecord] = []
    for record in records:
        existing = position.get(record.id)
        if existing is None:
            position[record.id] = len(merged)
            merged.append(record)
        else:
            merged[existing] = record
    return merged


@traced("merge.merge_sources")
def merge_sources(
    sources: Sequence[ImportSource],
    *,
    imported_at: str | None = None,
) -> MergeResult:
    """Parse and merge sources in order.

    A malformed source is reported in errors and contributes nothing; the
    remaining sources still merge. Ids colliding across sources resolve to
    the record from the later source.

    Args:
        sources: Sources in precedence order (later wins).
        imported_at: Timestamp stamped on every record; one per merge run.

    Returns:
        MergeResult.
    """
    stamp = imported_at or _now_iso()
    result = MergeResult(source_count=len(sources))
    combined: list[ChunkRecord] = []

    for source in sources:
        try:
            records = parse_source(source, stamp, rejected=result.rejected)
        except MalformedImportSourceError as e:
            logger.warning("merge_source_failed", source=source.name, error=str(e))
            result.errors.append(e)
            continue
        logger.debug("merge_source_parsed", source=source.name, records=len(records))
        combined.extend(records)

    result.records = dedupe_last_writer_wins(combined)
    logger.info(
        "merge_completed",
        sources=len(sources),
        failed_sources=len(result.errors),
        input_records=len(combined),
        merged_records=len(result.records),
        rejected_records=len(result.rejected),
    )
    return result


def import_into(
    store: VectorStore,
    result: MergeResult,
    *,
    replace: bool = True,
) -> BatchUpsertResult:
    """Write merged records into a store.

    Args:
        store: Target store.
        result: Output of merge_sources.
        replace: Make the merged set the whole collection in one step
            instead of upserting on top of it.

    Returns:
        Batch upsert outcome.
    """
    if replace:
        return store.replace_all(result.records)
    return store.upsert_many(result.records)


def export_records(records: Iterable[ChunkRecord]) -> bytes:
    """Serialize records to the export format (indented JSON array)."""
    return json.dumps(
        [record.to_dict() for record in records],
        indent=2,
        ensure_ascii=False,
    ).encode("utf-8")


def export_filename(now: datetime | None = None) -> str:
    """Default filename for an exported merge, dated in UTC."""
    moment = now or datetime.now(UTC)
    return EXPORT_FILENAME_TEMPLATE.format(date=moment.strftime("%Y-%m-%d"))


def load_sources(
    paths: Iterable[Path | str],
) -> tuple[list[ImportSource], list[MalformedImportSourceError]]:
    """Read files into import sources.

    Unreadable files are reported as errors named after the file instead of
    aborting the batch.
    """
    sources: list[ImportSource] = []
    errors: list[MalformedImportSourceError] = []
    for raw_path in paths:
        path = Path(raw_path)
        try:
            sources.append(ImportSource(name=path.name, payload=path.read_bytes()))
        except OSError as e:
            logger.warning("merge_source_unreadable", path=str(path), error=str(e))
            errors.append(
                MalformedImportSourceError(
                    f"Unable to read file ({e.strerror or e})", source=path.name
                )
            )
    return sources, errors
