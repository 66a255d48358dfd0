"""Schemas for the vector store module."""

import math
from collections.abc import Mapping
from dataclasses import dataclass, field, replace
from typing import Any

from src.modules.vectorstore.exceptions import ChunkValidationError

MetadataValue = str | int | float | bool | None | list[Any] | dict[str, Any]

# Metadata keys the core reads; everything else passes through untouched
SOURCE_FILE_KEY = "sourceFile"
IMPORTED_AT_KEY = "importedAt"
WORD_COUNT_KEY = "wordCount"
CHUNK_INDEX_KEY = "chunkIndex"


@dataclass(frozen=True)
class ChunkRecord:
    """An embedded chunk of document text.

    The unit stored, persisted and ranked by the vector store. Records are
    immutable; an update is a full replacement under the same id.
    """

    id: str
    text: str
    embedding: list[float]
    metadata: dict[str, MetadataValue] = field(default_factory=dict)

    @property
    def source_file(self) -> str | None:
        """Name of the file this chunk came from, if recorded."""
        value = self.metadata.get(SOURCE_FILE_KEY)
        return value if isinstance(value, str) and value else None

    @property
    def imported_at(self) -> str | None:
        """ISO timestamp of the import that produced this record, if any."""
        value = self.metadata.get(IMPORTED_AT_KEY)
        return value if isinstance(value, str) else None

    def numeric(self, key: str) -> float:
        """Return a numeric metadata field, or 0 when missing or non-numeric."""
        value = self.metadata.get(key)
        if isinstance(value, bool) or not isinstance(value, int | float):
            return 0.0
        return float(value) if math.isfinite(value) else 0.0

    def with_metadata(self, updates: Mapping[str, MetadataValue]) -> "ChunkRecord":
        """Return a copy whose metadata is merged with updates (updates win)."""
        return replace(self, metadata={**self.metadata, **updates})

    def to_dict(self) -> dict[str, Any]:
        """Serialize to the export format."""
        return {
            "id": self.id,
            "text": self.text,
            "embedding": list(self.embedding),
            "metadata": dict(self.metadata),
        }

    def to_reduced_dict(self) -> dict[str, Any]:
        """Serialize without the embedding (reduced persistence format)."""
        return {
            "id": self.id,
            "text": self.text,
            "metadata": dict(self.metadata),
        }

    @classmethod
    def from_dict(
        cls,
        data: Any,
        *,
        require_embedding: bool = True,
    ) -> "ChunkRecord":
        """Build a record from its serialized form, validating required fields.

        Args:
            data: Mapping with id, text, embedding and optional metadata.
            require_embedding: When False, a missing embedding becomes an
                empty list (used for reduced payloads).

        Returns:
            The validated record.

        Raises:
            ChunkValidationError: If a required field is missing or invalid.
        """
        if not isinstance(data, Mapping):
            raise ChunkValidationError(
                f"Record must be an object, got {type(data).__name__}"
            )

        record_id = data.get("id")
        if not isinstance(record_id, str) or not record_id:
            raise ChunkValidationError("Record is missing a non-empty string 'id'")

        text = data.get("text")
        if not isinstance(text, str) or not text:
            raise ChunkValidationError(
                "Record is missing non-empty 'text'", record_id=record_id
            )

        raw_embedding = data.get("embedding")
        if raw_embedding is None and not require_embedding:
            embedding: list[float] = []
        else:
            embedding = validate_embedding(raw_embedding, record_id=record_id)

        metadata = data.get("metadata")
        if metadata is None:
            metadata = {}
        elif not isinstance(metadata, Mapping):
            raise ChunkValidationError(
                "Record 'metadata' must be an object", record_id=record_id
            )

        return cls(
            id=record_id,
            text=text,
            embedding=embedding,
            metadata={
                str(k): _clean_metadata_value(v, str(k), record_id)
                for k, v in metadata.items()
            },
        )


def _clean_metadata_value(value: Any, path: str, record_id: str) -> MetadataValue:
    """Return value in JSON-safe form, or reject it.

    Tuples become lists. Nested objects need string keys, and floats must
    be finite so every accepted record can be persisted and exported.
    """
    if value is None or isinstance(value, str | bool | int):
        return value
    if isinstance(value, float):
        if not math.isfinite(value):
            raise ChunkValidationError(
                f"Metadata field '{path}' must be a finite number", record_id=record_id
            )
        return value
    if isinstance(value, list | tuple):
        return [
            _clean_metadata_value(item, f"{path}[{i}]", record_id)
            for i, item in enumerate(value)
        ]
    if isinstance(value, Mapping):
        cleaned: dict[str, Any] = {}
        for key, item in value.items():
            if not isinstance(key, str):
                raise ChunkValidationError(
                    f"Metadata field '{path}' has a non-string key", record_id=record_id
                )
            cleaned[key] = _clean_metadata_value(item, f"{path}.{key}", record_id)
        return cleaned
    raise ChunkValidationError(
        f"Metadata field '{path}' has unsupported type {type(value).__name__}",
        record_id=record_id,
    )


def validate_embedding(value: Any, *, record_id: str | None = None) -> list[float]:
    """Check that value is a non-empty sequence of finite numbers.

    Raises:
        ChunkValidationError: If the embedding is missing, empty or non-numeric.
    """
    if not isinstance(value, list | tuple) or not value:
        raise ChunkValidationError(
            "Record is missing a non-empty 'embedding'", record_id=record_id
        )

    vector: list[float] = []
    for component in value:
        if isinstance(component, bool) or not isinstance(component, int | float):
            raise ChunkValidationError(
                "Embedding values must be numbers", record_id=record_id
            )
        if not math.isfinite(component):
            raise ChunkValidationError(
                "Embedding values must be finite", record_id=record_id
            )
        vector.append(float(component))
    return vector


def validate_record(record: ChunkRecord) -> ChunkRecord:
    """Re-check a constructed record (dataclass construction does not validate)."""
    return ChunkRecord.from_dict(
        {
            "id": record.id,
            "text": record.text,
            "embedding": record.embedding,
            "metadata": record.metadata,
        }
    )


@dataclass(frozen=True)
class ScoredRecord:
    """A record paired with its similarity to a query."""

    record: ChunkRecord
    score: float


@dataclass(frozen=True)
class UpsertResult:
    """Outcome of a single upsert."""

    accepted: bool
    record_id: str | None
    replaced: bool = False
    error: str | None = None


@dataclass
class BatchUpsertResult:
    """Outcome of a batch upsert."""

    inserted: int = 0
    replaced: int = 0
    rejected: list[UpsertResult] = field(default_factory=list)
    removed: int = 0

    @property
    def accepted(self) -> int:
        return self.inserted + self.replaced


@dataclass(frozen=True)
class StoreStats:
    """Summary statistics over a store."""

    total_documents: int
    average_embedding_length: float
    total_count_field: float
    count_field: str = WORD_COUNT_KEY
