"""Exceptions for the vector store module."""


class VectorStoreError(Exception):
    """Base exception for vector store errors."""


class ChunkValidationError(VectorStoreError):
    """Raised when a chunk record fails required-field checks."""

    def __init__(self, message: str, *, record_id: str | None = None) -> None:
        self.record_id = record_id
        super().__init__(message)


class DimensionMismatchError(VectorStoreError):
    """Raised when two vectors of different length are compared."""

    def __init__(self, left: int, right: int) -> None:
        self.left = left
        self.right = right
        super().__init__(f"Vector lengths differ: {left} != {right}")


class PersistenceParseError(VectorStoreError):
    """Raised when a persisted payload cannot be decoded."""

    def __init__(self, message: str, *, key: str) -> None:
        self.key = key
        super().__init__(message)


class PersistenceReadError(VectorStoreError):
    """Raised when the medium fails while a payload is being read."""

    def __init__(self, message: str, *, key: str) -> None:
        self.key = key
        super().__init__(message)


class MalformedImportSourceError(VectorStoreError):
    """Raised when an import source is not a valid serialized store."""

    def __init__(self, message: str, *, source: str) -> None:
        self.source = source
        super().__init__(f"Error processing {source}: {message}")
