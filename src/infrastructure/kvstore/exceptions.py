"""Exceptions for key-value persistence media."""


class KeyValueStoreError(Exception):
    """Base exception for key-value medium errors."""

    def __init__(self, message: str, *, backend: str = "unknown") -> None:
        self.backend = backend
        super().__init__(message)


class KeyValueCapacityError(KeyValueStoreError):
    """Raised when a value does not fit in the medium's remaining capacity."""

    def __init__(
        self,
        message: str,
        *,
        backend: str = "unknown",
        requested_bytes: int = 0,
        capacity_bytes: int | None = None,
    ) -> None:
        self.requested_bytes = requested_bytes
        self.capacity_bytes = capacity_bytes
        super().__init__(message, backend=backend)


class KeyValueConfigurationError(KeyValueStoreError):
    """Raised when the medium cannot be initialized."""
