"""Protocol definition for key-value persistence media."""

from typing import Protocol


class KeyValueStore(Protocol):
    """Protocol for a byte-oriented key-value medium.

    The vector store persistence layer only needs put/get/remove, so any
    medium (local files, browser-style storage, object storage) can back it.
    """

    def put(self, key: str, value: bytes) -> None:
        """Store a value under a key, replacing any previous value.

        Raises:
            KeyValueCapacityError: If the value does not fit.
            KeyValueStoreError: If the write fails for any other reason.
        """
        ...

    def get(self, key: str) -> bytes | None:
        """Return the value for a key, or None if the key is absent.

        Raises:
            KeyValueStoreError: If the read fails.
        """
        ...

    def remove(self, key: str) -> None:
        """Remove a key. Removing a missing key is a no-op."""
        ...
