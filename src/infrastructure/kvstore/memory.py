"""In-process key-value medium with an optional capacity limit."""

import threading

import structlog

from src.infrastructure.kvstore.exceptions import KeyValueCapacityError

logger = structlog.get_logger()


class InMemoryKeyValueStore:
    """Dictionary-backed medium.

    When capacity_bytes is set, the total size of all stored values may not
    exceed it; a put that would overflow raises KeyValueCapacityError and
    leaves the previous value in place.
    """

    BACKEND_NAME = "memory"

    def __init__(self, *, capacity_bytes: int | None = None) -> None:
        self._capacity = capacity_bytes
        self._data: dict[str, bytes] = {}
        self._lock = threading.Lock()

    def put(self, key: str, value: bytes) -> None:
        with self._lock:
            if self._capacity is not None:
                used = sum(len(v) for k, v in self._data.items() if k != key)
                if used + len(value) > self._capacity:
                    logger.warning(
                        "kv_capacity_exceeded",
                        backend=self.BACKEND_NAME,
                        key=key,
                        requested_bytes=len(value),
                        used_bytes=used,
                        capacity_bytes=self._capacity,
                    )
                    raise KeyValueCapacityError(
                        f"Value for {key!r} ({len(value)} bytes) exceeds capacity",
                        backend=self.BACKEND_NAME,
                        requested_bytes=len(value),
                        capacity_bytes=self._capacity,
                    )
            self._data[key] = bytes(value)

    def get(self, key: str) -> bytes | None:
        with self._lock:
            return self._data.get(key)

    def remove(self, key: str) -> None:
        with self._lock:
            self._data.pop(key, None)

    def size_bytes(self) -> int:
        """Return the total number of stored bytes."""
        with self._lock:
            return sum(len(v) for v in self._data.values())
