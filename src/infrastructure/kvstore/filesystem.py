"""Filesystem-backed key-value medium."""

import errno
import re
import threading
from pathlib import Path

import structlog

from src.infrastructure.kvstore.exceptions import (
    KeyValueCapacityError,
    KeyValueConfigurationError,
    KeyValueStoreError,
)

logger = structlog.get_logger()

# Keys map directly to file names, so keep them to a safe alphabet
_KEY_PATTERN = re.compile(r"^[A-Za-z0-9_.-]+$")

_CAPACITY_ERRNOS = {errno.ENOSPC, errno.EFBIG, getattr(errno, "EDQUOT", errno.ENOSPC)}


class FileKeyValueStore:
    """Stores each key as one file inside a directory.

    Writes are atomic (temp file + rename) so a crash mid-write never leaves
    a truncated payload behind. An optional capacity limit caps the total
    size of all values, mirroring quota-limited storage.
    """

    BACKEND_NAME = "filesystem"
    SUFFIX = ".json"

    def __init__(
        self,
        directory: str | Path,
        *,
        capacity_bytes: int | None = None,
    ) -> None:
        """Initialize the store.

        Args:
            directory: Directory holding one file per key.
            capacity_bytes: Maximum total size of stored values (None = unbounded).

        Raises:
            KeyValueConfigurationError: If the directory cannot be created.
        """
        self._dir = Path(directory)
        self._capacity = capacity_bytes
        self._lock = threading.Lock()

        try:
            self._dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            logger.error(
                "kv_init_failed",
                backend=self.BACKEND_NAME,
                directory=str(self._dir),
                error=str(e),
            )
            raise KeyValueConfigurationError(
                f"Cannot create storage directory {self._dir}: {e}",
                backend=self.BACKEND_NAME,
            ) from e

    def _path_for(self, key: str) -> Path:
        if not _KEY_PATTERN.match(key):
            raise KeyValueStoreError(
                f"Invalid key {key!r}", backend=self.BACKEND_NAME
            )
        return self._dir / f"{key}{self.SUFFIX}"

    def _used_bytes(self, *, excluding: Path) -> int:
        return sum(
            p.stat().st_size
            for p in self._dir.glob(f"*{self.SUFFIX}")
            if p != excluding and p.is_file()
        )

    def put(self, key: str, value: bytes) -> None:
        path = self._path_for(key)

        with self._lock:
            if self._capacity is not None:
                used = self._used_bytes(excluding=path)
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

            tmp = path.with_suffix(path.suffix + ".tmp")
            try:
                tmp.write_bytes(value)
                tmp.replace(path)
            except OSError as e:
                tmp.unlink(missing_ok=True)
                if e.errno in _CAPACITY_ERRNOS:
                    raise KeyValueCapacityError(
                        f"Storage full while writing {key!r}: {e}",
                        backend=self.BACKEND_NAME,
                        requested_bytes=len(value),
                        capacity_bytes=self._capacity,
                    ) from e
                raise KeyValueStoreError(
                    f"Failed to write {key!r}: {e}", backend=self.BACKEND_NAME
                ) from e

        logger.debug(
            "kv_put",
            backend=self.BACKEND_NAME,
            key=key,
            size_bytes=len(value),
        )

    def get(self, key: str) -> bytes | None:
        path = self._path_for(key)
        try:
            return path.read_bytes()
        except FileNotFoundError:
            return None
        except OSError as e:
            raise KeyValueStoreError(
                f"Failed to read {key!r}: {e}", backend=self.BACKEND_NAME
            ) from e

    def remove(self, key: str) -> None:
        path = self._path_for(key)
        with self._lock:
            try:
                path.unlink(missing_ok=True)
            except OSError as e:
                raise KeyValueStoreError(
                    f"Failed to remove {key!r}: {e}", backend=self.BACKEND_NAME
                ) from e
