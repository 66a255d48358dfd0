"""Key-value persistence media.

The vector store persists through a narrow put/get/remove protocol so the
storage medium can be swapped without touching serialization logic.
"""

from src.infrastructure.kvstore.exceptions import (
    KeyValueCapacityError,
    KeyValueConfigurationError,
    KeyValueStoreError,
)
from src.infrastructure.kvstore.filesystem import FileKeyValueStore
from src.infrastructure.kvstore.memory import InMemoryKeyValueStore
from src.infrastructure.kvstore.protocol import KeyValueStore

__all__ = [
    "FileKeyValueStore",
    "InMemoryKeyValueStore",
    "KeyValueCapacityError",
    "KeyValueConfigurationError",
    "KeyValueStore",
    "KeyValueStoreError",
]
