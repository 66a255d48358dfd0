"""Vector store module.

In-memory collection of embedded chunks with exact cosine ranking,
key-value persistence and merging of exported stores.
"""

from src.modules.vectorstore.exceptions import (
    ChunkValidationError,
    DimensionMismatchError,
    MalformedImportSourceError,
    PersistenceParseError,
    PersistenceReadError,
    VectorStoreError,
)
from src.modules.vectorstore.merge import (
    ImportSource,
    MergeResult,
    RejectedRecord,
    export_filename,
    export_records,
    import_into,
    load_sources,
    merge_sources,
    parse_source,
)
from src.modules.vectorstore.persistence import (
    LoadResult,
    PersistenceAdapter,
    SaveOutcome,
    SaveResult,
)
from src.modules.vectorstore.schemas import (
    BatchUpsertResult,
    ChunkRecord,
    ScoredRecord,
    StoreStats,
    UpsertResult,
)
from src.modules.vectorstore.similarity import cosine_similarity, rank_by_query
from src.modules.vectorstore.store import VectorStore

__all__ = [
    "BatchUpsertResult",
    "ChunkRecord",
    "ChunkValidationError",
    "DimensionMismatchError",
    "ImportSource",
    "LoadResult",
    "MalformedImportSourceError",
    "MergeResult",
    "PersistenceAdapter",
    "PersistenceParseError",
    "PersistenceReadError",
    "RejectedRecord",
    "SaveOutcome",
    "SaveResult",
    "ScoredRecord",
    "StoreStats",
    "UpsertResult",
    "VectorStore",
    "VectorStoreError",
    "cosine_similarity",
    "export_filename",
    "export_records",
    "import_into",
    "load_sources",
    "merge_sources",
    "parse_source",
    "rank_by_query",
]
