"""Business modules for ChunkStore.

Each module is self-contained with its own schemas, services and
exceptions: vectorstore (records, ranking, persistence, merging),
ingestion (loading, chunking, embedding) and rag (retrieval and answers).
"""
