"""RAG (Retrieval-Augmented Generation) module.

- Query embedding and similarity retrieval over the vector store
- Question answering with retrieved context
"""

from src.modules.rag.exceptions import EmbeddingUnavailableError, RAGError
from src.modules.rag.prompts import build_rag_prompt, format_context
from src.modules.rag.retriever import RetrievalOrchestrator
from src.modules.rag.schemas import RAGResponse, RetrievedChunk
from src.modules.rag.service import RAGService

__all__ = [
    "EmbeddingUnavailableError",
    "RAGError",
    "RAGResponse",
    "RAGService",
    "RetrievalOrchestrator",
    "RetrievedChunk",
    "build_rag_prompt",
    "format_context",
]
