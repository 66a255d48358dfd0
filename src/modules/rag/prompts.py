"""Prompts for retrieval-augmented answering.

Retrieved chunks are rendered into the system prompt, each labelled with its
source file and similarity score so the model can weigh them.
"""

from src.modules.rag.schemas import RetrievedChunk

RAG_SYSTEM_PROMPT = """You are a helpful assistant answering questions about the user's documents.
Use the following context to answer questions.

RULES:
1. Base your answer on the context below; say so plainly when it does not cover the question
2. Do not invent sources or cite documents that are not listed in the context
3. Prefer passages with a higher similarity score when they disagree
4. Structure longer answers with markdown

Here is the relevant context:
{context}"""

# Used when the store holds nothing rankable
FALLBACK_SYSTEM_PROMPT = """You are a helpful assistant answering questions about the user's documents.

IMPORTANT: No documents have been ingested yet, so there is no context to answer from.

Tell the user that no documents are available and suggest uploading or importing some.
Do not answer from general knowledge."""


def format_context(chunks: list[RetrievedChunk]) -> str:
    """Render chunks as '[source] (Similarity: 0.123):' blocks."""
    return "\n\n".join(
        f"[{chunk.source}] (Similarity: {chunk.similarity_score:.3f}):\n{chunk.text}"
        for chunk in chunks
    )


def build_rag_prompt(chunks: list[RetrievedChunk]) -> str:
    """Build the system prompt with retrieved context.

    Args:
        chunks: Retrieved chunks, best first.

    Returns:
        Complete system prompt with context.
    """
    if not chunks:
        return RAG_SYSTEM_PROMPT.format(context="[No relevant documents found]")
    return RAG_SYSTEM_PROMPT.format(context=format_context(chunks))
