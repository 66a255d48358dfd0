"""RAG service orchestrating retrieval and generation."""

import structlog

from src.infrastructure.llm import LLMProvider
from src.modules.rag.prompts import FALLBACK_SYSTEM_PROMPT, build_rag_prompt
from src.modules.rag.retriever import RetrievalOrchestrator
from src.modules.rag.schemas import RAGResponse
from src.modules.vectorstore import VectorStore

logger = structlog.get_logger()


class RAGService:
    """Answers questions from retrieved context.

    Retrieval is delegated to RetrievalOrchestrator; this service only
    builds the prompt and calls the generation collaborator.
    """

    def __init__(
        self,
        llm_provider: LLMProvider,
        retriever: RetrievalOrchestrator,
        store: VectorStore,
        *,
        top_k: int = 3,
    ) -> None:
        """Initialize the RAG service.

        Args:
            llm_provider: Provider for generating answers.
            retriever: Orchestrator producing grounding chunks.
            store: The store the retriever ranks against; checked for
                emptiness before any embedding call.
            top_k: Number of chunks to retrieve per question.
        """
        self._llm = llm_provider
        self._retriever = retriever
        self._store = store
        self._top_k = top_k

    async def ask(
        self,
        question: str,
        conversation_history: list[dict[str, str]] | None = None,
        *,
        top_k: int | None = None,
    ) -> RAGResponse:
        """Answer a question using retrieved context and optional history.

        Args:
            question: The user's question.
            conversation_history: Optional prior messages as
                [{"role": "user"|"assistant", "content": "..."}].
            top_k: Override for the number of chunks to retrieve.

        Returns:
            RAGResponse with the answer and the chunks used.

        Raises:
            ValueError: If the question is blank.
            EmbeddingUnavailableError: If the question could not be embedded.
            LLMProviderError: If generation fails.
        """
        if not question or not question.strip():
            raise ValueError("Question must not be empty")

        messages = list(conversation_history or [])
        messages.append({"role": "user", "content": question})

        if self._store.count() == 0:
            logger.info("rag_no_documents", question_length=len(question))
            answer = await self._llm.complete(messages, FALLBACK_SYSTEM_PROMPT)
            return RAGResponse(answer=answer, chunks_used=[], question=question)

        chunks = await self._retriever.retrieve(question, top_k or self._top_k)
        system_prompt = build_rag_prompt(chunks)

        logger.debug(
            "rag_generating",
            context_chunks=len(chunks),
            question_length=len(question),
            history_length=len(messages) - 1,
        )
        answer = await self._llm.complete(messages, system_prompt)

        scores = [c.similarity_score for c in chunks]
        response = RAGResponse(answer=answer, chunks_used=chunks, question=question)
        logger.info(
            "rag_answer_generated",
            question_length=len(question),
            answer_length=len(answer),
            chunks_used=len(chunks),
            sources_used=response.sources,
            top_score=max(scores) if scores else 0.0,
            avg_score=sum(scores) / len(scores) if scores else 0.0,
        )
        return response
