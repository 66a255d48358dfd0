"""Retrieval, answering and ingestion endpoints."""

import tempfile
from pathlib import Path
from typing import Annotated

import structlog
from fastapi import APIRouter, Depends, File, HTTPException, Request, UploadFile

from src.api.dependencies import get_ingestion_service, get_rag_service, get_retriever
from src.api.rate_limit import get_rate_limit_string, limiter
from src.api.schemas import (
    AskRequest,
    AskResponse,
    ChunkOut,
    IngestResponse,
    QueryRequest,
    QueryResponse,
    SaveOut,
)
from src.infrastructure.llm import LLMProviderError
from src.modules.ingestion import (
    ChunkPayloadError,
    DocumentLoadError,
    IngestionResult,
    IngestionService,
)
from src.modules.rag import EmbeddingUnavailableError, RAGService, RetrievalOrchestrator

logger = structlog.get_logger()
router = APIRouter()

EMBEDDINGS_NOT_CONFIGURED = "Embeddings not configured. Please set EMBEDDING_API_KEY."


def _embedding_unavailable(e: EmbeddingUnavailableError) -> HTTPException:
    return HTTPException(
        status_code=503,
        detail=f"Embedding service unavailable: {e}",
    )


@router.post("/query", response_model=QueryResponse)
@limiter.limit(get_rate_limit_string)
async def query(
    request: Request,  # noqa: ARG001 - required by slowapi
    body: QueryRequest,
    retriever: Annotated[RetrievalOrchestrator | None, Depends(get_retriever)],
) -> QueryResponse:
    """Return the chunks most similar to a query.

    Raises:
        HTTPException: 422 for a blank query, 503 when embeddings are
            unavailable.
    """
    if retriever is None:
        raise HTTPException(status_code=503, detail=EMBEDDINGS_NOT_CONFIGURED)

    try:
        chunks = await retriever.retrieve(body.query, body.top_k)
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e)) from e
    except EmbeddingUnavailableError as e:
        raise _embedding_unavailable(e) from e

    return QueryResponse(
        query=body.query,
        results=[ChunkOut.from_chunk(c) for c in chunks],
    )


@router.post("/ask", response_model=AskResponse)
@limiter.limit(get_rate_limit_string)
async def ask(
    request: Request,  # noqa: ARG001 - required by slowapi
    body: AskRequest,
    rag_service: Annotated[RAGService | None, Depends(get_rag_service)],
) -> AskResponse:
    """Answer a question from retrieved context.

    Raises:
        HTTPException: 422 for a blank question, 503 when the pipeline is
            not configured or embeddings are unavailable, 502 when the
            generation service fails.
    """
    if rag_service is None:
        raise HTTPException(
            status_code=503,
            detail="RAG not configured. Please set OPENROUTER_API_KEY and EMBEDDING_API_KEY.",
        )

    history = [m.model_dump() for m in body.history]
    try:
        response = await rag_service.ask(body.question, history, top_k=body.top_k)
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e)) from e
    except EmbeddingUnavailableError as e:
        raise _embedding_unavailable(e) from e
    except LLMProviderError as e:
        logger.error(
            "api_ask_llm_error",
            error=str(e),
            provider=e.provider,
            error_type=type(e).__name__,
        )
        raise HTTPException(status_code=502, detail=str(e)) from e

    return AskResponse(
        question=response.question,
        answer=response.answer,
        sources=response.sources,
        chunks=[ChunkOut.from_chunk(c) for c in response.chunks_used],
    )


def _ingest_response(result: IngestionResult) -> IngestResponse:
    return IngestResponse(
        source=result.source,
        chunks_total=result.chunks_total,
        chunks_stored=result.chunks_stored,
        failed_chunk_ids=result.failed_chunk_ids,
        save=SaveOut.from_result(result.save),
    )


@router.post("/ingest", response_model=IngestResponse)
async def ingest(
    file: Annotated[UploadFile, File(description=".md, .txt, .pdf or chunk JSON")],
    ingestion: Annotated[IngestionService | None, Depends(get_ingestion_service)],
) -> IngestResponse:
    """Chunk, embed and store an uploaded document.

    A .json upload is treated as pre-chunked content
    ({"chunks": [...], "metadata": {...}}) and only embedded.

    Raises:
        HTTPException: 400 for unreadable or unsupported files, 503 when
            embeddings are not configured.
    """
    if ingestion is None:
        raise HTTPException(status_code=503, detail=EMBEDDINGS_NOT_CONFIGURED)

    filename = Path(file.filename or "upload.txt").name
    content = await file.read()

    try:
        if filename.lower().endswith(".json"):
            result = await ingestion.ingest_chunk_payload(content, source=filename)
        else:
            with tempfile.TemporaryDirectory() as tmp:
                path = Path(tmp) / filename
                path.write_bytes(content)
                result = await ingestion.ingest_document(path)
    except (DocumentLoadError, ChunkPayloadError) as e:
        logger.warning("api_ingest_rejected", source=filename, error=str(e))
        raise HTTPException(status_code=400, detail=str(e)) from e

    return _ingest_response(result)
