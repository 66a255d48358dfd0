"""Health check endpoints."""

from typing import Annotated, Literal

import structlog
from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from src.api.dependencies import get_kv_store, get_vector_store
from src.config import Settings, get_settings
from src.infrastructure.kvstore import KeyValueStore, KeyValueStoreError
from src.modules.vectorstore import VectorStore

logger = structlog.get_logger()
router = APIRouter()


class HealthResponse(BaseModel):
    """Health check response schema."""

    status: Literal["healthy", "unhealthy"]
    version: str
    documents: int


@router.get("", response_model=HealthResponse)
async def health_check(
    settings: Annotated[Settings, Depends(get_settings)],
    kv: Annotated[KeyValueStore, Depends(get_kv_store)],
    store: Annotated[VectorStore, Depends(get_vector_store)],
) -> HealthResponse:
    """Health check endpoint with dependency verification.

    Verifies the persistence medium is readable. The embedding and LLM
    services are not called; health checks stay local and fast.

    Raises:
        HTTPException: 503 if the medium cannot be read.
    """
    try:
        kv.get(settings.store_key)
    except KeyValueStoreError as e:
        logger.error("health_check_failed", error=str(e), error_type=type(e).__name__)
        raise HTTPException(
            status_code=503,
            detail=f"Service unhealthy: {type(e).__name__}",
        ) from e

    return HealthResponse(
        status="healthy",
        version=settings.app_version,
        documents=store.count(),
    )
