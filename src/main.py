"""FastAPI application entry point."""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI
from slowapi.errors import RateLimitExceeded

from src.api.dependencies import (
    get_embedding_provider,
    get_ingestion_service,
    get_kv_store,
    get_persistence_adapter,
    get_vector_store,
)
from src.api.health import router as health_router
from src.api.query import router as query_router
from src.api.rate_limit import limiter, rate_limit_exceeded_handler
from src.api.store import router as store_router
from src.config import get_settings
from src.infrastructure.observability import init_observability, shutdown_observability

logger = structlog.get_logger()
settings = get_settings()


async def restore_store() -> None:
    """Hydrate the store from the medium.

    Records persisted without embeddings are re-embedded when an embedding
    provider is configured. Otherwise they stay pending in the store, and
    later saves keep writing them back until they can be re-embedded.
    """
    store = get_vector_store(settings)
    adapter = get_persistence_adapter(settings, get_kv_store(settings))
    result = adapter.hydrate(store)

    if result.error is not None:
        logger.error("store_restore_failed", error=str(result.error))
        return

    unembedded = result.needs_embedding
    if unembedded:
        ingestion = get_ingestion_service(
            settings, get_embedding_provider(settings), store, adapter
        )
        if ingestion is None:
            logger.warning(
                "store_restore_pending_not_reembedded",
                records=len(unembedded),
                reason="embedding_api_key not set",
            )
            return
        await ingestion.reembed_records(unembedded)

    logger.info(
        "store_restored",
        documents=store.count(),
        degraded=result.degraded,
        skipped=result.skipped,
    )


def flush_store() -> None:
    """Persist unsaved changes on shutdown."""
    store = get_vector_store(settings)
    if store.is_dirty:
        adapter = get_persistence_adapter(settings, get_kv_store(settings))
        store.save_to(adapter)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None]:
    """Application lifespan handler for startup/shutdown."""
    init_observability(
        settings.app_name,
        settings.app_version,
        otlp_endpoint=settings.otlp_endpoint,
        console_export=settings.tracing_console_export,
        enabled=settings.tracing_enabled,
        debug=settings.debug,
        app=app,
    )
    await restore_store()

    yield

    flush_store()
    shutdown_observability()


app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    docs_url="/docs" if settings.debug else None,
    redoc_url="/redoc" if settings.debug else None,
    lifespan=lifespan,
)

# Rate limiting
app.state.limiter = limiter
app.add_exception_handler(
    RateLimitExceeded,
    rate_limit_exceeded_handler,  # type: ignore[arg-type]
)

# Register routers
app.include_router(health_router, prefix="/health", tags=["health"])
app.include_router(store_router, prefix="/store", tags=["store"])
app.include_router(query_router, tags=["retrieval"])
