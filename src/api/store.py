"""Vector store management endpoints: stats, listing, import and export."""

import json
from typing import Annotated, Any

import structlog
from fastapi import APIRouter, Depends, File, HTTPException, Query, Request, UploadFile
from fastapi.responses import Response

from src.api.dependencies import get_persistence_adapter, get_vector_store
from src.api.schemas import (
    ClearResponse,
    DeleteResponse,
    DocumentListResponse,
    DocumentOut,
    ImportResponse,
    SaveOut,
    StatsResponse,
)
from src.config import Settings, get_settings
from src.modules.vectorstore import (
    ImportSource,
    PersistenceAdapter,
    VectorStore,
    export_filename,
    export_records,
    import_into,
    merge_sources,
)

logger = structlog.get_logger()
router = APIRouter()

# Query parameters of GET /documents that are not metadata filters
_RESERVED_PARAMS = frozenset({"limit", "offset"})


def _parse_filter_value(raw: str) -> Any:
    """Interpret a query-string value as JSON when possible ("3" -> 3)."""
    try:
        value = json.loads(raw)
    except json.JSONDecodeError:
        return raw
    return value if isinstance(value, int | float | bool) else raw


@router.get("/stats", response_model=StatsResponse)
async def store_stats(
    settings: Annotated[Settings, Depends(get_settings)],
    store: Annotated[VectorStore, Depends(get_vector_store)],
    count_field: str | None = None,
) -> StatsResponse:
    """Summary statistics; count_field defaults to the configured field."""
    stats = store.stats(count_field or settings.stats_count_field)
    return StatsResponse(
        total_documents=stats.total_documents,
        average_embedding_length=stats.average_embedding_length,
        total_count_field=stats.total_count_field,
        count_field=stats.count_field,
    )


@router.get("/documents", response_model=DocumentListResponse)
async def list_store_documents(
    request: Request,
    store: Annotated[VectorStore, Depends(get_vector_store)],
    limit: Annotated[int, Query(ge=1, le=1000)] = 100,
    offset: Annotated[int, Query(ge=0)] = 0,
) -> DocumentListResponse:
    """List records in insertion order.

    Any query parameter other than limit and offset is an exact-match
    metadata filter, e.g. ``?sourceFile=a.json&chunkIndex=0``.
    """
    metadata_filter = {
        key: _parse_filter_value(value)
        for key, value in request.query_params.items()
        if key not in _RESERVED_PARAMS
    }
    records = store.all(metadata_filter or None)
    return DocumentListResponse(
        total=len(records),
        documents=[
            DocumentOut.from_record(r) for r in records[offset : offset + limit]
        ],
    )


@router.delete("", response_model=ClearResponse)
async def clear_store(
    store: Annotated[VectorStore, Depends(get_vector_store)],
    adapter: Annotated[PersistenceAdapter, Depends(get_persistence_adapter)],
) -> ClearResponse:
    """Wipe the persisted payloads, then remove every record.

    Raises:
        HTTPException: 503 if the medium could not be wiped; the in-memory
            store is left untouched.
    """
    if not adapter.wipe():
        raise HTTPException(
            status_code=503, detail="Persisted store could not be wiped"
        )
    removed = store.clear()
    store.mark_clean()
    logger.info("api_store_cleared", removed=removed)
    return ClearResponse(removed=removed)


@router.delete("/documents/{record_id}", response_model=DeleteResponse)
async def delete_document(
    record_id: str,
    store: Annotated[VectorStore, Depends(get_vector_store)],
    adapter: Annotated[PersistenceAdapter, Depends(get_persistence_adapter)],
) -> DeleteResponse:
    """Remove one record by id and persist the store.

    Raises:
        HTTPException: 404 if no record has that id.
    """
    if not store.remove(record_id):
        raise HTTPException(status_code=404, detail=f"Record not found: {record_id}")
    save = store.save_to(adapter)
    return DeleteResponse(id=record_id, removed=True, save=SaveOut.from_result(save))


@router.post("/import", response_model=ImportResponse)
async def import_stores(
    files: Annotated[list[UploadFile], File(description="Exported store JSON files")],
    store: Annotated[VectorStore, Depends(get_vector_store)],
    adapter: Annotated[PersistenceAdapter, Depends(get_persistence_adapter)],
    replace: bool = True,
) -> ImportResponse:
    """Merge uploaded exports into the store.

    Later files win on id collisions. With replace (the default) the merged
    set becomes the whole store; otherwise it is upserted on top.

    Raises:
        HTTPException: 400 if no file could be parsed.
    """
    sources = [
        ImportSource(name=upload.filename or f"upload-{i}", payload=await upload.read())
        for i, upload in enumerate(files)
    ]
    result = merge_sources(sources)
    errors = [str(e) for e in result.errors]

    if result.errors and len(result.errors) == len(sources):
        logger.warning("api_import_rejected", sources=len(sources))
        raise HTTPException(status_code=400, detail=errors)

    batch = import_into(store, result, replace=replace)
    save = store.save_to(adapter)

    logger.info(
        "api_store_imported",
        sources=len(sources),
        failed_sources=len(result.errors),
        merged_records=len(result.records),
        replace=replace,
        save_outcome=save.outcome.value,
    )
    return ImportResponse(
        sources=len(sources),
        merged_records=len(result.records),
        inserted=batch.inserted,
        replaced=batch.replaced,
        rejected_records=len(result.rejected) + len(batch.rejected),
        errors=errors,
        save=SaveOut.from_result(save),
    )


@router.get("/export")
async def export_store(
    store: Annotated[VectorStore, Depends(get_vector_store)],
) -> Response:
    """Download the store as a JSON array attachment."""
    filename = export_filename()
    return Response(
        content=export_records(store.all()),
        media_type="application/json",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )
