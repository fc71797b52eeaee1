"""Administrative routes for Kontecst."""

from __future__ import annotations

from fastapi import APIRouter, Depends

from kontecst.api.dependencies import get_database, get_sync_coordinator, get_vector_index
from kontecst.core.metrics import INDEX_SIZE, metrics_response
from kontecst.db.sqlite import SQLiteDatabase
from kontecst.models.dto import RebuildResponse, RecoverResponse
from kontecst.retrieval.vector_index import VectorIndex
from kontecst.sync.coordinator import SyncCoordinator

router = APIRouter()


@router.get("/metrics", summary="Prometheus metrics")
async def get_metrics():
    return metrics_response()


@router.post("/admin/index/rebuild", response_model=RebuildResponse, summary="Reload the vector index from storage")
async def rebuild_index(
    db: SQLiteDatabase = Depends(get_database),
    index: VectorIndex = Depends(get_vector_index),
) -> RebuildResponse:
    index.rebuild(db)
    INDEX_SIZE.set(index.size)
    return RebuildResponse(chunks=index.size)


@router.post("/admin/sync/recover", response_model=RecoverResponse, summary="Release stale repository syncs")
async def recover_syncs(
    max_age_seconds: int | None = None,
    coordinator: SyncCoordinator = Depends(get_sync_coordinator),
) -> RecoverResponse:
    return RecoverResponse(recovered=coordinator.recover_stale(max_age_seconds))


__all__ = ["router"]
