"""FastAPI application setup for Kontecst."""

from __future__ import annotations

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from kontecst.api.dependencies import (
    get_app_settings,
    get_database,
    get_ingest_pipeline,
    get_lifecycle,
    get_search_service,
    get_sync_coordinator,
    get_vector_index,
    shutdown_services,
)
from kontecst.api.routes_admin import router as admin_router
from kontecst.api.routes_ingest import router as ingest_router
from kontecst.api.routes_packages import router as packages_router
from kontecst.api.routes_query import router as query_router
from kontecst.api.routes_sync import router as sync_router
from kontecst.core.errors import (
    ConflictError,
    InvalidStateError,
    KontecstError,
    NotFoundError,
    ProviderError,
    QuotaExceededError,
    ValidationError,
)
from kontecst.core.logging import configure_logging, get_logger
from kontecst.core.metrics import INDEX_SIZE

configure_logging()
logger = get_logger(__name__)

# Most specific first; QuotaExceededError is also a ValidationError.
_STATUS_BY_ERROR: tuple[tuple[type[KontecstError], int], ...] = (
    (QuotaExceededError, 413),
    (ValidationError, 400),
    (NotFoundError, 404),
    (ConflictError, 409),
    (InvalidStateError, 409),
    (ProviderError, 502),
)

app = FastAPI(
    title="Kontecst",
    version="0.1.0",
    docs_url="/docs",
    redoc_url="/redoc",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        "http://127.0.0.1:3000",
        "http://localhost:3000",
    ],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(packages_router, prefix="", tags=["packages"])
app.include_router(ingest_router, prefix="", tags=["ingest"])
app.include_router(sync_router, prefix="", tags=["sync"])
app.include_router(query_router, prefix="", tags=["search"])
app.include_router(admin_router, prefix="", tags=["admin"])


def status_for(exc: KontecstError) -> int:
    for error_type, status in _STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            return status
    return 500


@app.exception_handler(KontecstError)
async def handle_kontecst_error(request: Request, exc: KontecstError) -> JSONResponse:
    status = status_for(exc)
    if status >= 500:
        logger.warning("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=status, content=exc.to_dict())


@app.on_event("startup")
async def startup() -> None:
    """Warm up core singletons and release syncs orphaned by a previous crash."""
    get_app_settings()
    get_database()
    INDEX_SIZE.set(get_vector_index().size)
    get_ingest_pipeline()
    get_lifecycle()
    get_search_service()
    get_sync_coordinator().recover_stale()


@app.on_event("shutdown")
async def shutdown() -> None:
    shutdown_services()


@app.get("/health", tags=["admin"])
def health() -> dict[str, bool]:
    """Simple liveness check."""
    return {"ok": True}
