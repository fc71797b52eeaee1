"""Shared FastAPI dependencies."""

from __future__ import annotations

from functools import lru_cache

from fastapi import Header

from kontecst.content.store import ContentStore
from kontecst.core.audit import AuditSink, LoggingAuditSink
from kontecst.core.config import Settings, get_settings
from kontecst.core.errors import ValidationError
from kontecst.db.sqlite import SQLiteDatabase
from kontecst.ingest.embeddings import Embedder, build_embedder
from kontecst.ingest.pipeline import IngestPipeline
from kontecst.jobs.runner import JobRunner
from kontecst.retrieval import SearchService, VectorIndex
from kontecst.sync.coordinator import SyncCoordinator, build_providers
from kontecst.versions.lifecycle import VersionLifecycle

_DB: SQLiteDatabase | None = None
_VECTOR_INDEX: VectorIndex | None = None
_EMBEDDER: Embedder | None = None
_STORE: ContentStore | None = None
_RUNNER: JobRunner | None = None
_AUDIT: AuditSink | None = None
_PIPELINE: IngestPipeline | None = None
_LIFECYCLE: VersionLifecycle | None = None
_SYNC: SyncCoordinator | None = None
_SEARCH: SearchService | None = None


@lru_cache(maxsize=1)
def get_app_settings() -> Settings:
    return get_settings()


def get_database() -> SQLiteDatabase:
    global _DB
    if _DB is None:
        db = SQLiteDatabase(get_app_settings().db_path)
        db.ensure_schema()
        _DB = db
    return _DB


def get_embedder() -> Embedder:
    global _EMBEDDER
    if _EMBEDDER is None:
        _EMBEDDER = build_embedder(get_app_settings())
    return _EMBEDDER


def get_vector_index() -> VectorIndex:
    global _VECTOR_INDEX
    if _VECTOR_INDEX is None:
        index = VectorIndex(dim=get_app_settings().embedding_dim)
        index.rebuild(get_database())
        _VECTOR_INDEX = index
    return _VECTOR_INDEX


def get_content_store() -> ContentStore:
    global _STORE
    if _STORE is None:
        settings = get_app_settings()
        _STORE = ContentStore(
            get_database(),
            max_file_size_bytes=settings.max_file_size_bytes,
            max_package_size_bytes=settings.max_package_size_bytes,
        )
    return _STORE


def get_job_runner() -> JobRunner:
    global _RUNNER
    if _RUNNER is None:
        _RUNNER = JobRunner(max_workers=get_app_settings().job_workers)
    return _RUNNER


def get_audit_sink() -> AuditSink:
    global _AUDIT
    if _AUDIT is None:
        _AUDIT = LoggingAuditSink()
    return _AUDIT


def get_ingest_pipeline() -> IngestPipeline:
    global _PIPELINE
    if _PIPELINE is None:
        _PIPELINE = IngestPipeline(
            database=get_database(),
            settings=get_app_settings(),
            store=get_content_store(),
            embedder=get_embedder(),
            vector_index=get_vector_index(),
            runner=get_job_runner(),
            audit=get_audit_sink(),
        )
    return _PIPELINE


def get_lifecycle() -> VersionLifecycle:
    global _LIFECYCLE
    if _LIFECYCLE is None:
        _LIFECYCLE = VersionLifecycle(
            get_database(),
            get_content_store(),
            get_vector_index(),
            audit=get_audit_sink(),
        )
    return _LIFECYCLE


def get_sync_coordinator() -> SyncCoordinator:
    global _SYNC
    if _SYNC is None:
        settings = get_app_settings()
        _SYNC = SyncCoordinator(
            db=get_database(),
            settings=settings,
            store=get_content_store(),
            pipeline=get_ingest_pipeline(),
            lifecycle=get_lifecycle(),
            providers=build_providers(settings),
            runner=get_job_runner(),
            audit=get_audit_sink(),
        )
    return _SYNC


def get_search_service() -> SearchService:
    global _SEARCH
    if _SEARCH is None:
        _SEARCH = SearchService(
            db=get_database(),
            settings=get_app_settings(),
            vector_index=get_vector_index(),
            embedder=get_embedder(),
        )
    return _SEARCH


def get_user_id(x_user_id: str | None = Header(default=None)) -> str | None:
    """Caller identity, resolved upstream and passed through as an opaque id."""
    return x_user_id.strip() if x_user_id and x_user_id.strip() else None


def require_user_id(x_user_id: str | None = Header(default=None)) -> str:
    user_id = get_user_id(x_user_id)
    if user_id is None:
        raise ValidationError("X-User-Id header is required")
    return user_id


def shutdown_services() -> None:
    """Stop worker pools and close the database; singletons are rebuilt on next use."""
    global _DB, _VECTOR_INDEX, _EMBEDDER, _STORE, _RUNNER, _AUDIT, _PIPELINE, _LIFECYCLE, _SYNC, _SEARCH
    if _RUNNER is not None:
        _RUNNER.shutdown(wait=True)
    if _PIPELINE is not None:
        _PIPELINE.close()
    if _DB is not None:
        _DB.close()
    _DB = _VECTOR_INDEX = _EMBEDDER = _STORE = _RUNNER = _AUDIT = None
    _PIPELINE = _LIFECYCLE = _SYNC = _SEARCH = None
    get_app_settings.cache_clear()
    get_settings.cache_clear()


__all__ = [
    "get_app_settings",
    "get_database",
    "get_embedder",
    "get_vector_index",
    "get_content_store",
    "get_job_runner",
    "get_audit_sink",
    "get_ingest_pipeline",
    "get_lifecycle",
    "get_sync_coordinator",
    "get_search_service",
    "get_user_id",
    "require_user_id",
    "shutdown_services",
]
