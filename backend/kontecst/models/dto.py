"""Pydantic DTOs exposed via API."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, Field

_FROM_ATTRIBUTES = {"from_attributes": True}


class PackageCreateRequest(BaseModel):
    name: str
    slug: str | None = None
    description: str | None = None
    visibility: Literal["public", "private", "internal"] = "private"


class PackageResponse(BaseModel):
    model_config = _FROM_ATTRIBUTES

    id: str
    name: str
    slug: str
    owner_id: str
    description: str | None
    visibility: str
    is_archived: bool
    created_at: datetime
    updated_at: datetime


class VersionCreateRequest(BaseModel):
    version: str = Field(description="Semantic version, e.g. 1.0.0")
    description: str | None = None
    copy_from_version: str | None = Field(default=None, description="Seed the draft with this version's files")


class VersionResponse(BaseModel):
    model_config = _FROM_ATTRIBUTES

    id: str
    package_id: str
    version: str
    description: str | None
    state: str
    file_count: int
    total_size_bytes: int
    changelog: str | None
    locked_at: datetime | None
    locked_by: str | None
    published_at: datetime | None
    published_by: str | None
    created_at: datetime
    updated_at: datetime


class FileResponse(BaseModel):
    model_config = _FROM_ATTRIBUTES

    id: str
    path: str
    filename: str
    content_hash: str
    size_bytes: int
    mime_type: str
    index_status: str
    updated_at: datetime


class UploadFile(BaseModel):
    path: str
    content: str
    encoding: Literal["utf-8", "base64"] = "utf-8"
    mime_type: str | None = None


class IngestRequest(BaseModel):
    files: list[UploadFile] = Field(default_factory=list)
    paths: list[str] | None = Field(default=None, description="Local filesystem paths to load")
    background: bool = Field(default=False, description="Queue the batch as a job")


class IngestResponse(BaseModel):
    version_id: str
    job_id: str | None = None
    stats: dict[str, int] = Field(default_factory=dict)
    succeeded: list[dict[str, Any]] = Field(default_factory=list)
    failed: list[dict[str, Any]] = Field(default_factory=list)
    skipped: list[dict[str, Any]] = Field(default_factory=list)


class IngestJobResponse(BaseModel):
    model_config = _FROM_ATTRIBUTES

    id: str
    version_id: str
    status: str
    report: dict[str, Any] | None
    detail: str | None
    created_at: datetime
    started_at: datetime | None
    finished_at: datetime | None


class RepositoryCreateRequest(BaseModel):
    provider: Literal["github", "local"] = "github"
    repo_owner: str | None = None
    repo_name: str
    branch: str = "main"
    sync_path: str = "/"
    auto_publish: bool = False


class RepositoryResponse(BaseModel):
    model_config = _FROM_ATTRIBUTES

    id: str
    package_id: str
    owner_id: str
    provider: str
    repo_owner: str | None
    repo_name: str
    branch: str
    sync_path: str
    auto_publish: bool
    sync_status: str
    last_sync_status: str | None
    last_sync_commit: str | None
    current_job_id: str | None
    last_synced_at: datetime | None


class SyncJobResponse(BaseModel):
    model_config = _FROM_ATTRIBUTES

    id: str
    repository_id: str
    triggered_by: str | None
    status: str
    version_id: str | None
    commit_sha: str | None
    files_added: int
    files_updated: int
    files_removed: int
    errors: list[dict[str, Any]]
    created_at: datetime
    started_at: datetime | None
    finished_at: datetime | None


class SearchRequest(BaseModel):
    query: str
    package_id: str | None = None
    version_ids: list[str] | None = None
    limit: int | None = Field(default=None, ge=1)
    min_score: float = Field(default=0.0, ge=0.0, le=1.0)


class SearchResultResponse(BaseModel):
    model_config = _FROM_ATTRIBUTES

    chunk_id: str
    version_id: str
    file_id: str
    text: str
    score: float
    file: dict[str, Any]
    package: dict[str, Any]


class SearchResponse(BaseModel):
    query: str
    mode: Literal["semantic", "keyword"]
    results: list[SearchResultResponse]


class RecoverResponse(BaseModel):
    recovered: int


class RebuildResponse(BaseModel):
    chunks: int


__all__ = [
    "PackageCreateRequest",
    "PackageResponse",
    "VersionCreateRequest",
    "VersionResponse",
    "FileResponse",
    "UploadFile",
    "IngestRequest",
    "IngestResponse",
    "IngestJobResponse",
    "RepositoryCreateRequest",
    "RepositoryResponse",
    "SyncJobResponse",
    "SearchRequest",
    "SearchResultResponse",
    "SearchResponse",
    "RecoverResponse",
    "RebuildResponse",
]
