"""Internal dataclasses representing persisted entities."""

from __future__ import annotations

import sqlite3
from dataclasses import dataclass, field
from typing import Any, Literal

import orjson

Visibility = Literal["public", "private", "internal"]
VersionState = Literal["draft", "locked", "published"]
SyncJobStatus = Literal["queued", "syncing", "succeeded", "failed"]
IngestJobStatus = Literal["queued", "running", "succeeded", "failed"]

VISIBILITIES: tuple[str, ...] = ("public", "private", "internal")


@dataclass(slots=True)
class Package:
    id: str
    name: str
    slug: str
    owner_id: str
    description: str | None
    visibility: Visibility
    is_archived: bool
    created_at: int
    updated_at: int

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "Package":
        return cls(
            id=row["id"],
            name=row["name"],
            slug=row["slug"],
            owner_id=row["owner_id"],
            description=row["description"],
            visibility=row["visibility"],
            is_archived=bool(row["is_archived"]),
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )


@dataclass(slots=True)
class PackageVersion:
    id: str
    package_id: str
    version: str
    description: str | None
    state: VersionState
    file_count: int
    total_size_bytes: int
    changelog: str | None
    locked_at: int | None
    locked_by: str | None
    published_at: int | None
    published_by: str | None
    created_at: int
    updated_at: int

    @property
    def is_draft(self) -> bool:
        return self.state == "draft"

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "PackageVersion":
        return cls(
            id=row["id"],
            package_id=row["package_id"],
            version=row["version"],
            description=row["description"],
            state=row["state"],
            file_count=row["file_count"],
            total_size_bytes=row["total_size_bytes"],
            changelog=row["changelog"],
            locked_at=row["locked_at"],
            locked_by=row["locked_by"],
            published_at=row["published_at"],
            published_by=row["published_by"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )


@dataclass(slots=True)
class FileRecord:
    id: str
    version_id: str
    filename: str
    path: str
    content_hash: str
    size_bytes: int
    mime_type: str
    index_status: str
    created_at: int
    updated_at: int
    content: bytes | None = None

    def text(self) -> str:
        return (self.content or b"").decode("utf-8")

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "FileRecord":
        keys = row.keys()
        return cls(
            id=row["id"],
            version_id=row["version_id"],
            filename=row["filename"],
            path=row["path"],
            content_hash=row["content_hash"],
            size_bytes=row["size_bytes"],
            mime_type=row["mime_type"],
            index_status=row["index_status"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
            content=row["content"] if "content" in keys else None,
        )


@dataclass(slots=True)
class Repository:
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
    last_synced_at: int | None
    created_at: int
    updated_at: int

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "Repository":
        return cls(
            id=row["id"],
            package_id=row["package_id"],
            owner_id=row["owner_id"],
            provider=row["provider"],
            repo_owner=row["repo_owner"],
            repo_name=row["repo_name"],
            branch=row["branch"],
            sync_path=row["sync_path"],
            auto_publish=bool(row["auto_publish"]),
            sync_status=row["sync_status"],
            last_sync_status=row["last_sync_status"],
            last_sync_commit=row["last_sync_commit"],
            current_job_id=row["current_job_id"],
            last_synced_at=row["last_synced_at"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )


@dataclass(slots=True)
class SyncJob:
    id: str
    repository_id: str
    triggered_by: str | None
    status: SyncJobStatus
    version_id: str | None
    commit_sha: str | None
    files_added: int
    files_updated: int
    files_removed: int
    errors: list[dict[str, Any]] = field(default_factory=list)
    created_at: int = 0
    started_at: int | None = None
    finished_at: int | None = None

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "SyncJob":
        return cls(
            id=row["id"],
            repository_id=row["repository_id"],
            triggered_by=row["triggered_by"],
            status=row["status"],
            version_id=row["version_id"],
            commit_sha=row["commit_sha"],
            files_added=row["files_added"],
            files_updated=row["files_updated"],
            files_removed=row["files_removed"],
            errors=orjson.loads(row["errors_json"]) if row["errors_json"] else [],
            created_at=row["created_at"],
            started_at=row["started_at"],
            finished_at=row["finished_at"],
        )


@dataclass(slots=True)
class IngestJob:
    id: str
    version_id: str
    status: IngestJobStatus
    report: dict[str, Any] | None
    detail: str | None
    created_at: int
    started_at: int | None
    finished_at: int | None

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "IngestJob":
        return cls(
            id=row["id"],
            version_id=row["version_id"],
            status=row["status"],
            report=orjson.loads(row["report_json"]) if row["report_json"] else None,
            detail=row["detail"],
            created_at=row["created_at"],
            started_at=row["started_at"],
            finished_at=row["finished_at"],
        )


@dataclass(slots=True)
class SearchResult:
    """Ranked chunk returned by the search service; never persisted."""

    chunk_id: str
    version_id: str
    file_id: str
    text: str
    score: float
    file: dict[str, Any]
    package: dict[str, Any]
