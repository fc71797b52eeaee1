"""Durable (version, path) → bytes mapping with size ceilings."""

from __future__ import annotations

import mimetypes
import sqlite3
from pathlib import PurePosixPath
from typing import Mapping

from kontecst.core.errors import InvalidStateError, NotFoundError, QuotaExceededError
from kontecst.db.sqlite import SQLiteDatabase
from kontecst.models.entities import FileRecord
from kontecst.utils.hashing import sha256_bytes
from kontecst.utils.ids import new_id
from kontecst.utils.text import normalize_path
from kontecst.utils.time import now_ms

_FILE_COLUMNS = (
    "id, version_id, filename, path, content_hash, size_bytes, mime_type, index_status, created_at, updated_at"
)

_MIME_OVERRIDES = {
    ".md": "text/markdown",
    ".markdown": "text/markdown",
    ".mdx": "text/markdown",
    ".txt": "text/plain",
}


def guess_mime_type(path: str) -> str:
    suffix = PurePosixPath(path).suffix.lower()
    if suffix in _MIME_OVERRIDES:
        return _MIME_OVERRIDES[suffix]
    guessed, _ = mimetypes.guess_type(path)
    return guessed or "text/plain"


class ContentStore:
    """File rows of a package version.

    Write methods take an open cursor so callers can combine a file write
    with chunk and embedding writes in one transaction; :meth:`put` wraps a
    single write in its own transaction.
    """

    def __init__(self, db: SQLiteDatabase, max_file_size_bytes: int, max_package_size_bytes: int) -> None:
        self.db = db
        self.max_file_size_bytes = max_file_size_bytes
        self.max_package_size_bytes = max_package_size_bytes

    # Reads -------------------------------------------------------------

    def get(self, version_id: str, path: str) -> FileRecord | None:
        row = self.db.query_one(
            f"SELECT {_FILE_COLUMNS}, content FROM files WHERE version_id = ? AND path = ?",
            [version_id, normalize_path(path)],
        )
        return FileRecord.from_row(row) if row else None

    def list_files(self, version_id: str, with_content: bool = False) -> list[FileRecord]:
        columns = f"{_FILE_COLUMNS}, content" if with_content else _FILE_COLUMNS
        rows = self.db.query(
            f"SELECT {columns} FROM files WHERE version_id = ? ORDER BY path",
            [version_id],
        )
        return [FileRecord.from_row(row) for row in rows]

    def fingerprints(self, version_id: str) -> dict[str, tuple[str, str]]:
        """Map path → (content hash, index status) for a version."""
        rows = self.db.query(
            "SELECT path, content_hash, index_status FROM files WHERE version_id = ?",
            [version_id],
        )
        return {row["path"]: (row["content_hash"], row["index_status"]) for row in rows}

    def totals(self, version_id: str) -> tuple[int, int]:
        """Recount (file count, total bytes) from the file rows themselves."""
        row = self.db.query_one(
            "SELECT COUNT(*) AS n, COALESCE(SUM(size_bytes), 0) AS total FROM files WHERE version_id = ?",
            [version_id],
        )
        return int(row["n"]), int(row["total"])

    # Quotas ------------------------------------------------------------

    def check_file_size(self, path: str, size: int) -> None:
        if size > self.max_file_size_bytes:
            raise QuotaExceededError(
                f"File {path} is {size} bytes; the per-file limit is {self.max_file_size_bytes} bytes"
            )

    def check_package_quota(self, version_id: str, incoming: Mapping[str, int]) -> None:
        """Reject a batch whose sizes would push the version past the package ceiling.

        ``incoming`` maps normalized paths to byte sizes; files replacing an
        existing path only count their size difference.
        """
        _, current_total = self.totals(version_id)
        existing = {
            row["path"]: int(row["size_bytes"])
            for row in self.db.query("SELECT path, size_bytes FROM files WHERE version_id = ?", [version_id])
        }
        projected = current_total + sum(size - existing.get(path, 0) for path, size in incoming.items())
        if projected > self.max_package_size_bytes:
            raise QuotaExceededError(
                f"Batch would grow the version to {projected} bytes; "
                f"the package limit is {self.max_package_size_bytes} bytes"
            )

    def _check_quota_locked(self, cur: sqlite3.Cursor, version_id: str, path: str, delta: int) -> None:
        # Batches admitted concurrently are only bounded by this in-transaction recount.
        row = cur.execute(
            "SELECT COALESCE(SUM(size_bytes), 0) AS total FROM files WHERE version_id = ?",
            [version_id],
        ).fetchone()
        projected = int(row["total"]) + delta
        if projected > self.max_package_size_bytes:
            raise QuotaExceededError(
                f"Writing {path} would grow the version to {projected} bytes; "
                f"the package limit is {self.max_package_size_bytes} bytes"
            )

    # Writes ------------------------------------------------------------

    def put(self, version_id: str, path: str, data: bytes, mime_type: str | None = None) -> FileRecord:
        """Store a file without indexing it."""
        normalized = normalize_path(path)
        self.check_file_size(normalized, len(data))
        self.check_package_quota(version_id, {normalized: len(data)})
        with self.db.transaction() as cur:
            assert_draft(cur, version_id)
            return self.write(cur, version_id, normalized, data, mime_type)

    def write(
        self,
        cur: sqlite3.Cursor,
        version_id: str,
        path: str,
        data: bytes,
        mime_type: str | None = None,
        content_hash: str | None = None,
        index_status: str = "indexed",
    ) -> FileRecord:
        """Insert or replace the file at ``path``; its old chunks are dropped."""
        now = now_ms()
        digest = content_hash or sha256_bytes(data)
        mime = mime_type or guess_mime_type(path)
        filename = path.rsplit("/", 1)[-1]
        existing = cur.execute(
            "SELECT id, size_bytes, created_at FROM files WHERE version_id = ? AND path = ?",
            [version_id, path],
        ).fetchone()
        self._check_quota_locked(cur, version_id, path, len(data) - (int(existing["size_bytes"]) if existing else 0))
        if existing:
            file_id = existing["id"]
            created_at = existing["created_at"]
            cur.execute("DELETE FROM chunks WHERE file_id = ?", [file_id])
            cur.execute(
                """
                UPDATE files
                SET content = ?, content_hash = ?, size_bytes = ?, mime_type = ?, index_status = ?, updated_at = ?
                WHERE id = ?
                """,
                [data, digest, len(data), mime, index_status, now, file_id],
            )
            _bump_counters(cur, version_id, files=0, size=len(data) - int(existing["size_bytes"]))
        else:
            file_id = new_id("file")
            created_at = now
            cur.execute(
                """
                INSERT INTO files (
                  id, version_id, filename, path, content, content_hash, size_bytes,
                  mime_type, index_status, created_at, updated_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                [file_id, version_id, filename, path, data, digest, len(data), mime, index_status, now, now],
            )
            _bump_counters(cur, version_id, files=1, size=len(data))
        return FileRecord(
            id=file_id,
            version_id=version_id,
            filename=filename,
            path=path,
            content_hash=digest,
            size_bytes=len(data),
            mime_type=mime,
            index_status=index_status,
            created_at=created_at,
            updated_at=now,
            content=data,
        )

    def delete(self, cur: sqlite3.Cursor, version_id: str, path: str) -> str | None:
        """Delete a file; returns its id, or ``None`` when absent."""
        row = cur.execute(
            "SELECT id, size_bytes FROM files WHERE version_id = ? AND path = ?",
            [version_id, path],
        ).fetchone()
        if row is None:
            return None
        cur.execute("DELETE FROM files WHERE id = ?", [row["id"]])
        _bump_counters(cur, version_id, files=-1, size=-int(row["size_bytes"]))
        return row["id"]


def assert_draft(cur: sqlite3.Cursor, version_id: str) -> None:
    """Raise unless the version exists, is a draft, and its package is active."""
    row = cur.execute(
        """
        SELECT v.state, p.is_archived
        FROM package_versions v JOIN packages p ON p.id = v.package_id
        WHERE v.id = ?
        """,
        [version_id],
    ).fetchone()
    if row is None:
        raise NotFoundError(f"Version {version_id} not found")
    if row["state"] != "draft":
        raise InvalidStateError(f"Version {version_id} is {row['state']}; files can only change while draft")
    if row["is_archived"]:
        raise InvalidStateError(f"The package of version {version_id} is archived")


def _bump_counters(cur: sqlite3.Cursor, version_id: str, files: int, size: int) -> None:
    cur.execute(
        """
        UPDATE package_versions
        SET file_count = MAX(0, file_count + ?), total_size_bytes = MAX(0, total_size_bytes + ?), updated_at = ?
        WHERE id = ?
        """,
        [files, size, now_ms(), version_id],
    )


__all__ = ["ContentStore", "assert_draft", "guess_mime_type"]
