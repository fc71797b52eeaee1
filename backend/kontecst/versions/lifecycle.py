"""Package and version lifecycle: draft → locked → published."""

from __future__ import annotations

import sqlite3

from kontecst.content.store import ContentStore
from kontecst.core.audit import AuditSink, emit
from kontecst.core.errors import ConflictError, InvalidStateError, NotFoundError, ValidationError
from kontecst.core.logging import get_logger
from kontecst.db.sqlite import SQLiteDatabase
from kontecst.models.entities import VISIBILITIES, Package, PackageVersion
from kontecst.retrieval.vector_index import VectorIndex
from kontecst.utils.ids import new_id
from kontecst.utils.text import parse_semver, slugify
from kontecst.utils.time import now_ms
from kontecst.versions.changelog import diff_file_sets, render_changelog

logger = get_logger(__name__)

RELEASED_STATES = ("locked", "published")


class VersionLifecycle:
    """Owns packages, versions and every state transition between them.

    Transitions are compare-and-set updates guarded by the expected prior
    state, so two concurrent ``lock`` calls cannot both succeed and no
    transition ever moves a version backward.
    """

    def __init__(
        self,
        db: SQLiteDatabase,
        store: ContentStore,
        vector_index: VectorIndex,
        audit: AuditSink | None = None,
    ) -> None:
        self.db = db
        self.store = store
        self.vector_index = vector_index
        self.audit = audit

    # Packages ----------------------------------------------------------

    def create_package(
        self,
        name: str,
        owner_id: str,
        visibility: str = "private",
        slug: str | None = None,
        description: str | None = None,
    ) -> Package:
        if not name or not name.strip():
            raise ValidationError("Package name must not be empty")
        if visibility not in VISIBILITIES:
            raise ValidationError(f"Visibility must be one of {', '.join(VISIBILITIES)}")
        package_slug = slugify(slug or name)
        package_id = new_id("pkg")
        now = now_ms()
        try:
            with self.db.transaction() as cur:
                cur.execute(
                    """
                    INSERT INTO packages (id, name, slug, owner_id, description, visibility, is_archived, created_at, updated_at)
                    VALUES (?, ?, ?, ?, ?, ?, 0, ?, ?)
                    """,
                    [package_id, name.strip(), package_slug, owner_id, description, visibility, now, now],
                )
        except sqlite3.IntegrityError as exc:
            raise ConflictError(f"A package with slug {package_slug!r} already exists") from exc
        return self.get_package(package_id)

    def get_package(self, package_id: str) -> Package:
        row = self.db.query_one("SELECT * FROM packages WHERE id = ?", [package_id])
        if row is None:
            raise NotFoundError(f"Package {package_id} not found")
        return Package.from_row(row)

    def archive_package(self, package_id: str) -> Package:
        with self.db.transaction() as cur:
            cur.execute(
                "UPDATE packages SET is_archived = 1, updated_at = ? WHERE id = ?",
                [now_ms(), package_id],
            )
            if cur.rowcount == 0:
                raise NotFoundError(f"Package {package_id} not found")
        return self.get_package(package_id)

    # Versions ----------------------------------------------------------

    def create_version(
        self,
        package_id: str,
        version: str,
        description: str | None = None,
        copy_from_version: str | None = None,
    ) -> PackageVersion:
        """Create a draft, optionally seeded with another version's files."""
        parse_semver(version)
        package = self.get_package(package_id)
        if package.is_archived:
            raise InvalidStateError(f"Package {package.slug} is archived")
        source = self._find_version(package_id, copy_from_version) if copy_from_version else None
        if copy_from_version and source is None:
            raise NotFoundError(f"Version {copy_from_version} of {package.slug} not found")

        version_id = new_id("ver")
        now = now_ms()
        try:
            with self.db.transaction() as cur:
                cur.execute(
                    """
                    INSERT INTO package_versions (id, package_id, version, description, state, created_at, updated_at)
                    VALUES (?, ?, ?, ?, 'draft', ?, ?)
                    """,
                    [version_id, package_id, version, description, now, now],
                )
                if source is not None:
                    _copy_version_content(cur, source.id, version_id, now)
        except sqlite3.IntegrityError as exc:
            raise ConflictError(f"Version {version} of {package.slug} already exists") from exc

        if source is not None:
            self.recalculate_stats(version_id)
            self.vector_index.load_version(self.db, version_id)
        logger.info("Created version %s of %s", version, package.slug, extra={"ctx_version_id": version_id})
        return self.get_version(version_id)

    def get_version(self, version_id: str) -> PackageVersion:
        row = self.db.query_one("SELECT * FROM package_versions WHERE id = ?", [version_id])
        if row is None:
            raise NotFoundError(f"Version {version_id} not found")
        return PackageVersion.from_row(row)

    def list_versions(self, package_id: str) -> list[PackageVersion]:
        """Versions of a package, newest semver first."""
        rows = self.db.query("SELECT * FROM package_versions WHERE package_id = ?", [package_id])
        versions = [PackageVersion.from_row(row) for row in rows]
        return sorted(versions, key=lambda item: parse_semver(item.version), reverse=True)

    def latest_draft(self, package_id: str) -> PackageVersion | None:
        for version in self.list_versions(package_id):
            if version.is_draft:
                return version
        return None

    def next_patch_version(self, package_id: str) -> str:
        versions = self.list_versions(package_id)
        if not versions:
            return "0.1.0"
        major, minor, patch = parse_semver(versions[0].version)
        return f"{major}.{minor}.{patch + 1}"

    def delete_version(self, version_id: str) -> None:
        """Delete a draft; files, chunks and embeddings cascade."""
        with self.db.transaction() as cur:
            cur.execute("DELETE FROM package_versions WHERE id = ? AND state = 'draft'", [version_id])
            if cur.rowcount == 0:
                version = self.get_version(version_id)
                raise InvalidStateError(f"Version {version.version} is {version.state} and cannot be deleted")
        self.vector_index.drop_version(version_id)

    # Transitions -------------------------------------------------------

    def lock(self, version_id: str, user_id: str | None = None) -> PackageVersion:
        """Freeze a draft: recount stats, write the changelog, mark locked."""
        with self.db.transaction(immediate=True) as cur:
            version = self.get_version(version_id)
            if version.state != "draft":
                raise InvalidStateError(f"Version {version.version} is {version.state}; only drafts can be locked")
            previous = self.previous_release(version)
            current_files = {path: digest for path, (digest, _) in self.store.fingerprints(version_id).items()}
            previous_files = (
                {path: digest for path, (digest, _) in self.store.fingerprints(previous.id).items()}
                if previous
                else None
            )
            changelog = render_changelog(
                diff_file_sets(current_files, previous_files),
                previous.version if previous else None,
            )
            file_count, total_size = self.store.totals(version_id)
            now = now_ms()
            cur.execute(
                """
                UPDATE package_versions
                SET state = 'locked', changelog = ?, file_count = ?, total_size_bytes = ?,
                    locked_at = ?, locked_by = ?, updated_at = ?
                WHERE id = ? AND state = 'draft'
                """,
                [changelog, file_count, total_size, now, user_id, now, version_id],
            )
            if cur.rowcount == 0:
                raise InvalidStateError(f"Version {version.version} is no longer a draft")

        locked = self.get_version(version_id)
        logger.info("Locked version %s", locked.version, extra={"ctx_version_id": version_id})
        emit(
            self.audit,
            "version.locked",
            version_id=version_id,
            user_id=user_id,
            file_count=locked.file_count,
            total_size_bytes=locked.total_size_bytes,
        )
        return locked

    def publish(self, version_id: str, user_id: str | None = None) -> PackageVersion:
        now = now_ms()
        with self.db.transaction() as cur:
            cur.execute(
                """
                UPDATE package_versions
                SET state = 'published', published_at = ?, published_by = ?, updated_at = ?
                WHERE id = ? AND state = 'locked'
                """,
                [now, user_id, now, version_id],
            )
            if cur.rowcount == 0:
                version = self.get_version(version_id)
                raise InvalidStateError(f"Version {version.version} is {version.state}; only locked versions can be published")
        published = self.get_version(version_id)
        logger.info("Published version %s", published.version, extra={"ctx_version_id": version_id})
        emit(self.audit, "version.published", version_id=version_id, user_id=user_id)
        return published

    def recalculate_stats(self, version_id: str) -> PackageVersion:
        """Recount file_count/total_size_bytes from the files; any state."""
        with self.db.transaction() as cur:
            self.get_version(version_id)
            file_count, total_size = self.store.totals(version_id)
            cur.execute(
                "UPDATE package_versions SET file_count = ?, total_size_bytes = ? WHERE id = ?",
                [file_count, total_size, version_id],
            )
        return self.get_version(version_id)

    def previous_release(self, version: PackageVersion) -> PackageVersion | None:
        """The highest locked or published version below ``version``."""
        current = parse_semver(version.version)
        candidates = [
            item
            for item in self.list_versions(version.package_id)
            if item.state in RELEASED_STATES and parse_semver(item.version) < current
        ]
        return candidates[0] if candidates else None

    def _find_version(self, package_id: str, version: str) -> PackageVersion | None:
        row = self.db.query_one(
            "SELECT * FROM package_versions WHERE package_id = ? AND version = ?",
            [package_id, version],
        )
        return PackageVersion.from_row(row) if row else None


def _copy_version_content(cur: sqlite3.Cursor, source_id: str, target_id: str, now: int) -> None:
    """Copy files, chunks and embeddings of one version into another."""
    files = cur.execute("SELECT * FROM files WHERE version_id = ?", [source_id]).fetchall()
    for file_row in files:
        file_id = new_id("file")
        cur.execute(
            """
            INSERT INTO files (
              id, version_id, filename, path, content, content_hash, size_bytes,
              mime_type, index_status, created_at, updated_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            [
                file_id,
                target_id,
                file_row["filename"],
                file_row["path"],
                file_row["content"],
                file_row["content_hash"],
                file_row["size_bytes"],
                file_row["mime_type"],
                file_row["index_status"],
                now,
                now,
            ],
        )
        chunk_rows = cur.execute(
            """
            SELECT c.*, e.model, e.dim, e.vector
            FROM chunks c LEFT JOIN embeddings e ON e.chunk_id = c.id
            WHERE c.file_id = ?
            """,
            [file_row["id"]],
        ).fetchall()
        for chunk_row in chunk_rows:
            chunk_id = new_id("chk")
            cur.execute(
                """
                INSERT INTO chunks (
                  id, file_id, version_id, ordinal, start_token, end_token,
                  start_char, end_char, text, token_count, content_hash, created_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                [
                    chunk_id,
                    file_id,
                    target_id,
                    chunk_row["ordinal"],
                    chunk_row["start_token"],
                    chunk_row["end_token"],
                    chunk_row["start_char"],
                    chunk_row["end_char"],
                    chunk_row["text"],
                    chunk_row["token_count"],
                    chunk_row["content_hash"],
                    now,
                ],
            )
            if chunk_row["vector"] is not None:
                cur.execute(
                    """
                    INSERT INTO embeddings (chunk_id, version_id, content_hash, model, dim, vector, created_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?)
                    """,
                    [chunk_id, target_id, chunk_row["content_hash"], chunk_row["model"], chunk_row["dim"], chunk_row["vector"], now],
                )


__all__ = ["VersionLifecycle"]
