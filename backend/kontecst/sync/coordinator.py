"""Repository sync coordination.

At most one sync runs per repository. The guard is a compare-and-set on the
persisted ``sync_status`` so it holds across threads and processes sharing
the database; unrelated repositories sync concurrently on the job runner.
"""

from __future__ import annotations

import time
from typing import Any, Callable

import orjson

from kontecst.content.store import ContentStore
from kontecst.core.audit import AuditSink, emit
from kontecst.core.config import Settings
from kontecst.core.errors import ConflictError, KontecstError, NotFoundError, ValidationError
from kontecst.core.logging import bind, get_logger
from kontecst.core.metrics import SYNC_RUNS
from kontecst.core.retry import RetryPolicy, call_with_retry
from kontecst.db.sqlite import SQLiteDatabase
from kontecst.ingest.pipeline import IngestPipeline
from kontecst.ingest.types import IncomingFile
from kontecst.jobs.runner import InlineJobRunner, JobRunner
from kontecst.models.entities import PackageVersion, Repository, SyncJob
from kontecst.sync.providers import (
    GitHubProvider,
    LocalDirectoryProvider,
    RemoteRepositoryProvider,
    path_selected,
    provider_for,
)
from kontecst.utils.hashing import sha256_bytes
from kontecst.utils.ids import new_id
from kontecst.utils.text import normalize_path
from kontecst.utils.time import now_ms
from kontecst.versions.lifecycle import VersionLifecycle

logger = get_logger(__name__)

PROVIDER_KINDS = ("github", "local")


def build_providers(settings: Settings) -> dict[str, RemoteRepositoryProvider]:
    return {
        "github": GitHubProvider(
            token=settings.github_token,
            api_base=settings.github_api_base,
            timeout=settings.provider_timeout,
        ),
        "local": LocalDirectoryProvider(),
    }


class SyncCoordinator:
    def __init__(
        self,
        db: SQLiteDatabase,
        settings: Settings,
        store: ContentStore,
        pipeline: IngestPipeline,
        lifecycle: VersionLifecycle,
        providers: dict[str, RemoteRepositoryProvider],
        runner: JobRunner | InlineJobRunner,
        audit: AuditSink | None = None,
        retry: RetryPolicy | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.db = db
        self.settings = settings
        self.store = store
        self.pipeline = pipeline
        self.lifecycle = lifecycle
        self.providers = providers
        self.runner = runner
        self.audit = audit
        self.retry = retry or RetryPolicy(
            attempts=settings.retry_attempts,
            base_delay=settings.retry_base_delay,
            max_delay=settings.retry_max_delay,
        )
        self.sleep = sleep

    # Repositories ------------------------------------------------------

    def register_repository(
        self,
        package_id: str,
        owner_id: str,
        provider: str,
        repo_name: str,
        repo_owner: str | None = None,
        branch: str = "main",
        sync_path: str = "/",
        auto_publish: bool = False,
    ) -> Repository:
        if provider not in PROVIDER_KINDS:
            raise ValidationError(f"Provider must be one of {', '.join(PROVIDER_KINDS)}")
        if provider == "github" and not repo_owner:
            raise ValidationError("GitHub repositories need an owner")
        if not repo_name:
            raise ValidationError("Repository name must not be empty")
        self.lifecycle.get_package(package_id)
        repository_id = new_id("repo")
        now = now_ms()
        with self.db.transaction() as cur:
            cur.execute(
                """
                INSERT INTO repositories (
                  id, package_id, owner_id, provider, repo_owner, repo_name, branch,
                  sync_path, auto_publish, sync_status, created_at, updated_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, 'idle', ?, ?)
                """,
                [
                    repository_id,
                    package_id,
                    owner_id,
                    provider,
                    repo_owner,
                    repo_name,
                    branch,
                    sync_path or "/",
                    int(auto_publish),
                    now,
                    now,
                ],
            )
        return self.get_repository(repository_id)

    def get_repository(self, repository_id: str) -> Repository:
        row = self.db.query_one("SELECT * FROM repositories WHERE id = ?", [repository_id])
        if row is None:
            raise NotFoundError(f"Repository {repository_id} not found")
        return Repository.from_row(row)

    def list_repositories(self, package_id: str) -> list[Repository]:
        rows = self.db.query("SELECT * FROM repositories WHERE package_id = ? ORDER BY created_at", [package_id])
        return [Repository.from_row(row) for row in rows]

    # Jobs --------------------------------------------------------------

    def trigger(self, repository_id: str, user_id: str | None = None) -> SyncJob:
        """Claim the repository and queue a sync job.

        Raises ``ConflictError`` carrying the in-flight job id when another
        sync already holds the repository.
        """
        job_id = new_id("sync")
        now = now_ms()
        with self.db.transaction() as cur:
            cur.execute(
                """
                UPDATE repositories SET sync_status = 'syncing', current_job_id = ?, updated_at = ?
                WHERE id = ? AND sync_status != 'syncing'
                """,
                [job_id, now, repository_id],
            )
            if cur.rowcount == 0:
                row = cur.execute("SELECT current_job_id FROM repositories WHERE id = ?", [repository_id]).fetchone()
                if row is None:
                    raise NotFoundError(f"Repository {repository_id} not found")
                raise ConflictError("Sync already in progress", job_id=row["current_job_id"])
            cur.execute(
                """
                INSERT INTO sync_jobs (id, repository_id, triggered_by, status, created_at)
                VALUES (?, ?, ?, 'queued', ?)
                """,
                [job_id, repository_id, user_id, now],
            )
        bind(logger, repository_id=repository_id, job_id=job_id).info("Queued sync")
        self.runner.submit(job_id, self.run, job_id)
        return self.get_job(job_id)

    def get_job(self, job_id: str) -> SyncJob:
        row = self.db.query_one("SELECT * FROM sync_jobs WHERE id = ?", [job_id])
        if row is None:
            raise NotFoundError(f"Sync job {job_id} not found")
        return SyncJob.from_row(row)

    def list_jobs(self, repository_id: str, limit: int = 20) -> list[SyncJob]:
        rows = self.db.query(
            "SELECT * FROM sync_jobs WHERE repository_id = ? ORDER BY created_at DESC LIMIT ?",
            [repository_id, limit],
        )
        return [SyncJob.from_row(row) for row in rows]

    def run(self, job_id: str) -> SyncJob:
        """Execute a queued sync job; the repository is released in every outcome.

        A job that is no longer queued or no longer holds its repository (for
        example one already failed by ``recover_stale``) is returned untouched.
        """
        job = self.get_job(job_id)
        repository = self.get_repository(job.repository_id)
        log = bind(logger, repository_id=repository.id, job_id=job_id)
        with self.db.transaction() as cur:
            cur.execute(
                """
                UPDATE sync_jobs SET status = 'syncing', started_at = ?
                WHERE id = ? AND status = 'queued'
                  AND EXISTS (
                    SELECT 1 FROM repositories r
                    WHERE r.id = sync_jobs.repository_id AND r.current_job_id = sync_jobs.id
                  )
                """,
                [now_ms(), job_id],
            )
            claimed = cur.rowcount == 1
        if not claimed:
            log.warning("Sync job is no longer current; skipping")
            return self.get_job(job_id)

        result: dict[str, Any] = {"added": 0, "updated": 0, "removed": 0, "errors": [], "commit": None, "version_id": None}
        status = "failed"
        try:
            result = self._sync(repository)
            status = "succeeded"
        except KontecstError as exc:
            log.warning("Sync failed: %s", exc.message)
            result["errors"] = [{"path": None, "error": exc.code, "message": exc.message}]
        except Exception as exc:
            log.exception("Sync crashed: %s", exc)
            result["errors"] = [{"path": None, "error": "internal_error", "message": str(exc)}]
            raise
        finally:
            self._finish(job_id, repository.id, status, result)

        return self.get_job(job_id)

    def recover_stale(self, max_age_seconds: int | None = None) -> int:
        """Release repositories whose in-flight sync is older than ``max_age_seconds``."""
        max_age = max_age_seconds if max_age_seconds is not None else self.settings.sync_stale_after_seconds
        threshold = now_ms() - max_age * 1000
        recovered = 0
        with self.db.transaction() as cur:
            rows = cur.execute(
                """
                SELECT r.id, r.current_job_id, COALESCE(j.started_at, j.created_at) AS since
                FROM repositories r LEFT JOIN sync_jobs j ON j.id = r.current_job_id
                WHERE r.sync_status = 'syncing'
                """
            ).fetchall()
            now = now_ms()
            for row in rows:
                if row["since"] is not None and row["since"] >= threshold:
                    continue
                errors = orjson.dumps([{"path": None, "error": "stale", "message": "Sync abandoned"}]).decode("utf-8")
                cur.execute(
                    """
                    UPDATE sync_jobs SET status = 'failed', errors_json = ?, finished_at = ?
                    WHERE id = ? AND status IN ('queued', 'syncing')
                    """,
                    [errors, now, row["current_job_id"]],
                )
                cur.execute(
                    """
                    UPDATE repositories
                    SET sync_status = 'idle', current_job_id = NULL, last_sync_status = 'failed', updated_at = ?
                    WHERE id = ?
                    """,
                    [now, row["id"]],
                )
                recovered += 1
        if recovered:
            logger.warning("Recovered %s stale sync(s)", recovered)
        return recovered

    # Internal helpers -------------------------------------------------

    def _sync(self, repository: Repository) -> dict[str, Any]:
        provider = provider_for(repository, self.providers)
        label = f"{repository.provider}:{repository.repo_owner or ''}/{repository.repo_name}"
        commit = self._with_retry(lambda: provider.head_commit(repository), f"head commit of {label}")
        result: dict[str, Any] = {"added": 0, "updated": 0, "removed": 0, "errors": [], "commit": commit, "version_id": None}
        if commit == repository.last_sync_commit:
            logger.info("Repository %s already at %s", label, commit[:12])
            return result

        listing = self._with_retry(lambda: provider.list_files(repository, commit), f"file listing of {label}")
        remote = [
            item
            for item in listing
            if path_selected(item.path, repository.sync_path, self.settings.sync_include_suffixes)
        ]
        draft = self._target_draft(repository)
        result["version_id"] = draft.id
        existing = self.store.fingerprints(draft.id)

        incoming: list[IncomingFile] = []
        remote_paths: set[str] = set()
        for item in remote:
            path = normalize_path(item.path)
            remote_paths.add(path)
            try:
                content = self._with_retry(lambda item=item: provider.fetch(repository, item), f"fetch of {item.path}")
            except KontecstError as exc:
                result["errors"].append({"path": path, "error": exc.code, "message": exc.message})
                continue
            if existing.get(path) == (sha256_bytes(content), "indexed"):
                continue
            incoming.append(IncomingFile(path=path, content=content))

        if incoming:
            report = self.pipeline.ingest(draft.id, incoming, origin="sync")
            for outcome in report.succeeded:
                result["added" if outcome.path not in existing else "updated"] += 1
            for outcome in report.failed:
                result["errors"].append({"path": outcome.path, "error": outcome.error, "message": outcome.detail})

        for path in sorted(set(existing) - remote_paths):
            if self.pipeline.remove_file(draft.id, path):
                result["removed"] += 1

        if repository.auto_publish and not result["errors"]:
            self.lifecycle.lock(draft.id, repository.owner_id)
            self.lifecycle.publish(draft.id, repository.owner_id)
        return result

    def _target_draft(self, repository: Repository) -> PackageVersion:
        draft = self.lifecycle.latest_draft(repository.package_id)
        if draft is not None:
            return draft
        return self.lifecycle.create_version(
            repository.package_id,
            self.lifecycle.next_patch_version(repository.package_id),
            description=f"Synced from {repository.provider} {repository.repo_name}@{repository.branch}",
        )

    def _with_retry(self, fn: Callable[[], Any], description: str) -> Any:
        return call_with_retry(fn, self.retry, description=description, sleep=self.sleep)

    def _finish(self, job_id: str, repository_id: str, status: str, result: dict[str, Any]) -> None:
        now = now_ms()
        errors = result["errors"]
        # Only a clean run advances the commit, so failed files are retried next time.
        synced_commit = result["commit"] if status == "succeeded" and not errors else None
        with self.db.transaction() as cur:
            cur.execute(
                """
                UPDATE sync_jobs
                SET status = ?, version_id = ?, commit_sha = ?, files_added = ?, files_updated = ?,
                    files_removed = ?, errors_json = ?, finished_at = ?
                WHERE id = ? AND status = 'syncing'
                """,
                [
                    status,
                    result["version_id"],
                    result["commit"],
                    result["added"],
                    result["updated"],
                    result["removed"],
                    orjson.dumps(errors).decode("utf-8") if errors else None,
                    now,
                    job_id,
                ],
            )
            cur.execute(
                """
                UPDATE repositories
                SET sync_status = 'idle', current_job_id = NULL, last_sync_status = ?,
                    last_sync_commit = COALESCE(?, last_sync_commit), last_synced_at = ?, updated_at = ?
                WHERE id = ? AND current_job_id = ?
                """,
                [status, synced_commit, now, now, repository_id, job_id],
            )
        SYNC_RUNS.labels(status=status).inc()
        bind(logger, repository_id=repository_id, job_id=job_id).info(
            "Sync %s: +%s ~%s -%s, %s error(s)",
            status,
            result["added"],
            result["updated"],
            result["removed"],
            len(errors),
        )
        emit(
            self.audit,
            "sync.completed",
            job_id=job_id,
            repository_id=repository_id,
            status=status,
            added=result["added"],
            updated=result["updated"],
            removed=result["removed"],
            errors=len(errors),
        )


__all__ = ["SyncCoordinator", "build_providers", "PROVIDER_KINDS"]
