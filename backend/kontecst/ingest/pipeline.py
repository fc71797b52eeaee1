"""Ingest pipeline orchestration."""

from __future__ import annotations

import time
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Sequence

import orjson

from kontecst.content.store import ContentStore, assert_draft
from kontecst.core.audit import AuditSink, emit
from kontecst.core.config import Settings
from kontecst.core.errors import KontecstError, NotFoundError, ProviderError, ValidationError
from kontecst.core.logging import get_logger
from kontecst.core.metrics import EMBEDDING_CALLS, INDEX_SIZE, INGEST_DURATION, INGEST_FILES
from kontecst.db.sqlite import SQLiteDatabase, placeholders
from kontecst.ingest.chunker import Chunker, get_tokenizer
from kontecst.ingest.embeddings import Embedder
from kontecst.ingest.loaders import LoaderRegistry
from kontecst.ingest.types import IncomingFile, IngestOutcome, IngestReport, TextChunk
from kontecst.jobs.runner import InlineJobRunner, JobRunner
from kontecst.models.entities import FileRecord, IngestJob
from kontecst.retrieval.vector_index import VectorIndex, chunk_metadata
from kontecst.utils.hashing import sha256_bytes, sha256_text
from kontecst.utils.ids import new_id
from kontecst.utils.text import normalize_path
from kontecst.utils.time import now_ms

logger = get_logger(__name__)

_SQL_BATCH = 500


class IngestPipeline:
    """Coordinate chunking, embeddings, persistence and indexing for a version."""

    def __init__(
        self,
        database: SQLiteDatabase,
        settings: Settings,
        store: ContentStore,
        embedder: Embedder,
        vector_index: VectorIndex,
        runner: JobRunner | InlineJobRunner | None = None,
        audit: AuditSink | None = None,
        chunker: Chunker | None = None,
    ) -> None:
        self.db = database
        self.settings = settings
        self.store = store
        self.embedder = embedder
        self.vector_index = vector_index
        self.runner = runner
        self.audit = audit
        self.chunker = chunker or Chunker(get_tokenizer(settings.chunk_tokenizer))
        self.loader_registry = LoaderRegistry()
        self._embed_pool = ThreadPoolExecutor(
            max_workers=settings.embed_concurrency,
            thread_name_prefix="ktx-embed",
        )

    def close(self) -> None:
        self._embed_pool.shutdown(wait=True)

    # Public API --------------------------------------------------------

    def ingest(self, version_id: str, files: Sequence[IncomingFile], origin: str = "upload") -> IngestReport:
        """Ingest a batch of files into a draft version.

        Raises ``InvalidStateError`` when the version is not a draft and
        ``QuotaExceededError`` when the batch would exceed the package size
        limit; both before any file is touched. Every other per-file problem
        is recorded in the returned report.
        """
        started = time.perf_counter()
        with self.db.transaction() as cur:
            assert_draft(cur, version_id)

        report = IngestReport(version_id=version_id)
        pending = self._admit(version_id, files, report)
        if pending:
            self.store.check_package_quota(version_id, {item.path: item.size_bytes for item, _ in pending})

        for incoming, digest in pending:
            try:
                outcome = self._process_file(version_id, incoming, digest)
            except KontecstError as exc:
                outcome = IngestOutcome(path=incoming.path, status="failed", content_hash=digest, error=exc.code, detail=exc.message)
            except Exception as exc:
                logger.exception("Failed to ingest %s: %s", incoming.path, exc)
                outcome = IngestOutcome(path=incoming.path, status="failed", content_hash=digest, error="internal_error", detail=str(exc))
            report.add(outcome)

        for status, count in (("succeeded", len(report.succeeded)), ("failed", len(report.failed)), ("skipped", len(report.skipped))):
            if count:
                INGEST_FILES.labels(status=status).inc(count)
        INGEST_DURATION.labels(origin=origin).observe(time.perf_counter() - started)
        INDEX_SIZE.set(self.vector_index.size)
        logger.info(
            "Ingested version %s: %s",
            version_id,
            report.stats,
            extra={"ctx_version_id": version_id, "ctx_origin": origin},
        )
        emit(self.audit, "ingest.completed", version_id=version_id, origin=origin, **report.stats)
        return report

    def submit(self, version_id: str, files: Sequence[IncomingFile]) -> str:
        """Queue an ingest run on the job runner and return its job id."""
        if self.runner is None:
            raise RuntimeError("IngestPipeline was created without a job runner")
        with self.db.transaction() as cur:
            assert_draft(cur, version_id)
            job_id = new_id("ingest")
            cur.execute(
                "INSERT INTO ingest_jobs (id, version_id, status, created_at) VALUES (?, ?, 'queued', ?)",
                [job_id, version_id, now_ms()],
            )
        self.runner.submit(job_id, self._run_job, job_id, version_id, list(files))
        return job_id

    def get_job(self, job_id: str) -> IngestJob:
        row = self.db.query_one("SELECT * FROM ingest_jobs WHERE id = ?", [job_id])
        if row is None:
            raise NotFoundError(f"Ingest job {job_id} not found")
        return IngestJob.from_row(row)

    def ingest_paths(self, version_id: str, paths: Sequence[Path], root: Path | None = None) -> IngestReport:
        """Load local files (directories are walked) and ingest them."""
        incoming: list[IncomingFile] = []
        failures: list[IngestOutcome] = []
        for path in paths:
            base = path.expanduser().resolve()
            walk_root = root.expanduser().resolve() if root else (base if base.is_dir() else None)
            for file_path in self.loader_registry.iter_files(base):
                try:
                    incoming.append(self.loader_registry.load(file_path, walk_root))
                except ValidationError as exc:
                    failures.append(IngestOutcome(path=file_path.name, status="failed", error=exc.code, detail=exc.message))
        report = self.ingest(version_id, incoming, origin="paths")
        for outcome in failures:
            report.add(outcome)
        return report

    def remove_file(self, version_id: str, path: str) -> bool:
        """Delete a file from a draft version together with its index entries."""
        normalized = normalize_path(path)
        with self.db.transaction() as cur:
            assert_draft(cur, version_id)
            file_id = self.store.delete(cur, version_id, normalized)
        if file_id is None:
            return False
        self.vector_index.remove_file(version_id, file_id)
        INDEX_SIZE.set(self.vector_index.size)
        return True

    # Internal helpers -------------------------------------------------

    def _admit(
        self,
        version_id: str,
        files: Sequence[IncomingFile],
        report: IngestReport,
    ) -> list[tuple[IncomingFile, str]]:
        """Validate, size-check and dedupe a batch before any pipeline work."""
        by_path: dict[str, IncomingFile] = {}
        for incoming in files:
            try:
                normalized = normalize_path(incoming.path)
            except ValidationError as exc:
                report.add(IngestOutcome(path=incoming.path, status="failed", error=exc.code, detail=exc.message))
                continue
            if normalized in by_path:
                report.add(IngestOutcome(path=normalized, status="skipped", detail="superseded by a later file with the same path"))
            by_path[normalized] = IncomingFile(path=normalized, content=incoming.content, mime_type=incoming.mime_type)

        existing = self.store.fingerprints(version_id)
        pending: list[tuple[IncomingFile, str]] = []
        for path, incoming in by_path.items():
            try:
                self.store.check_file_size(path, incoming.size_bytes)
            except ValidationError as exc:
                report.add(IngestOutcome(path=path, status="failed", error=exc.code, detail=exc.message))
                continue
            digest = sha256_bytes(incoming.content)
            if existing.get(path) == (digest, "indexed"):
                report.add(IngestOutcome(path=path, status="skipped", content_hash=digest, detail="unchanged"))
                continue
            pending.append((incoming, digest))
        return pending

    def _process_file(self, version_id: str, incoming: IncomingFile, digest: str) -> IngestOutcome:
        try:
            text = incoming.content.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise ValidationError(f"{incoming.path} is not valid UTF-8 text") from exc

        chunks = self.chunker.chunk(text, self.settings.chunk_max_tokens, self.settings.chunk_overlap_tokens)
        hashes = [sha256_text(chunk.text) for chunk in chunks]
        vectors, cache_hits, errors = self._embed_chunks(chunks, hashes)
        failed_ordinals = [chunk.ordinal for chunk in chunks if vectors[chunk.ordinal] is None]

        with self.db.transaction() as cur:
            assert_draft(cur, version_id)
            record = self.store.write(
                cur,
                version_id,
                incoming.path,
                incoming.content,
                mime_type=incoming.mime_type,
                content_hash=digest,
                index_status="partial" if failed_ordinals else "indexed",
            )
            chunk_ids = self._write_chunks(cur, record, chunks, hashes, vectors)

        self._index(record, chunks, chunk_ids, vectors)
        outcome = IngestOutcome(
            path=incoming.path,
            status="failed" if failed_ordinals else "succeeded",
            file_id=record.id,
            content_hash=digest,
            chunks=len(chunks),
            embedded=len(chunks) - len(failed_ordinals),
            cache_hits=cache_hits,
            failed_chunks=failed_ordinals,
        )
        if failed_ordinals:
            outcome.error = "provider_error"
            outcome.detail = errors[0] if errors else "embedding failed"
        return outcome

    def _embed_chunks(
        self,
        chunks: Sequence[TextChunk],
        hashes: Sequence[str],
    ) -> tuple[list[list[float] | None], int, list[str]]:
        """Resolve a vector per chunk, cache first, provider for the rest.

        Identical chunk texts are embedded once. Provider calls run on the
        bounded embedding pool; the result list keeps chunk order.
        """
        cached = self._cached_vectors(set(hashes))
        misses = {digest: chunk.text for chunk, digest in zip(chunks, hashes) if digest not in cached}
        futures = {
            digest: self._embed_pool.submit(self.embedder.embed, text, self.embedder.model)
            for digest, text in misses.items()
        }
        fresh: dict[str, list[float]] = {}
        errors: list[str] = []
        for digest, future in futures.items():
            try:
                fresh[digest] = future.result()
            except (ProviderError, ValidationError) as exc:
                logger.warning("Embedding failed for chunk %s: %s", digest[:12], exc.message)
                errors.append(exc.message)
        hits = sum(1 for digest in hashes if digest in cached)
        if hits:
            EMBEDDING_CALLS.labels(outcome="cache_hit").inc(hits)
        vectors = [cached.get(digest) or fresh.get(digest) for digest in hashes]
        return vectors, hits, errors

    def _cached_vectors(self, hashes: set[str]) -> dict[str, list[float]]:
        found: dict[str, list[float]] = {}
        ordered = sorted(hashes)
        for start in range(0, len(ordered), _SQL_BATCH):
            batch = ordered[start : start + _SQL_BATCH]
            rows = self.db.query(
                f"""
                SELECT content_hash, vector FROM embeddings
                WHERE model = ? AND dim = ? AND content_hash IN ({placeholders(batch)})
                """,
                [self.embedder.model, self.embedder.dim, *batch],
            )
            for row in rows:
                found.setdefault(row["content_hash"], Embedder.from_bytes(row["vector"]))
        return found

    def _write_chunks(
        self,
        cur,
        record: FileRecord,
        chunks: Sequence[TextChunk],
        hashes: Sequence[str],
        vectors: Sequence[list[float] | None],
    ) -> list[str]:
        now = now_ms()
        chunk_ids = [new_id("chk") for _ in chunks]
        cur.executemany(
            """
            INSERT INTO chunks (
              id, file_id, version_id, ordinal, start_token, end_token,
              start_char, end_char, text, token_count, content_hash, created_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            [
                (
                    chunk_id,
                    record.id,
                    record.version_id,
                    chunk.ordinal,
                    chunk.start_token,
                    chunk.end_token,
                    chunk.start_char,
                    chunk.end_char,
                    chunk.text,
                    chunk.token_count,
                    digest,
                    now,
                )
                for chunk_id, chunk, digest in zip(chunk_ids, chunks, hashes)
            ],
        )
        cur.executemany(
            """
            INSERT INTO embeddings (chunk_id, version_id, content_hash, model, dim, vector, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            [
                (chunk_id, record.version_id, digest, self.embedder.model, self.embedder.dim, Embedder.as_bytes(vector), now)
                for chunk_id, digest, vector in zip(chunk_ids, hashes, vectors)
                if vector is not None
            ],
        )
        return chunk_ids

    def _index(
        self,
        record: FileRecord,
        chunks: Sequence[TextChunk],
        chunk_ids: Sequence[str],
        vectors: Sequence[list[float] | None],
    ) -> None:
        self.vector_index.remove_file(record.version_id, record.id)
        for chunk, chunk_id, vector in zip(chunks, chunk_ids, vectors):
            if vector is None:
                continue
            self.vector_index.upsert(
                record.version_id,
                chunk_id,
                vector,
                chunk_metadata(record.id, record.path, chunk.ordinal, self.embedder.model),
            )

    def _run_job(self, job_id: str, version_id: str, files: list[IncomingFile]) -> IngestReport | None:
        with self.db.transaction() as cur:
            cur.execute("UPDATE ingest_jobs SET status = 'running', started_at = ? WHERE id = ?", [now_ms(), job_id])
        try:
            report = self.ingest(version_id, files, origin="job")
        except KontecstError as exc:
            self._finish_job(job_id, "failed", detail=exc.message)
            return None
        except Exception as exc:
            logger.exception("Ingest job %s failed: %s", job_id, exc)
            self._finish_job(job_id, "failed", detail=str(exc))
            raise
        self._finish_job(job_id, "succeeded", report=report)
        return report

    def _finish_job(self, job_id: str, status: str, report: IngestReport | None = None, detail: str | None = None) -> None:
        report_json = orjson.dumps(report.to_dict()).decode("utf-8") if report else None
        with self.db.transaction() as cur:
            cur.execute(
                "UPDATE ingest_jobs SET status = ?, report_json = ?, detail = ?, finished_at = ? WHERE id = ?",
                [status, report_json, detail, now_ms(), job_id],
            )


__all__ = ["IngestPipeline"]
