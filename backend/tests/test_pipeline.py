"""Ingestion orchestrator tests."""

from __future__ import annotations

import threading
from pathlib import Path

import pytest

from conftest import CountingProvider, words
from kontecst.content.store import ContentStore
from kontecst.core.errors import InvalidStateError, QuotaExceededError
from kontecst.ingest.pipeline import IngestPipeline
from kontecst.ingest.types import IncomingFile


def _file(path: str, text: str) -> IncomingFile:
    return IncomingFile(path=path, content=text.encode("utf-8"))


def _count(db, table: str, version_id: str) -> int:
    return db.query_one(f"SELECT COUNT(*) AS n FROM {table} WHERE version_id = ?", [version_id])["n"]


def test_large_file_is_chunked_embedded_and_counted(pipeline, lifecycle, draft, db, vector_index) -> None:
    report = pipeline.ingest(draft.id, [_file("guide.md", words(1898))])

    assert [item.path for item in report.succeeded] == ["guide.md"]
    assert report.succeeded[0].chunks == 4
    assert _count(db, "chunks", draft.id) == 4
    assert _count(db, "embeddings", draft.id) == 4
    assert vector_index.version_size(draft.id) == 4

    locked = lifecycle.lock(draft.id, "alice")
    assert locked.file_count == 1
    assert locked.total_size_bytes == len(words(1898).encode("utf-8"))


def test_2000_token_file_yields_five_overlapping_chunks(pipeline, lifecycle, draft, db) -> None:
    report = pipeline.ingest(draft.id, [_file("guide.md", words(2000))])

    assert report.succeeded[0].chunks == 5
    assert _count(db, "chunks", draft.id) == 5
    assert _count(db, "embeddings", draft.id) == 5
    rows = db.query("SELECT text FROM chunks WHERE version_id = ? ORDER BY ordinal", [draft.id])
    tokens = [row["text"].split() for row in rows]
    assert [len(chunk) for chunk in tokens] == [512, 512, 512, 512, 152]
    for previous, current in zip(tokens, tokens[1:]):
        assert previous[-50:] == current[:50]
    assert tokens[-1][-1] == "w1999"

    assert lifecycle.lock(draft.id, "alice").file_count == 1


class RendezvousProvider(CountingProvider):
    """Holds each embedding call until ``parties`` calls are in flight."""

    def __init__(self, parties: int) -> None:
        super().__init__()
        self.barrier = threading.Barrier(parties, timeout=5)

    def embed(self, text: str, model: str, timeout: float) -> list[float]:
        self.barrier.wait()
        return super().embed(text, model, timeout)


def test_concurrent_batches_cannot_overrun_the_package_ceiling(db, settings, embedder, vector_index, draft) -> None:
    store = ContentStore(db, max_file_size_bytes=5000, max_package_size_bytes=3000)
    pipeline = IngestPipeline(db, settings, store, embedder, vector_index)
    embedder.provider = RendezvousProvider(parties=2)
    reports = []

    def upload(path: str, letter: str) -> None:
        reports.append(pipeline.ingest(draft.id, [_file(path, letter * 2000)]))

    threads = [threading.Thread(target=upload, args=args) for args in (("a.md", "a"), ("b.md", "b"))]
    try:
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()
    finally:
        pipeline.close()

    outcomes = sorted((item.status, item.error) for report in reports for item in report.succeeded + report.failed)
    assert outcomes == [("failed", "quota_exceeded"), ("succeeded", None)]
    assert store.totals(draft.id) == (1, 2000)
    assert _count(db, "chunks", draft.id) == 1
    assert vector_index.version_size(draft.id) == 1


def test_reingest_of_identical_content_is_a_noop(pipeline, draft, db, provider) -> None:
    files = [_file("a.md", "alpha beta gamma"), _file("b.md", "delta epsilon")]
    pipeline.ingest(draft.id, files)
    chunk_ids = {row["id"] for row in db.query("SELECT id FROM chunks WHERE version_id = ?", [draft.id])}
    calls = provider.calls

    report = pipeline.ingest(draft.id, files)

    assert report.stats["skipped"] == 2
    assert report.stats["succeeded"] == 0
    assert provider.calls == calls
    assert {row["id"] for row in db.query("SELECT id FROM chunks WHERE version_id = ?", [draft.id])} == chunk_ids


def test_changed_content_replaces_chunks(pipeline, draft, db, vector_index) -> None:
    pipeline.ingest(draft.id, [_file("a.md", words(600))])
    assert _count(db, "chunks", draft.id) == 2

    report = pipeline.ingest(draft.id, [_file("a.md", "short now")])

    assert report.stats["succeeded"] == 1
    assert _count(db, "chunks", draft.id) == 1
    assert _count(db, "embeddings", draft.id) == 1
    assert vector_index.version_size(draft.id) == 1


def test_identical_chunks_hit_the_embedding_cache(pipeline, draft, provider) -> None:
    pipeline.ingest(draft.id, [_file("one.md", "shared paragraph about caching")])
    calls = provider.calls

    report = pipeline.ingest(draft.id, [_file("two.md", "shared paragraph about caching")])

    assert provider.calls == calls
    assert report.succeeded[0].cache_hits == 1


def test_partial_embedding_failure_is_reported_and_retried(pipeline, draft, db, embedder, vector_index) -> None:
    embedder.provider = CountingProvider(fail_marker="BROKEN")
    text = words(10) + " BROKEN"
    report = pipeline.ingest(
        draft.id,
        [_file("bad.md", text), _file("good.md", "perfectly fine text")],
        origin="test",
    )

    assert [item.path for item in report.succeeded] == ["good.md"]
    assert [item.path for item in report.failed] == ["bad.md"]
    failed = report.failed[0]
    assert failed.error == "provider_error"
    assert failed.failed_chunks == [0]
    row = db.query_one("SELECT index_status FROM files WHERE version_id = ? AND path = 'bad.md'", [draft.id])
    assert row["index_status"] == "partial"

    embedder.provider = CountingProvider()
    retry = pipeline.ingest(draft.id, [_file("bad.md", text)])

    assert [item.path for item in retry.succeeded] == ["bad.md"]
    row = db.query_one("SELECT index_status FROM files WHERE version_id = ? AND path = 'bad.md'", [draft.id])
    assert row["index_status"] == "indexed"
    assert vector_index.version_size(draft.id) == 2


def test_oversized_file_fails_without_blocking_siblings(db, settings, embedder, vector_index, draft) -> None:
    store = ContentStore(db, max_file_size_bytes=20, max_package_size_bytes=1000)
    pipeline = IngestPipeline(db, settings, store, embedder, vector_index)
    try:
        report = pipeline.ingest(draft.id, [_file("big.md", "x" * 21), _file("small.md", "tiny")])
    finally:
        pipeline.close()

    assert [item.path for item in report.succeeded] == ["small.md"]
    assert report.failed[0].path == "big.md"
    assert report.failed[0].error == "quota_exceeded"


def test_package_quota_rejects_the_whole_batch(db, settings, embedder, vector_index, draft) -> None:
    store = ContentStore(db, max_file_size_bytes=100, max_package_size_bytes=150)
    pipeline = IngestPipeline(db, settings, store, embedder, vector_index)
    try:
        pipeline.ingest(draft.id, [_file("a.md", "a" * 100)])
        with pytest.raises(QuotaExceededError):
            pipeline.ingest(draft.id, [_file("b.md", "b" * 30), _file("c.md", "c" * 30)])
        # Replacing a file only counts the size difference.
        report = pipeline.ingest(draft.id, [_file("a.md", "z" * 90), _file("b.md", "b" * 50)])
    finally:
        pipeline.close()

    assert _count(db, "files", draft.id) == 2
    assert report.stats["succeeded"] == 2


def test_ingest_into_locked_version_has_no_side_effects(pipeline, lifecycle, draft, db) -> None:
    lifecycle.lock(draft.id)
    with pytest.raises(InvalidStateError):
        pipeline.ingest(draft.id, [_file("late.md", "too late")])
    assert _count(db, "files", draft.id) == 0


def test_bad_paths_and_encodings_are_per_file_failures(pipeline, draft) -> None:
    report = pipeline.ingest(
        draft.id,
        [
            _file("../escape.md", "nope"),
            IncomingFile(path="latin1.md", content="caf\xe9".encode("latin-1")),
            _file("./docs\\ok.md", "fine"),
        ],
    )
    assert [item.path for item in report.succeeded] == ["docs/ok.md"]
    errors = {item.path: item.error for item in report.failed}
    assert errors == {"../escape.md": "validation_error", "latin1.md": "validation_error"}


def test_duplicate_paths_in_a_batch_keep_the_last(pipeline, draft, store) -> None:
    report = pipeline.ingest(draft.id, [_file("a.md", "first"), _file("/a.md", "second")])
    assert report.stats == {"succeeded": 1, "failed": 0, "skipped": 1, "chunks": 1}
    assert store.get(draft.id, "a.md").text() == "second"


def test_empty_file_is_stored_without_chunks(pipeline, draft, store) -> None:
    report = pipeline.ingest(draft.id, [_file("empty.md", "   ")])
    assert report.succeeded[0].chunks == 0
    assert store.get(draft.id, "empty.md") is not None


def test_remove_file_cleans_index_and_counters(pipeline, lifecycle, draft, vector_index) -> None:
    pipeline.ingest(draft.id, [_file("a.md", "alpha"), _file("b.md", "beta")])
    assert pipeline.remove_file(draft.id, "a.md") is True
    assert pipeline.remove_file(draft.id, "a.md") is False
    assert vector_index.version_size(draft.id) == 1
    version = lifecycle.get_version(draft.id)
    assert version.file_count == 1


def test_submitted_job_records_its_report(pipeline, draft) -> None:
    job_id = pipeline.submit(draft.id, [_file("a.md", "queued content")])
    job = pipeline.get_job(job_id)
    assert job.status == "succeeded"
    assert job.report["stats"]["succeeded"] == 1
    assert job.finished_at is not None


def test_submit_rejects_locked_versions(pipeline, lifecycle, draft) -> None:
    lifecycle.lock(draft.id)
    with pytest.raises(InvalidStateError):
        pipeline.submit(draft.id, [_file("a.md", "x")])


def test_ingest_paths_walks_directories(pipeline, draft, tmp_path: Path) -> None:
    root = tmp_path / "docs"
    (root / "guides").mkdir(parents=True)
    (root / ".git").mkdir()
    (root / "README.md").write_text("# Readme")
    (root / "guides" / "setup.md").write_text("Setup steps")
    (root / "notes.txt").write_text("plain notes")
    (root / "image.png").write_bytes(b"\x89PNG")
    (root / ".git" / "HEAD.md").write_text("ignored")

    report = pipeline.ingest_paths(draft.id, [root])

    assert sorted(item.path for item in report.succeeded) == ["README.md", "guides/setup.md", "notes.txt"]


def test_audit_event_per_run(pipeline, draft, audit) -> None:
    pipeline.ingest(draft.id, [_file("a.md", "alpha")], origin="upload")
    event, payload = audit.events[-1]
    assert event == "ingest.completed"
    assert payload["version_id"] == draft.id
    assert payload["succeeded"] == 1
