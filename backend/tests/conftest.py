"""Test fixtures for Kontecst."""

from __future__ import annotations

import sys
from pathlib import Path
from typing import Any, Callable

import pytest

BACKEND_ROOT = Path(__file__).resolve().parents[1]
if str(BACKEND_ROOT) not in sys.path:
    sys.path.insert(0, str(BACKEND_ROOT))

from kontecst.content.store import ContentStore  # noqa: E402
from kontecst.core.audit import MemoryAuditSink  # noqa: E402
from kontecst.core.config import Settings  # noqa: E402
from kontecst.core.retry import RetryPolicy  # noqa: E402
from kontecst.db.sqlite import SQLiteDatabase  # noqa: E402
from kontecst.ingest.embeddings import Embedder, HashedEmbeddingProvider  # noqa: E402
from kontecst.ingest.pipeline import IngestPipeline  # noqa: E402
from kontecst.jobs.runner import InlineJobRunner  # noqa: E402
from kontecst.retrieval.vector_index import VectorIndex  # noqa: E402
from kontecst.versions.lifecycle import VersionLifecycle  # noqa: E402

DIM = 64
MODEL = "test-embedding"


class ManualJobRunner:
    """Collects submitted jobs without running them until told to."""

    def __init__(self) -> None:
        self.pending: list[tuple[str, Callable[..., Any], tuple[Any, ...]]] = []

    def submit(self, job_id: str, fn: Callable[..., Any], *args: Any) -> None:
        self.pending.append((job_id, fn, args))

    def run_all(self) -> list[Any]:
        results = []
        while self.pending:
            _, fn, args = self.pending.pop(0)
            results.append(fn(*args))
        return results

    def wait(self, job_id: str, timeout: float | None = None) -> None:
        return None

    def shutdown(self, wait: bool = True) -> None:
        self.pending.clear()


class CountingProvider:
    """Hashed embeddings that count calls and can fail on marked text."""

    name = "counting"

    def __init__(self, dim: int = DIM, fail_marker: str | None = None) -> None:
        self.inner = HashedEmbeddingProvider(dim)
        self.calls = 0
        self.fail_marker = fail_marker

    def embed(self, text: str, model: str, timeout: float) -> list[float]:
        from kontecst.core.errors import ProviderError

        self.calls += 1
        if self.fail_marker and self.fail_marker in text:
            raise ProviderError("provider refused the chunk", retryable=False)
        return self.inner.embed(text, model, timeout)


@pytest.fixture(autouse=True)
def reset_state(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    """Reset global singletons and environment between tests."""
    monkeypatch.setenv("KTX_DB_PATH", str(tmp_path / "api.db"))
    monkeypatch.setenv("KTX_EMBEDDING_DIM", str(DIM))
    monkeypatch.setenv("KTX_RETRY_BASE_DELAY", "0")
    monkeypatch.setenv("KTX_RETRY_MAX_DELAY", "0")
    monkeypatch.delenv("KTX_CONFIG", raising=False)

    from kontecst.api import dependencies as deps

    deps.shutdown_services()
    yield
    deps.shutdown_services()


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    return Settings(
        db_path=tmp_path / "kontecst.db",
        embedding_model=MODEL,
        embedding_dim=DIM,
        embed_concurrency=2,
        retry_attempts=2,
        retry_base_delay=0,
        retry_max_delay=0,
    )


@pytest.fixture
def db(settings: Settings) -> SQLiteDatabase:
    database = SQLiteDatabase(settings.db_path)
    database.ensure_schema()
    yield database
    database.close()


@pytest.fixture
def store(db: SQLiteDatabase, settings: Settings) -> ContentStore:
    return ContentStore(db, settings.max_file_size_bytes, settings.max_package_size_bytes)


@pytest.fixture
def vector_index() -> VectorIndex:
    return VectorIndex(dim=DIM)


@pytest.fixture
def provider() -> CountingProvider:
    return CountingProvider()


@pytest.fixture
def embedder(provider: CountingProvider) -> Embedder:
    return Embedder(provider, model=MODEL, dim=DIM, retry=RetryPolicy(attempts=2, base_delay=0, max_delay=0))


@pytest.fixture
def audit() -> MemoryAuditSink:
    return MemoryAuditSink()


@pytest.fixture
def pipeline(
    db: SQLiteDatabase,
    settings: Settings,
    store: ContentStore,
    embedder: Embedder,
    vector_index: VectorIndex,
    audit: MemoryAuditSink,
) -> IngestPipeline:
    instance = IngestPipeline(
        database=db,
        settings=settings,
        store=store,
        embedder=embedder,
        vector_index=vector_index,
        runner=InlineJobRunner(),
        audit=audit,
    )
    yield instance
    instance.close()


@pytest.fixture
def lifecycle(db: SQLiteDatabase, store: ContentStore, vector_index: VectorIndex, audit: MemoryAuditSink) -> VersionLifecycle:
    return VersionLifecycle(db, store, vector_index, audit=audit)


@pytest.fixture
def package(lifecycle: VersionLifecycle):
    return lifecycle.create_package("Team Docs", owner_id="alice", visibility="public")


@pytest.fixture
def draft(lifecycle: VersionLifecycle, package):
    return lifecycle.create_version(package.id, "1.0.0")


def words(count: int, prefix: str = "w") -> str:
    """``count`` distinct whitespace-separated tokens."""
    return " ".join(f"{prefix}{idx}" for idx in range(count))
