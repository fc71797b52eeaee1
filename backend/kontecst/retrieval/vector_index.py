"""Vector index abstraction."""

from __future__ import annotations

import math
import threading
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable, Sequence

from kontecst.db.sqlite import SQLiteDatabase
from kontecst.ingest.embeddings import Embedder

MetadataFilter = Callable[[dict[str, Any]], bool]

_LOAD_SQL = """
    SELECT e.chunk_id, e.version_id, e.model, e.vector, e.dim,
           c.file_id, c.ordinal, f.path
    FROM embeddings e
    JOIN chunks c ON c.id = e.chunk_id
    JOIN files f ON f.id = c.file_id
"""


@dataclass(slots=True)
class SearchHit:
    chunk_id: str
    version_id: str
    score: float
    metadata: dict[str, Any]


@dataclass(slots=True)
class _Entry:
    vector: list[float]
    metadata: dict[str, Any]


@dataclass
class _Shard:
    """Entries for one version, guarded by their own lock."""

    entries: dict[str, _Entry] = field(default_factory=dict)
    lock: threading.Lock = field(default_factory=threading.Lock)


class VectorIndex:
    """In-memory cosine-similarity index sharded by package version.

    The index knows nothing about visibility; callers narrow the version set
    and pass an optional metadata predicate. Metadata is expected to carry
    ``path`` and ``ordinal`` which break score ties in chunk order.
    """

    def __init__(self, dim: int) -> None:
        self.dim = dim
        self._shards: dict[str, _Shard] = {}
        self._shards_lock = threading.Lock()

    @property
    def size(self) -> int:
        with self._shards_lock:
            shards = list(self._shards.values())
        return sum(len(shard.entries) for shard in shards)

    def version_size(self, version_id: str) -> int:
        shard = self._shard(version_id, create=False)
        return len(shard.entries) if shard else 0

    def upsert(self, version_id: str, chunk_id: str, vector: Sequence[float], metadata: dict[str, Any] | None = None) -> None:
        if len(vector) != self.dim:
            raise ValueError("Vector dimension mismatch")
        entry = _Entry(vector=_unit(vector), metadata=dict(metadata or {}))
        shard = self._shard(version_id, create=True)
        with shard.lock:
            shard.entries[chunk_id] = entry

    def remove_file(self, version_id: str, file_id: str) -> int:
        shard = self._shard(version_id, create=False)
        if shard is None:
            return 0
        with shard.lock:
            doomed = [cid for cid, entry in shard.entries.items() if entry.metadata.get("file_id") == file_id]
            for chunk_id in doomed:
                del shard.entries[chunk_id]
        return len(doomed)

    def drop_version(self, version_id: str) -> None:
        with self._shards_lock:
            self._shards.pop(version_id, None)

    def query(
        self,
        version_ids: str | Sequence[str],
        vector: Sequence[float],
        k: int = 10,
        filter: MetadataFilter | None = None,
    ) -> list[SearchHit]:
        """Return up to ``k`` hits ranked by cosine similarity in [0, 1]."""
        if len(vector) != self.dim:
            raise ValueError("Query vector dimension mismatch")
        if isinstance(version_ids, str):
            version_ids = [version_ids]
        if k <= 0:
            return []
        query = _unit(vector)
        scored: list[SearchHit] = []
        for version_id in dict.fromkeys(version_ids):
            shard = self._shard(version_id, create=False)
            if shard is None:
                continue
            with shard.lock:
                snapshot = list(shard.entries.items())
            for chunk_id, entry in snapshot:
                if filter is not None and not filter(entry.metadata):
                    continue
                score = min(1.0, max(0.0, _dot(entry.vector, query)))
                scored.append(SearchHit(chunk_id=chunk_id, version_id=version_id, score=score, metadata=entry.metadata))
        scored.sort(key=_rank_key)
        return scored[: min(k, len(scored))]

    def rebuild(self, db: SQLiteDatabase) -> None:
        """Reload every persisted embedding into fresh shards."""
        rows = db.query(_LOAD_SQL, [])
        with self._shards_lock:
            self._shards = {}
        self._load_rows(rows)

    def load_version(self, db: SQLiteDatabase, version_id: str) -> None:
        """Replace one version's shard with its persisted embeddings."""
        rows = db.query(f"{_LOAD_SQL} WHERE e.version_id = ?", [version_id])
        self.drop_version(version_id)
        self._load_rows(rows)

    def _load_rows(self, rows: Iterable[Any]) -> None:
        for row in rows:
            if row["dim"] != self.dim:
                continue
            self.upsert(
                row["version_id"],
                row["chunk_id"],
                Embedder.from_bytes(row["vector"]),
                chunk_metadata(row["file_id"], row["path"], row["ordinal"], row["model"]),
            )

    def _shard(self, version_id: str, create: bool) -> _Shard | None:
        with self._shards_lock:
            shard = self._shards.get(version_id)
            if shard is None and create:
                shard = self._shards[version_id] = _Shard()
            return shard


def chunk_metadata(file_id: str, path: str, ordinal: int, model: str) -> dict[str, Any]:
    return {"file_id": file_id, "path": path, "ordinal": ordinal, "model": model}


def _rank_key(hit: SearchHit) -> tuple[float, str, str, int, str]:
    return (
        -hit.score,
        hit.version_id,
        str(hit.metadata.get("path", "")),
        int(hit.metadata.get("ordinal", 0)),
        hit.chunk_id,
    )


def _unit(vector: Sequence[float]) -> list[float]:
    norm = math.sqrt(sum(value * value for value in vector))
    if norm == 0:
        return [0.0 for _ in vector]
    return [value / norm for value in vector]


def _dot(a: Sequence[float], b: Sequence[float]) -> float:
    return sum(x * y for x, y in zip(a, b))


__all__ = ["VectorIndex", "SearchHit", "chunk_metadata"]
