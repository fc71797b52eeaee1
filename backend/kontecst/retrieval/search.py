"""Search orchestration."""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Any, Sequence

from kontecst.core.config import Settings
from kontecst.core.errors import ValidationError
from kontecst.core.metrics import SEARCH_LATENCY
from kontecst.db.sqlite import SQLiteDatabase, placeholders
from kontecst.ingest.embeddings import Embedder
from kontecst.models.entities import SearchResult
from kontecst.retrieval.keyword import bm25_rank
from kontecst.retrieval.vector_index import SearchHit, VectorIndex


@dataclass(slots=True)
class SearchScope:
    """Optional narrowing of the versions a search may touch."""

    package_id: str | None = None
    version_ids: list[str] | None = None


class SearchService:
    """Resolves visible versions, then ranks their chunks for a query.

    Visibility is decided here, never in the index: a caller sees every
    version of their own packages, and other owners' versions only when the
    version is published and the package is public and not archived.
    """

    def __init__(
        self,
        db: SQLiteDatabase,
        settings: Settings,
        vector_index: VectorIndex,
        embedder: Embedder,
    ) -> None:
        self.db = db
        self.settings = settings
        self.vector_index = vector_index
        self.embedder = embedder

    def search(
        self,
        query: str,
        user_id: str | None = None,
        scope: SearchScope | None = None,
        limit: int | None = None,
        min_score: float = 0.0,
    ) -> list[SearchResult]:
        started = time.perf_counter()
        text = self._check_query(query)
        top_k = self._limit(limit)
        version_ids = self.visible_versions(user_id, scope)
        if not version_ids:
            return []
        vector = self.embedder.embed(text)
        model = self.embedder.model
        hits = self.vector_index.query(
            version_ids,
            vector,
            k=top_k,
            filter=lambda metadata: metadata.get("model") == model,
        )
        hits = [hit for hit in hits if hit.score >= min_score]
        results = self._hydrate(hits)
        SEARCH_LATENCY.labels(mode="semantic").observe(time.perf_counter() - started)
        return results

    def keyword_search(
        self,
        query: str,
        user_id: str | None = None,
        scope: SearchScope | None = None,
        limit: int | None = None,
    ) -> list[SearchResult]:
        """Rank visible chunks lexically with BM25."""
        started = time.perf_counter()
        text = self._check_query(query)
        top_k = self._limit(limit)
        version_ids = self.visible_versions(user_id, scope)
        if not version_ids:
            return []
        rows = self.db.query(
            f"""
            SELECT c.id, c.version_id, c.text, f.path, c.ordinal
            FROM chunks c JOIN files f ON f.id = c.file_id
            WHERE c.version_id IN ({placeholders(version_ids)})
            ORDER BY c.version_id, f.path, c.ordinal
            """,
            version_ids,
        )
        ranked = bm25_rank(text, [(row["id"], row["text"]) for row in rows])
        meta = {row["id"]: row for row in rows}
        hits = [
            SearchHit(
                chunk_id=chunk_id,
                version_id=meta[chunk_id]["version_id"],
                score=score,
                metadata={"path": meta[chunk_id]["path"], "ordinal": meta[chunk_id]["ordinal"]},
            )
            for chunk_id, score in ranked
            if score > 0
        ]
        results = self._hydrate(hits[:top_k])
        SEARCH_LATENCY.labels(mode="keyword").observe(time.perf_counter() - started)
        return results

    def visible_versions(self, user_id: str | None, scope: SearchScope | None = None) -> list[str]:
        clauses = [
            "(p.owner_id = ? OR (v.state = 'published' AND p.visibility = 'public' AND p.is_archived = 0))"
        ]
        params: list[Any] = [user_id or ""]
        if scope and scope.package_id:
            clauses.append("p.id = ?")
            params.append(scope.package_id)
        if scope and scope.version_ids:
            clauses.append(f"v.id IN ({placeholders(scope.version_ids)})")
            params.extend(scope.version_ids)
        rows = self.db.query(
            f"""
            SELECT v.id FROM package_versions v JOIN packages p ON p.id = v.package_id
            WHERE {' AND '.join(clauses)}
            ORDER BY v.id
            """,
            params,
        )
        return [row["id"] for row in rows]

    # ------------------------------------------------------------------

    def _check_query(self, query: str) -> str:
        text = (query or "").strip()
        if not text:
            raise ValidationError("Query must not be empty")
        return text

    def _limit(self, limit: int | None) -> int:
        if limit is None:
            return self.settings.search_default_limit
        if limit < 1:
            raise ValidationError("Limit must be at least 1")
        return min(limit, self.settings.search_max_limit)

    def _hydrate(self, hits: Sequence[SearchHit]) -> list[SearchResult]:
        if not hits:
            return []
        ids = [hit.chunk_id for hit in hits]
        rows = self.db.query(
            f"""
            SELECT
              c.id AS chunk_id, c.text, c.file_id, c.ordinal, c.start_char, c.end_char,
              f.path, f.filename, f.mime_type,
              v.version, v.package_id,
              p.name AS package_name, p.slug AS package_slug
            FROM chunks c
            JOIN files f ON f.id = c.file_id
            JOIN package_versions v ON v.id = c.version_id
            JOIN packages p ON p.id = v.package_id
            WHERE c.id IN ({placeholders(ids)})
            """,
            ids,
        )
        row_map = {row["chunk_id"]: row for row in rows}
        results: list[SearchResult] = []
        for hit in hits:
            row = row_map.get(hit.chunk_id)
            if row is None:
                continue
            results.append(
                SearchResult(
                    chunk_id=hit.chunk_id,
                    version_id=hit.version_id,
                    file_id=row["file_id"],
                    text=row["text"],
                    score=hit.score,
                    file={
                        "path": row["path"],
                        "filename": row["filename"],
                        "mime_type": row["mime_type"],
                        "ordinal": row["ordinal"],
                        "start_char": row["start_char"],
                        "end_char": row["end_char"],
                    },
                    package={
                        "id": row["package_id"],
                        "name": row["package_name"],
                        "slug": row["package_slug"],
                        "version": row["version"],
                    },
                )
            )
        return results


__all__ = ["SearchService", "SearchScope"]
