"""Tests for retrieval utilities."""

import pytest

from kontecst.retrieval.keyword import bm25_rank
from kontecst.retrieval.vector_index import VectorIndex, chunk_metadata


def _meta(path: str, ordinal: int, model: str = "m") -> dict:
    return chunk_metadata(f"file-{path}", path, ordinal, model)


def test_vector_index_ranks_by_cosine() -> None:
    index = VectorIndex(dim=3)
    index.upsert("v1", "a", [1.0, 0.0, 0.0], _meta("a.md", 0))
    index.upsert("v1", "b", [0.6, 0.8, 0.0], _meta("b.md", 0))
    index.upsert("v1", "c", [-1.0, 0.0, 0.0], _meta("c.md", 0))
    results = index.query("v1", [2.0, 0.0, 0.0], k=3)
    assert [hit.chunk_id for hit in results] == ["a", "b", "c"]
    assert results[0].score == pytest.approx(1.0)
    assert results[1].score == pytest.approx(0.6)
    assert results[2].score == 0.0


def test_ties_follow_chunk_order() -> None:
    index = VectorIndex(dim=2)
    index.upsert("v1", "z", [1.0, 0.0], _meta("b.md", 0))
    index.upsert("v1", "y", [1.0, 0.0], _meta("a.md", 1))
    index.upsert("v1", "x", [1.0, 0.0], _meta("a.md", 0))
    assert [hit.chunk_id for hit in index.query("v1", [1.0, 0.0], k=3)] == ["x", "y", "z"]


def test_k_is_clamped_to_population() -> None:
    index = VectorIndex(dim=2)
    index.upsert("v1", "a", [1.0, 0.0], _meta("a.md", 0))
    index.upsert("v1", "b", [0.0, 1.0], _meta("b.md", 0))
    assert len(index.query("v1", [1.0, 1.0], k=50)) == 2
    assert index.query("v1", [1.0, 1.0], k=0) == []


def test_filter_and_version_isolation() -> None:
    index = VectorIndex(dim=2)
    index.upsert("v1", "a", [1.0, 0.0], _meta("a.md", 0, model="old"))
    index.upsert("v1", "b", [1.0, 0.0], _meta("b.md", 0, model="new"))
    index.upsert("v2", "c", [1.0, 0.0], _meta("c.md", 0, model="new"))

    hits = index.query("v1", [1.0, 0.0], k=10, filter=lambda meta: meta["model"] == "new")
    assert [hit.chunk_id for hit in hits] == ["b"]
    both = index.query(["v1", "v2"], [1.0, 0.0], k=10)
    assert {hit.version_id for hit in both} == {"v1", "v2"}
    assert index.query("missing", [1.0, 0.0], k=10) == []


def test_remove_file_and_drop_version() -> None:
    index = VectorIndex(dim=2)
    index.upsert("v1", "a0", [1.0, 0.0], _meta("a.md", 0))
    index.upsert("v1", "a1", [0.0, 1.0], _meta("a.md", 1))
    index.upsert("v1", "b0", [1.0, 1.0], _meta("b.md", 0))
    assert index.remove_file("v1", "file-a.md") == 2
    assert index.version_size("v1") == 1
    index.drop_version("v1")
    assert index.size == 0


def test_dimension_is_enforced() -> None:
    index = VectorIndex(dim=3)
    with pytest.raises(ValueError):
        index.upsert("v1", "a", [1.0, 0.0], _meta("a.md", 0))
    with pytest.raises(ValueError):
        index.query("v1", [1.0], k=1)


def test_bm25_prefers_matching_documents() -> None:
    ranked = bm25_rank(
        "kubernetes rollout",
        [
            ("a", "Baking bread at home"),
            ("b", "Kubernetes rollout strategies and kubernetes probes"),
            ("c", "Gardening in the spring"),
        ],
    )
    assert ranked[0] == ("b", 1.0)
    assert all(0.0 <= score <= 1.0 for _, score in ranked)
    assert bm25_rank("anything", []) == []
