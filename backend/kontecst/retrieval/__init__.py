"""Retrieval components."""

from .keyword import bm25_rank
from .search import SearchScope, SearchService
from .vector_index import SearchHit, VectorIndex

__all__ = [
    "VectorIndex",
    "SearchHit",
    "SearchService",
    "SearchScope",
    "bm25_rank",
]
