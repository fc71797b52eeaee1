"""Lexical ranking with BM25."""

from __future__ import annotations

import re
from typing import Sequence, Tuple

from rank_bm25 import BM25Okapi

_TOKEN_RE = re.compile(r"\w+")


def bm25_rank(query: str, documents: Sequence[Tuple[str, str]]) -> list[Tuple[str, float]]:
    """Rank ``(id, text)`` pairs against ``query``, best first.

    Scores are normalized into [0, 1] by the best score of the batch; ties
    keep the input order.
    """
    if not documents:
        return []
    corpus_tokens = [_tokenize(text) for _, text in documents]
    model = BM25Okapi(corpus_tokens)
    scores = [float(score) for score in model.get_scores(_tokenize(query))]
    best = max(scores)
    ranked = [
        (doc_id, score / best if best > 0 else 0.0)
        for (doc_id, _), score in zip(documents, scores)
    ]
    ranked.sort(key=lambda item: item[1], reverse=True)
    return ranked


def _tokenize(text: str) -> list[str]:
    return [token.lower() for token in _TOKEN_RE.findall(text)]


__all__ = ["bm25_rank"]
