"""Embedding providers and the retrying embedder wrapped around them."""

from __future__ import annotations

import hashlib
import math
import re
from array import array
from typing import Protocol, Sequence

import requests

from kontecst.core.config import Settings
from kontecst.core.errors import ProviderError, ValidationError
from kontecst.core.logging import get_logger
from kontecst.core.metrics import EMBEDDING_CALLS
from kontecst.core.retry import RetryPolicy, call_with_retry

logger = get_logger(__name__)

_TOKEN_RE = re.compile(r"\w+")


class EmbeddingProvider(Protocol):
    """Network (or local) source of embedding vectors."""

    name: str

    def embed(self, text: str, model: str, timeout: float) -> list[float]:  # pragma: no cover - interface
        ...


class HashedEmbeddingProvider:
    """Deterministic hashed bag-of-words vectors; no network required."""

    name = "hashed"

    def __init__(self, dim: int) -> None:
        self.dim = dim

    def embed(self, text: str, model: str, timeout: float) -> list[float]:
        vector = [0.0] * self.dim
        for token in _tokenize(text):
            vector[_hash_token(token, self.dim)] += 1.0
        _normalize(vector)
        return vector


class OpenAIEmbeddingProvider:
    """OpenAI-compatible ``/embeddings`` endpoint."""

    name = "openai"

    def __init__(self, api_key: str | None, api_base: str = "https://api.openai.com/v1", session: requests.Session | None = None) -> None:
        self.api_key = api_key
        self.api_base = api_base.rstrip("/")
        self.session = session or requests.Session()

    def embed(self, text: str, model: str, timeout: float) -> list[float]:
        if not self.api_key:
            raise ProviderError("Embedding API key is not configured", retryable=False)
        try:
            resp = self.session.post(
                f"{self.api_base}/embeddings",
                json={"model": model, "input": text},
                headers={"Authorization": f"Bearer {self.api_key}"},
                timeout=timeout,
            )
        except requests.Timeout as exc:
            raise ProviderError(f"Embedding request timed out after {timeout}s") from exc
        except requests.RequestException as exc:
            raise ProviderError(f"Embedding request failed: {exc}") from exc
        if resp.status_code == 429 or resp.status_code >= 500:
            raise ProviderError(f"Embedding provider returned {resp.status_code}")
        if not resp.ok:
            raise ProviderError(f"Embedding provider rejected request ({resp.status_code}): {resp.text[:200]}", retryable=False)
        try:
            return list(resp.json()["data"][0]["embedding"])
        except (ValueError, KeyError, IndexError, TypeError) as exc:
            raise ProviderError("Malformed embedding response", retryable=False) from exc


class Embedder:
    """Stable embedding contract over a provider.

    Validates the dimension of every vector and retries retryable provider
    failures with bounded exponential backoff.
    """

    def __init__(
        self,
        provider: EmbeddingProvider,
        model: str,
        dim: int,
        retry: RetryPolicy | None = None,
        timeout: float = 30.0,
    ) -> None:
        self.provider = provider
        self.model = model
        self.dim = dim
        self.retry = retry or RetryPolicy()
        self.timeout = timeout

    def embed(self, text: str, model: str | None = None) -> list[float]:
        model_id = model or self.model

        def _attempt() -> list[float]:
            vector = self.provider.embed(text, model_id, self.timeout)
            if len(vector) != self.dim:
                raise ValidationError(
                    f"Embedding dimension mismatch: expected {self.dim}, got {len(vector)}"
                )
            return [float(value) for value in vector]

        try:
            vector = call_with_retry(_attempt, self.retry, description=f"embedding via {self.provider.name}")
        except ProviderError:
            EMBEDDING_CALLS.labels(outcome="failed").inc()
            raise
        EMBEDDING_CALLS.labels(outcome="provider").inc()
        return vector

    @staticmethod
    def as_bytes(vector: Sequence[float]) -> bytes:
        return array("f", vector).tobytes()

    @staticmethod
    def from_bytes(payload: bytes) -> list[float]:
        floats = array("f")
        floats.frombytes(payload)
        return list(floats)


def build_embedder(settings: Settings) -> Embedder:
    """Create the deployment's embedder from settings."""
    provider: EmbeddingProvider
    if settings.embedding_provider == "hashed":
        provider = HashedEmbeddingProvider(settings.embedding_dim)
    elif settings.embedding_provider == "openai":
        provider = OpenAIEmbeddingProvider(settings.embedding_api_key, settings.embedding_api_base)
    else:
        raise ValidationError(f"Unknown embedding provider {settings.embedding_provider!r}")
    logger.info("Using %s embeddings (%s, dim=%s)", provider.name, settings.embedding_model, settings.embedding_dim)
    return Embedder(
        provider=provider,
        model=settings.embedding_model,
        dim=settings.embedding_dim,
        retry=RetryPolicy(
            attempts=settings.retry_attempts,
            base_delay=settings.retry_base_delay,
            max_delay=settings.retry_max_delay,
        ),
        timeout=settings.provider_timeout,
    )


def _tokenize(text: str) -> list[str]:
    return _TOKEN_RE.findall(text.lower())


def _hash_token(token: str, dim: int) -> int:
    digest = hashlib.blake2b(token.encode("utf-8"), digest_size=8).digest()
    value = int.from_bytes(digest, "big")
    return value % dim


def _normalize(vector: list[float]) -> None:
    norm = math.sqrt(sum(value * value for value in vector))
    if norm == 0:
        return
    inv = 1.0 / norm
    for idx, value in enumerate(vector):
        vector[idx] = value * inv


__all__ = [
    "Embedder",
    "EmbeddingProvider",
    "HashedEmbeddingProvider",
    "OpenAIEmbeddingProvider",
    "build_embedder",
]
