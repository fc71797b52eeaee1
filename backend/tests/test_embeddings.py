"""Tests for embedding utilities."""

from __future__ import annotations

import math

import pytest
import requests

from kontecst.core.errors import ProviderError, ValidationError
from kontecst.core.retry import RetryPolicy, call_with_retry
from kontecst.ingest.embeddings import Embedder, HashedEmbeddingProvider, OpenAIEmbeddingProvider

NO_WAIT = RetryPolicy(attempts=3, base_delay=0, max_delay=0)


class ScriptedProvider:
    name = "scripted"

    def __init__(self, outcomes: list) -> None:
        self.outcomes = list(outcomes)
        self.calls = 0

    def embed(self, text: str, model: str, timeout: float) -> list[float]:
        self.calls += 1
        outcome = self.outcomes.pop(0) if len(self.outcomes) > 1 else self.outcomes[0]
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


class FakeResponse:
    def __init__(self, status_code: int, payload: object = None) -> None:
        self.status_code = status_code
        self.ok = status_code < 400
        self._payload = payload
        self.text = str(payload)

    def json(self) -> object:
        if self._payload is None:
            raise ValueError("no body")
        return self._payload


class FakeSession:
    def __init__(self, response: FakeResponse | Exception) -> None:
        self.response = response
        self.requests: list[dict] = []

    def post(self, url: str, **kwargs) -> FakeResponse:
        self.requests.append({"url": url, **kwargs})
        if isinstance(self.response, Exception):
            raise self.response
        return self.response


def test_hashed_provider_is_deterministic_unit_vector() -> None:
    provider = HashedEmbeddingProvider(dim=32)
    first = provider.embed("semantic search over docs", "m", 1.0)
    second = provider.embed("semantic search over docs", "m", 1.0)
    assert first == second
    assert len(first) == 32
    assert math.isclose(sum(value * value for value in first), 1.0, rel_tol=1e-9)


def test_dimension_mismatch_is_a_validation_error() -> None:
    provider = ScriptedProvider([[0.1, 0.2, 0.3]])
    embedder = Embedder(provider, model="m", dim=4, retry=NO_WAIT)
    with pytest.raises(ValidationError):
        embedder.embed("text")
    assert provider.calls == 1


def test_transient_failures_are_retried() -> None:
    provider = ScriptedProvider([ProviderError("timeout"), ProviderError("503"), [1.0, 0.0]])
    embedder = Embedder(provider, model="m", dim=2, retry=NO_WAIT)
    assert embedder.embed("text") == [1.0, 0.0]
    assert provider.calls == 3


def test_retry_budget_is_bounded() -> None:
    provider = ScriptedProvider([ProviderError("still down")])
    embedder = Embedder(provider, model="m", dim=2, retry=NO_WAIT)
    with pytest.raises(ProviderError) as excinfo:
        embedder.embed("text")
    assert provider.calls == 3
    assert excinfo.value.retryable is False
    assert "after 3 attempts" in excinfo.value.message


def test_non_retryable_error_fails_fast() -> None:
    provider = ScriptedProvider([ProviderError("bad key", retryable=False)])
    embedder = Embedder(provider, model="m", dim=2, retry=NO_WAIT)
    with pytest.raises(ProviderError):
        embedder.embed("text")
    assert provider.calls == 1


def test_backoff_delays_grow_and_cap() -> None:
    policy = RetryPolicy(attempts=6, base_delay=0.5, max_delay=4.0)
    assert [policy.delay_for(attempt) for attempt in range(1, 6)] == [0.5, 1.0, 2.0, 4.0, 4.0]

    sleeps: list[float] = []
    attempts = iter([ProviderError("a"), ProviderError("b"), "ok"])

    def flaky() -> str:
        outcome = next(attempts)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    assert call_with_retry(flaky, policy, sleep=sleeps.append) == "ok"
    assert sleeps == [0.5, 1.0]


def test_openai_provider_parses_embedding() -> None:
    session = FakeSession(FakeResponse(200, {"data": [{"embedding": [0.5, 0.5]}]}))
    provider = OpenAIEmbeddingProvider("sk-test", api_base="https://example.test/v1/", session=session)
    assert provider.embed("hello", "text-embedding-3-small", timeout=5) == [0.5, 0.5]
    sent = session.requests[0]
    assert sent["url"] == "https://example.test/v1/embeddings"
    assert sent["headers"]["Authorization"] == "Bearer sk-test"
    assert sent["timeout"] == 5


@pytest.mark.parametrize(
    "response,retryable",
    [
        (FakeResponse(429, {"error": "slow down"}), True),
        (FakeResponse(503, {"error": "unavailable"}), True),
        (FakeResponse(401, {"error": "bad key"}), False),
        (requests.Timeout("read timed out"), True),
        (requests.ConnectionError("refused"), True),
    ],
)
def test_openai_provider_classifies_failures(response, retryable: bool) -> None:
    provider = OpenAIEmbeddingProvider("sk-test", session=FakeSession(response))
    with pytest.raises(ProviderError) as excinfo:
        provider.embed("hello", "m", timeout=1)
    assert excinfo.value.retryable is retryable


def test_openai_provider_requires_key() -> None:
    provider = OpenAIEmbeddingProvider(None, session=FakeSession(FakeResponse(200, {})))
    with pytest.raises(ProviderError) as excinfo:
        provider.embed("hello", "m", timeout=1)
    assert excinfo.value.retryable is False


def test_vector_bytes_round_trip_as_float32() -> None:
    payload = Embedder.as_bytes([0.25, -1.5, 3.0])
    assert len(payload) == 12
    assert Embedder.from_bytes(payload) == [0.25, -1.5, 3.0]
