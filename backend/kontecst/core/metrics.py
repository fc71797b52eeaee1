"""Prometheus metrics instrumentation."""

from __future__ import annotations

from fastapi import Response
from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)

REGISTRY = CollectorRegistry()

INGEST_DURATION = Histogram(
    "ktx_ingest_duration_seconds",
    "Ingest run duration",
    labelnames=("origin",),
    registry=REGISTRY,
)

INGEST_FILES = Counter(
    "ktx_ingest_files_total",
    "Files handled by the ingest orchestrator",
    labelnames=("status",),
    registry=REGISTRY,
)

EMBEDDING_CALLS = Counter(
    "ktx_embedding_calls_total",
    "Embedding requests by outcome",
    labelnames=("outcome",),
    registry=REGISTRY,
)

SYNC_RUNS = Counter(
    "ktx_sync_runs_total",
    "Repository sync runs by final status",
    labelnames=("status",),
    registry=REGISTRY,
)

SEARCH_LATENCY = Histogram(
    "ktx_search_latency_seconds",
    "Latency of search requests",
    labelnames=("mode",),
    registry=REGISTRY,
)

INDEX_SIZE = Gauge(
    "ktx_index_chunks",
    "Number of chunks stored in the vector index",
    registry=REGISTRY,
)


def metrics_response() -> Response:
    """Return Prometheus metrics as an HTTP response."""
    payload = generate_latest(REGISTRY)
    return Response(content=payload, media_type=CONTENT_TYPE_LATEST)


__all__ = [
    "REGISTRY",
    "INGEST_DURATION",
    "INGEST_FILES",
    "EMBEDDING_CALLS",
    "SYNC_RUNS",
    "SEARCH_LATENCY",
    "INDEX_SIZE",
    "metrics_response",
]
