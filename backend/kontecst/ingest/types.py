"""Common ingestion data structures."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any


@dataclass(slots=True)
class IncomingFile:
    """A file handed to the orchestrator, from an upload, a loader or a sync."""

    path: str
    content: bytes
    mime_type: str | None = None

    @property
    def size_bytes(self) -> int:
        return len(self.content)


@dataclass(slots=True)
class TextChunk:
    """Chunk produced by the chunker prior to persistence."""

    ordinal: int
    start_token: int
    end_token: int
    start_char: int
    end_char: int
    text: str

    @property
    def token_count(self) -> int:
        return self.end_token - self.start_token


@dataclass(slots=True)
class IngestOutcome:
    """Outcome for a single file in a batch."""

    path: str
    status: str
    file_id: str | None = None
    content_hash: str | None = None
    chunks: int = 0
    embedded: int = 0
    cache_hits: int = 0
    error: str | None = None
    detail: str | None = None
    failed_chunks: list[int] = field(default_factory=list)


@dataclass(slots=True)
class IngestReport:
    """Aggregated result of one ingest run."""

    version_id: str
    succeeded: list[IngestOutcome] = field(default_factory=list)
    failed: list[IngestOutcome] = field(default_factory=list)
    skipped: list[IngestOutcome] = field(default_factory=list)

    def add(self, outcome: IngestOutcome) -> None:
        if outcome.status == "succeeded":
            self.succeeded.append(outcome)
        elif outcome.status == "skipped":
            self.skipped.append(outcome)
        else:
            self.failed.append(outcome)

    @property
    def stats(self) -> dict[str, int]:
        return {
            "succeeded": len(self.succeeded),
            "failed": len(self.failed),
            "skipped": len(self.skipped),
            "chunks": sum(item.chunks for item in self.succeeded + self.failed),
        }

    def to_dict(self) -> dict[str, Any]:
        return {
            "version_id": self.version_id,
            "stats": self.stats,
            "succeeded": [asdict(item) for item in self.succeeded],
            "failed": [asdict(item) for item in self.failed],
            "skipped": [asdict(item) for item in self.skipped],
        }


__all__ = ["IncomingFile", "TextChunk", "IngestOutcome", "IngestReport"]
