"""Audit event sinks.

Pipeline stages report completion through an :class:`AuditSink`. Delivery is
fire-and-forget: a sink that raises is logged and ignored so that audit
problems never fail the operation being audited.
"""

from __future__ import annotations

from typing import Any, Protocol

from kontecst.core.logging import get_logger

logger = get_logger(__name__)


class AuditSink(Protocol):
    def record(self, event: str, payload: dict[str, Any]) -> None:  # pragma: no cover - interface
        ...


class LoggingAuditSink:
    """Write audit events to the structured log."""

    def __init__(self, logger_name: str = "kontecst.audit") -> None:
        self._logger = get_logger(logger_name)

    def record(self, event: str, payload: dict[str, Any]) -> None:
        self._logger.info(event, extra={"ctx_event": event, "ctx_payload": payload})


class MemoryAuditSink:
    """Collect events in memory; handy for tests and local tooling."""

    def __init__(self) -> None:
        self.events: list[tuple[str, dict[str, Any]]] = []

    def record(self, event: str, payload: dict[str, Any]) -> None:
        self.events.append((event, dict(payload)))

    def names(self) -> list[str]:
        return [name for name, _ in self.events]


def emit(sink: AuditSink | None, event: str, **payload: Any) -> None:
    """Send an event to ``sink`` without letting sink failures propagate."""
    if sink is None:
        return
    try:
        sink.record(event, payload)
    except Exception:  # noqa: BLE001 - audit delivery must not fail the pipeline
        logger.warning("Audit sink failed for event %s", event, exc_info=True)


__all__ = ["AuditSink", "LoggingAuditSink", "MemoryAuditSink", "emit"]
