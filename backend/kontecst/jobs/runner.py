"""Detached execution of ingest and sync jobs.

Handlers persist a job row, submit its work here and return the job id at
once; callers poll the persisted row. Work that raises is logged, the job
functions themselves are responsible for recording failure on the row.
"""

from __future__ import annotations

import threading
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Any, Callable

from kontecst.core.logging import get_logger

logger = get_logger(__name__)


class JobRunner:
    """Bounded worker pool for long-running pipeline jobs."""

    def __init__(self, max_workers: int = 2) -> None:
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="ktx-job")
        self._futures: dict[str, Future[Any]] = {}
        self._lock = threading.Lock()

    def submit(self, job_id: str, fn: Callable[..., Any], *args: Any) -> Future[Any]:
        future = self._executor.submit(fn, *args)
        with self._lock:
            self._futures[job_id] = future
        future.add_done_callback(lambda done: self._finished(job_id, done))
        logger.debug("Submitted job %s", job_id)
        return future

    def wait(self, job_id: str, timeout: float | None = None) -> Any:
        """Block until a job submitted by this process completes."""
        with self._lock:
            future = self._futures.get(job_id)
        if future is None:
            return None
        return future.result(timeout=timeout)

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)

    def _finished(self, job_id: str, future: Future[Any]) -> None:
        exc = future.exception()
        if exc is not None:
            logger.error("Job %s crashed: %s", job_id, exc, exc_info=exc)


class InlineJobRunner:
    """Runs submitted work immediately in the calling thread."""

    def __init__(self) -> None:
        self._results: dict[str, Any] = {}

    def submit(self, job_id: str, fn: Callable[..., Any], *args: Any) -> None:
        self._results[job_id] = fn(*args)

    def wait(self, job_id: str, timeout: float | None = None) -> Any:
        return self._results.get(job_id)

    def shutdown(self, wait: bool = True) -> None:
        self._results.clear()


__all__ = ["JobRunner", "InlineJobRunner"]
