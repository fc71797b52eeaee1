"""Bounded exponential backoff for provider calls."""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Callable, TypeVar

from kontecst.core.errors import ProviderError
from kontecst.core.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


@dataclass(slots=True)
class RetryPolicy:
    attempts: int = 4
    base_delay: float = 0.5
    max_delay: float = 8.0

    def delay_for(self, attempt: int) -> float:
        """Delay to wait after the given (1-based) failed attempt."""
        return min(self.base_delay * (2 ** (attempt - 1)), self.max_delay)


def call_with_retry(
    fn: Callable[[], T],
    policy: RetryPolicy,
    description: str = "provider call",
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """Run ``fn`` retrying retryable :class:`ProviderError` failures.

    Non-retryable provider errors and any other exception propagate at once.
    When the attempt budget is exhausted the last error is raised.
    """
    last_error: ProviderError | None = None
    for attempt in range(1, policy.attempts + 1):
        try:
            return fn()
        except ProviderError as exc:
            if not exc.retryable:
                raise
            last_error = exc
            if attempt == policy.attempts:
                break
            delay = policy.delay_for(attempt)
            logger.info(
                "%s failed (attempt %s/%s), retrying in %.2fs: %s",
                description,
                attempt,
                policy.attempts,
                delay,
                exc,
            )
            sleep(delay)
    assert last_error is not None
    raise ProviderError(
        f"{description} failed after {policy.attempts} attempts: {last_error.message}",
        retryable=False,
    ) from last_error


__all__ = ["RetryPolicy", "call_with_retry"]
