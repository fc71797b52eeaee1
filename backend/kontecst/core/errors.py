"""Error taxonomy shared by every service."""

from __future__ import annotations


class KontecstError(Exception):
    """Base class for expected, caller-facing failures."""

    code = "error"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict[str, object]:
        return {"error": self.code, "message": self.message}


class ValidationError(KontecstError):
    """Malformed input; rejected before any side effect."""

    code = "validation_error"


class QuotaExceededError(ValidationError):
    """A file or batch is larger than the configured ceilings allow."""

    code = "quota_exceeded"


class InvalidStateError(KontecstError):
    """Operation not permitted in the entity's current lifecycle state."""

    code = "invalid_state"


class ConflictError(KontecstError):
    """Concurrent or duplicate operation; carries the in-flight job when known."""

    code = "conflict"

    def __init__(self, message: str, job_id: str | None = None) -> None:
        super().__init__(message)
        self.job_id = job_id

    def to_dict(self) -> dict[str, object]:
        payload = super().to_dict()
        if self.job_id is not None:
            payload["job_id"] = self.job_id
        return payload


class ProviderError(KontecstError):
    """Failure talking to an embedding or remote repository provider."""

    code = "provider_error"

    def __init__(self, message: str, retryable: bool = True) -> None:
        super().__init__(message)
        self.retryable = retryable


class NotFoundError(KontecstError):
    code = "not_found"


__all__ = [
    "KontecstError",
    "ValidationError",
    "QuotaExceededError",
    "InvalidStateError",
    "ConflictError",
    "ProviderError",
    "NotFoundError",
]
