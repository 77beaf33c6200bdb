"""Error taxonomy for the scoring and synchronization engine."""

from __future__ import annotations

from typing import Any, Dict, List, Optional


class CompetencyError(Exception):
    """Base class for every error raised by the engine."""


class NotFoundError(CompetencyError):
    """The subject has no record remotely, or has not been loaded yet."""

    def __init__(self, subject_id: str, message: Optional[str] = None) -> None:
        self.subject_id = subject_id
        super().__init__(message or f"Subject {subject_id!r} was not found.")


class DeliveryError(CompetencyError):
    """A remote call failed or timed out. Recovered through the retry path."""

    def __init__(self, subject_id: str, operation: str, cause: Optional[BaseException] = None) -> None:
        self.subject_id = subject_id
        self.operation = operation
        self.cause = cause
        detail = f": {cause}" if cause is not None else ""
        super().__init__(f"{operation} failed for subject {subject_id!r}{detail}")


class RetryExhaustedError(CompetencyError):
    """A pending update ran out of delivery attempts and was dropped."""

    def __init__(self, subject_id: str, update: Any, last_error: Optional[BaseException] = None) -> None:
        self.subject_id = subject_id
        self.update = update
        self.last_error = last_error
        attempts = getattr(update, "attempt", "?")
        super().__init__(
            f"Dropped {getattr(update, 'kind', 'update')} for subject {subject_id!r} after {attempts} attempts"
        )


class ValidationError(CompetencyError):
    """Caller input was rejected before it reached the cache."""

    def __init__(self, message: str, errors: Optional[List[Dict[str, Any]]] = None) -> None:
        self.errors = errors or []
        super().__init__(message)


__all__ = [
    "CompetencyError",
    "DeliveryError",
    "NotFoundError",
    "RetryExhaustedError",
    "ValidationError",
]
