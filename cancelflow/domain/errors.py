from __future__ import annotations


class CancellationError(Exception):
    code = "cancellation_error"


class NotFoundOrUnauthorizedError(CancellationError):
    """Row is absent or owned by another user; callers cannot tell which."""

    code = "not_found"


class InvalidTransitionError(CancellationError):
    code = "invalid_transition"


class ValidationError(CancellationError):
    code = "validation_error"


class ImmutableFieldViolationError(CancellationError):
    code = "immutable_field"

    def __init__(self, field: str, message: str | None = None) -> None:
        super().__init__(message or f"{field} cannot be changed")
        self.field = field


class CaseAlreadyFinalizedError(CancellationError):
    code = "case_finalized"


class ConflictRetryableError(CancellationError):
    code = "conflict_retryable"
