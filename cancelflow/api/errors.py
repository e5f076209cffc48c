from __future__ import annotations

from typing import Any, NoReturn

from fastapi import HTTPException, status

from cancelflow.domain.errors import (
    CancellationError,
    CaseAlreadyFinalizedError,
    ConflictRetryableError,
    ImmutableFieldViolationError,
    InvalidTransitionError,
    NotFoundOrUnauthorizedError,
    ValidationError,
)

STATUS_BY_ERROR: tuple[tuple[type[CancellationError], int], ...] = (
    (NotFoundOrUnauthorizedError, status.HTTP_404_NOT_FOUND),
    (InvalidTransitionError, status.HTTP_409_CONFLICT),
    (CaseAlreadyFinalizedError, status.HTTP_409_CONFLICT),
    (ImmutableFieldViolationError, status.HTTP_409_CONFLICT),
    (ConflictRetryableError, status.HTTP_409_CONFLICT),
    (ValidationError, 422),
)


def handle_cancellation_error(exc: CancellationError) -> NoReturn:
    detail: dict[str, Any] = {"code": exc.code, "message": str(exc)}
    if isinstance(exc, ImmutableFieldViolationError):
        detail["field"] = exc.field
    for error_type, status_code in STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            raise HTTPException(status_code=status_code, detail=detail) from exc
    raise exc
