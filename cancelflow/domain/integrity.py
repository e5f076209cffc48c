from __future__ import annotations

from typing import Any

from cancelflow.domain.errors import (
    CaseAlreadyFinalizedError,
    ImmutableFieldViolationError,
    ValidationError,
)

REASON_OTHER = "other"
IMMUTABLE_CASE_FIELDS = frozenset({"id", "user_id", "subscription_id", "downsell_variant", "created_at"})


def validate_reason_other(reason: str | None, reason_other: str | None) -> None:
    if reason != REASON_OTHER:
        return
    if reason_other is None or not reason_other.strip():
        raise ValidationError("reason_other is required when reason is 'other'")


def ensure_unchanged(field: str, previous: Any, current: Any) -> None:
    if previous != current:
        raise ImmutableFieldViolationError(field)


def ensure_case_open(finalized: bool | None) -> None:
    if finalized:
        raise CaseAlreadyFinalizedError("cancellation case is finalized")
