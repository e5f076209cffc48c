from __future__ import annotations

from datetime import UTC, datetime
from enum import StrEnum
from typing import Any
from uuid import uuid4

from pydantic import BaseModel, ConfigDict
from sqlalchemy import (
    JSON,
    CheckConstraint,
    Column,
    ForeignKeyConstraint,
    Index,
    UniqueConstraint,
    event,
    inspect,
    text,
)
from sqlalchemy import Enum as SAEnum
from sqlmodel import Field, SQLModel

from cancelflow.domain.integrity import (
    IMMUTABLE_CASE_FIELDS,
    ensure_case_open,
    ensure_unchanged,
    validate_reason_other,
)
from cancelflow.domain.state_machine import CaseState, SubscriptionStatus, case_state
from cancelflow.domain.variants import DownsellVariant


def now_utc() -> datetime:
    return datetime.now(UTC)


def _enum_column(enum_cls: type[StrEnum], name: str, *, nullable: bool) -> Column:  # type: ignore[type-arg]
    return Column(
        SAEnum(
            enum_cls,
            name=name,
            native_enum=False,
            create_constraint=True,
            validate_strings=True,
            values_callable=lambda members: [item.value for item in members],
        ),
        nullable=nullable,
    )


class CancellationReason(StrEnum):
    TOO_EXPENSIVE = "too_expensive"
    NOT_USING_ENOUGH = "not_using_enough"
    FOUND_ALTERNATIVE = "found_alternative"
    TECHNICAL_ISSUES = "technical_issues"
    TEMPORARY_BREAK = "temporary_break"
    OTHER = "other"


class AuditLog(SQLModel, table=True):
    __tablename__ = "audit_logs"

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    user_id: str | None = Field(default=None, index=True)
    action: str
    resource: str
    method: str
    status_code: int
    ts: datetime = Field(default_factory=now_utc, index=True)
    detail: dict[str, Any] = Field(
        default_factory=dict,
        sa_column=Column(JSON, nullable=False),
    )


class User(SQLModel, table=True):
    __tablename__ = "users"

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    email: str = Field(index=True, unique=True)
    created_at: datetime = Field(default_factory=now_utc)


class Subscription(SQLModel, table=True):
    __tablename__ = "subscriptions"
    __table_args__ = (
        UniqueConstraint("user_id", "id", name="uq_subscriptions_user_id_id"),
        CheckConstraint("monthly_price >= 0", name="ck_subscriptions_price_non_negative"),
    )

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    user_id: str = Field(foreign_key="users.id", ondelete="CASCADE", index=True)
    monthly_price: int
    status: SubscriptionStatus = Field(
        default=SubscriptionStatus.ACTIVE,
        sa_column=_enum_column(SubscriptionStatus, "ck_subscriptions_status", nullable=False),
    )
    created_at: datetime = Field(default_factory=now_utc)
    updated_at: datetime = Field(default_factory=now_utc)


class CancellationCase(SQLModel, table=True):
    __tablename__ = "cancellations"
    __table_args__ = (
        ForeignKeyConstraint(
            ["user_id", "subscription_id"],
            ["subscriptions.user_id", "subscriptions.id"],
            ondelete="CASCADE",
        ),
        CheckConstraint(
            "reason IS NULL OR reason <> 'other' OR (reason_other IS NOT NULL AND trim(reason_other) <> '')",
            name="ck_cancellations_reason_other",
        ),
        CheckConstraint(
            "(finalized = false AND decided_at IS NULL) OR (finalized = true AND decided_at IS NOT NULL)",
            name="ck_cancellations_decided_at",
        ),
        Index("ix_cancellations_user_created", "user_id", "created_at"),
        Index(
            "uq_cancellations_open_subscription",
            "subscription_id",
            unique=True,
            postgresql_where=text("finalized = false"),
            sqlite_where=text("finalized = 0"),
        ),
    )

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    user_id: str = Field(foreign_key="users.id", ondelete="CASCADE", index=True)
    subscription_id: str = Field(index=True)
    downsell_variant: DownsellVariant = Field(
        sa_column=_enum_column(DownsellVariant, "ck_cancellations_downsell_variant", nullable=False),
    )
    reason: CancellationReason | None = Field(
        default=None,
        sa_column=_enum_column(CancellationReason, "ck_cancellations_reason", nullable=True),
    )
    reason_other: str | None = None
    accepted_downsell: bool = Field(default=False)
    finalized: bool = Field(default=False)
    decided_at: datetime | None = None
    created_at: datetime = Field(default_factory=now_utc, index=True)

    @property
    def state(self) -> CaseState:
        return case_state(self.finalized)


def _previous_value(target: CancellationCase, field: str) -> Any:
    history = inspect(target).attrs[field].history
    if history.deleted:
        return history.deleted[0]
    if history.unchanged:
        return history.unchanged[0]
    return None


@event.listens_for(CancellationCase, "before_insert")
def _check_case_insert(_mapper: Any, _connection: Any, target: CancellationCase) -> None:
    validate_reason_other(target.reason, target.reason_other)


@event.listens_for(CancellationCase, "before_update")
def _check_case_update(_mapper: Any, _connection: Any, target: CancellationCase) -> None:
    changed = {attr.key for attr in inspect(target).attrs if attr.history.has_changes()}
    if not changed:
        return
    for field in sorted(changed & IMMUTABLE_CASE_FIELDS):
        previous = _previous_value(target, field)
        if previous is not None:
            ensure_unchanged(field, previous, getattr(target, field))
    ensure_case_open(_previous_value(target, "finalized"))
    validate_reason_other(target.reason, target.reason_other)


class ORMReadModel(BaseModel):
    model_config = ConfigDict(from_attributes=True)


class UserRead(ORMReadModel):
    id: str
    email: str
    created_at: datetime


class SubscriptionRead(ORMReadModel):
    id: str
    user_id: str
    monthly_price: int
    status: SubscriptionStatus
    created_at: datetime
    updated_at: datetime


class CancellationCaseRead(ORMReadModel):
    id: str
    user_id: str
    subscription_id: str
    downsell_variant: DownsellVariant
    reason: CancellationReason | None = None
    reason_other: str | None = None
    accepted_downsell: bool
    finalized: bool
    state: CaseState
    decided_at: datetime | None = None
    created_at: datetime


class CancellationDecision(BaseModel):
    model_config = ConfigDict(extra="forbid")

    reason: CancellationReason | None = None
    reason_other: str | None = None
    accepted_downsell: bool | None = None
    finalize: bool = False
    # Accepted only so that attempts to set it are rejected explicitly.
    downsell_variant: str | None = None
