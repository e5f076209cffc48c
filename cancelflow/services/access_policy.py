from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import StrEnum
from typing import Any, TypeVar

from sqlmodel import Session, SQLModel, select
from sqlmodel.sql.expression import SelectOfScalar

from cancelflow.domain.errors import NotFoundOrUnauthorizedError
from cancelflow.domain.models import CancellationCase, Subscription, User
from cancelflow.infra.audit import record_access_denial

logger = logging.getLogger(__name__)

RowT = TypeVar("RowT", bound=SQLModel)


class PolicyAction(StrEnum):
    SELECT = "select"
    INSERT = "insert"
    UPDATE = "update"


@dataclass(frozen=True)
class OwnershipRule:
    resource: str
    owner_field: str
    actions: frozenset[PolicyAction]


OWNERSHIP_RULES: dict[type[SQLModel], OwnershipRule] = {
    User: OwnershipRule(
        resource="users",
        owner_field="id",
        actions=frozenset({PolicyAction.SELECT}),
    ),
    Subscription: OwnershipRule(
        resource="subscriptions",
        owner_field="user_id",
        actions=frozenset({PolicyAction.SELECT, PolicyAction.UPDATE}),
    ),
    CancellationCase: OwnershipRule(
        resource="cancellations",
        owner_field="user_id",
        actions=frozenset({PolicyAction.SELECT, PolicyAction.INSERT, PolicyAction.UPDATE}),
    ),
}


class AccessPolicy:
    """Row ownership gate.

    Every read or write of a user, subscription or cancellation case goes
    through an owner predicate evaluated for the specific action. A row that
    exists but belongs to someone else is reported exactly like a missing row;
    the two cases are only told apart in logs and the audit trail.
    """

    def rule_for(self, model: type[SQLModel], action: PolicyAction) -> OwnershipRule:
        rule = OWNERSHIP_RULES.get(model)
        if rule is None or action not in rule.actions:
            resource = rule.resource if rule is not None else model.__name__
            logger.warning("policy has no %s grant on %s", action, resource)
            raise NotFoundOrUnauthorizedError(f"{resource} not found")
        return rule

    def owner_clause(self, model: type[SQLModel], action: PolicyAction, user_id: str) -> Any:
        rule = self.rule_for(model, action)
        return getattr(model, rule.owner_field) == user_id

    def scoped(self, model: type[RowT], action: PolicyAction, user_id: str) -> SelectOfScalar[RowT]:
        return select(model).where(self.owner_clause(model, action, user_id))

    def fetch_owned(
        self,
        session: Session,
        model: type[RowT],
        row_id: str,
        user_id: str,
        action: PolicyAction = PolicyAction.SELECT,
    ) -> RowT:
        model_id = model.id  # type: ignore[attr-defined]
        row = session.exec(self.scoped(model, action, user_id).where(model_id == row_id)).first()
        if row is not None:
            return row
        rule = self.rule_for(model, action)
        self._classify_miss(session, model_id, rule, row_id, user_id, action)
        raise NotFoundOrUnauthorizedError(f"{rule.resource} not found")

    def check_insert(self, row: SQLModel, user_id: str) -> None:
        rule = self.rule_for(type(row), PolicyAction.INSERT)
        if getattr(row, rule.owner_field) != user_id:
            logger.warning("rejected %s insert for foreign owner by user %s", rule.resource, user_id)
            raise NotFoundOrUnauthorizedError(f"{rule.resource} not found")

    def _classify_miss(
        self,
        session: Session,
        model_id: Any,
        rule: OwnershipRule,
        row_id: str,
        user_id: str,
        action: PolicyAction,
    ) -> None:
        exists = session.exec(select(model_id).where(model_id == row_id)).first()
        if exists is None:
            logger.info("%s %s absent for user %s", rule.resource, row_id, user_id)
            return
        logger.warning("%s %s denied: %s by non-owner %s", rule.resource, row_id, action, user_id)
        record_access_denial(user_id=user_id, resource=rule.resource, row_id=row_id, action=action)
