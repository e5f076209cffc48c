from __future__ import annotations

import logging
import os
from collections.abc import Callable
from typing import Any

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, col

from cancelflow.domain.errors import (
    ConflictRetryableError,
    ImmutableFieldViolationError,
    InvalidTransitionError,
)
from cancelflow.domain.integrity import ensure_case_open, validate_reason_other
from cancelflow.domain.models import (
    CancellationCase,
    CancellationDecision,
    Subscription,
    User,
    now_utc,
)
from cancelflow.domain.state_machine import SubscriptionStatus, can_transition, expected_source
from cancelflow.domain.variants import DownsellVariant, draw_variant
from cancelflow.infra.db import get_engine
from cancelflow.services.access_policy import AccessPolicy, PolicyAction

logger = logging.getLogger(__name__)

ENSURE_MAX_ATTEMPTS = int(os.getenv("ENSURE_MAX_ATTEMPTS", "3"))


class CancellationService:
    """Cancellation workflow: open-case creation, decisions and status moves.

    Each attempt of a public method runs in exactly one transaction. Concurrency control is
    left to the store: the partial unique index over open cases settles
    creation races, and conditional UPDATE statements settle status,
    decision and finalization races.
    """

    def __init__(
        self,
        policy: AccessPolicy | None = None,
        variant_drawer: Callable[[], DownsellVariant] = draw_variant,
        max_attempts: int = ENSURE_MAX_ATTEMPTS,
    ) -> None:
        self._policy = policy or AccessPolicy()
        self._draw_variant = variant_drawer
        self._max_attempts = max(1, max_attempts)

    def _session(self) -> Session:
        return Session(get_engine(), expire_on_commit=False)

    def ensure_cancellation_record(self, subscription_id: str, user_id: str) -> CancellationCase:
        for attempt in range(1, self._max_attempts):
            try:
                return self._ensure_once(subscription_id, user_id)
            except ConflictRetryableError:
                logger.info(
                    "open case insert lost a race for subscription %s (attempt %d/%d)",
                    subscription_id,
                    attempt,
                    self._max_attempts,
                )
        try:
            return self._ensure_once(subscription_id, user_id)
        except ConflictRetryableError:
            logger.error("gave up creating open case for subscription %s", subscription_id)
            raise

    def _ensure_once(self, subscription_id: str, user_id: str) -> CancellationCase:
        with self._session() as session:
            self._policy.fetch_owned(session, Subscription, subscription_id, user_id)
            existing = session.exec(
                self._policy.scoped(CancellationCase, PolicyAction.SELECT, user_id)
                .where(CancellationCase.subscription_id == subscription_id)
                .where(col(CancellationCase.finalized).is_(False))
                .order_by(col(CancellationCase.created_at).desc())
            ).first()
            if existing is not None:
                logger.debug("reusing open case %s for subscription %s", existing.id, subscription_id)
                return existing

            case = CancellationCase(
                user_id=user_id,
                subscription_id=subscription_id,
                downsell_variant=self._draw_variant(),
            )
            self._policy.check_insert(case, user_id)
            session.add(case)
            try:
                session.commit()
            except IntegrityError as exc:
                session.rollback()
                raise ConflictRetryableError("open cancellation case already exists") from exc
            session.refresh(case)

        logger.info(
            "created cancellation case %s for subscription %s with variant %s",
            case.id,
            subscription_id,
            case.downsell_variant,
        )
        return case

    def mark_pending_cancellation(self, subscription_id: str, user_id: str) -> Subscription:
        return self._transition_subscription(subscription_id, user_id, SubscriptionStatus.PENDING_CANCELLATION)

    def mark_cancelled(self, subscription_id: str, user_id: str) -> Subscription:
        return self._transition_subscription(subscription_id, user_id, SubscriptionStatus.CANCELLED)

    def _transition_subscription(
        self,
        subscription_id: str,
        user_id: str,
        target: SubscriptionStatus,
    ) -> Subscription:
        source = expected_source(target)
        with self._session() as session:
            subscription = self._policy.fetch_owned(
                session, Subscription, subscription_id, user_id, PolicyAction.UPDATE
            )
            if not can_transition(subscription.status, target):
                raise InvalidTransitionError(f"illegal transition: {subscription.status} -> {target}")
            # The status read above may be stale; the conditional UPDATE decides.
            result = session.execute(
                update(Subscription)
                .where(col(Subscription.id) == subscription_id)
                .where(col(Subscription.user_id) == user_id)
                .where(col(Subscription.status) == source)
                .values(status=target, updated_at=now_utc())
                .execution_options(synchronize_session=False)
            )
            if int(getattr(result, "rowcount", 0) or 0) != 1:
                session.rollback()
                logger.info(
                    "rejected subscription %s transition to %s: expected status %s",
                    subscription_id,
                    target,
                    source,
                )
                raise InvalidTransitionError(
                    f"cannot mark {target}: wrong owner or invalid current status"
                )
            session.refresh(subscription)
            session.commit()

        logger.info("subscription %s moved %s -> %s", subscription_id, source, target)
        return subscription

    def record_decision(
        self,
        case_id: str,
        user_id: str,
        payload: CancellationDecision,
    ) -> CancellationCase:
        for attempt in range(1, self._max_attempts):
            try:
                return self._record_decision_once(case_id, user_id, payload)
            except ConflictRetryableError:
                logger.info(
                    "decision on case %s raced another write (attempt %d/%d)",
                    case_id,
                    attempt,
                    self._max_attempts,
                )
        try:
            return self._record_decision_once(case_id, user_id, payload)
        except ConflictRetryableError:
            logger.error("gave up recording decision on case %s", case_id)
            raise

    def _record_decision_once(
        self,
        case_id: str,
        user_id: str,
        payload: CancellationDecision,
    ) -> CancellationCase:
        with self._session() as session:
            case = self._policy.fetch_owned(session, CancellationCase, case_id, user_id, PolicyAction.UPDATE)
            if "downsell_variant" in payload.model_fields_set:
                raise ImmutableFieldViolationError("downsell_variant")
            ensure_case_open(case.finalized)
            changes = self._decision_changes(case, payload)
            if not changes:
                return case
            # Compare-and-swap on the reason pair that was validated against.
            result = session.execute(
                update(CancellationCase)
                .where(col(CancellationCase.id) == case_id)
                .where(col(CancellationCase.user_id) == user_id)
                .where(col(CancellationCase.finalized).is_(False))
                .where(col(CancellationCase.reason).is_not_distinct_from(case.reason))
                .where(col(CancellationCase.reason_other).is_not_distinct_from(case.reason_other))
                .values(**changes)
                .execution_options(synchronize_session=False)
            )
            if int(getattr(result, "rowcount", 0) or 0) != 1:
                session.rollback()
                raise ConflictRetryableError("cancellation case changed concurrently")
            session.refresh(case)
            session.commit()

        logger.info(
            "recorded decision on case %s: reason=%s accepted_downsell=%s finalized=%s",
            case.id,
            case.reason,
            case.accepted_downsell,
            case.finalized,
        )
        return case

    @staticmethod
    def _decision_changes(case: CancellationCase, payload: CancellationDecision) -> dict[str, Any]:
        fields = payload.model_fields_set
        reason = payload.reason if "reason" in fields else case.reason
        reason_other = payload.reason_other if "reason_other" in fields else case.reason_other
        validate_reason_other(reason, reason_other)

        changes: dict[str, Any] = {}
        if "reason" in fields:
            changes["reason"] = payload.reason
        if "reason_other" in fields:
            changes["reason_other"] = payload.reason_other
        if "accepted_downsell" in fields and payload.accepted_downsell is not None:
            changes["accepted_downsell"] = payload.accepted_downsell
        if payload.finalize:
            changes["finalized"] = True
            changes["decided_at"] = now_utc()
        return changes

    def get_user(self, user_id: str) -> User:
        with self._session() as session:
            return self._policy.fetch_owned(session, User, user_id, user_id)

    def get_subscription(self, subscription_id: str, user_id: str) -> Subscription:
        with self._session() as session:
            return self._policy.fetch_owned(session, Subscription, subscription_id, user_id)

    def list_subscriptions(self, user_id: str) -> list[Subscription]:
        with self._session() as session:
            statement = self._policy.scoped(Subscription, PolicyAction.SELECT, user_id).order_by(
                col(Subscription.created_at)
            )
            return list(session.exec(statement).all())

    def get_case(self, case_id: str, user_id: str) -> CancellationCase:
        with self._session() as session:
            return self._policy.fetch_owned(session, CancellationCase, case_id, user_id)

    def list_cases(self, user_id: str, subscription_id: str | None = None) -> list[CancellationCase]:
        with self._session() as session:
            statement = self._policy.scoped(CancellationCase, PolicyAction.SELECT, user_id)
            if subscription_id is not None:
                statement = statement.where(CancellationCase.subscription_id == subscription_id)
            statement = statement.order_by(col(CancellationCase.created_at).desc())
            return list(session.exec(statement).all())
