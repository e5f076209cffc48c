from __future__ import annotations

from enum import StrEnum


class SubscriptionStatus(StrEnum):
    ACTIVE = "active"
    PENDING_CANCELLATION = "pending_cancellation"
    CANCELLED = "cancelled"


SUBSCRIPTION_ALLOWED_TRANSITIONS: dict[SubscriptionStatus, set[SubscriptionStatus]] = {
    SubscriptionStatus.ACTIVE: {SubscriptionStatus.PENDING_CANCELLATION},
    SubscriptionStatus.PENDING_CANCELLATION: {SubscriptionStatus.CANCELLED},
    SubscriptionStatus.CANCELLED: set(),
}


def can_transition(source: SubscriptionStatus, target: SubscriptionStatus) -> bool:
    return target in SUBSCRIPTION_ALLOWED_TRANSITIONS.get(source, set())


def expected_source(target: SubscriptionStatus) -> SubscriptionStatus:
    """Return the single status a subscription must hold to move into ``target``."""
    sources = [source for source, targets in SUBSCRIPTION_ALLOWED_TRANSITIONS.items() if target in targets]
    if len(sources) != 1:
        raise ValueError(f"no unique source status for {target}")
    return sources[0]


class CaseState(StrEnum):
    OPEN = "open"
    FINALIZED = "finalized"


def case_state(finalized: bool) -> CaseState:
    return CaseState.FINALIZED if finalized else CaseState.OPEN
