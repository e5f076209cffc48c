from __future__ import annotations

from fastapi import APIRouter, Request

from cancelflow.api.deps import Service, UserId
from cancelflow.api.errors import handle_cancellation_error
from cancelflow.domain.errors import CancellationError
from cancelflow.domain.models import CancellationCaseRead, SubscriptionRead, UserRead
from cancelflow.infra.audit import set_audit_context

router = APIRouter()


@router.get("/me", response_model=UserRead)
def get_me(user_id: UserId, service: Service) -> UserRead:
    try:
        return UserRead.model_validate(service.get_user(user_id))
    except CancellationError as exc:
        handle_cancellation_error(exc)


@router.get("/subscriptions", response_model=list[SubscriptionRead])
def list_subscriptions(user_id: UserId, service: Service) -> list[SubscriptionRead]:
    return [SubscriptionRead.model_validate(item) for item in service.list_subscriptions(user_id)]


@router.get("/subscriptions/{subscription_id}", response_model=SubscriptionRead)
def get_subscription(subscription_id: str, user_id: UserId, service: Service) -> SubscriptionRead:
    try:
        return SubscriptionRead.model_validate(service.get_subscription(subscription_id, user_id))
    except CancellationError as exc:
        handle_cancellation_error(exc)


@router.post("/subscriptions/{subscription_id}/cancellation", response_model=CancellationCaseRead)
def ensure_cancellation(
    subscription_id: str,
    request: Request,
    user_id: UserId,
    service: Service,
) -> CancellationCaseRead:
    set_audit_context(request, action="cancellation.ensure", resource=f"subscriptions/{subscription_id}")
    try:
        case = service.ensure_cancellation_record(subscription_id, user_id)
    except CancellationError as exc:
        handle_cancellation_error(exc)
    set_audit_context(request, detail={"case_id": case.id, "variant": case.downsell_variant.value})
    return CancellationCaseRead.model_validate(case)


@router.post("/subscriptions/{subscription_id}/pending-cancellation", response_model=SubscriptionRead)
def mark_pending_cancellation(
    subscription_id: str,
    request: Request,
    user_id: UserId,
    service: Service,
) -> SubscriptionRead:
    set_audit_context(request, action="subscription.pending_cancellation", resource=f"subscriptions/{subscription_id}")
    try:
        return SubscriptionRead.model_validate(service.mark_pending_cancellation(subscription_id, user_id))
    except CancellationError as exc:
        handle_cancellation_error(exc)


@router.post("/subscriptions/{subscription_id}/cancel", response_model=SubscriptionRead)
def mark_cancelled(
    subscription_id: str,
    request: Request,
    user_id: UserId,
    service: Service,
) -> SubscriptionRead:
    set_audit_context(request, action="subscription.cancelled", resource=f"subscriptions/{subscription_id}")
    try:
        return SubscriptionRead.model_validate(service.mark_cancelled(subscription_id, user_id))
    except CancellationError as exc:
        handle_cancellation_error(exc)
