from __future__ import annotations

from fastapi import APIRouter, Request

from cancelflow.api.deps import Service, UserId
from cancelflow.api.errors import handle_cancellation_error
from cancelflow.domain.errors import CancellationError
from cancelflow.domain.models import CancellationCaseRead, CancellationDecision
from cancelflow.infra.audit import set_audit_context

router = APIRouter()


@router.get("/cancellations", response_model=list[CancellationCaseRead])
def list_cancellations(
    user_id: UserId,
    service: Service,
    subscription_id: str | None = None,
) -> list[CancellationCaseRead]:
    cases = service.list_cases(user_id, subscription_id=subscription_id)
    return [CancellationCaseRead.model_validate(item) for item in cases]


@router.get("/cancellations/{case_id}", response_model=CancellationCaseRead)
def get_cancellation(case_id: str, user_id: UserId, service: Service) -> CancellationCaseRead:
    try:
        return CancellationCaseRead.model_validate(service.get_case(case_id, user_id))
    except CancellationError as exc:
        handle_cancellation_error(exc)


@router.patch("/cancellations/{case_id}", response_model=CancellationCaseRead)
def record_decision(
    case_id: str,
    payload: CancellationDecision,
    request: Request,
    user_id: UserId,
    service: Service,
) -> CancellationCaseRead:
    set_audit_context(
        request,
        action="cancellation.decision",
        resource=f"cancellations/{case_id}",
        detail={"finalize": payload.finalize},
    )
    try:
        return CancellationCaseRead.model_validate(service.record_decision(case_id, user_id, payload))
    except CancellationError as exc:
        handle_cancellation_error(exc)
