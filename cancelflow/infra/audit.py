from __future__ import annotations

import logging
from typing import Any

from sqlmodel import Session
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

from cancelflow.domain.models import AuditLog, now_utc
from cancelflow.infra.db import get_engine

logger = logging.getLogger(__name__)

WRITE_METHODS = {"POST", "PUT", "PATCH", "DELETE"}
UNAUDITED_PATHS = {"/healthz", "/readyz"}
AUDIT_CONTEXT_STATE_KEY = "_audit_context"

OUTCOME_DENIED = "denied"
OUTCOME_ABSENT = "absent"


def write_audit_log(
    *,
    user_id: str | None,
    action: str,
    resource: str,
    method: str,
    status_code: int,
    detail: dict[str, Any] | None = None,
) -> None:
    log = AuditLog(
        user_id=user_id,
        action=action,
        resource=resource,
        method=method,
        status_code=status_code,
        detail=detail or {},
    )
    with Session(get_engine()) as session:
        session.add(log)
        session.commit()


def record_access_denial(*, user_id: str, resource: str, row_id: str, action: str) -> None:
    """Persist an ownership denial; callers still see a plain not-found."""
    try:
        write_audit_log(
            user_id=user_id,
            action=f"policy:{action}",
            resource=f"{resource}/{row_id}",
            method=action.upper(),
            status_code=404,
            detail={
                "outcome": OUTCOME_DENIED,
                "when": now_utc().isoformat(),
                "row_id": row_id,
            },
        )
    except Exception:
        logger.exception("failed to persist access denial for %s/%s", resource, row_id)


def _status_outcome(status_code: int) -> str:
    if status_code >= 500:
        return "error"
    if status_code in {401, 403, 404}:
        return OUTCOME_DENIED
    if status_code >= 400:
        return "rejected"
    return "success"


def set_audit_context(
    request: Request,
    *,
    action: str | None = None,
    resource: str | None = None,
    detail: dict[str, Any] | None = None,
) -> None:
    context_raw = getattr(request.state, AUDIT_CONTEXT_STATE_KEY, {})
    context = dict(context_raw) if isinstance(context_raw, dict) else {}
    if action is not None:
        context["action"] = action
    if resource is not None:
        context["resource"] = resource
    if detail:
        previous_detail = context.get("detail")
        context["detail"] = {**previous_detail, **detail} if isinstance(previous_detail, dict) else detail
    setattr(request.state, AUDIT_CONTEXT_STATE_KEY, context)


class AuditMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        response = await call_next(request)
        path = request.url.path
        method = request.method
        if path in UNAUDITED_PATHS or method not in WRITE_METHODS:
            return response

        context_raw = getattr(request.state, AUDIT_CONTEXT_STATE_KEY, {})
        context = context_raw if isinstance(context_raw, dict) else {}
        claims = getattr(request.state, "claims", {})
        raw_action = context.get("action")
        raw_resource = context.get("resource")
        action: str = raw_action if isinstance(raw_action, str) else f"{method}:{path}"
        resource: str = raw_resource if isinstance(raw_resource, str) else path
        detail: dict[str, Any] = {
            "when": now_utc().isoformat(),
            "path": path,
            "client_ip": request.client.host if request.client is not None else None,
            "outcome": _status_outcome(response.status_code),
        }
        context_detail = context.get("detail")
        if isinstance(context_detail, dict):
            detail.update(context_detail)

        try:
            write_audit_log(
                user_id=claims.get("sub"),
                action=action,
                resource=resource,
                method=method,
                status_code=response.status_code,
                detail=detail,
            )
        except Exception:
            # Audit must not block request flow.
            logger.exception("audit write failed for %s %s", method, path)
        return response
