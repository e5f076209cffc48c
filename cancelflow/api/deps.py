from __future__ import annotations

from typing import Annotated, Any

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import OAuth2PasswordBearer

from cancelflow.infra.auth import decode_access_token
from cancelflow.services.cancellation_service import CancellationService

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/token", auto_error=True)


def get_current_claims(
    request: Request,
    token: str = Depends(oauth2_scheme),
) -> dict[str, Any]:
    try:
        claims = decode_access_token(token)
    except Exception as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token",
        ) from exc
    request.state.claims = claims
    return claims


def get_current_user_id(claims: Annotated[dict[str, Any], Depends(get_current_claims)]) -> str:
    return str(claims["sub"])


def get_cancellation_service() -> CancellationService:
    return CancellationService()


UserId = Annotated[str, Depends(get_current_user_id)]
Service = Annotated[CancellationService, Depends(get_cancellation_service)]
