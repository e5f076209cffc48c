from __future__ import annotations

from fastapi import FastAPI, HTTPException

from cancelflow.api.routers import cancellations, subscriptions
from cancelflow.infra.audit import AuditMiddleware
from cancelflow.infra.db import check_db_ready
from cancelflow.infra.logging_setup import setup_logging

setup_logging()

app = FastAPI(
    title="cancelflow",
    description="Subscription cancellation workflow with A/B downsell assignment.",
    version="0.1.0",
)

app.add_middleware(AuditMiddleware)

app.include_router(subscriptions.router, prefix="/api", tags=["subscriptions"])
app.include_router(cancellations.router, prefix="/api", tags=["cancellations"])


@app.get("/healthz")
def healthz() -> dict[str, str]:
    return {"status": "ok"}


@app.get("/readyz")
def readyz() -> dict[str, object]:
    db_ok = check_db_ready()
    checks = {"db": "ok" if db_ok else "fail"}
    if not db_ok:
        raise HTTPException(
            status_code=503,
            detail={"status": "not_ready", "checks": checks},
        )
    return {"status": "ready", "checks": checks}
