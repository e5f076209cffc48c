from __future__ import annotations

from collections.abc import Generator
from pathlib import Path

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.engine import Engine
from sqlmodel import Session, SQLModel, select

from cancelflow import main as app_main
from cancelflow.domain.models import AuditLog, Subscription, User
from cancelflow.infra import db
from cancelflow.infra.auth import create_access_token


@pytest.fixture()
def api_engine(
    monkeypatch: pytest.MonkeyPatch,
    tmp_path: Path,
) -> Generator[Engine, None, None]:
    test_engine = db.build_engine(f"sqlite:///{tmp_path / 'cancellation_api_test.db'}")
    SQLModel.metadata.create_all(test_engine)
    monkeypatch.setattr(db, "engine", test_engine)
    yield test_engine
    test_engine.dispose()


@pytest.fixture()
def api_client(api_engine: Engine) -> Generator[TestClient, None, None]:
    client = TestClient(app_main.app)
    yield client
    client.close()


def _auth_header(user_id: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {create_access_token(user_id=user_id)}"}


def _create_user(engine: Engine, email: str, monthly_price: int | None = None) -> tuple[str, str | None]:
    with Session(engine) as session:
        user = User(email=email)
        session.add(user)
        session.flush()
        subscription_id: str | None = None
        if monthly_price is not None:
            subscription = Subscription(user_id=user.id, monthly_price=monthly_price)
            session.add(subscription)
            session.flush()
            subscription_id = subscription.id
        session.commit()
        return user.id, subscription_id


def test_cancellation_flow_end_to_end(api_client: TestClient, api_engine: Engine) -> None:
    user_id, subscription_id = _create_user(api_engine, "user1@example.com", monthly_price=2500)
    other_id, _ = _create_user(api_engine, "user2@example.com", monthly_price=2900)
    headers = _auth_header(user_id)

    first = api_client.post(f"/api/subscriptions/{subscription_id}/cancellation", headers=headers)
    assert first.status_code == 200
    case = first.json()
    assert case["downsell_variant"] in {"A", "B"}
    assert case["finalized"] is False
    assert case["state"] == "open"

    again = api_client.post(f"/api/subscriptions/{subscription_id}/cancellation", headers=headers)
    assert again.status_code == 200
    assert again.json()["id"] == case["id"]
    assert again.json()["downsell_variant"] == case["downsell_variant"]

    pending = api_client.post(f"/api/subscriptions/{subscription_id}/pending-cancellation", headers=headers)
    assert pending.status_code == 200
    assert pending.json()["status"] == "pending_cancellation"

    repeat = api_client.post(f"/api/subscriptions/{subscription_id}/pending-cancellation", headers=headers)
    assert repeat.status_code == 409
    assert repeat.json()["detail"]["code"] == "invalid_transition"

    foreign = api_client.post(
        f"/api/subscriptions/{subscription_id}/cancellation",
        headers=_auth_header(other_id),
    )
    missing = api_client.post("/api/subscriptions/no-such-subscription/cancellation", headers=_auth_header(other_id))
    assert foreign.status_code == 404
    assert foreign.json() == missing.json()

    with Session(api_engine) as session:
        denied = session.exec(
            select(AuditLog).where(AuditLog.user_id == other_id).where(AuditLog.action == "policy:select")
        ).all()
        ensure_logs = session.exec(select(AuditLog).where(AuditLog.action == "cancellation.ensure")).all()
    assert len(denied) == 1
    assert denied[0].detail["outcome"] == "denied"
    assert len(ensure_logs) == 4


def test_decision_endpoint_enforces_case_rules(api_client: TestClient, api_engine: Engine) -> None:
    user_id, subscription_id = _create_user(api_engine, "decider@example.com", monthly_price=2500)
    headers = _auth_header(user_id)
    case_id = api_client.post(f"/api/subscriptions/{subscription_id}/cancellation", headers=headers).json()["id"]

    missing_text = api_client.patch(f"/api/cancellations/{case_id}", json={"reason": "other"}, headers=headers)
    assert missing_text.status_code == 422
    assert missing_text.json()["detail"]["code"] == "validation_error"

    variant = api_client.patch(f"/api/cancellations/{case_id}", json={"downsell_variant": "B"}, headers=headers)
    assert variant.status_code == 409
    assert variant.json()["detail"]["field"] == "downsell_variant"

    unknown_reason = api_client.patch(f"/api/cancellations/{case_id}", json={"reason": "bored"}, headers=headers)
    assert unknown_reason.status_code == 422

    finalized = api_client.patch(
        f"/api/cancellations/{case_id}",
        json={"reason": "other", "reason_other": "switching providers", "finalize": True},
        headers=headers,
    )
    assert finalized.status_code == 200
    body = finalized.json()
    assert body["finalized"] is True
    assert body["state"] == "finalized"
    assert body["decided_at"] is not None
    assert body["reason_other"] == "switching providers"

    frozen = api_client.patch(f"/api/cancellations/{case_id}", json={"accepted_downsell": True}, headers=headers)
    assert frozen.status_code == 409
    assert frozen.json()["detail"]["code"] == "case_finalized"

    listed = api_client.get("/api/cancellations", params={"subscription_id": subscription_id}, headers=headers)
    assert listed.status_code == 200
    assert [item["id"] for item in listed.json()] == [case_id]


def test_owner_reads(api_client: TestClient, api_engine: Engine) -> None:
    user_id, subscription_id = _create_user(api_engine, "reader@example.com", monthly_price=2500)
    other_id, other_subscription_id = _create_user(api_engine, "other-reader@example.com", monthly_price=2900)
    headers = _auth_header(user_id)

    me = api_client.get("/api/me", headers=headers)
    assert me.status_code == 200
    assert me.json()["email"] == "reader@example.com"

    subscriptions = api_client.get("/api/subscriptions", headers=headers)
    assert [item["id"] for item in subscriptions.json()] == [subscription_id]
    assert subscriptions.json()[0]["monthly_price"] == 2500
    assert subscriptions.json()[0]["status"] == "active"

    assert api_client.get(f"/api/subscriptions/{other_subscription_id}", headers=headers).status_code == 404
    assert api_client.get(f"/api/subscriptions/{subscription_id}", headers=_auth_header(other_id)).status_code == 404

    pending = api_client.post(f"/api/subscriptions/{subscription_id}/pending-cancellation", headers=headers)
    assert pending.status_code == 200
    cancelled = api_client.post(f"/api/subscriptions/{subscription_id}/cancel", headers=headers)
    assert cancelled.status_code == 200
    assert cancelled.json()["status"] == "cancelled"


def test_requests_without_valid_token_are_rejected(api_client: TestClient) -> None:
    assert api_client.get("/api/subscriptions").status_code == 401
    bad = api_client.get("/api/subscriptions", headers={"Authorization": "Bearer not-a-token"})
    assert bad.status_code == 401


def test_healthz_ok(api_client: TestClient) -> None:
    response = api_client.get("/healthz")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_readyz_reports_db(api_client: TestClient, monkeypatch: pytest.MonkeyPatch) -> None:
    assert api_client.get("/readyz").json()["status"] == "ready"
    monkeypatch.setattr(app_main, "check_db_ready", lambda: False)
    response = api_client.get("/readyz")
    assert response.status_code == 503
    assert response.json()["detail"]["checks"] == {"db": "fail"}
