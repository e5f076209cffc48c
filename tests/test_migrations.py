from __future__ import annotations

from pathlib import Path

import pytest
from sqlalchemy import inspect, text
from sqlalchemy.exc import IntegrityError

from cancelflow.infra import db
from cancelflow.infra.migrate import run_downgrade_base, run_upgrade_head


def test_upgrade_head_creates_schema_and_downgrade_drops_it(tmp_path: Path) -> None:
    url = f"sqlite:///{tmp_path / 'migrations_test.db'}"
    run_upgrade_head(url)

    engine = db.build_engine(url)
    try:
        inspector = inspect(engine)
        tables = set(inspector.get_table_names())
        assert {"users", "subscriptions", "cancellations", "audit_logs"} <= tables
        index_names = {index["name"] for index in inspector.get_indexes("cancellations")}
        assert "uq_cancellations_open_subscription" in index_names

        with engine.begin() as conn:
            conn.execute(
                text("INSERT INTO users (id, email, created_at) VALUES ('u1', 'm@example.com', '2026-01-01')")
            )
            conn.execute(
                text(
                    "INSERT INTO subscriptions (id, user_id, monthly_price, status, created_at, updated_at) "
                    "VALUES ('s1', 'u1', 2500, 'active', '2026-01-01', '2026-01-01')"
                )
            )
            conn.execute(
                text(
                    "INSERT INTO cancellations (id, user_id, subscription_id, downsell_variant, created_at) "
                    "VALUES ('c1', 'u1', 's1', 'A', '2026-01-01')"
                )
            )
        with pytest.raises(IntegrityError):
            with engine.begin() as conn:
                conn.execute(
                    text(
                        "INSERT INTO cancellations (id, user_id, subscription_id, downsell_variant, created_at) "
                        "VALUES ('c2', 'u1', 's1', 'B', '2026-01-02')"
                    )
                )
    finally:
        engine.dispose()

    run_downgrade_base(url)
    engine = db.build_engine(url)
    try:
        assert "cancellations" not in set(inspect(engine).get_table_names())
    finally:
        engine.dispose()
