"""users, subscriptions, cancellations and audit logs

Revision ID: 202610170001
Revises:
Create Date: 2026-10-17
"""

from __future__ import annotations

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision = "202610170001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("email", sa.String(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_users_email", "users", ["email"], unique=True)

    op.create_table(
        "subscriptions",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("user_id", sa.String(), nullable=False),
        sa.Column("monthly_price", sa.Integer(), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="active"),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.UniqueConstraint("user_id", "id", name="uq_subscriptions_user_id_id"),
        sa.CheckConstraint("monthly_price >= 0", name="ck_subscriptions_price_non_negative"),
        sa.CheckConstraint(
            "status IN ('active', 'pending_cancellation', 'cancelled')",
            name="ck_subscriptions_status",
        ),
    )
    op.create_index("ix_subscriptions_user_id", "subscriptions", ["user_id"])

    op.create_table(
        "cancellations",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("user_id", sa.String(), nullable=False),
        sa.Column("subscription_id", sa.String(), nullable=False),
        sa.Column("downsell_variant", sa.String(length=1), nullable=False),
        sa.Column("reason", sa.String(length=17), nullable=True),
        sa.Column("reason_other", sa.String(), nullable=True),
        sa.Column("accepted_downsell", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("finalized", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("decided_at", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(
            ["user_id", "subscription_id"],
            ["subscriptions.user_id", "subscriptions.id"],
            ondelete="CASCADE",
        ),
        sa.CheckConstraint("downsell_variant IN ('A', 'B')", name="ck_cancellations_downsell_variant"),
        sa.CheckConstraint(
            "reason IN ('too_expensive', 'not_using_enough', 'found_alternative', "
            "'technical_issues', 'temporary_break', 'other')",
            name="ck_cancellations_reason",
        ),
        sa.CheckConstraint(
            "reason IS NULL OR reason <> 'other' OR (reason_other IS NOT NULL AND trim(reason_other) <> '')",
            name="ck_cancellations_reason_other",
        ),
        sa.CheckConstraint(
            "(finalized = false AND decided_at IS NULL) OR (finalized = true AND decided_at IS NOT NULL)",
            name="ck_cancellations_decided_at",
        ),
    )
    op.create_index("ix_cancellations_user_id", "cancellations", ["user_id"])
    op.create_index("ix_cancellations_subscription_id", "cancellations", ["subscription_id"])
    op.create_index("ix_cancellations_created_at", "cancellations", ["created_at"])
    op.create_index("ix_cancellations_user_created", "cancellations", ["user_id", "created_at"])
    op.create_index(
        "uq_cancellations_open_subscription",
        "cancellations",
        ["subscription_id"],
        unique=True,
        postgresql_where=sa.text("finalized = false"),
        sqlite_where=sa.text("finalized = 0"),
    )

    op.create_table(
        "audit_logs",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("user_id", sa.String(), nullable=True),
        sa.Column("action", sa.String(), nullable=False),
        sa.Column("resource", sa.String(), nullable=False),
        sa.Column("method", sa.String(), nullable=False),
        sa.Column("status_code", sa.Integer(), nullable=False),
        sa.Column("ts", sa.DateTime(), nullable=False),
        sa.Column("detail", sa.JSON(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_audit_logs_user_id", "audit_logs", ["user_id"])
    op.create_index("ix_audit_logs_ts", "audit_logs", ["ts"])


def downgrade() -> None:
    op.drop_index("ix_audit_logs_ts", table_name="audit_logs")
    op.drop_index("ix_audit_logs_user_id", table_name="audit_logs")
    op.drop_table("audit_logs")

    op.drop_index("uq_cancellations_open_subscription", table_name="cancellations")
    op.drop_index("ix_cancellations_user_created", table_name="cancellations")
    op.drop_index("ix_cancellations_created_at", table_name="cancellations")
    op.drop_index("ix_cancellations_subscription_id", table_name="cancellations")
    op.drop_index("ix_cancellations_user_id", table_name="cancellations")
    op.drop_table("cancellations")

    op.drop_index("ix_subscriptions_user_id", table_name="subscriptions")
    op.drop_table("subscriptions")

    op.drop_index("ix_users_email", table_name="users")
    op.drop_table("users")
