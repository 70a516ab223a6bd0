"""loyalty_points_and_coupons

Revision ID: 5c1e2a7d9b30
Revises:
Create Date: 2026-10-19 09:00:00.000000
"""
from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

revision: str = "5c1e2a7d9b30"
down_revision: str | None = None
branch_labels: Sequence[str] | None = None
depends_on: Sequence[str] | None = None


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("status", sa.String(16), nullable=False, server_default=sa.text("'ACTIVE'")),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.CheckConstraint("status IN ('ACTIVE','BLOCKED','DELETED')", name="ck_users_status"),
    )
    op.create_index("idx_users_created_at", "users", ["created_at"])

    op.create_table(
        "point_wallets",
        sa.Column("user_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("balance", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("version", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint("balance >= 0", name="ck_point_wallets_balance_non_negative"),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"]),
        sa.PrimaryKeyConstraint("user_id"),
    )

    op.create_table(
        "point_transactions",
        sa.Column("id", sa.BigInteger(), primary_key=True),
        sa.Column("user_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("order_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("entry_type", sa.String(16), nullable=False),
        sa.Column("amount", sa.Integer(), nullable=False),
        sa.Column("description", sa.Text(), nullable=False, server_default=sa.text("''")),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("reverses_transaction_id", sa.BigInteger(), nullable=True),
        sa.Column("idempotency_key", sa.String(128), nullable=False),
        sa.Column("metadata", postgresql.JSONB(), nullable=False, server_default=sa.text("'{}'::jsonb")),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint(
            "entry_type IN ('EARNED','BONUS','USED','EXPIRED','EARN_CLAWBACK','SPEND_REVERSAL')",
            name="ck_point_transactions_entry_type",
        ),
        sa.CheckConstraint(
            "amount > 0 OR (entry_type IN ('EXPIRED','EARN_CLAWBACK') AND amount = 0)",
            name="ck_point_transactions_amount_positive",
        ),
        sa.CheckConstraint(
            "expires_at IS NULL OR entry_type IN ('EARNED','BONUS','SPEND_REVERSAL')",
            name="ck_point_transactions_expiry_on_credits",
        ),
        sa.CheckConstraint(
            "entry_type <> 'EXPIRED' OR reverses_transaction_id IS NOT NULL",
            name="ck_point_transactions_expired_references_credit",
        ),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"]),
        sa.ForeignKeyConstraint(["reverses_transaction_id"], ["point_transactions.id"]),
        sa.UniqueConstraint("idempotency_key", name="uq_point_transactions_idempotency_key"),
    )
    op.create_index("idx_point_transactions_user_created", "point_transactions", ["user_id", "created_at"])
    op.create_index("idx_point_transactions_order", "point_transactions", ["order_id"])
    op.create_index(
        "uq_point_transactions_user_order_type",
        "point_transactions",
        ["user_id", "order_id", "entry_type"],
        unique=True,
        postgresql_where=sa.text("order_id IS NOT NULL AND entry_type IN ('EARNED','USED','SPEND_REVERSAL')"),
    )
    op.create_index(
        "uq_point_transactions_expired_once",
        "point_transactions",
        ["reverses_transaction_id"],
        unique=True,
        postgresql_where=sa.text("entry_type = 'EXPIRED'"),
    )
    op.create_index(
        "idx_point_transactions_credit_expires_at",
        "point_transactions",
        ["expires_at"],
        postgresql_where=sa.text("expires_at IS NOT NULL"),
    )

    op.execute(
        """
        CREATE OR REPLACE FUNCTION fn_point_transactions_append_only()
        RETURNS trigger
        LANGUAGE plpgsql
        AS $$
        BEGIN
            RAISE EXCEPTION 'point_transactions is append-only';
        END;
        $$;
        """
    )
    op.execute(
        """
        CREATE TRIGGER trg_point_transactions_append_only
        BEFORE UPDATE OR DELETE ON point_transactions
        FOR EACH ROW
        EXECUTE FUNCTION fn_point_transactions_append_only();
        """
    )

    op.create_table(
        "coupons",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("code", sa.String(64), nullable=False),
        sa.Column("name", sa.String(128), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("discount_type", sa.String(16), nullable=False),
        sa.Column("discount_value", sa.Numeric(12, 2), nullable=False),
        sa.Column("min_order_amount", sa.Numeric(12, 2), nullable=False, server_default=sa.text("0")),
        sa.Column("max_discount_amount", sa.Numeric(12, 2), nullable=True),
        sa.Column("usage_limit", sa.Integer(), nullable=True),
        sa.Column("used_count", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("valid_from", sa.DateTime(timezone=True), nullable=False),
        sa.Column("valid_until", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint("discount_type IN ('PERCENTAGE','FIXED_AMOUNT')", name="ck_coupons_discount_type"),
        sa.CheckConstraint("discount_value > 0", name="ck_coupons_discount_value_positive"),
        sa.CheckConstraint(
            "discount_type <> 'PERCENTAGE' OR discount_value <= 100",
            name="ck_coupons_percentage_range",
        ),
        sa.CheckConstraint("min_order_amount >= 0", name="ck_coupons_min_order_non_negative"),
        sa.CheckConstraint(
            "max_discount_amount IS NULL OR max_discount_amount > 0",
            name="ck_coupons_max_discount_positive",
        ),
        sa.CheckConstraint("usage_limit IS NULL OR usage_limit > 0", name="ck_coupons_usage_limit_positive"),
        sa.CheckConstraint("used_count >= 0", name="ck_coupons_used_count_non_negative"),
        sa.CheckConstraint(
            "usage_limit IS NULL OR used_count <= usage_limit",
            name="ck_coupons_used_count_le_limit",
        ),
        sa.UniqueConstraint("code", name="uq_coupons_code"),
    )
    op.create_index("idx_coupons_active_valid_until", "coupons", ["is_active", "valid_until"])

    op.create_table(
        "user_coupons",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("user_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("coupon_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("is_used", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("used_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("used_order_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint(
            "(is_used AND used_order_id IS NOT NULL AND used_at IS NOT NULL) "
            "OR (NOT is_used AND used_order_id IS NULL AND used_at IS NULL)",
            name="ck_user_coupons_used_binding",
        ),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"]),
        sa.ForeignKeyConstraint(["coupon_id"], ["coupons.id"]),
    )
    op.create_index("idx_user_coupons_user_used", "user_coupons", ["user_id", "is_used"])
    op.create_index("idx_user_coupons_coupon", "user_coupons", ["coupon_id"])

    op.create_table(
        "reconciliation_runs",
        sa.Column("id", sa.BigInteger(), primary_key=True),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("finished_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("status", sa.String(32), nullable=False),
        sa.Column("wallets_checked", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("diff_count", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("details", postgresql.JSONB(), nullable=False, server_default=sa.text("'{}'::jsonb")),
        sa.CheckConstraint("status IN ('OK','DIFF')", name="ck_reconciliation_runs_status"),
    )


def downgrade() -> None:
    op.drop_table("reconciliation_runs")

    op.drop_index("idx_user_coupons_coupon", table_name="user_coupons")
    op.drop_index("idx_user_coupons_user_used", table_name="user_coupons")
    op.drop_table("user_coupons")

    op.drop_index("idx_coupons_active_valid_until", table_name="coupons")
    op.drop_table("coupons")

    op.execute("DROP TRIGGER IF EXISTS trg_point_transactions_append_only ON point_transactions;")
    op.execute("DROP FUNCTION IF EXISTS fn_point_transactions_append_only();")
    op.drop_index("idx_point_transactions_credit_expires_at", table_name="point_transactions")
    op.drop_index("uq_point_transactions_expired_once", table_name="point_transactions")
    op.drop_index("uq_point_transactions_user_order_type", table_name="point_transactions")
    op.drop_index("idx_point_transactions_order", table_name="point_transactions")
    op.drop_index("idx_point_transactions_user_created", table_name="point_transactions")
    op.drop_table("point_transactions")

    op.drop_table("point_wallets")

    op.drop_index("idx_users_created_at", table_name="users")
    op.drop_table("users")
