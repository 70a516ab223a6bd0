from __future__ import annotations

from datetime import datetime
from uuid import UUID

from sqlalchemy import (
    BigInteger,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    text,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.dialects.postgresql import UUID as PG_UUID
from sqlalchemy.orm import Mapped, mapped_column

from loyalty.db.models.base import AppendOnly, Base

ENTRY_TYPE_EARNED = "EARNED"
ENTRY_TYPE_BONUS = "BONUS"
ENTRY_TYPE_USED = "USED"
ENTRY_TYPE_EXPIRED = "EXPIRED"
ENTRY_TYPE_EARN_CLAWBACK = "EARN_CLAWBACK"
ENTRY_TYPE_SPEND_REVERSAL = "SPEND_REVERSAL"

CREDIT_ENTRY_TYPES = (ENTRY_TYPE_EARNED, ENTRY_TYPE_BONUS, ENTRY_TYPE_SPEND_REVERSAL)
DEBIT_ENTRY_TYPES = (ENTRY_TYPE_USED, ENTRY_TYPE_EXPIRED, ENTRY_TYPE_EARN_CLAWBACK)
# At most one row of these kinds per (user, order).
ORDER_UNIQUE_ENTRY_TYPES = (ENTRY_TYPE_EARNED, ENTRY_TYPE_USED, ENTRY_TYPE_SPEND_REVERSAL)


class PointTransaction(AppendOnly, Base):
    __tablename__ = "point_transactions"
    __table_args__ = (
        CheckConstraint(
            "entry_type IN ('EARNED','BONUS','USED','EXPIRED','EARN_CLAWBACK','SPEND_REVERSAL')",
            name="ck_point_transactions_entry_type",
        ),
        CheckConstraint(
            "amount > 0 OR (entry_type IN ('EXPIRED','EARN_CLAWBACK') AND amount = 0)",
            name="ck_point_transactions_amount_positive",
        ),
        CheckConstraint(
            "expires_at IS NULL OR entry_type IN ('EARNED','BONUS','SPEND_REVERSAL')",
            name="ck_point_transactions_expiry_on_credits",
        ),
        CheckConstraint(
            "entry_type <> 'EXPIRED' OR reverses_transaction_id IS NOT NULL",
            name="ck_point_transactions_expired_references_credit",
        ),
        Index("idx_point_transactions_user_created", "user_id", "created_at"),
        Index(
            "uq_point_transactions_user_order_type",
            "user_id",
            "order_id",
            "entry_type",
            unique=True,
            postgresql_where=text(
                "order_id IS NOT NULL AND entry_type IN ('EARNED','USED','SPEND_REVERSAL')"
            ),
        ),
        Index(
            "uq_point_transactions_expired_once",
            "reverses_transaction_id",
            unique=True,
            postgresql_where=text("entry_type = 'EXPIRED'"),
        ),
        Index(
            "idx_point_transactions_credit_expires_at",
            "expires_at",
            postgresql_where=text("expires_at IS NOT NULL"),
        ),
        Index("idx_point_transactions_order", "order_id"),
    )

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True)
    user_id: Mapped[UUID] = mapped_column(
        PG_UUID(as_uuid=True),
        ForeignKey("users.id"),
        nullable=False,
    )
    order_id: Mapped[UUID | None] = mapped_column(PG_UUID(as_uuid=True), nullable=True)
    entry_type: Mapped[str] = mapped_column(String(16), nullable=False)
    amount: Mapped[int] = mapped_column(Integer, nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, server_default=text("''"))
    expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    reverses_transaction_id: Mapped[int | None] = mapped_column(
        BigInteger,
        ForeignKey("point_transactions.id"),
        nullable=True,
    )
    idempotency_key: Mapped[str] = mapped_column(String(128), unique=True, nullable=False)
    metadata_: Mapped[dict[str, object]] = mapped_column(
        "metadata",
        JSONB,
        nullable=False,
        server_default=text("'{}'::jsonb"),
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
