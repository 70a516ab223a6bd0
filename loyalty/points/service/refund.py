from __future__ import annotations

from datetime import datetime, timedelta
from decimal import Decimal
from uuid import UUID, uuid4

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from loyalty.core.config import PointsPolicy
from loyalty.db.models.point_transactions import PointTransaction
from loyalty.db.repo.points_repo import PointsRepo
from loyalty.points.errors import (
    DuplicateTransactionError,
    EarnedRecordNotFoundError,
    InvalidAmountError,
    InvalidRatioError,
    NothingToClawBackError,
    SpendNotFoundError,
)
from loyalty.points.refunds import clawback
from loyalty.points.types import ClawbackResult, EntryType, PointsWriteResult

from .wallet import _ledger_totals, _lock_wallet, _store_balance

logger = structlog.get_logger(__name__)


def _owed_points(entry: PointTransaction) -> int:
    value = entry.metadata_.get("clawback_points")
    return value if isinstance(value, int) and value >= 0 else entry.amount


async def refund_points(
    session: AsyncSession,
    *,
    user_id: UUID,
    order_id: UUID,
    refund_amount: Decimal,
    original_order_amount: Decimal,
    now_utc: datetime,
    refund_id: str | None = None,
) -> ClawbackResult:
    if original_order_amount <= 0:
        raise InvalidRatioError
    if refund_amount < 0:
        raise InvalidAmountError

    wallet = await _lock_wallet(session, user_id=user_id, now_utc=now_utc)

    idempotency_key = f"clawback:{user_id}:{order_id}:{refund_id or uuid4().hex}"
    if refund_id is not None:
        existing = await PointsRepo.get_by_idempotency_key(session, idempotency_key)
        if existing is not None:
            raise DuplicateTransactionError(transaction_id=existing.id, amount=existing.amount)

    earned_entries = await PointsRepo.list_order_entries(
        session,
        user_id=user_id,
        order_id=order_id,
        entry_type=EntryType.EARNED.value,
    )
    if not earned_entries:
        raise EarnedRecordNotFoundError

    total_earned = sum(entry.amount for entry in earned_entries)
    prior_clawbacks = await PointsRepo.list_order_entries(
        session,
        user_id=user_id,
        order_id=order_id,
        entry_type=EntryType.EARN_CLAWBACK.value,
    )
    already_owed = sum(_owed_points(entry) for entry in prior_clawbacks)
    # Points that already lapsed cannot be taken back a second time.
    already_expired = await PointsRepo.sum_expired_for_credits(
        session,
        credit_ids=[entry.id for entry in earned_entries],
    )
    target = min(
        clawback(total_earned, refund_amount, original_order_amount),
        total_earned - already_owed - already_expired,
    )
    if target <= 0:
        raise NothingToClawBackError

    totals = await _ledger_totals(session, user_id=user_id)
    collected = min(target, totals.display_balance)
    unrecovered = target - collected

    transaction_id = await PointsRepo.insert_if_absent(
        session,
        user_id=user_id,
        order_id=order_id,
        entry_type=EntryType.EARN_CLAWBACK.value,
        amount=collected,
        description=f"points clawed back for refund of {refund_amount} KRW",
        expires_at=None,
        idempotency_key=idempotency_key,
        created_at=now_utc,
        metadata={
            "clawback_points": target,
            "unrecovered_points": unrecovered,
            "refund_amount": str(refund_amount),
            "original_order_amount": str(original_order_amount),
            "refund_id": refund_id,
        },
    )
    if transaction_id is None:
        raise DuplicateTransactionError

    if unrecovered > 0:
        logger.warning(
            "points_clawback_unrecovered",
            user_id=str(user_id),
            order_id=str(order_id),
            clawback_points=target,
            unrecovered_points=unrecovered,
        )

    balance_after = totals.balance - collected
    await _store_balance(session, wallet=wallet, balance=balance_after, now_utc=now_utc)
    return ClawbackResult(
        transaction_id=transaction_id,
        points_clawed_back=collected,
        unrecovered_points=unrecovered,
        balance_after=balance_after,
    )


async def reverse_spend(
    session: AsyncSession,
    *,
    user_id: UUID,
    order_id: UUID,
    description: str,
    now_utc: datetime,
    policy: PointsPolicy,
) -> PointsWriteResult:
    wallet = await _lock_wallet(session, user_id=user_id, now_utc=now_utc)
    spend = await PointsRepo.get_order_entry(
        session,
        user_id=user_id,
        order_id=order_id,
        entry_type=EntryType.USED.value,
    )
    if spend is None:
        raise SpendNotFoundError

    transaction_id = await PointsRepo.insert_if_absent(
        session,
        user_id=user_id,
        order_id=order_id,
        entry_type=EntryType.SPEND_REVERSAL.value,
        amount=spend.amount,
        description=description,
        expires_at=now_utc + timedelta(days=policy.expiry_days),
        reverses_transaction_id=spend.id,
        idempotency_key=f"spend-reversal:{user_id}:{order_id}",
        created_at=now_utc,
    )
    if transaction_id is None:
        existing = await PointsRepo.get_order_entry(
            session,
            user_id=user_id,
            order_id=order_id,
            entry_type=EntryType.SPEND_REVERSAL.value,
        )
        raise DuplicateTransactionError(
            transaction_id=existing.id if existing is not None else None,
            amount=spend.amount,
        )

    totals = await _ledger_totals(session, user_id=user_id)
    await _store_balance(session, wallet=wallet, balance=totals.balance, now_utc=now_utc)
    return PointsWriteResult(
        transaction_id=transaction_id,
        entry_type=EntryType.SPEND_REVERSAL,
        amount=spend.amount,
        balance_after=totals.balance,
    )
