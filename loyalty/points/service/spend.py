from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from loyalty.core.config import PointsPolicy
from loyalty.db.repo.points_repo import PointsRepo
from loyalty.points.errors import (
    DuplicateTransactionError,
    InsufficientBalanceError,
    InvalidAmountError,
    PointsUsageNotAllowedError,
)
from loyalty.points.rules import validate_points_usage
from loyalty.points.types import EntryType, PointsWriteResult, UsageRejectReason

from .wallet import _ledger_totals, _lock_wallet, _store_balance


async def use_points(
    session: AsyncSession,
    *,
    user_id: UUID,
    order_id: UUID,
    amount: int,
    description: str,
    now_utc: datetime,
    policy: PointsPolicy,
    order_amount: Decimal | None = None,
    coupon_discount: Decimal = Decimal("0"),
) -> PointsWriteResult:
    if amount <= 0:
        raise InvalidAmountError

    wallet = await _lock_wallet(session, user_id=user_id, now_utc=now_utc)
    existing = await PointsRepo.get_order_entry(
        session,
        user_id=user_id,
        order_id=order_id,
        entry_type=EntryType.USED.value,
    )
    if existing is not None:
        raise DuplicateTransactionError(transaction_id=existing.id, amount=existing.amount)

    totals = await _ledger_totals(session, user_id=user_id)
    available = totals.display_balance

    if order_amount is not None:
        validation = validate_points_usage(
            balance=available,
            points_to_use=amount,
            order_amount=order_amount,
            coupon_discount=coupon_discount,
            policy=policy,
        )
        if validation.reason is UsageRejectReason.INSUFFICIENT_BALANCE:
            raise InsufficientBalanceError(required=amount, available=available)
        if validation.reason is not None:
            raise PointsUsageNotAllowedError(
                reason=validation.reason.value,
                max_usable_points=validation.max_usable_points,
            )

    if amount > available:
        raise InsufficientBalanceError(required=amount, available=available)

    transaction_id = await PointsRepo.insert_if_absent(
        session,
        user_id=user_id,
        order_id=order_id,
        entry_type=EntryType.USED.value,
        amount=amount,
        description=description,
        expires_at=None,
        idempotency_key=f"use:{user_id}:{order_id}",
        created_at=now_utc,
    )
    if transaction_id is None:
        raise DuplicateTransactionError

    balance_after = totals.balance - amount
    await _store_balance(session, wallet=wallet, balance=balance_after, now_utc=now_utc)
    return PointsWriteResult(
        transaction_id=transaction_id,
        entry_type=EntryType.USED,
        amount=amount,
        balance_after=balance_after,
    )
