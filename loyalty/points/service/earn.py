from __future__ import annotations

from datetime import datetime, timedelta
from decimal import Decimal
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from loyalty.core.config import PointsPolicy
from loyalty.db.repo.points_repo import PointsRepo
from loyalty.points.errors import DuplicateTransactionError, InvalidAmountError
from loyalty.points.rules import calculate_earn_points
from loyalty.points.types import EntryType, PointsWriteResult

from .wallet import _ledger_totals, _lock_wallet, _store_balance


async def _append_credit(
    session: AsyncSession,
    *,
    user_id: UUID,
    order_id: UUID | None,
    entry_type: EntryType,
    amount: int,
    description: str,
    idempotency_key: str,
    now_utc: datetime,
    policy: PointsPolicy,
    metadata: dict[str, object] | None = None,
) -> PointsWriteResult:
    if amount <= 0:
        raise InvalidAmountError

    wallet = await _lock_wallet(session, user_id=user_id, now_utc=now_utc)
    transaction_id = await PointsRepo.insert_if_absent(
        session,
        user_id=user_id,
        order_id=order_id,
        entry_type=entry_type.value,
        amount=amount,
        description=description,
        expires_at=now_utc + timedelta(days=policy.expiry_days),
        idempotency_key=idempotency_key,
        created_at=now_utc,
        metadata=metadata,
    )
    if transaction_id is None:
        existing = await PointsRepo.get_by_idempotency_key(session, idempotency_key)
        if existing is None and order_id is not None:
            existing = await PointsRepo.get_order_entry(
                session,
                user_id=user_id,
                order_id=order_id,
                entry_type=entry_type.value,
            )
        raise DuplicateTransactionError(
            transaction_id=existing.id if existing is not None else None,
            amount=existing.amount if existing is not None else None,
        )

    totals = await _ledger_totals(session, user_id=user_id)
    await _store_balance(session, wallet=wallet, balance=totals.balance, now_utc=now_utc)
    return PointsWriteResult(
        transaction_id=transaction_id,
        entry_type=entry_type,
        amount=amount,
        balance_after=totals.balance,
    )


async def earn_points(
    session: AsyncSession,
    *,
    user_id: UUID,
    order_id: UUID,
    amount: int,
    description: str,
    now_utc: datetime,
    policy: PointsPolicy,
) -> PointsWriteResult:
    return await _append_credit(
        session,
        user_id=user_id,
        order_id=order_id,
        entry_type=EntryType.EARNED,
        amount=amount,
        description=description,
        idempotency_key=f"earn:{user_id}:{order_id}",
        now_utc=now_utc,
        policy=policy,
    )


async def earn_order_points(
    session: AsyncSession,
    *,
    user_id: UUID,
    order_id: UUID,
    order_amount: Decimal,
    now_utc: datetime,
    policy: PointsPolicy,
) -> PointsWriteResult:
    amount = calculate_earn_points(order_amount, policy)
    return await _append_credit(
        session,
        user_id=user_id,
        order_id=order_id,
        entry_type=EntryType.EARNED,
        amount=amount,
        description=f"order {order_id} completed ({order_amount} KRW)",
        idempotency_key=f"earn:{user_id}:{order_id}",
        now_utc=now_utc,
        policy=policy,
        metadata={"order_amount": str(order_amount)},
    )


async def grant_bonus(
    session: AsyncSession,
    *,
    user_id: UUID,
    amount: int,
    description: str,
    idempotency_key: str,
    now_utc: datetime,
    policy: PointsPolicy,
) -> PointsWriteResult:
    return await _append_credit(
        session,
        user_id=user_id,
        order_id=None,
        entry_type=EntryType.BONUS,
        amount=amount,
        description=description,
        idempotency_key=f"bonus:{idempotency_key}",
        now_utc=now_utc,
        policy=policy,
    )
