from __future__ import annotations

from collections import defaultdict
from datetime import datetime
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from loyalty.db.models.point_transactions import PointTransaction
from loyalty.db.repo.points_repo import PointsRepo
from loyalty.db.repo.wallets_repo import WalletsRepo
from loyalty.points.types import EntryType, ExpiryRunResult

from .wallet import _ledger_totals, _store_balance


async def _expire_user_credits(
    session: AsyncSession,
    *,
    user_id: UUID,
    credits: list[PointTransaction],
    now_utc: datetime,
) -> tuple[int, int]:
    wallet = await WalletsRepo.get_or_create_for_update(session, user_id=user_id, now_utc=now_utc)
    totals = await _ledger_totals(session, user_id=user_id)
    balance = totals.display_balance
    clawed_by_order: dict[UUID, int] = {}

    expired_transactions = 0
    expired_points = 0
    for credit in credits:
        if await PointsRepo.has_expiry_entry(session, credit_id=credit.id):
            continue

        remaining = credit.amount
        if credit.entry_type == EntryType.EARNED.value and credit.order_id is not None:
            if credit.order_id not in clawed_by_order:
                clawed_by_order[credit.order_id] = await PointsRepo.sum_clawed_back_for_order(
                    session,
                    user_id=user_id,
                    order_id=credit.order_id,
                )
            remaining -= clawed_by_order[credit.order_id]

        amount = max(0, min(remaining, balance))
        transaction_id = await PointsRepo.insert_if_absent(
            session,
            user_id=user_id,
            order_id=credit.order_id,
            entry_type=EntryType.EXPIRED.value,
            amount=amount,
            description=f"points from transaction {credit.id} expired",
            expires_at=None,
            reverses_transaction_id=credit.id,
            idempotency_key=f"expire:{credit.id}",
            created_at=now_utc,
            metadata={"credit_amount": credit.amount},
        )
        if transaction_id is None:
            continue

        balance -= amount
        expired_transactions += 1
        expired_points += amount

    if expired_transactions:
        await _store_balance(session, wallet=wallet, balance=balance, now_utc=now_utc)
    return expired_transactions, expired_points


async def expire_points(
    session: AsyncSession,
    *,
    now_utc: datetime,
    batch_size: int,
) -> ExpiryRunResult:
    credits = await PointsRepo.list_expirable_credits(session, now_utc=now_utc, limit=batch_size)

    credits_by_user: dict[UUID, list[PointTransaction]] = defaultdict(list)
    for credit in credits:
        credits_by_user[credit.user_id].append(credit)

    expired_transactions = 0
    expired_points = 0
    # Wallets are locked in a stable order so concurrent runs cannot deadlock.
    for user_id in sorted(credits_by_user, key=str):
        user_transactions, user_points = await _expire_user_credits(
            session,
            user_id=user_id,
            credits=credits_by_user[user_id],
            now_utc=now_utc,
        )
        expired_transactions += user_transactions
        expired_points += user_points

    return ExpiryRunResult(
        scanned=len(credits),
        expired_transactions=expired_transactions,
        expired_points=expired_points,
        users_touched=len(credits_by_user),
    )
