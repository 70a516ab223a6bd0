from __future__ import annotations

from datetime import datetime, timedelta
from decimal import Decimal
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from loyalty.core.config import PointsPolicy
from loyalty.db.models.point_transactions import PointTransaction
from loyalty.db.repo.points_repo import PointsRepo
from loyalty.points.aggregation import PointStatistics, build_statistics
from loyalty.points.rules import validate_points_usage
from loyalty.points.types import EntryType, PointsUsageValidation, TransactionView

from .wallet import _ledger_totals

MAX_PAGE_SIZE = 200


def _to_view(entry: PointTransaction) -> TransactionView:
    return TransactionView(
        id=entry.id,
        user_id=entry.user_id,
        order_id=entry.order_id,
        entry_type=EntryType(entry.entry_type),
        amount=entry.amount,
        description=entry.description,
        expires_at=entry.expires_at,
        reverses_transaction_id=entry.reverses_transaction_id,
        created_at=entry.created_at,
    )


async def get_balance(session: AsyncSession, *, user_id: UUID) -> int:
    totals = await _ledger_totals(session, user_id=user_id)
    return totals.display_balance


async def get_statistics(
    session: AsyncSession,
    *,
    user_id: UUID,
    now_utc: datetime,
    policy: PointsPolicy,
) -> PointStatistics:
    totals = await _ledger_totals(session, user_id=user_id)
    expiring_soon = await PointsRepo.sum_expiring_between(
        session,
        user_id=user_id,
        start_utc=now_utc,
        end_utc=now_utc + timedelta(days=policy.expiring_soon_days),
    )
    return build_statistics(totals, expiring_soon=expiring_soon)


async def list_transactions(
    session: AsyncSession,
    *,
    user_id: UUID,
    limit: int = 50,
    offset: int = 0,
    order_id: UUID | None = None,
    entry_type: EntryType | None = None,
) -> list[TransactionView]:
    entries = await PointsRepo.list_for_user(
        session,
        user_id=user_id,
        limit=max(1, min(MAX_PAGE_SIZE, int(limit))),
        offset=max(0, int(offset)),
        order_id=order_id,
        entry_type=entry_type.value if entry_type is not None else None,
    )
    return [_to_view(entry) for entry in entries]


async def check_points_usage(
    session: AsyncSession,
    *,
    user_id: UUID,
    points_to_use: int,
    order_amount: Decimal,
    coupon_discount: Decimal,
    policy: PointsPolicy,
) -> tuple[int, PointsUsageValidation]:
    balance = await get_balance(session, user_id=user_id)
    validation = validate_points_usage(
        balance=balance,
        points_to_use=points_to_use,
        order_amount=order_amount,
        coupon_discount=coupon_discount,
        policy=policy,
    )
    return balance, validation
