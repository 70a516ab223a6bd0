from __future__ import annotations

from datetime import datetime
from uuid import UUID

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from loyalty.db.models.point_wallets import PointWallet
from loyalty.db.repo.points_repo import PointsRepo
from loyalty.db.repo.users_repo import UsersRepo
from loyalty.db.repo.wallets_repo import WalletsRepo
from loyalty.points.aggregation import LedgerTotals
from loyalty.points.errors import PointsUserNotFoundError

logger = structlog.get_logger(__name__)


async def _lock_wallet(session: AsyncSession, *, user_id: UUID, now_utc: datetime) -> PointWallet:
    user = await UsersRepo.get_by_id(session, user_id)
    if user is None:
        raise PointsUserNotFoundError
    return await WalletsRepo.get_or_create_for_update(session, user_id=user_id, now_utc=now_utc)


async def _ledger_totals(session: AsyncSession, *, user_id: UUID) -> LedgerTotals:
    sums = await PointsRepo.sum_amounts_by_type(session, user_id=user_id)
    return LedgerTotals.from_type_sums(sums)


async def _store_balance(
    session: AsyncSession,
    *,
    wallet: PointWallet,
    balance: int,
    now_utc: datetime,
) -> None:
    if balance < 0:
        logger.warning("points_wallet_balance_negative", user_id=str(wallet.user_id), balance=balance)
    wallet.balance = balance
    wallet.version += 1
    wallet.updated_at = now_utc
    await session.flush()
