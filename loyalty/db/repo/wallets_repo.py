from __future__ import annotations

from datetime import datetime
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.ext.asyncio import AsyncSession

from loyalty.db.models.point_wallets import PointWallet


class WalletsRepo:
    @staticmethod
    async def get_by_user_id(session: AsyncSession, user_id: UUID) -> PointWallet | None:
        return await session.get(PointWallet, user_id)

    @staticmethod
    async def get_by_user_id_for_update(session: AsyncSession, user_id: UUID) -> PointWallet | None:
        stmt = select(PointWallet).where(PointWallet.user_id == user_id).with_for_update()
        result = await session.execute(stmt)
        return result.scalar_one_or_none()

    @staticmethod
    async def get_or_create_for_update(
        session: AsyncSession,
        *,
        user_id: UUID,
        now_utc: datetime,
    ) -> PointWallet:
        # Concurrent first writers both reach the lock; the loser of the insert waits on the row.
        stmt = (
            pg_insert(PointWallet)
            .values(user_id=user_id, balance=0, version=0, updated_at=now_utc)
            .on_conflict_do_nothing(index_elements=[PointWallet.user_id])
        )
        await session.execute(stmt)
        wallet = await WalletsRepo.get_by_user_id_for_update(session, user_id)
        if wallet is None:
            raise ValueError("point wallet missing after upsert")
        return wallet

    @staticmethod
    async def list_page(
        session: AsyncSession,
        *,
        after_user_id: UUID | None,
        limit: int,
    ) -> list[PointWallet]:
        stmt = select(PointWallet).order_by(PointWallet.user_id.asc()).limit(limit)
        if after_user_id is not None:
            stmt = stmt.where(PointWallet.user_id > after_user_id)
        result = await session.execute(stmt)
        return list(result.scalars().all())
