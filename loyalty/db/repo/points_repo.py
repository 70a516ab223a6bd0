from __future__ import annotations

from collections.abc import Sequence
from datetime import datetime
from uuid import UUID

from sqlalchemy import and_, exists, func, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import aliased

from loyalty.db.models.point_transactions import (
    CREDIT_ENTRY_TYPES,
    ENTRY_TYPE_EARN_CLAWBACK,
    ENTRY_TYPE_EXPIRED,
    PointTransaction,
)


def _not_expired_clause():
    expired = aliased(PointTransaction)
    return ~exists().where(
        and_(
            expired.entry_type == ENTRY_TYPE_EXPIRED,
            expired.reverses_transaction_id == PointTransaction.id,
        )
    )


class PointsRepo:
    @staticmethod
    async def get_by_id(session: AsyncSession, transaction_id: int) -> PointTransaction | None:
        return await session.get(PointTransaction, transaction_id)

    @staticmethod
    async def get_by_idempotency_key(
        session: AsyncSession,
        idempotency_key: str,
    ) -> PointTransaction | None:
        stmt = select(PointTransaction).where(PointTransaction.idempotency_key == idempotency_key)
        result = await session.execute(stmt)
        return result.scalar_one_or_none()

    @staticmethod
    async def insert_if_absent(
        session: AsyncSession,
        *,
        user_id: UUID,
        order_id: UUID | None,
        entry_type: str,
        amount: int,
        description: str,
        expires_at: datetime | None,
        idempotency_key: str,
        created_at: datetime,
        reverses_transaction_id: int | None = None,
        metadata: dict[str, object] | None = None,
    ) -> int | None:
        """Insert one ledger row; ``None`` means a unique index already holds an equivalent row."""
        stmt = (
            pg_insert(PointTransaction)
            .values(
                user_id=user_id,
                order_id=order_id,
                entry_type=entry_type,
                amount=amount,
                description=description,
                expires_at=expires_at,
                reverses_transaction_id=reverses_transaction_id,
                idempotency_key=idempotency_key,
                metadata_=metadata or {},
                created_at=created_at,
            )
            .on_conflict_do_nothing()
            .returning(PointTransaction.id)
        )
        result = await session.execute(stmt)
        return result.scalar_one_or_none()

    @staticmethod
    async def get_order_entry(
        session: AsyncSession,
        *,
        user_id: UUID,
        order_id: UUID,
        entry_type: str,
    ) -> PointTransaction | None:
        stmt = (
            select(PointTransaction)
            .where(
                PointTransaction.user_id == user_id,
                PointTransaction.order_id == order_id,
                PointTransaction.entry_type == entry_type,
            )
            .order_by(PointTransaction.id.asc())
            .limit(1)
        )
        result = await session.execute(stmt)
        return result.scalar_one_or_none()

    @staticmethod
    async def list_order_entries(
        session: AsyncSession,
        *,
        user_id: UUID,
        order_id: UUID,
        entry_type: str,
    ) -> list[PointTransaction]:
        stmt = (
            select(PointTransaction)
            .where(
                PointTransaction.user_id == user_id,
                PointTransaction.order_id == order_id,
                PointTransaction.entry_type == entry_type,
            )
            .order_by(PointTransaction.id.asc())
        )
        result = await session.execute(stmt)
        return list(result.scalars().all())

    @staticmethod
    async def sum_amounts_by_type(session: AsyncSession, *, user_id: UUID) -> dict[str, int]:
        stmt = (
            select(
                PointTransaction.entry_type,
                func.coalesce(func.sum(PointTransaction.amount), 0),
            )
            .where(PointTransaction.user_id == user_id)
            .group_by(PointTransaction.entry_type)
        )
        result = await session.execute(stmt)
        return {str(entry_type): int(total or 0) for entry_type, total in result.all()}

    @staticmethod
    async def sum_amounts_by_user_and_type(
        session: AsyncSession,
        *,
        user_ids: Sequence[UUID],
    ) -> dict[UUID, dict[str, int]]:
        ids = tuple(set(user_ids))
        if not ids:
            return {}
        stmt = (
            select(
                PointTransaction.user_id,
                PointTransaction.entry_type,
                func.coalesce(func.sum(PointTransaction.amount), 0),
            )
            .where(PointTransaction.user_id.in_(ids))
            .group_by(PointTransaction.user_id, PointTransaction.entry_type)
        )
        result = await session.execute(stmt)
        totals: dict[UUID, dict[str, int]] = {}
        for user_id, entry_type, total in result.all():
            totals.setdefault(user_id, {})[str(entry_type)] = int(total or 0)
        return totals

    @staticmethod
    async def sum_expiring_between(
        session: AsyncSession,
        *,
        user_id: UUID,
        start_utc: datetime,
        end_utc: datetime,
    ) -> int:
        stmt = select(func.coalesce(func.sum(PointTransaction.amount), 0)).where(
            PointTransaction.user_id == user_id,
            PointTransaction.entry_type.in_(CREDIT_ENTRY_TYPES),
            PointTransaction.expires_at.is_not(None),
            PointTransaction.expires_at > start_utc,
            PointTransaction.expires_at <= end_utc,
            _not_expired_clause(),
        )
        result = await session.execute(stmt)
        return int(result.scalar_one() or 0)

    @staticmethod
    async def list_for_user(
        session: AsyncSession,
        *,
        user_id: UUID,
        limit: int,
        offset: int,
        order_id: UUID | None = None,
        entry_type: str | None = None,
    ) -> list[PointTransaction]:
        stmt = (
            select(PointTransaction)
            .where(PointTransaction.user_id == user_id)
            .order_by(PointTransaction.created_at.desc(), PointTransaction.id.desc())
            .limit(limit)
            .offset(offset)
        )
        if order_id is not None:
            stmt = stmt.where(PointTransaction.order_id == order_id)
        if entry_type is not None:
            stmt = stmt.where(PointTransaction.entry_type == entry_type)
        result = await session.execute(stmt)
        return list(result.scalars().all())

    @staticmethod
    async def list_expirable_credits(
        session: AsyncSession,
        *,
        now_utc: datetime,
        limit: int,
    ) -> list[PointTransaction]:
        stmt = (
            select(PointTransaction)
            .where(
                PointTransaction.entry_type.in_(CREDIT_ENTRY_TYPES),
                PointTransaction.expires_at.is_not(None),
                PointTransaction.expires_at < now_utc,
                _not_expired_clause(),
            )
            .order_by(PointTransaction.expires_at.asc(), PointTransaction.id.asc())
            .limit(limit)
        )
        result = await session.execute(stmt)
        return list(result.scalars().all())

    @staticmethod
    async def has_expiry_entry(session: AsyncSession, *, credit_id: int) -> bool:
        stmt = select(PointTransaction.id).where(
            PointTransaction.entry_type == ENTRY_TYPE_EXPIRED,
            PointTransaction.reverses_transaction_id == credit_id,
        )
        result = await session.execute(stmt)
        return result.scalar_one_or_none() is not None

    @staticmethod
    async def sum_expired_for_credits(session: AsyncSession, *, credit_ids: Sequence[int]) -> int:
        if not credit_ids:
            return 0
        stmt = select(func.coalesce(func.sum(PointTransaction.amount), 0)).where(
            PointTransaction.entry_type == ENTRY_TYPE_EXPIRED,
            PointTransaction.reverses_transaction_id.in_(list(credit_ids)),
        )
        result = await session.execute(stmt)
        return int(result.scalar_one() or 0)

    @staticmethod
    async def sum_clawed_back_for_order(
        session: AsyncSession,
        *,
        user_id: UUID,
        order_id: UUID,
    ) -> int:
        stmt = select(func.coalesce(func.sum(PointTransaction.amount), 0)).where(
            PointTransaction.user_id == user_id,
            PointTransaction.order_id == order_id,
            PointTransaction.entry_type == ENTRY_TYPE_EARN_CLAWBACK,
        )
        result = await session.execute(stmt)
        return int(result.scalar_one() or 0)
