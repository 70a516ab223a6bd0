from __future__ import annotations

from datetime import datetime

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from loyalty.db.models.reconciliation_runs import ReconciliationRun


class ReconciliationRunsRepo:
    @staticmethod
    async def create(
        session: AsyncSession,
        *,
        started_at: datetime,
        finished_at: datetime | None,
        status: str,
        wallets_checked: int,
        diff_count: int,
        details: dict[str, object] | None = None,
    ) -> ReconciliationRun:
        run = ReconciliationRun(
            started_at=started_at,
            finished_at=finished_at,
            status=status,
            wallets_checked=wallets_checked,
            diff_count=diff_count,
            details=details or {},
        )
        session.add(run)
        await session.flush()
        return run

    @staticmethod
    async def get_latest(session: AsyncSession) -> ReconciliationRun | None:
        stmt = select(ReconciliationRun).order_by(ReconciliationRun.started_at.desc()).limit(1)
        result = await session.execute(stmt)
        return result.scalar_one_or_none()
