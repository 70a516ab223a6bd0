from __future__ import annotations

from datetime import datetime
from uuid import uuid4

import pytest
from sqlalchemy import text
from sqlalchemy.exc import DBAPIError

from loyalty.db.models.point_transactions import PointTransaction
from loyalty.db.session import SessionLocal
from loyalty.points.ledger import PointsLedger
from tests.integration.ledger_fixtures import UTC, create_user

NOW = datetime(2026, 6, 1, 12, 0, tzinfo=UTC)


async def _earned_entry_id() -> int:
    user_id = await create_user()
    result = await PointsLedger().earn_points(user_id=user_id, order_id=uuid4(), amount=100, now_utc=NOW)
    assert result.transaction_id is not None
    return result.transaction_id


@pytest.mark.asyncio
async def test_point_transactions_block_raw_update_and_delete() -> None:
    entry_id = await _earned_entry_id()

    with pytest.raises(DBAPIError):
        async with SessionLocal.begin() as session:
            await session.execute(
                text("UPDATE point_transactions SET amount = amount + 1 WHERE id = :entry_id"),
                {"entry_id": entry_id},
            )

    with pytest.raises(DBAPIError):
        async with SessionLocal.begin() as session:
            await session.execute(
                text("DELETE FROM point_transactions WHERE id = :entry_id"),
                {"entry_id": entry_id},
            )


@pytest.mark.asyncio
async def test_point_transactions_block_orm_mutations() -> None:
    entry_id = await _earned_entry_id()

    with pytest.raises(ValueError, match="append-only"):
        async with SessionLocal.begin() as session:
            entry = await session.get(PointTransaction, entry_id)
            assert entry is not None
            entry.amount = 99
            await session.flush()

    with pytest.raises(ValueError, match="append-only"):
        async with SessionLocal.begin() as session:
            entry = await session.get(PointTransaction, entry_id)
            assert entry is not None
            await session.delete(entry)
            await session.flush()
