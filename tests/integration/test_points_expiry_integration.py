from __future__ import annotations

from datetime import datetime, timedelta
from decimal import Decimal
from uuid import uuid4

import pytest

from loyalty.points.ledger import PointsLedger
from tests.integration.ledger_fixtures import UTC, cached_balance, create_user, list_entries

NOW = datetime(2026, 6, 1, 12, 0, tzinfo=UTC)
LONG_AGO = NOW - timedelta(days=400)


@pytest.mark.asyncio
async def test_expiry_runs_are_idempotent() -> None:
    ledger = PointsLedger()
    user_id = await create_user()
    await ledger.earn_points(user_id=user_id, order_id=uuid4(), amount=300, now_utc=LONG_AGO)
    await ledger.earn_points(user_id=user_id, order_id=uuid4(), amount=200, now_utc=NOW)

    first = await ledger.expire_points(now_utc=NOW)
    second = await ledger.expire_points(now_utc=NOW)

    assert first.success is True
    assert first.expired_transactions == 1
    assert first.points_expired == 300
    assert second.expired_transactions == 0
    assert second.points_expired == 0
    assert (await ledger.get_balance(user_id=user_id)).balance == 200
    assert await cached_balance(user_id) == 200

    entries = await list_entries(user_id)
    expired = [entry for entry in entries if entry.entry_type == "EXPIRED"]
    assert len(expired) == 1
    original = next(entry for entry in entries if entry.id == expired[0].reverses_transaction_id)
    assert original.entry_type == "EARNED"
    assert original.amount == 300


@pytest.mark.asyncio
async def test_expiry_only_takes_points_still_held() -> None:
    ledger = PointsLedger()
    user_id = await create_user()
    order_id = uuid4()
    await ledger.earn_points(user_id=user_id, order_id=order_id, amount=500, now_utc=LONG_AGO)
    await ledger.refund_points(
        user_id=user_id,
        order_id=order_id,
        refund_amount=Decimal("20000"),
        original_order_amount=Decimal("50000"),
        now_utc=LONG_AGO,
    )
    await ledger.use_points(user_id=user_id, order_id=uuid4(), amount=250, now_utc=LONG_AGO)

    result = await ledger.expire_points(now_utc=NOW)

    assert result.points_expired == 50
    assert (await ledger.get_balance(user_id=user_id)).balance == 0


@pytest.mark.asyncio
async def test_expiring_soon_statistics() -> None:
    ledger = PointsLedger()
    user_id = await create_user()
    await ledger.earn_points(user_id=user_id, order_id=uuid4(), amount=300, now_utc=NOW - timedelta(days=350))
    await ledger.earn_points(user_id=user_id, order_id=uuid4(), amount=200, now_utc=NOW)

    result = await ledger.get_statistics(user_id=user_id, now_utc=NOW)

    assert result.statistics is not None
    assert result.statistics.expiring_soon == 300
    assert result.statistics.current_balance == 500
