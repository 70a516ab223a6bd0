from __future__ import annotations

from datetime import datetime, timedelta, timezone
from decimal import Decimal
from uuid import uuid4

import pytest

from loyalty.coupons import service as service_module
from loyalty.coupons.errors import CouponAlreadyRedeemedError
from loyalty.coupons.service import CouponService
from loyalty.db.models.coupons import Coupon
from loyalty.db.models.user_coupons import UserCoupon

UTC = timezone.utc
NOW = datetime(2026, 6, 1, 12, 0, tzinfo=UTC)


def _coupon() -> Coupon:
    return Coupon(
        id=uuid4(),
        code="BIGSPEND",
        name="Big spend",
        description=None,
        discount_type="FIXED_AMOUNT",
        discount_value=Decimal("5000"),
        min_order_amount=Decimal("50000"),
        max_discount_amount=None,
        usage_limit=None,
        used_count=1,
        is_active=True,
        valid_from=NOW - timedelta(days=1),
        valid_until=NOW + timedelta(days=30),
        created_at=NOW - timedelta(days=1),
        updated_at=NOW - timedelta(days=1),
    )


@pytest.mark.asyncio
async def test_redeem_of_used_claim_reports_bound_order_before_catalog_checks(monkeypatch) -> None:
    coupon = _coupon()
    bound_order_id = uuid4()
    claim = UserCoupon(
        id=uuid4(),
        user_id=uuid4(),
        coupon_id=coupon.id,
        is_used=True,
        used_at=NOW - timedelta(hours=1),
        used_order_id=bound_order_id,
        expires_at=None,
        created_at=NOW - timedelta(days=1),
    )
    writes: list[dict[str, object]] = []

    async def fake_get_user_coupon(session, user_coupon_id):
        return claim

    async def fake_get_coupon_by_id(session, coupon_id):
        return coupon

    async def fake_mark_used(session, **kwargs):
        writes.append(kwargs)
        return None

    monkeypatch.setattr(service_module.CouponsRepo, "get_user_coupon", fake_get_user_coupon)
    monkeypatch.setattr(service_module.CouponsRepo, "get_coupon_by_id", fake_get_coupon_by_id)
    monkeypatch.setattr(service_module.CouponsRepo, "mark_used_if_available", fake_mark_used)

    with pytest.raises(CouponAlreadyRedeemedError) as exc_info:
        await CouponService.redeem(
            object(),
            user_coupon_id=claim.id,
            order_id=uuid4(),
            now_utc=NOW,
            order_amount=Decimal("1000"),
        )

    assert exc_info.value.used_order_id == bound_order_id
    assert writes == []
