from __future__ import annotations

from datetime import datetime, timedelta, timezone
from decimal import Decimal
from uuid import UUID, uuid4

from sqlalchemy import select

from loyalty.coupons.coordinator import CouponRedemptionCoordinator
from loyalty.db.models.coupons import Coupon
from loyalty.db.models.point_transactions import PointTransaction
from loyalty.db.models.point_wallets import PointWallet
from loyalty.db.repo.coupons_repo import CouponsRepo
from loyalty.db.repo.users_repo import UsersRepo
from loyalty.db.session import SessionLocal

UTC = timezone.utc


async def create_user() -> UUID:
    user_id = uuid4()
    async with SessionLocal.begin() as session:
        await UsersRepo.create(session, user_id=user_id)
    return user_id


async def create_coupon(*, now_utc: datetime, **overrides: object) -> UUID:
    values: dict[str, object] = {
        "id": uuid4(),
        "code": f"TEST{uuid4().hex[:8].upper()}",
        "name": "Integration coupon",
        "description": None,
        "discount_type": "FIXED_AMOUNT",
        "discount_value": Decimal("3000"),
        "min_order_amount": Decimal("0"),
        "max_discount_amount": None,
        "usage_limit": None,
        "used_count": 0,
        "is_active": True,
        "valid_from": now_utc - timedelta(days=1),
        "valid_until": now_utc + timedelta(days=30),
        "created_at": now_utc - timedelta(days=1),
        "updated_at": now_utc - timedelta(days=1),
    }
    values.update(overrides)
    async with SessionLocal.begin() as session:
        coupon = await CouponsRepo.create_coupon(session, coupon=Coupon(**values))
    return coupon.id


async def grant_coupon(*, user_id: UUID, coupon_id: UUID, now_utc: datetime) -> UUID:
    result = await CouponRedemptionCoordinator().grant(user_id=user_id, coupon_id=coupon_id, now_utc=now_utc)
    assert result.success is True, result
    assert result.user_coupon_id is not None
    return result.user_coupon_id


async def list_entries(user_id: UUID) -> list[PointTransaction]:
    async with SessionLocal() as session:
        result = await session.execute(
            select(PointTransaction)
            .where(PointTransaction.user_id == user_id)
            .order_by(PointTransaction.id.asc())
        )
        return list(result.scalars().all())


async def cached_balance(user_id: UUID) -> int | None:
    async with SessionLocal() as session:
        wallet = await session.get(PointWallet, user_id)
        return wallet.balance if wallet is not None else None
