from __future__ import annotations

from datetime import datetime
from uuid import UUID

from sqlalchemy import or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from loyalty.db.models.coupons import Coupon
from loyalty.db.models.user_coupons import UserCoupon


def _unexpired_claim(now_utc: datetime):
    return or_(UserCoupon.expires_at.is_(None), UserCoupon.expires_at > now_utc)


class CouponsRepo:
    @staticmethod
    async def get_coupon_by_id(session: AsyncSession, coupon_id: UUID) -> Coupon | None:
        return await session.get(Coupon, coupon_id)

    @staticmethod
    async def get_coupon_by_code(session: AsyncSession, code: str) -> Coupon | None:
        stmt = select(Coupon).where(Coupon.code == code)
        result = await session.execute(stmt)
        return result.scalar_one_or_none()

    @staticmethod
    async def create_coupon(session: AsyncSession, *, coupon: Coupon) -> Coupon:
        session.add(coupon)
        await session.flush()
        return coupon

    @staticmethod
    async def get_user_coupon(session: AsyncSession, user_coupon_id: UUID) -> UserCoupon | None:
        return await session.get(UserCoupon, user_coupon_id)

    @staticmethod
    async def create_user_coupon(session: AsyncSession, *, user_coupon: UserCoupon) -> UserCoupon:
        session.add(user_coupon)
        await session.flush()
        return user_coupon

    @staticmethod
    async def find_available_user_coupon(
        session: AsyncSession,
        *,
        user_id: UUID,
        coupon_id: UUID,
        now_utc: datetime,
    ) -> UserCoupon | None:
        stmt = (
            select(UserCoupon)
            .where(
                UserCoupon.user_id == user_id,
                UserCoupon.coupon_id == coupon_id,
                UserCoupon.is_used.is_(False),
                _unexpired_claim(now_utc),
            )
            .order_by(UserCoupon.expires_at.asc().nullslast(), UserCoupon.created_at.asc())
            .limit(1)
        )
        result = await session.execute(stmt)
        return result.scalar_one_or_none()

    @staticmethod
    async def mark_used_if_available(
        session: AsyncSession,
        *,
        user_coupon_id: UUID,
        order_id: UUID,
        now_utc: datetime,
        user_id: UUID | None = None,
    ) -> UserCoupon | None:
        """Single conditional write; ``None`` means the claim was not available any more."""
        stmt = (
            update(UserCoupon)
            .where(
                UserCoupon.id == user_coupon_id,
                UserCoupon.is_used.is_(False),
                _unexpired_claim(now_utc),
            )
            .values(is_used=True, used_at=now_utc, used_order_id=order_id)
            .returning(UserCoupon)
        )
        if user_id is not None:
            stmt = stmt.where(UserCoupon.user_id == user_id)
        result = await session.execute(stmt)
        return result.scalar_one_or_none()

    @staticmethod
    async def increment_used_count(
        session: AsyncSession,
        *,
        coupon_id: UUID,
        now_utc: datetime,
    ) -> bool:
        stmt = (
            update(Coupon)
            .where(
                Coupon.id == coupon_id,
                or_(Coupon.usage_limit.is_(None), Coupon.used_count < Coupon.usage_limit),
            )
            .values(used_count=Coupon.used_count + 1, updated_at=now_utc)
        )
        result = await session.execute(stmt)
        return bool(result.rowcount)

    @staticmethod
    async def list_unused_for_user(
        session: AsyncSession,
        *,
        user_id: UUID,
        now_utc: datetime,
    ) -> list[tuple[UserCoupon, Coupon]]:
        stmt = (
            select(UserCoupon, Coupon)
            .join(Coupon, Coupon.id == UserCoupon.coupon_id)
            .where(
                UserCoupon.user_id == user_id,
                UserCoupon.is_used.is_(False),
                _unexpired_claim(now_utc),
                Coupon.is_active.is_(True),
            )
            .order_by(UserCoupon.expires_at.asc().nullslast(), UserCoupon.created_at.asc())
        )
        result = await session.execute(stmt)
        return [(user_coupon, coupon) for user_coupon, coupon in result.all()]
