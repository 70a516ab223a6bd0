from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from uuid import UUID, uuid4

from sqlalchemy.ext.asyncio import AsyncSession

from loyalty.coupons.errors import (
    CouponAlreadyRedeemedError,
    CouponExpiredError,
    CouponNotApplicableError,
    CouponNotFoundError,
    CouponUsageLimitReachedError,
    CouponUserNotFoundError,
)
from loyalty.coupons.rules import coupon_state, validate_coupon
from loyalty.coupons.types import (
    AvailableCoupon,
    CouponRedemption,
    CouponRejectReason,
    CouponState,
    CouponValidation,
)
from loyalty.db.models.coupons import Coupon
from loyalty.db.models.user_coupons import UserCoupon
from loyalty.db.repo.coupons_repo import CouponsRepo
from loyalty.db.repo.users_repo import UsersRepo


def _raise_for_rejection(reason: CouponRejectReason, *, user_coupon: UserCoupon | None) -> None:
    if reason is CouponRejectReason.EXPIRED:
        raise CouponExpiredError
    if reason is CouponRejectReason.USAGE_LIMIT_REACHED:
        raise CouponUsageLimitReachedError
    if reason is CouponRejectReason.ALREADY_USED:
        raise CouponAlreadyRedeemedError(
            used_order_id=user_coupon.used_order_id if user_coupon is not None else None
        )
    raise CouponNotApplicableError(reason.value)


def _to_available(user_coupon: UserCoupon, coupon: Coupon) -> AvailableCoupon:
    return AvailableCoupon(
        user_coupon_id=user_coupon.id,
        coupon_id=coupon.id,
        code=coupon.code,
        name=coupon.name,
        discount_type=coupon.discount_type,
        discount_value=coupon.discount_value,
        min_order_amount=coupon.min_order_amount,
        max_discount_amount=coupon.max_discount_amount,
        expires_at=user_coupon.expires_at,
    )


class CouponService:
    @staticmethod
    async def _load_claim(
        session: AsyncSession,
        *,
        user_coupon_id: UUID,
        user_id: UUID | None,
    ) -> tuple[UserCoupon, Coupon]:
        user_coupon = await CouponsRepo.get_user_coupon(session, user_coupon_id)
        if user_coupon is None or (user_id is not None and user_coupon.user_id != user_id):
            raise CouponNotFoundError
        coupon = await CouponsRepo.get_coupon_by_id(session, user_coupon.coupon_id)
        if coupon is None:
            raise CouponNotFoundError
        return user_coupon, coupon

    @staticmethod
    async def redeem(
        session: AsyncSession,
        *,
        user_coupon_id: UUID,
        order_id: UUID,
        now_utc: datetime,
        user_id: UUID | None = None,
        order_amount: Decimal | None = None,
    ) -> CouponRedemption:
        user_coupon, coupon = await CouponService._load_claim(
            session,
            user_coupon_id=user_coupon_id,
            user_id=user_id,
        )

        if user_coupon.is_used:
            raise CouponAlreadyRedeemedError(used_order_id=user_coupon.used_order_id)

        discount_amount: Decimal | None = None
        if order_amount is not None:
            # The claim's own state is decided by the conditional write below.
            validation = validate_coupon(
                coupon=coupon,
                user_coupon=None,
                order_amount=order_amount,
                now_utc=now_utc,
            )
            if validation.reason is not None:
                _raise_for_rejection(validation.reason, user_coupon=user_coupon)
            discount_amount = validation.discount_amount
        elif not coupon.is_active:
            raise CouponNotApplicableError(CouponRejectReason.INACTIVE.value)
        elif coupon.valid_from > now_utc:
            raise CouponNotApplicableError(CouponRejectReason.NOT_STARTED.value)
        elif coupon.valid_until is not None and coupon.valid_until <= now_utc:
            raise CouponExpiredError

        redeemed = await CouponsRepo.mark_used_if_available(
            session,
            user_coupon_id=user_coupon.id,
            order_id=order_id,
            now_utc=now_utc,
            user_id=user_id,
        )
        if redeemed is None:
            await session.refresh(user_coupon)
            if coupon_state(user_coupon, coupon, now_utc=now_utc) is CouponState.EXPIRED:
                raise CouponExpiredError
            raise CouponAlreadyRedeemedError(used_order_id=user_coupon.used_order_id)

        if not await CouponsRepo.increment_used_count(session, coupon_id=coupon.id, now_utc=now_utc):
            raise CouponUsageLimitReachedError

        return CouponRedemption(
            user_coupon_id=redeemed.id,
            coupon_id=coupon.id,
            order_id=order_id,
            used_at=now_utc,
            discount_amount=discount_amount,
        )

    @staticmethod
    async def redeem_by_code(
        session: AsyncSession,
        *,
        user_id: UUID,
        code: str,
        order_id: UUID,
        now_utc: datetime,
        order_amount: Decimal | None = None,
    ) -> CouponRedemption:
        coupon = await CouponsRepo.get_coupon_by_code(session, code.strip().upper())
        if coupon is None:
            raise CouponNotFoundError
        user_coupon = await CouponsRepo.find_available_user_coupon(
            session,
            user_id=user_id,
            coupon_id=coupon.id,
            now_utc=now_utc,
        )
        if user_coupon is None:
            raise CouponNotFoundError
        return await CouponService.redeem(
            session,
            user_coupon_id=user_coupon.id,
            order_id=order_id,
            now_utc=now_utc,
            user_id=user_id,
            order_amount=order_amount,
        )

    @staticmethod
    async def validate(
        session: AsyncSession,
        *,
        user_coupon_id: UUID,
        order_amount: Decimal,
        now_utc: datetime,
        user_id: UUID | None = None,
    ) -> CouponValidation:
        user_coupon, coupon = await CouponService._load_claim(
            session,
            user_coupon_id=user_coupon_id,
            user_id=user_id,
        )
        return validate_coupon(
            coupon=coupon,
            user_coupon=user_coupon,
            order_amount=order_amount,
            now_utc=now_utc,
        )

    @staticmethod
    async def grant(
        session: AsyncSession,
        *,
        user_id: UUID,
        coupon_id: UUID,
        now_utc: datetime,
        expires_at: datetime | None = None,
    ) -> UserCoupon:
        if await UsersRepo.get_by_id(session, user_id) is None:
            raise CouponUserNotFoundError
        coupon = await CouponsRepo.get_coupon_by_id(session, coupon_id)
        if coupon is None:
            raise CouponNotFoundError
        if not coupon.is_active:
            raise CouponNotApplicableError(CouponRejectReason.INACTIVE.value)
        if coupon.valid_until is not None and coupon.valid_until <= now_utc:
            raise CouponExpiredError

        effective_expiry = expires_at if expires_at is not None else coupon.valid_until
        if coupon.valid_until is not None and effective_expiry is not None:
            effective_expiry = min(effective_expiry, coupon.valid_until)

        return await CouponsRepo.create_user_coupon(
            session,
            user_coupon=UserCoupon(
                id=uuid4(),
                user_id=user_id,
                coupon_id=coupon.id,
                is_used=False,
                used_at=None,
                used_order_id=None,
                expires_at=effective_expiry,
                created_at=now_utc,
            ),
        )

    @staticmethod
    async def list_available(
        session: AsyncSession,
        *,
        user_id: UUID,
        now_utc: datetime,
    ) -> list[AvailableCoupon]:
        claims = await CouponsRepo.list_unused_for_user(session, user_id=user_id, now_utc=now_utc)
        return [
            _to_available(user_coupon, coupon)
            for user_coupon, coupon in claims
            if coupon.valid_from <= now_utc
            and coupon_state(user_coupon, coupon, now_utc=now_utc) is CouponState.AVAILABLE
        ]
