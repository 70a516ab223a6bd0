from __future__ import annotations

from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal

from loyalty.coupons.types import CouponRejectReason, CouponState, CouponValidation
from loyalty.db.models.coupons import DISCOUNT_TYPE_PERCENTAGE, Coupon
from loyalty.db.models.user_coupons import UserCoupon

ZERO = Decimal("0")


def coupon_state(user_coupon: UserCoupon, coupon: Coupon | None, *, now_utc: datetime) -> CouponState:
    if user_coupon.is_used:
        return CouponState.USED
    if user_coupon.expires_at is not None and user_coupon.expires_at <= now_utc:
        return CouponState.EXPIRED
    if coupon is not None and coupon.valid_until is not None and coupon.valid_until <= now_utc:
        return CouponState.EXPIRED
    return CouponState.AVAILABLE


def calculate_discount(coupon: Coupon, order_amount: Decimal) -> Decimal:
    if order_amount <= 0:
        return ZERO

    if coupon.discount_type == DISCOUNT_TYPE_PERCENTAGE:
        discount = order_amount * coupon.discount_value / Decimal("100")
        if coupon.max_discount_amount is not None:
            discount = min(discount, coupon.max_discount_amount)
    else:
        discount = coupon.discount_value

    discount = min(discount, order_amount)
    return discount.quantize(Decimal("1"), rounding=ROUND_HALF_UP)


def validate_coupon(
    *,
    coupon: Coupon,
    user_coupon: UserCoupon | None,
    order_amount: Decimal,
    now_utc: datetime,
) -> CouponValidation:
    reason: CouponRejectReason | None = None
    state = coupon_state(user_coupon, coupon, now_utc=now_utc) if user_coupon is not None else None

    if not coupon.is_active:
        reason = CouponRejectReason.INACTIVE
    elif coupon.valid_from > now_utc:
        reason = CouponRejectReason.NOT_STARTED
    elif state is CouponState.USED:
        reason = CouponRejectReason.ALREADY_USED
    elif state is CouponState.EXPIRED or (
        coupon.valid_until is not None and coupon.valid_until <= now_utc
    ):
        reason = CouponRejectReason.EXPIRED
    elif order_amount < coupon.min_order_amount:
        reason = CouponRejectReason.MIN_ORDER_NOT_MET
    elif coupon.usage_limit is not None and coupon.used_count >= coupon.usage_limit:
        reason = CouponRejectReason.USAGE_LIMIT_REACHED

    if reason is not None:
        return CouponValidation(is_valid=False, discount_amount=ZERO, reason=reason)
    return CouponValidation(is_valid=True, discount_amount=calculate_discount(coupon, order_amount))
