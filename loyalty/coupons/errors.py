from __future__ import annotations

from uuid import UUID


class CouponError(Exception):
    code = "COUPON_ERROR"


class CouponNotFoundError(CouponError):
    code = "COUPON_NOT_FOUND"


class CouponExpiredError(CouponError):
    code = "COUPON_EXPIRED"


class CouponNotApplicableError(CouponError):
    code = "COUPON_NOT_APPLICABLE"

    def __init__(self, reason: str) -> None:
        super().__init__(f"coupon not applicable: {reason}")
        self.reason = reason


class CouponUsageLimitReachedError(CouponError):
    code = "COUPON_USAGE_LIMIT_REACHED"


class CouponAlreadyRedeemedError(CouponError):
    code = "ALREADY_REDEEMED"

    def __init__(self, used_order_id: UUID | None = None) -> None:
        super().__init__("coupon already redeemed")
        self.used_order_id = used_order_id


class CouponUserNotFoundError(CouponError):
    code = "USER_NOT_FOUND"
