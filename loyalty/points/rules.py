from __future__ import annotations

from decimal import ROUND_FLOOR, Decimal

from loyalty.core.config import PointsPolicy
from loyalty.points.types import PointsUsageValidation, UsageRejectReason


def _floor_int(value: Decimal) -> int:
    return int(value.to_integral_value(rounding=ROUND_FLOOR))


def calculate_earn_points(order_amount: Decimal, policy: PointsPolicy) -> int:
    if order_amount <= 0:
        return 0
    return max(_floor_int(order_amount * policy.accrual_rate), policy.min_earn)


def payable_amount(order_amount: Decimal, coupon_discount: Decimal) -> Decimal:
    return max(Decimal("0"), order_amount - coupon_discount)


def max_usable_points(*, balance: int, payable: Decimal, policy: PointsPolicy) -> int:
    if balance < policy.min_spend:
        return 0
    return max(0, min(balance, _floor_int(payable * policy.max_spend_ratio)))


def validate_points_usage(
    *,
    balance: int,
    points_to_use: int,
    order_amount: Decimal,
    coupon_discount: Decimal,
    policy: PointsPolicy,
) -> PointsUsageValidation:
    payable = payable_amount(order_amount, coupon_discount)
    max_usable = max_usable_points(balance=balance, payable=payable, policy=policy)

    reason: UsageRejectReason | None = None
    if points_to_use <= 0:
        reason = UsageRejectReason.EMPTY
    elif points_to_use < policy.min_spend:
        reason = UsageRejectReason.BELOW_MINIMUM
    elif points_to_use > balance:
        reason = UsageRejectReason.INSUFFICIENT_BALANCE
    elif points_to_use > max_usable:
        reason = UsageRejectReason.ABOVE_MAXIMUM
    elif payable <= policy.min_order_for_spend:
        reason = UsageRejectReason.ORDER_TOO_SMALL

    return PointsUsageValidation(
        is_valid=reason is None,
        max_usable_points=max_usable,
        reason=reason,
    )
