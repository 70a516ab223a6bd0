from __future__ import annotations

from decimal import ROUND_FLOOR, Decimal

import structlog

logger = structlog.get_logger(__name__)


def clawback(total_earned: int, refund_amount: Decimal, order_amount: Decimal) -> int:
    """Points to take back when ``refund_amount`` of an ``order_amount`` order is returned.

    Rounds down, so a customer never loses more than the refunded share of what the
    order earned. Refunds larger than the order are treated as full refunds.
    """
    if order_amount <= 0:
        logger.warning(
            "refund_clawback_ratio_invalid",
            total_earned=total_earned,
            refund_amount=str(refund_amount),
            order_amount=str(order_amount),
        )
        return 0
    if total_earned <= 0 or refund_amount <= 0:
        return 0

    refunded = min(refund_amount, order_amount)
    points = (Decimal(total_earned) * refunded / order_amount).to_integral_value(rounding=ROUND_FLOOR)
    return int(points)
