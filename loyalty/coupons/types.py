from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID


class CouponState(str, Enum):
    AVAILABLE = "AVAILABLE"
    USED = "USED"
    EXPIRED = "EXPIRED"


class CouponRejectReason(str, Enum):
    INACTIVE = "INACTIVE"
    NOT_STARTED = "NOT_STARTED"
    EXPIRED = "EXPIRED"
    ALREADY_USED = "ALREADY_USED"
    MIN_ORDER_NOT_MET = "MIN_ORDER_NOT_MET"
    USAGE_LIMIT_REACHED = "USAGE_LIMIT_REACHED"


@dataclass(slots=True)
class CouponValidation:
    is_valid: bool
    discount_amount: Decimal
    reason: CouponRejectReason | None = None


@dataclass(slots=True)
class CouponRedemption:
    user_coupon_id: UUID
    coupon_id: UUID
    order_id: UUID
    used_at: datetime
    discount_amount: Decimal | None = None


@dataclass(slots=True)
class AvailableCoupon:
    user_coupon_id: UUID
    coupon_id: UUID
    code: str
    name: str
    discount_type: str
    discount_value: Decimal
    min_order_amount: Decimal
    max_discount_amount: Decimal | None
    expires_at: datetime | None


@dataclass(slots=True)
class CouponResult:
    success: bool
    user_coupon_id: UUID | None = None
    coupon_id: UUID | None = None
    used_order_id: UUID | None = None
    discount_amount: Decimal | None = None
    reason: str | None = None
    coupons: list[AvailableCoupon] = field(default_factory=list)
    error_code: str | None = None
    message: str | None = None
    idempotent_replay: bool = False
