from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from fastapi import APIRouter, Request
from pydantic import BaseModel, Field, model_validator

from loyalty.core.config import get_settings
from loyalty.coupons.coordinator import CouponRedemptionCoordinator
from loyalty.coupons.types import AvailableCoupon, CouponResult

from .internal_access import assert_internal_access, raise_for_storage_failure

router = APIRouter(tags=["internal", "coupons"])


class CouponRedeemRequest(BaseModel):
    order_id: UUID
    user_coupon_id: UUID | None = None
    code: str | None = Field(default=None, min_length=1, max_length=64)
    user_id: UUID | None = None
    order_amount: Decimal | None = Field(default=None, ge=0)

    @model_validator(mode="after")
    def _require_single_target(self) -> "CouponRedeemRequest":
        if (self.user_coupon_id is None) == (self.code is None):
            raise ValueError("exactly one of user_coupon_id or code is required")
        if self.code is not None and self.user_id is None:
            raise ValueError("user_id is required when redeeming by code")
        return self


class CouponValidateRequest(BaseModel):
    user_coupon_id: UUID
    order_amount: Decimal = Field(ge=0)
    user_id: UUID | None = None


class CouponGrantRequest(BaseModel):
    user_id: UUID
    coupon_id: UUID
    expires_at: datetime | None = None


class CouponResultResponse(BaseModel):
    success: bool
    user_coupon_id: UUID | None = None
    coupon_id: UUID | None = None
    used_order_id: UUID | None = None
    discount_amount: Decimal | None = None
    reason: str | None = None
    error_code: str | None = None
    message: str | None = None
    idempotent_replay: bool = False


class AvailableCouponResponse(BaseModel):
    user_coupon_id: UUID
    coupon_id: UUID
    code: str
    name: str
    discount_type: str
    discount_value: Decimal
    min_order_amount: Decimal
    max_discount_amount: Decimal | None = None
    expires_at: datetime | None = None


class AvailableCouponsResponse(BaseModel):
    user_id: UUID
    coupons: list[AvailableCouponResponse]


def get_coupon_coordinator() -> CouponRedemptionCoordinator:
    return CouponRedemptionCoordinator()


def _assert_internal_access(request: Request) -> None:
    assert_internal_access(request, settings=get_settings(), log_event="internal_coupons_auth_failed")


def _as_response(result: CouponResult) -> CouponResultResponse:
    raise_for_storage_failure(result.error_code)
    return CouponResultResponse(
        success=result.success,
        user_coupon_id=result.user_coupon_id,
        coupon_id=result.coupon_id,
        used_order_id=result.used_order_id,
        discount_amount=result.discount_amount,
        reason=result.reason,
        error_code=result.error_code,
        message=result.message,
        idempotent_replay=result.idempotent_replay,
    )


def _available_as_response(coupon: AvailableCoupon) -> AvailableCouponResponse:
    return AvailableCouponResponse(
        user_coupon_id=coupon.user_coupon_id,
        coupon_id=coupon.coupon_id,
        code=coupon.code,
        name=coupon.name,
        discount_type=coupon.discount_type,
        discount_value=coupon.discount_value,
        min_order_amount=coupon.min_order_amount,
        max_discount_amount=coupon.max_discount_amount,
        expires_at=coupon.expires_at,
    )


@router.post("/internal/coupons/redeem", response_model=CouponResultResponse)
async def redeem_coupon(payload: CouponRedeemRequest, request: Request) -> CouponResultResponse:
    _assert_internal_access(request)
    coordinator = get_coupon_coordinator()
    if payload.user_coupon_id is not None:
        result = await coordinator.redeem(
            user_coupon_id=payload.user_coupon_id,
            order_id=payload.order_id,
            user_id=payload.user_id,
            order_amount=payload.order_amount,
        )
    else:
        result = await coordinator.redeem_by_code(
            user_id=payload.user_id,
            code=payload.code,
            order_id=payload.order_id,
            order_amount=payload.order_amount,
        )
    return _as_response(result)


@router.post("/internal/coupons/validate", response_model=CouponResultResponse)
async def validate_coupon(payload: CouponValidateRequest, request: Request) -> CouponResultResponse:
    _assert_internal_access(request)
    result = await get_coupon_coordinator().validate(
        user_coupon_id=payload.user_coupon_id,
        order_amount=payload.order_amount,
        user_id=payload.user_id,
    )
    return _as_response(result)


@router.post("/internal/coupons/grant", response_model=CouponResultResponse)
async def grant_coupon(payload: CouponGrantRequest, request: Request) -> CouponResultResponse:
    _assert_internal_access(request)
    result = await get_coupon_coordinator().grant(
        user_id=payload.user_id,
        coupon_id=payload.coupon_id,
        expires_at=payload.expires_at,
    )
    return _as_response(result)


@router.get("/internal/coupons/{user_id}/available", response_model=AvailableCouponsResponse)
async def list_available_coupons(user_id: UUID, request: Request) -> AvailableCouponsResponse:
    _assert_internal_access(request)
    result = await get_coupon_coordinator().list_available(user_id=user_id)
    raise_for_storage_failure(result.error_code)
    return AvailableCouponsResponse(
        user_id=user_id,
        coupons=[_available_as_response(coupon) for coupon in result.coupons],
    )
