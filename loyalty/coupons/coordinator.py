from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal
from uuid import UUID

import structlog
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from loyalty.coupons.errors import (
    CouponAlreadyRedeemedError,
    CouponError,
    CouponExpiredError,
    CouponNotApplicableError,
    CouponUsageLimitReachedError,
)
from loyalty.coupons.service import CouponService
from loyalty.coupons.types import CouponRedemption, CouponRejectReason, CouponResult
from loyalty.db.session import SessionLocal

logger = structlog.get_logger(__name__)

STORAGE_ERRORS = (SQLAlchemyError, OSError)
STORAGE_ERROR_CODE = "STORAGE_ERROR"
REJECTION_CODES = {
    CouponRejectReason.EXPIRED: CouponExpiredError.code,
    CouponRejectReason.USAGE_LIMIT_REACHED: CouponUsageLimitReachedError.code,
    CouponRejectReason.ALREADY_USED: CouponAlreadyRedeemedError.code,
}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CouponRedemptionCoordinator:
    """Moves user coupons from available to used, at most once per claim."""

    def __init__(self, *, session_factory: async_sessionmaker[AsyncSession] | None = None) -> None:
        self._session_factory = session_factory if session_factory is not None else SessionLocal

    @staticmethod
    def _rejected(
        exc: CouponError,
        *,
        requested_order_id: UUID | None = None,
        **context: object,
    ) -> CouponResult:
        result = CouponResult(success=False, error_code=exc.code, message=str(exc) or exc.code)
        if isinstance(exc, CouponAlreadyRedeemedError):
            result.used_order_id = exc.used_order_id
            result.idempotent_replay = (
                requested_order_id is not None and exc.used_order_id == requested_order_id
            )
            logger.info(
                "coupon_redeem_rejected",
                error_code=exc.code,
                used_order_id=str(exc.used_order_id) if exc.used_order_id else None,
                **context,
            )
            return result
        if isinstance(exc, CouponNotApplicableError):
            result.reason = exc.reason
        logger.warning("coupon_redeem_rejected", error_code=exc.code, **context)
        return result

    @staticmethod
    def _storage_failure(event: str, **context: object) -> CouponResult:
        logger.exception(event, error_code=STORAGE_ERROR_CODE, **context)
        return CouponResult(
            success=False,
            error_code=STORAGE_ERROR_CODE,
            message="coupon storage unavailable, retry later",
        )

    @staticmethod
    def _redeemed(redemption: CouponRedemption, **context: object) -> CouponResult:
        logger.info(
            "coupon_redeemed",
            user_coupon_id=str(redemption.user_coupon_id),
            coupon_id=str(redemption.coupon_id),
            **context,
        )
        return CouponResult(
            success=True,
            user_coupon_id=redemption.user_coupon_id,
            coupon_id=redemption.coupon_id,
            used_order_id=redemption.order_id,
            discount_amount=redemption.discount_amount,
        )

    async def redeem(
        self,
        *,
        user_coupon_id: UUID,
        order_id: UUID,
        user_id: UUID | None = None,
        order_amount: Decimal | None = None,
        now_utc: datetime | None = None,
    ) -> CouponResult:
        context = {"user_coupon_id": str(user_coupon_id), "order_id": str(order_id)}
        try:
            async with self._session_factory.begin() as session:
                redemption = await CouponService.redeem(
                    session,
                    user_coupon_id=user_coupon_id,
                    order_id=order_id,
                    now_utc=now_utc or _utcnow(),
                    user_id=user_id,
                    order_amount=order_amount,
                )
        except CouponError as exc:
            result = self._rejected(exc, requested_order_id=order_id, **context)
            result.user_coupon_id = user_coupon_id
            return result
        except STORAGE_ERRORS:
            return self._storage_failure("coupon_redeem_failed", **context)
        return self._redeemed(redemption, order_id=str(order_id))

    async def redeem_by_code(
        self,
        *,
        user_id: UUID,
        code: str,
        order_id: UUID,
        order_amount: Decimal | None = None,
        now_utc: datetime | None = None,
    ) -> CouponResult:
        context = {"user_id": str(user_id), "order_id": str(order_id)}
        try:
            async with self._session_factory.begin() as session:
                redemption = await CouponService.redeem_by_code(
                    session,
                    user_id=user_id,
                    code=code,
                    order_id=order_id,
                    now_utc=now_utc or _utcnow(),
                    order_amount=order_amount,
                )
        except CouponError as exc:
            return self._rejected(exc, requested_order_id=order_id, **context)
        except STORAGE_ERRORS:
            return self._storage_failure("coupon_redeem_failed", **context)
        return self._redeemed(redemption, **context)

    async def validate(
        self,
        *,
        user_coupon_id: UUID,
        order_amount: Decimal,
        user_id: UUID | None = None,
        now_utc: datetime | None = None,
    ) -> CouponResult:
        effective_now = now_utc or _utcnow()
        try:
            async with self._session_factory() as session:
                validation = await CouponService.validate(
                    session,
                    user_coupon_id=user_coupon_id,
                    order_amount=order_amount,
                    now_utc=effective_now,
                    user_id=user_id,
                )
        except CouponError as exc:
            return CouponResult(
                success=False,
                user_coupon_id=user_coupon_id,
                error_code=exc.code,
                message=str(exc) or exc.code,
            )
        except STORAGE_ERRORS:
            return self._storage_failure("coupon_validate_failed", user_coupon_id=str(user_coupon_id))

        result = CouponResult(
            success=validation.is_valid,
            user_coupon_id=user_coupon_id,
            discount_amount=validation.discount_amount,
        )
        if validation.reason is not None:
            result.reason = validation.reason.value
            result.error_code = REJECTION_CODES.get(validation.reason, CouponNotApplicableError.code)
        return result

    async def grant(
        self,
        *,
        user_id: UUID,
        coupon_id: UUID,
        expires_at: datetime | None = None,
        now_utc: datetime | None = None,
    ) -> CouponResult:
        context = {"user_id": str(user_id), "coupon_id": str(coupon_id)}
        try:
            async with self._session_factory.begin() as session:
                user_coupon = await CouponService.grant(
                    session,
                    user_id=user_id,
                    coupon_id=coupon_id,
                    now_utc=now_utc or _utcnow(),
                    expires_at=expires_at,
                )
        except CouponError as exc:
            logger.warning("coupon_grant_rejected", error_code=exc.code, **context)
            return CouponResult(
                success=False,
                coupon_id=coupon_id,
                error_code=exc.code,
                message=str(exc) or exc.code,
            )
        except STORAGE_ERRORS:
            return self._storage_failure("coupon_grant_failed", **context)

        logger.info("coupon_granted", user_coupon_id=str(user_coupon.id), **context)
        return CouponResult(success=True, user_coupon_id=user_coupon.id, coupon_id=coupon_id)

    async def _list_available_once(self, *, user_id: UUID, now_utc: datetime) -> CouponResult:
        async with self._session_factory() as session:
            coupons = await CouponService.list_available(session, user_id=user_id, now_utc=now_utc)
        return CouponResult(success=True, coupons=coupons)

    async def list_available(self, *, user_id: UUID, now_utc: datetime | None = None) -> CouponResult:
        effective_now = now_utc or _utcnow()
        try:
            try:
                return await self._list_available_once(user_id=user_id, now_utc=effective_now)
            except STORAGE_ERRORS:
                logger.warning("coupon_list_retry", user_id=str(user_id))
            return await self._list_available_once(user_id=user_id, now_utc=effective_now)
        except STORAGE_ERRORS:
            return self._storage_failure("coupon_list_failed", user_id=str(user_id))
