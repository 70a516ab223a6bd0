from __future__ import annotations

from collections.abc import Awaitable, Callable
from datetime import datetime, timezone
from decimal import Decimal
from typing import TypeVar
from uuid import UUID

import structlog
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from loyalty.core.config import PointsPolicy, get_settings
from loyalty.db.session import SessionLocal
from loyalty.points.errors import (
    DuplicateTransactionError,
    InsufficientBalanceError,
    NothingToClawBackError,
    PointsError,
    PointsUsageNotAllowedError,
)
from loyalty.points.service import PointsService
from loyalty.points.types import EntryType, LedgerReadResult, LedgerResult, UsageRejectReason

logger = structlog.get_logger(__name__)

# asyncpg connect failures and timeouts surface as OSError subclasses.
STORAGE_ERRORS = (SQLAlchemyError, OSError)
STORAGE_ERROR_CODE = "STORAGE_ERROR"
DEFAULT_EXPIRY_BATCH_SIZE = 500
MAX_EXPIRY_BATCHES = 1000

T = TypeVar("T")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class PointsLedger:
    """Transaction boundary of the points ledger.

    Each call runs in its own database transaction and reports the outcome as a
    :class:`LedgerResult`; domain rejections and storage failures never escape as
    exceptions. Reads are retried once on a storage failure, writes never are.
    """

    def __init__(
        self,
        *,
        session_factory: async_sessionmaker[AsyncSession] | None = None,
        policy: PointsPolicy | None = None,
    ) -> None:
        self._session_factory = session_factory if session_factory is not None else SessionLocal
        self._policy = policy if policy is not None else get_settings().points_policy

    @property
    def policy(self) -> PointsPolicy:
        return self._policy

    @staticmethod
    def _rejected(
        event: str,
        exc: PointsError,
        *,
        replay_field: str | None = None,
        **context: object,
    ) -> LedgerResult:
        result = LedgerResult(success=False, error_code=exc.code, message=str(exc) or exc.code)
        if isinstance(exc, DuplicateTransactionError):
            result.idempotent_replay = True
            result.transaction_id = exc.transaction_id
            if replay_field is not None:
                setattr(result, replay_field, exc.amount)
            logger.info(event, error_code=exc.code, transaction_id=exc.transaction_id, **context)
            return result

        if isinstance(exc, InsufficientBalanceError):
            result.shortfall = exc.shortfall
            result.balance = exc.available
        elif isinstance(exc, PointsUsageNotAllowedError):
            result.reason = exc.reason
            result.max_usable_points = exc.max_usable_points
        elif isinstance(exc, NothingToClawBackError):
            logger.info(event, error_code=exc.code, **context)
            return result
        logger.warning(event, error_code=exc.code, **context)
        return result

    @staticmethod
    def _storage_failure(event: str, **context: object) -> LedgerResult:
        logger.exception(event, error_code=STORAGE_ERROR_CODE, **context)
        return LedgerResult(
            success=False,
            error_code=STORAGE_ERROR_CODE,
            message="points storage unavailable, retry later",
        )

    async def _read(self, operation: str, reader: Callable[[AsyncSession], Awaitable[T]]) -> T:
        try:
            async with self._session_factory() as session:
                return await reader(session)
        except STORAGE_ERRORS:
            logger.warning("points_read_retry", operation=operation)
        async with self._session_factory() as session:
            return await reader(session)

    async def earn_points(
        self,
        *,
        user_id: UUID,
        order_id: UUID,
        amount: int,
        description: str = "",
        now_utc: datetime | None = None,
    ) -> LedgerResult:
        context = {"user_id": str(user_id), "order_id": str(order_id)}
        try:
            async with self._session_factory.begin() as session:
                outcome = await PointsService.earn_points(
                    session,
                    user_id=user_id,
                    order_id=order_id,
                    amount=amount,
                    description=description or f"points earned for order {order_id}",
                    now_utc=now_utc or _utcnow(),
                    policy=self._policy,
                )
        except PointsError as exc:
            return self._rejected("points_earn_rejected", exc, replay_field="points_earned", **context)
        except STORAGE_ERRORS:
            return self._storage_failure("points_earn_failed", **context)

        logger.info("points_earned", points=outcome.amount, transaction_id=outcome.transaction_id, **context)
        return LedgerResult(
            success=True,
            transaction_id=outcome.transaction_id,
            points_earned=outcome.amount,
            balance=max(0, outcome.balance_after),
        )

    async def earn_order_points(
        self,
        *,
        user_id: UUID,
        order_id: UUID,
        order_amount: Decimal,
        now_utc: datetime | None = None,
    ) -> LedgerResult:
        context = {"user_id": str(user_id), "order_id": str(order_id)}
        try:
            async with self._session_factory.begin() as session:
                outcome = await PointsService.earn_order_points(
                    session,
                    user_id=user_id,
                    order_id=order_id,
                    order_amount=order_amount,
                    now_utc=now_utc or _utcnow(),
                    policy=self._policy,
                )
        except PointsError as exc:
            return self._rejected("points_earn_rejected", exc, replay_field="points_earned", **context)
        except STORAGE_ERRORS:
            return self._storage_failure("points_earn_failed", **context)

        logger.info(
            "points_earned",
            points=outcome.amount,
            order_amount=str(order_amount),
            transaction_id=outcome.transaction_id,
            **context,
        )
        return LedgerResult(
            success=True,
            transaction_id=outcome.transaction_id,
            points_earned=outcome.amount,
            balance=max(0, outcome.balance_after),
        )

    async def grant_bonus(
        self,
        *,
        user_id: UUID,
        amount: int,
        description: str,
        idempotency_key: str,
        now_utc: datetime | None = None,
    ) -> LedgerResult:
        context = {"user_id": str(user_id), "idempotency_key": idempotency_key}
        try:
            async with self._session_factory.begin() as session:
                outcome = await PointsService.grant_bonus(
                    session,
                    user_id=user_id,
                    amount=amount,
                    description=description,
                    idempotency_key=idempotency_key,
                    now_utc=now_utc or _utcnow(),
                    policy=self._policy,
                )
        except PointsError as exc:
            return self._rejected("points_bonus_rejected", exc, replay_field="points_earned", **context)
        except STORAGE_ERRORS:
            return self._storage_failure("points_bonus_failed", **context)

        logger.info("points_bonus_granted", points=outcome.amount, **context)
        return LedgerResult(
            success=True,
            transaction_id=outcome.transaction_id,
            points_earned=outcome.amount,
            balance=max(0, outcome.balance_after),
        )

    async def use_points(
        self,
        *,
        user_id: UUID,
        order_id: UUID,
        amount: int,
        description: str = "",
        order_amount: Decimal | None = None,
        coupon_discount: Decimal = Decimal("0"),
        now_utc: datetime | None = None,
    ) -> LedgerResult:
        context = {"user_id": str(user_id), "order_id": str(order_id), "points": amount}
        try:
            async with self._session_factory.begin() as session:
                outcome = await PointsService.use_points(
                    session,
                    user_id=user_id,
                    order_id=order_id,
                    amount=amount,
                    description=description or f"points used for order {order_id}",
                    now_utc=now_utc or _utcnow(),
                    policy=self._policy,
                    order_amount=order_amount,
                    coupon_discount=coupon_discount,
                )
        except PointsError as exc:
            return self._rejected("points_spend_rejected", exc, replay_field="points_used", **context)
        except STORAGE_ERRORS:
            return self._storage_failure("points_spend_failed", **context)

        logger.info("points_spent", transaction_id=outcome.transaction_id, **context)
        return LedgerResult(
            success=True,
            transaction_id=outcome.transaction_id,
            points_used=outcome.amount,
            balance=max(0, outcome.balance_after),
        )

    async def refund_points(
        self,
        *,
        user_id: UUID,
        order_id: UUID,
        refund_amount: Decimal,
        original_order_amount: Decimal,
        refund_id: str | None = None,
        now_utc: datetime | None = None,
    ) -> LedgerResult:
        context = {
            "user_id": str(user_id),
            "order_id": str(order_id),
            "refund_amount": str(refund_amount),
            "original_order_amount": str(original_order_amount),
        }
        try:
            async with self._session_factory.begin() as session:
                outcome = await PointsService.refund_points(
                    session,
                    user_id=user_id,
                    order_id=order_id,
                    refund_amount=refund_amount,
                    original_order_amount=original_order_amount,
                    now_utc=now_utc or _utcnow(),
                    refund_id=refund_id,
                )
        except PointsError as exc:
            return self._rejected("points_clawback_rejected", exc, replay_field="points_refunded", **context)
        except STORAGE_ERRORS:
            return self._storage_failure("points_clawback_failed", **context)

        logger.info(
            "points_clawed_back",
            points=outcome.points_clawed_back,
            unrecovered_points=outcome.unrecovered_points,
            **context,
        )
        return LedgerResult(
            success=True,
            transaction_id=outcome.transaction_id,
            points_refunded=outcome.points_clawed_back,
            unrecovered_points=outcome.unrecovered_points,
            balance=max(0, outcome.balance_after),
        )

    async def reverse_spend(
        self,
        *,
        user_id: UUID,
        order_id: UUID,
        description: str = "",
        now_utc: datetime | None = None,
    ) -> LedgerResult:
        context = {"user_id": str(user_id), "order_id": str(order_id)}
        try:
            async with self._session_factory.begin() as session:
                outcome = await PointsService.reverse_spend(
                    session,
                    user_id=user_id,
                    order_id=order_id,
                    description=description or f"points restored for cancelled order {order_id}",
                    now_utc=now_utc or _utcnow(),
                    policy=self._policy,
                )
        except PointsError as exc:
            return self._rejected("points_spend_reversal_rejected", exc, replay_field="points_restored", **context)
        except STORAGE_ERRORS:
            return self._storage_failure("points_spend_reversal_failed", **context)

        logger.info("points_spend_reversed", points=outcome.amount, **context)
        return LedgerResult(
            success=True,
            transaction_id=outcome.transaction_id,
            points_restored=outcome.amount,
            balance=max(0, outcome.balance_after),
        )

    async def expire_points(
        self,
        *,
        now_utc: datetime | None = None,
        batch_size: int = DEFAULT_EXPIRY_BATCH_SIZE,
    ) -> LedgerResult:
        """Expire every lapsed credit, one transaction per batch."""
        effective_now = now_utc or _utcnow()
        expired_transactions = 0
        expired_points = 0
        for _ in range(MAX_EXPIRY_BATCHES):
            try:
                async with self._session_factory.begin() as session:
                    batch = await PointsService.expire_points(
                        session,
                        now_utc=effective_now,
                        batch_size=batch_size,
                    )
            except STORAGE_ERRORS:
                failure = self._storage_failure(
                    "points_expiry_failed",
                    expired_transactions=expired_transactions,
                )
                failure.expired_transactions = expired_transactions
                failure.points_expired = expired_points
                return failure

            expired_transactions += batch.expired_transactions
            expired_points += batch.expired_points
            if batch.scanned < batch_size:
                break

        logger.info(
            "points_expiry_finished",
            expired_transactions=expired_transactions,
            expired_points=expired_points,
        )
        return LedgerResult(
            success=True,
            expired_transactions=expired_transactions,
            points_expired=expired_points,
        )

    async def validate_points_usage(
        self,
        *,
        user_id: UUID,
        points_to_use: int,
        order_amount: Decimal,
        coupon_discount: Decimal = Decimal("0"),
    ) -> LedgerResult:
        try:
            balance, validation = await self._read(
                "validate_points_usage",
                lambda session: PointsService.check_points_usage(
                    session,
                    user_id=user_id,
                    points_to_use=points_to_use,
                    order_amount=order_amount,
                    coupon_discount=coupon_discount,
                    policy=self._policy,
                ),
            )
        except STORAGE_ERRORS:
            return self._storage_failure("points_usage_check_failed", user_id=str(user_id))

        result = LedgerResult(
            success=validation.is_valid,
            balance=balance,
            max_usable_points=validation.max_usable_points,
        )
        if validation.reason is UsageRejectReason.INSUFFICIENT_BALANCE:
            result.error_code = InsufficientBalanceError.code
            result.shortfall = max(0, points_to_use - balance)
        elif validation.reason is not None:
            result.error_code = PointsUsageNotAllowedError.code
        if validation.reason is not None:
            result.reason = validation.reason.value
            result.message = f"points usage rejected: {validation.reason.value}"
        return result

    async def get_balance(self, *, user_id: UUID) -> LedgerReadResult:
        try:
            balance = await self._read(
                "get_balance",
                lambda session: PointsService.get_balance(session, user_id=user_id),
            )
        except STORAGE_ERRORS:
            logger.exception("points_balance_read_failed", user_id=str(user_id))
            return LedgerReadResult(success=False, user_id=user_id, error_code=STORAGE_ERROR_CODE)
        return LedgerReadResult(success=True, user_id=user_id, balance=balance)

    async def get_statistics(
        self,
        *,
        user_id: UUID,
        now_utc: datetime | None = None,
    ) -> LedgerReadResult:
        effective_now = now_utc or _utcnow()
        try:
            statistics = await self._read(
                "get_statistics",
                lambda session: PointsService.get_statistics(
                    session,
                    user_id=user_id,
                    now_utc=effective_now,
                    policy=self._policy,
                ),
            )
        except STORAGE_ERRORS:
            logger.exception("points_statistics_read_failed", user_id=str(user_id))
            return LedgerReadResult(success=False, user_id=user_id, error_code=STORAGE_ERROR_CODE)
        return LedgerReadResult(
            success=True,
            user_id=user_id,
            balance=statistics.current_balance,
            statistics=statistics,
        )

    async def list_transactions(
        self,
        *,
        user_id: UUID,
        limit: int = 50,
        offset: int = 0,
        order_id: UUID | None = None,
        entry_type: EntryType | None = None,
    ) -> LedgerReadResult:
        try:
            transactions = await self._read(
                "list_transactions",
                lambda session: PointsService.list_transactions(
                    session,
                    user_id=user_id,
                    limit=limit,
                    offset=offset,
                    order_id=order_id,
                    entry_type=entry_type,
                ),
            )
        except STORAGE_ERRORS:
            logger.exception("points_transactions_read_failed", user_id=str(user_id))
            return LedgerReadResult(success=False, user_id=user_id, error_code=STORAGE_ERROR_CODE)
        return LedgerReadResult(success=True, user_id=user_id, transactions=transactions)
