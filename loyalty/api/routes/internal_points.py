from __future__ import annotations

from dataclasses import asdict
from datetime import datetime
from decimal import Decimal
from uuid import UUID

from fastapi import APIRouter, Query, Request
from pydantic import BaseModel, Field, model_validator

from loyalty.core.config import get_settings
from loyalty.points.ledger import PointsLedger
from loyalty.points.service import MAX_PAGE_SIZE
from loyalty.points.types import EntryType, LedgerResult, TransactionView

from .internal_access import assert_internal_access, raise_for_storage_failure

router = APIRouter(tags=["internal", "points"])


class PointsEarnRequest(BaseModel):
    user_id: UUID
    order_id: UUID
    amount: int | None = Field(default=None, gt=0)
    order_amount: Decimal | None = Field(default=None, gt=0)
    description: str = Field(default="", max_length=256)

    @model_validator(mode="after")
    def _require_amount_source(self) -> "PointsEarnRequest":
        if (self.amount is None) == (self.order_amount is None):
            raise ValueError("exactly one of amount or order_amount is required")
        return self


class PointsUseRequest(BaseModel):
    user_id: UUID
    order_id: UUID
    amount: int = Field(gt=0)
    order_amount: Decimal | None = Field(default=None, gt=0)
    coupon_discount: Decimal = Field(default=Decimal("0"), ge=0)
    description: str = Field(default="", max_length=256)


class PointsRefundRequest(BaseModel):
    user_id: UUID
    order_id: UUID
    refund_amount: Decimal = Field(ge=0)
    original_order_amount: Decimal = Field(gt=0)
    refund_id: str | None = Field(default=None, min_length=1, max_length=64)


class PointsReverseSpendRequest(BaseModel):
    user_id: UUID
    order_id: UUID
    description: str = Field(default="", max_length=256)


class PointsBonusRequest(BaseModel):
    user_id: UUID
    amount: int = Field(gt=0)
    description: str = Field(min_length=1, max_length=256)
    idempotency_key: str = Field(min_length=1, max_length=96)


class PointsUsageValidateRequest(BaseModel):
    user_id: UUID
    points_to_use: int = Field(ge=0)
    order_amount: Decimal = Field(ge=0)
    coupon_discount: Decimal = Field(default=Decimal("0"), ge=0)


class LedgerResultResponse(BaseModel):
    success: bool
    transaction_id: int | None = None
    points_earned: int | None = None
    points_used: int | None = None
    points_refunded: int | None = None
    points_restored: int | None = None
    unrecovered_points: int | None = None
    balance: int | None = None
    shortfall: int | None = None
    max_usable_points: int | None = None
    reason: str | None = None
    error_code: str | None = None
    message: str | None = None
    idempotent_replay: bool = False


class PointsBalanceResponse(BaseModel):
    user_id: UUID
    balance: int = Field(ge=0)


class PointsStatisticsResponse(BaseModel):
    user_id: UUID
    total_earned: int = Field(ge=0)
    total_used: int = Field(ge=0)
    total_expired: int = Field(ge=0)
    total_clawed_back: int = Field(ge=0)
    current_balance: int = Field(ge=0)
    expiring_soon: int = Field(ge=0)


class PointsTransactionResponse(BaseModel):
    id: int
    order_id: UUID | None = None
    entry_type: str
    amount: int
    signed_amount: int
    description: str
    expires_at: datetime | None = None
    reverses_transaction_id: int | None = None
    created_at: datetime


class PointsTransactionsResponse(BaseModel):
    user_id: UUID
    limit: int
    offset: int
    transactions: list[PointsTransactionResponse]


def get_points_ledger() -> PointsLedger:
    return PointsLedger()


def _assert_internal_access(request: Request) -> None:
    assert_internal_access(request, settings=get_settings(), log_event="internal_points_auth_failed")


def _as_response(result: LedgerResult) -> LedgerResultResponse:
    raise_for_storage_failure(result.error_code)
    payload = asdict(result)
    payload.pop("expired_transactions")
    payload.pop("points_expired")
    return LedgerResultResponse(**payload)


def _transaction_as_response(view: TransactionView) -> PointsTransactionResponse:
    return PointsTransactionResponse(
        id=view.id,
        order_id=view.order_id,
        entry_type=view.entry_type.value,
        amount=view.amount,
        signed_amount=view.signed_amount,
        description=view.description,
        expires_at=view.expires_at,
        reverses_transaction_id=view.reverses_transaction_id,
        created_at=view.created_at,
    )


@router.post("/internal/points/earn", response_model=LedgerResultResponse)
async def earn_points(payload: PointsEarnRequest, request: Request) -> LedgerResultResponse:
    _assert_internal_access(request)
    ledger = get_points_ledger()
    if payload.amount is not None:
        result = await ledger.earn_points(
            user_id=payload.user_id,
            order_id=payload.order_id,
            amount=payload.amount,
            description=payload.description,
        )
    else:
        result = await ledger.earn_order_points(
            user_id=payload.user_id,
            order_id=payload.order_id,
            order_amount=payload.order_amount,
        )
    return _as_response(result)


@router.post("/internal/points/use", response_model=LedgerResultResponse)
async def use_points(payload: PointsUseRequest, request: Request) -> LedgerResultResponse:
    _assert_internal_access(request)
    result = await get_points_ledger().use_points(
        user_id=payload.user_id,
        order_id=payload.order_id,
        amount=payload.amount,
        description=payload.description,
        order_amount=payload.order_amount,
        coupon_discount=payload.coupon_discount,
    )
    return _as_response(result)


@router.post("/internal/points/refund", response_model=LedgerResultResponse)
async def refund_points(payload: PointsRefundRequest, request: Request) -> LedgerResultResponse:
    _assert_internal_access(request)
    result = await get_points_ledger().refund_points(
        user_id=payload.user_id,
        order_id=payload.order_id,
        refund_amount=payload.refund_amount,
        original_order_amount=payload.original_order_amount,
        refund_id=payload.refund_id,
    )
    return _as_response(result)


@router.post("/internal/points/reverse-spend", response_model=LedgerResultResponse)
async def reverse_spend(payload: PointsReverseSpendRequest, request: Request) -> LedgerResultResponse:
    _assert_internal_access(request)
    result = await get_points_ledger().reverse_spend(
        user_id=payload.user_id,
        order_id=payload.order_id,
        description=payload.description,
    )
    return _as_response(result)


@router.post("/internal/points/bonus", response_model=LedgerResultResponse)
async def grant_bonus(payload: PointsBonusRequest, request: Request) -> LedgerResultResponse:
    _assert_internal_access(request)
    result = await get_points_ledger().grant_bonus(
        user_id=payload.user_id,
        amount=payload.amount,
        description=payload.description,
        idempotency_key=payload.idempotency_key,
    )
    return _as_response(result)


@router.post("/internal/points/usage/validate", response_model=LedgerResultResponse)
async def validate_points_usage(
    payload: PointsUsageValidateRequest,
    request: Request,
) -> LedgerResultResponse:
    _assert_internal_access(request)
    result = await get_points_ledger().validate_points_usage(
        user_id=payload.user_id,
        points_to_use=payload.points_to_use,
        order_amount=payload.order_amount,
        coupon_discount=payload.coupon_discount,
    )
    return _as_response(result)


@router.get("/internal/points/{user_id}/balance", response_model=PointsBalanceResponse)
async def get_points_balance(user_id: UUID, request: Request) -> PointsBalanceResponse:
    _assert_internal_access(request)
    result = await get_points_ledger().get_balance(user_id=user_id)
    raise_for_storage_failure(result.error_code)
    return PointsBalanceResponse(user_id=user_id, balance=result.balance or 0)


@router.get("/internal/points/{user_id}/statistics", response_model=PointsStatisticsResponse)
async def get_points_statistics(user_id: UUID, request: Request) -> PointsStatisticsResponse:
    _assert_internal_access(request)
    result = await get_points_ledger().get_statistics(user_id=user_id)
    raise_for_storage_failure(result.error_code)
    statistics = result.statistics
    return PointsStatisticsResponse(
        user_id=user_id,
        total_earned=statistics.total_earned,
        total_used=statistics.total_used,
        total_expired=statistics.total_expired,
        total_clawed_back=statistics.total_clawed_back,
        current_balance=statistics.current_balance,
        expiring_soon=statistics.expiring_soon,
    )


@router.get("/internal/points/{user_id}/transactions", response_model=PointsTransactionsResponse)
async def list_points_transactions(
    user_id: UUID,
    request: Request,
    limit: int = Query(default=50, ge=1, le=MAX_PAGE_SIZE),
    offset: int = Query(default=0, ge=0),
    order_id: UUID | None = Query(default=None),
    entry_type: EntryType | None = Query(default=None),
) -> PointsTransactionsResponse:
    _assert_internal_access(request)
    result = await get_points_ledger().list_transactions(
        user_id=user_id,
        limit=limit,
        offset=offset,
        order_id=order_id,
        entry_type=entry_type,
    )
    raise_for_storage_failure(result.error_code)
    return PointsTransactionsResponse(
        user_id=user_id,
        limit=limit,
        offset=offset,
        transactions=[_transaction_as_response(view) for view in result.transactions],
    )
