from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING
from uuid import UUID

if TYPE_CHECKING:
    from loyalty.points.aggregation import PointStatistics


class EntryType(str, Enum):
    EARNED = "EARNED"
    BONUS = "BONUS"
    USED = "USED"
    EXPIRED = "EXPIRED"
    EARN_CLAWBACK = "EARN_CLAWBACK"
    SPEND_REVERSAL = "SPEND_REVERSAL"

    @property
    def is_credit(self) -> bool:
        return self in (EntryType.EARNED, EntryType.BONUS, EntryType.SPEND_REVERSAL)


class UsageRejectReason(str, Enum):
    EMPTY = "EMPTY"
    BELOW_MINIMUM = "BELOW_MINIMUM"
    INSUFFICIENT_BALANCE = "INSUFFICIENT_BALANCE"
    ABOVE_MAXIMUM = "ABOVE_MAXIMUM"
    ORDER_TOO_SMALL = "ORDER_TOO_SMALL"


@dataclass(slots=True)
class PointsUsageValidation:
    is_valid: bool
    max_usable_points: int
    reason: UsageRejectReason | None = None


@dataclass(slots=True)
class PointsWriteResult:
    transaction_id: int
    entry_type: EntryType
    amount: int
    balance_after: int
    idempotent_replay: bool = False


@dataclass(slots=True)
class ClawbackResult:
    transaction_id: int
    points_clawed_back: int
    unrecovered_points: int
    balance_after: int
    idempotent_replay: bool = False


@dataclass(slots=True)
class ExpiryRunResult:
    scanned: int
    expired_transactions: int
    expired_points: int
    users_touched: int


@dataclass(slots=True)
class TransactionView:
    id: int
    user_id: UUID
    order_id: UUID | None
    entry_type: EntryType
    amount: int
    description: str
    expires_at: datetime | None
    reverses_transaction_id: int | None
    created_at: datetime

    @property
    def signed_amount(self) -> int:
        return self.amount if self.entry_type.is_credit else -self.amount


@dataclass(slots=True)
class LedgerResult:
    """Outcome of a ledger write as seen by order and checkout callers."""

    success: bool
    transaction_id: int | None = None
    points_earned: int | None = None
    points_used: int | None = None
    points_refunded: int | None = None
    points_restored: int | None = None
    unrecovered_points: int | None = None
    expired_transactions: int | None = None
    points_expired: int | None = None
    balance: int | None = None
    shortfall: int | None = None
    max_usable_points: int | None = None
    reason: str | None = None
    error_code: str | None = None
    message: str | None = None
    idempotent_replay: bool = False


@dataclass(slots=True)
class LedgerReadResult:
    success: bool
    user_id: UUID
    balance: int | None = None
    statistics: PointStatistics | None = None
    transactions: list[TransactionView] = field(default_factory=list)
    error_code: str | None = None
    message: str | None = None
