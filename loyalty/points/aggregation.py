"""Balance arithmetic over the point transaction log.

Amounts are stored as positive magnitudes and the entry type decides the sign, so
every balance in the service is derived through :class:`LedgerTotals`.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass

from loyalty.points.types import EntryType, TransactionView


@dataclass(frozen=True, slots=True)
class LedgerTotals:
    earned: int = 0
    bonus: int = 0
    used: int = 0
    expired: int = 0
    clawed_back: int = 0
    restored: int = 0

    @classmethod
    def from_type_sums(cls, sums: Mapping[str, int]) -> "LedgerTotals":
        return cls(
            earned=int(sums.get(EntryType.EARNED.value, 0)),
            bonus=int(sums.get(EntryType.BONUS.value, 0)),
            used=int(sums.get(EntryType.USED.value, 0)),
            expired=int(sums.get(EntryType.EXPIRED.value, 0)),
            clawed_back=int(sums.get(EntryType.EARN_CLAWBACK.value, 0)),
            restored=int(sums.get(EntryType.SPEND_REVERSAL.value, 0)),
        )

    @property
    def credits(self) -> int:
        return self.earned + self.bonus + self.restored

    @property
    def debits(self) -> int:
        return self.used + self.expired + self.clawed_back

    @property
    def balance(self) -> int:
        return self.credits - self.debits

    @property
    def display_balance(self) -> int:
        return max(0, self.balance)


@dataclass(frozen=True, slots=True)
class PointStatistics:
    total_earned: int
    total_used: int
    total_expired: int
    total_clawed_back: int
    current_balance: int
    expiring_soon: int


def build_statistics(totals: LedgerTotals, *, expiring_soon: int) -> PointStatistics:
    # Restored spends net out of usage so cancelled orders do not count as spending.
    return PointStatistics(
        total_earned=totals.earned + totals.bonus,
        total_used=max(0, totals.used - totals.restored),
        total_expired=totals.expired,
        total_clawed_back=totals.clawed_back,
        current_balance=totals.display_balance,
        expiring_soon=max(0, expiring_soon),
    )


def fold_entries(entries: Iterable[TransactionView]) -> LedgerTotals:
    sums: dict[str, int] = {}
    for entry in entries:
        key = EntryType(entry.entry_type).value
        sums[key] = sums.get(key, 0) + entry.amount
    return LedgerTotals.from_type_sums(sums)
