from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from uuid import UUID

from loyalty.points.aggregation import LedgerTotals

MAX_REPORTED_DRIFTS = 20


@dataclass(frozen=True, slots=True)
class WalletDrift:
    user_id: UUID
    cached_balance: int
    ledger_balance: int

    @property
    def delta(self) -> int:
        return self.cached_balance - self.ledger_balance

    def as_payload(self) -> dict[str, object]:
        return {
            "user_id": str(self.user_id),
            "cached_balance": self.cached_balance,
            "ledger_balance": self.ledger_balance,
            "delta": self.delta,
        }


def find_wallet_drift(
    *,
    cached_balances: Mapping[UUID, int],
    type_sums_by_user: Mapping[UUID, Mapping[str, int]],
) -> list[WalletDrift]:
    drifts: list[WalletDrift] = []
    for user_id, cached_balance in cached_balances.items():
        ledger_balance = LedgerTotals.from_type_sums(type_sums_by_user.get(user_id, {})).balance
        if cached_balance != ledger_balance or ledger_balance < 0:
            drifts.append(
                WalletDrift(
                    user_id=user_id,
                    cached_balance=cached_balance,
                    ledger_balance=ledger_balance,
                )
            )
    return drifts


def drift_details(drifts: Iterable[WalletDrift]) -> dict[str, object]:
    ordered = sorted(drifts, key=lambda drift: abs(drift.delta), reverse=True)
    return {"drifts": [drift.as_payload() for drift in ordered[:MAX_REPORTED_DRIFTS]]}


def reconciliation_status(diff_count: int) -> str:
    return "OK" if diff_count == 0 else "DIFF"
