from __future__ import annotations

from uuid import uuid4

from loyalty.services.reconciliation import (
    MAX_REPORTED_DRIFTS,
    WalletDrift,
    drift_details,
    find_wallet_drift,
    reconciliation_status,
)


def test_matching_wallets_report_no_drift() -> None:
    user_id = uuid4()

    drifts = find_wallet_drift(
        cached_balances={user_id: 350},
        type_sums_by_user={user_id: {"EARNED": 500, "USED": 150}},
    )

    assert drifts == []


def test_cached_balance_mismatch_is_reported() -> None:
    in_sync = uuid4()
    drifted = uuid4()

    drifts = find_wallet_drift(
        cached_balances={in_sync: 100, drifted: 400},
        type_sums_by_user={
            in_sync: {"BONUS": 100},
            drifted: {"EARNED": 500, "EXPIRED": 200},
        },
    )

    assert drifts == [WalletDrift(user_id=drifted, cached_balance=400, ledger_balance=300)]
    assert drifts[0].delta == 100


def test_wallet_without_entries_folds_to_zero() -> None:
    user_id = uuid4()

    drifts = find_wallet_drift(cached_balances={user_id: 25}, type_sums_by_user={})

    assert drifts[0].ledger_balance == 0


def test_negative_ledger_fold_is_reported_even_when_cache_agrees() -> None:
    user_id = uuid4()

    drifts = find_wallet_drift(
        cached_balances={user_id: -20},
        type_sums_by_user={user_id: {"EARNED": 100, "USED": 120}},
    )

    assert len(drifts) == 1


def test_drift_details_are_sorted_and_bounded() -> None:
    drifts = [
        WalletDrift(user_id=uuid4(), cached_balance=index, ledger_balance=0)
        for index in range(1, MAX_REPORTED_DRIFTS + 6)
    ]

    details = drift_details(drifts)

    reported = details["drifts"]
    assert len(reported) == MAX_REPORTED_DRIFTS
    assert reported[0]["delta"] == MAX_REPORTED_DRIFTS + 5
    assert isinstance(reported[0]["user_id"], str)


def test_reconciliation_status() -> None:
    assert reconciliation_status(0) == "OK"
    assert reconciliation_status(3) == "DIFF"
