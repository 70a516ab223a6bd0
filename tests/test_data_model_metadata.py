from __future__ import annotations

from loyalty.db.models import Base


def _index(table_name: str, index_name: str):
    table = Base.metadata.tables[table_name]
    return next(index for index in table.indexes if index.name == index_name)


def _check_names(table_name: str) -> set[str]:
    table = Base.metadata.tables[table_name]
    return {constraint.name for constraint in table.constraints if constraint.name and constraint.name.startswith("ck_")}


def test_ledger_tables_are_registered() -> None:
    assert {
        "users",
        "point_transactions",
        "point_wallets",
        "coupons",
        "user_coupons",
        "reconciliation_runs",
    } <= set(Base.metadata.tables)


def test_order_idempotency_index_is_partial_and_unique() -> None:
    index = _index("point_transactions", "uq_point_transactions_user_order_type")

    assert index.unique is True
    assert [column.name for column in index.columns] == ["user_id", "order_id", "entry_type"]
    assert "order_id IS NOT NULL" in str(index.dialect_options["postgresql"]["where"])


def test_each_credit_expires_at_most_once() -> None:
    index = _index("point_transactions", "uq_point_transactions_expired_once")

    assert index.unique is True
    assert [column.name for column in index.columns] == ["reverses_transaction_id"]


def test_idempotency_key_is_unique() -> None:
    column = Base.metadata.tables["point_transactions"].c.idempotency_key
    assert column.unique is True
    assert column.nullable is False


def test_balance_and_amount_checks_exist() -> None:
    assert "ck_point_wallets_balance_non_negative" in _check_names("point_wallets")
    assert {
        "ck_point_transactions_entry_type",
        "ck_point_transactions_amount_positive",
        "ck_point_transactions_expired_references_credit",
    } <= _check_names("point_transactions")


def test_coupon_claims_bind_order_when_used() -> None:
    assert "ck_user_coupons_used_binding" in _check_names("user_coupons")
    assert _index("user_coupons", "idx_user_coupons_user_used") is not None
