from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal
from types import SimpleNamespace
from uuid import uuid4

from fastapi.testclient import TestClient

from loyalty.api.routes import internal_points
from loyalty.main import app
from loyalty.points.aggregation import PointStatistics
from loyalty.points.types import EntryType, LedgerReadResult, LedgerResult, TransactionView

TOKEN = "internal-secret"
HEADERS = {"X-Internal-Token": TOKEN}


def _settings(**overrides: object) -> SimpleNamespace:
    values = {
        "internal_api_token": TOKEN,
        "internal_api_allowlist": "127.0.0.1/32",
        "internal_api_trusted_proxies": "",
    }
    values.update(overrides)
    return SimpleNamespace(**values)


class _FakeLedger:
    def __init__(self, result: LedgerResult | None = None, read: LedgerReadResult | None = None) -> None:
        self.result = result
        self.read = read
        self.calls: list[tuple[str, dict[str, object]]] = []

    async def _write(self, name: str, kwargs: dict[str, object]) -> LedgerResult:
        self.calls.append((name, kwargs))
        assert self.result is not None
        return self.result

    async def earn_points(self, **kwargs) -> LedgerResult:
        return await self._write("earn_points", kwargs)

    async def earn_order_points(self, **kwargs) -> LedgerResult:
        return await self._write("earn_order_points", kwargs)

    async def use_points(self, **kwargs) -> LedgerResult:
        return await self._write("use_points", kwargs)

    async def refund_points(self, **kwargs) -> LedgerResult:
        return await self._write("refund_points", kwargs)

    async def get_balance(self, **kwargs) -> LedgerReadResult:
        self.calls.append(("get_balance", kwargs))
        return self.read

    async def get_statistics(self, **kwargs) -> LedgerReadResult:
        self.calls.append(("get_statistics", kwargs))
        return self.read

    async def list_transactions(self, **kwargs) -> LedgerReadResult:
        self.calls.append(("list_transactions", kwargs))
        return self.read


def _client(monkeypatch, ledger: _FakeLedger, **settings_overrides: object) -> TestClient:
    monkeypatch.setattr(internal_points, "get_settings", lambda: _settings(**settings_overrides))
    monkeypatch.setattr(internal_points, "get_points_ledger", lambda: ledger)
    return TestClient(app, client=("127.0.0.1", 5100))


def test_points_earn_rejects_missing_token(monkeypatch) -> None:
    ledger = _FakeLedger(LedgerResult(success=True))
    client = _client(monkeypatch, ledger)

    response = client.post(
        "/internal/points/earn",
        json={"user_id": str(uuid4()), "order_id": str(uuid4()), "amount": 500},
    )

    assert response.status_code == 403
    assert response.json() == {"detail": {"code": "E_FORBIDDEN"}}
    assert ledger.calls == []


def test_points_earn_rejects_disallowed_ip(monkeypatch) -> None:
    ledger = _FakeLedger(LedgerResult(success=True))
    client = _client(monkeypatch, ledger, internal_api_allowlist="10.0.0.0/8")

    response = client.post(
        "/internal/points/earn",
        headers=HEADERS,
        json={"user_id": str(uuid4()), "order_id": str(uuid4()), "amount": 500},
    )

    assert response.status_code == 403
    assert response.json() == {"detail": {"code": "E_FORBIDDEN"}}


def test_points_earn_honours_forwarded_for_from_trusted_proxy(monkeypatch) -> None:
    ledger = _FakeLedger(LedgerResult(success=True, transaction_id=1, points_earned=500, balance=500))
    client = _client(
        monkeypatch,
        ledger,
        internal_api_allowlist="10.20.0.0/16",
        internal_api_trusted_proxies="127.0.0.1/32",
    )

    response = client.post(
        "/internal/points/earn",
        headers={**HEADERS, "X-Forwarded-For": "10.20.1.5, 127.0.0.1"},
        json={"user_id": str(uuid4()), "order_id": str(uuid4()), "amount": 500},
    )

    assert response.status_code == 200
    assert response.json()["success"] is True


def test_points_earn_with_explicit_amount(monkeypatch) -> None:
    ledger = _FakeLedger(LedgerResult(success=True, transaction_id=7, points_earned=500, balance=800))
    client = _client(monkeypatch, ledger)
    user_id = uuid4()

    response = client.post(
        "/internal/points/earn",
        headers=HEADERS,
        json={"user_id": str(user_id), "order_id": str(uuid4()), "amount": 500},
    )

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["transaction_id"] == 7
    assert body["points_earned"] == 500
    assert body["balance"] == 800
    assert ledger.calls[0][0] == "earn_points"
    assert ledger.calls[0][1]["user_id"] == user_id


def test_points_earn_from_order_amount(monkeypatch) -> None:
    ledger = _FakeLedger(LedgerResult(success=True, transaction_id=8, points_earned=500, balance=500))
    client = _client(monkeypatch, ledger)

    response = client.post(
        "/internal/points/earn",
        headers=HEADERS,
        json={"user_id": str(uuid4()), "order_id": str(uuid4()), "order_amount": "50000"},
    )

    assert response.status_code == 200
    assert ledger.calls[0][0] == "earn_order_points"
    assert ledger.calls[0][1]["order_amount"] == Decimal("50000")


def test_points_earn_requires_exactly_one_amount_source(monkeypatch) -> None:
    client = _client(monkeypatch, _FakeLedger(LedgerResult(success=True)))

    response = client.post(
        "/internal/points/earn",
        headers=HEADERS,
        json={"user_id": str(uuid4()), "order_id": str(uuid4())},
    )

    assert response.status_code == 422


def test_points_use_business_rejection_returns_result_body(monkeypatch) -> None:
    ledger = _FakeLedger(
        LedgerResult(
            success=False,
            error_code="INSUFFICIENT_BALANCE",
            message="insufficient points: required=150 available=100",
            shortfall=50,
            balance=100,
        )
    )
    client = _client(monkeypatch, ledger)

    response = client.post(
        "/internal/points/use",
        headers=HEADERS,
        json={"user_id": str(uuid4()), "order_id": str(uuid4()), "amount": 150},
    )

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is False
    assert body["error_code"] == "INSUFFICIENT_BALANCE"
    assert body["shortfall"] == 50
    assert body["balance"] == 100


def test_points_use_storage_failure_maps_to_503(monkeypatch) -> None:
    ledger = _FakeLedger(LedgerResult(success=False, error_code="STORAGE_ERROR"))
    client = _client(monkeypatch, ledger)

    response = client.post(
        "/internal/points/use",
        headers=HEADERS,
        json={"user_id": str(uuid4()), "order_id": str(uuid4()), "amount": 150},
    )

    assert response.status_code == 503
    assert response.json() == {"detail": {"code": "E_STORAGE_RETRY"}}


def test_points_refund_passes_refund_id(monkeypatch) -> None:
    ledger = _FakeLedger(LedgerResult(success=True, transaction_id=9, points_refunded=200, balance=300))
    client = _client(monkeypatch, ledger)

    response = client.post(
        "/internal/points/refund",
        headers=HEADERS,
        json={
            "user_id": str(uuid4()),
            "order_id": str(uuid4()),
            "refund_amount": "20000",
            "original_order_amount": "50000",
            "refund_id": "rf-1",
        },
    )

    assert response.status_code == 200
    assert response.json()["points_refunded"] == 200
    kwargs = ledger.calls[0][1]
    assert kwargs["refund_id"] == "rf-1"
    assert kwargs["original_order_amount"] == Decimal("50000")


def test_points_refund_accepts_zero_amount_as_nothing_to_do(monkeypatch) -> None:
    ledger = _FakeLedger(LedgerResult(success=False, error_code="NOTHING_TO_CLAW_BACK"))
    client = _client(monkeypatch, ledger)

    response = client.post(
        "/internal/points/refund",
        headers=HEADERS,
        json={
            "user_id": str(uuid4()),
            "order_id": str(uuid4()),
            "refund_amount": "0",
            "original_order_amount": "50000",
        },
    )

    assert response.status_code == 200
    assert response.json()["error_code"] == "NOTHING_TO_CLAW_BACK"
    assert ledger.calls[0][1]["refund_amount"] == Decimal("0")


def test_points_balance_read(monkeypatch) -> None:
    user_id = uuid4()
    ledger = _FakeLedger(read=LedgerReadResult(success=True, user_id=user_id, balance=420))
    client = _client(monkeypatch, ledger)

    response = client.get(f"/internal/points/{user_id}/balance", headers=HEADERS)

    assert response.status_code == 200
    assert response.json() == {"user_id": str(user_id), "balance": 420}


def test_points_statistics_read(monkeypatch) -> None:
    user_id = uuid4()
    statistics = PointStatistics(
        total_earned=1000,
        total_used=300,
        total_expired=100,
        total_clawed_back=0,
        current_balance=600,
        expiring_soon=200,
    )
    ledger = _FakeLedger(
        read=LedgerReadResult(success=True, user_id=user_id, balance=600, statistics=statistics)
    )
    client = _client(monkeypatch, ledger)

    response = client.get(f"/internal/points/{user_id}/statistics", headers=HEADERS)

    assert response.status_code == 200
    body = response.json()
    assert body["total_earned"] == 1000
    assert body["current_balance"] == 600
    assert body["expiring_soon"] == 200


def test_points_transactions_read_passes_paging(monkeypatch) -> None:
    user_id = uuid4()
    view = TransactionView(
        id=3,
        user_id=user_id,
        order_id=None,
        entry_type=EntryType.USED,
        amount=150,
        description="points used",
        expires_at=None,
        reverses_transaction_id=None,
        created_at=datetime(2026, 6, 1, 12, 0, tzinfo=timezone.utc),
    )
    ledger = _FakeLedger(read=LedgerReadResult(success=True, user_id=user_id, transactions=[view]))
    client = _client(monkeypatch, ledger)

    response = client.get(
        f"/internal/points/{user_id}/transactions",
        headers=HEADERS,
        params={"limit": 10, "offset": 20, "entry_type": "USED"},
    )

    assert response.status_code == 200
    body = response.json()
    assert body["limit"] == 10
    assert body["offset"] == 20
    assert body["transactions"][0]["signed_amount"] == -150
    assert body["transactions"][0]["entry_type"] == "USED"
    kwargs = ledger.calls[0][1]
    assert kwargs["entry_type"] is EntryType.USED


def test_points_transactions_rejects_oversized_page(monkeypatch) -> None:
    client = _client(monkeypatch, _FakeLedger())

    response = client.get(
        f"/internal/points/{uuid4()}/transactions",
        headers=HEADERS,
        params={"limit": 1000},
    )

    assert response.status_code == 422
