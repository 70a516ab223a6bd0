from __future__ import annotations

from decimal import Decimal

import pytest
from pydantic import ValidationError

from loyalty.core.config import Settings


def test_points_policy_defaults() -> None:
    policy = Settings(_env_file=None).points_policy

    assert policy.accrual_rate == Decimal("0.01")
    assert policy.expiry_days == 365
    assert policy.expiring_soon_days == 30
    assert policy.max_spend_ratio == Decimal("0.3")


def test_points_policy_reads_environment(monkeypatch) -> None:
    monkeypatch.setenv("POINTS_ACCRUAL_RATE", "0.05")
    monkeypatch.setenv("POINTS_EXPIRY_DAYS", "180")

    policy = Settings(_env_file=None).points_policy

    assert policy.accrual_rate == Decimal("0.05")
    assert policy.expiry_days == 180


@pytest.mark.parametrize(
    ("name", "value"),
    [
        ("POINTS_ACCRUAL_RATE", "0"),
        ("POINTS_ACCRUAL_RATE", "1.5"),
        ("POINTS_MAX_SPEND_RATIO", "-0.1"),
        ("POINTS_EXPIRY_DAYS", "0"),
    ],
)
def test_invalid_points_settings_fail_at_load(monkeypatch, name: str, value: str) -> None:
    monkeypatch.setenv(name, value)

    with pytest.raises(ValidationError):
        Settings(_env_file=None)


def test_expiring_soon_window_must_fit_inside_expiry(monkeypatch) -> None:
    monkeypatch.setenv("POINTS_EXPIRY_DAYS", "30")
    monkeypatch.setenv("POINTS_EXPIRING_SOON_DAYS", "30")

    with pytest.raises(ValidationError):
        Settings(_env_file=None)
