from __future__ import annotations

from .earn import earn_order_points, earn_points, grant_bonus
from .expiry import expire_points
from .queries import (
    MAX_PAGE_SIZE,
    _to_view,
    check_points_usage,
    get_balance,
    get_statistics,
    list_transactions,
)
from .refund import refund_points, reverse_spend
from .spend import use_points
from .wallet import _ledger_totals, _lock_wallet


class PointsService:
    _lock_wallet = staticmethod(_lock_wallet)
    _ledger_totals = staticmethod(_ledger_totals)
    _to_view = staticmethod(_to_view)
    earn_points = staticmethod(earn_points)
    earn_order_points = staticmethod(earn_order_points)
    grant_bonus = staticmethod(grant_bonus)
    use_points = staticmethod(use_points)
    refund_points = staticmethod(refund_points)
    reverse_spend = staticmethod(reverse_spend)
    expire_points = staticmethod(expire_points)
    get_balance = staticmethod(get_balance)
    get_statistics = staticmethod(get_statistics)
    list_transactions = staticmethod(list_transactions)
    check_points_usage = staticmethod(check_points_usage)


__all__ = [
    "MAX_PAGE_SIZE",
    "PointsService",
]
