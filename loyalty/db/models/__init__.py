from loyalty.db.models.base import Base
from loyalty.db.models.coupons import Coupon
from loyalty.db.models.point_transactions import PointTransaction
from loyalty.db.models.point_wallets import PointWallet
from loyalty.db.models.reconciliation_runs import ReconciliationRun
from loyalty.db.models.user_coupons import UserCoupon
from loyalty.db.models.users import User

__all__ = [
    "Base",
    "Coupon",
    "PointTransaction",
    "PointWallet",
    "ReconciliationRun",
    "User",
    "UserCoupon",
]
