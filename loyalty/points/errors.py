class PointsError(Exception):
    code = "POINTS_ERROR"


class PointsUserNotFoundError(PointsError):
    code = "USER_NOT_FOUND"


class InvalidAmountError(PointsError):
    code = "INVALID_AMOUNT"


class DuplicateTransactionError(PointsError):
    code = "DUPLICATE_TRANSACTION"

    def __init__(self, transaction_id: int | None = None, amount: int | None = None) -> None:
        super().__init__("transaction already recorded")
        self.transaction_id = transaction_id
        self.amount = amount


class InsufficientBalanceError(PointsError):
    code = "INSUFFICIENT_BALANCE"

    def __init__(self, *, required: int, available: int) -> None:
        super().__init__(f"insufficient points: required={required} available={available}")
        self.required = required
        self.available = available

    @property
    def shortfall(self) -> int:
        return max(0, self.required - self.available)


class PointsUsageNotAllowedError(PointsError):
    code = "POINTS_USAGE_NOT_ALLOWED"

    def __init__(self, *, reason: str, max_usable_points: int) -> None:
        super().__init__(f"points usage rejected: {reason}")
        self.reason = reason
        self.max_usable_points = max_usable_points


class EarnedRecordNotFoundError(PointsError):
    code = "EARNED_RECORD_NOT_FOUND"


class InvalidRatioError(PointsError):
    code = "INVALID_RATIO"


class NothingToClawBackError(PointsError):
    code = "NOTHING_TO_CLAW_BACK"


class SpendNotFoundError(PointsError):
    code = "SPEND_NOT_FOUND"
