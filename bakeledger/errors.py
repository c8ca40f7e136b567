"""
Error taxonomy for ledger operations.

Validation-class errors are raised inside services and converted into a
falsy result plus ``Workspace.error`` at the operation boundary. Sync
failures happen after the caller already got its result, so they are only
ever recorded on the workspace.
"""


class LedgerError(Exception):
    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(LedgerError):
    status_code = 400


class InsufficientStockError(ValidationError):
    status_code = 409

    def __init__(self, ingredient_name: str, needed: float, available: float, unit: str = ""):
        unit = f" {unit}" if unit else ""
        super().__init__(
            f"Insufficient stock for '{ingredient_name}': need {needed:g}{unit}, have {available:g}{unit}."
        )
        self.ingredient_name = ingredient_name
        self.needed = needed
        self.available = available


class NotFound(LedgerError):
    status_code = 404


class SyncFailure(LedgerError):
    """A dispatched batch failed to commit; local state was rolled back."""

    status_code = 502

    def __init__(self, message: str, *, label: str, cause: BaseException | None = None):
        super().__init__(message)
        self.label = label
        self.cause = cause


class AcquisitionExhausted(LedgerError):
    status_code = 503

    def __init__(self, target_date: str, attempts: int):
        super().__init__(
            f"Rate service unavailable for {target_date} and {attempts - 1} days prior."
        )
        self.target_date = target_date
        self.attempts = attempts
