"""SiteStock — Typed domain errors raised by the ledger and workflow services."""
from decimal import Decimal


class InventoryError(Exception):
    """Base class. `code` is machine-readable, `status_code` is the HTTP mapping."""

    code = "inventory_error"
    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class NotFoundError(InventoryError):
    code = "not_found"
    status_code = 404


class ValidationError(InventoryError):
    code = "validation_error"
    status_code = 400


class InvalidTransitionError(InventoryError):
    """Action attempted from a state that does not permit it."""

    code = "invalid_transition"
    status_code = 409

    def __init__(self, message: str, current_status: str | None = None):
        super().__init__(message)
        self.current_status = current_status


class InsufficientStockError(InventoryError):
    code = "insufficient_stock"
    status_code = 409

    def __init__(self, message: str, available: Decimal | None = None, requested: Decimal | None = None):
        super().__init__(message)
        self.available = available
        self.requested = requested


class ForbiddenError(InventoryError):
    code = "forbidden"
    status_code = 403
