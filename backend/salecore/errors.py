"""
Sale engine error taxonomy.

Every failure surfaced by the engine is a SaleError subclass. Routes map
`code` to an HTTP status; `details` carries structured context and
`rollback_errors` lists compensation steps that could not be applied (a
non-empty list means the data needs manual repair).
"""

from __future__ import annotations


class SaleError(Exception):
    """Base class for sale engine errors."""

    code = "SALE_ERROR"
    http_status = 400

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}
        self.rollback_errors: list[str] = []

    def add_rollback_errors(self, errors: list[str]) -> None:
        self.rollback_errors.extend(errors)

    def __str__(self) -> str:
        if not self.rollback_errors:
            return self.message
        return f"{self.message}. Rollback issues: {'; '.join(self.rollback_errors)}"

    def to_dict(self) -> dict:
        return {
            "error": self.message,
            "code": self.code,
            "details": self.details,
            "rollback_errors": list(self.rollback_errors),
        }


class ValidationError(SaleError):
    """400-level input problem."""
    code = "VALIDATION_ERROR"


class NotFound(SaleError):
    code = "NOT_FOUND"
    http_status = 404


class NoOpenShift(SaleError):
    code = "NO_OPEN_SHIFT"
    http_status = 409


class InvalidItem(SaleError):
    code = "INVALID_ITEM"


class InsufficientStock(SaleError):
    code = "INSUFFICIENT_STOCK"
    http_status = 409


class ExpiredBatch(SaleError):
    code = "EXPIRED_BATCH"
    http_status = 409


class InventoryConflict(SaleError):
    """Another request consumed the same lot first; the whole sale is aborted."""
    code = "INVENTORY_CONFLICT"
    http_status = 409


class DiscountLimitExceeded(SaleError):
    code = "DISCOUNT_LIMIT_EXCEEDED"
    http_status = 403


class InvalidPromotion(SaleError):
    code = "INVALID_PROMOTION"


class InsufficientLoyaltyPoints(SaleError):
    code = "INSUFFICIENT_LOYALTY_POINTS"
    http_status = 409


class AlreadyRefunded(SaleError):
    code = "ALREADY_REFUNDED"
    http_status = 409


class PersistenceError(SaleError):
    code = "PERSISTENCE_ERROR"
    http_status = 500
