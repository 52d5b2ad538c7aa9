from __future__ import annotations


# Domain-level error the caller can surface directly (e.g., CLI message/toast)
class DomainError(Exception):
    pass


class ValidationError(DomainError):
    """Empty required fields, non-positive amounts, unknown enum values."""


class NotFoundError(DomainError):
    pass


class ClientNotFoundError(NotFoundError):
    pass


class InvoiceNotFoundError(NotFoundError):
    pass


class StockItemNotFoundError(NotFoundError):
    pass


class CategoryNotFoundError(NotFoundError):
    pass


class ExpenseNotFoundError(NotFoundError):
    pass


class InsufficientStockError(DomainError):
    """An OUT movement would drive current_quantity below zero."""

    def __init__(self, stock_item_id: str, available: float, requested: float, name: str | None = None):
        self.stock_item_id = stock_item_id
        self.available = available
        self.requested = requested
        label = name or stock_item_id
        super().__init__(
            f"Insufficient stock for {label}: available {available:g}, requested {requested:g}."
        )


class OverpaymentError(DomainError):
    pass


class ConstraintViolationError(DomainError):
    """Unique collisions or deleting a row that is still referenced."""


class DatabaseNotReadyError(DomainError):
    pass


__all__ = [
    "DomainError",
    "ValidationError",
    "NotFoundError",
    "ClientNotFoundError",
    "InvoiceNotFoundError",
    "StockItemNotFoundError",
    "CategoryNotFoundError",
    "ExpenseNotFoundError",
    "InsufficientStockError",
    "OverpaymentError",
    "ConstraintViolationError",
    "DatabaseNotReadyError",
]
