"""Typed exception hierarchy for Caja POS.

Every error raised on purpose by the package derives from :class:`CajaError`
so callers can catch by type instead of parsing messages::

    CajaError
    |
    +-- BusinessRuleViolation
    |   +-- ValidationError
    |   +-- NotFoundError
    |   +-- InsufficientStockError
    |   +-- RegisterStateError
    |
    +-- StorageError

Business rule violations are raised before (or instead of) any committed
mutation. ``StorageError`` marks a persistence failure; the unit of work that
hit it has already been rolled back when the caller sees it.
"""

from __future__ import annotations

from typing import Optional


class CajaError(Exception):
    """Base class for all Caja POS errors."""


class BusinessRuleViolation(CajaError):
    """Raised when a requested operation violates a domain constraint."""


class ValidationError(BusinessRuleViolation):
    """Raised when a request is malformed (empty cart, bad quantity, mismatched total)."""


class NotFoundError(BusinessRuleViolation):
    """Raised when a referenced product, client, supplier, or record is unknown."""

    def __init__(self, entity: str, key: str):
        self.entity = entity
        self.key = key
        super().__init__(f"Unknown {entity} id: {key}")


class InsufficientStockError(BusinessRuleViolation):
    """Raised under the ``reject`` stock policy when an order oversells a product."""

    def __init__(self, product_id: str, available: int, requested: int):
        self.product_id = product_id
        self.available = available
        self.requested = requested
        super().__init__(
            f"Insufficient stock for product '{product_id}': "
            f"available {available}, requested {requested}"
        )


class RegisterStateError(BusinessRuleViolation):
    """Raised when a cash register transition is not valid from the current state."""


class StorageError(CajaError):
    """Raised when the persistence layer fails while applying a unit of work."""

    def __init__(self, message: str, *, operation: Optional[str] = None):
        self.operation = operation
        super().__init__(message)


__all__ = [
    "CajaError",
    "BusinessRuleViolation",
    "ValidationError",
    "NotFoundError",
    "InsufficientStockError",
    "RegisterStateError",
    "StorageError",
]
