"""Enumerations shared across Caja POS modules.

Centralises domain constants so that the data access layer (DAL), the
repository backends, the business logic layer (BLL), and the CLI rely on a
single source of truth for critical identifiers.
"""

from __future__ import annotations

from enum import Enum


# Central schema version expected by all layers when validating workbooks.
EXPECTED_SCHEMA_VERSION = "1.0.0"

ORDER_STATUS_COMPLETED = "completed"


class PaymentMethod(str, Enum):
    """Enumerate supported payment mechanisms for orders."""

    CASH = "Cash"
    CARD = "Card"
    TRANSFER = "Transfer"
    CREDIT = "Credit"


class TransactionType(str, Enum):
    """Direction of a money movement recorded in the ledger."""

    INCOME = "INCOME"
    EXPENSE = "EXPENSE"


class TransactionCategory(str, Enum):
    """Ledger category labels written by the order and purchase processors."""

    SALE = "Venta"
    INVENTORY_PURCHASE = "Compra de Inventario"


class StockPolicy(str, Enum):
    """How the order processor treats sales that exceed available stock."""

    ALLOW = "allow"
    REJECT = "reject"
    CLAMP = "clamp"


class CashWithoutRegister(str, Enum):
    """What happens to a cash order when no register session is open."""

    REJECT = "reject"
    SKIP = "skip"


class Backend(str, Enum):
    """Storage backends selectable from ``config.ini``."""

    WORKBOOK = "workbook"
    MEMORY = "memory"


class SheetName(str, Enum):
    """Enumerate the workbook sheet names managed by the DAL."""

    PRODUCTS = "Products"
    CATEGORIES = "Categories"
    CLIENTS = "Clients"
    SUPPLIERS = "Suppliers"
    ORDERS = "Orders"
    ORDER_ITEMS = "OrderItems"
    PURCHASES = "Purchases"
    PURCHASE_ITEMS = "PurchaseItems"
    TRANSACTION_LOG = "TransactionLog"
    CASH_REGISTER = "CashRegister"


__all__ = [
    "EXPECTED_SCHEMA_VERSION",
    "ORDER_STATUS_COMPLETED",
    "PaymentMethod",
    "TransactionType",
    "TransactionCategory",
    "StockPolicy",
    "CashWithoutRegister",
    "Backend",
    "SheetName",
]
