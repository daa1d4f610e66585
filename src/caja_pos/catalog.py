"""Catalog and relationship stores.

Products and categories form the catalog; clients and suppliers are the
relationship records that orders and purchases are attributed to. All four
are plain keyed collections with list/get/upsert/delete operations. Deleting
a category does not touch products that still carry its name, and deleting a
client or supplier leaves historical orders and purchases untouched.

Partial edits go through explicit update requests (:class:`ProductUpdate`,
:class:`ClientUpdate`, :class:`SupplierUpdate`) that list only the mutable
fields. Client spending statistics are deliberately absent from
:class:`ClientUpdate`: only the order processor changes them.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from decimal import Decimal
from typing import List, Optional

from . import data_manager, log
from .constants import SheetName
from .exceptions import NotFoundError, ValidationError
from .runtime import (
    RuntimeContext,
    require_nonnegative_money,
    require_record,
    require_text,
)


@dataclass(frozen=True)
class ProductUpdate:
    """Mutable product fields; ``None`` leaves a field unchanged."""

    name: Optional[str] = None
    category: Optional[str] = None
    price: Optional[Decimal] = None
    cost: Optional[Decimal] = None
    stock: Optional[int] = None
    unit: Optional[str] = None
    sku: Optional[str] = None
    image: Optional[str] = None


@dataclass(frozen=True)
class ClientUpdate:
    """Contact fields of a client that may be edited directly."""

    name: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = None


@dataclass(frozen=True)
class SupplierUpdate:
    """Mutable supplier fields."""

    name: Optional[str] = None
    contact: Optional[str] = None
    email: Optional[str] = None
    category: Optional[str] = None


def _changes(request: object) -> dict:
    return {name: value for name, value in vars(request).items() if value is not None}


def validate_product(product: data_manager.ProductRow) -> None:
    """Check the invariants every stored product must satisfy.

    Raises:
        ValidationError: If the id or name is blank, a price or cost is
            negative, or stock is not an integer.
    """
    require_text(product.product_id, label="Product id")
    require_text(product.name, label="Product name")
    require_nonnegative_money(product.price, label="Price")
    require_nonnegative_money(product.cost, label="Cost")
    if isinstance(product.stock, bool) or not isinstance(product.stock, int):
        raise ValidationError("Stock must be a whole number")


# ---------------------------------------------------------------------------
# Products
# ---------------------------------------------------------------------------


def list_products(context: RuntimeContext) -> List[data_manager.ProductRow]:
    """Return every product in storage order."""

    return context.repository.list(SheetName.PRODUCTS)


def get_product(context: RuntimeContext, product_id: str) -> data_manager.ProductRow:
    """Resolve a product by id.

    Raises:
        NotFoundError: If the product is unknown.
    """
    return require_record(context, SheetName.PRODUCTS, product_id, "product")


def upsert_product(context: RuntimeContext, product: data_manager.ProductRow) -> data_manager.ProductRow:
    """Insert ``product`` or overwrite all fields of the stored one.

    Raises:
        ValidationError: If the product breaks :func:`validate_product`.
    """
    validate_product(product)
    with context.repository.unit_of_work(f"upsert product {product.product_id}") as repo:
        inserted = repo.upsert(product)
    log.info("%s product '%s'", "Added" if inserted else "Updated", product.product_id)
    return product


def update_product(context: RuntimeContext, product_id: str, request: ProductUpdate) -> data_manager.ProductRow:
    """Apply a :class:`ProductUpdate` to an existing product.

    The merged record is validated before it is written.

    Raises:
        NotFoundError: If the product is unknown.
        ValidationError: If the merged record is invalid.
    """
    changes = _changes(request)
    with context.repository.unit_of_work(f"update product {product_id}") as repo:
        merged = replace(get_product(context, product_id), **changes)
        validate_product(merged)
        repo.update(SheetName.PRODUCTS, product_id, lambda _current: merged)
    log.info("Updated product '%s' fields: %s", product_id, ", ".join(sorted(changes)) or "none")
    return merged


def delete_product(context: RuntimeContext, product_id: str) -> None:
    """Remove a product. Past order and purchase lines keep their snapshot."""

    _delete(context, SheetName.PRODUCTS, product_id, "product")


# ---------------------------------------------------------------------------
# Categories
# ---------------------------------------------------------------------------


def list_categories(context: RuntimeContext) -> List[data_manager.CategoryRow]:
    """Return every category in storage order."""

    return context.repository.list(SheetName.CATEGORIES)


def upsert_category(context: RuntimeContext, category: data_manager.CategoryRow) -> data_manager.CategoryRow:
    """Insert or overwrite a category."""

    require_text(category.category_id, label="Category id")
    require_text(category.name, label="Category name")
    with context.repository.unit_of_work(f"upsert category {category.category_id}") as repo:
        inserted = repo.upsert(category)
    log.info("%s category '%s'", "Added" if inserted else "Updated", category.category_id)
    return category


def delete_category(context: RuntimeContext, category_id: str) -> None:
    """Remove a category without touching products that reference its name."""

    _delete(context, SheetName.CATEGORIES, category_id, "category")


# ---------------------------------------------------------------------------
# Clients
# ---------------------------------------------------------------------------


def list_clients(context: RuntimeContext) -> List[data_manager.ClientRow]:
    """Return every client in storage order."""

    return context.repository.list(SheetName.CLIENTS)


def get_client(context: RuntimeContext, client_id: str) -> data_manager.ClientRow:
    """Resolve a client by id.

    Raises:
        NotFoundError: If the client is unknown.
    """
    return require_record(context, SheetName.CLIENTS, client_id, "client")


def upsert_client(context: RuntimeContext, client: data_manager.ClientRow) -> data_manager.ClientRow:
    """Insert or overwrite a client.

    Overwriting keeps the stored ``total_spent`` and ``visits`` so edits made
    from a stale copy cannot erase sales statistics.
    """
    require_text(client.client_id, label="Client id")
    require_text(client.name, label="Client name")
    require_nonnegative_money(client.total_spent, label="Total spent")
    with context.repository.unit_of_work(f"upsert client {client.client_id}") as repo:
        existing = repo.get(SheetName.CLIENTS, client.client_id)
        if existing is not None:
            client = replace(client, total_spent=existing.total_spent, visits=existing.visits)
        repo.upsert(client)
    log.info("%s client '%s'", "Updated" if existing else "Added", client.client_id)
    return client


def update_client(context: RuntimeContext, client_id: str, request: ClientUpdate) -> data_manager.ClientRow:
    """Apply a :class:`ClientUpdate` to an existing client."""

    changes = _changes(request)
    with context.repository.unit_of_work(f"update client {client_id}") as repo:
        merged = replace(get_client(context, client_id), **changes)
        require_text(merged.name, label="Client name")
        repo.update(SheetName.CLIENTS, client_id, lambda _current: merged)
    log.info("Updated client '%s' fields: %s", client_id, ", ".join(sorted(changes)) or "none")
    return merged


def delete_client(context: RuntimeContext, client_id: str) -> None:
    """Remove a client record."""

    _delete(context, SheetName.CLIENTS, client_id, "client")


# ---------------------------------------------------------------------------
# Suppliers
# ---------------------------------------------------------------------------


def list_suppliers(context: RuntimeContext) -> List[data_manager.SupplierRow]:
    """Return every supplier in storage order."""

    return context.repository.list(SheetName.SUPPLIERS)


def get_supplier(context: RuntimeContext, supplier_id: str) -> data_manager.SupplierRow:
    """Resolve a supplier by id.

    Raises:
        NotFoundError: If the supplier is unknown.
    """
    return require_record(context, SheetName.SUPPLIERS, supplier_id, "supplier")


def upsert_supplier(context: RuntimeContext, supplier: data_manager.SupplierRow) -> data_manager.SupplierRow:
    """Insert or overwrite a supplier."""

    require_text(supplier.supplier_id, label="Supplier id")
    require_text(supplier.name, label="Supplier name")
    with context.repository.unit_of_work(f"upsert supplier {supplier.supplier_id}") as repo:
        inserted = repo.upsert(supplier)
    log.info("%s supplier '%s'", "Added" if inserted else "Updated", supplier.supplier_id)
    return supplier


def update_supplier(context: RuntimeContext, supplier_id: str, request: SupplierUpdate) -> data_manager.SupplierRow:
    """Apply a :class:`SupplierUpdate` to an existing supplier."""

    changes = _changes(request)
    with context.repository.unit_of_work(f"update supplier {supplier_id}") as repo:
        merged = replace(get_supplier(context, supplier_id), **changes)
        require_text(merged.name, label="Supplier name")
        repo.update(SheetName.SUPPLIERS, supplier_id, lambda _current: merged)
    log.info("Updated supplier '%s' fields: %s", supplier_id, ", ".join(sorted(changes)) or "none")
    return merged


def delete_supplier(context: RuntimeContext, supplier_id: str) -> None:
    """Remove a supplier record."""

    _delete(context, SheetName.SUPPLIERS, supplier_id, "supplier")


def _delete(context: RuntimeContext, sheet: SheetName, key: str, entity: str) -> None:
    with context.repository.unit_of_work(f"delete {entity} {key}") as repo:
        if repo.get(sheet, key) is None:
            log.warning("Delete failed: unknown %s id '%s'", entity, key)
            raise NotFoundError(entity, key)
        repo.delete(sheet, key)
    log.info("Deleted %s '%s'", entity, key)
