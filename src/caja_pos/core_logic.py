"""Business logic layer for Caja POS.

This module holds the order and purchase processors, the cash register
session rules, and the read-only reports over the ledger. Each write runs as
one repository unit of work so stock, client statistics, the transaction log
and the register balance either all change together or not at all.

Policies that the stored data cannot answer on its own come from
``config.ini``:

* ``StockPolicy`` decides what an oversold order does to stock (``allow``
  lets it go negative, ``reject`` refuses the order, ``clamp`` floors it at
  zero without ever raising stock that was already negative).
* ``CashWithoutRegister`` decides whether a cash order needs an open register
  session (``reject``) or silently leaves the register alone (``skip``).

Purchases always overwrite the product cost with the latest unit cost; no
weighted average is kept.
"""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass, replace
from datetime import datetime
from decimal import Decimal
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from . import data_manager, log
from .constants import (
    ORDER_STATUS_COMPLETED,
    CashWithoutRegister,
    PaymentMethod,
    SheetName,
    StockPolicy,
    TransactionCategory,
    TransactionType,
)
from .exceptions import InsufficientStockError, RegisterStateError, ValidationError
from .runtime import (
    RuntimeContext,
    generate_id,
    require_nonnegative_money,
    require_positive_quantity,
    require_record,
    require_text,
    resolve_timestamp,
    to_cents,
)


@dataclass(frozen=True)
class CartItem:
    """A product reference with the quantity and price captured at sale time."""

    product_id: str
    name: str
    quantity: int
    price: Decimal


@dataclass(frozen=True)
class OrderCommand:
    """User intent for recording a sale."""

    items: Sequence[CartItem]
    payment_method: PaymentMethod
    total: Decimal
    client_id: Optional[str] = None
    timestamp: Optional[datetime] = None


@dataclass(frozen=True)
class PurchaseItem:
    """One received product line of a purchase."""

    product_id: str
    product_name: str
    quantity: int
    unit_cost: Decimal
    line_total: Decimal


@dataclass(frozen=True)
class PurchaseCommand:
    """User intent for recording stock received from a supplier."""

    supplier_id: str
    supplier_name: str
    items: Sequence[PurchaseItem]
    total: Decimal
    date: Optional[datetime] = None
    notes: Optional[str] = None


@dataclass(frozen=True)
class Order:
    """An order header together with its lines."""

    header: data_manager.OrderRow
    lines: Tuple[data_manager.OrderLineRow, ...]

    @property
    def order_id(self) -> str:
        return self.header.order_id


@dataclass(frozen=True)
class Purchase:
    """A purchase header together with its lines."""

    header: data_manager.PurchaseRow
    lines: Tuple[data_manager.PurchaseLineRow, ...]

    @property
    def purchase_id(self) -> str:
        return self.header.purchase_id


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


def validate_order_command(command: OrderCommand) -> None:
    """Reject malformed sale requests before anything is touched.

    Checks that the cart is not empty, that every line has a product id, a
    positive whole quantity and a nonnegative price, that the payment method
    is supported, and that ``total`` equals the sum of ``price * quantity``
    to the cent.

    Raises:
        ValidationError: On the first failed check.
    """
    if not isinstance(command.payment_method, PaymentMethod):
        log.error("Unsupported payment method provided: %s", command.payment_method)
        raise ValidationError(f"Unsupported payment method: {command.payment_method}")
    if not command.items:
        log.error("Rejected order with an empty cart")
        raise ValidationError("An order needs at least one item")

    expected = Decimal("0")
    for item in command.items:
        require_text(item.product_id, label="Product id")
        require_positive_quantity(item.quantity)
        require_nonnegative_money(item.price, label="Price")
        expected += item.price * item.quantity

    require_nonnegative_money(command.total, label="Total")
    if to_cents(command.total) != to_cents(expected):
        log.error("Order total mismatch: declared %s, computed %s", command.total, expected)
        raise ValidationError(f"Order total {command.total} does not match item sum {to_cents(expected)}")
    if command.client_id is not None:
        require_text(command.client_id, label="Client id")


def validate_purchase_command(command: PurchaseCommand) -> None:
    """Reject malformed purchase requests before anything is touched.

    Each line needs a positive whole quantity, a nonnegative unit cost and a
    line total equal to ``quantity * unit_cost``; the purchase total must be
    the sum of the line totals.

    Raises:
        ValidationError: On the first failed check.
    """
    require_text(command.supplier_id, label="Supplier id")
    if not command.items:
        log.error("Rejected purchase without items")
        raise ValidationError("A purchase needs at least one item")

    expected = Decimal("0")
    for item in command.items:
        require_text(item.product_id, label="Product id")
        require_positive_quantity(item.quantity)
        require_nonnegative_money(item.unit_cost, label="Unit cost")
        require_nonnegative_money(item.line_total, label="Line total")
        if to_cents(item.line_total) != to_cents(item.unit_cost * item.quantity):
            log.error(
                "Purchase line total mismatch for '%s': declared %s, computed %s",
                item.product_id,
                item.line_total,
                item.unit_cost * item.quantity,
            )
            raise ValidationError(f"Line total for product '{item.product_id}' does not match quantity x unit cost")
        expected += item.line_total

    require_nonnegative_money(command.total, label="Total")
    if to_cents(command.total) != to_cents(expected):
        log.error("Purchase total mismatch: declared %s, computed %s", command.total, expected)
        raise ValidationError(f"Purchase total {command.total} does not match line sum {to_cents(expected)}")


# ---------------------------------------------------------------------------
# Order processor
# ---------------------------------------------------------------------------


def _sell_stock(quantity: int, policy: StockPolicy) -> Callable[[data_manager.ProductRow], data_manager.ProductRow]:
    def change(product: data_manager.ProductRow) -> data_manager.ProductRow:
        remaining = product.stock - quantity
        if remaining < 0:
            if policy is StockPolicy.REJECT:
                log.error(
                    "Insufficient stock for '%s': available %s, requested %s",
                    product.product_id,
                    product.stock,
                    quantity,
                )
                raise InsufficientStockError(product.product_id, product.stock, quantity)
            if policy is StockPolicy.CLAMP:
                # Stock already below zero stays where it is; a sale never raises it.
                remaining = max(remaining, min(product.stock, 0))
            else:
                log.warning("Product '%s' stock goes negative (%s)", product.product_id, remaining)
        return replace(product, stock=remaining)

    return change


def create_order(context: RuntimeContext, command: OrderCommand) -> Order:
    """Record a sale and every effect it has, as one unit of work.

    Steps, all committed together:

    1. Store the order header with status ``completed``.
    2. Store one line per cart item and take its quantity out of stock,
       following the configured stock policy.
    3. Add the total to the client's ``total_spent`` and count a visit, when
       the order is attributed to a client.
    4. Append an ``INCOME`` transaction in the ``Venta`` category referencing
       the order.
    5. For cash orders, add the total to the open register's current and
       expected amounts.

    Args:
        context (RuntimeContext): Runtime context providing the repository.
        command (OrderCommand): Structured sale intent.

    Returns:
        Order: The stored order header and lines.

    Raises:
        ValidationError: If the request is malformed.
        NotFoundError: If a product or the client is unknown.
        InsufficientStockError: Under the ``reject`` stock policy.
        RegisterStateError: For a cash order with no open register under the
            ``reject`` policy.
        StorageError: If persisting the unit of work fails.
    """
    validate_order_command(command)

    timestamp = resolve_timestamp(command.timestamp)
    order_id = generate_id("O", when=timestamp)
    settings = context.settings

    with context.repository.unit_of_work(f"order {order_id}") as repo:
        for item in command.items:
            require_record(context, SheetName.PRODUCTS, item.product_id, "product")
        if command.client_id is not None:
            require_record(context, SheetName.CLIENTS, command.client_id, "client")

        register = None
        if command.payment_method is PaymentMethod.CASH:
            register = current_register(context)
            if register is None or not register.is_open:
                if settings.cash_without_register is CashWithoutRegister.REJECT:
                    log.error("Cash order '%s' refused: no open cash register", order_id)
                    raise RegisterStateError("A cash order needs an open cash register")
                log.warning("Cash order '%s' recorded without an open cash register", order_id)
                register = None

        header = data_manager.OrderRow(
            order_id=order_id,
            timestamp_iso=timestamp.isoformat(),
            total=command.total,
            payment_method=command.payment_method.value,
            status=ORDER_STATUS_COMPLETED,
            client_id=command.client_id,
        )
        repo.insert(header)

        lines: List[data_manager.OrderLineRow] = []
        for number, item in enumerate(command.items, start=1):
            line = data_manager.OrderLineRow(
                line_id=f"{order_id}-{number}",
                order_id=order_id,
                product_id=item.product_id,
                product_name=item.name,
                quantity=item.quantity,
                price=item.price,
            )
            repo.insert(line)
            repo.update(SheetName.PRODUCTS, item.product_id, _sell_stock(item.quantity, settings.stock_policy))
            lines.append(line)

        if command.client_id is not None:
            repo.update(
                SheetName.CLIENTS,
                command.client_id,
                lambda client: replace(
                    client,
                    total_spent=client.total_spent + command.total,
                    visits=client.visits + 1,
                ),
            )

        repo.insert(
            data_manager.TransactionRow(
                transaction_id=generate_id("T", when=timestamp),
                timestamp_iso=timestamp.isoformat(),
                transaction_type=TransactionType.INCOME.value,
                category=TransactionCategory.SALE.value,
                amount=command.total,
                description=f"Venta #{order_id}",
                reference_id=order_id,
            )
        )

        if register is not None:
            repo.update(
                SheetName.CASH_REGISTER,
                register.register_id,
                lambda session: replace(
                    session,
                    current_amount=session.current_amount + command.total,
                    expected_amount=session.expected_amount + command.total,
                ),
            )

    log.info(
        "Recorded order '%s' (%d lines, total=%s, payment=%s)",
        order_id,
        len(lines),
        command.total,
        command.payment_method.value,
    )
    return Order(header=header, lines=tuple(lines))


# ---------------------------------------------------------------------------
# Purchase processor
# ---------------------------------------------------------------------------


def create_purchase(context: RuntimeContext, command: PurchaseCommand) -> Purchase:
    """Record stock received from a supplier as one unit of work.

    Steps, all committed together:

    1. Store the purchase header.
    2. Store one line per item, add its quantity to stock, and overwrite the
       product cost with the line's unit cost (last purchase cost).
    3. Append an ``EXPENSE`` transaction in the ``Compra de Inventario``
       category, dated with the purchase date and referencing the purchase.

    Args:
        context (RuntimeContext): Runtime context providing the repository.
        command (PurchaseCommand): Structured purchase intent. A blank
            ``supplier_name`` is filled from the supplier record.

    Returns:
        Purchase: The stored purchase header and lines.

    Raises:
        ValidationError: If the request is malformed.
        NotFoundError: If the supplier or a product is unknown.
        StorageError: If persisting the unit of work fails.
    """
    validate_purchase_command(command)

    purchase_date = resolve_timestamp(command.date)
    purchase_id = generate_id("P", when=purchase_date)

    with context.repository.unit_of_work(f"purchase {purchase_id}") as repo:
        supplier = require_record(context, SheetName.SUPPLIERS, command.supplier_id, "supplier")
        for item in command.items:
            require_record(context, SheetName.PRODUCTS, item.product_id, "product")
        supplier_name = (command.supplier_name or "").strip() or supplier.name

        header = data_manager.PurchaseRow(
            purchase_id=purchase_id,
            date_iso=purchase_date.isoformat(),
            supplier_id=command.supplier_id,
            supplier_name=supplier_name,
            total=command.total,
            notes=command.notes,
        )
        repo.insert(header)

        lines: List[data_manager.PurchaseLineRow] = []
        for number, item in enumerate(command.items, start=1):
            line = data_manager.PurchaseLineRow(
                line_id=f"{purchase_id}-{number}",
                purchase_id=purchase_id,
                product_id=item.product_id,
                product_name=item.product_name,
                quantity=item.quantity,
                unit_cost=item.unit_cost,
                line_total=item.line_total,
            )
            repo.insert(line)
            repo.update(
                SheetName.PRODUCTS,
                item.product_id,
                lambda product, item=item: replace(
                    product,
                    stock=product.stock + item.quantity,
                    cost=item.unit_cost,
                ),
            )
            lines.append(line)

        repo.insert(
            data_manager.TransactionRow(
                transaction_id=generate_id("T", when=purchase_date),
                timestamp_iso=purchase_date.isoformat(),
                transaction_type=TransactionType.EXPENSE.value,
                category=TransactionCategory.INVENTORY_PURCHASE.value,
                amount=command.total,
                description=f"Compra a {supplier_name}",
                reference_id=purchase_id,
            )
        )

    log.info(
        "Recorded purchase '%s' from supplier '%s' (%d lines, total=%s)",
        purchase_id,
        command.supplier_id,
        len(lines),
        command.total,
    )
    return Purchase(header=header, lines=tuple(lines))


# ---------------------------------------------------------------------------
# Cash register
# ---------------------------------------------------------------------------


def current_register(context: RuntimeContext) -> Optional[data_manager.CashRegisterRow]:
    """Return the latest register session, open or closed, or ``None``."""

    sessions = context.repository.list(SheetName.CASH_REGISTER)
    return sessions[-1] if sessions else None


def get_cash_register(context: RuntimeContext) -> Optional[data_manager.CashRegisterRow]:
    """Read accessor for the current register session snapshot."""

    return current_register(context)


def list_register_sessions(context: RuntimeContext) -> List[data_manager.CashRegisterRow]:
    """Return every register session, oldest first."""

    return context.repository.list(SheetName.CASH_REGISTER)


def compute_variance(register: data_manager.CashRegisterRow, counted_amount: Decimal) -> Decimal:
    """Counted cash minus expected cash; negative means cash is missing."""

    return counted_amount - register.expected_amount


def cash_sales_since_open(register: data_manager.CashRegisterRow) -> Decimal:
    """Cash taken by orders since the session opened."""

    return register.expected_amount - register.initial_amount


def open_register(
    context: RuntimeContext,
    initial_amount: Decimal,
    *,
    timestamp: Optional[datetime] = None,
) -> data_manager.CashRegisterRow:
    """Open a new register session with ``initial_amount`` in the drawer.

    Raises:
        ValidationError: If ``initial_amount`` is negative.
        RegisterStateError: If a session is already open.
    """
    require_nonnegative_money(initial_amount, label="Initial amount")
    opened_at = resolve_timestamp(timestamp)

    with context.repository.unit_of_work("open register") as repo:
        existing = current_register(context)
        if existing is not None and existing.is_open:
            log.error("Cannot open register: session '%s' is already open", existing.register_id)
            raise RegisterStateError("The cash register is already open")
        session = data_manager.CashRegisterRow(
            register_id=generate_id("R", when=opened_at),
            is_open=True,
            opened_at_iso=opened_at.isoformat(),
            initial_amount=initial_amount,
            current_amount=initial_amount,
            expected_amount=initial_amount,
        )
        repo.insert(session)

    log.info("Opened cash register '%s' with %s", session.register_id, initial_amount)
    return session


def close_register(
    context: RuntimeContext,
    counted_amount: Decimal,
    *,
    timestamp: Optional[datetime] = None,
) -> data_manager.CashRegisterRow:
    """Close the open session and store its reconciliation snapshot.

    The counted cash, the variance against the expected amount, and the
    closing time are persisted on the session row.

    Raises:
        ValidationError: If ``counted_amount`` is negative.
        RegisterStateError: If no session is open.
    """
    require_nonnegative_money(counted_amount, label="Counted amount")
    closed_at = resolve_timestamp(timestamp)

    with context.repository.unit_of_work("close register") as repo:
        session = current_register(context)
        if session is None or not session.is_open:
            log.error("Cannot close register: no open session")
            raise RegisterStateError("The cash register is not open")
        closed = repo.update(
            SheetName.CASH_REGISTER,
            session.register_id,
            lambda current: replace(
                current,
                is_open=False,
                closed_at_iso=closed_at.isoformat(),
                counted_amount=counted_amount,
                variance=compute_variance(current, counted_amount),
            ),
        )

    log.info(
        "Closed cash register '%s': expected=%s counted=%s variance=%s",
        closed.register_id,
        closed.expected_amount,
        counted_amount,
        closed.variance,
    )
    return closed


def toggle_register(context: RuntimeContext, amount: Decimal, is_open: bool) -> data_manager.CashRegisterRow:
    """Open the register with ``amount`` or close it counting ``amount``.

    ``is_open`` is the requested state: ``True`` opens a session using
    ``amount`` as the initial cash, ``False`` closes the open session using
    ``amount`` as the physically counted cash.
    """
    if is_open:
        return open_register(context, amount)
    return close_register(context, amount)


# ---------------------------------------------------------------------------
# Read accessors and reports
# ---------------------------------------------------------------------------


def _group_lines(lines: Sequence[object], parent_field: str) -> Dict[str, List[object]]:
    grouped: Dict[str, List[object]] = defaultdict(list)
    for line in lines:
        grouped[getattr(line, parent_field)].append(line)
    return grouped


def list_orders(context: RuntimeContext) -> List[Order]:
    """Return every order with its lines, newest first."""

    repo = context.repository
    lines = _group_lines(repo.list(SheetName.ORDER_ITEMS), "order_id")
    orders = [
        Order(header=header, lines=tuple(lines.get(header.order_id, ())))  # type: ignore[arg-type]
        for header in repo.list(SheetName.ORDERS)
    ]
    orders.sort(key=lambda order: order.header.timestamp_iso, reverse=True)
    return orders


def get_order(context: RuntimeContext, order_id: str) -> Order:
    """Resolve one order with its lines.

    Raises:
        NotFoundError: If the order is unknown.
    """
    header = require_record(context, SheetName.ORDERS, order_id, "order")
    lines = [line for line in context.repository.list(SheetName.ORDER_ITEMS) if line.order_id == order_id]
    return Order(header=header, lines=tuple(lines))


def list_purchases(context: RuntimeContext) -> List[Purchase]:
    """Return every purchase with its lines, in recording order."""

    repo = context.repository
    lines = _group_lines(repo.list(SheetName.PURCHASE_ITEMS), "purchase_id")
    return [
        Purchase(header=header, lines=tuple(lines.get(header.purchase_id, ())))  # type: ignore[arg-type]
        for header in repo.list(SheetName.PURCHASES)
    ]


def get_purchase(context: RuntimeContext, purchase_id: str) -> Purchase:
    """Resolve one purchase with its lines.

    Raises:
        NotFoundError: If the purchase is unknown.
    """
    header = require_record(context, SheetName.PURCHASES, purchase_id, "purchase")
    lines = [line for line in context.repository.list(SheetName.PURCHASE_ITEMS) if line.purchase_id == purchase_id]
    return Purchase(header=header, lines=tuple(lines))


def list_transactions(
    context: RuntimeContext,
    *,
    transaction_type: Optional[TransactionType] = None,
) -> List[data_manager.TransactionRow]:
    """Return the ledger in append order, optionally filtered by type."""

    transactions = context.repository.list(SheetName.TRANSACTION_LOG)
    if transaction_type is None:
        return transactions
    return [row for row in transactions if row.transaction_type == transaction_type.value]


def calculate_finance_summary(context: RuntimeContext) -> Dict[str, Decimal]:
    """Produce aggregate income, expense and net balance from the ledger.

    Returns:
        dict[str, Decimal]: ``total_income``, ``total_expense`` and ``balance``
            (income minus expense).
    """
    total_income = Decimal("0")
    total_expense = Decimal("0")
    for transaction in list_transactions(context):
        if transaction.transaction_type == TransactionType.INCOME.value:
            total_income += transaction.amount
        elif transaction.transaction_type == TransactionType.EXPENSE.value:
            total_expense += transaction.amount
    balance = total_income - total_expense
    log.debug(
        "Calculated finance summary: income=%s expense=%s balance=%s",
        total_income,
        total_expense,
        balance,
    )
    return {
        "total_income": total_income,
        "total_expense": total_expense,
        "balance": balance,
    }


def calculate_stock_report(context: RuntimeContext, *, threshold: Optional[int] = None) -> List[data_manager.ProductRow]:
    """List products, or only those with stock at or below ``threshold``."""

    products = context.repository.list(SheetName.PRODUCTS)
    if threshold is None:
        return products
    return [product for product in products if product.stock <= threshold]
