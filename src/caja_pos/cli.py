"""Command-line entry points for the Caja POS toolkit.

All orchestration in this module is limited to argparse wiring, translating
command-line arguments into the command objects consumed by the business
layer, and printing read-only reports. Keeping the CLI thin ensures the same
parser configuration can be reused by tests, scripts, or any alternative
front-end that wants to expose the package capabilities.
"""

from __future__ import annotations

import argparse
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Mapping, MutableMapping, Optional, Sequence, Tuple

from . import catalog, core_logic, data_manager, log, runtime
from .constants import PaymentMethod, TransactionType
from .exceptions import BusinessRuleViolation, CajaError

SubParsers = argparse._SubParsersAction


@dataclass(frozen=True)
class CommandSpec:
    """Describe how a CLI sub-command is configured and executed."""

    name: str
    help_text: str
    register: Callable[[SubParsers], argparse.ArgumentParser]
    execute: Callable[[runtime.RuntimeContext, argparse.Namespace], int]


def parse_money(raw: str) -> Decimal:
    """``argparse`` type for monetary amounts."""
    try:
        value = Decimal(raw)
    except InvalidOperation as exc:
        raise argparse.ArgumentTypeError(f"Invalid amount: {raw}") from exc
    if not value.is_finite():
        raise argparse.ArgumentTypeError(f"Invalid amount: {raw}")
    return value


def parse_cart_item(raw: str) -> Tuple[str, int]:
    """``argparse`` type for ``PRODUCT_ID:QUANTITY``."""
    product_id, sep, quantity = raw.rpartition(":")
    if not sep or not product_id:
        raise argparse.ArgumentTypeError(f"Expected PRODUCT_ID:QUANTITY, got '{raw}'")
    try:
        return product_id, int(quantity)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"Invalid quantity in '{raw}'") from exc


def parse_purchase_item(raw: str) -> Tuple[str, int, Decimal]:
    """``argparse`` type for ``PRODUCT_ID:QUANTITY:UNIT_COST``."""
    parts = raw.rsplit(":", 2)
    if len(parts) != 3 or not parts[0]:
        raise argparse.ArgumentTypeError(f"Expected PRODUCT_ID:QUANTITY:UNIT_COST, got '{raw}'")
    product_id, quantity, unit_cost = parts
    try:
        return product_id, int(quantity), parse_money(unit_cost)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"Invalid quantity in '{raw}'") from exc


def build_parser() -> argparse.ArgumentParser:
    """Construct the top-level CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="caja-cli",
        description="Command-line tools for the Caja POS back office.",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Optional path to config.ini (defaults to searching from the working directory).",
    )
    return parser


def configure_subcommands(parser: argparse.ArgumentParser) -> Mapping[str, CommandSpec]:
    """Wire all CLI sub-commands onto the supplied parser."""
    subparsers = parser.add_subparsers(dest="command", required=True, title="commands")
    write_specs = register_write_commands(subparsers)
    read_specs = register_read_commands(subparsers)
    return build_command_table([*write_specs.values(), *read_specs.values()])


def _simple_spec(
    name: str,
    help_text: str,
    execute: Callable[[runtime.RuntimeContext, argparse.Namespace], int],
    arguments: Callable[[argparse.ArgumentParser], None] = lambda parser: None,
) -> CommandSpec:
    def registrar(action: SubParsers) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        arguments(parser)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=execute)


def register_write_commands(subparsers: SubParsers) -> Dict[str, CommandSpec]:
    """Declare mutating CLI commands such as orders and purchases."""
    specs = {
        "add-product": register_add_product_command(subparsers),
        "add-category": register_add_category_command(subparsers),
        "add-client": register_add_client_command(subparsers),
        "add-supplier": register_add_supplier_command(subparsers),
        "delete-product": register_delete_command("product", catalog.delete_product),
        "delete-category": register_delete_command("category", catalog.delete_category),
        "delete-client": register_delete_command("client", catalog.delete_client),
        "delete-supplier": register_delete_command("supplier", catalog.delete_supplier),
        "order": register_order_command(subparsers),
        "purchase": register_purchase_command(subparsers),
        "open-register": register_open_register_command(subparsers),
        "close-register": register_close_register_command(subparsers),
    }
    for spec in specs.values():
        spec.register(subparsers)
    return specs


def register_read_commands(subparsers: SubParsers) -> Dict[str, CommandSpec]:
    """Declare read-only CLI commands such as reports."""
    specs = {
        "orders": _simple_spec("orders", "List recorded orders.", run_orders_report),
        "purchases": _simple_spec("purchases", "List recorded purchases.", run_purchases_report),
        "ledger": _simple_spec(
            "ledger",
            "Display the transaction log.",
            run_ledger_report,
            lambda parser: parser.add_argument(
                "--type",
                dest="transaction_type",
                choices=[member.value for member in TransactionType],
                default=None,
            ),
        ),
        "register": _simple_spec("register", "Display the current cash register session.", run_register_report),
        "stock": _simple_spec(
            "stock",
            "Display stock levels.",
            run_stock_report,
            lambda parser: parser.add_argument(
                "--threshold", type=int, default=None, help="Only list products at or below this stock."
            ),
        ),
        "finance": _simple_spec("finance", "Display income, expense and balance totals.", run_finance_report),
    }
    for spec in specs.values():
        spec.register(subparsers)
    return specs


def register_add_product_command(subparsers: SubParsers) -> CommandSpec:
    """Register the parser and executor for ``add-product``."""

    def arguments(parser: argparse.ArgumentParser) -> None:
        parser.add_argument("--product-id", required=True)
        parser.add_argument("--name", required=True)
        parser.add_argument("--category", default="")
        parser.add_argument("--price", type=parse_money, required=True)
        parser.add_argument("--cost", type=parse_money, default=Decimal("0.00"))
        parser.add_argument("--stock", type=int, default=0)
        parser.add_argument("--unit", default="unidad")
        parser.add_argument("--sku", default="")
        parser.add_argument("--image", default=None)

    return _simple_spec("add-product", "Add or overwrite a product.", run_add_product, arguments)


def register_add_category_command(subparsers: SubParsers) -> CommandSpec:
    """Register the parser and executor for ``add-category``."""

    def arguments(parser: argparse.ArgumentParser) -> None:
        parser.add_argument("--category-id", required=True)
        parser.add_argument("--name", required=True)
        parser.add_argument("--description", default=None)

    return _simple_spec("add-category", "Add or overwrite a category.", run_add_category, arguments)


def register_add_client_command(subparsers: SubParsers) -> CommandSpec:
    """Register the parser and executor for ``add-client``."""

    def arguments(parser: argparse.ArgumentParser) -> None:
        parser.add_argument("--client-id", required=True)
        parser.add_argument("--name", required=True)
        parser.add_argument("--phone", default="")
        parser.add_argument("--email", default="")

    return _simple_spec("add-client", "Add or overwrite a client.", run_add_client, arguments)


def register_add_supplier_command(subparsers: SubParsers) -> CommandSpec:
    """Register the parser and executor for ``add-supplier``."""

    def arguments(parser: argparse.ArgumentParser) -> None:
        parser.add_argument("--supplier-id", required=True)
        parser.add_argument("--name", required=True)
        parser.add_argument("--contact", default="")
        parser.add_argument("--email", default="")
        parser.add_argument("--category", default="")

    return _simple_spec("add-supplier", "Add or overwrite a supplier.", run_add_supplier, arguments)


def register_delete_command(
    entity: str,
    delete: Callable[[runtime.RuntimeContext, str], None],
) -> CommandSpec:
    """Register ``delete-<entity>`` taking a single ``--<entity>-id``."""

    def arguments(parser: argparse.ArgumentParser) -> None:
        parser.add_argument(f"--{entity}-id", dest="record_id", required=True)

    def execute(context: runtime.RuntimeContext, args: argparse.Namespace) -> int:
        delete(context, args.record_id)
        return 0

    return _simple_spec(f"delete-{entity}", f"Delete a {entity}.", execute, arguments)


def register_order_command(subparsers: SubParsers) -> CommandSpec:
    """Register the parser and executor for ``order``."""

    def arguments(parser: argparse.ArgumentParser) -> None:
        parser.add_argument(
            "--item",
            dest="items",
            action="append",
            type=parse_cart_item,
            default=[],
            metavar="PRODUCT_ID:QUANTITY",
            help="Cart line; repeat for several products.",
        )
        parser.add_argument(
            "--payment-method",
            choices=[member.value for member in PaymentMethod],
            required=True,
        )
        parser.add_argument("--client-id", default=None)
        parser.add_argument(
            "--total",
            type=parse_money,
            default=None,
            help="Declared total; defaults to the sum of catalog prices.",
        )

    return _simple_spec("order", "Record a sale.", run_order, arguments)


def register_purchase_command(subparsers: SubParsers) -> CommandSpec:
    """Register the parser and executor for ``purchase``."""

    def arguments(parser: argparse.ArgumentParser) -> None:
        parser.add_argument("--supplier-id", required=True)
        parser.add_argument("--supplier-name", default="")
        parser.add_argument(
            "--item",
            dest="items",
            action="append",
            type=parse_purchase_item,
            default=[],
            metavar="PRODUCT_ID:QUANTITY:UNIT_COST",
            help="Received line; repeat for several products.",
        )
        parser.add_argument("--total", type=parse_money, default=None)
        parser.add_argument("--date", type=datetime.fromisoformat, default=None, help="ISO date of the purchase.")
        parser.add_argument("--notes", default=None)

    return _simple_spec("purchase", "Record stock received from a supplier.", run_purchase, arguments)


def register_open_register_command(subparsers: SubParsers) -> CommandSpec:
    """Register the parser and executor for ``open-register``."""

    def arguments(parser: argparse.ArgumentParser) -> None:
        parser.add_argument("--amount", type=parse_money, required=True, help="Initial cash in the drawer.")

    return _simple_spec("open-register", "Open a cash register session.", run_open_register, arguments)


def register_close_register_command(subparsers: SubParsers) -> CommandSpec:
    """Register the parser and executor for ``close-register``."""

    def arguments(parser: argparse.ArgumentParser) -> None:
        parser.add_argument("--counted", type=parse_money, required=True, help="Physically counted cash.")

    return _simple_spec("close-register", "Close the register and reconcile cash.", run_close_register, arguments)


def load_runtime_context(config_path: Optional[Path] = None) -> runtime.RuntimeContext:
    """Resolve the runtime context for CLI operations."""
    context = runtime.load_runtime_context(config_path)
    runtime.ensure_schema_version(context)
    return context


def dispatch_command(
    context: runtime.RuntimeContext,
    args: argparse.Namespace,
    command_table: Mapping[str, CommandSpec],
) -> int:
    """Dispatch the parsed arguments to the configured executor."""
    if not hasattr(args, "command") or args.command is None:
        raise KeyError("No command specified")
    spec = command_table.get(args.command)
    if spec is None:
        raise KeyError(f"Unknown command: {args.command}")
    return spec.execute(context, args)


def build_command_table(specs: Iterable[CommandSpec]) -> MutableMapping[str, CommandSpec]:
    """Build an index of command specifications keyed by command name."""
    table: Dict[str, CommandSpec] = {}
    for spec in specs:
        if spec.name in table:
            raise ValueError(f"Duplicate command name: {spec.name}")
        table[spec.name] = spec
    return table


# ---------------------------------------------------------------------------
# Translation from arguments to business commands
# ---------------------------------------------------------------------------


def translate_product(args: argparse.Namespace) -> data_manager.ProductRow:
    """Translate CLI args into a product record."""
    return data_manager.ProductRow(
        product_id=args.product_id,
        name=args.name,
        category=args.category,
        price=args.price,
        cost=args.cost,
        stock=args.stock,
        unit=args.unit,
        sku=args.sku,
        image=args.image,
    )


def translate_order(context: runtime.RuntimeContext, args: argparse.Namespace) -> core_logic.OrderCommand:
    """Translate CLI args into an order command, snapshotting catalog prices."""
    items: List[core_logic.CartItem] = []
    for product_id, quantity in args.items:
        product = catalog.get_product(context, product_id)
        items.append(core_logic.CartItem(product_id, product.name, quantity, product.price))
    total = args.total
    if total is None:
        total = sum((item.price * item.quantity for item in items), Decimal("0"))
    return core_logic.OrderCommand(
        items=items,
        payment_method=PaymentMethod(args.payment_method),
        total=total,
        client_id=args.client_id,
    )


def translate_purchase(context: runtime.RuntimeContext, args: argparse.Namespace) -> core_logic.PurchaseCommand:
    """Translate CLI args into a purchase command."""
    items: List[core_logic.PurchaseItem] = []
    for product_id, quantity, unit_cost in args.items:
        product = catalog.get_product(context, product_id)
        items.append(
            core_logic.PurchaseItem(
                product_id=product_id,
                product_name=product.name,
                quantity=quantity,
                unit_cost=unit_cost,
                line_total=unit_cost * quantity,
            )
        )
    total = args.total
    if total is None:
        total = sum((item.line_total for item in items), Decimal("0"))
    return core_logic.PurchaseCommand(
        supplier_id=args.supplier_id,
        supplier_name=args.supplier_name,
        items=items,
        total=total,
        date=args.date,
        notes=args.notes,
    )


# ---------------------------------------------------------------------------
# Executors
# ---------------------------------------------------------------------------


def run_add_product(context: runtime.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the add-product workflow in the BLL."""
    catalog.upsert_product(context, translate_product(args))
    return 0


def run_add_category(context: runtime.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the add-category workflow in the BLL."""
    catalog.upsert_category(context, data_manager.CategoryRow(args.category_id, args.name, args.description))
    return 0


def run_add_client(context: runtime.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the add-client workflow in the BLL."""
    catalog.upsert_client(context, data_manager.ClientRow(args.client_id, args.name, args.phone, args.email))
    return 0


def run_add_supplier(context: runtime.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the add-supplier workflow in the BLL."""
    catalog.upsert_supplier(
        context,
        data_manager.SupplierRow(args.supplier_id, args.name, args.contact, args.email, args.category),
    )
    return 0


def run_order(context: runtime.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the order workflow via the BLL."""
    order = core_logic.create_order(context, translate_order(context, args))
    print(f"Order {order.order_id} recorded: total {order.header.total}")
    return 0


def run_purchase(context: runtime.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the purchase workflow via the BLL."""
    purchase = core_logic.create_purchase(context, translate_purchase(context, args))
    print(f"Purchase {purchase.purchase_id} recorded: total {purchase.header.total}")
    return 0


def run_open_register(context: runtime.RuntimeContext, args: argparse.Namespace) -> int:
    """Open a register session."""
    session = core_logic.toggle_register(context, args.amount, True)
    print(f"Register {session.register_id} opened with {session.initial_amount}")
    return 0


def run_close_register(context: runtime.RuntimeContext, args: argparse.Namespace) -> int:
    """Close the register session and print the reconciliation."""
    session = core_logic.toggle_register(context, args.counted, False)
    print(f"Register {session.register_id} closed")
    print(f"  Expected: {session.expected_amount}")
    print(f"  Counted:  {session.counted_amount}")
    print(f"  Variance: {session.variance}")
    return 0


def run_orders_report(context: runtime.RuntimeContext, args: argparse.Namespace) -> int:
    """Print every order, newest first."""
    for order in core_logic.list_orders(context):
        header = order.header
        client = header.client_id or "-"
        print(f"{header.order_id}  {header.timestamp_iso}  {header.payment_method:<8}  {header.total:>10}  {client}")
        for line in order.lines:
            print(f"    {line.quantity} x {line.product_name} @ {line.price}")
    return 0


def run_purchases_report(context: runtime.RuntimeContext, args: argparse.Namespace) -> int:
    """Print every purchase."""
    for purchase in core_logic.list_purchases(context):
        header = purchase.header
        print(f"{header.purchase_id}  {header.date_iso}  {header.supplier_name}  {header.total:>10}")
        for line in purchase.lines:
            print(f"    {line.quantity} x {line.product_name} @ {line.unit_cost} = {line.line_total}")
    return 0


def run_ledger_report(context: runtime.RuntimeContext, args: argparse.Namespace) -> int:
    """Print the transaction log."""
    transaction_type = TransactionType(args.transaction_type) if args.transaction_type else None
    for row in core_logic.list_transactions(context, transaction_type=transaction_type):
        print(f"{row.timestamp_iso}  {row.transaction_type:<7}  {row.amount:>10}  {row.category}  {row.description}")
    return 0


def run_register_report(context: runtime.RuntimeContext, args: argparse.Namespace) -> int:
    """Print the current register session."""
    session = core_logic.get_cash_register(context)
    if session is None:
        print("No cash register session has been opened yet.")
        return 0
    print(f"Register {session.register_id}: {'OPEN' if session.is_open else 'CLOSED'}")
    print(f"  Opened at: {session.opened_at_iso}")
    print(f"  Initial:   {session.initial_amount}")
    print(f"  Current:   {session.current_amount}")
    print(f"  Expected:  {session.expected_amount}")
    print(f"  Cash sales since open: {core_logic.cash_sales_since_open(session)}")
    if not session.is_open:
        print(f"  Closed at: {session.closed_at_iso}")
        print(f"  Counted:   {session.counted_amount}")
        print(f"  Variance:  {session.variance}")
    return 0


def run_stock_report(context: runtime.RuntimeContext, args: argparse.Namespace) -> int:
    """Print stock levels."""
    for product in core_logic.calculate_stock_report(context, threshold=args.threshold):
        print(f"{product.product_id:<10} {product.name:<30} {product.stock:>6} {product.unit}")
    return 0


def run_finance_report(context: runtime.RuntimeContext, args: argparse.Namespace) -> int:
    """Print the income/expense summary."""
    summary = core_logic.calculate_finance_summary(context)
    print(f"Income:  {summary['total_income']}")
    print(f"Expense: {summary['total_expense']}")
    print(f"Balance: {summary['balance']}")
    return 0


def handle_cli_error(error: Exception) -> int:
    """Convert raised exceptions into user-friendly exit codes."""
    if isinstance(error, BusinessRuleViolation):
        log.error("%s", error)
        return 2
    if isinstance(error, FileNotFoundError):
        log.error("%s", error)
        return 3
    log.error("%s", error)
    return 1


def main(argv: Sequence[str] | None = None) -> int:
    """CLI entry point that orchestrates parsing and execution."""
    parser = build_parser()
    command_table = configure_subcommands(parser)
    args = parser.parse_args(argv)
    try:
        context = load_runtime_context(getattr(args, "config", None))
        return dispatch_command(context, args, command_table)
    except (CajaError, OSError, KeyError, ValueError, RuntimeError) as error:
        return handle_cli_error(error)
