"""Data access layer for Caja POS.

This module provides low-level helpers that read from and write to the
``master_workbook.xlsx`` workbook. Business logic belongs elsewhere.

The public API is designed around three responsibilities:

1. Configuration handling: finding and parsing ``config.ini``.
2. Workbook lifecycle: opening, validating, and persisting the Excel file.
3. Sheet operations: loading structured records and appending, replacing or
   deleting individual rows.

Every sheet stores one record type. The first column of each sheet is the
record key, and the column order matches the field order of the record
dataclass so rows can be serialized without per-type glue.
"""


from __future__ import annotations

import configparser
from dataclasses import dataclass, fields
from decimal import ROUND_HALF_UP, Decimal
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple, Type

from openpyxl.workbook import Workbook
import openpyxl

from . import log
from .constants import Backend, CashWithoutRegister, SheetName, StockPolicy


CONFIG_FILE_NAME = "config.ini"


@dataclass(frozen=True)
class ConfigSettings:
    """Typed representation of the ``config.ini`` settings we care about."""

    data_file: Path
    store_name: str
    schema_version: str
    backend: Backend = Backend.WORKBOOK
    stock_policy: StockPolicy = StockPolicy.ALLOW
    cash_without_register: CashWithoutRegister = CashWithoutRegister.REJECT


@dataclass(frozen=True)
class ProductRow:
    """In-memory view of a row from the ``Products`` sheet."""

    product_id: str
    name: str
    category: str
    price: Decimal
    cost: Decimal
    stock: int
    unit: str
    sku: str
    image: Optional[str] = None


@dataclass(frozen=True)
class CategoryRow:
    """In-memory view of a row from the ``Categories`` sheet."""

    category_id: str
    name: str
    description: Optional[str] = None


@dataclass(frozen=True)
class ClientRow:
    """In-memory view of a row from the ``Clients`` sheet."""

    client_id: str
    name: str
    phone: str
    email: str
    total_spent: Decimal = Decimal("0.00")
    visits: int = 0


@dataclass(frozen=True)
class SupplierRow:
    """In-memory view of a row from the ``Suppliers`` sheet."""

    supplier_id: str
    name: str
    contact: str
    email: str
    category: str


@dataclass(frozen=True)
class OrderRow:
    """In-memory view of a row from the ``Orders`` sheet."""

    order_id: str
    timestamp_iso: str
    total: Decimal
    payment_method: str
    status: str
    client_id: Optional[str]


@dataclass(frozen=True)
class OrderLineRow:
    """One cart line of an order, with the price captured at sale time."""

    line_id: str
    order_id: str
    product_id: str
    product_name: str
    quantity: int
    price: Decimal


@dataclass(frozen=True)
class PurchaseRow:
    """In-memory view of a row from the ``Purchases`` sheet."""

    purchase_id: str
    date_iso: str
    supplier_id: str
    supplier_name: str
    total: Decimal
    notes: Optional[str]


@dataclass(frozen=True)
class PurchaseLineRow:
    """One line of a purchase with its unit cost and line total."""

    line_id: str
    purchase_id: str
    product_id: str
    product_name: str
    quantity: int
    unit_cost: Decimal
    line_total: Decimal


@dataclass(frozen=True)
class TransactionRow:
    """In-memory view of a row from the ``TransactionLog`` sheet."""

    transaction_id: str
    timestamp_iso: str
    transaction_type: str
    category: str
    amount: Decimal
    description: str
    reference_id: Optional[str]


@dataclass(frozen=True)
class CashRegisterRow:
    """One cash register session, including its closing snapshot once closed."""

    register_id: str
    is_open: bool
    opened_at_iso: str
    initial_amount: Decimal
    current_amount: Decimal
    expected_amount: Decimal
    closed_at_iso: Optional[str] = None
    counted_amount: Optional[Decimal] = None
    variance: Optional[Decimal] = None


# Define the schema exactly as laid out in the workbook, one entry per sheet.
SHEET_COLUMNS: Mapping[SheetName, Sequence[str]] = {
    SheetName.PRODUCTS: ["ProductID", "Name", "Category", "Price", "Cost", "Stock", "Unit", "SKU", "Image"],
    SheetName.CATEGORIES: ["CategoryID", "Name", "Description"],
    SheetName.CLIENTS: ["ClientID", "Name", "Phone", "Email", "TotalSpent", "Visits"],
    SheetName.SUPPLIERS: ["SupplierID", "Name", "Contact", "Email", "Category"],
    SheetName.ORDERS: ["OrderID", "Timestamp", "Total", "PaymentMethod", "Status", "ClientID"],
    SheetName.ORDER_ITEMS: ["LineID", "OrderID", "ProductID", "ProductName", "Quantity", "Price"],
    SheetName.PURCHASES: ["PurchaseID", "Date", "SupplierID", "SupplierName", "Total", "Notes"],
    SheetName.PURCHASE_ITEMS: [
        "LineID",
        "PurchaseID",
        "ProductID",
        "ProductName",
        "Quantity",
        "UnitCost",
        "LineTotal",
    ],
    SheetName.TRANSACTION_LOG: [
        "TransactionID",
        "Timestamp",
        "TransactionType",
        "Category",
        "Amount",
        "Description",
        "ReferenceID",
    ],
    SheetName.CASH_REGISTER: [
        "RegisterID",
        "IsOpen",
        "OpenedAt",
        "InitialAmount",
        "CurrentAmount",
        "ExpectedAmount",
        "ClosedAt",
        "CountedAmount",
        "Variance",
    ],
}


def _text(value: object) -> str:
    return "" if value is None else str(value)


def _optional_text(value: object) -> Optional[str]:
    if value is None or value == "":
        return None
    return str(value)


def _money(value: object) -> Decimal:
    # Excel hands numbers back as floats; going through str keeps the
    # shortest decimal representation instead of the binary expansion.
    if value is None:
        return Decimal("0.00")
    return Decimal(str(value)).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


def _optional_money(value: object) -> Optional[Decimal]:
    return _money(value) if value is not None else None


def _integer(value: object) -> int:
    return int(value) if value is not None else 0


def _flag(value: object) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in {"true", "1", "yes"}
    return bool(value)


Converter = Callable[[object], Any]

RECORD_LAYOUTS: Mapping[SheetName, Tuple[Type[Any], Tuple[Converter, ...]]] = {
    SheetName.PRODUCTS: (
        ProductRow,
        (_text, _text, _text, _money, _money, _integer, _text, _text, _optional_text),
    ),
    SheetName.CATEGORIES: (CategoryRow, (_text, _text, _optional_text)),
    SheetName.CLIENTS: (ClientRow, (_text, _text, _text, _text, _money, _integer)),
    SheetName.SUPPLIERS: (SupplierRow, (_text, _text, _text, _text, _text)),
    SheetName.ORDERS: (OrderRow, (_text, _text, _money, _text, _text, _optional_text)),
    SheetName.ORDER_ITEMS: (OrderLineRow, (_text, _text, _text, _text, _integer, _money)),
    SheetName.PURCHASES: (PurchaseRow, (_text, _text, _text, _text, _money, _optional_text)),
    SheetName.PURCHASE_ITEMS: (
        PurchaseLineRow,
        (_text, _text, _text, _text, _integer, _money, _money),
    ),
    SheetName.TRANSACTION_LOG: (
        TransactionRow,
        (_text, _text, _text, _text, _money, _text, _optional_text),
    ),
    SheetName.CASH_REGISTER: (
        CashRegisterRow,
        (
            _text,
            _flag,
            _text,
            _money,
            _money,
            _money,
            _optional_text,
            _optional_money,
            _optional_money,
        ),
    ),
}

_SHEET_BY_RECORD_TYPE: Dict[Type[Any], SheetName] = {
    record_type: sheet for sheet, (record_type, _) in RECORD_LAYOUTS.items()
}


def find_config_file(explicit_path: Optional[Path] = None) -> Path:
    """Locate the configuration file that controls how the data layer behaves.

    If the caller provides ``explicit_path`` the value is returned immediately
    without any verification, which allows the caller to deliberately target a
    non-standard location. When no explicit path is given the function walks up
    from the current working directory toward the filesystem root looking for a
    file named ``CONFIG_FILE_NAME``. The first match that exists on disk is
    considered authoritative.

    Args:
        explicit_path (Path | None): Optional path to use instead of performing
            the upward search. May be relative to the current working directory.

    Returns:
        Path: The path provided by the caller or the discovered configuration
            file.

    Raises:
        FileNotFoundError: If the search exhausts all parent directories without
            finding ``CONFIG_FILE_NAME``.
    """

    if explicit_path:
        return explicit_path

    current = Path.cwd()
    for p in (current, *current.parents):
        candidate = p / CONFIG_FILE_NAME
        if candidate.exists():
            return candidate

    raise FileNotFoundError(
        f"Configuration file not found: {CONFIG_FILE_NAME}")


def read_config(config_path: Path) -> configparser.ConfigParser:
    """Load ``config.ini`` and return a populated ``ConfigParser`` instance.

    Args:
        config_path (Path): Path to the configuration file, relative or
            absolute. ``~`` is expanded before the existence check.

    Returns:
        configparser.ConfigParser: Initialized parser containing the raw
            configuration data. Validation of required entries happens in
            :func:`parse_settings`.

    Raises:
        FileNotFoundError: If ``config_path`` does not exist after expansion and
            resolution.
    """

    config_path = config_path.expanduser().resolve()
    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    parser = configparser.ConfigParser(inline_comment_prefixes=(";", "#"))
    parser.read(config_path)
    return parser


def _parse_choice(raw: str, enum_type: Type[Any], option: str) -> Any:
    try:
        return enum_type(raw.strip().lower())
    except ValueError as exc:
        allowed = ", ".join(member.value for member in enum_type)
        raise ValueError(f"Invalid value '{raw}' for {option}; expected one of: {allowed}") from exc


def parse_settings(parser: configparser.ConfigParser, *, base_path: Optional[Path] = None) -> ConfigSettings:
    """Convert a ``ConfigParser`` into strongly typed :class:`ConfigSettings`.

    ``[System]`` entries are mandatory. The ``[Policies]`` section and the
    ``Backend`` option are optional and fall back to the defaults declared on
    :class:`ConfigSettings`. Relative ``DataFile`` paths are anchored at
    ``base_path`` (or the current working directory) and resolved.

    Args:
        parser (configparser.ConfigParser): Parsed configuration data.
        base_path (Path | None): Directory to use as the anchor for relative
            ``DataFile`` entries.

    Returns:
        ConfigSettings: Immutable settings container.

    Raises:
        KeyError: If one of the required sections or options is missing.
        ValueError: If a backend or policy option holds an unknown value.
    """

    try:
        data_file_raw = parser.get("System", "DataFile")
        store_name = parser.get("System", "StoreName")
        schema_version = parser.get("System", "SchemaVersion")
    except (configparser.NoSectionError, configparser.NoOptionError) as exc:
        raise KeyError(f"Missing required configuration entry: {exc}") from exc

    backend = _parse_choice(
        parser.get("System", "Backend", fallback=Backend.WORKBOOK.value),
        Backend,
        "System.Backend",
    )
    stock_policy = _parse_choice(
        parser.get("Policies", "StockPolicy", fallback=StockPolicy.ALLOW.value),
        StockPolicy,
        "Policies.StockPolicy",
    )
    cash_without_register = _parse_choice(
        parser.get("Policies", "CashWithoutRegister", fallback=CashWithoutRegister.REJECT.value),
        CashWithoutRegister,
        "Policies.CashWithoutRegister",
    )

    data_file_path = Path(data_file_raw)
    if not data_file_path.is_absolute():
        if base_path is None:
            base_path = Path.cwd()
        data_file_path = (base_path / data_file_path).resolve()

    return ConfigSettings(
        data_file=data_file_path,
        store_name=store_name,
        schema_version=schema_version,
        backend=backend,
        stock_policy=stock_policy,
        cash_without_register=cash_without_register,
    )


def open_workbook(data_file: Path) -> Workbook:
    """Open the master Excel workbook and return a live ``openpyxl`` workbook.

    Args:
        data_file (Path): Filesystem path to the ``master_workbook.xlsx`` file.

    Returns:
        Workbook: ``openpyxl`` workbook instance backed by the provided file.

    Raises:
        FileNotFoundError: If ``data_file`` does not exist after expansion and
            resolution.
    """

    data_file = Path(data_file).expanduser().resolve()
    if not data_file.exists():
        raise FileNotFoundError(f"Workbook not found: {data_file}")

    return openpyxl.load_workbook(data_file)


def save_workbook(workbook: Workbook, destination: Path) -> None:
    """Persist the workbook to disk, creating parent directories on demand."""

    dest = Path(destination).expanduser().resolve()
    dest.parent.mkdir(parents=True, exist_ok=True)
    workbook.save(dest)


def refresh_workbook(data_file: Path) -> Workbook:
    """Reload the workbook from disk, discarding any unsaved in-memory changes."""

    return open_workbook(data_file)


def missing_sheets(workbook: Workbook) -> List[str]:
    """Return the names of expected sheets that the workbook lacks."""

    return [sheet.value for sheet in SHEET_COLUMNS if sheet.value not in workbook.sheetnames]


def sheet_for(record: object) -> SheetName:
    """Resolve the sheet that stores ``record``.

    Raises:
        TypeError: If ``record`` is not one of the row dataclasses.
    """

    try:
        return _SHEET_BY_RECORD_TYPE[type(record)]
    except KeyError as exc:
        raise TypeError(f"Unsupported record type: {type(record).__name__}") from exc


def record_key(record: object) -> str:
    """Return the primary key of a row dataclass (its first field)."""

    first = fields(record)[0]  # type: ignore[arg-type]
    return getattr(record, first.name)


def iter_records(workbook: Workbook, sheet_name: SheetName) -> Iterable[Any]:
    """Iterate over the records stored on ``sheet_name``.

    The iterator skips the header row and any fully empty rows to avoid
    producing meaningless values. Each remaining row is converted into the
    sheet's record dataclass via :func:`deserialize_record`.

    Args:
        workbook (Workbook): Workbook containing the sheet.
        sheet_name (SheetName): Sheet to read.

    Yields:
        One structured record for each meaningful row, in sheet order.
    """

    sheet = workbook[sheet_name.value]
    for raw in sheet.iter_rows(min_row=2, values_only=True):
        # skip fully empty rows
        if any(cell is not None for cell in raw):
            yield deserialize_record(sheet_name, raw)


def append_record(workbook: Workbook, record: object) -> None:
    """Append a record to the sheet that stores its type."""

    sheet = workbook[sheet_for(record).value]
    sheet.append(serialize_record(record))


def replace_record(workbook: Workbook, record: object) -> None:
    """Overwrite every column of the row whose key matches ``record``.

    Raises:
        KeyError: If no row carries the record's key.
    """

    sheet_name = sheet_for(record)
    key = record_key(record)
    row_index = locate_row(workbook, sheet_name.value, SHEET_COLUMNS[sheet_name][0], key)
    if row_index is None:
        raise KeyError(f"{sheet_name.value} row not found: {key}")

    sheet = workbook[sheet_name.value]
    for col, value in enumerate(serialize_record(record), start=1):
        sheet.cell(row=row_index, column=col, value=value)


def delete_record(workbook: Workbook, sheet_name: SheetName, key: str) -> None:
    """Remove the row whose key column equals ``key``.

    Raises:
        KeyError: If no row carries ``key``.
    """

    row_index = locate_row(workbook, sheet_name.value, SHEET_COLUMNS[sheet_name][0], key)
    if row_index is None:
        raise KeyError(f"{sheet_name.value} row not found: {key}")
    workbook[sheet_name.value].delete_rows(row_index)


def locate_row(workbook: Workbook, sheet_name: str, key_column: str, key_value: str) -> Optional[int]:
    """Find a row by matching a key value within the specified worksheet.

    Args:
        workbook (Workbook): Workbook providing access to ``sheet_name``.
        sheet_name (str): Name of the worksheet to search.
        key_column (str): Header title identifying the column that stores the
            lookup key.
        key_value (str): Value to match within the key column.

    Returns:
        int | None: 1-based Excel row index when a match is found, otherwise
            ``None``.

    Raises:
        KeyError: If ``key_column`` is not present in the worksheet header.
    """

    sheet = workbook[sheet_name]
    header_cells = list(sheet[1])
    header_map = {cell.value: idx + 1 for idx, cell in enumerate(header_cells)}
    if key_column not in header_map:
        raise KeyError(f"Unknown column: {key_column}")

    key_col_index = header_map[key_column]

    for row_idx, row in enumerate(sheet.iter_rows(min_row=2, values_only=True), start=2):
        cell_value = row[key_col_index - 1]
        if cell_value is not None and str(cell_value) == key_value:
            return row_idx

    return None


def serialize_record(record: object) -> List[object]:
    """Convert a row dataclass into its worksheet column ordering.

    Decimal values are kept as :class:`~decimal.Decimal` so ``openpyxl`` writes
    them as numeric cells.
    """

    return [getattr(record, field.name) for field in fields(record)]  # type: ignore[arg-type]


def deserialize_record(sheet_name: SheetName, raw_row: Sequence[object]) -> Any:
    """Convert a raw worksheet row into the sheet's record dataclass.

    Numeric columns become :class:`~decimal.Decimal` or ``int``, ids and names
    are coerced to ``str`` so Excel's number guessing does not leak through,
    and optional columns stay ``None`` when blank. Short rows are padded with
    ``None``.
    """

    record_type, converters = RECORD_LAYOUTS[sheet_name]
    values = list(raw_row[: len(converters)])
    values.extend([None] * (len(converters) - len(values)))
    return record_type(*(convert(value) for convert, value in zip(converters, values)))
