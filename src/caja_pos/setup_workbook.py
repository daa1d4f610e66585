"""Utility for initializing the Caja POS master workbook.

The module doubles as a script (``caja-setup``) and as a library used by
tests or other tooling. Shared helpers keep the workbook bootstrap logic
consistent regardless of the execution path.
"""

from __future__ import annotations

import argparse
import configparser
import sys
from dataclasses import dataclass
from decimal import Decimal
from pathlib import Path
from typing import Mapping, Sequence

import openpyxl
from openpyxl.styles import Font

from . import data_manager
from .constants import SheetName

CONFIG_FILE = "config.ini"

# Starter catalog for a small restaurant, written only with --demo-data.
DEMO_RECORDS: Sequence[object] = (
    data_manager.CategoryRow("1", "Platos Fuertes", "Platos principales"),
    data_manager.CategoryRow("2", "Entradas", "Aperitivos y entradas"),
    data_manager.CategoryRow("3", "Bebidas", "Bebidas frías y calientes"),
    data_manager.CategoryRow("4", "Postres", "Dulces y pasteles"),
    data_manager.ProductRow(
        "1", "Hamburguesa Clásica", "Platos Fuertes", Decimal("12.50"), Decimal("6.00"), 50, "unidad", "HAM-001"
    ),
    data_manager.ProductRow(
        "2", "Papas Fritas", "Entradas", Decimal("4.50"), Decimal("1.50"), 100, "porcion", "PAP-001"
    ),
    data_manager.ProductRow("3", "Coca Cola", "Bebidas", Decimal("2.00"), Decimal("1.00"), 200, "botella", "BEB-001"),
    data_manager.ProductRow(
        "4", "Café Americano", "Bebidas", Decimal("3.00"), Decimal("0.50"), 500, "taza", "CAF-001"
    ),
    data_manager.ProductRow(
        "5", "Pizza Margarita", "Platos Fuertes", Decimal("15.00"), Decimal("5.00"), 30, "unidad", "PIZ-001"
    ),
    data_manager.ClientRow("1", "Juan Pérez", "555-0101", "juan@example.com", Decimal("150.00"), 5),
    data_manager.ClientRow("2", "Maria Lopez", "555-0202", "maria@example.com", Decimal("45.00"), 2),
    data_manager.SupplierRow(
        "1", "Distribuidora Alimentos SA", "Carlos Ruiz", "ventas@distri.com", "Insumos Generales"
    ),
    data_manager.SupplierRow("2", "Bebidas del Norte", "Ana Polo", "ana@bebidas.com", "Bebidas"),
)


@dataclass(frozen=True)
class SetupSettings:
    """Type-safe representation of configuration values used during setup."""

    data_file: Path


def load_settings(config_path: Path) -> SetupSettings:
    """Read ``config.ini`` and produce :class:`SetupSettings`.

    Relative paths inside the config file are resolved against the config
    file's directory.
    """

    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    parser = configparser.ConfigParser(inline_comment_prefixes=(";", "#"))
    parser.read(config_path)

    try:
        data_file_raw = parser.get("System", "DataFile")
    except (configparser.NoSectionError, configparser.NoOptionError) as exc:
        raise KeyError(f"Missing required configuration entry: {exc}") from exc

    data_file_path = Path(data_file_raw)
    if not data_file_path.is_absolute():
        data_file_path = (config_path.parent / data_file_path).resolve()

    return SetupSettings(data_file=data_file_path)


def create_master_workbook(
    destination: Path,
    *,
    sheet_columns: Mapping[SheetName, Sequence[str]] = data_manager.SHEET_COLUMNS,
    seed_records: Sequence[object] = (),
    overwrite: bool = False,
) -> Path:
    """Create the Caja POS master workbook at ``destination``.

    Every sheet gets a bold header row. ``seed_records`` are appended after
    the headers. When ``overwrite`` is ``False`` (the default) this function
    raises ``FileExistsError`` if the target already exists.
    """

    destination = destination.expanduser().resolve()
    if destination.exists() and not overwrite:
        raise FileExistsError(
            f"Refusing to overwrite existing master workbook: {destination}"
        )

    destination.parent.mkdir(parents=True, exist_ok=True)

    workbook = openpyxl.Workbook()

    # Remove the default sheet openpyxl generates so we can create ours.
    if workbook.active and workbook.active.title == "Sheet":
        workbook.remove(workbook.active)

    header_font = Font(bold=True)

    for sheet_name, columns in sheet_columns.items():
        worksheet = workbook.create_sheet(title=sheet_name.value)
        for column_index, column_name in enumerate(columns, start=1):
            cell = worksheet.cell(row=1, column=column_index)
            cell.value = column_name
            cell.font = header_font

    for record in seed_records:
        data_manager.append_record(workbook, record)

    workbook.save(destination)
    return destination


def run_from_config(config_path: Path, *, overwrite: bool = False, demo_data: bool = False) -> Path:
    """Create the workbook named by ``config_path``."""

    settings = load_settings(config_path)
    return create_master_workbook(
        settings.data_file,
        seed_records=DEMO_RECORDS if demo_data else (),
        overwrite=overwrite,
    )


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    """Parse CLI arguments for the setup script."""

    parser = argparse.ArgumentParser(prog="caja-setup", description="Initialize the Caja POS data file")
    parser.add_argument(
        "--config",
        default=CONFIG_FILE,
        help="Path to configuration file (default: config.ini)",
    )
    parser.add_argument(
        "--force",
        action="store_true",
        help="Overwrite the target workbook if it already exists.",
    )
    parser.add_argument(
        "--demo-data",
        action="store_true",
        help="Seed the workbook with a sample catalog, clients and suppliers.",
    )
    return parser.parse_args(argv)


def main(argv: Sequence[str] | None = None) -> int:
    """Entry point for the setup script."""

    args = parse_args(argv)
    config_path = Path(args.config).expanduser().resolve()

    print("--- Caja POS Setup ---")
    print(f"Using configuration: {config_path}")
    try:
        output_path = run_from_config(config_path, overwrite=args.force, demo_data=args.demo_data)
    except FileNotFoundError as exc:
        print(f"\n[ERROR] {exc}")
        return 1
    except KeyError as exc:
        print(f"\n[ERROR] {exc}")
        return 1
    except FileExistsError as exc:
        print(f"\n[ERROR] {exc}")
        print("Run with --force to overwrite the existing file if appropriate.")
        return 1
    except (PermissionError, OSError) as exc:
        print(f"\n[ERROR] Unable to write workbook: {exc}")
        return 1

    print(f"\n[SUCCESS] Created master workbook at '{output_path}'.")
    return 0


if __name__ == "__main__":  # pragma: no cover - exercised via manual runs
    sys.exit(main())
