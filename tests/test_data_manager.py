"""Unit tests documenting the expected behavior of the data access layer."""

from __future__ import annotations

import configparser
from decimal import Decimal
from pathlib import Path

import openpyxl
from openpyxl.workbook import Workbook as OpenpyxlWorkbook
import pytest

from caja_pos import constants, data_manager
from caja_pos.constants import SheetName


def test_find_config_file_respects_explicit_path(config_file: Path):
    """Supplying an explicit path should be treated as the winning answer."""

    assert data_manager.find_config_file(config_file) == config_file


def test_find_config_file_discovers_in_parent(tmp_path, monkeypatch):
    """Auto-discovery should walk up from the working directory."""

    config_file = tmp_path / "config.ini"
    config_file.write_text("[System]\nDataFile=master_workbook.xlsx")
    nested = tmp_path / "a" / "b"
    nested.mkdir(parents=True)
    monkeypatch.chdir(nested)

    assert data_manager.find_config_file().resolve() == config_file.resolve()


def test_find_config_file_raises_when_missing(tmp_path, monkeypatch):
    """Absent configuration should surface a clear FileNotFoundError."""

    monkeypatch.chdir(tmp_path)
    with pytest.raises(FileNotFoundError):
        data_manager.find_config_file()


def test_read_config_missing_file_raises(tmp_path):
    with pytest.raises(FileNotFoundError):
        data_manager.read_config(tmp_path / "not_there.ini")


def test_parse_settings_reads_policies(config_factory):
    """Policy options should be parsed into their enums."""

    bundle = config_factory(stock_policy="reject", cash_without_register="skip", backend="memory")
    settings = data_manager.parse_settings(
        data_manager.read_config(bundle.config_path),
        base_path=bundle.directory,
    )

    assert settings.store_name == "Test Store"
    assert settings.backend is constants.Backend.MEMORY
    assert settings.stock_policy is constants.StockPolicy.REJECT
    assert settings.cash_without_register is constants.CashWithoutRegister.SKIP


def test_parse_settings_defaults_optional_entries(tmp_path):
    """Backend and policies fall back to defaults when omitted."""

    parser = configparser.ConfigParser()
    parser.read_string("[System]\nDataFile = data.xlsx\nStoreName = Shop\nSchemaVersion = 1.0.0\n")
    settings = data_manager.parse_settings(parser, base_path=tmp_path)

    assert settings.data_file == (tmp_path / "data.xlsx").resolve()
    assert settings.backend is constants.Backend.WORKBOOK
    assert settings.stock_policy is constants.StockPolicy.ALLOW
    assert settings.cash_without_register is constants.CashWithoutRegister.REJECT


def test_parse_settings_resolves_relative_paths(config_factory):
    """Relative DataFile entries should be anchored to the config location."""

    bundle = config_factory(make_relative=True)
    parser = data_manager.read_config(bundle.config_path)
    settings = data_manager.parse_settings(parser, base_path=bundle.config_path.parent)
    assert settings.data_file == (bundle.config_path.parent / bundle.workbook_path.name).resolve()


def test_parse_settings_requires_expected_sections(tmp_path):
    """Missing keys should result in a descriptive KeyError."""

    parser = configparser.ConfigParser()
    parser.read_string("[Other]\nvalue=1")
    with pytest.raises(KeyError):
        data_manager.parse_settings(parser, base_path=tmp_path)


def test_parse_settings_rejects_unknown_policy(tmp_path):
    parser = configparser.ConfigParser()
    parser.read_string(
        "[System]\nDataFile = d.xlsx\nStoreName = S\nSchemaVersion = 1.0.0\n"
        "[Policies]\nStockPolicy = sometimes\n"
    )
    with pytest.raises(ValueError, match="StockPolicy"):
        data_manager.parse_settings(parser, base_path=tmp_path)


def test_open_workbook_returns_openpyxl_instance(master_workbook_path):
    workbook = data_manager.open_workbook(master_workbook_path)
    assert isinstance(workbook, OpenpyxlWorkbook)
    assert data_manager.missing_sheets(workbook) == []


def test_open_workbook_missing_file_raises(tmp_path):
    with pytest.raises(FileNotFoundError):
        data_manager.open_workbook(tmp_path / "nope.xlsx")


def test_missing_sheets_reports_absent_sheets():
    workbook = openpyxl.Workbook()
    missing = data_manager.missing_sheets(workbook)
    assert set(missing) == {sheet.value for sheet in SheetName}


def test_append_and_iter_records_round_trip_types(master_workbook_path):
    """Records written to a sheet come back with Decimal and int fields."""

    workbook = data_manager.open_workbook(master_workbook_path)
    product = data_manager.ProductRow(
        "P1", "Coffee", "Bebidas", Decimal("8.50"), Decimal("1.25"), 50, "taza", "CAF-001"
    )
    data_manager.append_record(workbook, product)
    data_manager.save_workbook(workbook, master_workbook_path)

    reloaded = data_manager.refresh_workbook(master_workbook_path)
    (stored,) = list(data_manager.iter_records(reloaded, SheetName.PRODUCTS))

    assert stored == product
    assert isinstance(stored.price, Decimal)
    assert isinstance(stored.stock, int)
    assert stored.image is None


def test_replace_record_overwrites_all_columns(master_workbook_path):
    workbook = data_manager.open_workbook(master_workbook_path)
    client = data_manager.ClientRow("C1", "Ana", "555", "ana@example.com", Decimal("0"), 0)
    data_manager.append_record(workbook, client)

    updated = data_manager.ClientRow("C1", "Ana Polo", "556", "ana@example.com", Decimal("20.00"), 1)
    data_manager.replace_record(workbook, updated)

    assert list(data_manager.iter_records(workbook, SheetName.CLIENTS)) == [updated]


def test_replace_record_unknown_key_raises(master_workbook_path):
    workbook = data_manager.open_workbook(master_workbook_path)
    with pytest.raises(KeyError):
        data_manager.replace_record(workbook, data_manager.CategoryRow("missing", "X", None))


def test_delete_record_removes_row(master_workbook_path):
    workbook = data_manager.open_workbook(master_workbook_path)
    data_manager.append_record(workbook, data_manager.CategoryRow("1", "Bebidas", None))
    data_manager.append_record(workbook, data_manager.CategoryRow("2", "Postres", None))

    data_manager.delete_record(workbook, SheetName.CATEGORIES, "1")

    assert [row.category_id for row in data_manager.iter_records(workbook, SheetName.CATEGORIES)] == ["2"]


def test_locate_row_matches_numeric_cells(master_workbook_path):
    """Keys typed as numbers in Excel still match their string form."""

    workbook = data_manager.open_workbook(master_workbook_path)
    workbook[SheetName.CATEGORIES.value].append([7, "Seven", None])

    assert data_manager.locate_row(workbook, SheetName.CATEGORIES.value, "CategoryID", "7") == 2


def test_locate_row_unknown_column_raises(master_workbook_path):
    workbook = data_manager.open_workbook(master_workbook_path)
    with pytest.raises(KeyError):
        data_manager.locate_row(workbook, SheetName.PRODUCTS.value, "Nope", "P1")


def test_deserialize_register_row_handles_blanks():
    raw = ("R1", True, "2025-01-01T09:00:00+00:00", 100, 125.5, 125.5, None, None, None)
    row = data_manager.deserialize_record(SheetName.CASH_REGISTER, raw)

    assert row.is_open is True
    assert row.current_amount == Decimal("125.50")
    assert row.counted_amount is None
    assert row.variance is None


def test_deserialize_pads_short_rows():
    row = data_manager.deserialize_record(SheetName.PRODUCTS, ("P9", "Tea", "Bebidas", 1, 0.5, 3))
    assert row.unit == ""
    assert row.image is None


def test_sheet_for_rejects_unknown_types():
    with pytest.raises(TypeError):
        data_manager.sheet_for(object())


def test_record_key_uses_first_field():
    line = data_manager.OrderLineRow("O1-1", "O1", "P1", "Coffee", 1, Decimal("8.50"))
    assert data_manager.record_key(line) == "O1-1"
