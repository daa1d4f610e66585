"""Shared pytest fixtures and utilities for Caja POS tests."""

from __future__ import annotations

import argparse
import sys
import uuid
from dataclasses import dataclass, replace
from datetime import datetime
from decimal import Decimal
from pathlib import Path
from typing import Callable, Iterator, List

import pytest

# Ensure source packages are importable without installation.
PROJECT_ROOT = Path(__file__).resolve().parents[1]
SRC_DIR = PROJECT_ROOT / "src"

if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))

from caja_pos import cli, constants, data_manager, runtime  # noqa: E402
from caja_pos.repository import MemoryRepository  # noqa: E402
from caja_pos.setup_workbook import create_master_workbook  # noqa: E402

DEFAULT_SCHEMA_VERSION = constants.EXPECTED_SCHEMA_VERSION
_CONFIG_TEMPLATE = (
    "[System]\n"
    "DataFile = {data_file}\n"
    "StoreName = {store_name}\n"
    "SchemaVersion = {schema_version}\n"
    "Backend = {backend}\n\n"
    "[Policies]\n"
    "StockPolicy = {stock_policy}\n"
    "CashWithoutRegister = {cash_without_register}\n"
)


@dataclass(frozen=True)
class ConfigBundle:
    """Container bundling together config metadata for tests."""

    directory: Path
    config_path: Path
    workbook_path: Path
    schema_version: str
    store_name: str


@pytest.fixture(scope="session", autouse=True)
def _restore_sys_path() -> Iterator[None]:
    """Ensure sys.path modifications are undone after the test session."""

    original = sys.path.copy()
    try:
        yield
    finally:
        sys.path[:] = original


# ---------------------------------------------------------------------------
# Workbook and configuration fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def workbook_factory(tmp_path: Path) -> Callable[..., Path]:
    """Factory that creates an initialized master workbook in a temp folder."""

    def _create_workbook(
        *,
        subdir: str | None = None,
        filename: str = "master_workbook.xlsx",
        seed_records: tuple = (),
    ) -> Path:
        base_dir = tmp_path if subdir is None else tmp_path / subdir
        base_dir.mkdir(parents=True, exist_ok=True)
        workbook_path = base_dir / filename
        create_master_workbook(workbook_path, seed_records=seed_records, overwrite=True)
        return workbook_path

    return _create_workbook


@pytest.fixture
def master_workbook_path(workbook_factory: Callable[..., Path]) -> Path:
    """Return a fresh master workbook ready for use in a test."""

    return workbook_factory(subdir=f"workbook_{uuid.uuid4().hex}")


@pytest.fixture
def config_factory(tmp_path: Path, workbook_factory: Callable[..., Path]) -> Callable[..., ConfigBundle]:
    """Provide a callable that creates config/workbook bundles on demand."""

    def _create_config(
        *,
        make_relative: bool = False,
        store_name: str = "Test Store",
        schema_version: str = DEFAULT_SCHEMA_VERSION,
        backend: str = "workbook",
        stock_policy: str = "allow",
        cash_without_register: str = "reject",
        seed_records: tuple = (),
    ) -> ConfigBundle:
        bundle_id = uuid.uuid4().hex
        bundle_dir = tmp_path / f"bundle_{bundle_id}"
        bundle_dir.mkdir(parents=True, exist_ok=True)
        workbook_path = workbook_factory(subdir=f"bundle_{bundle_id}", seed_records=seed_records)
        data_file_entry = workbook_path.name if make_relative else str(workbook_path)
        config_path = bundle_dir / "config.ini"
        config_path.write_text(
            _CONFIG_TEMPLATE.format(
                data_file=data_file_entry,
                store_name=store_name,
                schema_version=schema_version,
                backend=backend,
                stock_policy=stock_policy,
                cash_without_register=cash_without_register,
            ),
            encoding="utf-8",
        )
        return ConfigBundle(
            directory=bundle_dir,
            config_path=config_path,
            workbook_path=workbook_path,
            schema_version=schema_version,
            store_name=store_name,
        )

    return _create_config


@pytest.fixture
def config_file(config_factory: Callable[..., ConfigBundle]) -> Path:
    """Convenience fixture returning only the config path."""

    return config_factory().config_path


@pytest.fixture
def seeded_config_file(config_factory: Callable[..., ConfigBundle], sample_records: List[object]) -> Path:
    """Config whose workbook already holds the sample catalog."""

    return config_factory(seed_records=tuple(sample_records)).config_path


@pytest.fixture
def runtime_context(seeded_config_file: Path) -> runtime.RuntimeContext:
    """Load a workbook-backed runtime context through the public API."""

    context = runtime.load_runtime_context(seeded_config_file)
    runtime.ensure_schema_version(context)
    return context


# ---------------------------------------------------------------------------
# Business layer fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def sample_records() -> List[object]:
    """A small catalog: two products, one client, one supplier."""

    return [
        data_manager.CategoryRow("CAT1", "Bebidas", "Bebidas frías y calientes"),
        data_manager.ProductRow(
            "P1", "Coffee", "Bebidas", Decimal("8.50"), Decimal("1.00"), 50, "taza", "CAF-001"
        ),
        data_manager.ProductRow(
            "P2", "Juice", "Bebidas", Decimal("2.50"), Decimal("1.00"), 10, "vaso", "JUG-001"
        ),
        data_manager.ClientRow("C1", "Juan Pérez", "555-0101", "juan@example.com", Decimal("150.00"), 5),
        data_manager.SupplierRow("S1", "Bebidas del Norte", "Ana Polo", "ana@bebidas.com", "Bebidas"),
    ]


@pytest.fixture
def settings(tmp_path: Path) -> data_manager.ConfigSettings:
    """Provide default settings for memory-backed contexts."""

    return data_manager.ConfigSettings(
        data_file=tmp_path / "master_workbook.xlsx",
        store_name="Test Store",
        schema_version=constants.EXPECTED_SCHEMA_VERSION,
        backend=constants.Backend.MEMORY,
    )


@pytest.fixture
def context_factory(
    settings: data_manager.ConfigSettings,
    sample_records: List[object],
) -> Callable[..., runtime.RuntimeContext]:
    """Build memory-backed contexts seeded with the sample catalog."""

    def _create(**overrides: object) -> runtime.RuntimeContext:
        return runtime.RuntimeContext(
            settings=replace(settings, **overrides),
            repository=MemoryRepository(sample_records),
        )

    return _create


@pytest.fixture
def context(context_factory: Callable[..., runtime.RuntimeContext]) -> runtime.RuntimeContext:
    """Memory-backed context with default policies."""

    return context_factory()


@pytest.fixture
def set_fixed_datetime(monkeypatch: pytest.MonkeyPatch) -> Callable[[datetime], datetime]:
    """Patch ``runtime.datetime`` to return a predetermined moment."""

    def _apply(moment: datetime) -> datetime:
        class _FixedDateTime:
            @staticmethod
            def now(tz=None):
                return moment

        monkeypatch.setattr(runtime, "datetime", _FixedDateTime)
        return moment

    return _apply


# ---------------------------------------------------------------------------
# CLI layer fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def cli_parser() -> argparse.ArgumentParser:
    """Return a fresh CLI parser instance for tests."""

    return argparse.ArgumentParser(prog="caja-cli", description="Caja CLI")


@pytest.fixture
def subparsers_action(cli_parser: argparse.ArgumentParser) -> argparse._SubParsersAction:
    """Return the subparser action used to register commands."""

    return cli_parser.add_subparsers(dest="command")


@pytest.fixture
def command_spec_iterable() -> list[cli.CommandSpec]:
    """Provide a list of command specs for indexing tests."""

    def _make_spec(name: str) -> cli.CommandSpec:
        return cli.CommandSpec(
            name,
            f"{name} help",
            lambda subparsers: subparsers.add_parser(name),
            lambda *_: 0,
        )

    return [_make_spec("alpha"), _make_spec("beta"), _make_spec("gamma")]
