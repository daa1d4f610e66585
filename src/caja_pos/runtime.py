"""Runtime context and shared guards for the business logic layer.

A :class:`RuntimeContext` bundles the parsed settings with the repository
selected for them. Every business function in :mod:`catalog` and
:mod:`core_logic` receives one and holds no other state between calls.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import UTC, datetime
from decimal import ROUND_HALF_UP, Decimal
from pathlib import Path
from typing import Any, Optional

from . import data_manager, log
from .constants import EXPECTED_SCHEMA_VERSION, SheetName
from .exceptions import NotFoundError, ValidationError
from .repository import Repository, build_repository

CENT = Decimal("0.01")
ID_SUFFIX_LENGTH = 12


@dataclass(frozen=True)
class RuntimeContext:
    """Container for configuration and the repository used by the BLL."""

    settings: data_manager.ConfigSettings
    repository: Repository


def load_runtime_context(config_path: Optional[Path] = None) -> RuntimeContext:
    """Load configuration settings and the configured repository.

    Resolves ``config.ini`` (walking up from the working directory when
    ``config_path`` is omitted), parses it, and opens the storage backend it
    names.

    Args:
        config_path (Path | None): Optional override path for the configuration
            file.

    Returns:
        RuntimeContext: Fully populated context ready for orchestration
            functions.

    Raises:
        FileNotFoundError: If the configuration file or workbook cannot be
            located.
        KeyError: When mandatory configuration options are missing.
        ValueError: When a backend or policy option is not recognised.
    """
    located_config = data_manager.find_config_file(config_path)
    resolved_config = Path(located_config).expanduser().resolve()
    parser = data_manager.read_config(resolved_config)
    settings = data_manager.parse_settings(parser, base_path=resolved_config.parent)
    repository = build_repository(settings)
    log.info("Loaded runtime context for store '%s' (%s backend)", settings.store_name, settings.backend.value)
    return RuntimeContext(settings=settings, repository=repository)


def ensure_schema_version(context: RuntimeContext) -> None:
    """Validate workbook compatibility before mutating state.

    Raises:
        RuntimeError: If the schema version declared in the configuration does
            not match ``EXPECTED_SCHEMA_VERSION``.
    """
    if context.settings.schema_version != EXPECTED_SCHEMA_VERSION:
        log.error(
            "Workbook schema mismatch: expected %s, found %s",
            EXPECTED_SCHEMA_VERSION,
            context.settings.schema_version,
        )
        raise RuntimeError(
            "Workbook schema mismatch: expected %s, found %s"
            % (EXPECTED_SCHEMA_VERSION, context.settings.schema_version)
        )

    log.debug("Schema version '%s' validated", context.settings.schema_version)


def resolve_timestamp(candidate: Optional[datetime]) -> datetime:
    """Return ``candidate`` or the current UTC time when it is ``None``."""

    return candidate if candidate is not None else datetime.now(UTC)


def generate_id(prefix: str, *, when: Optional[datetime] = None) -> str:
    """Generate a sortable identifier such as ``O20250101120000000000A1B2C3D4E5F6``.

    The timestamp part keeps identifiers in chronological order; the random
    suffix keeps them unique when several records share a timestamp.
    """
    when = when or resolve_timestamp(None)
    return f"{prefix}{when.strftime('%Y%m%d%H%M%S%f')}{uuid.uuid4().hex[:ID_SUFFIX_LENGTH].upper()}"


def to_cents(amount: Decimal) -> Decimal:
    """Round a monetary amount to cents, half up."""

    return amount.quantize(CENT, rounding=ROUND_HALF_UP)


def require_positive_quantity(quantity: int) -> None:
    """Validate that a quantity is a strictly positive integer.

    Raises:
        ValidationError: If ``quantity`` is not an ``int`` or is zero or
            negative.
    """
    if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
        log.error("Quantity validation failed: %s", quantity)
        raise ValidationError("Quantity must be a whole number greater than zero")


def require_nonnegative_money(amount: Decimal, *, label: str = "Amount") -> None:
    """Validate that a monetary value is a nonnegative ``Decimal``.

    Raises:
        ValidationError: If ``amount`` is not a ``Decimal`` or is negative.
    """
    if not isinstance(amount, Decimal) or not amount.is_finite() or amount < Decimal("0"):
        log.error("Monetary value validation failed for %s: %s", label, amount)
        raise ValidationError(f"{label} must be zero or positive")


def require_text(value: Optional[str], *, label: str) -> None:
    """Validate that a required text field is present and not blank."""

    if value is None or not str(value).strip():
        log.error("Required field '%s' is blank", label)
        raise ValidationError(f"{label} is required")


def require_record(context: RuntimeContext, sheet: SheetName, key: Optional[str], entity: str) -> Any:
    """Fetch a record or raise :class:`NotFoundError`.

    Args:
        context (RuntimeContext): Runtime context providing the repository.
        sheet (SheetName): Sheet holding the record type.
        key (str | None): Identifier to look up. Blank values fail validation.
        entity (str): Human readable entity name used in messages.

    Raises:
        ValidationError: If ``key`` is blank.
        NotFoundError: If no record carries ``key``.
    """
    require_text(key, label=f"{entity} id")
    record = context.repository.get(sheet, key)  # type: ignore[arg-type]
    if record is None:
        log.warning("%s lookup failed for id '%s'", entity.capitalize(), key)
        raise NotFoundError(entity, str(key))
    return record
