"""Storage backends behind a single repository interface.

The business layer talks to a :class:`Repository` and never learns which
backend is active. Two implementations exist:

``WorkbookRepository``
    Durable storage in the master workbook through :mod:`data_manager`. A
    unit of work commits by saving the workbook and rolls back by reloading
    it from disk, so the file only ever holds fully applied operations.

``MemoryRepository``
    Volatile in-process tables. Rolling back restores the snapshot taken when
    the unit of work began.

:func:`build_repository` picks one from the configured ``Backend``.

Writers are serialized by a re-entrant lock held for the whole unit of work,
so read-modify-write updates of stock, client counters and register
balances never interleave within a process. Nested units of work join the
outermost one.
"""

from __future__ import annotations

import threading
from abc import ABC, abstractmethod
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, Iterator, List, Optional

from openpyxl.workbook import Workbook

from . import data_manager, log
from .constants import Backend, SheetName
from .exceptions import BusinessRuleViolation, StorageError


class Repository(ABC):
    """Keyed record storage with transactional units of work."""

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._in_unit_of_work = False

    @contextmanager
    def unit_of_work(self, operation: str = "unit of work") -> Iterator["Repository"]:
        """Run the enclosed block as one all-or-nothing change.

        Business rule violations propagate unchanged after the rollback; any
        other failure is wrapped in :class:`StorageError`.
        """

        with self._lock:
            if self._in_unit_of_work:
                yield self
                return

            self._in_unit_of_work = True
            try:
                self._begin()
                try:
                    yield self
                except BusinessRuleViolation:
                    self._safe_rollback(operation)
                    raise
                except Exception as exc:
                    self._safe_rollback(operation)
                    log.error("%s failed and was rolled back: %s", operation, exc)
                    raise StorageError(f"{operation} failed: {exc}", operation=operation) from exc

                try:
                    self._commit()
                except Exception as exc:
                    self._safe_rollback(operation)
                    log.error("Commit of %s failed: %s", operation, exc)
                    raise StorageError(f"{operation} could not be committed: {exc}", operation=operation) from exc
                log.debug("Committed %s", operation)
            finally:
                self._in_unit_of_work = False

    def _safe_rollback(self, operation: str) -> None:
        try:
            self._rollback()
        except Exception:
            log.exception("Rollback of %s failed", operation)
            raise
        log.warning("Rolled back %s", operation)

    def list(self, sheet: SheetName) -> List[Any]:
        """Return every record of ``sheet`` in storage order."""

        with self._lock:
            return list(self._load(sheet))

    def get(self, sheet: SheetName, key: str) -> Optional[Any]:
        """Return the record keyed by ``key`` or ``None``."""

        with self._lock:
            for record in self._load(sheet):
                if data_manager.record_key(record) == key:
                    return record
            return None

    def insert(self, record: object) -> None:
        """Add a new record.

        Raises:
            KeyError: If a record with the same key already exists.
        """

        with self._lock:
            sheet = data_manager.sheet_for(record)
            key = data_manager.record_key(record)
            if self.get(sheet, key) is not None:
                raise KeyError(f"Duplicate {sheet.value} key: {key}")
            self._insert(record)

    def upsert(self, record: object) -> bool:
        """Insert ``record`` or overwrite every field of the existing one.

        Returns:
            bool: ``True`` when a new record was inserted.
        """

        with self._lock:
            sheet = data_manager.sheet_for(record)
            if self.get(sheet, data_manager.record_key(record)) is None:
                self._insert(record)
                return True
            self._replace(record)
            return False

    def update(self, sheet: SheetName, key: str, change: Callable[[Any], Any]) -> Any:
        """Atomically replace a record with ``change(record)``.

        The read and the write happen under the repository lock, which makes
        the update safe against concurrent writers in the same process.

        Raises:
            KeyError: If ``key`` is absent from ``sheet``.
        """

        with self._lock:
            current = self.get(sheet, key)
            if current is None:
                raise KeyError(f"{sheet.value} row not found: {key}")
            updated = change(current)
            if data_manager.record_key(updated) != key:
                raise ValueError(f"Update must not change the key of {sheet.value} row {key}")
            self._replace(updated)
            return updated

    def delete(self, sheet: SheetName, key: str) -> None:
        """Remove the record keyed by ``key``.

        Raises:
            KeyError: If ``key`` is absent from ``sheet``.
        """

        with self._lock:
            if self.get(sheet, key) is None:
                raise KeyError(f"{sheet.value} row not found: {key}")
            self._remove(sheet, key)

    @abstractmethod
    def _load(self, sheet: SheetName) -> Iterable[Any]:
        ...

    @abstractmethod
    def _insert(self, record: object) -> None:
        ...

    @abstractmethod
    def _replace(self, record: object) -> None:
        ...

    @abstractmethod
    def _remove(self, sheet: SheetName, key: str) -> None:
        ...

    @abstractmethod
    def _begin(self) -> None:
        ...

    @abstractmethod
    def _commit(self) -> None:
        ...

    @abstractmethod
    def _rollback(self) -> None:
        ...


class MemoryRepository(Repository):
    """In-process tables keyed by record id, preserving insertion order."""

    def __init__(self, records: Iterable[object] = ()) -> None:
        super().__init__()
        self._tables: Dict[SheetName, Dict[str, Any]] = {sheet: {} for sheet in SheetName}
        self._snapshot: Optional[Dict[SheetName, Dict[str, Any]]] = None
        for record in records:
            self._insert(record)

    def _load(self, sheet: SheetName) -> Iterable[Any]:
        return self._tables[sheet].values()

    def _insert(self, record: object) -> None:
        self._tables[data_manager.sheet_for(record)][data_manager.record_key(record)] = record

    def _replace(self, record: object) -> None:
        self._tables[data_manager.sheet_for(record)][data_manager.record_key(record)] = record

    def _remove(self, sheet: SheetName, key: str) -> None:
        del self._tables[sheet][key]

    def _begin(self) -> None:
        # Records are frozen dataclasses, so copying the per-sheet dicts is enough.
        self._snapshot = {sheet: dict(rows) for sheet, rows in self._tables.items()}

    def _commit(self) -> None:
        self._snapshot = None

    def _rollback(self) -> None:
        if self._snapshot is not None:
            self._tables = self._snapshot
            self._snapshot = None


class WorkbookRepository(Repository):
    """Repository backed by the master workbook on disk."""

    def __init__(self, data_file: Path, workbook: Optional[Workbook] = None) -> None:
        super().__init__()
        self.data_file = Path(data_file)
        self._workbook = workbook if workbook is not None else data_manager.open_workbook(self.data_file)
        self._cache: Dict[SheetName, List[Any]] = {}
        missing = data_manager.missing_sheets(self._workbook)
        if missing:
            raise KeyError(f"Workbook '{self.data_file}' lacks sheets: {', '.join(missing)}")

    @property
    def workbook(self) -> Workbook:
        return self._workbook

    def _load(self, sheet: SheetName) -> Iterable[Any]:
        cached = self._cache.get(sheet)
        if cached is None:
            cached = list(data_manager.iter_records(self._workbook, sheet))
            self._cache[sheet] = cached
            log.debug("Populated %s cache with %d entries", sheet.value, len(cached))
        return cached

    def _insert(self, record: object) -> None:
        data_manager.append_record(self._workbook, record)
        self._cache.pop(data_manager.sheet_for(record), None)

    def _replace(self, record: object) -> None:
        data_manager.replace_record(self._workbook, record)
        self._cache.pop(data_manager.sheet_for(record), None)

    def _remove(self, sheet: SheetName, key: str) -> None:
        data_manager.delete_record(self._workbook, sheet, key)
        self._cache.pop(sheet, None)

    def _begin(self) -> None:
        pass

    def _commit(self) -> None:
        data_manager.save_workbook(self._workbook, destination=self.data_file)
        log.info("Persisted workbook '%s'", self.data_file)

    def _rollback(self) -> None:
        self._workbook = data_manager.refresh_workbook(self.data_file)
        self._cache.clear()
        log.info("Reloaded workbook '%s'", self.data_file)


def build_repository(settings: data_manager.ConfigSettings) -> Repository:
    """Instantiate the backend selected by ``settings.backend``."""

    if settings.backend is Backend.MEMORY:
        log.info("Using in-memory repository")
        return MemoryRepository()
    log.info("Using workbook repository at '%s'", settings.data_file)
    return WorkbookRepository(settings.data_file)
