"""Persistence gateway used by the business logic layer.

Each collection is read and written as a whole: ``get_all`` returns the latest
snapshot and ``replace_all`` overwrites it (last write wins). The append-only
collections (transactions, adjustments, purchase orders) also accept
``append``. There are no row-level updates and no concurrency tokens; callers
read, modify and write back under a single-writer assumption.

Two implementations are provided:

* :class:`InMemoryStore` keeps plain Python lists and is what the tests and
  dry runs use.
* :class:`WorkbookStore` maps collections onto the sheets of an ``openpyxl``
  workbook through :mod:`tuckshop_pos.data_manager`. Writes only touch the
  in-memory workbook; saving it to disk is the caller's job.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple, Union

from openpyxl.workbook import Workbook

from . import data_manager, log
from .constants import APPEND_ONLY_COLLECTIONS, Collection, SheetName
from .models import AppSettings


CollectionKey = Union[Collection, str]


def _coerce_collection(collection: CollectionKey) -> Collection:
    try:
        resolved = Collection(collection)
    except ValueError as exc:
        raise KeyError(f"Unknown collection: {collection}") from exc
    if resolved is Collection.SETTINGS:
        raise KeyError("Settings are not a list collection; use get_settings/replace_settings")
    return resolved


class StoreGateway(ABC):
    """Whole-collection read/replace contract shared by every store."""

    def get_all(self, collection: CollectionKey) -> List[Any]:
        """Return a snapshot list of every record in ``collection``.

        Raises:
            KeyError: If ``collection`` is not a known list collection.
        """

        return list(self._read(_coerce_collection(collection)))

    def replace_all(self, collection: CollectionKey, items: Iterable[Any]) -> None:
        """Overwrite ``collection`` with ``items``."""

        resolved = _coerce_collection(collection)
        records = list(items)
        self._write(resolved, records)
        log.debug("Replaced collection '%s' with %d records", resolved.value, len(records))

    def append(self, collection: CollectionKey, item: Any) -> None:
        """Add one record to an append-only collection.

        Raises:
            KeyError: If ``collection`` is unknown.
            ValueError: If ``collection`` does not support appends.
        """

        resolved = _coerce_collection(collection)
        if resolved not in APPEND_ONLY_COLLECTIONS:
            raise ValueError(f"Collection '{resolved.value}' does not support append")
        self._append(resolved, item)
        log.debug("Appended record to collection '%s'", resolved.value)

    @abstractmethod
    def get_settings(self) -> AppSettings:
        """Return the shop-wide settings record."""

    @abstractmethod
    def replace_settings(self, settings: AppSettings) -> None:
        """Overwrite the shop-wide settings record."""

    @abstractmethod
    def _read(self, collection: Collection) -> Sequence[Any]:
        """Return the stored records of ``collection``."""

    @abstractmethod
    def _write(self, collection: Collection, records: List[Any]) -> None:
        """Store ``records`` as the whole of ``collection``."""

    def _append(self, collection: Collection, item: Any) -> None:
        self._write(collection, [*self._read(collection), item])


class InMemoryStore(StoreGateway):
    """Store backed by Python lists, seeded from keyword arguments."""

    def __init__(
        self,
        collections: Optional[Mapping[CollectionKey, Iterable[Any]]] = None,
        settings: Optional[AppSettings] = None,
    ) -> None:
        self._data: Dict[Collection, List[Any]] = {
            member: [] for member in Collection if member is not Collection.SETTINGS
        }
        for key, items in (collections or {}).items():
            self._data[_coerce_collection(key)] = list(items)
        self._settings = settings or AppSettings()

    def get_settings(self) -> AppSettings:
        return self._settings

    def replace_settings(self, settings: AppSettings) -> None:
        self._settings = settings

    def _read(self, collection: Collection) -> Sequence[Any]:
        return self._data[collection]

    def _write(self, collection: Collection, records: List[Any]) -> None:
        self._data[collection] = records

    def _append(self, collection: Collection, item: Any) -> None:
        self._data[collection].append(item)


Reader = Callable[[Workbook], List[Any]]
Writer = Callable[[Workbook, Sequence[Any]], None]


def _simple_reader(sheet: SheetName, deserialize: Callable[[Sequence[object]], Any]) -> Reader:
    def read(workbook: Workbook) -> List[Any]:
        return [deserialize(raw) for raw in data_manager.iter_rows(workbook, sheet.value)]

    return read


def _simple_writer(sheet: SheetName, serialize: Callable[[Any], Sequence[object]]) -> Writer:
    def write(workbook: Workbook, records: Sequence[Any]) -> None:
        data_manager.replace_rows(workbook, sheet.value, (serialize(record) for record in records))

    return write


WORKBOOK_CODECS: Mapping[Collection, Tuple[Reader, Writer]] = {
    Collection.PRODUCTS: (data_manager.read_products, data_manager.write_products),
    Collection.STUDENTS: (
        _simple_reader(SheetName.STUDENTS, data_manager.deserialize_student),
        _simple_writer(SheetName.STUDENTS, data_manager.serialize_student),
    ),
    Collection.EMPLOYEES: (
        _simple_reader(SheetName.EMPLOYEES, data_manager.deserialize_employee),
        _simple_writer(SheetName.EMPLOYEES, data_manager.serialize_employee),
    ),
    Collection.CATEGORIES: (
        _simple_reader(SheetName.CATEGORIES, data_manager.deserialize_category),
        _simple_writer(SheetName.CATEGORIES, data_manager.serialize_category),
    ),
    Collection.SUPPLIERS: (
        _simple_reader(SheetName.SUPPLIERS, data_manager.deserialize_supplier),
        _simple_writer(SheetName.SUPPLIERS, data_manager.serialize_supplier),
    ),
    Collection.TRANSACTIONS: (data_manager.read_transactions, data_manager.write_transactions),
    Collection.ADJUSTMENTS: (
        _simple_reader(SheetName.STOCK_ADJUSTMENTS, data_manager.deserialize_adjustment),
        _simple_writer(SheetName.STOCK_ADJUSTMENTS, data_manager.serialize_adjustment),
    ),
    Collection.PURCHASE_ORDERS: (data_manager.read_purchase_orders, data_manager.write_purchase_orders),
}


class WorkbookStore(StoreGateway):
    """Store backed by the sheets of an ``openpyxl`` workbook."""

    def __init__(self, workbook: Workbook) -> None:
        self.workbook = workbook

    def get_settings(self) -> AppSettings:
        return data_manager.read_settings(self.workbook)

    def replace_settings(self, settings: AppSettings) -> None:
        data_manager.write_settings(self.workbook, settings)

    def _read(self, collection: Collection) -> Sequence[Any]:
        reader, _ = WORKBOOK_CODECS[collection]
        return reader(self.workbook)

    def _write(self, collection: Collection, records: List[Any]) -> None:
        _, writer = WORKBOOK_CODECS[collection]
        writer(self.workbook, records)

    def _append(self, collection: Collection, item: Any) -> None:
        if collection is Collection.TRANSACTIONS:
            data_manager.append_transaction(self.workbook, item)
        elif collection is Collection.PURCHASE_ORDERS:
            data_manager.append_purchase_order(self.workbook, item)
        else:
            data_manager.append_rows(
                self.workbook,
                SheetName.STOCK_ADJUSTMENTS.value,
                [data_manager.serialize_adjustment(item)],
            )


__all__ = [
    "StoreGateway",
    "InMemoryStore",
    "WorkbookStore",
    "WORKBOOK_CODECS",
]
