"""Data access layer for the tuckshop POS.

This module provides low-level helpers that read from and write to the
tuckshop workbook. Business logic belongs elsewhere.

The public API is designed around three responsibilities:

1. Configuration handling: finding and parsing ``config.ini``.
2. Workbook lifecycle: opening, validating, and persisting the Excel file.
3. Sheet operations: reading rows, replacing a sheet's body, and converting
   between worksheet rows and domain records.

Nested values live on child sheets keyed by the parent id (``Variants`` and
``ProductComponents`` for products, ``TransactionItems`` for transactions,
``PurchaseOrderItems`` for purchase orders). Timestamps are stored as ISO 8601
strings and monetary values as numbers that are read back into
:class:`~decimal.Decimal`.
"""


from __future__ import annotations

import configparser
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from openpyxl.workbook import Workbook
import openpyxl

from . import log
from .constants import (
    AdjustmentReason,
    CurrencyCode,
    PaymentMethod,
    PurchaseOrderStatus,
    Role,
    SheetName,
    TransactionStatus,
)
from .models import (
    AppSettings,
    Category,
    Employee,
    PermissionMatrix,
    Product,
    ProductComponent,
    PurchaseOrder,
    PurchaseOrderItem,
    StockAdjustment,
    Student,
    Supplier,
    Transaction,
    TransactionItem,
    Variant,
)


CONFIG_FILE_NAME = "config.ini"
RESTRICTED_SEPARATOR = ","


def permission_column(name: str) -> str:
    """Return the worksheet header used for a permission flag."""

    return "".join(part.capitalize() for part in name.split("_"))


SHEET_COLUMNS: Mapping[str, Sequence[str]] = {
    SheetName.PRODUCTS.value: [
        "ProductID",
        "ProductName",
        "SKU",
        "CategoryID",
        "CostPrice",
        "SellingPrice",
        "StockQuantity",
        "MinStockLevel",
        "IsActive",
        "TrackStock",
        "IsComposite",
        "ImageUrl",
    ],
    SheetName.VARIANTS.value: [
        "ProductID",
        "VariantID",
        "VariantName",
        "SKU",
        "CostPrice",
        "SellingPrice",
        "StockQuantity",
    ],
    SheetName.PRODUCT_COMPONENTS.value: [
        "ProductID",
        "ComponentProductID",
        "ComponentVariantID",
        "Quantity",
    ],
    SheetName.CATEGORIES.value: ["CategoryID", "CategoryName", "Color"],
    SheetName.STUDENTS.value: [
        "StudentID",
        "StudentName",
        "Grade",
        "WalletBalance",
        "DailySpendLimit",
        "SpentToday",
        "RestrictedProducts",
        "PIN",
        "QRCode",
        "ImageUrl",
    ],
    SheetName.EMPLOYEES.value: [
        "EmployeeID",
        "EmployeeName",
        "PIN",
        "Role",
        "IsActive",
        *(permission_column(name) for name in PermissionMatrix.names()),
    ],
    SheetName.TRANSACTIONS.value: [
        "TransactionID",
        "Timestamp",
        "EmployeeID",
        "StudentID",
        "Subtotal",
        "Discount",
        "Total",
        "PaymentMethod",
        "Status",
    ],
    SheetName.TRANSACTION_ITEMS.value: [
        "TransactionID",
        "ProductID",
        "VariantID",
        "Quantity",
        "PriceAtSale",
    ],
    SheetName.STOCK_ADJUSTMENTS.value: [
        "AdjustmentID",
        "Timestamp",
        "ProductID",
        "VariantID",
        "QuantityChange",
        "Reason",
        "EmployeeID",
        "ExpectedStock",
        "ActualStock",
        "Note",
    ],
    SheetName.PURCHASE_ORDERS.value: [
        "PurchaseOrderID",
        "SupplierID",
        "Date",
        "Status",
        "Total",
    ],
    SheetName.PURCHASE_ORDER_ITEMS.value: [
        "PurchaseOrderID",
        "ProductID",
        "VariantID",
        "Quantity",
        "UnitCost",
    ],
    SheetName.SUPPLIERS.value: ["SupplierID", "SupplierName", "ContactName", "Email"],
    SheetName.SETTINGS.value: ["Key", "Value"],
}


@dataclass(frozen=True)
class ConfigSettings:
    """Typed representation of the ``config.ini`` settings we care about."""

    data_file: Path
    shop_name: str
    schema_version: str
    default_employee_id: str


def find_config_file(explicit_path: Optional[Path] = None) -> Path:
    """Locate the configuration file that controls how the data layer behaves.

    If the caller provides ``explicit_path`` the value is returned immediately
    without any verification. Otherwise the function walks up from the current
    working directory toward the filesystem root looking for a file named
    ``CONFIG_FILE_NAME``; the first match is considered authoritative.

    Args:
        explicit_path (Path | None): Optional path to use instead of performing
            the upward search.

    Returns:
        Path: The path provided by the caller or the discovered configuration
            file.

    Raises:
        FileNotFoundError: If no parent directory contains ``CONFIG_FILE_NAME``.
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
            absolute. ``~`` is expanded.

    Returns:
        configparser.ConfigParser: Parser containing the raw configuration.
            Required entries are validated by :func:`parse_settings`.

    Raises:
        FileNotFoundError: If ``config_path`` does not exist.
    """

    config_path = config_path.expanduser().resolve()
    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    parser = configparser.ConfigParser()
    parser.read(config_path)
    return parser


def parse_settings(parser: configparser.ConfigParser, *, base_path: Optional[Path] = None) -> ConfigSettings:
    """Convert a ``ConfigParser`` into strongly typed :class:`ConfigSettings`.

    Relative ``DataFile`` entries are expanded against ``base_path`` when
    provided, or against the current working directory as a fallback.

    Args:
        parser (configparser.ConfigParser): Parsed configuration data.
        base_path (Path | None): Directory anchoring relative data file paths.

    Returns:
        ConfigSettings: Immutable settings container.

    Raises:
        KeyError: If a required section or option is missing.
    """

    try:
        data_file_raw = parser.get("System", "DataFile")
        shop_name = parser.get("System", "ShopName")
        schema_version = parser.get("System", "SchemaVersion")
        default_employee = parser.get("Defaults", "DefaultEmployee")
    except (configparser.NoSectionError, configparser.NoOptionError) as exc:
        raise KeyError(f"Missing required configuration entry: {exc}") from exc

    data_file_path = Path(data_file_raw)
    if not data_file_path.is_absolute():
        if base_path is None:
            base_path = Path.cwd()
        data_file_path = (base_path / data_file_path).resolve()

    return ConfigSettings(
        data_file=data_file_path,
        shop_name=shop_name,
        schema_version=schema_version,
        default_employee_id=default_employee,
    )


def open_workbook(data_file: Path) -> Workbook:
    """Open the tuckshop workbook and return a live ``openpyxl`` workbook.

    Raises:
        FileNotFoundError: If ``data_file`` does not exist after expansion and
            resolution.
    """

    data_file = Path(data_file).expanduser().resolve()
    if not data_file.exists():
        raise FileNotFoundError(f"Workbook not found: {data_file}")

    return openpyxl.load_workbook(data_file)


def save_workbook(workbook: Workbook, destination: Path) -> None:
    """Persist the workbook to ``destination``, creating parent folders."""

    dest = Path(destination).expanduser().resolve()
    dest.parent.mkdir(parents=True, exist_ok=True)
    workbook.save(dest)


def refresh_workbook(data_file: Path) -> Workbook:
    """Reload the workbook from disk, discarding any unsaved in-memory changes."""

    return open_workbook(data_file)


def missing_sheets(workbook: Workbook) -> List[str]:
    """Return the expected sheet names that ``workbook`` does not contain."""

    return [name for name in SHEET_COLUMNS if name not in workbook.sheetnames]


def iter_rows(workbook: Workbook, sheet_name: str) -> Iterable[Tuple[Any, ...]]:
    """Yield the raw values of every populated row below the header.

    Rows whose cells are all ``None`` are skipped.
    """

    sheet = workbook[sheet_name]
    for raw in sheet.iter_rows(min_row=2, values_only=True):
        if any(cell is not None for cell in raw):
            yield raw


def replace_rows(workbook: Workbook, sheet_name: str, rows: Iterable[Sequence[object]]) -> None:
    """Replace every row below the header of ``sheet_name`` with ``rows``."""

    sheet = workbook[sheet_name]
    if sheet.max_row > 1:
        sheet.delete_rows(2, sheet.max_row - 1)
    count = 0
    for row_index, row in enumerate(rows, start=2):
        for column_index, value in enumerate(row, start=1):
            sheet.cell(row=row_index, column=column_index, value=value)
        count += 1
    log.debug("Rewrote sheet '%s' with %d rows", sheet_name, count)


def append_rows(workbook: Workbook, sheet_name: str, rows: Iterable[Sequence[object]]) -> None:
    """Append ``rows`` after the last populated row of ``sheet_name``."""

    sheet = workbook[sheet_name]
    for row in rows:
        sheet.append(list(row))


# ---------------------------------------------------------------------------
# Value coercion
# ---------------------------------------------------------------------------


def _decimal(raw: object, default: str = "0") -> Decimal:
    return Decimal(str(raw)) if raw is not None else Decimal(default)


def _int(raw: object, default: int = 0) -> int:
    return int(raw) if raw is not None else default


def _optional_int(raw: object) -> Optional[int]:
    return int(raw) if raw is not None else None


def _optional_str(raw: object) -> Optional[str]:
    if raw is None or raw == "":
        return None
    return str(raw)


def _str(raw: object) -> str:
    return str(raw) if raw is not None else ""


def _timestamp(raw: object) -> datetime:
    if isinstance(raw, datetime):
        return raw
    return datetime.fromisoformat(str(raw))


def _group_by_parent(rows: Iterable[Sequence[object]]) -> Dict[str, List[Sequence[object]]]:
    grouped: Dict[str, List[Sequence[object]]] = {}
    for row in rows:
        grouped.setdefault(str(row[0]), []).append(row)
    return grouped


# ---------------------------------------------------------------------------
# Products
# ---------------------------------------------------------------------------


def serialize_product(record: Product) -> list[object]:
    """Convert a product into the ``Products`` column ordering."""

    return [
        record.product_id,
        record.name,
        record.sku,
        record.category_id,
        record.cost_price,
        record.selling_price,
        record.stock_quantity,
        record.min_stock_level,
        record.is_active,
        record.track_stock,
        record.is_composite,
        record.image_url,
    ]


def serialize_variant(product_id: str, record: Variant) -> list[object]:
    return [
        product_id,
        record.variant_id,
        record.name,
        record.sku,
        record.cost_price,
        record.selling_price,
        record.stock_quantity,
    ]


def serialize_component(product_id: str, record: ProductComponent) -> list[object]:
    return [product_id, record.product_id, record.variant_id, record.quantity]


def deserialize_variant(raw_row: Sequence[object]) -> Variant:
    _, variant_id, name, sku, cost_raw, sell_raw, stock_raw = raw_row[:7]
    return Variant(
        variant_id=str(variant_id),
        name=_str(name),
        sku=_str(sku),
        cost_price=_decimal(cost_raw),
        selling_price=_decimal(sell_raw),
        stock_quantity=_int(stock_raw),
    )


def deserialize_component(raw_row: Sequence[object]) -> ProductComponent:
    _, component_id, component_variant, quantity_raw = raw_row[:4]
    return ProductComponent(
        product_id=str(component_id),
        quantity=_int(quantity_raw, default=1),
        variant_id=_optional_str(component_variant),
    )


def deserialize_product(
    raw_row: Sequence[object],
    variant_rows: Sequence[Sequence[object]] = (),
    component_rows: Sequence[Sequence[object]] = (),
) -> Product:
    """Convert a ``Products`` row and its child rows into a :class:`Product`.

    Identifier and text fields are coerced to ``str`` so that values Excel
    interprets as numbers still compare equal to the ids used elsewhere.
    """

    (
        product_id,
        name,
        sku,
        category_id,
        cost_raw,
        sell_raw,
        stock_raw,
        min_stock_raw,
        is_active,
        track_stock,
        is_composite,
        image_url,
    ) = raw_row[:12]

    return Product(
        product_id=str(product_id),
        name=_str(name),
        sku=_str(sku),
        category_id=_str(category_id),
        cost_price=_decimal(cost_raw),
        selling_price=_decimal(sell_raw),
        stock_quantity=_int(stock_raw),
        min_stock_level=_int(min_stock_raw),
        is_active=bool(is_active),
        track_stock=bool(track_stock) if track_stock is not None else True,
        is_composite=bool(is_composite),
        variants=tuple(deserialize_variant(row) for row in variant_rows),
        components=tuple(deserialize_component(row) for row in component_rows),
        image_url=_optional_str(image_url),
    )


def read_products(workbook: Workbook) -> List[Product]:
    """Load every product together with its variants and components."""

    variants = _group_by_parent(iter_rows(workbook, SheetName.VARIANTS.value))
    components = _group_by_parent(iter_rows(workbook, SheetName.PRODUCT_COMPONENTS.value))
    products = []
    for raw in iter_rows(workbook, SheetName.PRODUCTS.value):
        product_id = str(raw[0])
        products.append(
            deserialize_product(raw, variants.get(product_id, ()), components.get(product_id, ()))
        )
    return products


def write_products(workbook: Workbook, products: Sequence[Product]) -> None:
    """Replace the product sheets with ``products`` and their child rows."""

    replace_rows(workbook, SheetName.PRODUCTS.value, (serialize_product(p) for p in products))
    replace_rows(
        workbook,
        SheetName.VARIANTS.value,
        (serialize_variant(p.product_id, v) for p in products for v in p.variants),
    )
    replace_rows(
        workbook,
        SheetName.PRODUCT_COMPONENTS.value,
        (serialize_component(p.product_id, c) for p in products for c in p.components),
    )


# ---------------------------------------------------------------------------
# Students, employees, categories, suppliers
# ---------------------------------------------------------------------------


def serialize_student(record: Student) -> list[object]:
    """Convert a student into the ``Students`` column ordering.

    Restricted product ids are stored sorted and comma-separated in one cell.
    """

    restricted = RESTRICTED_SEPARATOR.join(sorted(record.restricted_products)) or None
    return [
        record.student_id,
        record.name,
        record.grade,
        record.wallet_balance,
        record.daily_spend_limit,
        record.spent_today,
        restricted,
        record.pin,
        record.qr_code,
        record.image_url,
    ]


def deserialize_student(raw_row: Sequence[object]) -> Student:
    (
        student_id,
        name,
        grade,
        balance_raw,
        limit_raw,
        spent_raw,
        restricted_raw,
        pin,
        qr_code,
        image_url,
    ) = raw_row[:10]
    restricted = frozenset(
        part.strip() for part in _str(restricted_raw).split(RESTRICTED_SEPARATOR) if part.strip()
    )
    return Student(
        student_id=str(student_id),
        name=_str(name),
        grade=_str(grade),
        wallet_balance=_decimal(balance_raw),
        daily_spend_limit=_decimal(limit_raw),
        spent_today=_decimal(spent_raw),
        restricted_products=restricted,
        pin=_str(pin),
        qr_code=_str(qr_code),
        image_url=_optional_str(image_url),
    )


def serialize_employee(record: Employee) -> list[object]:
    """Convert an employee into the ``Employees`` column ordering.

    Each capability flag occupies its own column after ``IsActive``.
    """

    flags = record.permissions.as_dict()
    return [
        record.employee_id,
        record.name,
        record.pin,
        Role(record.role).value,
        record.is_active,
        *(flags[name] for name in PermissionMatrix.names()),
    ]


def deserialize_employee(raw_row: Sequence[object]) -> Employee:
    employee_id, name, pin, role, is_active = raw_row[:5]
    flag_values = list(raw_row[5:])
    names = PermissionMatrix.names()
    flag_values += [None] * (len(names) - len(flag_values))
    permissions = PermissionMatrix(**{name: bool(value) for name, value in zip(names, flag_values)})
    return Employee(
        employee_id=str(employee_id),
        name=_str(name),
        pin=_str(pin),
        role=Role(str(role)),
        permissions=permissions,
        is_active=bool(is_active),
    )


def serialize_category(record: Category) -> list[object]:
    return [record.category_id, record.name, record.color]


def deserialize_category(raw_row: Sequence[object]) -> Category:
    category_id, name, color = raw_row[:3]
    return Category(category_id=str(category_id), name=_str(name), color=_str(color))


def serialize_supplier(record: Supplier) -> list[object]:
    return [record.supplier_id, record.name, record.contact_name, record.email]


def deserialize_supplier(raw_row: Sequence[object]) -> Supplier:
    supplier_id, name, contact_name, email = raw_row[:4]
    return Supplier(
        supplier_id=str(supplier_id),
        name=_str(name),
        contact_name=_str(contact_name),
        email=_str(email),
    )


# ---------------------------------------------------------------------------
# Transactions, adjustments, purchase orders
# ---------------------------------------------------------------------------


def serialize_transaction(record: Transaction) -> list[object]:
    """Convert a transaction header into the ``Transactions`` column order."""

    return [
        record.transaction_id,
        record.timestamp.isoformat(),
        record.employee_id,
        record.student_id,
        record.subtotal,
        record.discount,
        record.total,
        PaymentMethod(record.payment_method).value,
        TransactionStatus(record.status).value,
    ]


def serialize_transaction_items(record: Transaction) -> List[list[object]]:
    return [
        [record.transaction_id, item.product_id, item.variant_id, item.quantity, item.price_at_sale]
        for item in record.items
    ]


def deserialize_transaction(
    raw_row: Sequence[object],
    item_rows: Sequence[Sequence[object]] = (),
) -> Transaction:
    (
        transaction_id,
        timestamp_raw,
        employee_id,
        student_id,
        subtotal_raw,
        discount_raw,
        total_raw,
        payment_method,
        status,
    ) = raw_row[:9]
    items = tuple(
        TransactionItem(
            product_id=str(row[1]),
            variant_id=_optional_str(row[2]),
            quantity=_int(row[3]),
            price_at_sale=_decimal(row[4]),
        )
        for row in item_rows
    )
    return Transaction(
        transaction_id=str(transaction_id),
        timestamp=_timestamp(timestamp_raw),
        employee_id=_str(employee_id),
        student_id=_optional_str(student_id),
        items=items,
        subtotal=_decimal(subtotal_raw),
        discount=_decimal(discount_raw),
        total=_decimal(total_raw),
        payment_method=PaymentMethod(str(payment_method)),
        status=TransactionStatus(str(status)) if status is not None else TransactionStatus.COMPLETED,
    )


def read_transactions(workbook: Workbook) -> List[Transaction]:
    items = _group_by_parent(iter_rows(workbook, SheetName.TRANSACTION_ITEMS.value))
    return [
        deserialize_transaction(raw, items.get(str(raw[0]), ()))
        for raw in iter_rows(workbook, SheetName.TRANSACTIONS.value)
    ]


def write_transactions(workbook: Workbook, transactions: Sequence[Transaction]) -> None:
    replace_rows(workbook, SheetName.TRANSACTIONS.value, (serialize_transaction(t) for t in transactions))
    replace_rows(
        workbook,
        SheetName.TRANSACTION_ITEMS.value,
        (row for t in transactions for row in serialize_transaction_items(t)),
    )


def append_transaction(workbook: Workbook, record: Transaction) -> None:
    """Append one transaction header and its line items."""

    append_rows(workbook, SheetName.TRANSACTIONS.value, [serialize_transaction(record)])
    append_rows(workbook, SheetName.TRANSACTION_ITEMS.value, serialize_transaction_items(record))


def serialize_adjustment(record: StockAdjustment) -> list[object]:
    return [
        record.adjustment_id,
        record.timestamp.isoformat(),
        record.product_id,
        record.variant_id,
        record.quantity_change,
        AdjustmentReason(record.reason).value,
        record.employee_id,
        record.expected_stock,
        record.actual_stock,
        record.note,
    ]


def deserialize_adjustment(raw_row: Sequence[object]) -> StockAdjustment:
    (
        adjustment_id,
        timestamp_raw,
        product_id,
        variant_id,
        change_raw,
        reason,
        employee_id,
        expected_raw,
        actual_raw,
        note,
    ) = raw_row[:10]
    return StockAdjustment(
        adjustment_id=str(adjustment_id),
        timestamp=_timestamp(timestamp_raw),
        product_id=str(product_id),
        variant_id=_optional_str(variant_id),
        quantity_change=_int(change_raw),
        reason=AdjustmentReason(str(reason)),
        employee_id=_str(employee_id),
        expected_stock=_optional_int(expected_raw),
        actual_stock=_optional_int(actual_raw),
        note=_optional_str(note),
    )


def serialize_purchase_order(record: PurchaseOrder) -> list[object]:
    return [
        record.purchase_order_id,
        record.supplier_id,
        record.date.isoformat(),
        PurchaseOrderStatus(record.status).value,
        record.total,
    ]


def serialize_purchase_order_items(record: PurchaseOrder) -> List[list[object]]:
    return [
        [record.purchase_order_id, item.product_id, item.variant_id, item.quantity, item.unit_cost]
        for item in record.items
    ]


def deserialize_purchase_order(
    raw_row: Sequence[object],
    item_rows: Sequence[Sequence[object]] = (),
) -> PurchaseOrder:
    purchase_order_id, supplier_id, date_raw, status, total_raw = raw_row[:5]
    items = tuple(
        PurchaseOrderItem(
            product_id=str(row[1]),
            variant_id=_optional_str(row[2]),
            quantity=_int(row[3]),
            unit_cost=_decimal(row[4]),
        )
        for row in item_rows
    )
    return PurchaseOrder(
        purchase_order_id=str(purchase_order_id),
        supplier_id=_str(supplier_id),
        date=_timestamp(date_raw),
        status=PurchaseOrderStatus(str(status)),
        items=items,
        total=_decimal(total_raw),
    )


def read_purchase_orders(workbook: Workbook) -> List[PurchaseOrder]:
    items = _group_by_parent(iter_rows(workbook, SheetName.PURCHASE_ORDER_ITEMS.value))
    return [
        deserialize_purchase_order(raw, items.get(str(raw[0]), ()))
        for raw in iter_rows(workbook, SheetName.PURCHASE_ORDERS.value)
    ]


def write_purchase_orders(workbook: Workbook, orders: Sequence[PurchaseOrder]) -> None:
    replace_rows(workbook, SheetName.PURCHASE_ORDERS.value, (serialize_purchase_order(o) for o in orders))
    replace_rows(
        workbook,
        SheetName.PURCHASE_ORDER_ITEMS.value,
        (row for o in orders for row in serialize_purchase_order_items(o)),
    )


def append_purchase_order(workbook: Workbook, record: PurchaseOrder) -> None:
    append_rows(workbook, SheetName.PURCHASE_ORDERS.value, [serialize_purchase_order(record)])
    append_rows(workbook, SheetName.PURCHASE_ORDER_ITEMS.value, serialize_purchase_order_items(record))


# ---------------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------------


def read_settings(workbook: Workbook) -> AppSettings:
    """Build :class:`AppSettings` from the key/value ``Settings`` sheet.

    Missing keys fall back to the dataclass defaults.
    """

    values = {str(row[0]): row[1] for row in iter_rows(workbook, SheetName.SETTINGS.value)}
    currency = values.get("Currency")
    if currency is None:
        return AppSettings()
    return AppSettings(currency=CurrencyCode(str(currency)))


def write_settings(workbook: Workbook, settings: AppSettings) -> None:
    replace_rows(workbook, SheetName.SETTINGS.value, [["Currency", CurrencyCode(settings.currency).value]])
