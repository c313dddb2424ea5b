"""Business logic layer for the tuckshop POS.

This module orchestrates every operation that changes the store: sales
settlement, stock adjustments and stocktakes, purchase-order receiving, wallet
top-ups, and catalogue maintenance. It reads through the persistence gateway,
delegates the sale arithmetic to :mod:`tuckshop_pos.settlement`, and writes the
results back as whole collections.

Every mutating workflow computes all of its new collections before writing any
of them, so a rejected operation leaves the store exactly as it was. The store
assumes a single writer; nothing here locks across concurrent callers.
"""

from __future__ import annotations

import uuid
from collections import defaultdict
from dataclasses import dataclass, field, replace
from datetime import UTC, date, datetime
from decimal import Decimal
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Tuple

from . import data_manager, log
from .constants import (
    EXPECTED_SCHEMA_VERSION,
    AdjustmentReason,
    Collection,
    PaymentMethod,
    PurchaseOrderStatus,
    Role,
    TransactionStatus,
)
from .errors import (
    AuthenticationError,
    BusinessRuleViolation,
    InvalidRequestError,
    MissingReferenceError,
    SettlementError,
    UnknownProductError,
    UnknownStudentError,
)
from .gateway import StoreGateway, WorkbookStore
from .models import (
    ZERO,
    AppSettings,
    Category,
    Employee,
    PermissionMatrix,
    Product,
    PurchaseOrder,
    PurchaseOrderItem,
    StockAdjustment,
    Student,
    Supplier,
    Transaction,
    permissions_for_role,
)
from .settlement import (
    CartLine,
    SettlementResult,
    StockMutation,
    apply_stock_mutations,
    apply_wallet_mutation,
    settle,
)


def utc_now() -> datetime:
    """Return the current timezone-aware UTC time."""

    return datetime.now(UTC)


def generate_id(prefix: str = "T", *, when: Optional[datetime] = None) -> str:
    """Generate a sortable identifier from a UTC timestamp.

    Args:
        prefix (str): Designator prepended to the identifier, e.g. ``"T"`` for
            transactions, ``"A"`` for adjustments and ``"PO"`` for purchase
            orders.
        when (datetime | None): Timestamp to encode. Defaults to now.

    Returns:
        str: ``{prefix}{YYYYMMDDHHMMSSffffff}-{suffix}`` where the short random
            suffix keeps ids unique when several records share a microsecond.
    """

    when = when or utc_now()
    return f"{prefix}{when.strftime('%Y%m%d%H%M%S%f')}-{uuid.uuid4().hex[:6]}"


@dataclass(frozen=True)
class RuntimeContext:
    """Container for configuration, the store, and injectable clock/id sources."""

    settings: data_manager.ConfigSettings
    store: StoreGateway
    clock: Callable[[], datetime] = utc_now
    id_factory: Callable[[str], str] = generate_id
    _cache: Dict[str, Dict[str, Any]] = field(default_factory=dict, repr=False, compare=False)


@dataclass(frozen=True)
class SaleCommand:
    """User intent for settling a cart at the terminal."""

    cart: Tuple[CartLine, ...]
    employee_id: str
    payment_method: PaymentMethod
    student_id: Optional[str] = None
    discount: Decimal = ZERO


@dataclass(frozen=True)
class AdjustmentCommand:
    """User intent for a manual stock correction."""

    product_id: str
    quantity_change: int
    reason: AdjustmentReason
    employee_id: str
    variant_id: Optional[str] = None
    note: Optional[str] = None


@dataclass(frozen=True)
class StocktakeCommand:
    """Hand-counted stock figure to reconcile against the system."""

    product_id: str
    actual_count: int
    employee_id: str
    variant_id: Optional[str] = None
    note: Optional[str] = None


@dataclass(frozen=True)
class PurchaseOrderCommand:
    """User intent for raising a purchase order against a supplier."""

    supplier_id: str
    items: Tuple[PurchaseOrderItem, ...]
    status: PurchaseOrderStatus = PurchaseOrderStatus.DRAFT
    date: Optional[datetime] = None


# ---------------------------------------------------------------------------
# Context and caches
# ---------------------------------------------------------------------------


def _get_cache_bucket(context: RuntimeContext, name: str) -> Dict[str, Any]:
    """Return the mutable cache bucket for ``name``, creating it if needed."""

    bucket = context._cache.get(name)
    if bucket is None:
        log.debug("Initializing cache bucket '%s'", name)
        bucket = {}
        context._cache[name] = bucket
    return bucket


def _invalidate_cache(context: RuntimeContext, *names: str) -> None:
    """Evict cache buckets after a write so later reads see the new snapshot.

    Missing buckets are ignored.
    """

    if not names:
        return

    log.debug("Invalidating cache buckets: %s", ", ".join(names))

    for name in names:
        context._cache.pop(name, None)


def _ensure_collection_cache(context: RuntimeContext, collection: Collection, key: str) -> Dict[str, Any]:
    """Populate ``all`` and ``by_id`` for ``collection`` on first access.

    Args:
        context (RuntimeContext): Runtime state holding the store and caches.
        collection (Collection): Collection to load through the gateway.
        key (str): Attribute name used as the primary key of each record.

    Returns:
        dict[str, Any]: Bucket with the ordered ``all`` list and a ``by_id``
            lookup dictionary.
    """

    bucket = _get_cache_bucket(context, collection.value)
    if "all" not in bucket:
        records = context.store.get_all(collection)
        bucket["all"] = records
        bucket["by_id"] = {getattr(record, key): record for record in records}
        log.debug("Populated %s cache with %d entries", collection.value, len(records))
    return bucket


def _products(context: RuntimeContext) -> Dict[str, Any]:
    return _ensure_collection_cache(context, Collection.PRODUCTS, "product_id")


def _students(context: RuntimeContext) -> Dict[str, Any]:
    return _ensure_collection_cache(context, Collection.STUDENTS, "student_id")


def _employees(context: RuntimeContext) -> Dict[str, Any]:
    return _ensure_collection_cache(context, Collection.EMPLOYEES, "employee_id")


def _purchase_orders(context: RuntimeContext) -> Dict[str, Any]:
    return _ensure_collection_cache(context, Collection.PURCHASE_ORDERS, "purchase_order_id")


def _write(context: RuntimeContext, collection: Collection, records: Sequence[Any]) -> None:
    context.store.replace_all(collection, records)
    _invalidate_cache(context, collection.value)


def _append(context: RuntimeContext, collection: Collection, record: Any) -> None:
    context.store.append(collection, record)
    _invalidate_cache(context, collection.value)


def load_runtime_context(config_path: Optional[Path] = None) -> RuntimeContext:
    """Load configuration settings and a workbook-backed store.

    Args:
        config_path (Path | None): Optional override path for the configuration
            file. When omitted the data layer searches upward from the current
            working directory.

    Returns:
        RuntimeContext: Context wired to a :class:`WorkbookStore` with the
            default UTC clock and id generator.

    Raises:
        FileNotFoundError: If the configuration file or workbook is missing.
        KeyError: When mandatory configuration options are missing.
    """

    located_config = data_manager.find_config_file(config_path)
    resolved_config = Path(located_config).expanduser().resolve()
    parser = data_manager.read_config(resolved_config)
    settings = data_manager.parse_settings(parser, base_path=resolved_config.parent)
    workbook = data_manager.open_workbook(settings.data_file)
    log.info("Loaded runtime context for workbook '%s'", settings.data_file)
    return RuntimeContext(settings=settings, store=WorkbookStore(workbook))


def ensure_schema_version(context: RuntimeContext) -> None:
    """Validate workbook compatibility before mutating state.

    Raises:
        RuntimeError: If the configured schema version differs from
            ``EXPECTED_SCHEMA_VERSION`` or the workbook lacks expected sheets.
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

    if isinstance(context.store, WorkbookStore):
        missing = data_manager.missing_sheets(context.store.workbook)
        if missing:
            log.error("Workbook is missing sheets: %s", ", ".join(missing))
            raise RuntimeError(f"Workbook is missing sheets: {', '.join(missing)}")

    log.debug("Schema version '%s' validated", context.settings.schema_version)


def persist_context(context: RuntimeContext) -> None:
    """Save the workbook behind a :class:`WorkbookStore` to its configured path.

    Stores without a backing file keep their state in memory and need no save.
    """

    if not isinstance(context.store, WorkbookStore):
        log.debug("Store %s has nothing to persist", type(context.store).__name__)
        return
    data_manager.save_workbook(context.store.workbook, destination=context.settings.data_file)
    log.info("Persisted workbook '%s'", context.settings.data_file)


def refresh_context(context: RuntimeContext) -> RuntimeContext:
    """Reload the workbook to discard unsaved modifications.

    Returns:
        RuntimeContext: Fresh context with a newly opened workbook, the same
            clock and id factory, and an empty cache.
    """

    workbook = data_manager.refresh_workbook(context.settings.data_file)
    log.info("Reloaded workbook '%s'", context.settings.data_file)
    return RuntimeContext(
        settings=context.settings,
        store=WorkbookStore(workbook),
        clock=context.clock,
        id_factory=context.id_factory,
    )


# ---------------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------------


def list_products(context: RuntimeContext, *, include_inactive: bool = False) -> List[Product]:
    """Return products in store order, hiding inactive ones by default."""

    records = _products(context)["all"]
    return [p for p in records if include_inactive or p.is_active]


def list_students(context: RuntimeContext) -> List[Student]:
    return list(_students(context)["all"])


def list_employees(context: RuntimeContext, *, include_inactive: bool = False) -> List[Employee]:
    records = _employees(context)["all"]
    return [e for e in records if include_inactive or e.is_active]


def list_categories(context: RuntimeContext) -> List[Category]:
    return context.store.get_all(Collection.CATEGORIES)


def list_suppliers(context: RuntimeContext) -> List[Supplier]:
    return context.store.get_all(Collection.SUPPLIERS)


def list_transactions(context: RuntimeContext) -> List[Transaction]:
    """Return the transaction log in the order it was written."""

    return context.store.get_all(Collection.TRANSACTIONS)


def list_adjustments(context: RuntimeContext) -> List[StockAdjustment]:
    return context.store.get_all(Collection.ADJUSTMENTS)


def list_purchase_orders(context: RuntimeContext) -> List[PurchaseOrder]:
    return list(_purchase_orders(context)["all"])


def get_settings(context: RuntimeContext) -> AppSettings:
    return context.store.get_settings()


def get_product(context: RuntimeContext, product_id: str) -> Product:
    """Resolve a product by id.

    Raises:
        UnknownProductError: If ``product_id`` is not in the store.
    """

    try:
        return _products(context)["by_id"][product_id]
    except KeyError as exc:
        log.warning("Product lookup failed for id '%s'", product_id)
        raise UnknownProductError(f"Unknown product id: {product_id}") from exc


def get_student(context: RuntimeContext, student_id: str) -> Student:
    """Resolve a student by id.

    Raises:
        UnknownStudentError: If ``student_id`` is not in the store.
    """

    try:
        return _students(context)["by_id"][student_id]
    except KeyError as exc:
        log.warning("Student lookup failed for id '%s'", student_id)
        raise UnknownStudentError(f"Unknown student id: {student_id}") from exc


def get_employee(context: RuntimeContext, employee_id: str) -> Employee:
    """Resolve an employee by id.

    Raises:
        MissingReferenceError: If ``employee_id`` is not in the store.
    """

    try:
        return _employees(context)["by_id"][employee_id]
    except KeyError as exc:
        log.warning("Employee lookup failed for id '%s'", employee_id)
        raise MissingReferenceError(f"Unknown employee id: {employee_id}") from exc


def get_purchase_order(context: RuntimeContext, purchase_order_id: str) -> PurchaseOrder:
    """Resolve a purchase order by id.

    Raises:
        MissingReferenceError: If ``purchase_order_id`` is not in the store.
    """

    try:
        return _purchase_orders(context)["by_id"][purchase_order_id]
    except KeyError as exc:
        log.warning("Purchase order lookup failed for id '%s'", purchase_order_id)
        raise MissingReferenceError(f"Unknown purchase order id: {purchase_order_id}") from exc


# ---------------------------------------------------------------------------
# Staff
# ---------------------------------------------------------------------------


def authenticate_employee(context: RuntimeContext, pin: str) -> Employee:
    """Return the first active employee whose PIN matches ``pin``.

    PINs are stored and compared in plain text; this is terminal sign-in, not
    a security boundary.

    Raises:
        AuthenticationError: If no active employee uses ``pin``.
    """

    for employee in list_employees(context):
        if employee.pin == pin:
            log.info("Employee '%s' signed in", employee.employee_id)
            return employee
    log.warning("Rejected sign-in with an unknown PIN")
    raise AuthenticationError("Invalid PIN")


def has_permission(employee: Employee, capability: str) -> bool:
    """Return whether an active ``employee`` holds ``capability``."""

    return employee.is_active and employee.permissions.allows(capability)


# ---------------------------------------------------------------------------
# Sales
# ---------------------------------------------------------------------------


def record_sale(context: RuntimeContext, command: SaleCommand) -> SettlementResult:
    """Settle a cart and commit the transaction, stock and wallet changes.

    The current product snapshot and, when a student is named, that student's
    record are handed to :func:`~tuckshop_pos.settlement.settle`. Only when it
    succeeds are the new product list, student list and transaction written.

    Args:
        context (RuntimeContext): Runtime context with store and caches.
        command (SaleCommand): Cart, payer, payment method and attribution.

    Returns:
        SettlementResult: The committed transaction and the mutations applied.

    Raises:
        SettlementError: Any of the settlement failure modes. The store is
            left unchanged.
    """

    products = _products(context)
    student = None
    if command.student_id is not None:
        student = _students(context)["by_id"].get(command.student_id)

    result = settle(
        command.cart,
        command.student_id,
        command.payment_method,
        command.employee_id,
        products["by_id"],
        student,
        discount=command.discount,
        clock=context.clock,
        id_factory=context.id_factory,
    )

    updated_products = apply_stock_mutations(products["all"], result.stock_mutations)
    updated_students = None
    if result.wallet_mutation is not None:
        updated_students = apply_wallet_mutation(_students(context)["all"], result.wallet_mutation)

    _write(context, Collection.PRODUCTS, updated_products)
    if updated_students is not None:
        _write(context, Collection.STUDENTS, updated_students)
    _append(context, Collection.TRANSACTIONS, result.transaction)

    transaction = result.transaction
    log.info(
        "Recorded sale '%s' (%d lines, total=%s, method=%s, student=%s)",
        transaction.transaction_id,
        len(transaction.items),
        transaction.total,
        transaction.payment_method.value,
        transaction.student_id or "walk-in",
    )
    return result


# ---------------------------------------------------------------------------
# Stock
# ---------------------------------------------------------------------------


def _check_stock_target(product: Product, variant_id: Optional[str]) -> None:
    """Reject stock operations aimed at a field that does not hold sellable stock."""

    if product.is_composite:
        log.error("Stock operation rejected for composite product '%s'", product.product_id)
        raise InvalidRequestError(
            f"Product '{product.product_id}' is composite; its stock comes from its components"
        )
    if variant_id is not None:
        if product.find_variant(variant_id) is None:
            log.warning("Variant lookup failed for '%s' on product '%s'", variant_id, product.product_id)
            raise UnknownProductError(f"Unknown variant '{variant_id}' for product '{product.product_id}'")
    elif product.has_variants:
        raise InvalidRequestError(f"Product '{product.product_id}' requires a variant selection")


def _commit_adjustment(context: RuntimeContext, product: Product, adjustment: StockAdjustment) -> StockAdjustment:
    if product.track_stock:
        mutation = StockMutation(product.product_id, adjustment.variant_id, adjustment.quantity_change)
        updated = apply_stock_mutations(list_products(context, include_inactive=True), [mutation])
        resulting = product.current_stock(adjustment.variant_id) + adjustment.quantity_change
        if resulting < 0:
            log.warning(
                "Stock for '%s' is now negative (%d) after adjustment '%s'",
                product.product_id,
                resulting,
                adjustment.adjustment_id,
            )
        _write(context, Collection.PRODUCTS, updated)
    else:
        log.info("Product '%s' does not track stock; recording adjustment only", product.product_id)

    _append(context, Collection.ADJUSTMENTS, adjustment)
    log.info(
        "Recorded stock adjustment '%s' for '%s' (change=%d, reason=%s)",
        adjustment.adjustment_id,
        product.product_id,
        adjustment.quantity_change,
        AdjustmentReason(adjustment.reason).value,
    )
    return adjustment


def adjust_stock(context: RuntimeContext, command: AdjustmentCommand) -> StockAdjustment:
    """Apply a signed stock correction and log it as a :class:`StockAdjustment`.

    No lower bound is enforced; a correction that drives stock below zero is
    applied as given and logged as a warning so the discrepancy stays visible.
    Products that do not track stock get the audit entry but no stock change.

    Args:
        context (RuntimeContext): Runtime context with store and caches.
        command (AdjustmentCommand): Target, signed change, reason and note.

    Returns:
        StockAdjustment: The appended audit entry.

    Raises:
        UnknownProductError: If the product or variant does not exist.
        InvalidRequestError: For a zero change, a composite target, or a
            variant-bearing product without a variant id.
    """

    product = get_product(context, command.product_id)
    if isinstance(command.quantity_change, bool) or not isinstance(command.quantity_change, int):
        raise InvalidRequestError(f"Quantity change must be a whole number (got {command.quantity_change!r})")
    if command.quantity_change == 0:
        log.error("Adjustment rejected: zero quantity change for '%s'", command.product_id)
        raise InvalidRequestError("Quantity change must not be zero")
    _check_stock_target(product, command.variant_id)

    adjustment = StockAdjustment(
        adjustment_id=context.id_factory("A"),
        timestamp=context.clock(),
        product_id=command.product_id,
        variant_id=command.variant_id,
        quantity_change=command.quantity_change,
        reason=AdjustmentReason(command.reason),
        employee_id=command.employee_id,
        note=command.note,
    )
    return _commit_adjustment(context, product, adjustment)


def stocktake(context: RuntimeContext, command: StocktakeCommand) -> StockAdjustment:
    """Reconcile a hand count against the system figure.

    The current stock is read as ``expected``; the difference
    ``actual - expected`` is applied as an ``inventory_count`` adjustment that
    also records both figures. A count that matches still writes an entry with
    a zero change so the check itself is on record.

    Raises:
        UnknownProductError: If the product or variant does not exist.
        InvalidRequestError: If the count is negative, the product does not
            track stock, or the target is composite or lacks a variant id.
    """

    product = get_product(context, command.product_id)
    if isinstance(command.actual_count, bool) or not isinstance(command.actual_count, int) or command.actual_count < 0:
        log.error("Stocktake rejected: invalid count %r for '%s'", command.actual_count, command.product_id)
        raise InvalidRequestError(f"Counted stock must be a whole number of zero or more (got {command.actual_count!r})")
    if not product.track_stock:
        raise InvalidRequestError(f"Product '{command.product_id}' does not track stock")
    _check_stock_target(product, command.variant_id)

    expected = product.current_stock(command.variant_id)
    adjustment = StockAdjustment(
        adjustment_id=context.id_factory("A"),
        timestamp=context.clock(),
        product_id=command.product_id,
        variant_id=command.variant_id,
        quantity_change=command.actual_count - expected,
        reason=AdjustmentReason.INVENTORY_COUNT,
        employee_id=command.employee_id,
        expected_stock=expected,
        actual_stock=command.actual_count,
        note=command.note,
    )
    return _commit_adjustment(context, product, adjustment)


def calculate_inventory(context: RuntimeContext) -> Dict[str, int]:
    """Return on-hand stock keyed by ``product_id`` or ``product_id/variant_id``.

    Only tracked, non-composite products are listed; composites have no stock
    of their own.
    """

    inventory: Dict[str, int] = {}
    for product in list_products(context, include_inactive=True):
        if not product.track_stock or product.is_composite:
            continue
        if product.has_variants:
            for variant in product.variants:
                inventory[f"{product.product_id}/{variant.variant_id}"] = variant.stock_quantity
        else:
            inventory[product.product_id] = product.stock_quantity
    log.debug("Calculated inventory balances for %d stock targets", len(inventory))
    return inventory


def list_low_stock_products(context: RuntimeContext) -> List[Product]:
    """Active products whose stock is below their minimum level."""

    return [product for product in list_products(context) if product.is_low_stock()]


# ---------------------------------------------------------------------------
# Purchase orders
# ---------------------------------------------------------------------------


def create_purchase_order(context: RuntimeContext, command: PurchaseOrderCommand) -> PurchaseOrder:
    """Validate and append a new purchase order.

    Raises:
        MissingReferenceError: If the supplier does not exist.
        UnknownProductError: If a line references an unknown product/variant.
        InvalidRequestError: For an empty order, a ``received`` status, or a
            line aimed at a composite product.
        ValueError: If a quantity is not positive or a unit cost is negative.
    """

    if not any(s.supplier_id == command.supplier_id for s in list_suppliers(context)):
        log.warning("Supplier lookup failed for id '%s'", command.supplier_id)
        raise MissingReferenceError(f"Unknown supplier id: {command.supplier_id}")
    if not command.items:
        raise InvalidRequestError("Purchase order must contain at least one line")
    status = PurchaseOrderStatus(command.status)
    if status is PurchaseOrderStatus.RECEIVED:
        raise InvalidRequestError("New purchase orders cannot start as received; use receive_purchase_order")

    for item in command.items:
        require_positive_quantity(item.quantity)
        require_nonnegative_money(item.unit_cost)
        _check_stock_target(get_product(context, item.product_id), item.variant_id)

    when = command.date or context.clock()
    order = PurchaseOrder(
        purchase_order_id=context.id_factory("PO"),
        supplier_id=command.supplier_id,
        date=when,
        status=status,
        items=tuple(command.items),
        total=sum((item.unit_cost * item.quantity for item in command.items), ZERO),
    )
    _append(context, Collection.PURCHASE_ORDERS, order)
    log.info(
        "Created purchase order '%s' for supplier '%s' (%d lines, total=%s)",
        order.purchase_order_id,
        order.supplier_id,
        len(order.items),
        order.total,
    )
    return order


def _replace_purchase_order(context: RuntimeContext, updated: PurchaseOrder) -> None:
    orders = [
        updated if order.purchase_order_id == updated.purchase_order_id else order
        for order in list_purchase_orders(context)
    ]
    _write(context, Collection.PURCHASE_ORDERS, orders)


def mark_purchase_order_ordered(context: RuntimeContext, purchase_order_id: str) -> PurchaseOrder:
    """Move a draft purchase order to ``ordered``.

    Raises:
        MissingReferenceError: If the order does not exist.
        BusinessRuleViolation: If the order is not a draft.
    """

    order = get_purchase_order(context, purchase_order_id)
    if order.status != PurchaseOrderStatus.DRAFT:
        log.warning("Purchase order '%s' is %s, not draft", purchase_order_id, order.status.value)
        raise BusinessRuleViolation(f"Purchase order '{purchase_order_id}' is not a draft")
    updated = replace(order, status=PurchaseOrderStatus.ORDERED)
    _replace_purchase_order(context, updated)
    log.info("Purchase order '%s' marked as ordered", purchase_order_id)
    return updated


def receive_purchase_order(context: RuntimeContext, purchase_order_id: str) -> Tuple[PurchaseOrder, bool]:
    """Book a purchase order's goods into stock exactly once.

    For each line the quantity is added to the product or variant stock and
    its cost price is overwritten with the line's unit cost (last cost wins).
    Lines for products that do not track stock leave the product untouched.
    Receiving an order that is already ``received`` changes nothing.

    Args:
        context (RuntimeContext): Runtime context with store and caches.
        purchase_order_id (str): Order to receive.

    Returns:
        tuple[PurchaseOrder, bool]: The order as stored afterwards and whether
            this call changed anything.

    Raises:
        MissingReferenceError: If the order does not exist.
        UnknownProductError: If a line references an unknown product/variant;
            nothing is received in that case.
    """

    order = get_purchase_order(context, purchase_order_id)
    if order.is_received:
        log.info("Purchase order '%s' already received; nothing to do", purchase_order_id)
        return order, False

    by_id = dict(_products(context)["by_id"])
    for item in order.items:
        product = by_id.get(item.product_id)
        if product is None:
            log.warning("Purchase order '%s' references unknown product '%s'", purchase_order_id, item.product_id)
            raise UnknownProductError(f"Unknown product id: {item.product_id}")
        _check_stock_target(product, item.variant_id)
        if not product.track_stock:
            continue
        product = product.with_stock(product.current_stock(item.variant_id) + item.quantity, item.variant_id)
        by_id[item.product_id] = product.with_cost(item.unit_cost, item.variant_id)

    updated_products = [by_id[p.product_id] for p in list_products(context, include_inactive=True)]
    received = replace(order, status=PurchaseOrderStatus.RECEIVED)
    _write(context, Collection.PRODUCTS, updated_products)
    _replace_purchase_order(context, received)
    log.info("Received purchase order '%s' (%d lines)", purchase_order_id, len(order.items))
    return received, True


# ---------------------------------------------------------------------------
# Students
# ---------------------------------------------------------------------------


def _replace_student(context: RuntimeContext, updated: Student) -> None:
    students = [updated if s.student_id == updated.student_id else s for s in list_students(context)]
    _write(context, Collection.STUDENTS, students)


def top_up_wallet(context: RuntimeContext, student_id: str, amount: Decimal) -> Student:
    """Credit ``amount`` to a student's wallet.

    Raises:
        UnknownStudentError: If the student does not exist.
        ValueError: If ``amount`` is not greater than zero.
    """

    student = get_student(context, student_id)
    if not Decimal(amount).is_finite() or amount <= ZERO:
        log.error("Top-up rejected: invalid amount %s", amount)
        raise ValueError("Top-up amount must be greater than zero")
    updated = replace(student, wallet_balance=student.wallet_balance + amount)
    _replace_student(context, updated)
    log.info("Topped up wallet of '%s' by %s (balance=%s)", student_id, amount, updated.wallet_balance)
    return updated


def reset_daily_spending(context: RuntimeContext) -> int:
    """Zero every student's ``spent_today``; run once at the start of a day.

    Returns:
        int: Number of students whose figure was non-zero.
    """

    students = list_students(context)
    touched = sum(1 for s in students if s.spent_today != ZERO)
    _write(context, Collection.STUDENTS, [replace(s, spent_today=ZERO) for s in students])
    log.info("Reset daily spending for %d students (%d had spent)", len(students), touched)
    return touched


def set_restricted_products(context: RuntimeContext, student_id: str, product_ids: Iterable[str]) -> Student:
    """Replace the set of products a student may not buy.

    Raises:
        UnknownStudentError: If the student does not exist.
        UnknownProductError: If any product id is unknown.
    """

    student = get_student(context, student_id)
    restricted = frozenset(product_ids)
    for product_id in restricted:
        get_product(context, product_id)
    updated = replace(student, restricted_products=restricted)
    _replace_student(context, updated)
    log.info("Updated restrictions for '%s': %s", student_id, ", ".join(sorted(restricted)) or "none")
    return updated


# ---------------------------------------------------------------------------
# Catalogue maintenance
# ---------------------------------------------------------------------------


def _reject_duplicate(existing: Iterable[str], new_id: str, label: str) -> None:
    if new_id in set(existing):
        log.warning("Duplicate %s id '%s'", label, new_id)
        raise BusinessRuleViolation(f"{label.capitalize()} '{new_id}' already exists")


def _check_component_variant(part: Product, variant_id: Optional[str]) -> None:
    if variant_id is None:
        if part.has_variants:
            raise InvalidRequestError(f"Component '{part.product_id}' requires a variant selection")
        return
    if part.find_variant(variant_id) is None:
        log.error("Component variant '%s' not found on product '%s'", variant_id, part.product_id)
        raise UnknownProductError(f"Unknown variant '{variant_id}' for product '{part.product_id}'")


def add_product(context: RuntimeContext, product: Product) -> Product:
    """Append a product after checking its id and component references.

    Raises:
        BusinessRuleViolation: If the id is already taken.
        UnknownProductError: If a component references an unknown product
            or a variant the product does not have.
        InvalidRequestError: If a composite lists itself as a component, or
            names a variant-bearing component without a variant.
    """

    products = list_products(context, include_inactive=True)
    _reject_duplicate((p.product_id for p in products), product.product_id, "product")
    require_nonnegative_money(product.selling_price)
    require_nonnegative_money(product.cost_price)
    known = {p.product_id: p for p in products}
    for component in product.components:
        if component.product_id == product.product_id:
            raise InvalidRequestError(f"Composite product '{product.product_id}' cannot contain itself")
        if component.product_id not in known:
            raise UnknownProductError(f"Unknown component product id: {component.product_id}")
        _check_component_variant(known[component.product_id], component.variant_id)
        require_positive_quantity(component.quantity)
    _write(context, Collection.PRODUCTS, [*products, product])
    log.info("Added product '%s' (%s)", product.product_id, product.name)
    return product


def add_student(context: RuntimeContext, student: Student) -> Student:
    """Append a student record.

    Raises:
        BusinessRuleViolation: If the id is already taken.
        ValueError: If the balance or daily limit is negative.
    """

    students = list_students(context)
    _reject_duplicate((s.student_id for s in students), student.student_id, "student")
    require_nonnegative_money(student.wallet_balance)
    require_nonnegative_money(student.daily_spend_limit)
    _write(context, Collection.STUDENTS, [*students, student])
    log.info("Added student '%s' (%s)", student.student_id, student.name)
    return student


def add_employee(
    context: RuntimeContext,
    *,
    employee_id: str,
    name: str,
    pin: str,
    role: Role,
    permissions: Optional[PermissionMatrix] = None,
    is_active: bool = True,
) -> Employee:
    """Append an employee, defaulting permissions from the role.

    Raises:
        BusinessRuleViolation: If the id or an active employee's PIN is taken.
    """

    employees = list_employees(context, include_inactive=True)
    _reject_duplicate((e.employee_id for e in employees), employee_id, "employee")
    if any(e.is_active and e.pin == pin for e in employees):
        log.warning("Rejected employee '%s': PIN already in use", employee_id)
        raise BusinessRuleViolation("PIN is already assigned to another active employee")
    employee = Employee(
        employee_id=employee_id,
        name=name,
        pin=pin,
        role=Role(role),
        permissions=permissions or permissions_for_role(role),
        is_active=is_active,
    )
    _write(context, Collection.EMPLOYEES, [*employees, employee])
    log.info("Added employee '%s' (%s, %s)", employee_id, name, employee.role.value)
    return employee


def add_category(context: RuntimeContext, category: Category) -> Category:
    categories = list_categories(context)
    _reject_duplicate((c.category_id for c in categories), category.category_id, "category")
    _write(context, Collection.CATEGORIES, [*categories, category])
    log.info("Added category '%s' (%s)", category.category_id, category.name)
    return category


def add_supplier(context: RuntimeContext, supplier: Supplier) -> Supplier:
    suppliers = list_suppliers(context)
    _reject_duplicate((s.supplier_id for s in suppliers), supplier.supplier_id, "supplier")
    _write(context, Collection.SUPPLIERS, [*suppliers, supplier])
    log.info("Added supplier '%s' (%s)", supplier.supplier_id, supplier.name)
    return supplier


def update_settings(context: RuntimeContext, settings: AppSettings) -> AppSettings:
    """Replace the shop-wide settings, e.g. the display currency."""

    previous = context.store.get_settings()
    context.store.replace_settings(settings)
    log.info("Currency changed from %s to %s", previous.currency.value, settings.currency.value)
    return settings


# ---------------------------------------------------------------------------
# Reporting
# ---------------------------------------------------------------------------


def calculate_dashboard_summary(context: RuntimeContext, *, day: Optional[date] = None) -> Dict[str, Any]:
    """Produce the headline figures shown on the back-office dashboard.

    Args:
        context (RuntimeContext): Runtime context with store and caches.
        day (date | None): Day whose sales are totalled. Defaults to the date
            of ``context.clock()``.

    Returns:
        dict[str, Any]: ``today_sales`` (sum of completed totals on ``day``),
            ``student_count``, ``transaction_count`` and ``low_stock_count``.
    """

    day = day or context.clock().date()
    transactions = list_transactions(context)
    today_sales = sum(
        (
            t.total
            for t in transactions
            if t.status == TransactionStatus.COMPLETED and t.timestamp.date() == day
        ),
        ZERO,
    )
    summary = {
        "today_sales": today_sales,
        "student_count": len(list_students(context)),
        "transaction_count": len(transactions),
        "low_stock_count": len(list_low_stock_products(context)),
    }
    log.debug("Calculated dashboard summary: %s", summary)
    return summary


def sales_by_grade(context: RuntimeContext) -> Dict[str, Decimal]:
    """Sum completed student sales per grade."""

    grades = {s.student_id: s.grade for s in list_students(context)}
    totals: Dict[str, Decimal] = defaultdict(lambda: ZERO)
    for transaction in list_transactions(context):
        if transaction.status != TransactionStatus.COMPLETED or transaction.student_id is None:
            continue
        grade = grades.get(transaction.student_id)
        if grade is not None:
            totals[grade] += transaction.total
    return dict(totals)


# ---------------------------------------------------------------------------
# Validation helpers
# ---------------------------------------------------------------------------


def require_positive_quantity(quantity: int) -> None:
    """Validate that a quantity is strictly positive.

    Raises:
        ValueError: If ``quantity`` is zero or negative.
    """

    if quantity <= 0:
        log.error("Quantity validation failed: %s", quantity)
        raise ValueError("Quantity must be greater than zero")


def require_nonnegative_money(amount: Decimal) -> None:
    """Validate that a monetary value is nonnegative.

    Raises:
        ValueError: If ``amount`` is less than zero.
    """

    if not Decimal(amount).is_finite() or amount < ZERO:
        log.error("Monetary value validation failed: %s", amount)
        raise ValueError("Amount must be a finite value of zero or more")


__all__ = [
    "BusinessRuleViolation",
    "MissingReferenceError",
    "AuthenticationError",
    "SettlementError",
    "RuntimeContext",
    "SaleCommand",
    "AdjustmentCommand",
    "StocktakeCommand",
    "PurchaseOrderCommand",
    "utc_now",
    "generate_id",
    "load_runtime_context",
    "ensure_schema_version",
    "persist_context",
    "refresh_context",
    "list_products",
    "list_students",
    "list_employees",
    "list_categories",
    "list_suppliers",
    "list_transactions",
    "list_adjustments",
    "list_purchase_orders",
    "get_settings",
    "get_product",
    "get_student",
    "get_employee",
    "get_purchase_order",
    "authenticate_employee",
    "has_permission",
    "record_sale",
    "adjust_stock",
    "stocktake",
    "calculate_inventory",
    "list_low_stock_products",
    "create_purchase_order",
    "mark_purchase_order_ordered",
    "receive_purchase_order",
    "top_up_wallet",
    "reset_daily_spending",
    "set_restricted_products",
    "add_product",
    "add_student",
    "add_employee",
    "add_category",
    "add_supplier",
    "update_settings",
    "calculate_dashboard_summary",
    "sales_by_grade",
    "require_positive_quantity",
    "require_nonnegative_money",
]
