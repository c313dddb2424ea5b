"""Domain model for the tuckshop POS.

Every entity is an immutable dataclass. Money is carried as
:class:`~decimal.Decimal` and stock as ``int``; list-valued fields are tuples,
so one record may appear in several snapshots. Updates are expressed with
:func:`dataclasses.replace`.
"""

from __future__ import annotations

from dataclasses import dataclass, field, fields, replace
from datetime import datetime
from decimal import Decimal
from typing import Dict, FrozenSet, Optional, Tuple

from .constants import (
    AdjustmentReason,
    CurrencyCode,
    PaymentMethod,
    PurchaseOrderStatus,
    Role,
    TransactionStatus,
)


ZERO = Decimal("0")


@dataclass(frozen=True)
class Category:
    """Product grouping shown on the sales terminal."""

    category_id: str
    name: str
    color: str = ""


@dataclass(frozen=True)
class Supplier:
    """Vendor that purchase orders are raised against."""

    supplier_id: str
    name: str
    contact_name: str = ""
    email: str = ""


@dataclass(frozen=True)
class Variant:
    """Sellable variation of a product with its own price and stock."""

    variant_id: str
    name: str
    sku: str
    cost_price: Decimal
    selling_price: Decimal
    stock_quantity: int


@dataclass(frozen=True)
class ProductComponent:
    """Reference from a composite product to one of its parts."""

    product_id: str
    quantity: int
    variant_id: Optional[str] = None


@dataclass(frozen=True)
class Product:
    """Catalogue entry, optionally with variants or bundle components."""

    product_id: str
    name: str
    sku: str
    category_id: str
    cost_price: Decimal
    selling_price: Decimal
    stock_quantity: int
    min_stock_level: int = 0
    is_active: bool = True
    track_stock: bool = True
    is_composite: bool = False
    variants: Tuple[Variant, ...] = ()
    components: Tuple[ProductComponent, ...] = ()
    image_url: Optional[str] = None

    @property
    def has_variants(self) -> bool:
        return bool(self.variants)

    @property
    def is_stock_tracked(self) -> bool:
        """``False`` for service items whose stock fields are ignored."""

        return self.track_stock

    def find_variant(self, variant_id: str) -> Optional[Variant]:
        for variant in self.variants:
            if variant.variant_id == variant_id:
                return variant
        return None

    def current_stock(self, variant_id: Optional[str] = None) -> int:
        """Return the stock figure that sales and stocktakes operate on.

        Args:
            variant_id (str | None): Variant to read. Products with variants
                keep their sellable stock on the variants, so the parent's own
                ``stock_quantity`` is only returned when no variant is named.

        Raises:
            KeyError: If ``variant_id`` does not belong to this product.
        """

        if variant_id is None:
            return self.stock_quantity
        variant = self.find_variant(variant_id)
        if variant is None:
            raise KeyError(f"Unknown variant id: {variant_id}")
        return variant.stock_quantity

    def is_low_stock(self) -> bool:
        """Tracked, non-composite products whose stock is below the minimum level."""

        if not self.track_stock or self.is_composite:
            return False
        if self.variants:
            return any(variant.stock_quantity < self.min_stock_level for variant in self.variants)
        return self.stock_quantity < self.min_stock_level

    def with_stock(self, quantity: int, variant_id: Optional[str] = None) -> "Product":
        """Return a copy whose product or variant stock is set to ``quantity``."""

        if variant_id is None:
            return replace(self, stock_quantity=quantity)
        return replace(
            self,
            variants=tuple(
                replace(variant, stock_quantity=quantity) if variant.variant_id == variant_id else variant
                for variant in self.variants
            ),
        )

    def with_cost(self, cost: Decimal, variant_id: Optional[str] = None) -> "Product":
        """Return a copy whose product or variant cost price is ``cost``."""

        if variant_id is None:
            return replace(self, cost_price=cost)
        return replace(
            self,
            variants=tuple(
                replace(variant, cost_price=cost) if variant.variant_id == variant_id else variant
                for variant in self.variants
            ),
        )


@dataclass(frozen=True)
class Student:
    """Learner holding a prepaid wallet."""

    student_id: str
    name: str
    grade: str
    wallet_balance: Decimal
    daily_spend_limit: Decimal
    spent_today: Decimal = ZERO
    restricted_products: FrozenSet[str] = frozenset()
    pin: str = ""
    qr_code: str = ""
    image_url: Optional[str] = None

    def is_restricted(self, product_id: str) -> bool:
        return product_id in self.restricted_products

    def remaining_daily_allowance(self) -> Decimal:
        return self.daily_spend_limit - self.spent_today


@dataclass(frozen=True)
class PermissionMatrix:
    """Fixed set of capability flags granted to an employee."""

    access_pos: bool = False
    apply_discounts: bool = False
    change_item_price: bool = False
    void_sales: bool = False
    process_refunds: bool = False
    open_cash_drawer: bool = False
    view_products: bool = False
    add_products: bool = False
    edit_products: bool = False
    delete_products: bool = False
    manage_categories: bool = False
    adjust_inventory: bool = False
    create_students: bool = False
    edit_students: bool = False
    add_balance: bool = False
    view_balances: bool = False
    set_spending_limits: bool = False
    view_sales_reports: bool = False
    view_profit_reports: bool = False
    export_reports: bool = False
    access_back_office: bool = False
    manage_employees: bool = False

    @classmethod
    def names(cls) -> Tuple[str, ...]:
        return tuple(item.name for item in fields(cls))

    @classmethod
    def all_granted(cls) -> "PermissionMatrix":
        return cls(**{name: True for name in cls.names()})

    def as_dict(self) -> Dict[str, bool]:
        return {name: getattr(self, name) for name in self.names()}

    def allows(self, capability: str) -> bool:
        """Return the flag for ``capability``.

        Raises:
            KeyError: If ``capability`` is not one of :meth:`names`.
        """

        if capability not in self.names():
            raise KeyError(f"Unknown capability: {capability}")
        return getattr(self, capability)


DEFAULT_PERMISSIONS = PermissionMatrix(
    access_pos=True,
    open_cash_drawer=True,
    view_products=True,
    view_balances=True,
)

MANAGER_PERMISSIONS = replace(
    DEFAULT_PERMISSIONS,
    apply_discounts=True,
    void_sales=True,
    process_refunds=True,
    add_products=True,
    edit_products=True,
    manage_categories=True,
    adjust_inventory=True,
    create_students=True,
    edit_students=True,
    add_balance=True,
    set_spending_limits=True,
    view_sales_reports=True,
    view_profit_reports=True,
    export_reports=True,
    access_back_office=True,
)

ADMIN_PERMISSIONS = PermissionMatrix.all_granted()


def permissions_for_role(role: Role) -> PermissionMatrix:
    """Return the default capability set for a newly created employee."""

    return {
        Role.ADMIN: ADMIN_PERMISSIONS,
        Role.MANAGER: MANAGER_PERMISSIONS,
        Role.CASHIER: DEFAULT_PERMISSIONS,
    }[Role(role)]


@dataclass(frozen=True)
class Employee:
    """Staff member who signs in to the terminal with a PIN."""

    employee_id: str
    name: str
    pin: str
    role: Role
    permissions: PermissionMatrix = field(default_factory=PermissionMatrix)
    is_active: bool = True


@dataclass(frozen=True)
class AppSettings:
    """Shop-wide display settings."""

    currency: CurrencyCode = CurrencyCode.USD


@dataclass(frozen=True)
class TransactionItem:
    """Line of a completed sale with its price frozen at sale time."""

    product_id: str
    quantity: int
    price_at_sale: Decimal
    variant_id: Optional[str] = None

    @property
    def line_total(self) -> Decimal:
        return self.price_at_sale * self.quantity


@dataclass(frozen=True)
class Transaction:
    """Immutable record of one settlement."""

    transaction_id: str
    timestamp: datetime
    employee_id: str
    student_id: Optional[str]
    items: Tuple[TransactionItem, ...]
    subtotal: Decimal
    discount: Decimal
    total: Decimal
    payment_method: PaymentMethod
    status: TransactionStatus = TransactionStatus.COMPLETED


@dataclass(frozen=True)
class StockAdjustment:
    """Append-only audit entry for a manual stock change."""

    adjustment_id: str
    timestamp: datetime
    product_id: str
    quantity_change: int
    reason: AdjustmentReason
    employee_id: str
    variant_id: Optional[str] = None
    expected_stock: Optional[int] = None
    actual_stock: Optional[int] = None
    note: Optional[str] = None


@dataclass(frozen=True)
class PurchaseOrderItem:
    """Line of a purchase order priced at the supplier's unit cost."""

    product_id: str
    quantity: int
    unit_cost: Decimal
    variant_id: Optional[str] = None


@dataclass(frozen=True)
class PurchaseOrder:
    """Supplier order that adds stock once received."""

    purchase_order_id: str
    supplier_id: str
    date: datetime
    status: PurchaseOrderStatus
    items: Tuple[PurchaseOrderItem, ...]
    total: Decimal

    @property
    def is_received(self) -> bool:
        return self.status == PurchaseOrderStatus.RECEIVED


__all__ = [
    "ZERO",
    "Category",
    "Supplier",
    "Variant",
    "ProductComponent",
    "Product",
    "Student",
    "PermissionMatrix",
    "DEFAULT_PERMISSIONS",
    "MANAGER_PERMISSIONS",
    "ADMIN_PERMISSIONS",
    "permissions_for_role",
    "Employee",
    "AppSettings",
    "TransactionItem",
    "Transaction",
    "StockAdjustment",
    "PurchaseOrderItem",
    "PurchaseOrder",
]
