"""Enumerations shared across the tuckshop POS modules.

Centralises domain constants so that the persistence gateway, the settlement
engine, and the CLI rely on a single source of truth for the identifiers that
end up stored in the workbook.
"""

from __future__ import annotations

from enum import Enum


# Central schema version expected by all layers when validating workbooks.
EXPECTED_SCHEMA_VERSION = "1.0.0"


class Role(str, Enum):
    """Enumerate the staff roles an employee can hold."""

    ADMIN = "admin"
    CASHIER = "cashier"
    MANAGER = "manager"


class PaymentMethod(str, Enum):
    """Enumerate supported payment mechanisms at the terminal."""

    CASH = "cash"
    CARD = "card"
    WALLET = "wallet"


class TransactionStatus(str, Enum):
    """Lifecycle states of a recorded sale."""

    COMPLETED = "completed"
    VOIDED = "voided"
    REFUNDED = "refunded"


class AdjustmentReason(str, Enum):
    """Reasons recorded against manual stock adjustments."""

    DAMAGE = "damage"
    RETURN = "return"
    INVENTORY_COUNT = "inventory_count"
    WASTE = "waste"
    RESTOCK = "restock"
    STOCKTAKE = "stocktake"


class PurchaseOrderStatus(str, Enum):
    """Lifecycle states of a supplier purchase order."""

    DRAFT = "draft"
    ORDERED = "ordered"
    RECEIVED = "received"


class CurrencyCode(str, Enum):
    """Currencies the shop can display amounts in."""

    USD = "USD"
    BWP = "BWP"
    ZAR = "ZAR"


CURRENCY_SYMBOLS = {
    CurrencyCode.USD: "$",
    CurrencyCode.BWP: "P",
    CurrencyCode.ZAR: "R",
}


class Collection(str, Enum):
    """Top-level collections exposed by the persistence gateway."""

    PRODUCTS = "products"
    STUDENTS = "students"
    EMPLOYEES = "employees"
    CATEGORIES = "categories"
    TRANSACTIONS = "transactions"
    ADJUSTMENTS = "adjustments"
    PURCHASE_ORDERS = "purchase_orders"
    SUPPLIERS = "suppliers"
    SETTINGS = "settings"


# Collections that only ever grow; the gateway offers ``append`` for these.
APPEND_ONLY_COLLECTIONS = frozenset(
    {
        Collection.TRANSACTIONS,
        Collection.ADJUSTMENTS,
        Collection.PURCHASE_ORDERS,
    }
)


class SheetName(str, Enum):
    """Enumerate the workbook sheet names managed by the data layer."""

    PRODUCTS = "Products"
    VARIANTS = "Variants"
    PRODUCT_COMPONENTS = "ProductComponents"
    CATEGORIES = "Categories"
    STUDENTS = "Students"
    EMPLOYEES = "Employees"
    TRANSACTIONS = "Transactions"
    TRANSACTION_ITEMS = "TransactionItems"
    STOCK_ADJUSTMENTS = "StockAdjustments"
    PURCHASE_ORDERS = "PurchaseOrders"
    PURCHASE_ORDER_ITEMS = "PurchaseOrderItems"
    SUPPLIERS = "Suppliers"
    SETTINGS = "Settings"


class SettlementErrorKind(str, Enum):
    """Recoverable failure modes reported by the settlement engine."""

    INVALID_REQUEST = "InvalidRequest"
    UNKNOWN_PRODUCT = "UnknownProduct"
    UNKNOWN_STUDENT = "UnknownStudent"
    RESTRICTED_PRODUCT = "RestrictedProduct"
    WALLET_REQUIRES_STUDENT = "WalletRequiresStudent"
    INSUFFICIENT_BALANCE = "InsufficientBalance"
    DAILY_LIMIT_EXCEEDED = "DailyLimitExceeded"
    INSUFFICIENT_STOCK = "InsufficientStock"
    COMPOSITE_CYCLE = "CompositeCycle"


__all__ = [
    "EXPECTED_SCHEMA_VERSION",
    "Role",
    "PaymentMethod",
    "TransactionStatus",
    "AdjustmentReason",
    "PurchaseOrderStatus",
    "CurrencyCode",
    "CURRENCY_SYMBOLS",
    "Collection",
    "APPEND_ONLY_COLLECTIONS",
    "SheetName",
    "SettlementErrorKind",
]
