"""Unit tests for the immutable domain records."""

from __future__ import annotations

from decimal import Decimal

import pytest

from tuckshop_pos.constants import Role
from tuckshop_pos.models import (
    ADMIN_PERMISSIONS,
    DEFAULT_PERMISSIONS,
    MANAGER_PERMISSIONS,
    PermissionMatrix,
    PurchaseOrder,
    TransactionItem,
    permissions_for_role,
)


# ---------------------------------------------------------------------------
# Products
# ---------------------------------------------------------------------------


def test_current_stock_reads_variant_when_named(tshirt):
    """Variant stock should be returned when a variant id is supplied."""

    assert tshirt.current_stock("v-s") == 5
    assert tshirt.current_stock("v-l") == 2


def test_current_stock_rejects_unknown_variant(tshirt):
    """An unknown variant id should raise KeyError."""

    with pytest.raises(KeyError):
        tshirt.current_stock("v-xl")


def test_with_stock_returns_copy(juice):
    """with_stock should leave the original record untouched."""

    updated = juice.with_stock(12)

    assert updated.stock_quantity == 12
    assert juice.stock_quantity == 50


def test_with_stock_and_cost_target_single_variant(tshirt):
    """Variant updates should only touch the named variant."""

    updated = tshirt.with_stock(9, "v-l").with_cost(Decimal("4.75"), "v-l")

    assert updated.find_variant("v-l").stock_quantity == 9
    assert updated.find_variant("v-l").cost_price == Decimal("4.75")
    assert updated.find_variant("v-s") == tshirt.find_variant("v-s")


def test_is_low_stock_uses_strict_threshold(juice):
    """A product at exactly its minimum level is not yet low."""

    assert not juice.with_stock(10).is_low_stock()
    assert juice.with_stock(9).is_low_stock()


def test_untracked_and_composite_products_are_never_low(gift_wrap, lunch_combo):
    """Products without stock of their own should never report low stock."""

    assert not gift_wrap.is_low_stock()
    assert not lunch_combo.with_stock(0).is_low_stock()


# ---------------------------------------------------------------------------
# Students and sales records
# ---------------------------------------------------------------------------


def test_student_restrictions_and_allowance(alex):
    assert alex.is_restricted("p4")
    assert not alex.is_restricted("p1")
    assert alex.remaining_daily_allowance() == Decimal("10.00")


def test_transaction_item_line_total():
    item = TransactionItem("p1", 3, Decimal("1.50"))
    assert item.line_total == Decimal("4.50")


def test_purchase_order_is_received_compares_status(fixed_clock):
    """is_received should accept both the enum and its raw string value."""

    order = PurchaseOrder("PO-1", "sup1", fixed_clock(), "received", (), Decimal("0"))
    assert order.is_received


# ---------------------------------------------------------------------------
# Permissions
# ---------------------------------------------------------------------------


def test_permission_matrix_lists_every_capability():
    """The matrix should expose its full capability list in declaration order."""

    names = PermissionMatrix.names()

    assert len(names) == 22
    assert names[0] == "access_pos"
    assert names[-1] == "manage_employees"


def test_permission_matrix_allows_rejects_unknown_capability():
    with pytest.raises(KeyError):
        DEFAULT_PERMISSIONS.allows("launch_rockets")


def test_role_presets_grow_from_cashier_to_admin():
    """Each role preset should include every capability of the one below it."""

    cashier = {name for name, granted in DEFAULT_PERMISSIONS.as_dict().items() if granted}
    manager = {name for name, granted in MANAGER_PERMISSIONS.as_dict().items() if granted}

    assert cashier < manager
    assert all(ADMIN_PERMISSIONS.as_dict().values())
    assert not MANAGER_PERMISSIONS.manage_employees


@pytest.mark.parametrize(
    ("role", "expected"),
    [
        (Role.CASHIER, DEFAULT_PERMISSIONS),
        (Role.MANAGER, MANAGER_PERMISSIONS),
        (Role.ADMIN, ADMIN_PERMISSIONS),
        ("admin", ADMIN_PERMISSIONS),
    ],
)
def test_permissions_for_role(role, expected):
    assert permissions_for_role(role) == expected
