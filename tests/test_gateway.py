"""Tests for the whole-collection persistence gateway."""

from __future__ import annotations

from decimal import Decimal

import openpyxl
import pytest

from tuckshop_pos.constants import Collection, CurrencyCode, PaymentMethod
from tuckshop_pos.gateway import InMemoryStore, StoreGateway, WorkbookStore
from tuckshop_pos.models import AppSettings, StockAdjustment, Transaction, TransactionItem
from tuckshop_pos.constants import AdjustmentReason
from tuckshop_pos.setup_workbook import INITIAL_PRODUCTS, INITIAL_STUDENTS

from conftest import FIXED_NOW


@pytest.fixture
def sample_transaction():
    return Transaction(
        transaction_id="T-0001",
        timestamp=FIXED_NOW,
        employee_id="e1",
        student_id="s1",
        items=(TransactionItem("p1", 3, Decimal("1.50")), TransactionItem("p5", 1, Decimal("9.00"), "v-l")),
        subtotal=Decimal("13.50"),
        discount=Decimal("0.50"),
        total=Decimal("13.00"),
        payment_method=PaymentMethod.WALLET,
    )


@pytest.fixture
def workbook_store(master_workbook_path):
    return WorkbookStore(openpyxl.load_workbook(master_workbook_path))


# ---------------------------------------------------------------------------
# In-memory store
# ---------------------------------------------------------------------------


def test_get_all_returns_snapshot_copy(store, juice):
    """Mutating a returned list should not leak into the store."""

    products = store.get_all(Collection.PRODUCTS)
    products.clear()

    assert store.get_all(Collection.PRODUCTS)[0] == juice


def test_get_all_accepts_collection_name(store):
    assert len(store.get_all("students")) == 2


def test_unknown_collection_raises_key_error(store):
    with pytest.raises(KeyError):
        store.get_all("refunds")


def test_settings_are_not_a_list_collection(store):
    with pytest.raises(KeyError):
        store.get_all(Collection.SETTINGS)


def test_replace_all_overwrites_collection(store, juice):
    store.replace_all(Collection.PRODUCTS, [juice])
    store.replace_all(Collection.PRODUCTS, [juice.with_stock(1)])

    assert store.get_all(Collection.PRODUCTS) == [juice.with_stock(1)]


def test_append_rejected_for_mutable_collections(store, juice):
    with pytest.raises(ValueError):
        store.append(Collection.PRODUCTS, juice)


def test_append_extends_log_collections(store, sample_transaction):
    store.append(Collection.TRANSACTIONS, sample_transaction)
    store.append(Collection.TRANSACTIONS, sample_transaction)

    assert store.get_all(Collection.TRANSACTIONS) == [sample_transaction, sample_transaction]


def test_settings_default_and_replace():
    store = InMemoryStore()

    assert store.get_settings() == AppSettings(currency=CurrencyCode.USD)
    store.replace_settings(AppSettings(currency=CurrencyCode.BWP))
    assert store.get_settings().currency is CurrencyCode.BWP


def test_store_gateway_cannot_be_instantiated_directly():
    with pytest.raises(TypeError):
        StoreGateway()


def test_incomplete_store_fails_on_creation():
    """A store missing its settings accessors is rejected before first use."""

    class ListOnlyStore(StoreGateway):
        def _read(self, collection):
            return []

        def _write(self, collection, records):
            pass

    with pytest.raises(TypeError):
        ListOnlyStore()


# ---------------------------------------------------------------------------
# Workbook store
# ---------------------------------------------------------------------------


def test_workbook_store_reads_seed_data(workbook_store):
    assert workbook_store.get_all(Collection.PRODUCTS) == INITIAL_PRODUCTS
    assert workbook_store.get_all(Collection.STUDENTS) == INITIAL_STUDENTS
    assert workbook_store.get_settings().currency is CurrencyCode.USD


def test_workbook_store_round_trips_nested_products(workbook_store, catalogue):
    """Variants and components should survive a write and read through child sheets."""

    workbook_store.replace_all(Collection.PRODUCTS, catalogue)

    assert workbook_store.get_all(Collection.PRODUCTS) == catalogue


def test_workbook_store_replace_shrinks_sheet(workbook_store, juice):
    """Replacing with fewer records should drop the leftover rows."""

    workbook_store.replace_all(Collection.PRODUCTS, [juice])

    assert workbook_store.get_all(Collection.PRODUCTS) == [juice]


def test_workbook_store_appends_transaction_with_items(workbook_store, sample_transaction):
    workbook_store.append(Collection.TRANSACTIONS, sample_transaction)

    assert workbook_store.get_all(Collection.TRANSACTIONS) == [sample_transaction]


def test_workbook_store_appends_adjustment(workbook_store):
    adjustment = StockAdjustment(
        adjustment_id="A-0001",
        timestamp=FIXED_NOW,
        product_id="p1",
        quantity_change=-2,
        reason=AdjustmentReason.DAMAGE,
        employee_id="e1",
        note="Dropped crate",
    )

    workbook_store.append(Collection.ADJUSTMENTS, adjustment)

    assert workbook_store.get_all(Collection.ADJUSTMENTS) == [adjustment]


def test_workbook_store_persists_settings(workbook_store):
    workbook_store.replace_settings(AppSettings(currency=CurrencyCode.ZAR))

    assert workbook_store.get_settings().currency is CurrencyCode.ZAR
