"""Unit tests documenting the expected behavior of the data access layer."""

from __future__ import annotations

import configparser
from datetime import datetime
from decimal import Decimal
from pathlib import Path

import openpyxl
from openpyxl.workbook import Workbook as OpenpyxlWorkbook
import pytest

from tuckshop_pos import constants, data_manager
from tuckshop_pos.constants import AdjustmentReason, PurchaseOrderStatus, Role
from tuckshop_pos.models import (
    DEFAULT_PERMISSIONS,
    AppSettings,
    Employee,
    PermissionMatrix,
    PurchaseOrder,
    PurchaseOrderItem,
    StockAdjustment,
)

from conftest import FIXED_NOW


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


def test_find_config_file_respects_explicit_path(config_file: Path):
    """Supplying an explicit path should be treated as the winning answer."""

    result = data_manager.find_config_file(config_file)
    assert result == config_file


def test_find_config_file_discovers_in_cwd(tmp_path, monkeypatch):
    """Auto-discovery should locate config.ini in the working directory tree."""

    config_dir = tmp_path / "nested"
    config_dir.mkdir(parents=True)
    config_file = config_dir / "config.ini"
    config_file.write_text("[System]\nDataFile=tuckshop.xlsx")
    monkeypatch.chdir(config_dir)

    result = data_manager.find_config_file()
    assert result == config_file


def test_find_config_file_searches_parent_directories(tmp_path, monkeypatch):
    """A config file higher up the tree should be found from a subfolder."""

    config_file = tmp_path / "config.ini"
    config_file.write_text("[System]\nDataFile=tuckshop.xlsx")
    child = tmp_path / "a" / "b"
    child.mkdir(parents=True)
    monkeypatch.chdir(child)

    assert data_manager.find_config_file() == config_file


def test_read_config_loads_sections(config_file: Path):
    """read_config should return a populated ConfigParser."""

    parser = data_manager.read_config(config_file)
    assert parser.get("System", "ShopName") == "Test Tuckshop"
    assert parser.get("Defaults", "DefaultEmployee") == "e1"


def test_read_config_missing_file_raises(tmp_path):
    """Missing files should propagate a FileNotFoundError."""

    with pytest.raises(FileNotFoundError):
        data_manager.read_config(tmp_path / "not_there.ini")


def test_parse_settings_resolves_relative_paths(config_factory):
    """Relative DataFile entries should be anchored to the config location."""

    parser = configparser.ConfigParser()
    bundle = config_factory(make_relative=True)
    parser.read(bundle.config_path)
    settings = data_manager.parse_settings(parser, base_path=bundle.config_path.parent)
    assert settings.data_file == (bundle.config_path.parent / bundle.workbook_path.name).resolve()
    assert settings.default_employee_id == "e1"
    assert settings.shop_name == "Test Tuckshop"
    assert settings.schema_version == constants.EXPECTED_SCHEMA_VERSION


def test_parse_settings_requires_expected_sections(tmp_path):
    """Missing keys should result in a descriptive KeyError."""

    parser = configparser.ConfigParser()
    parser.read_string("[Other]\nvalue=1")
    with pytest.raises(KeyError):
        data_manager.parse_settings(parser, base_path=tmp_path)


# ---------------------------------------------------------------------------
# Workbook lifecycle
# ---------------------------------------------------------------------------


def test_open_workbook_returns_openpyxl_instance(master_workbook_path):
    """open_workbook should hand back a loaded Workbook object."""

    workbook = data_manager.open_workbook(master_workbook_path)
    assert isinstance(workbook, OpenpyxlWorkbook)
    assert data_manager.missing_sheets(workbook) == []


def test_open_workbook_missing_file_raises(tmp_path):
    """Missing workbook files should yield FileNotFoundError."""

    with pytest.raises(FileNotFoundError):
        data_manager.open_workbook(tmp_path / "missing.xlsx")


def test_missing_sheets_reports_absent_names(master_workbook_path):
    workbook = data_manager.open_workbook(master_workbook_path)
    del workbook[constants.SheetName.SUPPLIERS.value]

    assert data_manager.missing_sheets(workbook) == [constants.SheetName.SUPPLIERS.value]


def test_save_workbook_with_destination_creates_copy(master_workbook_path, tmp_path):
    """Providing a destination should create a new file independent of the source."""

    workbook = data_manager.open_workbook(master_workbook_path)
    data_manager.append_rows(workbook, constants.SheetName.CATEGORIES.value, [["9", "Stationery", "bg-gray-500"]])
    copy_path = tmp_path / "copies" / "copy.xlsx"
    data_manager.save_workbook(workbook, destination=copy_path)

    copy = openpyxl.load_workbook(copy_path)
    rows = list(data_manager.iter_rows(copy, constants.SheetName.CATEGORIES.value))
    assert ("9", "Stationery", "bg-gray-500") in rows


def test_refresh_workbook_returns_new_instance(master_workbook_path):
    """refresh_workbook should return a freshly loaded workbook from disk."""

    original = data_manager.open_workbook(master_workbook_path)
    data_manager.append_rows(original, constants.SheetName.CATEGORIES.value, [["8", "Fruit", "bg-red-500"]])
    data_manager.save_workbook(original, master_workbook_path)

    refreshed = data_manager.refresh_workbook(master_workbook_path)
    assert refreshed is not original
    categories = [row[0] for row in data_manager.iter_rows(refreshed, constants.SheetName.CATEGORIES.value)]
    assert "8" in categories


# ---------------------------------------------------------------------------
# Sheet operations
# ---------------------------------------------------------------------------


def test_iter_rows_skips_blank_rows(master_workbook_path):
    workbook = data_manager.open_workbook(master_workbook_path)
    sheet = workbook[constants.SheetName.SUPPLIERS.value]
    sheet.append([None, None, None, None])
    sheet.append(["sup9", "Late Supplier", "", ""])

    ids = [row[0] for row in data_manager.iter_rows(workbook, constants.SheetName.SUPPLIERS.value)]
    assert ids == ["sup1", "sup2", "sup9"]


def test_replace_rows_clears_previous_body(master_workbook_path):
    workbook = data_manager.open_workbook(master_workbook_path)
    sheet_name = constants.SheetName.CATEGORIES.value

    data_manager.replace_rows(workbook, sheet_name, [["x", "Only", "bg"]])

    assert list(data_manager.iter_rows(workbook, sheet_name)) == [("x", "Only", "bg")]
    assert workbook[sheet_name].cell(row=1, column=1).value == "CategoryID"


def test_products_sheet_holds_seed_catalogue(master_workbook_path):
    workbook = data_manager.open_workbook(master_workbook_path)

    products = data_manager.read_products(workbook)

    assert [p.product_id for p in products] == ["p1", "p2", "p3", "p4"]
    assert products[0].selling_price == Decimal("1.50")
    assert products[0].stock_quantity == 50


def test_write_products_places_nested_rows_on_child_sheets(master_workbook_path, tshirt, lunch_combo):
    workbook = data_manager.open_workbook(master_workbook_path)

    data_manager.write_products(workbook, [tshirt, lunch_combo])

    variants = list(data_manager.iter_rows(workbook, constants.SheetName.VARIANTS.value))
    components = list(data_manager.iter_rows(workbook, constants.SheetName.PRODUCT_COMPONENTS.value))
    assert [row[:2] for row in variants] == [("p5", "v-s"), ("p5", "v-l")]
    assert components == [("c1", "p2", None, 1), ("c1", "p1", None, 2)]


# ---------------------------------------------------------------------------
# Serialization helpers
# ---------------------------------------------------------------------------


def test_serialize_product_preserves_order(juice):
    row = data_manager.serialize_product(juice)

    assert row == ["p1", "Apple Juice", "AJ001", "2", Decimal("0.80"), Decimal("1.50"), 50, 10, True, True, False, None]
    assert len(row) == len(data_manager.SHEET_COLUMNS[constants.SheetName.PRODUCTS.value])


def test_deserialize_product_coerces_excel_values():
    """Numeric ids and float prices from Excel should become strings and Decimals."""

    product = data_manager.deserialize_product((101, "Muffin", None, 3, 0.6, 1.25, 12.0, None, 1, None, None, ""))

    assert product.product_id == "101"
    assert product.category_id == "3"
    assert product.sku == ""
    assert product.selling_price == Decimal("1.25")
    assert product.stock_quantity == 12
    assert product.min_stock_level == 0
    assert product.track_stock is True
    assert product.is_composite is False
    assert product.image_url is None


def test_student_restrictions_round_trip(alex):
    row = data_manager.serialize_student(alex)

    assert row[6] == "p4"
    assert data_manager.deserialize_student(row) == alex


def test_student_restrictions_parse_comma_list():
    student = data_manager.deserialize_student(
        ("s7", "Sam", "Grade 1", 3, 2, None, "p4, p2,,", "0007", "QR_SAM", None)
    )

    assert student.restricted_products == frozenset({"p2", "p4"})
    assert student.spent_today == Decimal("0")


def test_serialize_employee_spreads_permission_columns():
    employee = Employee("e2", "Cashier", "1111", Role.CASHIER, DEFAULT_PERMISSIONS)

    row = data_manager.serialize_employee(employee)

    headers = data_manager.SHEET_COLUMNS[constants.SheetName.EMPLOYEES.value]
    assert len(row) == len(headers)
    assert dict(zip(headers, row))["AccessPos"] is True
    assert dict(zip(headers, row))["ManageEmployees"] is False
    assert data_manager.deserialize_employee(row) == employee


def test_deserialize_employee_defaults_missing_permission_columns():
    employee = data_manager.deserialize_employee(("e3", "Old Row", "2222", "manager", True))

    assert employee.role is Role.MANAGER
    assert employee.permissions == PermissionMatrix()


def test_permission_column_names():
    assert data_manager.permission_column("access_pos") == "AccessPos"
    assert data_manager.permission_column("view_profit_reports") == "ViewProfitReports"


def test_adjustment_row_keeps_stocktake_figures():
    adjustment = StockAdjustment(
        adjustment_id="A-0001",
        timestamp=FIXED_NOW,
        product_id="p1",
        quantity_change=-3,
        reason=AdjustmentReason.INVENTORY_COUNT,
        employee_id="e1",
        expected_stock=50,
        actual_stock=47,
    )

    row = data_manager.serialize_adjustment(adjustment)

    assert row[1] == FIXED_NOW.isoformat()
    assert row[5] == "inventory_count"
    assert data_manager.deserialize_adjustment(row) == adjustment


def test_purchase_order_rows_split_header_and_items():
    order = PurchaseOrder(
        purchase_order_id="PO-0001",
        supplier_id="sup1",
        date=FIXED_NOW,
        status=PurchaseOrderStatus.ORDERED,
        items=(PurchaseOrderItem("p1", 24, Decimal("0.75")),),
        total=Decimal("18.00"),
    )

    header = data_manager.serialize_purchase_order(order)
    items = data_manager.serialize_purchase_order_items(order)

    assert header == ["PO-0001", "sup1", FIXED_NOW.isoformat(), "ordered", Decimal("18.00")]
    assert items == [["PO-0001", "p1", None, 24, Decimal("0.75")]]
    assert data_manager.deserialize_purchase_order(header, items) == order


def test_timestamps_accept_native_datetimes():
    """Cells Excel stored as dates should be used as-is."""

    moment = datetime(2024, 1, 2, 3, 4, 5)
    order = data_manager.deserialize_purchase_order(("PO-9", "sup1", moment, "draft", 0))

    assert order.date == moment
    assert order.items == ()


def test_settings_sheet_round_trip(master_workbook_path):
    workbook = data_manager.open_workbook(master_workbook_path)

    data_manager.write_settings(workbook, AppSettings(currency=constants.CurrencyCode.BWP))

    assert data_manager.read_settings(workbook).currency is constants.CurrencyCode.BWP


def test_settings_default_when_sheet_empty(master_workbook_path):
    workbook = data_manager.open_workbook(master_workbook_path)
    data_manager.replace_rows(workbook, constants.SheetName.SETTINGS.value, [])

    assert data_manager.read_settings(workbook).currency is constants.CurrencyCode.USD
