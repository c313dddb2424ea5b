"""Utility for initializing the tuckshop workbook.

The module doubles as a script (``tuckshop-setup``) and as a library used by
tests or other tooling. Shared helpers keep the workbook bootstrap logic
consistent regardless of the execution path.
"""

from __future__ import annotations

import argparse
from dataclasses import dataclass
from decimal import Decimal
from pathlib import Path
from typing import Mapping, Sequence
import sys

import openpyxl
from openpyxl.styles import Font

from . import log
from .constants import Collection, CurrencyCode, Role
from .data_manager import CONFIG_FILE_NAME, SHEET_COLUMNS, read_config, save_workbook
from .gateway import WorkbookStore
from .models import (
    ADMIN_PERMISSIONS,
    DEFAULT_PERMISSIONS,
    AppSettings,
    Category,
    Employee,
    Product,
    Student,
    Supplier,
)

INITIAL_CATEGORIES = [
    Category("1", "Snacks", "bg-blue-500"),
    Category("2", "Drinks", "bg-green-500"),
    Category("3", "Meals", "bg-orange-500"),
    Category("4", "Sweets", "bg-pink-500"),
]

INITIAL_PRODUCTS = [
    Product("p1", "Apple Juice", "AJ001", "2", Decimal("0.80"), Decimal("1.50"), 50, min_stock_level=10),
    Product("p2", "Cheese Sandwich", "CS001", "3", Decimal("1.20"), Decimal("3.50"), 20, min_stock_level=10),
    Product("p3", "Potato Chips", "PC001", "1", Decimal("0.50"), Decimal("1.20"), 100, min_stock_level=10),
    Product("p4", "Chocolate Bar", "CB001", "4", Decimal("0.40"), Decimal("1.00"), 75, min_stock_level=10),
]

INITIAL_STUDENTS = [
    Student(
        "s1",
        "Alex Johnson",
        "Grade 5",
        wallet_balance=Decimal("25.50"),
        daily_spend_limit=Decimal("10.00"),
        restricted_products=frozenset({"p4"}),
        pin="1234",
        qr_code="QR_ALEX",
    ),
    Student(
        "s2",
        "Maria Garcia",
        "Grade 3",
        wallet_balance=Decimal("5.20"),
        daily_spend_limit=Decimal("5.00"),
        pin="5678",
        qr_code="QR_MARIA",
    ),
]

INITIAL_SUPPLIERS = [
    Supplier("sup1", "Fresh Foods Co.", "Jane Smith", "orders@freshfoods.com"),
    Supplier("sup2", "Drink Distro", "Bob Brown", "sales@drinkdistro.com"),
]


def initial_employees(default_employee_id: str) -> list[Employee]:
    """Seed staff: an admin under the configured default id and one cashier."""

    return [
        Employee(default_employee_id, "Admin Staff", "0000", Role.ADMIN, ADMIN_PERMISSIONS),
        Employee("e2", "Tuckshop Cashier", "1111", Role.CASHIER, DEFAULT_PERMISSIONS),
    ]


@dataclass(frozen=True)
class SetupSettings:
    """The two ``config.ini`` entries bootstrap needs: where and who."""

    data_file: Path
    default_employee_id: str


def load_settings(config_path: Path) -> SetupSettings:
    """Read ``DataFile`` and ``DefaultEmployee`` from ``config_path``.

    ``ShopName`` and ``SchemaVersion`` are not required here so a fresh
    install can be bootstrapped from a minimal file. A relative ``DataFile``
    is anchored to the config file's folder.
    """

    parser = read_config(config_path)
    section_keys = (("System", "DataFile"), ("Defaults", "DefaultEmployee"))
    missing = [f"{section}.{key}" for section, key in section_keys if not parser.has_option(section, key)]
    if missing:
        raise KeyError(f"Missing required configuration entry: {', '.join(missing)}")

    data_file = Path(parser.get("System", "DataFile")).expanduser()
    if not data_file.is_absolute():
        data_file = config_path.expanduser().resolve().parent / data_file
    return SetupSettings(data_file=data_file.resolve(), default_employee_id=parser.get("Defaults", "DefaultEmployee"))


def _write_headers(workbook: openpyxl.Workbook, sheet_columns: Mapping[str, Sequence[str]]) -> None:
    bold = Font(bold=True)
    for sheet_name, columns in sheet_columns.items():
        worksheet = workbook.create_sheet(title=sheet_name)
        worksheet.append(list(columns))
        for cell in worksheet[1]:
            cell.font = bold
        worksheet.freeze_panes = "A2"


def create_master_workbook(
    destination: Path,
    *,
    default_employee_id: str,
    sheet_columns: Mapping[str, Sequence[str]] = SHEET_COLUMNS,
    seed: bool = True,
    overwrite: bool = False,
    currency: CurrencyCode = CurrencyCode.USD,
) -> Path:
    """Create the tuckshop workbook at ``destination``.

    Every sheet gets a bold, frozen header row. The default admin employee
    and the currency setting are always written; with ``seed`` the starter
    categories, products, students, suppliers and a cashier are added too.

    Raises:
        FileExistsError: If ``destination`` exists and ``overwrite`` is false.
    """

    destination = destination.expanduser().resolve()
    if destination.exists() and not overwrite:
        raise FileExistsError(f"Refusing to overwrite existing workbook: {destination}")

    workbook = openpyxl.Workbook()
    # openpyxl always starts with one blank sheet
    workbook.remove(workbook.active)
    _write_headers(workbook, sheet_columns)

    store = WorkbookStore(workbook)
    employees = initial_employees(default_employee_id)
    if seed:
        for collection, records in (
            (Collection.CATEGORIES, INITIAL_CATEGORIES),
            (Collection.PRODUCTS, INITIAL_PRODUCTS),
            (Collection.STUDENTS, INITIAL_STUDENTS),
            (Collection.SUPPLIERS, INITIAL_SUPPLIERS),
        ):
            store.replace_all(collection, records)
    store.replace_all(Collection.EMPLOYEES, employees if seed else employees[:1])
    store.replace_settings(AppSettings(currency=CurrencyCode(currency)))

    save_workbook(workbook, destination)
    log.info("Created workbook '%s' (seeded=%s, currency=%s)", destination, seed, CurrencyCode(currency).value)
    return destination


def run_from_config(
    config_path: Path,
    *,
    overwrite: bool = False,
    seed: bool = True,
    currency: CurrencyCode = CurrencyCode.USD,
) -> Path:
    """Create the workbook named by ``config.ini``."""

    settings = load_settings(config_path)
    return create_master_workbook(
        settings.data_file,
        default_employee_id=settings.default_employee_id,
        seed=seed,
        overwrite=overwrite,
        currency=currency,
    )


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="tuckshop-setup", description="Create the tuckshop workbook.")
    parser.add_argument("--config", type=Path, default=Path(CONFIG_FILE_NAME), help="Path to config.ini.")
    parser.add_argument("--force", action="store_true", help="Replace an existing workbook.")
    parser.add_argument(
        "--empty",
        action="store_true",
        help="Only write headers, settings and the default admin; skip the starter data.",
    )
    parser.add_argument(
        "--currency",
        choices=[member.value for member in CurrencyCode],
        default=CurrencyCode.USD.value,
        help="Currency amounts are shown in (default: USD).",
    )
    return parser.parse_args(argv)


def main(argv: Sequence[str] | None = None) -> int:
    """Entry point for ``tuckshop-setup``; returns 0 on success, 1 on any failure."""

    args = parse_args(argv)
    config_path = args.config.expanduser().resolve()
    print(f"Tuckshop POS setup using {config_path}")

    try:
        output_path = run_from_config(
            config_path,
            overwrite=args.force,
            seed=not args.empty,
            currency=CurrencyCode(args.currency),
        )
    except FileExistsError as exc:
        log.error("%s", exc)
        print(f"[ERROR] {exc}\nRun again with --force to replace it.")
        return 1
    except (KeyError, OSError) as exc:
        log.error("Workbook setup failed: %s", exc)
        print(f"[ERROR] {exc}")
        return 1

    print(f"[SUCCESS] Created workbook at '{output_path}'.")
    return 0


if __name__ == "__main__":  # pragma: no cover - exercised via manual runs
    sys.exit(main())
