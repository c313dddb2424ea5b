"""Shared pytest fixtures and utilities for Tuckshop POS tests."""

from __future__ import annotations

import argparse
import itertools
import sys
import uuid
from dataclasses import dataclass
from datetime import UTC, datetime
from decimal import Decimal
from pathlib import Path
from typing import Callable, Iterator

import pytest

# Ensure source packages are importable without installation.
PROJECT_ROOT = Path(__file__).resolve().parents[1]
SRC_DIR = PROJECT_ROOT / "src"

for candidate in (SRC_DIR, PROJECT_ROOT):
    candidate_str = str(candidate)
    if candidate_str not in sys.path:
        sys.path.insert(0, candidate_str)

from tuckshop_pos import cli, constants, core_logic, data_manager  # noqa: E402
from tuckshop_pos.gateway import InMemoryStore  # noqa: E402
from tuckshop_pos.models import (  # noqa: E402
    ProductComponent,
    Product,
    Student,
    Supplier,
    Variant,
)
from tuckshop_pos.setup_workbook import create_master_workbook, initial_employees  # noqa: E402

DEFAULT_SCHEMA_VERSION = constants.EXPECTED_SCHEMA_VERSION
DEFAULT_EMPLOYEE_ID = "e1"
FIXED_NOW = datetime(2024, 3, 4, 10, 30, tzinfo=UTC)
_CONFIG_TEMPLATE = (
    "[System]\n"
    "DataFile = {data_file}\n"
    "ShopName = {shop_name}\n"
    "SchemaVersion = {schema_version}\n\n"
    "[Defaults]\n"
    "DefaultEmployee = {default_employee_id}\n"
)


@dataclass(frozen=True)
class ConfigBundle:
    """Container bundling together config metadata for tests."""

    directory: Path
    config_path: Path
    workbook_path: Path
    default_employee_id: str
    schema_version: str
    shop_name: str


@pytest.fixture(scope="session", autouse=True)
def _restore_sys_path() -> Iterator[None]:
    """Ensure sys.path modifications are undone after the test session."""

    original = sys.path.copy()
    try:
        yield
    finally:
        sys.path[:] = original


@pytest.fixture
def workbook_factory(tmp_path: Path) -> Callable[..., Path]:
    """Factory that creates a seeded workbook in a temp folder."""

    def _create_workbook(
        *,
        subdir: str | None = None,
        default_employee_id: str = DEFAULT_EMPLOYEE_ID,
        filename: str = "tuckshop.xlsx",
        seed: bool = True,
    ) -> Path:
        base_dir = tmp_path if subdir is None else tmp_path / subdir
        base_dir.mkdir(parents=True, exist_ok=True)
        workbook_path = base_dir / filename
        create_master_workbook(
            workbook_path,
            default_employee_id=default_employee_id,
            seed=seed,
            overwrite=True,
        )
        return workbook_path

    return _create_workbook


@pytest.fixture
def master_workbook_path(workbook_factory: Callable[..., Path]) -> Path:
    """Return a fresh seeded workbook ready for use in a test."""

    unique_dir = f"workbook_{uuid.uuid4().hex}"
    return workbook_factory(subdir=unique_dir)


@pytest.fixture
def config_factory(tmp_path: Path, workbook_factory: Callable[..., Path]) -> Callable[..., ConfigBundle]:
    """Provide a callable that creates config/workbook bundles on demand."""

    def _create_config(
        *,
        make_relative: bool = False,
        shop_name: str = "Test Tuckshop",
        schema_version: str = DEFAULT_SCHEMA_VERSION,
        default_employee_id: str = DEFAULT_EMPLOYEE_ID,
    ) -> ConfigBundle:
        bundle_id = uuid.uuid4().hex
        bundle_dir = tmp_path / f"bundle_{bundle_id}"
        bundle_dir.mkdir(parents=True, exist_ok=True)
        workbook_path = workbook_factory(
            subdir=f"bundle_{bundle_id}",
            default_employee_id=default_employee_id,
        )
        data_file_entry = workbook_path.name if make_relative else str(workbook_path)
        config_path = bundle_dir / "config.ini"
        config_path.write_text(
            _CONFIG_TEMPLATE.format(
                data_file=data_file_entry,
                shop_name=shop_name,
                schema_version=schema_version,
                default_employee_id=default_employee_id,
            )
        )
        return ConfigBundle(
            directory=bundle_dir,
            config_path=config_path,
            workbook_path=workbook_path,
            default_employee_id=default_employee_id,
            schema_version=schema_version,
            shop_name=shop_name,
        )

    return _create_config


@pytest.fixture
def config_file(config_factory: Callable[..., ConfigBundle]) -> Path:
    """Convenience fixture returning only the config path."""

    return config_factory().config_path


@pytest.fixture
def runtime_context(config_file: Path) -> core_logic.RuntimeContext:
    """Load a workbook-backed runtime context through the public API."""

    context = core_logic.load_runtime_context(config_file)
    core_logic.ensure_schema_version(context)
    return context


# ---------------------------------------------------------------------------
# CLI layer fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def cli_parser() -> argparse.ArgumentParser:
    """Return a fresh CLI parser instance for tests."""

    return argparse.ArgumentParser(prog="tuckshop-cli", description="Tuckshop CLI")


@pytest.fixture
def subparsers_action(
    cli_parser: argparse.ArgumentParser,
) -> argparse._SubParsersAction[argparse.ArgumentParser]:
    """Return the subparser action used to register commands."""

    return cli_parser.add_subparsers(dest="command")


@pytest.fixture
def command_spec_iterable() -> list[cli.CommandSpec]:
    """Provide a list of command specs for indexing tests."""

    def _make_spec(name: str) -> cli.CommandSpec:
        return cli.CommandSpec(
            name,
            f"{name} help",
            lambda subparsers: subparsers.add_parser(name),
            lambda *_: 0,
        )

    return [_make_spec("alpha"), _make_spec("beta"), _make_spec("gamma")]


# ---------------------------------------------------------------------------
# Core logic fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def settings(tmp_path: Path) -> data_manager.ConfigSettings:
    """Provide default configuration settings for in-memory contexts."""

    return data_manager.ConfigSettings(
        data_file=tmp_path / "tuckshop.xlsx",
        shop_name="Test Tuckshop",
        schema_version=constants.EXPECTED_SCHEMA_VERSION,
        default_employee_id=DEFAULT_EMPLOYEE_ID,
    )


@pytest.fixture
def fixed_clock() -> Callable[[], datetime]:
    return lambda: FIXED_NOW


@pytest.fixture
def sequential_ids() -> Callable[[str], str]:
    """Deterministic id factory: ``T-0001``, ``A-0002``..."""

    counter = itertools.count(1)
    return lambda prefix: f"{prefix}-{next(counter):04d}"


@pytest.fixture
def juice() -> Product:
    return Product("p1", "Apple Juice", "AJ001", "2", Decimal("0.80"), Decimal("1.50"), 50, min_stock_level=10)


@pytest.fixture
def sandwich() -> Product:
    return Product("p2", "Cheese Sandwich", "CS001", "3", Decimal("1.20"), Decimal("3.50"), 20, min_stock_level=10)


@pytest.fixture
def chocolate() -> Product:
    return Product("p4", "Chocolate Bar", "CB001", "4", Decimal("0.40"), Decimal("1.00"), 75, min_stock_level=10)


@pytest.fixture
def tshirt() -> Product:
    """Product whose stock lives on its size variants."""

    return Product(
        "p5",
        "School T-Shirt",
        "TS001",
        "5",
        Decimal("4.00"),
        Decimal("8.00"),
        0,
        variants=(
            Variant("v-s", "Small", "TS001-S", Decimal("4.00"), Decimal("8.00"), 5),
            Variant("v-l", "Large", "TS001-L", Decimal("4.50"), Decimal("9.00"), 2),
        ),
    )


@pytest.fixture
def lunch_combo() -> Product:
    """Bundle of one sandwich and two juices with no stock of its own."""

    return Product(
        "c1",
        "Lunch Combo",
        "LC001",
        "3",
        Decimal("2.80"),
        Decimal("5.50"),
        999,
        is_composite=True,
        components=(ProductComponent("p2", 1), ProductComponent("p1", 2)),
    )


@pytest.fixture
def gift_wrap() -> Product:
    """Service item that does not track stock."""

    return Product("g1", "Gift Wrap", "GW001", "1", Decimal("0"), Decimal("0.50"), 0, track_stock=False)


@pytest.fixture
def alex() -> Student:
    return Student(
        "s1",
        "Alex Johnson",
        "Grade 5",
        wallet_balance=Decimal("25.50"),
        daily_spend_limit=Decimal("10.00"),
        restricted_products=frozenset({"p4"}),
        pin="1234",
        qr_code="QR_ALEX",
    )


@pytest.fixture
def maria() -> Student:
    return Student(
        "s2",
        "Maria Garcia",
        "Grade 3",
        wallet_balance=Decimal("5.20"),
        daily_spend_limit=Decimal("5.00"),
        pin="5678",
        qr_code="QR_MARIA",
    )


@pytest.fixture
def catalogue(juice, sandwich, chocolate, tshirt, lunch_combo, gift_wrap) -> list[Product]:
    return [juice, sandwich, chocolate, tshirt, lunch_combo, gift_wrap]


@pytest.fixture
def store(catalogue, alex, maria) -> InMemoryStore:
    """In-memory store seeded with the sample catalogue, students and staff."""

    return InMemoryStore(
        {
            constants.Collection.PRODUCTS: catalogue,
            constants.Collection.STUDENTS: [alex, maria],
            constants.Collection.EMPLOYEES: initial_employees(DEFAULT_EMPLOYEE_ID),
            constants.Collection.SUPPLIERS: [Supplier("sup1", "Fresh Foods Co.")],
        }
    )


@pytest.fixture
def context(
    settings: data_manager.ConfigSettings,
    store: InMemoryStore,
    fixed_clock: Callable[[], datetime],
    sequential_ids: Callable[[str], str],
) -> core_logic.RuntimeContext:
    """Assemble an in-memory runtime context with a fixed clock and ids."""

    return core_logic.RuntimeContext(
        settings=settings,
        store=store,
        clock=fixed_clock,
        id_factory=sequential_ids,
    )
