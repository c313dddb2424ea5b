"""Command-line entry points for the tuckshop POS.

All orchestration in this module is limited to argparse wiring, translating
command-line arguments into the command objects consumed by the business
layer, and printing results. Keeping the CLI thin ensures the same parser
configuration can be reused by tests, scripts, or any alternative front-end.
"""

from __future__ import annotations

import argparse
from collections import OrderedDict
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from pathlib import Path
from typing import Callable, Dict, Iterable, Mapping, MutableMapping, Optional, Sequence, TextIO

from . import core_logic, log
from .constants import (
    CURRENCY_SYMBOLS,
    AdjustmentReason,
    CurrencyCode,
    PaymentMethod,
    PurchaseOrderStatus,
    Role,
)
from .errors import SettlementError
from .models import AppSettings, Category, Product, ProductComponent, PurchaseOrderItem, Student, Supplier
from .settlement import CartLine


CENT = Decimal("0.01")


@dataclass(frozen=True)
class CommandSpec:
    """Describe how a CLI sub-command is configured and executed."""

    name: str
    help_text: str
    register: Callable[[argparse._SubParsersAction[argparse.ArgumentParser]], argparse.ArgumentParser]
    execute: Callable[[core_logic.RuntimeContext, argparse.Namespace], int]
    mutates: bool = True


def format_money(amount: Decimal, currency: CurrencyCode = CurrencyCode.USD) -> str:
    """Render ``amount`` with the currency symbol, rounded half-up to cents."""

    symbol = CURRENCY_SYMBOLS.get(CurrencyCode(currency), "")
    return f"{symbol}{amount.quantize(CENT, rounding=ROUND_HALF_UP)}"


# ---------------------------------------------------------------------------
# Argument value parsers
# ---------------------------------------------------------------------------


def _split_target(raw: str) -> tuple[str, Optional[str]]:
    product_id, _, variant_id = raw.partition(":")
    if not product_id:
        raise argparse.ArgumentTypeError(f"Missing product id in '{raw}'")
    return product_id, variant_id or None


def _parse_int(raw: str, label: str) -> int:
    try:
        return int(raw)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"{label} must be a whole number, got '{raw}'") from exc


def parse_decimal(raw: str) -> Decimal:
    """argparse type for monetary amounts."""

    try:
        value = Decimal(raw)
    except InvalidOperation as exc:
        raise argparse.ArgumentTypeError(f"Invalid amount: '{raw}'") from exc
    if not value.is_finite():
        raise argparse.ArgumentTypeError(f"Amount must be a finite number, got '{raw}'")
    return value


def parse_cart_item(raw: str) -> CartLine:
    """Parse ``PRODUCT[:VARIANT][=QTY]`` into a :class:`CartLine` (quantity defaults to 1)."""

    target, sep, quantity_raw = raw.partition("=")
    product_id, variant_id = _split_target(target)
    quantity = _parse_int(quantity_raw, "Quantity") if sep else 1
    return CartLine(product_id=product_id, quantity=quantity, variant_id=variant_id)


def parse_component(raw: str) -> ProductComponent:
    """Parse ``PRODUCT[:VARIANT][=QTY]`` into a :class:`ProductComponent`."""

    line = parse_cart_item(raw)
    return ProductComponent(product_id=line.product_id, quantity=line.quantity, variant_id=line.variant_id)


def parse_po_item(raw: str) -> PurchaseOrderItem:
    """Parse ``PRODUCT[:VARIANT]=QTY@UNIT_COST`` into a :class:`PurchaseOrderItem`."""

    target, sep, rest = raw.partition("=")
    quantity_raw, at, cost_raw = rest.partition("@")
    if not sep or not at:
        raise argparse.ArgumentTypeError(f"Expected PRODUCT[:VARIANT]=QTY@COST, got '{raw}'")
    product_id, variant_id = _split_target(target)
    return PurchaseOrderItem(
        product_id=product_id,
        quantity=_parse_int(quantity_raw, "Quantity"),
        unit_cost=parse_decimal(cost_raw),
        variant_id=variant_id,
    )


def coalesce_cart(lines: Iterable[CartLine]) -> tuple[CartLine, ...]:
    """Merge lines for the same product and variant, keeping first-seen order."""

    merged: "OrderedDict[tuple[str, Optional[str]], int]" = OrderedDict()
    for line in lines:
        key = (line.product_id, line.variant_id)
        merged[key] = merged.get(key, 0) + line.quantity
    return tuple(
        CartLine(product_id=product_id, quantity=quantity, variant_id=variant_id)
        for (product_id, variant_id), quantity in merged.items()
    )


# ---------------------------------------------------------------------------
# Parser construction
# ---------------------------------------------------------------------------


def build_parser() -> argparse.ArgumentParser:
    """Construct the top-level CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="tuckshop-cli",
        description="Command-line tools for the Tuckshop POS workbook.",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Optional path to config.ini (defaults to ./config.ini).",
    )
    return parser


def configure_subcommands(
    parser: argparse.ArgumentParser,
) -> Mapping[str, CommandSpec]:
    """Wire all CLI sub-commands onto the supplied parser."""
    subparsers = parser.add_subparsers(dest="command", required=True, title="commands")
    write_specs = register_write_commands(subparsers)
    read_specs = register_read_commands(subparsers)
    return build_command_table([*write_specs.values(), *read_specs.values()])


def _simple_spec(
    name: str,
    help_text: str,
    configure: Callable[[argparse.ArgumentParser], None],
    execute: Callable[[core_logic.RuntimeContext, argparse.Namespace], int],
    *,
    mutates: bool = True,
) -> CommandSpec:
    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        configure(parser)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=execute, mutates=mutates)


def _add_employee_option(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--employee-id",
        default=None,
        help="Employee the change is attributed to (defaults to DefaultEmployee).",
    )


def register_write_commands(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> Dict[str, CommandSpec]:
    """Declare mutating CLI commands such as sales and stock changes."""
    specs = {
        "sale": register_sale_command(),
        "adjust": register_adjust_command(),
        "stocktake": register_stocktake_command(),
        "create-po": register_create_po_command(),
        "mark-ordered": register_mark_ordered_command(),
        "receive-po": register_receive_po_command(),
        "top-up": register_top_up_command(),
        "reset-daily": register_reset_daily_command(),
        "restrict": register_restrict_command(),
        "add-product": register_add_product_command(),
        "add-student": register_add_student_command(),
        "add-employee": register_add_employee_command(),
        "add-category": register_add_category_command(),
        "add-supplier": register_add_supplier_command(),
        "set-currency": register_set_currency_command(),
    }
    for spec in specs.values():
        spec.register(subparsers)
    return specs


def register_read_commands(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> Dict[str, CommandSpec]:
    """Declare read-only CLI commands such as sign-in and reports."""
    specs = {
        "login": register_login_command(),
        "stock": register_stock_command(),
        "dashboard": register_dashboard_command(),
        "log": register_log_command(),
    }
    for spec in specs.values():
        spec.register(subparsers)
    return specs


def register_sale_command() -> CommandSpec:
    """Register the parser and executor for ``sale``."""

    def configure(parser: argparse.ArgumentParser) -> None:
        parser.add_argument(
            "--item",
            dest="items",
            action="append",
            type=parse_cart_item,
            required=True,
            help="PRODUCT[:VARIANT][=QTY]; repeat for each line.",
        )
        parser.add_argument(
            "--payment-method",
            choices=[member.value for member in PaymentMethod],
            required=True,
        )
        parser.add_argument("--student-id", default=None)
        parser.add_argument("--discount", type=parse_decimal, default=Decimal("0"))
        _add_employee_option(parser)

    return _simple_spec("sale", "Settle a cart and record the sale.", configure, run_sale)


def register_adjust_command() -> CommandSpec:
    """Register the parser and executor for ``adjust``."""

    def configure(parser: argparse.ArgumentParser) -> None:
        parser.add_argument("--product-id", required=True)
        parser.add_argument("--variant-id", default=None)
        parser.add_argument("--quantity-change", type=int, required=True)
        parser.add_argument(
            "--reason",
            choices=[member.value for member in AdjustmentReason],
            required=True,
        )
        parser.add_argument("--note", default=None)
        _add_employee_option(parser)

    return _simple_spec("adjust", "Apply a manual stock correction.", configure, run_adjust)


def register_stocktake_command() -> CommandSpec:
    """Register the parser and executor for ``stocktake``."""

    def configure(parser: argparse.ArgumentParser) -> None:
        parser.add_argument("--product-id", required=True)
        parser.add_argument("--variant-id", default=None)
        parser.add_argument("--actual-count", type=int, required=True)
        parser.add_argument("--note", default=None)
        _add_employee_option(parser)

    return _simple_spec("stocktake", "Reconcile a hand count with system stock.", configure, run_stocktake)


def register_create_po_command() -> CommandSpec:
    """Register the parser and executor for ``create-po``."""

    def configure(parser: argparse.ArgumentParser) -> None:
        parser.add_argument("--supplier-id", required=True)
        parser.add_argument(
            "--item",
            dest="items",
            action="append",
            type=parse_po_item,
            required=True,
            help="PRODUCT[:VARIANT]=QTY@UNIT_COST; repeat for each line.",
        )
        parser.add_argument("--ordered", action="store_true", help="Create the order as already placed.")

    return _simple_spec("create-po", "Raise a purchase order.", configure, run_create_po)


def register_mark_ordered_command() -> CommandSpec:
    """Register the parser and executor for ``mark-ordered``."""

    def configure(parser: argparse.ArgumentParser) -> None:
        parser.add_argument("--purchase-order-id", required=True)

    return _simple_spec("mark-ordered", "Mark a draft purchase order as placed.", configure, run_mark_ordered)


def register_receive_po_command() -> CommandSpec:
    """Register the parser and executor for ``receive-po``."""

    def configure(parser: argparse.ArgumentParser) -> None:
        parser.add_argument("--purchase-order-id", required=True)

    return _simple_spec("receive-po", "Book a purchase order into stock.", configure, run_receive_po)


def register_top_up_command() -> CommandSpec:
    """Register the parser and executor for ``top-up``."""

    def configure(parser: argparse.ArgumentParser) -> None:
        parser.add_argument("--student-id", required=True)
        parser.add_argument("--amount", type=parse_decimal, required=True)

    return _simple_spec("top-up", "Credit a student's wallet.", configure, run_top_up)


def register_reset_daily_command() -> CommandSpec:
    """Register the parser and executor for ``reset-daily``."""

    return _simple_spec("reset-daily", "Zero every student's spend for today.", lambda parser: None, run_reset_daily)


def register_restrict_command() -> CommandSpec:
    """Register the parser and executor for ``restrict``."""

    def configure(parser: argparse.ArgumentParser) -> None:
        parser.add_argument("--student-id", required=True)
        parser.add_argument(
            "--product-id",
            dest="product_ids",
            action="append",
            default=[],
            help="Product the student may not buy; repeat for several, omit to clear.",
        )

    return _simple_spec("restrict", "Set the products a student may not buy.", configure, run_restrict)


def register_add_product_command() -> CommandSpec:
    """Register the parser and executor for ``add-product``."""

    def configure(parser: argparse.ArgumentParser) -> None:
        parser.add_argument("--product-id", required=True)
        parser.add_argument("--name", required=True)
        parser.add_argument("--sku", default="")
        parser.add_argument("--category-id", default="")
        parser.add_argument("--cost-price", type=parse_decimal, default=Decimal("0"))
        parser.add_argument("--selling-price", type=parse_decimal, required=True)
        parser.add_argument("--stock", type=int, default=0)
        parser.add_argument("--min-stock", type=int, default=0)
        parser.add_argument("--service", action="store_true", help="Do not track stock for this product.")
        parser.add_argument("--inactive", action="store_true", help="Mark the product as inactive on creation.")
        parser.add_argument(
            "--component",
            dest="components",
            action="append",
            type=parse_component,
            default=[],
            help="PRODUCT[:VARIANT][=QTY]; makes the product a bundle of its components.",
        )

    return _simple_spec("add-product", "Register a new product.", configure, run_add_product)


def register_add_student_command() -> CommandSpec:
    """Register the parser and executor for ``add-student``."""

    def configure(parser: argparse.ArgumentParser) -> None:
        parser.add_argument("--student-id", required=True)
        parser.add_argument("--name", required=True)
        parser.add_argument("--grade", required=True)
        parser.add_argument("--balance", type=parse_decimal, default=Decimal("0"))
        parser.add_argument("--daily-limit", type=parse_decimal, default=Decimal("10.00"))
        parser.add_argument("--pin", default="")
        parser.add_argument("--qr-code", default=None)

    return _simple_spec("add-student", "Register a new student wallet.", configure, run_add_student)


def register_add_employee_command() -> CommandSpec:
    """Register the parser and executor for ``add-employee``."""

    def configure(parser: argparse.ArgumentParser) -> None:
        parser.add_argument("--employee-id", required=True)
        parser.add_argument("--name", required=True)
        parser.add_argument("--pin", required=True)
        parser.add_argument("--role", choices=[member.value for member in Role], default=Role.CASHIER.value)

    return _simple_spec("add-employee", "Register a new employee.", configure, run_add_employee)


def register_add_category_command() -> CommandSpec:
    """Register the parser and executor for ``add-category``."""

    def configure(parser: argparse.ArgumentParser) -> None:
        parser.add_argument("--category-id", required=True)
        parser.add_argument("--name", required=True)
        parser.add_argument("--color", default="")

    return _simple_spec("add-category", "Register a product category.", configure, run_add_category)


def register_add_supplier_command() -> CommandSpec:
    """Register the parser and executor for ``add-supplier``."""

    def configure(parser: argparse.ArgumentParser) -> None:
        parser.add_argument("--supplier-id", required=True)
        parser.add_argument("--name", required=True)
        parser.add_argument("--contact-name", default="")
        parser.add_argument("--email", default="")

    return _simple_spec("add-supplier", "Register a supplier.", configure, run_add_supplier)


def register_set_currency_command() -> CommandSpec:
    """Register the parser and executor for ``set-currency``."""

    def configure(parser: argparse.ArgumentParser) -> None:
        parser.add_argument("currency", choices=[member.value for member in CurrencyCode])

    return _simple_spec("set-currency", "Change the currency amounts are shown in.", configure, run_set_currency)


def register_login_command() -> CommandSpec:
    """Register the parser and executor for ``login``."""

    def configure(parser: argparse.ArgumentParser) -> None:
        parser.add_argument("--pin", required=True)

    return _simple_spec("login", "Check an employee PIN.", configure, run_login, mutates=False)


def register_stock_command() -> CommandSpec:
    """Register the parser and executor for ``stock``."""

    def configure(parser: argparse.ArgumentParser) -> None:
        parser.add_argument("--low", action="store_true", help="Only list products below their minimum level.")

    return _simple_spec("stock", "Display current stock levels.", configure, run_stock_report, mutates=False)


def register_dashboard_command() -> CommandSpec:
    """Register the parser and executor for ``dashboard``."""

    return _simple_spec(
        "dashboard",
        "Display today's sales and shop totals.",
        lambda parser: None,
        run_dashboard_report,
        mutates=False,
    )


def register_log_command() -> CommandSpec:
    """Register the parser and executor for ``log``."""

    return _simple_spec("log", "Display the transaction log.", lambda parser: None, run_log_report, mutates=False)


def load_runtime_context(config_path: Optional[Path] = None) -> core_logic.RuntimeContext:
    """Resolve the runtime context for CLI operations."""
    target = Path(config_path) if config_path is not None else Path.cwd() / "config.ini"
    context = core_logic.load_runtime_context(target)
    core_logic.ensure_schema_version(context)
    return context


def dispatch_command(
    context: core_logic.RuntimeContext,
    args: argparse.Namespace,
    command_table: Mapping[str, CommandSpec],
) -> int:
    """Dispatch the parsed arguments to the configured executor."""
    if not hasattr(args, "command") or args.command is None:
        raise KeyError("No command specified")
    spec = command_table.get(args.command)
    if spec is None:
        raise KeyError(f"Unknown command: {args.command}")
    return spec.execute(context, args)


def build_command_table(
    specs: Iterable[CommandSpec],
) -> MutableMapping[str, CommandSpec]:
    """Build an index of command specifications keyed by command name."""
    table: Dict[str, CommandSpec] = {}
    for spec in specs:
        if spec.name in table:
            raise ValueError(f"Duplicate command name: {spec.name}")
        table[spec.name] = spec
    return table


# ---------------------------------------------------------------------------
# Translation
# ---------------------------------------------------------------------------


def _employee_id(context: core_logic.RuntimeContext, args: argparse.Namespace) -> str:
    return getattr(args, "employee_id", None) or context.settings.default_employee_id


def translate_sale(context: core_logic.RuntimeContext, args: argparse.Namespace) -> core_logic.SaleCommand:
    """Translate CLI args into a sale command object."""
    return core_logic.SaleCommand(
        cart=coalesce_cart(args.items),
        employee_id=_employee_id(context, args),
        payment_method=PaymentMethod(args.payment_method),
        student_id=args.student_id,
        discount=args.discount,
    )


def translate_adjust(context: core_logic.RuntimeContext, args: argparse.Namespace) -> core_logic.AdjustmentCommand:
    """Translate CLI args into an adjustment command object."""
    return core_logic.AdjustmentCommand(
        product_id=args.product_id,
        variant_id=args.variant_id,
        quantity_change=args.quantity_change,
        reason=AdjustmentReason(args.reason),
        employee_id=_employee_id(context, args),
        note=args.note,
    )


def translate_stocktake(context: core_logic.RuntimeContext, args: argparse.Namespace) -> core_logic.StocktakeCommand:
    """Translate CLI args into a stocktake command object."""
    return core_logic.StocktakeCommand(
        product_id=args.product_id,
        variant_id=args.variant_id,
        actual_count=args.actual_count,
        employee_id=_employee_id(context, args),
        note=args.note,
    )


def translate_create_po(args: argparse.Namespace) -> core_logic.PurchaseOrderCommand:
    """Translate CLI args into a purchase order command object."""
    status = PurchaseOrderStatus.ORDERED if args.ordered else PurchaseOrderStatus.DRAFT
    return core_logic.PurchaseOrderCommand(supplier_id=args.supplier_id, items=tuple(args.items), status=status)


def translate_add_product(args: argparse.Namespace) -> Product:
    """Translate CLI args into a new product record."""
    return Product(
        product_id=args.product_id,
        name=args.name,
        sku=args.sku,
        category_id=args.category_id,
        cost_price=args.cost_price,
        selling_price=args.selling_price,
        stock_quantity=args.stock,
        min_stock_level=args.min_stock,
        is_active=not args.inactive,
        track_stock=not args.service,
        is_composite=bool(args.components),
        components=tuple(args.components),
    )


def translate_add_student(args: argparse.Namespace) -> Student:
    """Translate CLI args into a new student record."""
    return Student(
        student_id=args.student_id,
        name=args.name,
        grade=args.grade,
        wallet_balance=args.balance,
        daily_spend_limit=args.daily_limit,
        pin=args.pin,
        qr_code=args.qr_code or f"QR_{args.student_id}",
    )


# ---------------------------------------------------------------------------
# Execution
# ---------------------------------------------------------------------------


def _currency(context: core_logic.RuntimeContext) -> CurrencyCode:
    return core_logic.get_settings(context).currency


def run_sale(context: core_logic.RuntimeContext, args: argparse.Namespace, out: Optional[TextIO] = None) -> int:
    """Execute the sale workflow via the BLL."""
    command = translate_sale(context, args)
    result = core_logic.record_sale(context, command)
    transaction = result.transaction
    print(
        f"Sale {transaction.transaction_id}: total {format_money(transaction.total, _currency(context))}"
        f" ({transaction.payment_method.value})",
        file=out,
    )
    return 0


def run_adjust(context: core_logic.RuntimeContext, args: argparse.Namespace, out: Optional[TextIO] = None) -> int:
    """Execute the stock adjustment workflow via the BLL."""
    adjustment = core_logic.adjust_stock(context, translate_adjust(context, args))
    print(f"Adjustment {adjustment.adjustment_id}: {adjustment.quantity_change:+d}", file=out)
    return 0


def run_stocktake(context: core_logic.RuntimeContext, args: argparse.Namespace, out: Optional[TextIO] = None) -> int:
    """Execute the stocktake workflow via the BLL."""
    adjustment = core_logic.stocktake(context, translate_stocktake(context, args))
    print(
        f"Stocktake {adjustment.adjustment_id}: expected {adjustment.expected_stock},"
        f" counted {adjustment.actual_stock} ({adjustment.quantity_change:+d})",
        file=out,
    )
    return 0


def run_create_po(context: core_logic.RuntimeContext, args: argparse.Namespace, out: Optional[TextIO] = None) -> int:
    """Execute the purchase order creation workflow via the BLL."""
    order = core_logic.create_purchase_order(context, translate_create_po(args))
    print(f"Purchase order {order.purchase_order_id}: {order.status.value}, total {format_money(order.total, _currency(context))}", file=out)
    return 0


def run_mark_ordered(context: core_logic.RuntimeContext, args: argparse.Namespace, out: Optional[TextIO] = None) -> int:
    """Execute the draft-to-ordered transition via the BLL."""
    order = core_logic.mark_purchase_order_ordered(context, args.purchase_order_id)
    print(f"Purchase order {order.purchase_order_id}: {order.status.value}", file=out)
    return 0


def run_receive_po(context: core_logic.RuntimeContext, args: argparse.Namespace, out: Optional[TextIO] = None) -> int:
    """Execute the purchase order receiving workflow via the BLL."""
    order, changed = core_logic.receive_purchase_order(context, args.purchase_order_id)
    state = "received" if changed else "already received"
    print(f"Purchase order {order.purchase_order_id}: {state}", file=out)
    return 0


def run_top_up(context: core_logic.RuntimeContext, args: argparse.Namespace, out: Optional[TextIO] = None) -> int:
    """Execute the wallet top-up workflow via the BLL."""
    student = core_logic.top_up_wallet(context, args.student_id, args.amount)
    print(f"{student.name}: balance {format_money(student.wallet_balance, _currency(context))}", file=out)
    return 0


def run_reset_daily(context: core_logic.RuntimeContext, args: argparse.Namespace, out: Optional[TextIO] = None) -> int:
    """Execute the daily spend reset via the BLL."""
    touched = core_logic.reset_daily_spending(context)
    print(f"Reset daily spending ({touched} students had spent today)", file=out)
    return 0


def run_restrict(context: core_logic.RuntimeContext, args: argparse.Namespace, out: Optional[TextIO] = None) -> int:
    """Execute the restriction update via the BLL."""
    student = core_logic.set_restricted_products(context, args.student_id, args.product_ids)
    print(f"{student.name}: restricted {', '.join(sorted(student.restricted_products)) or 'nothing'}", file=out)
    return 0


def run_add_product(context: core_logic.RuntimeContext, args: argparse.Namespace, out: Optional[TextIO] = None) -> int:
    """Execute the add-product workflow in the BLL."""
    core_logic.add_product(context, translate_add_product(args))
    return 0


def run_add_student(context: core_logic.RuntimeContext, args: argparse.Namespace, out: Optional[TextIO] = None) -> int:
    """Execute the add-student workflow in the BLL."""
    core_logic.add_student(context, translate_add_student(args))
    return 0


def run_add_employee(context: core_logic.RuntimeContext, args: argparse.Namespace, out: Optional[TextIO] = None) -> int:
    """Execute the add-employee workflow in the BLL."""
    core_logic.add_employee(
        context,
        employee_id=args.employee_id,
        name=args.name,
        pin=args.pin,
        role=Role(args.role),
    )
    return 0


def run_add_category(context: core_logic.RuntimeContext, args: argparse.Namespace, out: Optional[TextIO] = None) -> int:
    """Execute the add-category workflow in the BLL."""
    core_logic.add_category(context, Category(args.category_id, args.name, args.color))
    return 0


def run_add_supplier(context: core_logic.RuntimeContext, args: argparse.Namespace, out: Optional[TextIO] = None) -> int:
    """Execute the add-supplier workflow in the BLL."""
    core_logic.add_supplier(context, Supplier(args.supplier_id, args.name, args.contact_name, args.email))
    return 0


def run_set_currency(context: core_logic.RuntimeContext, args: argparse.Namespace, out: Optional[TextIO] = None) -> int:
    settings = core_logic.update_settings(context, AppSettings(currency=CurrencyCode(args.currency)))
    print(f"Currency set to {settings.currency.value} ({format_money(Decimal('1'), settings.currency)})", file=out)
    return 0


def run_login(context: core_logic.RuntimeContext, args: argparse.Namespace, out: Optional[TextIO] = None) -> int:
    """Check a PIN and report who it belongs to."""
    employee = core_logic.authenticate_employee(context, args.pin)
    print(f"Signed in as {employee.name} ({employee.role.value})", file=out)
    return 0


def run_stock_report(context: core_logic.RuntimeContext, args: argparse.Namespace, out: Optional[TextIO] = None) -> int:
    """Print stock per product, or only the low-stock products with ``--low``."""
    if getattr(args, "low", False):
        for product in core_logic.list_low_stock_products(context):
            print(f"{product.product_id}\t{product.name}\tmin {product.min_stock_level}", file=out)
        return 0
    for target, quantity in core_logic.calculate_inventory(context).items():
        print(f"{target}\t{quantity}", file=out)
    return 0


def run_dashboard_report(context: core_logic.RuntimeContext, args: argparse.Namespace, out: Optional[TextIO] = None) -> int:
    """Print the dashboard headline figures."""
    summary = core_logic.calculate_dashboard_summary(context)
    currency = _currency(context)
    print(f"Today's sales:\t{format_money(summary['today_sales'], currency)}", file=out)
    print(f"Students:\t{summary['student_count']}", file=out)
    print(f"Transactions:\t{summary['transaction_count']}", file=out)
    print(f"Low stock:\t{summary['low_stock_count']}", file=out)
    for grade, total in sorted(core_logic.sales_by_grade(context).items()):
        print(f"  {grade}:\t{format_money(total, currency)}", file=out)
    return 0


def run_log_report(context: core_logic.RuntimeContext, args: argparse.Namespace, out: Optional[TextIO] = None) -> int:
    """Print the transaction log, one sale per line."""
    currency = _currency(context)
    for transaction in core_logic.list_transactions(context):
        print(
            "\t".join(
                [
                    transaction.transaction_id,
                    transaction.timestamp.isoformat(timespec="seconds"),
                    transaction.student_id or "walk-in",
                    transaction.payment_method.value,
                    format_money(transaction.total, currency),
                    transaction.status.value,
                ]
            ),
            file=out,
        )
    return 0


def handle_cli_error(error: Exception) -> int:
    """Convert raised exceptions into user-friendly exit codes."""
    if isinstance(error, SettlementError):
        log.error("%s: %s", error.kind.value, error)
        return 2
    if isinstance(error, core_logic.BusinessRuleViolation):
        log.error("%s", error)
        return 2
    if isinstance(error, FileNotFoundError):
        log.error("%s", error)
        return 3
    log.error("%s", error)
    return 1


def persist_workbook(context: core_logic.RuntimeContext) -> None:
    """Persist workbook changes after successful execution."""
    try:
        core_logic.persist_context(context)
    except PermissionError as error:
        raise RuntimeError(str(error)) from error


def main(argv: Sequence[str] | None = None) -> int:
    """CLI entry point that orchestrates parsing and execution."""
    parser = build_parser()
    command_table = configure_subcommands(parser)
    args = parser.parse_args(argv)
    try:
        context = load_runtime_context(getattr(args, "config", None))
        exit_code = dispatch_command(context, args, command_table)
        if exit_code == 0 and command_table[args.command].mutates:
            persist_workbook(context)
        return exit_code
    except Exception as error:  # pragma: no cover - centralised error handler tested separately
        return handle_cli_error(error)
