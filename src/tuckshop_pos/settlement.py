"""Settlement engine for the tuckshop POS.

This module turns a cart and a payment choice into a completed
:class:`~tuckshop_pos.models.Transaction` plus the stock and wallet mutations
needed to keep inventory and student balances consistent. It is pure: the
caller hands in a snapshot of the products and, for student sales, the payer's
record, and receives back a :class:`SettlementResult` describing what to
write. Nothing is mutated here, so a failure at any step leaves the store
untouched.

Validation happens in a fixed order and each step has its own error type:

1. request shape (:class:`InvalidRequestError`)
2. product and variant resolution (:class:`UnknownProductError`)
3. pricing at settlement time
4. student restrictions (:class:`RestrictedProductError`)
5. totals and discount
6. wallet checks (:class:`WalletRequiresStudentError`,
   :class:`InsufficientBalanceError`, :class:`DailyLimitExceededError`)
7. stock sufficiency after composite expansion (:class:`InsufficientStockError`)
"""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass, replace
from datetime import datetime
from decimal import Decimal
from typing import Callable, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple, Union

from . import log
from .constants import PaymentMethod, TransactionStatus
from .errors import (
    CompositeCycleError,
    DailyLimitExceededError,
    InsufficientBalanceError,
    InsufficientStockError,
    InvalidRequestError,
    RestrictedProductError,
    UnknownProductError,
    UnknownStudentError,
    WalletRequiresStudentError,
)
from .models import ZERO, Product, Student, Transaction, TransactionItem, Variant


Clock = Callable[[], datetime]
IdFactory = Callable[[str], str]
StockTarget = Tuple[str, Optional[str]]


@dataclass(frozen=True)
class CartLine:
    """One requested product (or variant) and how many units of it."""

    product_id: str
    quantity: int
    variant_id: Optional[str] = None


@dataclass(frozen=True)
class StockMutation:
    """Signed change to apply to a product's or variant's stock."""

    product_id: str
    variant_id: Optional[str]
    quantity_delta: int


@dataclass(frozen=True)
class WalletMutation:
    """Change to apply to a student's wallet after a wallet sale."""

    student_id: str
    balance_delta: Decimal
    spent_today_delta: Decimal


@dataclass(frozen=True)
class SettlementResult:
    """Everything a caller must persist for one successful settlement."""

    transaction: Transaction
    stock_mutations: Tuple[StockMutation, ...]
    wallet_mutation: Optional[WalletMutation]


def settle(
    cart: Sequence[CartLine],
    payer: Optional[str],
    payment_method: Union[PaymentMethod, str],
    employee_id: str,
    products: Mapping[str, Product],
    student: Optional[Student] = None,
    *,
    discount: Decimal = ZERO,
    clock: Clock,
    id_factory: IdFactory,
) -> SettlementResult:
    """Validate a sale and compute the transaction and mutations it implies.

    Quantities for the same product and variant are expected to be coalesced by
    the caller; duplicate lines are settled as given.

    Args:
        cart (Sequence[CartLine]): Non-empty, ordered list of requested lines.
        payer (str | None): Student id paying or being served, or ``None`` for
            a walk-in customer.
        payment_method (PaymentMethod | str): ``cash``, ``card`` or ``wallet``.
        employee_id (str): Staff member the transaction is attributed to.
        products (Mapping[str, Product]): Current catalogue keyed by id.
        student (Student | None): Current record for ``payer``.
        discount (Decimal): Amount taken off the subtotal.
        clock (Callable[[], datetime]): Source of the transaction timestamp.
        id_factory (Callable[[str], str]): Produces the transaction id from a
            prefix.

    Returns:
        SettlementResult: Completed transaction, aggregated stock deductions,
            and the wallet debit for wallet payments.

    Raises:
        SettlementError: One of the subclasses listed in the module docstring.
            No state is touched when this happens.
    """

    method = _validate_request(cart, payment_method, employee_id, discount)
    payer_record = _resolve_payer(payer, student)

    resolved = [_resolve_line(products, line) for line in cart]
    items = tuple(
        TransactionItem(
            product_id=line.product_id,
            quantity=line.quantity,
            price_at_sale=price_line(product, variant),
            variant_id=line.variant_id,
        )
        for line, (product, variant) in zip(cart, resolved)
    )

    if payer_record is not None:
        _check_restrictions(payer_record, items)

    subtotal = sum((item.line_total for item in items), ZERO)
    if discount > subtotal:
        log.error("Discount %s exceeds subtotal %s", discount, subtotal)
        raise InvalidRequestError(f"Discount {discount} exceeds subtotal {subtotal}")
    total = subtotal - discount

    wallet_mutation = None
    if method is PaymentMethod.WALLET:
        wallet_mutation = _check_wallet(payer_record, total)

    required = aggregate_deductions(products, cart)
    _check_stock(products, required)

    transaction = Transaction(
        transaction_id=id_factory("T"),
        timestamp=clock(),
        employee_id=employee_id,
        student_id=payer_record.student_id if payer_record is not None else None,
        items=items,
        subtotal=subtotal,
        discount=discount,
        total=total,
        payment_method=method,
        status=TransactionStatus.COMPLETED,
    )
    stock_mutations = tuple(
        StockMutation(product_id=product_id, variant_id=variant_id, quantity_delta=-quantity)
        for (product_id, variant_id), quantity in required.items()
    )
    log.debug(
        "Settled cart of %d lines: total=%s method=%s deductions=%d",
        len(items),
        total,
        method.value,
        len(stock_mutations),
    )
    return SettlementResult(
        transaction=transaction,
        stock_mutations=stock_mutations,
        wallet_mutation=wallet_mutation,
    )


def price_line(product: Product, variant: Optional[Variant]) -> Decimal:
    """Return the authoritative unit price for a product or one of its variants."""

    return variant.selling_price if variant is not None else product.selling_price


def expand_line(
    products: Mapping[str, Product],
    product_id: str,
    quantity: int,
    variant_id: Optional[str] = None,
    _trail: Tuple[str, ...] = (),
) -> List[Tuple[StockTarget, int]]:
    """Resolve a sold quantity into deductions against primitive stock fields.

    Composite products are expanded depth-first into their components, with the
    component quantity multiplied by ``quantity``; the composite's own stock is
    never part of the result. Products that do not track stock contribute
    nothing, and neither do their components.

    Args:
        products (Mapping[str, Product]): Catalogue keyed by id.
        product_id (str): Product being sold or consumed.
        quantity (int): Units of ``product_id`` required.
        variant_id (str | None): Variant of ``product_id`` to deduct from.

    Returns:
        list[tuple[tuple[str, str | None], int]]: ``((product_id, variant_id),
            quantity)`` pairs in expansion order. The same target may appear
            more than once.

    Raises:
        CompositeCycleError: If a composite reaches itself again.
        UnknownProductError: If a product, component, or variant is missing.
        InvalidRequestError: If a variant-bearing product is reached without a
            variant id.
    """

    if product_id in _trail:
        cycle = " -> ".join((*_trail, product_id))
        log.error("Composite product cycle detected: %s", cycle)
        raise CompositeCycleError(f"Composite product cycle: {cycle}")

    product = products.get(product_id)
    if product is None:
        log.warning("Stock expansion reached unknown product '%s'", product_id)
        raise UnknownProductError(f"Unknown product id: {product_id}")
    if not product.track_stock:
        return []

    if product.is_composite:
        deductions: List[Tuple[StockTarget, int]] = []
        for component in product.components:
            deductions.extend(
                expand_line(
                    products,
                    component.product_id,
                    component.quantity * quantity,
                    component.variant_id,
                    (*_trail, product_id),
                )
            )
        return deductions

    if variant_id is not None:
        if product.find_variant(variant_id) is None:
            raise UnknownProductError(f"Unknown variant '{variant_id}' for product '{product_id}'")
        return [((product_id, variant_id), quantity)]
    if product.has_variants:
        raise InvalidRequestError(f"Product '{product_id}' requires a variant selection")
    return [((product_id, None), quantity)]


def aggregate_deductions(products: Mapping[str, Product], cart: Iterable[CartLine]) -> Dict[StockTarget, int]:
    """Sum the expanded deductions of every cart line per stock target."""

    required: Dict[StockTarget, int] = defaultdict(int)
    for line in cart:
        for target, quantity in expand_line(products, line.product_id, line.quantity, line.variant_id):
            required[target] += quantity
    return dict(required)


def apply_stock_mutations(products: Sequence[Product], mutations: Iterable[StockMutation]) -> List[Product]:
    """Return a new product list with every mutation applied.

    Raises:
        UnknownProductError: If a mutation targets a product or variant that
            is not in ``products``.
    """

    pending: Dict[str, List[StockMutation]] = defaultdict(list)
    for mutation in mutations:
        pending[mutation.product_id].append(mutation)

    updated: List[Product] = []
    for product in products:
        for mutation in pending.pop(product.product_id, []):
            try:
                current = product.current_stock(mutation.variant_id)
            except KeyError as exc:
                raise UnknownProductError(
                    f"Unknown variant '{mutation.variant_id}' for product '{product.product_id}'"
                ) from exc
            product = product.with_stock(current + mutation.quantity_delta, mutation.variant_id)
        updated.append(product)

    if pending:
        missing = ", ".join(sorted(pending))
        raise UnknownProductError(f"Unknown product id(s): {missing}")
    return updated


def apply_wallet_mutation(students: Sequence[Student], mutation: WalletMutation) -> List[Student]:
    """Return a new student list with ``mutation`` applied to its target.

    Raises:
        UnknownStudentError: If no student matches ``mutation.student_id``.
    """

    updated: List[Student] = []
    found = False
    for student in students:
        if student.student_id == mutation.student_id:
            student = replace(
                student,
                wallet_balance=student.wallet_balance + mutation.balance_delta,
                spent_today=student.spent_today + mutation.spent_today_delta,
            )
            found = True
        updated.append(student)
    if not found:
        raise UnknownStudentError(f"Unknown student id: {mutation.student_id}")
    return updated


def _validate_request(
    cart: Sequence[CartLine],
    payment_method: Union[PaymentMethod, str],
    employee_id: str,
    discount: Decimal,
) -> PaymentMethod:
    if not cart:
        log.error("Settlement rejected: empty cart")
        raise InvalidRequestError("Cart must contain at least one line")
    for line in cart:
        if isinstance(line.quantity, bool) or not isinstance(line.quantity, int) or line.quantity < 1:
            log.error("Settlement rejected: invalid quantity %r for '%s'", line.quantity, line.product_id)
            raise InvalidRequestError(f"Quantity must be a whole number of at least 1 (got {line.quantity!r})")
    if not employee_id:
        raise InvalidRequestError("Settlement requires an employee id")
    if not discount.is_finite():
        log.error("Settlement rejected: non-finite discount %r", discount)
        raise InvalidRequestError(f"Discount must be a finite amount (got {discount})")
    if discount < ZERO:
        raise InvalidRequestError("Discount must be zero or positive")
    try:
        return PaymentMethod(payment_method)
    except ValueError as exc:
        log.error("Settlement rejected: unknown payment method %r", payment_method)
        raise InvalidRequestError(f"Unknown payment method: {payment_method}") from exc


def _resolve_payer(payer: Optional[str], student: Optional[Student]) -> Optional[Student]:
    if payer is None:
        return None
    if student is None or student.student_id != payer:
        log.warning("Settlement rejected: unknown student '%s'", payer)
        raise UnknownStudentError(f"Unknown student id: {payer}")
    return student


def _resolve_line(products: Mapping[str, Product], line: CartLine) -> Tuple[Product, Optional[Variant]]:
    product = products.get(line.product_id)
    if product is None:
        log.warning("Settlement rejected: unknown product '%s'", line.product_id)
        raise UnknownProductError(f"Unknown product id: {line.product_id}")
    if line.variant_id is not None:
        variant = product.find_variant(line.variant_id)
        if variant is None:
            log.warning("Settlement rejected: unknown variant '%s' of '%s'", line.variant_id, line.product_id)
            raise UnknownProductError(f"Unknown variant '{line.variant_id}' for product '{line.product_id}'")
        return product, variant
    if product.has_variants:
        raise InvalidRequestError(f"Product '{line.product_id}' requires a variant selection")
    return product, None


def _check_restrictions(student: Student, items: Iterable[TransactionItem]) -> None:
    for item in items:
        if student.is_restricted(item.product_id):
            log.warning(
                "Settlement rejected: student '%s' may not purchase '%s'",
                student.student_id,
                item.product_id,
            )
            raise RestrictedProductError(
                f"Student '{student.student_id}' is not allowed to purchase '{item.product_id}'"
            )


def _check_wallet(student: Optional[Student], total: Decimal) -> WalletMutation:
    if student is None:
        log.warning("Settlement rejected: wallet payment without a student")
        raise WalletRequiresStudentError("Wallet payments require a student payer")
    if student.wallet_balance < total:
        log.warning(
            "Settlement rejected: balance %s below total %s for '%s'",
            student.wallet_balance,
            total,
            student.student_id,
        )
        raise InsufficientBalanceError(
            f"Insufficient wallet balance: {student.wallet_balance} available, {total} required"
        )
    if student.spent_today + total > student.daily_spend_limit:
        log.warning(
            "Settlement rejected: daily limit %s exceeded for '%s'",
            student.daily_spend_limit,
            student.student_id,
        )
        raise DailyLimitExceededError(
            f"Daily spend limit exceeded: {student.remaining_daily_allowance()} remaining, {total} required"
        )
    return WalletMutation(student_id=student.student_id, balance_delta=-total, spent_today_delta=total)


def _check_stock(products: Mapping[str, Product], required: Mapping[StockTarget, int]) -> None:
    for (product_id, variant_id), quantity in required.items():
        available = products[product_id].current_stock(variant_id)
        if available < quantity:
            label = product_id if variant_id is None else f"{product_id}/{variant_id}"
            log.warning("Settlement rejected: stock %d below %d for '%s'", available, quantity, label)
            raise InsufficientStockError(f"Insufficient stock for '{label}': {available} available, {quantity} required")


__all__ = [
    "CartLine",
    "StockMutation",
    "WalletMutation",
    "SettlementResult",
    "settle",
    "price_line",
    "expand_line",
    "aggregate_deductions",
    "apply_stock_mutations",
    "apply_wallet_mutation",
]
