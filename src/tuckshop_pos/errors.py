"""Exception hierarchy shared by the business logic and settlement layers."""

from __future__ import annotations

from .constants import SettlementErrorKind


class BusinessRuleViolation(Exception):
    """Raised when a requested operation violates a domain constraint."""


class MissingReferenceError(BusinessRuleViolation):
    """Raised when a referenced product, student, employee, or order is unknown."""


class AuthenticationError(BusinessRuleViolation):
    """Raised when no active employee matches a supplied PIN."""


class SettlementError(BusinessRuleViolation):
    """Base class for recoverable failures reported by the settlement engine.

    Every subclass carries a :class:`SettlementErrorKind` so callers can branch
    on the failure mode without matching exception types.
    """

    kind: SettlementErrorKind


class InvalidRequestError(SettlementError):
    """Malformed input: empty cart, bad quantity, unknown payment method."""

    kind = SettlementErrorKind.INVALID_REQUEST


class CompositeCycleError(InvalidRequestError):
    """A composite product references itself directly or transitively."""

    kind = SettlementErrorKind.COMPOSITE_CYCLE


class UnknownProductError(SettlementError, MissingReferenceError):
    """A cart line, component or variant names a product that does not exist."""

    kind = SettlementErrorKind.UNKNOWN_PRODUCT


class UnknownStudentError(SettlementError, MissingReferenceError):
    """The sale names a student id that is not on record."""

    kind = SettlementErrorKind.UNKNOWN_STUDENT


class RestrictedProductError(SettlementError):
    """The student is barred from buying one of the products in the cart."""

    kind = SettlementErrorKind.RESTRICTED_PRODUCT


class WalletRequiresStudentError(SettlementError):
    """Wallet payment was chosen without a student."""

    kind = SettlementErrorKind.WALLET_REQUIRES_STUDENT


class InsufficientBalanceError(SettlementError):
    """The student wallet holds less than the sale total."""

    kind = SettlementErrorKind.INSUFFICIENT_BALANCE


class DailyLimitExceededError(SettlementError):
    """The sale would take the student past their daily spend limit."""

    kind = SettlementErrorKind.DAILY_LIMIT_EXCEEDED


class InsufficientStockError(SettlementError):
    """Tracked stock cannot cover the expanded cart."""

    kind = SettlementErrorKind.INSUFFICIENT_STOCK


__all__ = [
    "BusinessRuleViolation",
    "MissingReferenceError",
    "AuthenticationError",
    "SettlementError",
    "InvalidRequestError",
    "CompositeCycleError",
    "UnknownProductError",
    "UnknownStudentError",
    "RestrictedProductError",
    "WalletRequiresStudentError",
    "InsufficientBalanceError",
    "DailyLimitExceededError",
    "InsufficientStockError",
]
