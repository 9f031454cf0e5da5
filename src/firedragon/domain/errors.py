"""Shared domain error messages and error types."""

from decimal import Decimal


class DomainError(ValueError):
    """Base class for domain-level errors.

    Subclasses provide semantic categories while preserving ValueError
    compatibility for existing error handling.
    """


class ValidationError(DomainError):
    """Invalid input or failed validation in domain logic."""


class InsufficientBalanceError(ValidationError):
    """Source wallet cannot cover an expense or outgoing transfer."""


class CategoryTypeMismatchError(ValidationError):
    """Transaction type differs from its category's type."""


class ExchangeRateError(ValidationError):
    """Cross-currency transfer without a usable exchange rate."""


class FutureDateError(ValidationError):
    """Transaction dated in the future."""


class NotFoundError(DomainError):
    """Requested domain entity does not exist."""


class ConflictError(DomainError):
    """Domain conflict, such as uniqueness violations."""


class DuplicateTransactionError(ConflictError):
    """Candidate matches an already committed transaction."""


class WorkerStateError(ConflictError):
    """Worker lifecycle request is invalid for the worker's current state."""


class DependencyError(DomainError):
    """Operation blocked due to dependent domain data."""


class ConsistencyError(DomainError):
    """Ledger invariant violated while committing an already validated change.

    Unlike the other domain errors this is not recoverable per transaction;
    an import worker hitting it stops and reports the error.
    """


def wallet_not_found(wallet_id: int) -> str:
    """Return message for missing wallet."""
    return f"Wallet {wallet_id} not found"


def category_not_found(category_id: int) -> str:
    """Return message for missing category by ID."""
    return f"Category {category_id} not found"


def category_name_not_found(name: str) -> str:
    """Return message for missing category by name."""
    return f"Category '{name}' not found"


def transaction_not_found(transaction_id: int) -> str:
    """Return message for missing transaction."""
    return f"Transaction {transaction_id} not found"


def insufficient_balance(wallet_name: str, balance: Decimal, amount: Decimal) -> str:
    """Return message when a wallet cannot cover an amount."""
    return (
        f"Insufficient balance in wallet '{wallet_name}': "
        f"balance {balance}, required {amount}"
    )


def wallet_delete_blocked(wallet_id: int, transaction_count: int) -> str:
    """Return message when a wallet is still referenced by transactions."""
    return (
        f"Cannot delete wallet {wallet_id}: it is referenced by "
        f"{transaction_count} transaction{'s' if transaction_count != 1 else ''}. "
        "Please delete them first."
    )


def category_delete_blocked(category_id: int, transaction_count: int) -> str:
    """Return message when a category is still referenced by transactions."""
    return (
        f"Cannot delete category {category_id}: it is used by "
        f"{transaction_count} transaction{'s' if transaction_count != 1 else ''}."
    )
