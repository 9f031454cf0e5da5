"""Mapper functions to convert between domain models and SQLAlchemy models.

This layer isolates the conversion logic, making it easy to change when
the database schema changes.
"""

from decimal import Decimal
from typing import Any, Optional

from firedragon.domain import entities as domain
from firedragon.database.models import (
    Wallet as ORMWallet,
    Category as ORMCategory,
    Transaction as ORMTransaction,
    TransactionHistory as ORMTransactionHistory,
    ImportRecord as ORMImportRecord,
)


def _decimal(value: Any) -> Optional[Decimal]:
    if value is None:
        return None
    return value if isinstance(value, Decimal) else Decimal(str(value))


def wallet_to_domain(orm_wallet: ORMWallet) -> domain.Wallet:
    """Convert SQLAlchemy Wallet model to domain Wallet entity."""
    return domain.Wallet(
        id=orm_wallet.id,
        name=orm_wallet.name,
        currency=orm_wallet.currency,
        balance=_decimal(orm_wallet.balance),
        wallet_type=orm_wallet.wallet_type,
        opening_balance=_decimal(orm_wallet.opening_balance),
        description=orm_wallet.description,
        created_at=orm_wallet.created_at,
        updated_at=orm_wallet.updated_at,
    )


def category_to_domain(orm_category: ORMCategory) -> domain.Category:
    """Convert SQLAlchemy Category model to domain Category entity."""
    return domain.Category(
        id=orm_category.id,
        name=orm_category.name,
        category_type=orm_category.category_type,
        is_system=bool(orm_category.is_system),
        description=orm_category.description,
        created_at=orm_category.created_at,
    )


def transaction_to_domain(orm_transaction: ORMTransaction) -> domain.Transaction:
    """Convert SQLAlchemy Transaction model to domain Transaction entity."""
    return domain.Transaction(
        id=orm_transaction.id,
        amount=_decimal(orm_transaction.amount),
        description=orm_transaction.description,
        date=orm_transaction.date,
        transaction_type=orm_transaction.transaction_type,
        status=orm_transaction.status,
        wallet_id=orm_transaction.wallet_id,
        category_id=orm_transaction.category_id,
        dest_wallet_id=orm_transaction.dest_wallet_id,
        exchange_rate=_decimal(orm_transaction.exchange_rate),
        tags=tuple(orm_transaction.tags or ()),
        external_id=orm_transaction.external_id,
        failure_reason=orm_transaction.failure_reason,
        created_at=orm_transaction.created_at,
        updated_at=orm_transaction.updated_at,
    )


def history_to_domain(orm_history: ORMTransactionHistory) -> domain.TransactionHistory:
    """Convert SQLAlchemy TransactionHistory model to domain entity.

    JSON keys are strings on disk; wallet ids are restored to ints.
    """
    balance_changes = {
        int(wallet_id): (Decimal(old), Decimal(new))
        for wallet_id, (old, new) in (orm_history.balance_changes or {}).items()
    }
    return domain.TransactionHistory(
        id=orm_history.id,
        transaction_id=orm_history.transaction_id,
        action=orm_history.action,
        performed_at=orm_history.performed_at,
        wallet_id=orm_history.wallet_id,
        old_balance=_decimal(orm_history.old_balance),
        new_balance=_decimal(orm_history.new_balance),
        dest_wallet_id=orm_history.dest_wallet_id,
        old_dest_balance=_decimal(orm_history.old_dest_balance),
        new_dest_balance=_decimal(orm_history.new_dest_balance),
        balance_changes=balance_changes,
        changes=orm_history.changes or {},
    )


def import_record_to_domain(orm_record: ORMImportRecord) -> domain.ImportRecord:
    """Convert SQLAlchemy ImportRecord model to domain ImportRecord entity."""
    return domain.ImportRecord(
        external_id=orm_record.external_id,
        source=orm_record.source,
        currency=orm_record.currency,
        amount=_decimal(orm_record.amount),
        transaction_type=orm_record.transaction_type,
        description=orm_record.description,
        occurred_at=orm_record.occurred_at,
        transaction_id=orm_record.transaction_id,
        imported_at=orm_record.imported_at,
    )
