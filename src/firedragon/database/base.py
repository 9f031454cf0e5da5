"""Abstract database interface."""

from abc import ABC, abstractmethod
from contextlib import AbstractContextManager
from datetime import datetime
from decimal import Decimal
from typing import Any, Optional

# Import entities directly to avoid circular import through domain/__init__.py
from firedragon.domain.entities import (
    Wallet,
    Category,
    Transaction,
    TransactionHistory,
    ImportRecord,
)


class Database(ABC):
    """Abstract database interface for firedragon."""

    @abstractmethod
    def connect(self) -> None:
        """Connect to the database."""
        pass

    @abstractmethod
    def disconnect(self) -> None:
        """Disconnect from the database."""
        pass

    @abstractmethod
    def initialize_schema(self) -> None:
        """Initialize database schema (create tables)."""
        pass

    @abstractmethod
    def atomic(self) -> AbstractContextManager[None]:
        """Open an atomic scope.

        Every operation issued by the calling thread inside the scope is
        committed together or not at all. Scopes are re-entrant; only the
        outermost one commits. While a scope is open no other thread can
        write.
        """
        pass

    # Wallet operations
    @abstractmethod
    def create_wallet(
        self,
        name: str,
        currency: str,
        wallet_type: str,
        balance: Decimal = Decimal("0"),
        description: Optional[str] = None,
    ) -> int:
        """Create a wallet with an opening balance. Returns wallet ID."""
        pass

    @abstractmethod
    def get_wallet(self, wallet_id: int) -> Optional[Wallet]:
        """Get wallet by ID."""
        pass

    @abstractmethod
    def get_wallet_by_name(self, name: str) -> Optional[Wallet]:
        """Get wallet by name."""
        pass

    @abstractmethod
    def list_wallets(self) -> list[Wallet]:
        """List all wallets."""
        pass

    @abstractmethod
    def set_wallet_balance(self, wallet_id: int, balance: Decimal) -> None:
        """Overwrite a wallet's running balance."""
        pass

    @abstractmethod
    def delete_wallet(self, wallet_id: int) -> None:
        """Delete a wallet."""
        pass

    @abstractmethod
    def get_wallet_transaction_count(self, wallet_id: int) -> int:
        """Count transactions using the wallet as source or destination."""
        pass

    # Category operations
    @abstractmethod
    def create_category(
        self,
        name: str,
        category_type: str,
        is_system: bool = False,
        description: Optional[str] = None,
    ) -> int:
        """Create a category. Returns category ID."""
        pass

    @abstractmethod
    def get_category(self, category_id: int) -> Optional[Category]:
        """Get category by ID."""
        pass

    @abstractmethod
    def get_category_by_name(self, name: str) -> Optional[Category]:
        """Get category by name."""
        pass

    @abstractmethod
    def list_categories(self, category_type: Optional[str] = None) -> list[Category]:
        """List categories, optionally filtered by type."""
        pass

    @abstractmethod
    def delete_category(self, category_id: int) -> None:
        """Delete a category."""
        pass

    @abstractmethod
    def get_category_transaction_count(self, category_id: int) -> int:
        """Count transactions using the category."""
        pass

    # Transaction operations
    @abstractmethod
    def create_transaction(
        self,
        amount: Decimal,
        date: datetime,
        transaction_type: str,
        wallet_id: int,
        category_id: int,
        status: str,
        description: Optional[str] = None,
        dest_wallet_id: Optional[int] = None,
        exchange_rate: Optional[Decimal] = None,
        tags: tuple[str, ...] = (),
        external_id: Optional[str] = None,
        failure_reason: Optional[str] = None,
    ) -> int:
        """Create a transaction record. Returns transaction ID."""
        pass

    @abstractmethod
    def get_transaction(self, transaction_id: int) -> Optional[Transaction]:
        """Get transaction by ID."""
        pass

    @abstractmethod
    def get_transaction_by_external_id(self, external_id: str) -> Optional[Transaction]:
        """Get the transaction created for an external activity ID."""
        pass

    @abstractmethod
    def update_transaction(self, transaction_id: int, **fields: Any) -> None:
        """Overwrite the given transaction columns."""
        pass

    @abstractmethod
    def delete_transaction(self, transaction_id: int) -> None:
        """Delete a transaction record."""
        pass

    @abstractmethod
    def list_transactions(
        self,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
        wallet_id: Optional[int] = None,
        category_id: Optional[int] = None,
        status: Optional[str] = None,
    ) -> list[Transaction]:
        """List transactions with optional filters.

        Args:
            start_date: Optional inclusive lower date bound
            end_date: Optional inclusive upper date bound
            wallet_id: Optional wallet filter (source or destination)
            category_id: Optional category filter
            status: Optional status filter
        """
        pass

    @abstractmethod
    def find_similar_transactions(
        self,
        wallet_id: int,
        transaction_type: str,
        category_id: int,
        start_date: datetime,
        end_date: datetime,
    ) -> list[Transaction]:
        """Find non-failed transactions sharing wallet, type and category in a date range."""
        pass

    # History operations
    @abstractmethod
    def add_history(
        self,
        transaction_id: int,
        action: str,
        wallet_id: int,
        old_balance: Decimal,
        new_balance: Decimal,
        balance_changes: dict[int, tuple[Decimal, Decimal]],
        changes: dict[str, Any],
        dest_wallet_id: Optional[int] = None,
        old_dest_balance: Optional[Decimal] = None,
        new_dest_balance: Optional[Decimal] = None,
    ) -> int:
        """Append a history entry. Returns entry ID."""
        pass

    @abstractmethod
    def list_history(
        self, transaction_id: Optional[int] = None, wallet_id: Optional[int] = None
    ) -> list[TransactionHistory]:
        """List history entries in insertion order.

        ``wallet_id`` matches any entry whose balance changes touch the wallet.
        """
        pass

    # Import ledger operations
    @abstractmethod
    def is_imported(self, external_id: str) -> bool:
        """Check whether an external transaction ID was already committed."""
        pass

    @abstractmethod
    def mark_imported(
        self,
        external_id: str,
        source: str,
        currency: Optional[str] = None,
        amount: Optional[Decimal] = None,
        transaction_type: Optional[str] = None,
        description: Optional[str] = None,
        occurred_at: Optional[datetime] = None,
        transaction_id: Optional[int] = None,
    ) -> bool:
        """Record an external ID as imported.

        Returns False without changing anything when the ID already exists.
        """
        pass

    @abstractmethod
    def get_import_record(self, external_id: str) -> Optional[ImportRecord]:
        """Get the import record for an external ID."""
        pass

    @abstractmethod
    def count_imports(self, source: Optional[str] = None) -> int:
        """Count import records, optionally for one source."""
        pass

    @abstractmethod
    def get_watermark(self, source: str) -> Optional[datetime]:
        """Get last imported timestamp for a source."""
        pass

    @abstractmethod
    def set_watermark(self, source: str, timestamp: datetime) -> datetime:
        """Advance a source's watermark.

        Never moves backwards. Returns the stored (possibly unchanged) value.
        """
        pass

    @abstractmethod
    def list_watermarks(self) -> dict[str, datetime]:
        """Return every stored watermark keyed by source."""
        pass
