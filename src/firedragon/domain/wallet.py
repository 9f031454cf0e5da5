"""Wallet domain service."""

from decimal import Decimal
from typing import Optional

from firedragon.database.base import Database
from firedragon.domain.entities import WALLET_TYPES, Wallet as WalletEntity
from firedragon.domain.errors import (
    ConflictError,
    DependencyError,
    NotFoundError,
    ValidationError,
    wallet_delete_blocked,
    wallet_not_found,
)


class WalletService:
    """Service for managing wallets.

    Balances are never written here after creation; only the ledger engine
    moves money.
    """

    def __init__(self, db: Database):
        """Initialize wallet service.

        Args:
            db: Database instance
        """
        self.db = db

    def create_wallet(
        self,
        name: str,
        currency: str,
        wallet_type: str = "bank",
        opening_balance: Decimal = Decimal("0"),
        description: Optional[str] = None,
    ) -> int:
        """Create a new wallet.

        Args:
            name: Unique wallet name
            currency: Currency code (e.g. "USD", "ETH"), stored upper-case
            wallet_type: One of bank, crypto, cash
            opening_balance: Starting balance
            description: Optional description

        Returns:
            Wallet ID

        Raises:
            ValidationError: If name, currency or type are invalid
            ConflictError: If wallet name already exists
        """
        name = name.strip() if name else ""
        if not name:
            raise ValidationError("Wallet must have a name")
        currency = currency.strip().upper() if currency else ""
        if not currency or not currency.isalnum() or len(currency) > 10:
            raise ValidationError(f"Invalid currency code '{currency}'")
        if wallet_type not in WALLET_TYPES:
            raise ValidationError(
                f"Invalid wallet type '{wallet_type}'. Expected one of: {', '.join(WALLET_TYPES)}"
            )

        if self.db.get_wallet_by_name(name) is not None:
            raise ConflictError(f"Wallet with name '{name}' already exists")

        return self.db.create_wallet(
            name=name,
            currency=currency,
            wallet_type=wallet_type,
            balance=opening_balance,
            description=description,
        )

    def get_wallet(self, wallet_id: int) -> Optional[WalletEntity]:
        """Get wallet by ID."""
        return self.db.get_wallet(wallet_id)

    def get_wallet_by_name(self, name: str) -> Optional[WalletEntity]:
        """Get wallet by name."""
        return self.db.get_wallet_by_name(name)

    def list_wallets(self) -> list[WalletEntity]:
        """List all wallets."""
        return self.db.list_wallets()

    def resolve_wallet(self, wallet: str | int) -> WalletEntity:
        """Resolve a wallet name or ID.

        Args:
            wallet: Wallet name, or ID (int or string representation of int)

        Raises:
            NotFoundError: If no wallet matches
        """
        if isinstance(wallet, int):
            found = self.db.get_wallet(wallet)
            if found is None:
                raise NotFoundError(wallet_not_found(wallet))
            return found

        if wallet.isdigit():
            found = self.db.get_wallet(int(wallet))
            if found is not None:
                return found

        found = self.db.get_wallet_by_name(wallet)
        if found is None:
            raise NotFoundError(f"Wallet '{wallet}' not found")
        return found

    def delete_wallet(self, wallet_id: int) -> None:
        """Delete a wallet.

        Raises:
            NotFoundError: If wallet not found
            DependencyError: If any transaction references the wallet
        """
        with self.db.atomic():
            if self.db.get_wallet(wallet_id) is None:
                raise NotFoundError(wallet_not_found(wallet_id))

            transaction_count = self.db.get_wallet_transaction_count(wallet_id)
            if transaction_count > 0:
                raise DependencyError(wallet_delete_blocked(wallet_id, transaction_count))

            self.db.delete_wallet(wallet_id)
