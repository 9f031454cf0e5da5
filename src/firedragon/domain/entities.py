"""Domain model entities for firedragon.

These are pure data classes representing business concepts, independent of
database schema. Services and the import pipeline only ever exchange these;
the ORM models never leave the database layer.
"""

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any, Optional

INCOME = "income"
EXPENSE = "expense"
TRANSFER = "transfer"
TRANSACTION_TYPES = (INCOME, EXPENSE, TRANSFER)

PENDING = "pending"
COMPLETED = "completed"
FAILED = "failed"
TRANSACTION_STATUSES = (PENDING, COMPLETED, FAILED)

WALLET_TYPES = ("bank", "crypto", "cash")

HISTORY_CREATED = "created"
HISTORY_UPDATED = "updated"
HISTORY_DELETED = "deleted"


@dataclass(frozen=True)
class Wallet:
    """Wallet domain entity."""

    id: int
    name: str
    currency: str
    balance: Decimal
    wallet_type: str
    opening_balance: Decimal
    description: Optional[str]
    created_at: datetime
    updated_at: datetime


@dataclass(frozen=True)
class Category:
    """Category domain entity."""

    id: int
    name: str
    category_type: str
    is_system: bool
    description: Optional[str]
    created_at: datetime


@dataclass(frozen=True)
class Transaction:
    """Transaction domain entity."""

    id: int
    amount: Decimal
    description: Optional[str]
    date: datetime
    transaction_type: str
    status: str
    wallet_id: int
    category_id: int
    dest_wallet_id: Optional[int]
    exchange_rate: Optional[Decimal]
    tags: tuple[str, ...]
    external_id: Optional[str]
    failure_reason: Optional[str]
    created_at: datetime
    updated_at: datetime

    @property
    def is_transfer(self) -> bool:
        return self.transaction_type == TRANSFER

    def to_snapshot(self) -> dict[str, Any]:
        """Serialize to a JSON-compatible dict for history entries."""
        return {
            "id": self.id,
            "amount": str(self.amount),
            "description": self.description,
            "date": self.date.isoformat(),
            "type": self.transaction_type,
            "status": self.status,
            "wallet_id": self.wallet_id,
            "category_id": self.category_id,
            "dest_wallet_id": self.dest_wallet_id,
            "exchange_rate": str(self.exchange_rate) if self.exchange_rate is not None else None,
            "tags": list(self.tags),
            "external_id": self.external_id,
        }


@dataclass(frozen=True)
class TransactionDraft:
    """Unsaved transaction as submitted to the ledger engine."""

    amount: Decimal
    date: datetime
    transaction_type: str
    wallet_id: Optional[int]
    category_id: Optional[int]
    description: Optional[str] = None
    dest_wallet_id: Optional[int] = None
    exchange_rate: Optional[Decimal] = None
    tags: tuple[str, ...] = ()
    external_id: Optional[str] = None

    @property
    def is_transfer(self) -> bool:
        return self.transaction_type == TRANSFER


@dataclass(frozen=True)
class TransactionHistory:
    """Append-only audit entry for one ledger mutation."""

    id: int
    transaction_id: int
    action: str
    performed_at: datetime
    wallet_id: int
    old_balance: Decimal
    new_balance: Decimal
    dest_wallet_id: Optional[int]
    old_dest_balance: Optional[Decimal]
    new_dest_balance: Optional[Decimal]
    balance_changes: dict[int, tuple[Decimal, Decimal]]
    changes: dict[str, Any]


@dataclass(frozen=True)
class ImportRecord:
    """Marks an external transaction id as committed."""

    external_id: str
    source: str
    currency: Optional[str]
    amount: Optional[Decimal]
    transaction_type: Optional[str]
    description: Optional[str]
    occurred_at: Optional[datetime]
    transaction_id: Optional[int]
    imported_at: datetime


@dataclass(frozen=True)
class NormalizedTransaction:
    """Adapter-agnostic shape every source must produce.

    ``amount`` is unsigned; ``direction`` carries the sign as a type hint
    (``income``/``deposit``/``in`` or ``expense``/``withdrawal``/``out``).
    """

    external_id: str
    currency: str
    amount: Decimal
    direction: str
    description: str
    date: datetime
    raw: dict[str, Any] = field(default_factory=dict, compare=False)


@dataclass(frozen=True)
class Balance:
    """Balance reported by a source adapter."""

    amount: Decimal
    currency: str
