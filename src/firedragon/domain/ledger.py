"""Ledger engine: applies and reverses transaction effects on wallet balances.

Every pipeline (create, update, delete) runs inside one ``Database.atomic``
scope so that validation, reversal, application and the history entry are
committed together. Another thread touching the same wallet either sees the
state before the pipeline or after it, never in between.
"""

import dataclasses
import logging
from datetime import datetime
from decimal import Decimal
from typing import Any, Optional

from firedragon.database.base import Database
from firedragon.domain.entities import (
    COMPLETED,
    EXPENSE,
    FAILED,
    HISTORY_CREATED,
    HISTORY_DELETED,
    HISTORY_UPDATED,
    INCOME,
    PENDING,
    TRANSACTION_TYPES,
    TRANSFER,
    Category,
    Transaction,
    TransactionDraft,
    TransactionHistory,
    Wallet,
)
from firedragon.domain.errors import (
    CategoryTypeMismatchError,
    ConflictError,
    ConsistencyError,
    DomainError,
    ExchangeRateError,
    FutureDateError,
    InsufficientBalanceError,
    NotFoundError,
    ValidationError,
    category_not_found,
    insufficient_balance,
    transaction_not_found,
    wallet_not_found,
)
from firedragon.utils.date_parser import to_utc_naive, utcnow

logger = logging.getLogger(__name__)

# Matches the scale of the amount columns; arithmetic is rounded to it so
# that what is stored is exactly what a later reversal subtracts.
QUANTUM = Decimal("0.0000000001")

BalanceChanges = dict[int, tuple[Decimal, Decimal]]

_UPDATABLE = frozenset(
    {
        "amount",
        "description",
        "date",
        "transaction_type",
        "wallet_id",
        "category_id",
        "dest_wallet_id",
        "exchange_rate",
        "tags",
    }
)


def quantize(value: Decimal) -> Decimal:
    return value.quantize(QUANTUM)


def effective_rate(exchange_rate: Optional[Decimal], source_currency: str, dest_currency: str) -> Decimal:
    """Rate applied to the destination leg of a transfer.

    A missing or non-positive rate counts as not provided and falls back to
    1, as does any rate between wallets of the same currency.
    """
    if exchange_rate is None or exchange_rate <= 0 or source_currency == dest_currency:
        return Decimal("1")
    return exchange_rate


def _merge(first: BalanceChanges, second: BalanceChanges) -> BalanceChanges:
    """Combine two change sets, keeping the earliest old and latest new balance."""
    merged = dict(first)
    for wallet_id, (old, new) in second.items():
        if wallet_id in merged:
            merged[wallet_id] = (merged[wallet_id][0], new)
        else:
            merged[wallet_id] = (old, new)
    return merged


class LedgerEngine:
    """Validates transactions and keeps wallet balances consistent with them."""

    def __init__(self, db: Database):
        """Initialize ledger engine.

        Args:
            db: Database instance
        """
        self.db = db

    # Validation
    def normalize(self, draft: TransactionDraft) -> TransactionDraft:
        """Canonical form of a draft: rounded amounts, naive UTC date, no stray transfer fields."""
        transaction_type = (draft.transaction_type or "").strip().lower()
        exchange_rate = draft.exchange_rate if transaction_type == TRANSFER else None
        return dataclasses.replace(
            draft,
            amount=quantize(Decimal(draft.amount)),
            date=to_utc_naive(draft.date),
            transaction_type=transaction_type,
            exchange_rate=quantize(Decimal(exchange_rate)) if exchange_rate is not None else None,
            tags=tuple(draft.tags),
        )

    def validate(self, draft: TransactionDraft) -> tuple[Wallet, Optional[Wallet], Category]:
        """Check every ledger rule against current balances.

        Returns:
            (source wallet, destination wallet or None, category)

        Raises:
            ValidationError: Or one of its subclasses; nothing is modified
        """
        wallet, dest_wallet, category = self._validate_fields(draft)
        self._check_funds(draft, wallet)
        return wallet, dest_wallet, category

    def _validate_fields(self, draft: TransactionDraft) -> tuple[Wallet, Optional[Wallet], Category]:
        """Rules that do not depend on balances."""
        if draft.transaction_type not in TRANSACTION_TYPES:
            raise ValidationError(
                f"Invalid transaction type '{draft.transaction_type}'. "
                f"Expected one of: {', '.join(TRANSACTION_TYPES)}"
            )
        if draft.amount is None or draft.amount <= 0:
            raise ValidationError("Transaction amount must be greater than 0")
        if draft.date is None or draft.date > utcnow():
            raise FutureDateError("Transaction date cannot be in the future")
        if draft.wallet_id is None:
            raise ValidationError("Transaction must have a wallet")
        if draft.category_id is None:
            raise ValidationError("Transaction must have a category")

        wallet = self.db.get_wallet(draft.wallet_id)
        if wallet is None:
            raise NotFoundError(wallet_not_found(draft.wallet_id))
        category = self.db.get_category(draft.category_id)
        if category is None:
            raise NotFoundError(category_not_found(draft.category_id))

        if category.category_type != draft.transaction_type:
            raise CategoryTypeMismatchError(
                f"Category type '{category.category_type}' does not match "
                f"transaction type '{draft.transaction_type}'"
            )

        dest_wallet = None
        if draft.transaction_type == TRANSFER:
            if draft.dest_wallet_id is None:
                raise ValidationError("Transfer transaction must have a destination wallet")
            if draft.dest_wallet_id == draft.wallet_id:
                raise ValidationError(
                    "Transfer transaction cannot have the same source and destination wallet"
                )
            dest_wallet = self.db.get_wallet(draft.dest_wallet_id)
            if dest_wallet is None:
                raise NotFoundError(wallet_not_found(draft.dest_wallet_id))
            if wallet.currency != dest_wallet.currency and (
                draft.exchange_rate is None or draft.exchange_rate <= 0
            ):
                raise ExchangeRateError(
                    f"Exchange rate is required for a transfer from {wallet.currency} "
                    f"to {dest_wallet.currency}"
                )
        elif draft.dest_wallet_id is not None:
            raise ValidationError("Destination wallet can only be set on transfer transactions")

        return wallet, dest_wallet, category

    def _check_funds(self, draft: TransactionDraft, wallet: Wallet) -> None:
        if draft.transaction_type in (EXPENSE, TRANSFER) and wallet.balance < draft.amount:
            raise InsufficientBalanceError(
                insufficient_balance(wallet.name, wallet.balance, draft.amount)
            )

    # Balance effects
    def effects(self, tx: Transaction | TransactionDraft) -> list[tuple[int, Decimal]]:
        """Signed balance deltas ``tx`` contributes, per wallet."""
        if tx.transaction_type == INCOME:
            return [(tx.wallet_id, tx.amount)]
        if tx.transaction_type == EXPENSE:
            return [(tx.wallet_id, -tx.amount)]
        if tx.transaction_type == TRANSFER:
            source = self._require_wallet(tx.wallet_id)
            dest = self._require_wallet(tx.dest_wallet_id)
            rate = effective_rate(tx.exchange_rate, source.currency, dest.currency)
            return [(tx.wallet_id, -tx.amount), (tx.dest_wallet_id, quantize(tx.amount * rate))]
        raise ConsistencyError(f"Unknown transaction type '{tx.transaction_type}'")

    def _require_wallet(self, wallet_id: Optional[int]) -> Wallet:
        wallet = self.db.get_wallet(wallet_id) if wallet_id is not None else None
        if wallet is None:
            raise ConsistencyError(wallet_not_found(wallet_id))
        return wallet

    def _move(self, tx: Transaction, sign: int) -> BalanceChanges:
        changes: BalanceChanges = {}
        for wallet_id, delta in self.effects(tx):
            wallet = self._require_wallet(wallet_id)
            old = changes[wallet_id][0] if wallet_id in changes else wallet.balance
            new = wallet.balance + delta if sign > 0 else wallet.balance - delta
            self.db.set_wallet_balance(wallet_id, new)
            changes[wallet_id] = (old, new)
        return changes

    def apply(self, tx: Transaction) -> BalanceChanges:
        """Add ``tx``'s effect to wallet balances after validating it.

        Returns:
            Old and new balance of every wallet touched
        """
        with self.db.atomic():
            self.validate(self._draft_from(tx))
            return self._move(tx, +1)

    def reverse(self, tx: Transaction) -> BalanceChanges:
        """Remove ``tx``'s effect from wallet balances.

        Exact inverse of :meth:`apply`; balance sufficiency is not checked
        because reversing only restores an earlier state.

        Raises:
            ConsistencyError: If a wallet the effect refers to is gone
        """
        with self.db.atomic():
            return self._move(tx, -1)

    def reapply(self, old: Transaction, new: Transaction) -> BalanceChanges:
        """Reverse ``old`` (when it was applied) and apply ``new`` atomically."""
        with self.db.atomic():
            changes: BalanceChanges = {}
            if old.status == COMPLETED:
                changes = self.reverse(old)
            return _merge(changes, self.apply(new))

    # Pipelines
    def create_transaction(self, draft: TransactionDraft) -> Transaction:
        """Validate, apply and store a new transaction.

        Raises:
            ValidationError: If the transaction breaks a ledger rule; nothing
                is stored and no balance changes
            ConflictError: If another transaction has the same external ID
        """
        draft = self.normalize(draft)
        with self.db.atomic():
            try:
                self.validate(draft)
            except ValidationError as e:
                logger.warning("Rejected %s transaction: %s", draft.transaction_type, e)
                raise
            if draft.external_id:
                holder = self.db.get_transaction_by_external_id(draft.external_id)
                if holder is not None:
                    raise ConflictError(
                        f"External ID '{draft.external_id}' is already used by transaction {holder.id}"
                    )
            transaction_id = self.db.create_transaction(
                amount=draft.amount,
                date=draft.date,
                transaction_type=draft.transaction_type,
                wallet_id=draft.wallet_id,
                category_id=draft.category_id,
                status=PENDING,
                description=draft.description,
                dest_wallet_id=draft.dest_wallet_id,
                exchange_rate=draft.exchange_rate,
                tags=draft.tags,
                external_id=draft.external_id,
            )
            pending = self._get(transaction_id)
            changes = self._move(pending, +1)
            self.db.update_transaction(transaction_id, status=COMPLETED)
            created = self._get(transaction_id)
            self._record_history(created, HISTORY_CREATED, changes, old=None)

        logger.debug("Created %s transaction %d", created.transaction_type, created.id)
        return created

    def record_failed_transaction(self, draft: TransactionDraft, reason: str) -> Transaction:
        """Store a rejected transaction with status failed; balances are untouched.

        A failed record already stored for the same external ID is updated in
        place instead of duplicated.
        """
        draft = self.normalize(draft)
        if draft.wallet_id is None or draft.category_id is None:
            raise ValidationError(f"Cannot record failed transaction without wallet and category: {reason}")

        with self.db.atomic():
            existing = (
                self.db.get_transaction_by_external_id(draft.external_id)
                if draft.external_id
                else None
            )
            if existing is not None:
                if existing.status != FAILED:
                    raise ConsistencyError(
                        f"External ID '{draft.external_id}' belongs to {existing.status} "
                        f"transaction {existing.id}"
                    )
                self.db.update_transaction(existing.id, failure_reason=reason)
                return self._get(existing.id)

            transaction_id = self.db.create_transaction(
                amount=draft.amount,
                date=draft.date,
                transaction_type=draft.transaction_type,
                wallet_id=draft.wallet_id,
                category_id=draft.category_id,
                status=FAILED,
                description=draft.description,
                dest_wallet_id=draft.dest_wallet_id,
                exchange_rate=draft.exchange_rate,
                tags=draft.tags,
                external_id=draft.external_id,
                failure_reason=reason,
            )
            return self._get(transaction_id)

    def update_transaction(self, transaction_id: int, **changes: Any) -> Transaction:
        """Replace a transaction's fields and move its balance effect accordingly.

        Only the given fields change. Switching a transfer to another type
        drops its destination wallet and exchange rate. A failed transaction
        has no applied effect, so updating it simply retries the apply.

        Raises:
            NotFoundError: If the transaction does not exist
            ValidationError: If the new version breaks a ledger rule; the
                stored transaction and all balances stay as they were
        """
        unknown = set(changes) - _UPDATABLE
        if unknown:
            raise ValidationError(f"Cannot update fields: {', '.join(sorted(unknown))}")

        with self.db.atomic():
            old = self._get(transaction_id)
            base = self._draft_from(old)
            if changes.get("transaction_type", old.transaction_type) != TRANSFER:
                base = dataclasses.replace(base, dest_wallet_id=None, exchange_rate=None)
            new_draft = self.normalize(dataclasses.replace(base, **changes))

            wallet, _, _ = self._validate_fields(new_draft)
            reversed_changes: BalanceChanges = {}
            if old.status == COMPLETED:
                reversed_changes = self.reverse(old)
                wallet = self._require_wallet(new_draft.wallet_id)
            self._check_funds(new_draft, wallet)

            self.db.update_transaction(
                transaction_id,
                amount=new_draft.amount,
                description=new_draft.description,
                date=new_draft.date,
                transaction_type=new_draft.transaction_type,
                wallet_id=new_draft.wallet_id,
                category_id=new_draft.category_id,
                dest_wallet_id=new_draft.dest_wallet_id,
                exchange_rate=new_draft.exchange_rate,
                tags=new_draft.tags,
                status=COMPLETED,
                failure_reason=None,
            )
            updated = self._get(transaction_id)
            applied = self._move(updated, +1)
            self._record_history(updated, HISTORY_UPDATED, _merge(reversed_changes, applied), old=old)

        logger.debug("Updated transaction %d", transaction_id)
        return updated

    def delete_transaction(self, transaction_id: int) -> None:
        """Reverse a transaction's effect and remove it.

        Raises:
            NotFoundError: If the transaction does not exist
        """
        with self.db.atomic():
            tx = self._get(transaction_id)
            if tx.status == COMPLETED:
                changes = self.reverse(tx)
            else:
                changes = self._unchanged(tx)
            self._record_history(tx, HISTORY_DELETED, changes, old=tx, include_new=False)
            self.db.delete_transaction(transaction_id)

        logger.debug("Deleted transaction %d", transaction_id)

    # Queries
    def get_transaction(self, transaction_id: int) -> Optional[Transaction]:
        return self.db.get_transaction(transaction_id)

    def list_transactions(
        self,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
        wallet_id: Optional[int] = None,
        category_id: Optional[int] = None,
        status: Optional[str] = None,
    ) -> list[Transaction]:
        return self.db.list_transactions(
            start_date=start_date,
            end_date=end_date,
            wallet_id=wallet_id,
            category_id=category_id,
            status=status,
        )

    def get_history(
        self, transaction_id: Optional[int] = None, wallet_id: Optional[int] = None
    ) -> list[TransactionHistory]:
        return self.db.list_history(transaction_id=transaction_id, wallet_id=wallet_id)

    def recompute_balance(self, wallet_id: int) -> Decimal:
        """Opening balance plus the effect of every completed transaction.

        Equals the stored balance whenever the ledger is consistent.
        """
        wallet = self.db.get_wallet(wallet_id)
        if wallet is None:
            raise NotFoundError(wallet_not_found(wallet_id))

        balance = wallet.opening_balance
        for tx in self.db.list_transactions(wallet_id=wallet_id, status=COMPLETED):
            for touched, delta in self.effects(tx):
                if touched == wallet_id:
                    balance += delta
        return balance

    # Helpers
    def _get(self, transaction_id: int) -> Transaction:
        tx = self.db.get_transaction(transaction_id)
        if tx is None:
            raise NotFoundError(transaction_not_found(transaction_id))
        return tx

    @staticmethod
    def _draft_from(tx: Transaction) -> TransactionDraft:
        return TransactionDraft(
            amount=tx.amount,
            date=tx.date,
            transaction_type=tx.transaction_type,
            wallet_id=tx.wallet_id,
            category_id=tx.category_id,
            description=tx.description,
            dest_wallet_id=tx.dest_wallet_id,
            exchange_rate=tx.exchange_rate,
            tags=tx.tags,
            external_id=tx.external_id,
        )

    def _unchanged(self, tx: Transaction) -> BalanceChanges:
        changes: BalanceChanges = {}
        for wallet_id in (tx.wallet_id, tx.dest_wallet_id):
            if wallet_id is None:
                continue
            wallet = self.db.get_wallet(wallet_id)
            if wallet is not None:
                changes[wallet_id] = (wallet.balance, wallet.balance)
        return changes

    def _record_history(
        self,
        tx: Transaction,
        action: str,
        changes: BalanceChanges,
        old: Optional[Transaction],
        include_new: bool = True,
    ) -> None:
        if tx.wallet_id not in changes:
            changes = _merge(self._unchanged(tx), changes)
        old_balance, new_balance = changes[tx.wallet_id]

        old_dest = new_dest = None
        if tx.dest_wallet_id is not None and tx.dest_wallet_id in changes:
            old_dest, new_dest = changes[tx.dest_wallet_id]

        snapshot: dict[str, Any] = {}
        if old is not None:
            snapshot["old"] = old.to_snapshot()
        if include_new:
            snapshot["new"] = tx.to_snapshot()

        try:
            self.db.add_history(
                transaction_id=tx.id,
                action=action,
                wallet_id=tx.wallet_id,
                old_balance=old_balance,
                new_balance=new_balance,
                balance_changes=changes,
                changes=snapshot,
                dest_wallet_id=tx.dest_wallet_id,
                old_dest_balance=old_dest,
                new_dest_balance=new_dest,
            )
        except DomainError:
            raise
        except Exception as exc:
            raise ConsistencyError(f"Failed to record history for transaction {tx.id}: {exc}") from exc
