"""Duplicate detection for incoming transactions."""

from datetime import timedelta
from typing import Optional

from firedragon.database.base import Database
from firedragon.domain.entities import Transaction, TransactionDraft
from firedragon.domain.errors import DuplicateTransactionError

DEFAULT_WINDOW = timedelta(hours=12)

IDENTITY = "identity"
SEMANTIC = "semantic"


class DuplicateGuard:
    """Decides whether a candidate re-delivers something already applied.

    Two independent checks, either of which marks the candidate a duplicate:

    * identity: its external ID was already imported;
    * semantic: a non-failed transaction with the same wallet, type, category
      and amount (exact decimal equality) lies within ``window`` either side
      of the candidate's date. Transfers must also share the destination.

    Read-only; callers that commit afterwards should evaluate it inside the
    same atomic scope as the commit.
    """

    def __init__(self, db: Database, window: timedelta = DEFAULT_WINDOW):
        if window < timedelta(0):
            raise ValueError("Duplicate window must not be negative")
        self.db = db
        self.window = window

    def check(self, candidate: TransactionDraft) -> Optional[str]:
        """Return which check matched (``identity``/``semantic``) or None."""
        if candidate.external_id and self.db.is_imported(candidate.external_id):
            return IDENTITY
        if self.find_semantic_duplicates(candidate):
            return SEMANTIC
        return None

    def is_duplicate(self, candidate: TransactionDraft) -> bool:
        return self.check(candidate) is not None

    def ensure_unique(self, candidate: TransactionDraft) -> None:
        """Raise DuplicateTransactionError if the candidate is a duplicate."""
        match = self.check(candidate)
        if match is not None:
            raise DuplicateTransactionError(
                f"Transaction looks like a duplicate ({match} match) of an existing one"
            )

    def find_semantic_duplicates(self, candidate: TransactionDraft) -> list[Transaction]:
        if candidate.wallet_id is None or candidate.category_id is None:
            return []

        similar = self.db.find_similar_transactions(
            wallet_id=candidate.wallet_id,
            transaction_type=candidate.transaction_type,
            category_id=candidate.category_id,
            start_date=candidate.date - self.window,
            end_date=candidate.date + self.window,
        )
        matches = [txn for txn in similar if txn.amount == candidate.amount]
        if candidate.is_transfer:
            matches = [txn for txn in matches if txn.dest_wallet_id == candidate.dest_wallet_id]
        return matches
