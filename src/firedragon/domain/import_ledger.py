"""Import ledger: committed external IDs and per-source watermarks."""

from datetime import datetime
from typing import Optional

from firedragon.database.base import Database
from firedragon.domain.entities import ImportRecord, NormalizedTransaction
from firedragon.utils.date_parser import to_utc_naive


class ImportLedger:
    """Tracks which external transactions have been committed, per source."""

    def __init__(self, db: Database):
        self.db = db

    def is_imported(self, external_id: str) -> bool:
        return self.db.is_imported(external_id)

    def mark_imported(
        self,
        source: str,
        tx: NormalizedTransaction,
        transaction_type: str,
        transaction_id: Optional[int] = None,
    ) -> bool:
        """Record ``tx`` as committed.

        Returns:
            False if another writer already recorded the same external ID
        """
        return self.db.mark_imported(
            external_id=tx.external_id,
            source=source,
            currency=tx.currency,
            amount=tx.amount,
            transaction_type=transaction_type,
            description=tx.description,
            occurred_at=to_utc_naive(tx.date),
            transaction_id=transaction_id,
        )

    def get_record(self, external_id: str) -> Optional[ImportRecord]:
        return self.db.get_import_record(external_id)

    def count(self, source: Optional[str] = None) -> int:
        return self.db.count_imports(source)

    def get_watermark(self, source: str) -> Optional[datetime]:
        """Last imported timestamp, or None when nothing was imported yet."""
        return self.db.get_watermark(source)

    def advance_watermark(self, source: str, timestamp: datetime) -> datetime:
        """Move the watermark forward; earlier timestamps leave it unchanged."""
        return self.db.set_watermark(source, to_utc_naive(timestamp))

    def watermarks(self) -> dict[str, datetime]:
        return self.db.list_watermarks()
