"""Import cycles: fetch from a source, commit to the ledger, mirror to the sink."""

import logging
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Callable, Optional, TypeVar

from firedragon.adapters.base import SinkAdapter, SinkError, SourceAdapter, SourceError
from firedragon.config import RetryConfig, SourceConfig
from firedragon.database.base import Database
from firedragon.domain.category import CategoryService
from firedragon.domain.duplicates import DEFAULT_WINDOW, DuplicateGuard
from firedragon.domain.entities import (
    EXPENSE,
    FAILED,
    INCOME,
    Category,
    NormalizedTransaction,
    Transaction,
    TransactionDraft,
    Wallet,
)
from firedragon.domain.errors import ConsistencyError, NotFoundError, ValidationError
from firedragon.domain.import_ledger import ImportLedger
from firedragon.domain.ledger import LedgerEngine
from firedragon.domain.wallet import WalletService

logger = logging.getLogger(__name__)

T = TypeVar("T")

DIRECTIONS = {
    "income": INCOME,
    "deposit": INCOME,
    "in": INCOME,
    "expense": EXPENSE,
    "withdrawal": EXPENSE,
    "out": EXPENSE,
}


class ImportCancelled(Exception):
    """The cycle's cancellation event was set while waiting."""


@dataclass
class ImportSource:
    """A configured source together with its adapter instance."""

    config: SourceConfig
    adapter: SourceAdapter

    @property
    def name(self) -> str:
        return self.config.name


@dataclass
class ImportResult:
    """Outcome of one import cycle for one source."""

    source: str
    imported: int = 0
    skipped: int = 0
    failed: int = 0
    errors: list[str] = field(default_factory=list)
    watermark: Optional[datetime] = None
    cancelled: bool = False

    @property
    def ok(self) -> bool:
        return not self.errors


@dataclass
class BalanceCheck:
    """A source's reported balance next to the ledger's view of the wallet."""

    source: str
    wallet: str
    currency: str
    stored: Decimal
    recomputed: Decimal
    reported: Optional[Decimal] = None
    error: Optional[str] = None

    @property
    def matches(self) -> bool:
        return self.error is None and self.reported == self.stored == self.recomputed

    @property
    def difference(self) -> Optional[Decimal]:
        if self.reported is None:
            return None
        return self.reported - self.stored


def call_with_retry(
    func: Callable[[], T],
    attempts: int = 3,
    backoff_seconds: float = 5.0,
    cancel: Optional[threading.Event] = None,
    description: str = "request",
) -> T:
    """
    Call ``func``, retrying transient source failures with linear backoff.

    The wait before attempt ``n + 1`` is ``backoff_seconds * n``. Waits end
    early when ``cancel`` is set.

    Raises:
        SourceError: The last failure, once attempts are exhausted or the
            failure is not transient
        ImportCancelled: If ``cancel`` was set during a wait
    """
    for attempt in range(1, attempts + 1):
        try:
            return func()
        except SourceError as e:
            if not e.transient or attempt == attempts:
                if e.transient:
                    logger.error("All %d attempts for %s failed: %s", attempts, description, e)
                raise

            delay = backoff_seconds * attempt
            logger.warning("Attempt %d for %s failed, retrying in %ss: %s", attempt, description, delay, e)
            if cancel is not None:
                if cancel.wait(delay):
                    raise ImportCancelled(f"Cancelled while retrying {description}") from e
            else:
                time.sleep(delay)
    raise ValueError("attempts must be at least 1")


class ImportOrchestrator:
    """Runs import cycles against one database and one sink.

    Each transaction is committed on its own: the duplicate check, the
    ledger pipeline and the import record share one atomic scope. Mirroring
    to the sink happens after the commit, so a sink outage never loses or
    rolls back ledger data.
    """

    def __init__(
        self,
        db: Database,
        sink: SinkAdapter,
        retry: Optional[RetryConfig] = None,
        duplicate_window: timedelta = DEFAULT_WINDOW,
    ):
        """Initialize orchestrator.

        Args:
            db: Database instance
            sink: Where committed transactions are mirrored
            retry: Retry policy for source fetches
            duplicate_window: Half-width of the semantic duplicate window
        """
        self.db = db
        self.sink = sink
        self.retry = retry or RetryConfig()
        self.ledger = LedgerEngine(db)
        self.guard = DuplicateGuard(db, duplicate_window)
        self.import_ledger = ImportLedger(db)
        self.wallets = WalletService(db)
        self.categories = CategoryService(db)

    def run_cycle(self, source: ImportSource, cancel: Optional[threading.Event] = None) -> ImportResult:
        """Import everything ``source`` has beyond its watermark.

        Failures confined to one transaction or to the sink are recorded in
        the result. ``ConsistencyError`` and unexpected exceptions propagate.
        """
        config = source.config
        result = ImportResult(source=config.name)
        logger.info("Starting import cycle for %s", config.name)

        try:
            wallet = self.wallets.resolve_wallet(config.wallet)
            categories = {
                INCOME: self._resolve_category(config.income_category, INCOME),
                EXPENSE: self._resolve_category(config.expense_category, EXPENSE),
            }
        except (NotFoundError, ValidationError) as e:
            logger.error("Cannot import %s: %s", config.name, e)
            result.errors.append(str(e))
            return result

        since = config.start_date or self.import_ledger.get_watermark(config.name)
        try:
            transactions = call_with_retry(
                lambda: source.adapter.fetch_transactions(
                    config.account, limit=config.limit, from_date=since, to_date=config.end_date
                ),
                attempts=self.retry.attempts,
                backoff_seconds=self.retry.backoff_seconds,
                cancel=cancel,
                description=f"fetching {config.name}",
            )
        except ImportCancelled:
            logger.info("Import cycle for %s cancelled", config.name)
            result.cancelled = True
            return result
        except SourceError as e:
            logger.error("Fetching %s failed: %s", config.name, e)
            result.errors.append(f"fetch: {e}")
            return result

        committed_dates: list[datetime] = []
        currency_ids: dict[str, str] = {}
        for tx in sorted(transactions, key=lambda t: t.date):
            if cancel is not None and cancel.is_set():
                logger.info("Import cycle for %s cancelled", config.name)
                result.cancelled = True
                break

            created = self._import_one(source, tx, wallet, categories, result)
            if created is None:
                continue
            committed_dates.append(created.date)
            self._mirror(source, tx, currency_ids, result)

        if committed_dates:
            result.watermark = self.import_ledger.advance_watermark(config.name, max(committed_dates))
        else:
            result.watermark = self.import_ledger.get_watermark(config.name)

        logger.info(
            "Finished import cycle for %s: %d imported, %d skipped, %d failed",
            config.name,
            result.imported,
            result.skipped,
            result.failed,
        )
        return result

    def check_balance(self, source: ImportSource, cancel: Optional[threading.Event] = None) -> BalanceCheck:
        """Compare the balance ``source`` reports with its wallet.

        Source failures and a currency that differs from the wallet's are
        reported on the result rather than raised.

        Raises:
            NotFoundError: If the configured wallet does not exist
        """
        config = source.config
        wallet = self.wallets.resolve_wallet(config.wallet)
        check = BalanceCheck(
            source=config.name,
            wallet=wallet.name,
            currency=wallet.currency,
            stored=wallet.balance,
            recomputed=self.ledger.recompute_balance(wallet.id),
        )

        try:
            reported = call_with_retry(
                lambda: source.adapter.get_balance(config.account),
                attempts=self.retry.attempts,
                backoff_seconds=self.retry.backoff_seconds,
                cancel=cancel,
                description=f"balance of {config.name}",
            )
        except SourceError as e:
            logger.error("Fetching balance of %s failed: %s", config.name, e)
            check.error = str(e)
            return check

        if reported.currency and reported.currency.upper() != wallet.currency:
            check.error = f"Source reports {reported.currency}, wallet '{wallet.name}' holds {wallet.currency}"
            return check

        check.reported = reported.amount
        if not check.matches:
            logger.warning(
                "Balance of %s differs: source %s, ledger %s", config.name, check.reported, check.stored
            )
        return check

    def _resolve_category(self, name: str, category_type: str) -> Category:
        category = self.categories.resolve_category(name)
        if category.category_type != category_type:
            raise ValidationError(f"Category '{name}' is not an {category_type} category")
        return category

    def to_draft(
        self,
        source_name: str,
        tx: NormalizedTransaction,
        wallet: Wallet,
        categories: dict[str, Category],
    ) -> TransactionDraft:
        """Map a normalized transaction onto ``wallet``.

        Raises:
            ValidationError: If the direction is unknown
        """
        transaction_type = DIRECTIONS.get(tx.direction.strip().lower())
        if transaction_type is None:
            raise ValidationError(f"Unknown direction '{tx.direction}' for {tx.external_id}")
        return TransactionDraft(
            amount=tx.amount,
            date=tx.date,
            transaction_type=transaction_type,
            wallet_id=wallet.id,
            category_id=categories[transaction_type].id,
            description=tx.description,
            tags=(f"source:{source_name}",),
            external_id=tx.external_id,
        )

    def _import_one(
        self,
        source: ImportSource,
        tx: NormalizedTransaction,
        wallet: Wallet,
        categories: dict[str, Category],
        result: ImportResult,
    ) -> Optional[Transaction]:
        name = source.name
        try:
            draft = self.to_draft(name, tx, wallet, categories)
        except ValidationError as e:
            logger.warning("Skipping %s from %s: %s", tx.external_id, name, e)
            result.failed += 1
            result.errors.append(str(e))
            return None

        try:
            with self.db.atomic():
                match = self.guard.check(draft)
                if match is not None:
                    logger.info("Skipping %s duplicate %s from %s", match, tx.external_id, name)
                    result.skipped += 1
                    return None

                # Entered by hand with the same external ID
                existing = self.db.get_transaction_by_external_id(tx.external_id)
                if existing is not None and existing.status != FAILED:
                    logger.info(
                        "Skipping %s from %s: already recorded as transaction %d",
                        tx.external_id,
                        name,
                        existing.id,
                    )
                    result.skipped += 1
                    return None

                if tx.currency.upper() != wallet.currency:
                    raise ValidationError(
                        f"Currency {tx.currency} does not match wallet '{wallet.name}' ({wallet.currency})"
                    )

                if existing is not None:
                    logger.info("Retrying previously failed import %s", tx.external_id)
                    created = self.ledger.update_transaction(
                        existing.id,
                        amount=draft.amount,
                        date=draft.date,
                        transaction_type=draft.transaction_type,
                        wallet_id=draft.wallet_id,
                        category_id=draft.category_id,
                        description=draft.description,
                        tags=draft.tags,
                    )
                else:
                    created = self.ledger.create_transaction(draft)

                if not self.import_ledger.mark_imported(name, tx, created.transaction_type, created.id):
                    raise ConsistencyError(f"External ID {tx.external_id} was recorded twice")
        except ValidationError as e:
            logger.warning("Import of %s from %s failed: %s", tx.external_id, name, e)
            self.ledger.record_failed_transaction(draft, str(e))
            result.failed += 1
            result.errors.append(f"{tx.external_id}: {e}")
            return None

        result.imported += 1
        return created

    def _mirror(
        self,
        source: ImportSource,
        tx: NormalizedTransaction,
        currency_ids: dict[str, str],
        result: ImportResult,
    ) -> None:
        try:
            currency_id = currency_ids.get(tx.currency)
            if currency_id is None:
                currency_id = self.sink.get_currency_id(tx.currency)
                currency_ids[tx.currency] = currency_id
            self.sink.create_transaction(source.config.sink_account_id, currency_id, tx)
        except SinkError as e:
            logger.error("Mirroring %s from %s to %s failed: %s", tx.external_id, source.name, self.sink.tag, e)
            result.errors.append(f"sink {tx.external_id}: {e}")
