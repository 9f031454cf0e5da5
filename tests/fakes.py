"""In-memory adapters and builders shared by the import tests."""

import threading
from datetime import datetime
from decimal import Decimal
from typing import Optional

from firedragon.adapters.base import SinkAdapter, SinkError, SourceAdapter
from firedragon.domain.entities import Balance, NormalizedTransaction


def make_tx(
    external_id: str,
    amount: str,
    direction: str = "deposit",
    date: datetime = datetime(2024, 3, 1, 12, 0),
    currency: str = "USD",
    description: Optional[str] = None,
) -> NormalizedTransaction:
    return NormalizedTransaction(
        external_id=external_id,
        currency=currency,
        amount=Decimal(amount),
        direction=direction,
        description=description or f"Transaction {external_id}",
        date=date,
    )


class FakeSource(SourceAdapter):
    """In-memory source; ``failures`` are raised by the next calls in order."""

    def __init__(self, transactions=None, failures=None, balance="0", currency="USD"):
        self.transactions = list(transactions or [])
        self.failures = list(failures or [])
        self.balance = Balance(amount=Decimal(balance), currency=currency)
        self.calls = []

    def fetch_transactions(self, account, limit=None, from_date=None, to_date=None):
        self.calls.append({"account": account, "limit": limit, "from_date": from_date, "to_date": to_date})
        if self.failures:
            raise self.failures.pop(0)
        result = [
            tx
            for tx in self.transactions
            if (from_date is None or tx.date >= from_date) and (to_date is None or tx.date <= to_date)
        ]
        return result[:limit] if limit is not None else result

    def get_balance(self, account):
        if self.failures:
            raise self.failures.pop(0)
        return self.balance


class FakeSink(SinkAdapter):
    """Records mirrored transactions; fails for external IDs in ``fail_ids``."""

    def __init__(self, fail_ids=()):
        self.fail_ids = set(fail_ids)
        self.created = []
        self.currency_lookups = []

    def get_currency_id(self, currency):
        self.currency_lookups.append(currency)
        return f"cur-{currency}"

    def create_transaction(self, account_id, currency_id, tx):
        if tx.external_id in self.fail_ids:
            raise SinkError(f"sink rejected {tx.external_id}")
        self.created.append((account_id, currency_id, tx.external_id))
        return str(len(self.created))


class BlockingSource(FakeSource):
    """Source whose fetch blocks until ``release`` is set."""

    def __init__(self, transactions=None):
        super().__init__(transactions)
        self.entered = threading.Event()
        self.release = threading.Event()

    def fetch_transactions(self, account, limit=None, from_date=None, to_date=None):
        self.entered.set()
        self.release.wait(5)
        return super().fetch_transactions(account, limit, from_date, to_date)


class ExplodingSource(FakeSource):
    """Source that raises an unexpected error on every fetch."""

    def fetch_transactions(self, account, limit=None, from_date=None, to_date=None):
        raise RuntimeError("boom")
