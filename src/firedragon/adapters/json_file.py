"""Source adapter reading transactions from a JSON document.

The document is either a list of transactions or an object with a
``transactions`` list and an optional ``balances`` mapping::

    {
      "transactions": [
        {"id": "tx-1", "account": "main", "currency": "USD", "amount": "12.50",
         "direction": "expense", "description": "Lunch", "date": "2024-03-01T12:00:00Z"}
      ],
      "balances": {"main": "87.50"}
    }

Useful for offline imports and for exercising the import pipeline.
"""

import json
import logging
from datetime import datetime
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any, Optional

from firedragon.adapters.base import INVALID, NETWORK, SourceAdapter, SourceError, register_source
from firedragon.domain.entities import Balance, NormalizedTransaction
from firedragon.utils.date_parser import parse_datetime

logger = logging.getLogger(__name__)

_INCOMING = ("income", "deposit", "in")


@register_source("json-file")
class JsonFileSource(SourceAdapter):
    """Reads normalized transactions from a file on every fetch."""

    def __init__(self, path: str, currency: Optional[str] = None):
        self.path = Path(path).expanduser()
        self.default_currency = currency.upper() if currency else None

    def _load(self) -> dict[str, Any]:
        try:
            with open(self.path, encoding="utf-8") as f:
                document = json.load(f)
        except OSError as e:
            raise SourceError(f"Cannot read {self.path}: {e}", kind=NETWORK) from e
        except json.JSONDecodeError as e:
            raise SourceError(f"Invalid JSON in {self.path}: {e}", kind=INVALID) from e

        if isinstance(document, list):
            return {"transactions": document, "balances": {}}
        if isinstance(document, dict) and isinstance(document.get("transactions", []), list):
            return {
                "transactions": document.get("transactions", []),
                "balances": document.get("balances") or {},
            }
        raise SourceError(f"Unexpected document layout in {self.path}", kind=INVALID)

    def _parse(self, item: dict[str, Any]) -> NormalizedTransaction:
        try:
            external_id = str(item.get("external_id") or item["id"])
            currency = str(item.get("currency") or self.default_currency or "").upper()
            if not currency:
                raise KeyError("currency")
            amount = abs(Decimal(str(item["amount"])))
            direction = str(item.get("direction") or item.get("type") or "").lower()
            date = parse_datetime(str(item["date"]))
        except KeyError as e:
            raise SourceError(f"Transaction in {self.path} is missing {e}", kind=INVALID) from e
        except (InvalidOperation, ValueError) as e:
            raise SourceError(f"Malformed transaction in {self.path}: {e}", kind=INVALID) from e

        return NormalizedTransaction(
            external_id=external_id,
            currency=currency,
            amount=amount,
            direction=direction,
            description=str(item.get("description") or external_id),
            date=date,
            raw=dict(item),
        )

    def fetch_transactions(
        self,
        account: str,
        limit: Optional[int] = None,
        from_date: Optional[datetime] = None,
        to_date: Optional[datetime] = None,
    ) -> list[NormalizedTransaction]:
        document = self._load()
        transactions = []
        for item in document["transactions"]:
            if not isinstance(item, dict):
                raise SourceError(f"Transaction entries in {self.path} must be objects", kind=INVALID)
            if item.get("account") not in (None, account):
                continue
            tx = self._parse(item)
            if from_date is not None and tx.date < from_date:
                continue
            if to_date is not None and tx.date > to_date:
                continue
            transactions.append(tx)

        transactions.sort(key=lambda tx: tx.date)
        if limit is not None:
            transactions = transactions[:limit]
        logger.debug("Read %d transactions for %s from %s", len(transactions), account, self.path)
        return transactions

    def get_balance(self, account: str) -> Balance:
        document = self._load()
        balances = document["balances"]
        transactions = [
            self._parse(item)
            for item in document["transactions"]
            if isinstance(item, dict) and item.get("account") in (None, account)
        ]
        currency = self.default_currency or (transactions[0].currency if transactions else "")

        if account in balances:
            try:
                return Balance(amount=Decimal(str(balances[account])), currency=currency)
            except InvalidOperation as e:
                raise SourceError(f"Malformed balance for {account}: {e}", kind=INVALID) from e

        total = Decimal("0")
        for tx in transactions:
            total += tx.amount if tx.direction in _INCOMING else -tx.amount
        return Balance(amount=total, currency=currency)
