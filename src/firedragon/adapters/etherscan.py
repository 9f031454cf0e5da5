"""Ethereum source adapter backed by the Etherscan account API."""

import logging
from datetime import UTC, datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Optional

import requests

from firedragon.adapters.base import (
    AUTH,
    INVALID,
    NETWORK,
    RATE_LIMIT,
    SourceAdapter,
    SourceError,
    kind_for_status,
    register_source,
)
from firedragon.domain.entities import Balance, NormalizedTransaction

logger = logging.getLogger(__name__)

WEI_PER_ETHER = Decimal(10) ** 18


def wei_to_ether(value: str | int) -> Decimal:
    return Decimal(value) / WEI_PER_ETHER


@register_source("etherscan")
class EtherscanSource(SourceAdapter):
    """Fetches normal (external) transactions of an Ethereum address.

    Failed transactions are skipped, as are zero-value contract calls since
    they move no ether. Direction is derived from the ``to`` address.
    """

    uses_http = True
    DEFAULT_BASE_URL = "https://api.etherscan.io/api"
    DEFAULT_TIMEOUT = 30

    def __init__(
        self,
        api_key: str,
        base_url: str = DEFAULT_BASE_URL,
        timeout: int = DEFAULT_TIMEOUT,
        currency: str = "ETH",
    ):
        """
        Initialize Etherscan source.

        Args:
            api_key: Etherscan API key
            base_url: API endpoint, overridable for testnets
            timeout: Request timeout in seconds
            currency: Currency code reported for every transaction
        """
        if not api_key:
            raise TypeError("missing required option 'api_key'")
        self.api_key = api_key
        self.base_url = base_url
        self.timeout = timeout
        self.currency = currency.upper()
        self.session = requests.Session()
        self.session.headers.update({"Accept": "application/json"})

    def _get(self, params: dict[str, Any]) -> Any:
        """Query the account module and return the ``result`` payload."""
        query = {"module": "account", **params, "apikey": self.api_key}
        logger.debug("Etherscan request: action=%s", params.get("action"))

        try:
            response = self.session.get(self.base_url, params=query, timeout=self.timeout)
        except requests.exceptions.Timeout as e:
            raise SourceError(f"Etherscan request timed out: {e}", kind=NETWORK) from e
        except requests.exceptions.RequestException as e:
            raise SourceError(f"Failed to reach Etherscan: {e}", kind=NETWORK) from e

        if not response.ok:
            raise SourceError(
                f"Etherscan returned HTTP {response.status_code}",
                kind=kind_for_status(response.status_code),
            )

        try:
            payload = response.json()
        except ValueError as e:
            raise SourceError(f"Invalid Etherscan response: {e}", kind=INVALID) from e

        if str(payload.get("status")) == "1":
            return payload.get("result")

        message = str(payload.get("message") or "")
        result = payload.get("result")
        if message.lower().startswith("no transactions found"):
            return []
        detail = str(result) if isinstance(result, str) else message
        lowered = detail.lower()
        if "rate limit" in lowered:
            raise SourceError(f"Etherscan rate limit: {detail}", kind=RATE_LIMIT)
        if "api key" in lowered:
            raise SourceError(f"Etherscan rejected the API key: {detail}", kind=AUTH)
        raise SourceError(f"Etherscan API error: {detail}", kind=INVALID)

    def _normalize(self, address: str, item: dict[str, Any]) -> Optional[NormalizedTransaction]:
        if item.get("isError") == "1":
            return None
        try:
            amount = wei_to_ether(item["value"])
            date = datetime.fromtimestamp(int(item["timeStamp"]), UTC).replace(tzinfo=None)
            tx_hash = item["hash"]
        except (KeyError, ValueError, InvalidOperation) as e:
            raise SourceError(f"Malformed Etherscan transaction: {e}", kind=INVALID) from e
        if amount == 0:
            return None

        incoming = str(item.get("to") or "").lower() == address.lower()
        return NormalizedTransaction(
            external_id=tx_hash,
            currency=self.currency,
            amount=amount,
            direction="deposit" if incoming else "withdrawal",
            description=f"Ethereum transaction {tx_hash}",
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
        result = self._get({"action": "txlist", "address": account, "sort": "asc"})
        if not isinstance(result, list):
            raise SourceError("Unexpected Etherscan txlist result", kind=INVALID)

        transactions = []
        skipped = 0
        for item in result:
            tx = self._normalize(account, item)
            if tx is None:
                skipped += 1
                continue
            if from_date is not None and tx.date < from_date:
                continue
            if to_date is not None and tx.date > to_date:
                continue
            transactions.append(tx)
            if limit is not None and len(transactions) >= limit:
                break

        if skipped:
            logger.debug("Skipped %d failed or zero-value transactions for %s", skipped, account)
        return transactions

    def get_balance(self, account: str) -> Balance:
        result = self._get({"action": "balance", "address": account, "tag": "latest"})
        try:
            return Balance(amount=wei_to_ether(result), currency=self.currency)
        except (InvalidOperation, TypeError) as e:
            raise SourceError(f"Malformed Etherscan balance: {result!r}", kind=INVALID) from e

    def close(self) -> None:
        self.session.close()
