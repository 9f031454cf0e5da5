"""
Firefly III sink adapter.
"""

import json
import logging
from typing import Any, Optional

import requests

from firedragon.adapters.base import (
    INVALID,
    NETWORK,
    SinkAdapter,
    SinkError,
    kind_for_status,
    register_sink,
)
from firedragon.domain.entities import NormalizedTransaction

logger = logging.getLogger(__name__)

_INCOMING = ("income", "deposit", "in")


class FireflyAPIError(SinkError):
    """API returned an error response."""

    def __init__(self, status_code: int, message: str, errors: Optional[dict] = None):
        self.status_code = status_code
        self.errors = errors or {}

        error_details = []
        for field, msgs in self.errors.items():
            if isinstance(msgs, list):
                error_details.extend([f"{field}: {m}" for m in msgs])
            else:
                error_details.append(f"{field}: {msgs}")

        detail_str = "; ".join(error_details) if error_details else message
        super().__init__(f"Firefly API error {status_code}: {detail_str}", kind=kind_for_status(status_code))


@register_sink("firefly")
class FireflySink(SinkAdapter):
    """
    Mirrors ledger transactions into Firefly III.

    Incoming transactions become deposits into the asset account, outgoing
    ones withdrawals from it. The external ID travels with the entry so that
    Firefly can flag re-deliveries itself.
    """

    uses_http = True
    DEFAULT_TIMEOUT = 30

    def __init__(self, base_url: str, token: str, timeout: int = DEFAULT_TIMEOUT):
        """
        Initialize Firefly sink.

        Args:
            base_url: Firefly III URL (e.g., "http://firefly:8080")
            token: Personal access token
            timeout: Request timeout in seconds
        """
        if not base_url:
            raise TypeError("missing required option 'base_url'")
        if not token:
            raise TypeError("missing required option 'token'")
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout

        self.session = requests.Session()
        self.session.headers.update(
            {
                "Authorization": f"Bearer {token}",
                "Accept": "application/json",
                "Content-Type": "application/json",
            }
        )

    def _request(
        self,
        method: str,
        endpoint: str,
        json_data: Optional[dict] = None,
    ) -> requests.Response:
        """Make an API request with error handling."""
        url = f"{self.base_url}{endpoint}"

        logger.debug(f"API Request: {method} {url}")
        if json_data:
            logger.debug(f"Request body: {json.dumps(json_data, indent=2)}")

        try:
            response = self.session.request(
                method=method,
                url=url,
                json=json_data,
                timeout=self.timeout,
            )
        except requests.exceptions.ConnectionError as e:
            raise SinkError(f"Failed to connect to Firefly at {self.base_url}: {e}", kind=NETWORK) from e
        except requests.exceptions.Timeout as e:
            raise SinkError(f"Request to Firefly timed out: {e}", kind=NETWORK) from e
        except requests.exceptions.RequestException as e:
            raise SinkError(f"Request failed: {e}", kind=NETWORK) from e

        if not response.ok:
            errors: dict[str, Any] = {}
            try:
                error_json = response.json()
                errors = error_json.get("errors") or {}
                message = error_json.get("message") or response.reason
            except ValueError:
                message = response.reason
            raise FireflyAPIError(response.status_code, message, errors)

        return response

    def get_currency_id(self, currency: str) -> str:
        response = self._request("GET", f"/api/v1/currencies/{currency.upper()}")
        currency_id = response.json().get("data", {}).get("id")
        if not currency_id:
            raise SinkError(f"Firefly has no currency '{currency}'", kind=INVALID)
        return str(currency_id)

    def build_payload(self, account_id: str, currency_id: str, tx: NormalizedTransaction) -> dict:
        incoming = tx.direction in _INCOMING
        split: dict[str, Any] = {
            "type": "deposit" if incoming else "withdrawal",
            "date": tx.date.isoformat(),
            "amount": str(tx.amount),
            "description": tx.description,
            "currency_id": currency_id,
            "external_id": tx.external_id,
        }
        if incoming:
            split["destination_id"] = account_id
        else:
            split["source_id"] = account_id
        return {
            "error_if_duplicate_hash": True,
            "apply_rules": True,
            "transactions": [split],
        }

    def create_transaction(
        self, account_id: str, currency_id: str, tx: NormalizedTransaction
    ) -> Optional[str]:
        """
        Create a transaction in Firefly III.

        Returns:
            Firefly transaction ID, or None if Firefly reported a duplicate

        Raises:
            SinkError: If the request failed or Firefly rejected the entry
        """
        try:
            response = self._request(
                "POST",
                "/api/v1/transactions",
                json_data=self.build_payload(account_id, currency_id, tx),
            )
        except FireflyAPIError as e:
            if e.status_code == 422 and "duplicate" in str(e.errors).lower():
                logger.warning("Duplicate transaction detected by Firefly: %s", tx.external_id)
                return None
            raise

        transaction_id = response.json().get("data", {}).get("id")
        if transaction_id:
            logger.info(f"Created Firefly transaction id={transaction_id}")
        return str(transaction_id) if transaction_id else None

    def close(self) -> None:
        self.session.close()
