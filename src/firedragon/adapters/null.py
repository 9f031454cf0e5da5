"""Sink that discards everything, for running without an external tool."""

import logging
from typing import Optional

from firedragon.adapters.base import SinkAdapter, register_sink
from firedragon.domain.entities import NormalizedTransaction

logger = logging.getLogger(__name__)


@register_sink("null")
class NullSink(SinkAdapter):
    def get_currency_id(self, currency: str) -> str:
        return currency.upper()

    def create_transaction(
        self, account_id: str, currency_id: str, tx: NormalizedTransaction
    ) -> Optional[str]:
        logger.debug("Discarding %s for %s", tx.external_id, account_id)
        return None
