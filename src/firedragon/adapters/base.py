"""Adapter interfaces, errors and the provider registry.

Sources produce :class:`NormalizedTransaction` values; sinks mirror committed
transactions to an external tool. Concrete adapters register themselves
under a type tag and are resolved once, when the configuration is loaded.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Callable, Optional, TypeVar

from firedragon.config import ConfigurationError
from firedragon.domain.entities import Balance, NormalizedTransaction

NETWORK = "network"
AUTH = "auth"
RATE_LIMIT = "rate_limit"
INVALID = "invalid"
ERROR_KINDS = (NETWORK, AUTH, RATE_LIMIT, INVALID)

# Kinds worth retrying: the same request may succeed a moment later.
TRANSIENT_KINDS = frozenset({NETWORK, RATE_LIMIT})


class AdapterError(Exception):
    """Base exception for adapter failures."""

    def __init__(self, message: str, kind: str = NETWORK):
        if kind not in ERROR_KINDS:
            raise ValueError(f"Unknown adapter error kind '{kind}'")
        self.kind = kind
        super().__init__(message)

    @property
    def transient(self) -> bool:
        return self.kind in TRANSIENT_KINDS


class SourceError(AdapterError):
    """A source could not deliver transactions or a balance."""


class SinkError(AdapterError):
    """A sink rejected or could not receive a transaction."""


def kind_for_status(status_code: int) -> str:
    """Map an HTTP status code to an adapter error kind."""
    if status_code in (401, 403):
        return AUTH
    if status_code == 429:
        return RATE_LIMIT
    if status_code >= 500:
        return NETWORK
    return INVALID


class SourceAdapter(ABC):
    """Produces normalized transactions for one account of an external system."""

    tag = "source"
    # Adapters talking HTTP accept a ``timeout`` option
    uses_http = False

    @abstractmethod
    def fetch_transactions(
        self,
        account: str,
        limit: Optional[int] = None,
        from_date: Optional[datetime] = None,
        to_date: Optional[datetime] = None,
    ) -> list[NormalizedTransaction]:
        """Fetch transactions for ``account``.

        Args:
            account: Account identifier in the external system
            limit: Maximum number of transactions to return, oldest first
            from_date: Only return transactions on or after this time
            to_date: Only return transactions on or before this time

        Raises:
            SourceError: If the external system could not be queried
        """
        pass

    @abstractmethod
    def get_balance(self, account: str) -> Balance:
        """Current balance of ``account`` as reported by the external system."""
        pass

    def close(self) -> None:
        """Release any held resources."""
        pass


class SinkAdapter(ABC):
    """Mirrors committed transactions to an external tool."""

    tag = "sink"
    uses_http = False

    @abstractmethod
    def get_currency_id(self, currency: str) -> str:
        """Resolve a currency code to the sink's own identifier.

        Raises:
            SinkError: If the currency is unknown or the sink is unreachable
        """
        pass

    @abstractmethod
    def create_transaction(
        self, account_id: str, currency_id: str, tx: NormalizedTransaction
    ) -> Optional[str]:
        """Store ``tx`` in the sink.

        Returns:
            The sink's identifier for the new entry, if it reports one

        Raises:
            SinkError: If the sink rejected the transaction
        """
        pass

    def close(self) -> None:
        """Release any held resources."""
        pass


_SOURCES: dict[str, type[SourceAdapter]] = {}
_SINKS: dict[str, type[SinkAdapter]] = {}

S = TypeVar("S", bound=type[SourceAdapter])
K = TypeVar("K", bound=type[SinkAdapter])


def register_source(tag: str) -> Callable[[S], S]:
    """Class decorator registering a source adapter under ``tag``."""

    def decorator(cls: S) -> S:
        if tag in _SOURCES:
            raise ValueError(f"Source adapter '{tag}' is already registered")
        cls.tag = tag
        _SOURCES[tag] = cls
        return cls

    return decorator


def register_sink(tag: str) -> Callable[[K], K]:
    """Class decorator registering a sink adapter under ``tag``."""

    def decorator(cls: K) -> K:
        if tag in _SINKS:
            raise ValueError(f"Sink adapter '{tag}' is already registered")
        cls.tag = tag
        _SINKS[tag] = cls
        return cls

    return decorator


def source_types() -> list[str]:
    return sorted(_SOURCES)


def sink_types() -> list[str]:
    return sorted(_SINKS)


def create_source(tag: str, timeout: Optional[float] = None, **options: Any) -> SourceAdapter:
    """Instantiate the source adapter registered under ``tag``.

    Raises:
        ConfigurationError: If no adapter is registered under ``tag`` or the
            options are rejected
    """
    cls = _SOURCES.get(tag)
    if cls is None:
        raise ConfigurationError(
            f"Unknown source type '{tag}'. Available: {', '.join(source_types()) or 'none'}"
        )
    return _instantiate(cls, tag, options, timeout)


def create_sink(tag: str, timeout: Optional[float] = None, **options: Any) -> SinkAdapter:
    """Instantiate the sink adapter registered under ``tag``.

    Raises:
        ConfigurationError: If no adapter is registered under ``tag`` or the
            options are rejected
    """
    cls = _SINKS.get(tag)
    if cls is None:
        raise ConfigurationError(
            f"Unknown sink type '{tag}'. Available: {', '.join(sink_types()) or 'none'}"
        )
    return _instantiate(cls, tag, options, timeout)


def _instantiate(cls: type, tag: str, options: dict[str, Any], timeout: Optional[float]) -> Any:
    if timeout is not None and cls.uses_http:
        options.setdefault("timeout", timeout)
    try:
        return cls(**options)
    except TypeError as e:
        raise ConfigurationError(f"Invalid options for '{tag}': {e}") from e
