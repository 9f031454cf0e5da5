"""
Configuration management.

All configuration keys and their defaults live in this module. The YAML
file is optional: without one, firedragon runs with defaults, a local
database and no import sources.

Environment variables override file values:
- FIREDRAGON_LOG_LEVEL
- FIREFLY_URL
- FIREFLY_TOKEN

The database path is resolved by the CLI (``--db-path``, then
``FIREDRAGON_DB_PATH``, then ``database.path`` here, then the default).
"""

import os
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Optional

import yaml

from firedragon.utils.date_parser import parse_datetime, parse_duration

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


class ConfigurationError(Exception):
    """Raised when configuration is missing, malformed or inconsistent."""

    pass


@dataclass
class RetryConfig:
    """Retry policy for source fetches."""

    attempts: int = 3
    # Wait before attempt n+1 is backoff_seconds * n
    backoff_seconds: float = 5.0


@dataclass
class SinkConfig:
    """Where committed transactions are mirrored."""

    type: str = "null"
    options: dict[str, Any] = field(default_factory=dict)


@dataclass
class SourceConfig:
    """One external source imported into one wallet."""

    name: str
    type: str
    account: str
    wallet: str
    interval: timedelta = timedelta(minutes=15)
    limit: Optional[int] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    income_category: str = "Other Income"
    expense_category: str = "Other Expenses"
    # Account identifier in the sink; defaults to ``account``
    sink_account: Optional[str] = None
    options: dict[str, Any] = field(default_factory=dict)

    @property
    def sink_account_id(self) -> str:
        return self.sink_account or self.account


@dataclass
class Config:
    """Application configuration."""

    database_path: Optional[Path] = None
    log_level: str = "INFO"
    retry: RetryConfig = field(default_factory=RetryConfig)
    http_timeout: float = 30.0
    duplicate_window: timedelta = timedelta(hours=12)
    shutdown_timeout: float = 30.0
    sink: SinkConfig = field(default_factory=SinkConfig)
    sources: list[SourceConfig] = field(default_factory=list)

    def get_source(self, name: str) -> SourceConfig:
        for source in self.sources:
            if source.name == name:
                return source
        raise ConfigurationError(f"No source named '{name}' is configured")

    def validate(self) -> list[str]:
        """Validate configuration consistency.

        Returns:
            List of validation errors (empty if valid)
        """
        errors: list[str] = []

        if self.log_level not in LOG_LEVELS:
            errors.append(f"logging.level must be one of {', '.join(LOG_LEVELS)}")
        if self.retry.attempts < 1:
            errors.append("retry.attempts must be at least 1")
        if self.retry.backoff_seconds < 0:
            errors.append("retry.backoff_seconds must not be negative")
        if self.http_timeout <= 0:
            errors.append("http.timeout_seconds must be positive")
        if self.duplicate_window < timedelta(0):
            errors.append("duplicates.window_hours must not be negative")
        if self.shutdown_timeout <= 0:
            errors.append("shutdown_timeout_seconds must be positive")

        seen: set[str] = set()
        for index, source in enumerate(self.sources):
            prefix = f"sources[{index}]"
            if source.name in seen:
                errors.append(f"{prefix}.name '{source.name}' is used more than once")
            seen.add(source.name)
            if source.limit is not None and source.limit < 1:
                errors.append(f"{prefix}.limit must be at least 1")
            if source.start_date and source.end_date and source.start_date > source.end_date:
                errors.append(f"{prefix}.start_date must not be after end_date")

        return errors


def _require(data: dict[str, Any], key: str, prefix: str) -> Any:
    value = data.get(key)
    if value is None or value == "":
        raise ConfigurationError(f"{prefix}.{key} is required")
    return value


def _section(data: dict[str, Any], key: str) -> dict[str, Any]:
    value = data.get(key) or {}
    if not isinstance(value, dict):
        raise ConfigurationError(f"{key} must be a mapping")
    return value


def _number(value: Any, key: str) -> float:
    try:
        return float(value)
    except (TypeError, ValueError) as e:
        raise ConfigurationError(f"{key} must be a number, got {value!r}") from e


def _datetime(value: Any, key: str) -> Optional[datetime]:
    if value is None:
        return None
    try:
        return parse_datetime(value if not isinstance(value, (int, float)) else str(value))
    except ValueError as e:
        raise ConfigurationError(f"{key}: {e}") from e


def _parse_source(index: int, data: Any) -> SourceConfig:
    prefix = f"sources[{index}]"
    if not isinstance(data, dict):
        raise ConfigurationError(f"{prefix} must be a mapping")

    try:
        interval = parse_duration(data.get("interval", "15m"))
    except ValueError as e:
        raise ConfigurationError(f"{prefix}.interval: {e}") from e

    limit = data.get("limit")
    if limit is not None:
        limit = int(_number(limit, f"{prefix}.limit"))

    options = data.get("options") or {}
    if not isinstance(options, dict):
        raise ConfigurationError(f"{prefix}.options must be a mapping")

    return SourceConfig(
        name=str(_require(data, "name", prefix)),
        type=str(_require(data, "type", prefix)),
        account=str(_require(data, "account", prefix)),
        wallet=str(_require(data, "wallet", prefix)),
        interval=interval,
        limit=limit,
        start_date=_datetime(data.get("start_date"), f"{prefix}.start_date"),
        end_date=_datetime(data.get("end_date"), f"{prefix}.end_date"),
        income_category=str(data.get("income_category", "Other Income")),
        expense_category=str(data.get("expense_category", "Other Expenses")),
        sink_account=str(data["sink_account"]) if data.get("sink_account") is not None else None,
        options=dict(options),
    )


def load_config(config_path: Optional[Path] = None) -> Config:
    """
    Load configuration from a YAML file.

    Args:
        config_path: Path to the YAML file, or None for defaults only

    Raises:
        ConfigurationError: If the file cannot be read or fails validation
    """
    data: dict[str, Any] = {}
    if config_path is not None:
        config_path = Path(config_path).expanduser()
        try:
            with open(config_path) as f:
                data = yaml.safe_load(f) or {}
        except OSError as e:
            raise ConfigurationError(f"Cannot read config file {config_path}: {e}") from e
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML in {config_path}: {e}") from e
        if not isinstance(data, dict):
            raise ConfigurationError(f"Config file {config_path} must contain a mapping")

    database = _section(data, "database")
    logging_data = _section(data, "logging")
    retry_data = _section(data, "retry")
    http_data = _section(data, "http")
    duplicates_data = _section(data, "duplicates")

    # Sink config
    sink_data = dict(_section(data, "sink"))
    sink_type = str(sink_data.pop("type", "null"))
    if sink_type == "firefly":
        if os.environ.get("FIREFLY_URL"):
            sink_data["base_url"] = os.environ["FIREFLY_URL"]
        if os.environ.get("FIREFLY_TOKEN"):
            sink_data["token"] = os.environ["FIREFLY_TOKEN"]

    sources_data = data.get("sources") or []
    if not isinstance(sources_data, list):
        raise ConfigurationError("sources must be a list")

    db_path = database.get("path")
    config = Config(
        database_path=Path(db_path).expanduser() if db_path else None,
        log_level=str(
            os.environ.get("FIREDRAGON_LOG_LEVEL", logging_data.get("level", "INFO"))
        ).upper(),
        retry=RetryConfig(
            attempts=int(_number(retry_data.get("attempts", 3), "retry.attempts")),
            backoff_seconds=_number(retry_data.get("backoff_seconds", 5), "retry.backoff_seconds"),
        ),
        http_timeout=_number(http_data.get("timeout_seconds", 30), "http.timeout_seconds"),
        duplicate_window=timedelta(
            hours=_number(duplicates_data.get("window_hours", 12), "duplicates.window_hours")
        ),
        shutdown_timeout=_number(
            data.get("shutdown_timeout_seconds", 30), "shutdown_timeout_seconds"
        ),
        sink=SinkConfig(type=sink_type, options=sink_data),
        sources=[_parse_source(i, s) for i, s in enumerate(sources_data)],
    )

    errors = config.validate()
    if errors:
        raise ConfigurationError("; ".join(errors))
    return config
