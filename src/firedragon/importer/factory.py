"""Build sinks, sources and the orchestrator from configuration."""

from typing import Optional

from firedragon import adapters
from firedragon.config import Config, ConfigurationError
from firedragon.database.base import Database
from firedragon.importer.orchestrator import ImportOrchestrator, ImportSource


def build_sink(config: Config) -> adapters.SinkAdapter:
    return adapters.create_sink(config.sink.type, timeout=config.http_timeout, **config.sink.options)


def build_sources(config: Config, names: Optional[list[str]] = None) -> list[ImportSource]:
    """Instantiate the adapters of the configured sources.

    Args:
        config: Loaded configuration
        names: Restrict to these source names; all sources when None

    Raises:
        ConfigurationError: If a name is not configured or an adapter
            cannot be created
    """
    selected = config.sources
    if names is not None:
        selected = [config.get_source(name) for name in names]
    if not selected:
        raise ConfigurationError("No import sources are configured")

    return [
        ImportSource(
            config=source,
            adapter=adapters.create_source(source.type, timeout=config.http_timeout, **source.options),
        )
        for source in selected
    ]


def build_orchestrator(db: Database, config: Config) -> ImportOrchestrator:
    return ImportOrchestrator(
        db,
        build_sink(config),
        retry=config.retry,
        duplicate_window=config.duplicate_window,
    )
