"""CLI error handling helpers."""

import click

from firedragon.adapters.base import AdapterError
from firedragon.config import ConfigurationError
from firedragon.domain.errors import DomainError


def handle_domain_error(
    ctx: click.Context, error: DomainError | ConfigurationError | AdapterError | ValueError
) -> None:
    """Render a domain error and exit with failure."""
    click.echo(f"Error: {error}", err=True)
    ctx.exit(1)
