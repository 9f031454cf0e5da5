"""Main CLI entry point."""

from pathlib import Path

import click
from firedragon.config import ConfigurationError, load_config
from firedragon.database.factories import create_sqlite_database
from firedragon.logging_setup import setup_logging

# Import and register all commands at module level
from firedragon.cli.commands import (
    wallet,
    category,
    transaction,
    import_cmd,
    serve,
)


@click.group()
@click.option(
    "--db-path",
    type=click.Path(),
    help="Path to database file (overrides FIREDRAGON_DB_PATH environment variable)",
    envvar="FIREDRAGON_DB_PATH",
)
@click.option(
    "--config",
    "config_path",
    type=click.Path(dir_okay=False),
    help="Path to YAML config file (defaults to FIREDRAGON_CONFIG)",
    envvar="FIREDRAGON_CONFIG",
)
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
@click.pass_context
def cli(ctx, db_path: str | None, config_path: str | None, verbose: bool):
    """Firedragon - multi-wallet ledger with automated imports.

    Keep bank, crypto and cash wallets in one ledger, import transactions
    from external sources on a schedule and mirror them to Firefly III.
    """
    ctx.ensure_object(dict)

    # Initialize database connection only when actually running a command
    # (not when showing help)
    if ctx.invoked_subcommand is None:
        return

    try:
        config = load_config(Path(config_path) if config_path else None)
    except ConfigurationError as e:
        click.echo(f"Error: {e}", err=True)
        ctx.exit(1)

    setup_logging(config.log_level, verbose=verbose)

    if db_path is None and config.database_path is not None:
        db_path = str(config.database_path)
    db = create_sqlite_database(database_path=db_path)
    db.connect()
    db.initialize_schema()
    ctx.call_on_close(db.disconnect)

    ctx.obj["db"] = db
    ctx.obj["config"] = config


# Register all commands
wallet.register_commands(cli)
category.register_commands(cli)
transaction.register_commands(cli)
import_cmd.register_commands(cli)
serve.register_commands(cli)


def main():
    """Main entry point for CLI."""
    cli()


if __name__ == "__main__":
    main()
