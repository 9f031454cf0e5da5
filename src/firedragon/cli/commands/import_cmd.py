"""Import commands."""

import click
from firedragon.cli.error_handling import handle_domain_error
from firedragon.config import ConfigurationError
from firedragon.domain.category import CategoryService
from firedragon.domain.import_ledger import ImportLedger
from firedragon.importer.factory import build_orchestrator, build_sources


@click.group()
def import_group():
    """Import transactions from configured sources."""
    pass


@import_group.command("run")
@click.option("--source", "source_names", multiple=True, help="Only this source (repeatable)")
@click.pass_context
def run_import(ctx, source_names: tuple[str, ...]):
    """Run one import cycle for each configured source.

    Exits with status 1 if any source reported errors.
    """
    db = ctx.obj["db"]
    config = ctx.obj["config"]
    CategoryService(db).seed_system_categories()

    try:
        sources = build_sources(config, list(source_names) or None)
        orchestrator = build_orchestrator(db, config)
    except ConfigurationError as e:
        handle_domain_error(ctx, e)

    had_errors = False
    try:
        for source in sources:
            result = orchestrator.run_cycle(source)
            click.echo(f"\n{source.name}:")
            click.echo(f"  Imported: {result.imported} transactions")
            click.echo(f"  Skipped: {result.skipped} duplicates")
            click.echo(f"  Failed: {result.failed}")
            if result.watermark is not None:
                click.echo(f"  Watermark: {result.watermark:%Y-%m-%d %H:%M:%S}")
            if result.errors:
                had_errors = True
                click.echo(f"  Errors: {len(result.errors)}")
                for error in result.errors:
                    click.echo(f"    {error}", err=True)
    finally:
        for source in sources:
            source.adapter.close()
        orchestrator.sink.close()

    if had_errors:
        ctx.exit(1)


@import_group.command("status")
@click.pass_context
def import_status(ctx):
    """Show watermarks and import counts per source."""
    db = ctx.obj["db"]
    config = ctx.obj["config"]
    ledger = ImportLedger(db)

    watermarks = ledger.watermarks()
    names = [s.name for s in config.sources]
    names += sorted(name for name in watermarks if name not in names)
    if not names:
        click.echo("No import sources configured or recorded.")
        return

    click.echo("\nImport sources:")
    click.echo("-" * 60)
    for name in names:
        mark = watermarks.get(name)
        last = f"{mark:%Y-%m-%d %H:%M:%S}" if mark is not None else "never"
        click.echo(f"{name:20s} | imported: {ledger.count(name):6d} | last: {last}")


def register_commands(cli):
    """Register import commands with main CLI."""
    cli.add_command(import_group, name="import")
