"""Run import workers until interrupted."""

import logging
import signal
import threading

import click
from firedragon.cli.error_handling import handle_domain_error
from firedragon.config import ConfigurationError
from firedragon.domain.category import CategoryService
from firedragon.importer.factory import build_orchestrator, build_sources
from firedragon.importer.supervisor import WorkerSupervisor

logger = logging.getLogger(__name__)


@click.command("serve")
@click.pass_context
def serve(ctx):
    """Start one import worker per configured source.

    Runs until SIGINT or SIGTERM, then stops every worker, waiting at most
    shutdown_timeout_seconds.
    """
    db = ctx.obj["db"]
    config = ctx.obj["config"]
    CategoryService(db).seed_system_categories()

    try:
        sources = build_sources(config)
        orchestrator = build_orchestrator(db, config)
    except ConfigurationError as e:
        handle_domain_error(ctx, e)

    supervisor = WorkerSupervisor(orchestrator)
    for source in sources:
        supervisor.register(source.name, source)

    shutdown = threading.Event()

    def request_shutdown(signum, frame):
        logger.info("Received signal %d, shutting down", signum)
        shutdown.set()

    signal.signal(signal.SIGINT, request_shutdown)
    signal.signal(signal.SIGTERM, request_shutdown)

    supervisor.start_all()
    click.echo(f"Started {len(sources)} worker(s): {', '.join(supervisor.names())}")
    try:
        while not shutdown.wait(1.0):
            pass
    finally:
        lingering = supervisor.stop_all(config.shutdown_timeout)
        for source in sources:
            source.adapter.close()
        orchestrator.sink.close()

    for name, status in supervisor.statuses().items():
        click.echo(f"{name}: imported {status.imported_count}, errors {status.error_count}")
    if lingering:
        click.echo(f"Error: workers did not stop in time: {', '.join(lingering)}", err=True)
        ctx.exit(1)


def register_commands(cli):
    """Register serve command with main CLI."""
    cli.add_command(serve)
