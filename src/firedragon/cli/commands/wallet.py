"""Wallet management commands."""

import click
from firedragon.cli.error_handling import handle_domain_error
from firedragon.config import ConfigurationError
from firedragon.domain.entities import WALLET_TYPES
from firedragon.domain.errors import DomainError
from firedragon.domain.ledger import LedgerEngine
from firedragon.domain.wallet import WalletService
from firedragon.importer.factory import build_orchestrator, build_sources
from firedragon.utils.amount_parser import format_amount, parse_amount


@click.group()
def wallet_group():
    """Manage wallets."""
    pass


@wallet_group.command("create")
@click.argument("name", metavar="WALLET_NAME")
@click.option("--currency", required=True, help="Currency code (e.g. USD, EUR, ETH)")
@click.option(
    "--type",
    "wallet_type",
    type=click.Choice(WALLET_TYPES),
    default="bank",
    show_default=True,
    help="Wallet type",
)
@click.option("--balance", default="0", help="Opening balance")
@click.option("--description", help="Wallet description")
@click.pass_context
def create_wallet(ctx, name: str, currency: str, wallet_type: str, balance: str, description: str | None):
    """Create a new wallet.

    Examples:
        firedragon wallet create "Checking" --currency USD --balance 1500
        firedragon wallet create "ETH Wallet" --currency ETH --type crypto
    """
    service = WalletService(ctx.obj["db"])

    try:
        opening_balance = parse_amount(balance)
        wallet_id = service.create_wallet(
            name=name,
            currency=currency,
            wallet_type=wallet_type,
            opening_balance=opening_balance,
            description=description,
        )
    except (DomainError, ValueError) as e:
        handle_domain_error(ctx, e)
    click.echo(f"Created wallet '{name}' (ID: {wallet_id})")


@wallet_group.command("list")
@click.pass_context
def list_wallets(ctx):
    """List all wallets with their balances."""
    service = WalletService(ctx.obj["db"])

    wallets = service.list_wallets()
    if not wallets:
        click.echo("No wallets found.")
        return

    click.echo("\nWallets:")
    click.echo("-" * 72)
    for w in wallets:
        balance = format_amount(w.balance)
        click.echo(f"ID: {w.id:3d} | {w.name:20s} | {w.wallet_type:6s} | {balance:>20} {w.currency}")


@wallet_group.command("show")
@click.argument("wallet", metavar="WALLET")
@click.pass_context
def show_wallet(ctx, wallet: str):
    """Show a wallet's details.

    WALLET can be a wallet name or ID.
    """
    db = ctx.obj["db"]
    service = WalletService(db)

    try:
        w = service.resolve_wallet(wallet)
    except DomainError as e:
        handle_domain_error(ctx, e)

    click.echo(f"Wallet ID: {w.id}")
    click.echo(f"  Name: {w.name}")
    click.echo(f"  Type: {w.wallet_type}")
    click.echo(f"  Currency: {w.currency}")
    click.echo(f"  Balance: {format_amount(w.balance)}")
    click.echo(f"  Opening balance: {format_amount(w.opening_balance)}")
    if w.description:
        click.echo(f"  Description: {w.description}")
    click.echo(f"  Transactions: {db.get_wallet_transaction_count(w.id)}")


@wallet_group.command("delete")
@click.argument("wallet", metavar="WALLET")
@click.option("--yes", "-y", is_flag=True, help="Do not ask for confirmation")
@click.pass_context
def delete_wallet(ctx, wallet: str, yes: bool) -> None:
    """Delete a wallet.

    WALLET can be a wallet name or ID. Wallets referenced by any
    transaction cannot be deleted.
    """
    service = WalletService(ctx.obj["db"])

    try:
        w = service.resolve_wallet(wallet)
    except DomainError as e:
        handle_domain_error(ctx, e)

    if not yes and not click.confirm(f"Are you sure you want to delete wallet '{w.name}' (ID: {w.id})?"):
        click.echo("Deletion cancelled.")
        return

    try:
        service.delete_wallet(w.id)
    except DomainError as e:
        handle_domain_error(ctx, e)
    click.echo(f"Deleted wallet '{w.name}'")


@wallet_group.command("verify")
@click.argument("wallet", metavar="WALLET", required=False)
@click.option("--remote", is_flag=True, help="Also compare with balances reported by configured sources")
@click.pass_context
def verify_wallets(ctx, wallet: str | None, remote: bool) -> None:
    """Check stored balances against the transaction log.

    Recomputes each balance from the opening balance and every completed
    transaction. With --remote, each configured source importing into a
    checked wallet is asked for its balance as well. Exits with status 1
    if any balance differs.
    """
    db = ctx.obj["db"]
    service = WalletService(db)
    ledger = LedgerEngine(db)

    try:
        wallets = [service.resolve_wallet(wallet)] if wallet else service.list_wallets()
    except DomainError as e:
        handle_domain_error(ctx, e)

    mismatches = 0
    for w in wallets:
        expected = ledger.recompute_balance(w.id)
        if expected == w.balance:
            click.echo(f"OK       {w.name}: {format_amount(w.balance)} {w.currency}")
        else:
            mismatches += 1
            click.echo(
                f"MISMATCH {w.name}: stored {format_amount(w.balance)}, "
                f"computed {format_amount(expected)} {w.currency}"
            )

    if remote:
        mismatches += _verify_remote(ctx, {w.name for w in wallets})

    if mismatches:
        ctx.exit(1)


def _verify_remote(ctx, wallet_names: set[str]) -> int:
    config = ctx.obj["config"]
    selected = [s.name for s in config.sources if s.wallet in wallet_names]
    if not selected:
        click.echo("No configured sources import into these wallets.")
        return 0

    try:
        sources = build_sources(config, selected)
        orchestrator = build_orchestrator(ctx.obj["db"], config)
    except ConfigurationError as e:
        handle_domain_error(ctx, e)

    mismatches = 0
    try:
        for source in sources:
            check = orchestrator.check_balance(source)
            label = f"{check.wallet} via {check.source}"
            if check.error is not None:
                mismatches += 1
                click.echo(f"ERROR    {label}: {check.error}")
            elif check.matches:
                click.echo(f"OK       {label}: {format_amount(check.reported)} {check.currency}")
            else:
                mismatches += 1
                click.echo(
                    f"MISMATCH {label}: source {format_amount(check.reported)}, "
                    f"ledger {format_amount(check.stored)} {check.currency}"
                )
    finally:
        for source in sources:
            source.adapter.close()
        orchestrator.sink.close()
    return mismatches


def register_commands(cli):
    """Register wallet commands with main CLI."""
    cli.add_command(wallet_group, name="wallet")
