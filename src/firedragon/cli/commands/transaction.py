"""Transaction management commands."""

from datetime import datetime, timedelta

import click
from firedragon.cli.error_handling import handle_domain_error
from firedragon.domain.category import CategoryService
from firedragon.domain.duplicates import DuplicateGuard
from firedragon.domain.entities import (
    EXPENSE,
    INCOME,
    TRANSACTION_STATUSES,
    TRANSACTION_TYPES,
    TRANSFER,
    Transaction,
    TransactionDraft,
)
from firedragon.domain.errors import DomainError
from firedragon.domain.ledger import LedgerEngine
from firedragon.domain.wallet import WalletService
from firedragon.utils.amount_parser import format_amount, parse_amount, parse_rate
from firedragon.utils.date_parser import parse_datetime, utcnow

DEFAULT_CATEGORIES = {
    INCOME: "Other Income",
    EXPENSE: "Other Expenses",
    TRANSFER: "Internal Transfer",
}


def _parse_when(ctx, value: str, label: str) -> datetime:
    try:
        return parse_datetime(value)
    except ValueError as e:
        click.echo(f"Error: Invalid {label}: {e}", err=True)
        ctx.exit(1)


def _format_transaction(txn: Transaction, wallets: dict[int, str], categories: dict[int, str]) -> str:
    wallet = wallets.get(txn.wallet_id, f"#{txn.wallet_id}")
    if txn.is_transfer:
        wallet = f"{wallet} -> {wallets.get(txn.dest_wallet_id, f'#{txn.dest_wallet_id}')}"
    return (
        f"ID: {txn.id:4d} | {txn.date:%Y-%m-%d %H:%M} | {txn.transaction_type:8s} | "
        f"{format_amount(txn.amount):>16} | {wallet:25s} | {categories.get(txn.category_id, '?'):18s} | "
        f"{txn.status:9s} | {txn.description or ''}"
    )


@click.group()
def transaction_group():
    """Manage transactions."""
    pass


@transaction_group.command("add")
@click.option(
    "--type",
    "transaction_type",
    type=click.Choice(TRANSACTION_TYPES, case_sensitive=False),
    required=True,
    help="Transaction type",
)
@click.option("--amount", required=True, help="Transaction amount (positive, e.g. 123.45)")
@click.option("--wallet", required=True, help="Wallet name or ID (source wallet for transfers)")
@click.option("--to-wallet", help="Destination wallet name or ID (transfers only)")
@click.option("--rate", help="Exchange rate for cross-currency transfers")
@click.option("--category", help="Category name or ID (defaults to the type's 'Other' category)")
@click.option("--date", "date_str", help="Transaction date (ISO date/time or 'today', 'yesterday'); default now")
@click.option("--description", help="Transaction description")
@click.option("--tag", "tags", multiple=True, help="Tag (repeatable)")
@click.option("--external-id", help="External ID of the transaction")
@click.option("--allow-duplicate", is_flag=True, help="Record even if it looks like a duplicate")
@click.pass_context
def add_transaction(
    ctx,
    transaction_type: str,
    amount: str,
    wallet: str,
    to_wallet: str | None,
    rate: str | None,
    category: str | None,
    date_str: str | None,
    description: str | None,
    tags: tuple[str, ...],
    external_id: str | None,
    allow_duplicate: bool,
):
    """Add a transaction manually.

    Examples:
        firedragon transaction add --type expense --amount 50 --wallet Checking --category Food
        firedragon transaction add --type transfer --amount 100 --wallet Checking --to-wallet Savings
        firedragon transaction add --type transfer --amount 100 --wallet USD --to-wallet EUR --rate 0.9
    """
    db = ctx.obj["db"]
    config = ctx.obj["config"]
    transaction_type = transaction_type.lower()
    wallet_service = WalletService(db)
    category_service = CategoryService(db)
    ledger = LedgerEngine(db)
    guard = DuplicateGuard(db, config.duplicate_window)

    txn_date = _parse_when(ctx, date_str, "date") if date_str else utcnow()

    try:
        txn_amount = parse_amount(amount)
        exchange_rate = parse_rate(rate) if rate is not None else None
        source = wallet_service.resolve_wallet(wallet)
        dest = wallet_service.resolve_wallet(to_wallet) if to_wallet else None
        cat = category_service.resolve_category(category or DEFAULT_CATEGORIES[transaction_type])

        draft = TransactionDraft(
            amount=txn_amount,
            date=txn_date,
            transaction_type=transaction_type,
            wallet_id=source.id,
            category_id=cat.id,
            description=description,
            dest_wallet_id=dest.id if dest else None,
            exchange_rate=exchange_rate,
            tags=tags,
            external_id=external_id,
        )
        with db.atomic():
            if not allow_duplicate:
                guard.ensure_unique(ledger.normalize(draft))
            txn = ledger.create_transaction(draft)
    except (DomainError, ValueError) as e:
        handle_domain_error(ctx, e)

    click.echo(f"Created {txn.transaction_type} transaction {txn.id}")
    for w in [wallet_service.get_wallet(source.id)] + ([wallet_service.get_wallet(dest.id)] if dest else []):
        click.echo(f"  {w.name}: {format_amount(w.balance)} {w.currency}")


@transaction_group.command("update")
@click.argument("transaction_id", type=int)
@click.option(
    "--type",
    "transaction_type",
    type=click.Choice(TRANSACTION_TYPES, case_sensitive=False),
    help="Transaction type",
)
@click.option("--amount", help="Transaction amount")
@click.option("--wallet", help="Wallet name or ID")
@click.option("--to-wallet", help="Destination wallet name or ID")
@click.option("--rate", help="Exchange rate")
@click.option("--category", help="Category name or ID")
@click.option("--date", "date_str", help="Transaction date")
@click.option("--description", help="Transaction description")
@click.option("--tag", "tags", multiple=True, help="Replace tags (repeatable)")
@click.pass_context
def update_transaction(
    ctx,
    transaction_id: int,
    transaction_type: str | None,
    amount: str | None,
    wallet: str | None,
    to_wallet: str | None,
    rate: str | None,
    category: str | None,
    date_str: str | None,
    description: str | None,
    tags: tuple[str, ...],
) -> None:
    """Update a transaction.

    Updates only the fields that are provided; balances are adjusted by
    reversing the old version and applying the new one.

    Examples:
        firedragon transaction update 1 --amount 75.00
        firedragon transaction update 1 --category Food --description "Lunch"
    """
    db = ctx.obj["db"]
    wallet_service = WalletService(db)
    category_service = CategoryService(db)
    ledger = LedgerEngine(db)

    changes = {}
    if date_str is not None:
        changes["date"] = _parse_when(ctx, date_str, "date")
    if description is not None:
        changes["description"] = description
    if tags:
        changes["tags"] = tags
    if transaction_type is not None:
        changes["transaction_type"] = transaction_type.lower()

    try:
        if amount is not None:
            changes["amount"] = parse_amount(amount)
        if rate is not None:
            changes["exchange_rate"] = parse_rate(rate)
        if wallet is not None:
            changes["wallet_id"] = wallet_service.resolve_wallet(wallet).id
        if to_wallet is not None:
            changes["dest_wallet_id"] = wallet_service.resolve_wallet(to_wallet).id
        if category is not None:
            changes["category_id"] = category_service.resolve_category(category).id

        if not changes:
            click.echo("Nothing to update.")
            return

        ledger.update_transaction(transaction_id, **changes)
    except (DomainError, ValueError) as e:
        handle_domain_error(ctx, e)
    click.echo(f"Updated transaction {transaction_id}")


@transaction_group.command("delete")
@click.argument("transaction_id", type=int)
@click.option("--yes", "-y", is_flag=True, help="Do not ask for confirmation")
@click.pass_context
def delete_transaction(ctx, transaction_id: int, yes: bool) -> None:
    """Delete a transaction and reverse its effect on balances."""
    ledger = LedgerEngine(ctx.obj["db"])

    if not yes and not click.confirm(f"Are you sure you want to delete transaction {transaction_id}?"):
        click.echo("Deletion cancelled.")
        return

    try:
        ledger.delete_transaction(transaction_id)
    except DomainError as e:
        handle_domain_error(ctx, e)
    click.echo(f"Deleted transaction {transaction_id}")


@transaction_group.command("list")
@click.option("--start-date", help="Start date (YYYY-MM-DD or relative like 'last month', 'this year')")
@click.option("--end-date", help="End date (YYYY-MM-DD or relative like 'today')")
@click.option("--wallet", help="Wallet name or ID")
@click.option("--category", help="Category name or ID")
@click.option("--status", type=click.Choice(TRANSACTION_STATUSES), help="Only this status")
@click.option("--verbose", "-v", is_flag=True, help="Show tags, external ID and failure reasons")
@click.pass_context
def list_transactions(
    ctx,
    start_date: str | None,
    end_date: str | None,
    wallet: str | None,
    category: str | None,
    status: str | None,
    verbose: bool,
):
    """View transactions with optional filters, newest first."""
    db = ctx.obj["db"]
    wallet_service = WalletService(db)
    category_service = CategoryService(db)
    ledger = LedgerEngine(db)

    start = _parse_when(ctx, start_date, "start date") if start_date else None
    end = None
    if end_date:
        # An end date names a whole day
        end = _parse_when(ctx, end_date, "end date")
        if end == end.replace(hour=0, minute=0, second=0, microsecond=0):
            end = end + timedelta(days=1) - timedelta(microseconds=1)

    try:
        wallet_id = wallet_service.resolve_wallet(wallet).id if wallet else None
        category_id = category_service.resolve_category(category).id if category else None
    except DomainError as e:
        handle_domain_error(ctx, e)

    transactions = ledger.list_transactions(
        start_date=start, end_date=end, wallet_id=wallet_id, category_id=category_id, status=status
    )
    if not transactions:
        click.echo("No transactions found.")
        return

    wallets = {w.id: w.name for w in wallet_service.list_wallets()}
    categories = {c.id: c.name for c in category_service.list_categories()}

    click.echo(f"\nFound {len(transactions)} transaction(s):")
    click.echo("-" * 120)
    for txn in transactions:
        click.echo(_format_transaction(txn, wallets, categories))
        if verbose:
            if txn.exchange_rate is not None:
                click.echo(f"       rate: {txn.exchange_rate}")
            if txn.tags:
                click.echo(f"       tags: {', '.join(txn.tags)}")
            if txn.external_id:
                click.echo(f"       external id: {txn.external_id}")
            if txn.failure_reason:
                click.echo(f"       failure: {txn.failure_reason}")


@transaction_group.command("history")
@click.option("--transaction", "transaction_id", type=int, help="Only entries for this transaction")
@click.option("--wallet", help="Only entries touching this wallet (name or ID)")
@click.pass_context
def show_history(ctx, transaction_id: int | None, wallet: str | None):
    """Show the audit trail of balance changes."""
    db = ctx.obj["db"]
    wallet_service = WalletService(db)
    ledger = LedgerEngine(db)

    try:
        wallet_id = wallet_service.resolve_wallet(wallet).id if wallet else None
    except DomainError as e:
        handle_domain_error(ctx, e)

    entries = ledger.get_history(transaction_id=transaction_id, wallet_id=wallet_id)
    if not entries:
        click.echo("No history found.")
        return

    wallets = {w.id: w.name for w in wallet_service.list_wallets()}
    for entry in entries:
        click.echo(
            f"{entry.performed_at:%Y-%m-%d %H:%M:%S} | transaction {entry.transaction_id} | {entry.action}"
        )
        for wid, (old, new) in sorted(entry.balance_changes.items()):
            click.echo(f"    {wallets.get(wid, f'#{wid}')}: {format_amount(old)} -> {format_amount(new)}")


def register_commands(cli):
    """Register transaction commands with main CLI."""
    cli.add_command(transaction_group, name="transaction")
