"""Category management commands."""

import click
from firedragon.cli.error_handling import handle_domain_error
from firedragon.domain.category import CategoryService
from firedragon.domain.entities import TRANSACTION_TYPES
from firedragon.domain.errors import DomainError


@click.group()
def category_group():
    """Manage categories."""
    pass


@category_group.command("list")
@click.option(
    "--type",
    "category_type",
    type=click.Choice(TRANSACTION_TYPES, case_sensitive=False),
    help="Only show categories of this type",
)
@click.pass_context
def list_categories(ctx, category_type: str | None):
    """List categories grouped by type."""
    service = CategoryService(ctx.obj["db"])

    categories = service.list_categories(category_type=category_type.lower() if category_type else None)
    if not categories:
        click.echo("No categories found. Run 'category seed' to create the system categories.")
        return

    current_type = None
    for cat in categories:
        if cat.category_type != current_type:
            current_type = cat.category_type
            click.echo(f"\n{current_type.capitalize()}:")
        marker = " [system]" if cat.is_system else ""
        click.echo(f"  {cat.name} (ID: {cat.id}){marker}")


@category_group.command("create")
@click.argument("name")
@click.option(
    "--type",
    "category_type",
    type=click.Choice(TRANSACTION_TYPES, case_sensitive=False),
    default="expense",
    help="Category type (default: expense)",
)
@click.option("--description", help="Category description")
@click.pass_context
def create_category(ctx, name: str, category_type: str, description: str | None):
    """Create a new category."""
    service = CategoryService(ctx.obj["db"])

    try:
        category_id = service.create_category(
            name=name, category_type=category_type.lower(), description=description
        )
    except DomainError as e:
        handle_domain_error(ctx, e)
    click.echo(f"Created {category_type.lower()} category '{name}' (ID: {category_id})")


@category_group.command("delete")
@click.argument("category", metavar="CATEGORY")
@click.pass_context
def delete_category(ctx, category: str):
    """Delete a user category.

    CATEGORY can be a category name or ID. System categories and
    categories used by transactions cannot be deleted.
    """
    service = CategoryService(ctx.obj["db"])

    try:
        cat = service.resolve_category(category)
        service.delete_category(cat.id)
    except DomainError as e:
        handle_domain_error(ctx, e)
    click.echo(f"Deleted category '{cat.name}'")


@category_group.command("seed")
@click.pass_context
def seed_categories(ctx):
    """Create any missing system categories."""
    service = CategoryService(ctx.obj["db"])

    created = service.seed_system_categories()
    if created:
        click.echo(f"Created {created} system categories.")
    else:
        click.echo("System categories already present.")


def register_commands(cli):
    """Register category commands with main CLI."""
    cli.add_command(category_group, name="category")
