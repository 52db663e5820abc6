"""Transaction commands."""

import click

from banksync.cli.context import get_services
from banksync.cli.error_handling import handle_domain_error
from banksync.domain.criteria import split_tags
from banksync.domain.entities import SyncStatus
from banksync.domain.errors import DomainError, SyncError
from banksync.utils.amount_parser import parse_amount
from banksync.utils.date_parser import parse_timestamp, utcnow


@click.group()
def transactions_group():
    """View and edit transactions."""
    pass


@transactions_group.command("list")
@click.option("--sync-status", type=click.Choice([s.value for s in SyncStatus]), help="Filter by sync status")
@click.option("--owner", help="Filter by owner")
@click.option("--include-deleted", is_flag=True, help="Include transactions deleted at the bank")
@click.option("--limit", type=int, help="Maximum number of transactions")
@click.pass_context
def list_transactions(
    ctx, sync_status: str | None, owner: str | None, include_deleted: bool, limit: int | None
) -> None:
    """List transactions.

    Examples:
        banksync transactions list --sync-status conflict
        banksync transactions list --sync-status failed
    """
    services = get_services(ctx)
    txns = services.transactions.list_transactions(
        owner_id=owner,
        sync_status=SyncStatus(sync_status) if sync_status else None,
        include_deleted=include_deleted,
        limit=limit,
    )
    if not txns:
        click.echo("No transactions found.")
        return
    for txn in txns:
        tags = ",".join(txn.tags)
        deleted = " [deleted]" if txn.is_deleted else ""
        click.echo(
            f"{txn.id:>6}  {txn.occurred_at.date()}  {txn.amount:>10}  "
            f"{txn.sync_status.value:<8}  {txn.category or '-':<16} [{tags}]  {txn.description}{deleted}"
        )


@transactions_group.command("add")
@click.option("--amount", required=True, help="Amount (e.g., -65.99)")
@click.option("--description", required=True, help="Description")
@click.option("--date", "occurred", help="Date or timestamp (default: now)")
@click.option("--account", help="Account id")
@click.option("--category", help="Category")
@click.option("--tags", help="Comma-separated tags")
@click.option("--owner", default="default", help="Owner (default: default)")
@click.pass_context
def add_transaction(
    ctx,
    amount: str,
    description: str,
    occurred: str | None,
    account: str | None,
    category: str | None,
    tags: str | None,
    owner: str,
) -> None:
    """Add a manual transaction. Manual transactions are never pushed to the bank."""
    try:
        txn_amount = parse_amount(amount)
        occurred_at = parse_timestamp(occurred) if occurred else utcnow()
    except ValueError as e:
        click.echo(f"Error: {e}", err=True)
        ctx.exit(1)
        return
    services = get_services(ctx)
    transaction_id = services.transactions.create_transaction(
        amount=txn_amount,
        occurred_at=occurred_at,
        description=description,
        owner_id=owner,
        account_id=account,
        category=category,
        tags=split_tags(tags),
    )
    click.echo(f"Created transaction {transaction_id}")


@transactions_group.command("update")
@click.argument("transaction_id", type=int)
@click.option("--category", help="Category, or empty string to clear")
@click.option("--tags", help="Comma-separated tags (replaces existing), or empty string to clear")
@click.pass_context
def update_transaction(ctx, transaction_id: int, category: str | None, tags: str | None) -> None:
    """Edit category and tags. Bank transactions get the change pushed."""
    if category is None and tags is None:
        click.echo("Error: Nothing to update; pass --category and/or --tags", err=True)
        ctx.exit(1)
    services = get_services(ctx)
    try:
        if category is not None:
            services.transactions.update_category(transaction_id, category)
        if tags is not None:
            services.transactions.update_tags(transaction_id, split_tags(tags))
    except DomainError as e:
        handle_domain_error(ctx, e)
        return
    click.echo(f"Updated transaction {transaction_id}")


@transactions_group.command("acknowledge")
@click.argument("transaction_id", type=int)
@click.pass_context
def acknowledge(ctx, transaction_id: int) -> None:
    """Accept the bank's values for a transaction in conflict."""
    services = get_services(ctx)
    try:
        txn = services.reconciler().acknowledge(transaction_id)
    except (DomainError, SyncError) as e:
        handle_domain_error(ctx, e)
        return
    click.echo(f"Transaction {txn.id} is now {txn.sync_status.value}")


def register_commands(cli):
    """Register transaction commands with main CLI."""
    cli.add_command(transactions_group, name="transactions")
