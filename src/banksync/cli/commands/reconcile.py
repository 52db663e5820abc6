"""Conflict reconciliation command."""

import click

from banksync.cli.context import get_services
from banksync.cli.error_handling import handle_domain_error
from banksync.domain.errors import DomainError


@click.command("reconcile")
@click.option("--owner", help="Only this owner's transactions")
@click.option("--limit", type=int, help="Maximum transactions to check")
@click.pass_context
def reconcile(ctx, owner: str | None, limit: int | None) -> None:
    """Compare local transactions with the bank and flag conflicts."""
    services = get_services(ctx)
    try:
        reconciler = services.reconciler()
    except DomainError as e:
        handle_domain_error(ctx, e)
        return
    report = reconciler.run(owner_id=owner, limit=limit)
    click.echo(
        f"Checked {report.checked} transaction(s): {report.in_sync} in sync, "
        f"{len(report.conflicts)} conflict(s), {len(report.errors)} error(s)"
    )
    for transaction_id, message in report.conflicts:
        click.echo(f"  Conflict on {transaction_id}: {message}")
    for transaction_id, message in report.errors:
        click.echo(f"  Error on {transaction_id}: {message}", err=True)


def register_commands(cli):
    """Register reconcile command with main CLI."""
    cli.add_command(reconcile)
