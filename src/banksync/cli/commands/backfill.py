"""Backfill command."""

import click

from banksync.cli.context import get_services
from banksync.cli.error_handling import handle_domain_error
from banksync.domain.errors import DomainError


@click.command("backfill")
@click.option("--max-pages", type=int, help="Stop after this many pages")
@click.option("--page-size", type=int, default=100, help="Transactions per page (default: 100)")
@click.option("--restart", is_flag=True, help="Ignore saved progress and start from the newest page")
@click.pass_context
def backfill(ctx, max_pages: int | None, page_size: int, restart: bool) -> None:
    """Pull transactions from the bank into the local store."""
    services = get_services(ctx)
    try:
        service = services.backfill()
    except DomainError as e:
        handle_domain_error(ctx, e)
        return
    report = service.run(max_pages=max_pages, page_size=page_size, restart=restart)
    click.echo(f"Fetched {report.pages} page(s), {report.synced} transaction(s) stored")
    for external_id, error in report.item_errors:
        click.echo(f"  {external_id}: {error}", err=True)
    if report.error:
        click.echo(f"Error: {report.error}", err=True)
        ctx.exit(1)
    click.echo("Backfill complete." if report.completed else "Backfill paused; run again to continue.")


def register_commands(cli):
    """Register backfill command with main CLI."""
    cli.add_command(backfill)
