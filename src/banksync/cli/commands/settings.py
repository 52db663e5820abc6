"""Settings commands."""

import click

from banksync.cli.context import get_services
from banksync.domain.settings import UP_TOKEN_KEY


@click.command("set-token")
@click.argument("token")
@click.option("--owner", default="default", help="Owner the token belongs to")
@click.pass_context
def set_token(ctx, token: str, owner: str) -> None:
    """Store the UP Bank personal access token."""
    services = get_services(ctx)
    services.settings.set(UP_TOKEN_KEY, token, owner_id=owner)
    click.echo(f"Token stored for owner '{owner}'")


@click.command("usage")
@click.pass_context
def usage(ctx) -> None:
    """Show bank API calls used this hour."""
    stats = get_services(ctx).usage.usage_stats()
    click.echo(
        f"API calls this hour: {stats['calls_used']}/{stats['calls_limit']} "
        f"({stats['percent_used']}%), {stats['remaining']} remaining"
    )


def register_commands(cli):
    """Register settings commands with main CLI."""
    cli.add_command(set_token)
    cli.add_command(usage)
