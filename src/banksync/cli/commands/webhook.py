"""UP Bank webhook registration commands."""

import click

from banksync.bank.client import UpBankClient
from banksync.cli.context import get_services
from banksync.cli.error_handling import handle_domain_error
from banksync.domain.errors import DomainError, SyncError, ValidationError


def get_up_client(ctx: click.Context) -> UpBankClient:
    services = get_services(ctx)
    try:
        client = services.require_client()
        if not isinstance(client, UpBankClient):
            raise ValidationError("Webhook management needs an UP Bank client")
    except DomainError as e:
        handle_domain_error(ctx, e)
    return client


@click.group()
def webhook_group():
    """Manage the UP Bank webhooks that deliver transaction events."""
    pass


@webhook_group.command("list")
@click.pass_context
def list_webhooks(ctx) -> None:
    """List registered webhooks."""
    client = get_up_client(ctx)
    try:
        webhooks = client.list_webhooks()
    except SyncError as e:
        handle_domain_error(ctx, e)
        return
    if not webhooks:
        click.echo("No webhooks registered.")
        return
    for webhook in webhooks:
        line = f"{webhook.id}  {webhook.url}"
        if webhook.description:
            line += f"  ({webhook.description})"
        click.echo(line)


@webhook_group.command("register")
@click.argument("url")
@click.option("--description", help="Description shown in UP Bank")
@click.pass_context
def register_webhook(ctx, url: str, description: str | None) -> None:
    """Register URL to receive transaction events."""
    client = get_up_client(ctx)
    try:
        webhook = client.create_webhook(url, description)
    except SyncError as e:
        handle_domain_error(ctx, e)
        return
    click.echo(f"Registered webhook {webhook.id} for {webhook.url}")
    if webhook.secret_key:
        click.echo(f"Secret key (shown once): {webhook.secret_key}")


@webhook_group.command("delete")
@click.argument("webhook_id")
@click.pass_context
def delete_webhook(ctx, webhook_id: str) -> None:
    """Delete a webhook."""
    client = get_up_client(ctx)
    try:
        client.delete_webhook(webhook_id)
    except SyncError as e:
        handle_domain_error(ctx, e)
        return
    click.echo(f"Deleted webhook {webhook_id}")


@webhook_group.command("ping")
@click.argument("webhook_id")
@click.pass_context
def ping_webhook(ctx, webhook_id: str) -> None:
    """Send a PING event to a webhook."""
    client = get_up_client(ctx)
    try:
        event_id = client.ping_webhook(webhook_id)
    except SyncError as e:
        handle_domain_error(ctx, e)
        return
    click.echo(f"Sent PING event {event_id}")


@webhook_group.command("logs")
@click.argument("webhook_id")
@click.option("--limit", type=int, default=20, help="Deliveries to show (default: 20)")
@click.pass_context
def webhook_logs(ctx, webhook_id: str, limit: int) -> None:
    """Show recent delivery attempts of a webhook."""
    client = get_up_client(ctx)
    try:
        deliveries = client.webhook_logs(webhook_id, page_size=limit)
    except SyncError as e:
        handle_domain_error(ctx, e)
        return
    if not deliveries:
        click.echo("No deliveries yet.")
        return
    for delivery in deliveries:
        when = delivery.created_at.isoformat(sep=" ") if delivery.created_at else "-"
        status = delivery.status_code if delivery.status_code is not None else "-"
        click.echo(f"{when}  {delivery.delivery_status:<18} {status}")


def register_commands(cli):
    """Register webhook commands with main CLI."""
    cli.add_command(webhook_group, name="webhook")
