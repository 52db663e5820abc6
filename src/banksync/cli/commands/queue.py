"""Sync queue commands."""

import json
import threading

import click

from banksync.cli.context import get_services
from banksync.cli.error_handling import handle_domain_error
from banksync.domain.entities import QueueStatus
from banksync.domain.errors import DomainError
from banksync.domain.sync_queue import run_workers


@click.group()
def queue_group():
    """Inspect and process the outbound sync queue."""
    pass


@queue_group.command("list")
@click.option("--status", type=click.Choice([s.value for s in QueueStatus]), help="Filter by status")
@click.option("--transaction", "transaction_id", type=int, help="Filter by transaction ID")
@click.option("--limit", type=int, default=100, help="Maximum items to show (default: 100)")
@click.pass_context
def list_items(ctx, status: str | None, transaction_id: int | None, limit: int) -> None:
    """List queue items, oldest first."""
    services = get_services(ctx)
    items = services.queue.list_items(
        status=QueueStatus(status) if status else None,
        transaction_id=transaction_id,
        limit=limit,
    )
    if not items:
        click.echo("Queue is empty.")
        return
    for item in items:
        line = (
            f"{item.id:>5}  txn {item.transaction_id:<6} {item.field.value:<8} "
            f"{item.status.value:<10} attempts={item.attempts}  {json.dumps(item.new_value)}"
        )
        if item.error:
            line += f"  error: {item.error}"
        click.echo(line)


@queue_group.command("process")
@click.option("--batch-size", type=int, help="Maximum items to process (default from config)")
@click.option("--workers", type=int, default=0, help="Run N polling workers until interrupted")
@click.pass_context
def process_queue(ctx, batch_size: int | None, workers: int) -> None:
    """Push queued changes to the bank.

    Without --workers, processes one batch and exits.
    """
    services = get_services(ctx)
    try:
        client = services.require_client()
    except DomainError as e:
        handle_domain_error(ctx, e)
        return

    services.usage.cleanup()
    if workers:
        stop_event = threading.Event()
        threads = run_workers(
            services.db, client, workers, stop_event, config=services.config, usage=services.usage
        )
        click.echo(f"Started {workers} worker(s); press Ctrl+C to stop")
        try:
            for thread in threads:
                while thread.is_alive():
                    thread.join(timeout=1.0)
        except KeyboardInterrupt:
            stop_event.set()
            for thread in threads:
                thread.join()
        return

    report = services.worker().run_batch(limit=batch_size)
    click.echo(
        f"Processed {report.processed} item(s): {report.completed} completed, "
        f"{report.retrying} retrying, {report.failed} failed"
    )
    if report.deferred:
        click.echo("API budget low; remaining items deferred")


@queue_group.command("retry")
@click.argument("item_id", type=int)
@click.pass_context
def retry_item(ctx, item_id: int) -> None:
    """Put a failed item back in the queue."""
    services = get_services(ctx)
    try:
        services.queue.retry_item(item_id)
    except DomainError as e:
        handle_domain_error(ctx, e)
        return
    click.echo(f"Item {item_id} queued for retry")


def register_commands(cli):
    """Register queue commands with main CLI."""
    cli.add_command(queue_group, name="queue")
