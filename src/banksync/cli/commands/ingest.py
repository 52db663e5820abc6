"""Webhook ingestion commands."""

import json

import click

from banksync.cli.context import get_services
from banksync.cli.error_handling import handle_domain_error
from banksync.domain.errors import ValidationError
from banksync.domain.ingestion import IngestResult


def echo_result(result: IngestResult) -> None:
    line = f"Event {result.event_id}: {result.status}"
    if result.transaction_id is not None:
        line += f" (transaction {result.transaction_id})"
    if result.evaluation is not None and result.evaluation.matched_rule_ids:
        rules = ", ".join(str(r) for r in result.evaluation.matched_rule_ids)
        line += f" matched rules {rules}"
    if result.error:
        line += f" - {result.error}"
    click.echo(line)


@click.command("ingest")
@click.argument("file", type=click.File("r"))
@click.pass_context
def ingest_file(ctx, file) -> None:
    """Ingest webhook payloads from a JSON file ('-' for stdin).

    The file holds one event object or a list of them.

    Examples:
        banksync ingest event.json
        cat events.json | banksync ingest -
    """
    services = get_services(ctx)
    try:
        data = json.load(file)
    except json.JSONDecodeError as e:
        handle_domain_error(ctx, ValidationError(f"Invalid JSON: {e}"))
        return

    events = data if isinstance(data, list) else [data]
    failures = 0
    for index, body in enumerate(events, start=1):
        try:
            result = services.ingestion.ingest(body)
        except ValidationError as e:
            click.echo(f"Event #{index} rejected: {e}", err=True)
            failures += 1
            continue
        echo_result(result)
        if result.status == "error":
            failures += 1

    click.echo(f"\nIngested {len(events) - failures} of {len(events)} event(s)")
    if failures:
        ctx.exit(1)


@click.command("retry-events")
@click.option("--limit", type=int, help="Maximum number of events to retry")
@click.pass_context
def retry_events(ctx, limit: int | None) -> None:
    """Re-process stored webhook events that failed earlier."""
    services = get_services(ctx)
    results = services.ingestion.retry_unprocessed(limit=limit)
    if not results:
        click.echo("No unprocessed events.")
        return
    for result in results:
        echo_result(result)


def register_commands(cli):
    """Register ingestion commands with main CLI."""
    cli.add_command(ingest_file)
    cli.add_command(retry_events)
