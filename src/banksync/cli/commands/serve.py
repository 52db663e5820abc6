"""HTTP server command."""

import threading

import click
import uvicorn

from banksync.api.app import create_app
from banksync.cli.context import get_services
from banksync.domain.sync_queue import run_workers


@click.command("serve")
@click.option("--host", default="127.0.0.1", help="Bind address (default: 127.0.0.1)")
@click.option("--port", type=int, default=8000, help="Port (default: 8000)")
@click.option("--workers", type=int, default=1, help="Sync queue worker threads (0 to disable)")
@click.pass_context
def serve(ctx, host: str, port: int, workers: int) -> None:
    """Run the webhook and rules API with background sync workers."""
    services = get_services(ctx)
    app = create_app(services.db, services=services)

    stop_event = threading.Event()
    if workers and services.client is not None:
        run_workers(
            services.db,
            services.client,
            workers,
            stop_event,
            config=services.config,
            usage=services.usage,
        )
    elif workers:
        click.echo("No bank token configured; sync workers not started", err=True)

    try:
        uvicorn.run(app, host=host, port=port, log_level="info")
    finally:
        stop_event.set()


def register_commands(cli):
    """Register serve command with main CLI."""
    cli.add_command(serve)
