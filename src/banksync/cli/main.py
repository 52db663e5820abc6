"""Main CLI entry point."""

import click

from banksync.cli.commands import (
    backfill,
    ingest,
    queue,
    reconcile,
    rule,
    serve,
    settings,
    transactions,
    webhook,
)
from banksync.cli.error_handling import handle_domain_error
from banksync.config import SyncConfig
from banksync.database.factories import create_sqlite_database
from banksync.domain.errors import ValidationError
from banksync.logging import setup_logging


@click.group()
@click.option(
    "--db-path",
    type=click.Path(),
    help="Path to database file (overrides BANKSYNC_DB_PATH environment variable)",
    envvar="BANKSYNC_DB_PATH",
)
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    default="WARNING",
    envvar="BANKSYNC_LOG_LEVEL",
    help="Log level (default: WARNING)",
)
@click.option("--json-logs", is_flag=True, help="Emit logs as JSON lines")
@click.pass_context
def cli(ctx, db_path: str | None, log_level: str, json_logs: bool):
    """banksync - bank transaction sync and auto-tagging.

    Ingests UP Bank webhooks, applies auto-tag rules and pushes category and
    tag changes back to the bank.
    """
    ctx.ensure_object(dict)

    # Initialize database connection only when actually running a command
    # (not when showing help)
    if ctx.invoked_subcommand is not None:
        setup_logging(log_level, json_format=json_logs)
        try:
            ctx.obj["config"] = SyncConfig.from_env()
        except ValidationError as e:
            handle_domain_error(ctx, e)
        db = create_sqlite_database(database_path=db_path)
        db.connect()
        db.initialize_schema()
        ctx.obj["db"] = db


# Register all commands
ingest.register_commands(cli)
rule.register_commands(cli)
queue.register_commands(cli)
transactions.register_commands(cli)
reconcile.register_commands(cli)
backfill.register_commands(cli)
settings.register_commands(cli)
serve.register_commands(cli)
webhook.register_commands(cli)


def main():
    """Main entry point for CLI."""
    cli()


if __name__ == "__main__":
    main()
