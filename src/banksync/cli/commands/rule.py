"""Auto-tag rule management commands."""

import json

import click

from banksync.cli.context import get_services
from banksync.cli.error_handling import handle_domain_error
from banksync.domain.entities import AutotagRule, RuleStatus
from banksync.domain.errors import DomainError


def format_rule(rule: AutotagRule) -> str:
    search = json.dumps(rule.search_criteria, sort_keys=True)
    apply = json.dumps(rule.apply_criteria, sort_keys=True)
    return f"{rule.id:>4}  {rule.status.value:<8}  {rule.name}  search={search} apply={apply}"


@click.group()
def rule_group():
    """Manage auto-tag rules."""
    pass


@rule_group.command("create")
@click.argument("name")
@click.option("--description", help="Description substring; separate alternatives with '|'")
@click.option("--amount", help="Exact amount (signed)")
@click.option("--amount-min", help="Minimum absolute amount")
@click.option("--amount-max", help="Maximum absolute amount")
@click.option("--account", help="Bank account id")
@click.option("--date-from", help="First transaction date (YYYY-MM-DD)")
@click.option("--date-to", help="Last transaction date (YYYY-MM-DD)")
@click.option("--type", "txn_type", type=click.Choice(["income", "expense"]), help="Transaction type")
@click.option("--category", help="Category to apply")
@click.option("--tags", help="Comma-separated tags to apply; may use {mmyy} style patterns")
@click.option("--remove-old-tags", is_flag=True, help="Replace existing tags instead of adding")
@click.option("--owner", default="default", help="Rule owner (default: default)")
@click.option("--draft", is_flag=True, help="Create the rule as a draft (not evaluated)")
@click.option("--confirm-match-all", is_flag=True, help="Allow a rule without search criteria")
@click.pass_context
def create_rule(
    ctx,
    name: str,
    description: str | None,
    amount: str | None,
    amount_min: str | None,
    amount_max: str | None,
    account: str | None,
    date_from: str | None,
    date_to: str | None,
    txn_type: str | None,
    category: str | None,
    tags: str | None,
    remove_old_tags: bool,
    owner: str,
    draft: bool,
    confirm_match_all: bool,
) -> None:
    """Create an auto-tag rule.

    Examples:
        banksync rule create "NBN" --description "nbn|aussie broadband" --category internet
        banksync rule create "Bills tag" --amount-min 50 --tags "bills,bill-{mmyy}"
    """
    search = {
        "description": description,
        "amount": amount,
        "amount_min": amount_min,
        "amount_max": amount_max,
        "account": account,
        "date_from": date_from,
        "date_to": date_to,
        "type": txn_type,
    }
    apply = {"category": category, "tags": tags, "remove_old_tags": remove_old_tags}
    services = get_services(ctx)
    try:
        rule_id = services.rules.create_rule(
            name=name,
            search_criteria={k: v for k, v in search.items() if v is not None},
            apply_criteria={k: v for k, v in apply.items() if v},
            owner_id=owner,
            status=RuleStatus.DRAFT if draft else RuleStatus.ACTIVE,
            confirm_match_all=confirm_match_all,
        )
    except DomainError as e:
        handle_domain_error(ctx, e)
        return
    click.echo(f"Created rule '{name}' (ID: {rule_id})")


@rule_group.command("list")
@click.option("--status", type=click.Choice([s.value for s in RuleStatus]), help="Filter by status")
@click.option("--owner", help="Filter by owner")
@click.pass_context
def list_rules(ctx, status: str | None, owner: str | None) -> None:
    """List rules in evaluation order."""
    services = get_services(ctx)
    rules = services.rules.list_rules(owner_id=owner, status=RuleStatus(status) if status else None)
    if not rules:
        click.echo("No rules found.")
        return
    for rule in rules:
        click.echo(format_rule(rule))


@rule_group.command("show")
@click.argument("rule_id", type=int)
@click.pass_context
def show_rule(ctx, rule_id: int) -> None:
    """Show a rule with its match statistics."""
    services = get_services(ctx)
    try:
        rule = services.rules.get_rule(rule_id)
    except DomainError as e:
        handle_domain_error(ctx, e)
        return
    click.echo(f"Rule {rule.id}: {rule.name}")
    click.echo(f"  Status:   {rule.status.value}")
    click.echo(f"  Owner:    {rule.owner_id}")
    click.echo(f"  Search:   {json.dumps(rule.search_criteria, sort_keys=True)}")
    click.echo(f"  Apply:    {json.dumps(rule.apply_criteria, sort_keys=True)}")
    click.echo(f"  Matches:  {rule.matches}")
    click.echo(f"  Last run: {rule.last_run or 'never'}")
    click.echo(f"  Last hit: {rule.last_matched or 'never'}")


def _set_status(ctx, rule_id: int, status: RuleStatus) -> None:
    services = get_services(ctx)
    try:
        rule = services.rules.set_status(rule_id, status)
    except DomainError as e:
        handle_domain_error(ctx, e)
        return
    click.echo(f"Rule {rule.id} is now {rule.status.value}")


@rule_group.command("activate")
@click.argument("rule_id", type=int)
@click.pass_context
def activate_rule(ctx, rule_id: int) -> None:
    """Activate a rule."""
    _set_status(ctx, rule_id, RuleStatus.ACTIVE)


@rule_group.command("deactivate")
@click.argument("rule_id", type=int)
@click.pass_context
def deactivate_rule(ctx, rule_id: int) -> None:
    """Deactivate a rule."""
    _set_status(ctx, rule_id, RuleStatus.INACTIVE)


@rule_group.command("delete")
@click.argument("rule_id", type=int)
@click.pass_context
def delete_rule(ctx, rule_id: int) -> None:
    """Delete a rule."""
    services = get_services(ctx)
    try:
        services.rules.delete_rule(rule_id)
    except DomainError as e:
        handle_domain_error(ctx, e)
        return
    click.echo(f"Deleted rule {rule_id}")


@rule_group.command("preview")
@click.argument("rule_id", type=int)
@click.option("--limit", type=int, default=20, help="Maximum transactions to show")
@click.pass_context
def preview_rule(ctx, rule_id: int, limit: int) -> None:
    """Show transactions a rule would match without changing anything."""
    services = get_services(ctx)
    try:
        rule = services.rules.get_rule(rule_id)
        matches = services.engine.preview(rule.search_criteria, owner_id=rule.owner_id, limit=limit)
    except DomainError as e:
        handle_domain_error(ctx, e)
        return
    if not matches:
        click.echo("No matching transactions.")
        return
    for txn in matches:
        click.echo(f"{txn.id:>6}  {txn.occurred_at.date()}  {txn.amount:>10}  {txn.description}")


@rule_group.command("run")
@click.option("--owner", help="Only this owner's transactions")
@click.pass_context
def run_rules(ctx, owner: str | None) -> None:
    """Evaluate rules against all unprocessed transactions."""
    services = get_services(ctx)
    report = services.engine.run_unprocessed(owner_id=owner)
    click.echo(f"Evaluated {report.evaluated} transaction(s), {report.changed} changed")
    for transaction_id, error in report.errors:
        click.echo(f"  Transaction {transaction_id}: {error}", err=True)


def register_commands(cli):
    """Register rule commands with main CLI."""
    cli.add_command(rule_group, name="rule")
