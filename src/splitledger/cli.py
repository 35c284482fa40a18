"""Click CLI entrypoint for inspecting and repairing a splitledger state directory."""

import logging
import sys

import click

from . import __version__, guards, templates
from .commands import BalanceEngine
from .models import Group
from .state import LedgerStore, NotFoundError

state_dir_option = click.option(
    "--state-dir",
    default=None,
    envvar="SPLITLEDGER_STATE_DIR",
    help="State directory (default: ~/.splitledger)",
)


def _load_group(store: LedgerStore, group_id: str) -> Group:
    try:
        return store.require_group(group_id)
    except NotFoundError:
        click.echo(f"Group '{group_id}' not found.")
        sys.exit(1)


def _name_for(group: Group):
    def name(member_id: str) -> str:
        member = group.member_for_id(member_id)
        return member.display_name if member else member_id

    return name


@click.group()
@click.version_option(version=__version__)
@click.option(
    "--log-level",
    default="WARNING",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    help="Logging verbosity",
)
def cli(log_level: str) -> None:
    """splitledger - shared expense balances and debt simplification."""
    logging.basicConfig(
        level=getattr(logging, log_level.upper()),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@cli.command()
@state_dir_option
def groups(state_dir: str | None) -> None:
    """List all groups."""
    store = LedgerStore(state_dir)
    all_groups = store.list_groups()

    if not all_groups:
        click.echo("No groups found.")
        return

    click.echo("Groups:")
    for group in all_groups:
        expenses = store.list_expenses(group_id=group.id)
        simplify = "on" if group.simplify_debts_enabled else "off"
        click.echo(
            f"  • {group.name} [{group.id}] ({group.currency}) - "
            f"{len(group.members)} members, {len(expenses)} expenses, simplify {simplify}"
        )


@cli.command()
@click.argument("group_id")
@state_dir_option
def balances(group_id: str, state_dir: str | None) -> None:
    """Show cached net balances for a group."""
    store = LedgerStore(state_dir)
    group = _load_group(store, group_id)
    name = _name_for(group)

    if not group.user_balances:
        click.echo(templates.ALL_SETTLED)
        return

    click.echo(f"📊 {group.name} Balances:\n")
    for member_id, balance in group.user_balances.items():
        click.echo(f"• {templates.format_balance_line(name(member_id), balance, group.currency)}")


@cli.command()
@click.argument("group_id")
@state_dir_option
def debts(group_id: str, state_dir: str | None) -> None:
    """Show who owes whom in a group."""
    store = LedgerStore(state_dir)
    group = _load_group(store, group_id)
    view = BalanceEngine(store, audit_enabled=False).group_debts(group_id)

    if view.warning:
        click.echo(view.warning)
    click.echo(templates.format_debts_list(view.debts, group.currency, _name_for(group)))


@cli.command()
@click.argument("group_id")
@state_dir_option
def spending(group_id: str, state_dir: str | None) -> None:
    """Show total group spend and each member's share of it."""
    store = LedgerStore(state_dir)
    group = _load_group(store, group_id)
    engine = BalanceEngine(store, audit_enabled=False)
    summary = engine.spending_summary(group_id)

    total = templates.format_currency(summary.total_spend, group.currency)
    click.echo(f"🧾 {group.name} Spending: {total}\n")
    for row in engine.group_spending(group_id):
        click.echo(
            f"• {templates.format_spend_line(row.name, row.spend, row.percentage, group.currency)}"
        )


@cli.command()
@click.argument("group_id", required=False)
@click.option("--personal", is_flag=True, help="Rebuild personal (non-group) breakdowns")
@state_dir_option
def reconcile(group_id: str | None, personal: bool, state_dir: str | None) -> None:
    """Rebuild cached balances from the ledger."""
    store = LedgerStore(state_dir)
    engine = BalanceEngine(store)

    if personal:
        engine.reconcile(None)
        click.echo("Reconciled personal balances.")
        return

    targets = [_load_group(store, group_id)] if group_id else store.list_groups()
    for group in targets:
        updated = engine.reconcile(group.id)
        assert updated is not None
        status = "" if updated.simplification_available else " (simplification unavailable)"
        click.echo(f"Reconciled {updated.name} [{updated.id}]{status}")


@cli.command()
@click.argument("group_id")
@state_dir_option
def check(group_id: str, state_dir: str | None) -> None:
    """Check whether a group can be deleted."""
    store = LedgerStore(state_dir)
    group = _load_group(store, group_id)
    result = guards.can_delete_group(group)

    if result.allowed:
        click.echo(f"✅ {group.name} is settled and can be deleted.")
        return

    click.echo(f"❌ {result.reason}")
    sys.exit(1)


def main() -> None:
    """Main entry point."""
    cli()


if __name__ == "__main__":
    main()
