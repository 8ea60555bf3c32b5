import base64
import logging
import os
from datetime import date

import click
from dotenv import load_dotenv

from ledger_tracker import budgets as budget_cmds
from ledger_tracker import categories as category_cmds
from ledger_tracker import ledger
from ledger_tracker import recurring as recurring_cmds
from ledger_tracker import reports
from ledger_tracker.ai import parse_receipt, parse_text, suggestion_to_transaction
from ledger_tracker.config import load_config
from ledger_tracker.core.errors import LedgerError
from ledger_tracker.core.models import (
    EXPENSE,
    FREQUENCIES,
    KINDS,
    Budget,
    RecurringTransaction,
    SavingsGoal,
    Transaction,
)
from ledger_tracker.database import LedgerStore
from ledger_tracker.outputs import get_output
from ledger_tracker.session import LedgerSession

KIND_CHOICE = click.Choice(list(KINDS))
DATE = click.DateTime(formats=["%Y-%m-%d"])


class LedgerGroup(click.Group):
    """Click group that reports ledger errors as clean CLI failures."""

    def invoke(self, ctx):
        try:
            return super().invoke(ctx)
        except LedgerError as exc:
            raise click.ClickException(str(exc)) from exc


def _day(value):
    return value.date() if value else None


def _fmt_tx(tx: Transaction) -> str:
    sign = "+" if tx.kind == "income" else "-"
    goal = f" [goal {tx.savings_goal_id}]" if tx.savings_goal_id else ""
    return f"{tx.id:>5}  {tx.date.isoformat()}  {sign}{tx.amount:,.2f}  {tx.category:<16} {tx.title}{goal}"


def _echo_failures(result):
    for rule_id, reason in sorted(result.failed.items()):
        click.echo(f"Recurring rule {rule_id} failed and will be retried: {reason}", err=True)


@click.group(cls=LedgerGroup)
@click.option(
    '--db', 'db_path',
    default=None,
    type=click.Path(dir_okay=False),
    help='SQLite database file (defaults to db_path from the config)'
)
@click.option(
    '--user', 'user_id',
    envvar='SMARTLEDGER_USER',
    default=None,
    help='Identifier of the signed-in user'
)
@click.option(
    '--config', 'config_path',
    default=None,
    type=click.Path(exists=True, dir_okay=False),
    help='Path to config.yaml'
)
@click.option(
    '--env-file', 'env_file',
    default=None,
    type=click.Path(exists=True, dir_okay=False),
    help='Optional .env file containing API tokens for AI providers'
)
@click.option(
    '--log-level',
    default=None,
    type=click.Choice(['DEBUG', 'INFO', 'WARNING', 'ERROR'], case_sensitive=False),
    help='Logging verbosity (overrides config and SMARTLEDGER_LOG_LEVEL)'
)
@click.option(
    '--skip-recurring',
    is_flag=True,
    default=False,
    help='Do not generate due recurring transactions on start'
)
@click.pass_context
def main(ctx, db_path, user_id, config_path, env_file, log_level, skip_recurring):
    """
    Track income, expenses, savings goals, budgets and recurring bills
    for one signed-in user. Due recurring transactions are generated
    each time a session starts.
    """
    if env_file:
        load_dotenv(env_file)

    cfg = load_config(config_path)
    level = log_level or os.getenv("SMARTLEDGER_LOG_LEVEL") or cfg.get('log_level', 'INFO')
    logging.basicConfig(level=str(level).upper())

    store = LedgerStore(db_path or cfg['db_path'])
    session = LedgerSession(store, user_id, cfg)
    ctx.obj = session

    if session.is_authenticated:
        category_cmds.seed_categories(session)
        run_on_start = (cfg.get('recurring') or {}).get('run_on_start', True)
        if run_on_start and not skip_recurring:
            result = recurring_cmds.process_recurring(session)
            if result.count:
                click.echo(f"Generated {result.count} recurring transaction(s).", err=True)
            _echo_failures(result)


# -----------------------------------------------------------------------------
# Transactions
# -----------------------------------------------------------------------------

@main.command('add')
@click.argument('title')
@click.argument('amount', type=float)
@click.option('--kind', type=KIND_CHOICE, default=EXPENSE, show_default=True)
@click.option('--category', default=None, help='Category name (falls back to Other)')
@click.option('--date', 'on', type=DATE, default=None, help='YYYY-MM-DD, defaults to today')
@click.option('--notes', default=None)
@click.option('--goal', 'goal_id', type=int, default=None, help='Savings goal to link')
@click.pass_obj
def add_cmd(session, title, amount, kind, category, on, notes, goal_id):
    """Record a transaction."""
    tx = Transaction(
        title=title,
        amount=amount,
        kind=kind,
        category=category,
        date=_day(on) or date.today(),
        notes=notes,
        savings_goal_id=goal_id,
    )
    tx_id = ledger.add_transaction(session, tx)
    click.echo(f"Added transaction {tx_id} ({tx.category}).")


@main.command('edit')
@click.argument('tx_id', type=int)
@click.option('--title', default=None)
@click.option('--amount', type=float, default=None)
@click.option('--kind', type=KIND_CHOICE, default=None)
@click.option('--category', default=None)
@click.option('--date', 'on', type=DATE, default=None)
@click.option('--notes', default=None)
@click.option('--goal', 'goal_id', type=int, default=None, help='Relink to another savings goal')
@click.option('--unlink', is_flag=True, default=False, help='Remove the savings goal link')
@click.pass_obj
def edit_cmd(session, tx_id, title, amount, kind, category, on, notes, goal_id, unlink):
    """Edit a transaction; linked goal balances follow the change."""
    tx = ledger.get_transaction(session, tx_id)
    if tx is None:
        raise click.ClickException(f"Transaction {tx_id} not found")
    if title is not None:
        tx.title = title
    if amount is not None:
        tx.amount = amount
    if kind is not None:
        tx.kind = kind
    if category is not None:
        tx.category = category
    if on is not None:
        tx.date = _day(on)
    if notes is not None:
        tx.notes = notes
    if goal_id is not None:
        tx.savings_goal_id = goal_id
    if unlink:
        tx.savings_goal_id = None
    ledger.update_transaction(session, tx)
    click.echo(f"Updated transaction {tx_id}.")


@main.command('delete')
@click.argument('tx_ids', nargs=-1, type=int, required=True)
@click.pass_obj
def delete_cmd(session, tx_ids):
    """Delete one or more transactions."""
    deleted = ledger.delete_transactions(session, tx_ids)
    click.echo(f"Deleted {deleted} transaction(s).")


@main.command('list')
@click.option('--from', 'start', type=DATE, default=None)
@click.option('--to', 'end', type=DATE, default=None)
@click.option('--kind', type=KIND_CHOICE, default=None)
@click.option('--category', default=None)
@click.pass_obj
def list_cmd(session, start, end, kind, category):
    """List transactions, newest first."""
    txs = ledger.list_transactions(session, _day(start), _day(end), kind, category)
    if not txs:
        click.echo("No transactions.")
        return
    for tx in txs:
        click.echo(_fmt_tx(tx))


def _echo_suggestion(suggestion):
    click.echo(
        f"title={suggestion.title!r} amount={suggestion.amount} kind={suggestion.kind} "
        f"category={suggestion.category!r} date={suggestion.date}"
    )


@main.command('parse')
@click.argument('text')
@click.option('--save', is_flag=True, default=False, help='Record the suggestion after parsing')
@click.pass_obj
def parse_cmd(session, text, save):
    """Ask the AI parser to turn free text into a transaction suggestion."""
    suggestion = parse_text(text)
    if suggestion is None:
        raise click.ClickException("Could not parse the input.")
    _echo_suggestion(suggestion)
    if save:
        tx_id = ledger.add_transaction(session, suggestion_to_transaction(suggestion))
        click.echo(f"Added transaction {tx_id}.")


@main.command('parse-receipt')
@click.argument('image', type=click.Path(exists=True, dir_okay=False))
@click.option('--title', default=None, help='Title to use when the receipt has none')
@click.option('--save', is_flag=True, default=False, help='Record the expense after parsing')
@click.pass_obj
def parse_receipt_cmd(session, image, title, save):
    """Scan a receipt image into an expense suggestion."""
    with open(image, 'rb') as fp:
        encoded = base64.b64encode(fp.read()).decode('ascii')
    suggestion = parse_receipt(encoded)
    if suggestion is None:
        raise click.ClickException("Could not read the receipt.")
    _echo_suggestion(suggestion)
    if save:
        tx = suggestion_to_transaction(
            suggestion,
            title=suggestion.title or title or os.path.basename(image),
            notes=f"Scanned from {os.path.basename(image)}",
        )
        tx_id = ledger.add_transaction(session, tx)
        click.echo(f"Added transaction {tx_id}.")


# -----------------------------------------------------------------------------
# Savings goals
# -----------------------------------------------------------------------------

@main.group('goal', cls=LedgerGroup)
def goal_group():
    """Savings goals."""


@goal_group.command('add')
@click.argument('name')
@click.argument('target', type=float)
@click.option('--deadline', type=DATE, default=None)
@click.option('--color', default='#8b5cf6', show_default=True)
@click.option('--icon', default=None)
@click.pass_obj
def goal_add(session, name, target, deadline, color, icon):
    goal = SavingsGoal(name=name, target_amount=target, deadline=_day(deadline), color=color, icon=icon)
    goal_id = ledger.add_goal(session, goal)
    click.echo(f"Added savings goal {goal_id}.")


@goal_group.command('fund')
@click.argument('goal_id', type=int)
@click.argument('amount', type=float)
@click.option('--record-expense', is_flag=True, default=False,
              help='Also record an expense so the wallet balance drops')
@click.pass_obj
def goal_fund(session, goal_id, amount, record_expense):
    tx_id = ledger.fund_goal(session, goal_id, amount, record_expense=record_expense)
    if tx_id:
        click.echo(f"Recorded transaction {tx_id} into goal {goal_id}.")
    else:
        click.echo(f"Added {amount:,.2f} to goal {goal_id}.")


@goal_group.command('list')
@click.pass_obj
def goal_list(session):
    for goal in ledger.list_goals(session):
        done = " (completed)" if goal.is_completed else ""
        click.echo(
            f"{goal.id:>5}  {goal.name:<20} {goal.current_amount:,.2f} / "
            f"{goal.target_amount:,.2f}  {goal.progress:.0%}{done}"
        )


@goal_group.command('delete')
@click.argument('goal_id', type=int)
@click.pass_obj
def goal_delete(session, goal_id):
    ledger.delete_goal(session, goal_id)
    click.echo(f"Deleted savings goal {goal_id}.")


# -----------------------------------------------------------------------------
# Budgets
# -----------------------------------------------------------------------------

@main.group('budget', cls=LedgerGroup)
def budget_group():
    """Monthly category budgets."""


@budget_group.command('set')
@click.argument('category')
@click.argument('limit', type=float)
@click.pass_obj
def budget_set(session, category, limit):
    budget_id = budget_cmds.save_budget(session, Budget(category=category, limit=limit))
    click.echo(f"Budget {budget_id} for {category} set to {limit:,.2f}.")


@budget_group.command('list')
@click.pass_obj
def budget_list(session):
    overview = budget_cmds.budget_overview(session)
    for status in overview.statuses:
        flag = "  OVER" if status.over_limit else ""
        click.echo(
            f"{status.budget.id:>5}  {status.budget.category:<16} "
            f"{status.spent:,.2f} / {status.budget.limit:,.2f}{flag}"
        )
    click.echo(
        f"Budgeted {overview.total_budgeted:,.2f}, spent {overview.total_spent:,.2f}, "
        f"remaining {overview.remaining:,.2f}; safe to spend "
        f"{overview.daily_safe_spend:,.2f}/day for {overview.days_remaining} day(s)."
    )


@budget_group.command('delete')
@click.argument('budget_id', type=int)
@click.pass_obj
def budget_delete(session, budget_id):
    budget_cmds.delete_budget(session, budget_id)
    click.echo(f"Deleted budget {budget_id}.")


# -----------------------------------------------------------------------------
# Recurring rules
# -----------------------------------------------------------------------------

@main.group('recurring', cls=LedgerGroup)
def recurring_group():
    """Recurring bills and income."""


@recurring_group.command('add')
@click.argument('title')
@click.argument('amount', type=float)
@click.option('--kind', type=KIND_CHOICE, default=EXPENSE, show_default=True)
@click.option('--category', default='Other', show_default=True)
@click.option('--frequency', type=click.Choice(list(FREQUENCIES)), default='monthly', show_default=True)
@click.option('--next-due', type=DATE, required=True, help='First due date, YYYY-MM-DD')
@click.pass_obj
def recurring_add(session, title, amount, kind, category, frequency, next_due):
    rule = RecurringTransaction(
        title=title,
        amount=amount,
        kind=kind,
        category=category,
        frequency=frequency,
        next_due_date=_day(next_due),
    )
    rule_id = recurring_cmds.add_recurring(session, rule)
    click.echo(f"Added recurring rule {rule_id}.")


@recurring_group.command('list')
@click.pass_obj
def recurring_list(session):
    for rule in recurring_cmds.list_recurring(session):
        state = "active" if rule.active else "paused"
        click.echo(
            f"{rule.id:>5}  {rule.next_due_date.isoformat()}  {rule.frequency:<8} "
            f"{rule.kind:<8} {rule.amount:,.2f}  {rule.title} ({state})"
        )


@recurring_group.command('pause')
@click.argument('rule_id', type=int)
@click.pass_obj
def recurring_pause(session, rule_id):
    recurring_cmds.set_recurring_active(session, rule_id, False)
    click.echo(f"Paused recurring rule {rule_id}.")


@recurring_group.command('resume')
@click.argument('rule_id', type=int)
@click.pass_obj
def recurring_resume(session, rule_id):
    recurring_cmds.set_recurring_active(session, rule_id, True)
    click.echo(f"Resumed recurring rule {rule_id}.")


@recurring_group.command('delete')
@click.argument('rule_id', type=int)
@click.pass_obj
def recurring_delete(session, rule_id):
    recurring_cmds.delete_recurring(session, rule_id)
    click.echo(f"Deleted recurring rule {rule_id}.")


@recurring_group.command('run')
@click.pass_obj
def recurring_run(session):
    """Generate any transactions that are due now."""
    result = recurring_cmds.process_recurring(session)
    click.echo(f"Generated {result.count} transaction(s).")
    _echo_failures(result)


# -----------------------------------------------------------------------------
# Categories
# -----------------------------------------------------------------------------

@main.group('category', cls=LedgerGroup)
def category_group():
    """Income and expense categories."""


@category_group.command('list')
@click.option('--kind', type=KIND_CHOICE, default=None)
@click.pass_obj
def category_list(session, kind):
    for cat in category_cmds.list_categories(session, kind):
        marker = "" if cat.is_default else "  (custom)"
        click.echo(f"{cat.id:>5}  {cat.kind:<8} {cat.name}{marker}")


@category_group.command('add')
@click.argument('name')
@click.option('--kind', type=KIND_CHOICE, default=EXPENSE, show_default=True)
@click.pass_obj
def category_add(session, name, kind):
    cat_id = category_cmds.add_category(session, name, kind)
    click.echo(f"Category {cat_id}: {name} ({kind}).")


@category_group.command('delete')
@click.argument('category_id', type=int)
@click.pass_obj
def category_delete(session, category_id):
    category_cmds.delete_category(session, category_id)
    click.echo(f"Deleted category {category_id}.")


# -----------------------------------------------------------------------------
# Reports and export
# -----------------------------------------------------------------------------

@main.command('report')
@click.option('--days', default=30, show_default=True, help='Days in the daily series')
@click.option('--limit', default=5, show_default=True, help='Recent transactions and bills to show')
@click.pass_obj
def report_cmd(session, days, limit):
    """Show this month's dashboard."""
    stats = reports.monthly_stats(session)
    health = reports.health_score(session)
    click.echo(
        f"Balance {reports.balance(session):,.2f} | this month: income {stats.income:,.2f}, "
        f"expense {stats.expense:,.2f}, savings rate {stats.savings_rate:.1f}%"
    )
    click.echo(f"Health score {health.score}/100 ({health.label})")

    click.echo("\nTop expense categories:")
    for row in reports.category_breakdown(session, EXPENSE)[:5]:
        click.echo(f"  {row['category']:<16} {row['total']:,.2f}")

    active_days = [b for b in reports.daily_series(session, days) if b.income or b.expense]
    click.echo(f"\nActive days in the last {days}: {len(active_days)}")

    click.echo("\nUpcoming bills:")
    for bill in reports.upcoming_bills(session, limit):
        click.echo(f"  {bill.next_due_date.isoformat()}  {bill.amount:,.2f}  {bill.title}")

    click.echo("\nRecent transactions:")
    for tx in reports.recent_transactions(session, limit):
        click.echo("  " + _fmt_tx(tx))


@main.command('export')
@click.argument('output_format', default='csv')
@click.pass_obj
def export_cmd(session, output_format):
    """Export the ledger using a configured output module (csv, json)."""
    modules = session.config.get('output_modules', {})
    if output_format not in modules:
        raise click.BadParameter(
            f"choose from {', '.join(sorted(modules))}", param_hint='OUTPUT_FORMAT'
        )
    outputter = get_output(output_format, session.config)
    path = outputter.write(reports.export_snapshot(session), session.user_id)
    click.echo(f"Exported to {path}.")
