# Overview: Flask CLI command groups for bootstrap, shift inspection and ledger maintenance.

# backend/pharmavault/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init-db
#   Create missing tables (use `flask db upgrade` for migrated deployments).
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
# - python -m flask system check-connectivity
#   Run the connectivity probe once and print the result.
# - python -m flask system schema
#   Show whether the credit-sale columns are present.
#
# Shift inspection/recovery:
# - python -m flask shifts list --limit 20
#   List recent shifts.
# - python -m flask shifts active
#   Show the open shift and how long it has been open.
# - python -m flask shifts preview 12 [--counted 100000]
#   Reconciliation figures for a shift without closing it.
# - python -m flask shifts force-close 12 --admin manager --yes
#   Close a shift the cashier never closed.
#
# Ledger:
# - python -m flask ledger show 12
#   List a shift's transactions.
# - python -m flask ledger debts
#   Outstanding credit debts per customer.
# - python -m flask ledger import-legacy export.json
#   Import a JSON export of the previous store (idempotent).

import click
from flask import current_app
from flask.cli import with_appcontext

from .errors import CashRegisterError
from .extensions import db, connectivity
from .money import format_currency
from .services import import_service, ledger_service, reconciliation_service, schema_service, shift_service


def _money(amount) -> str:
    if amount is None:
        return "-"
    return format_currency(
        amount,
        current_app.config.get("CURRENCY_CODE", "GNF"),
        current_app.config.get("CURRENCY_DECIMALS", 0),
    )


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init-db')
@with_appcontext
def init_db():
    """Create all tables that do not exist yet."""
    db.create_all()
    schema_service.reset_schema_cache()
    click.echo("PASS Database tables created")


@system_group.command('reset-db')
@click.option('--yes', is_flag=True, help='Skip confirmation')
@with_appcontext
def reset_db(yes):
    """
    DANGER: Drop all tables and recreate schema.

    This will DELETE ALL DATA!
    """
    if not yes:
        click.confirm("WARN This will DELETE ALL DATA. Are you sure?", abort=True)

    click.echo("DELETE  Dropping all tables...")
    db.drop_all()
    click.echo("BUILD  Creating all tables...")
    db.create_all()
    schema_service.reset_schema_cache()
    click.echo("PASS Database reset complete")


@system_group.command('check-connectivity')
@with_appcontext
def check_connectivity():
    """Probe the backing store once."""
    online = connectivity.check_now()
    if online:
        click.echo("PASS Online")
    else:
        click.echo("FAIL Offline: writes are disabled")


@system_group.command('schema')
@with_appcontext
def schema_status():
    """Report credit-sale column readiness."""
    readiness = schema_service.get_credit_schema_readiness(refresh=True)
    click.echo(f"Credit sales: {readiness.status}")
    if readiness.missing_columns:
        click.echo(f"Missing columns: {', '.join(readiness.missing_columns)}")


@click.group('shifts')
def shifts_group():
    """Shift inspection and recovery commands."""


@shifts_group.command('list')
@click.option('--cashier', help='Filter by cashier ID')
@click.option('--limit', type=int, default=20, help='Max shifts to show')
@with_appcontext
def list_shifts_cli(cashier, limit):
    """
    List recent shifts.

    Example:
        flask shifts list
        flask shifts list --cashier awa --limit 5
    """
    shifts = shift_service.list_shifts(cashier_id=cashier, limit=limit)

    if not shifts:
        click.echo("No shifts found.")
        return

    click.echo("\n" + "="*110)
    click.echo(f"{'ID':<5} {'Cashier':<15} {'Status':<8} {'Started':<20} {'Duration':<10} {'Expected':<16} {'Difference':<16} {'Reason'}")
    click.echo("="*110)

    for shift in shifts:
        status = "OPEN" if shift.is_active else "CLOSED"
        duration = shift_service.format_duration(shift_service.shift_duration(shift))
        click.echo(
            f"{shift.id:<5} {shift.cashier_id:<15} {status:<8} {str(shift.started_at)[:19]:<20} {duration:<10} "
            f"{_money(shift.expected_cash):<16} {_money(shift.cash_difference):<16} {shift.close_reason or '-'}"
        )

    click.echo("="*110 + "\n")


@shifts_group.command('active')
@with_appcontext
def active_shift_cli():
    """Show the open shift, if any."""
    shift = shift_service.get_active_shift()
    if shift is None:
        click.echo("No open shift.")
        return

    duration = shift_service.format_duration(shift_service.shift_duration(shift))
    click.echo(f"Shift {shift.id} open for {shift.cashier_id} since {shift.started_at} ({duration})")


@shifts_group.command('preview')
@click.argument('shift_id', type=int)
@click.option('--counted', help='Counted cash to compare against')
@with_appcontext
def preview_shift_cli(shift_id, counted):
    """Reconciliation figures for a shift, without closing it."""
    try:
        summary = reconciliation_service.compute_reconciliation_preview(shift_id, counted_cash=counted)
    except CashRegisterError as e:
        raise click.ClickException(e.message)

    click.echo(f"Cash sales:          {_money(summary.cash_total)}")
    click.echo(f"Mobile money:        {_money(summary.mobile_money_total)}")
    click.echo(f"Insurance:           {_money(summary.insurance_total)}")
    click.echo(f"Credit outstanding:  {_money(summary.credit_outstanding_total)}")
    click.echo(f"Expenses:            {_money(summary.expense_total)}")
    click.echo(f"Returns:             {_money(summary.returns_total)}")
    click.echo(f"Expected cash:       {_money(summary.expected_cash)}")
    click.echo(f"Net cash to remit:   {_money(summary.net_cash_to_remit)}")
    if summary.counted_cash is not None:
        click.echo(f"Counted cash:        {_money(summary.counted_cash)}")
        click.echo(f"Difference:          {_money(summary.cash_difference)} ({summary.outcome})")


@shifts_group.command('force-close')
@click.argument('shift_id', type=int)
@click.option('--admin', 'admin_id', required=True, help='Administrator closing the shift')
@click.option('--yes', is_flag=True, help='Skip confirmation')
@with_appcontext
def force_close_cli(shift_id, admin_id, yes):
    """Close a shift without a cash count (recovery only)."""
    if not yes:
        click.confirm(f"WARN Force-close shift {shift_id} without counting the drawer?", abort=True)

    try:
        shift = reconciliation_service.force_close_shift(shift_id, admin_id)
    except CashRegisterError as e:
        raise click.ClickException(e.message)

    click.echo(f"PASS Shift {shift.id} ({shift.cashier_id}) force-closed by {admin_id}")


@click.group('ledger')
def ledger_group():
    """Ledger inspection and import commands."""


@ledger_group.command('show')
@click.argument('shift_id', type=int)
@with_appcontext
def show_ledger_cli(shift_id):
    """List a shift's transactions."""
    transactions = ledger_service.get_shift_transactions(shift_id)
    if not transactions:
        click.echo("No transactions found.")
        return

    click.echo("\n" + "="*100)
    click.echo(f"{'ID':<6} {'Type':<12} {'Method':<14} {'Status':<10} {'Amount':<16} {'Patient part':<16} {'Created'}")
    click.echo("="*100)
    for tx in transactions:
        click.echo(
            f"{tx.id:<6} {tx.type:<12} {tx.payment_method:<14} {tx.status:<10} "
            f"{_money(tx.amount):<16} {_money(tx.patient_part):<16} {str(tx.created_at)[:19]}"
        )
    click.echo("="*100 + "\n")


@ledger_group.command('debts')
@with_appcontext
def list_debts_cli():
    """Outstanding credit debts per customer."""
    debts = ledger_service.list_credit_debts()
    if not debts:
        click.echo("No outstanding credit.")
        return

    for debt in debts:
        phone = debt.customer_phone or "-"
        click.echo(f"{debt.customer_name:<25} {phone:<15} {_money(debt.outstanding):<16} ({debt.entries} entries) key={debt.customer_key}")


@ledger_group.command('import-legacy')
@click.argument('path', type=click.Path(exists=True, dir_okay=False))
@with_appcontext
def import_legacy_cli(path):
    """Import a JSON export of the previous store."""
    with open(path, encoding="utf-8") as fh:
        text = fh.read()

    try:
        result = import_service.import_legacy_export(import_service.load_export(text))
    except CashRegisterError as e:
        raise click.ClickException(e.message)

    click.echo(
        f"PASS Imported {result.shifts_imported} shifts ({result.shifts_skipped} skipped), "
        f"{result.transactions_imported} transactions ({result.transactions_skipped} skipped)"
    )
    if result.method_fallbacks:
        click.echo(f"WARN {len(result.method_fallbacks)} transactions had an unknown payment method and were filed as CASH")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(shifts_group)
    app.cli.add_command(ledger_group)
