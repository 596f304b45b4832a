# Overview: Flask CLI commands for schema bootstrap and shift reports.

# backend/pharmapos/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask core <command> [options]
#
# - python -m flask core init-db
#   Create any missing tables. Safe to run repeatedly.
# - python -m flask core reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
# - python -m flask core close-report 12
#   Print the cash reconciliation of shift 12 (running figures while open).
# - python -m flask core low-stock
#   List active products at or below their minimum stock.

import click
from flask.cli import with_appcontext

from .errors import NotFoundError
from .extensions import db
from .services import cash_shift_service, inventory_service


@click.group('core')
def core_group():
    """Schema bootstrap and reporting commands."""


@core_group.command('init-db')
@with_appcontext
def init_db():
    """Create all tables that do not exist yet."""
    db.create_all()
    click.echo("PASS Schema ready.")


@core_group.command('reset-db')
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

    click.echo("PASS Database reset complete.")


@core_group.command('close-report')
@click.argument('shift_id', type=int)
@with_appcontext
def close_report(shift_id):
    """Cash reconciliation for one shift."""
    try:
        summary = cash_shift_service.get_shift_summary(shift_id)
    except NotFoundError as e:
        raise click.ClickException(e.message)

    shift = summary["shift"]
    click.echo(f"Shift {shift['id']}  user {shift['user_id']}  status {shift['status']}")
    click.echo(f"  opened   {shift['opened_at']}")
    if shift["closed_at"]:
        click.echo(f"  closed   {shift['closed_at']}")
    click.echo(f"  initial    {summary['initial']:>12}")
    click.echo(f"  cash sales {summary['sales_cash']:>12}")
    click.echo(f"  inflows    {summary['inflows']:>12}")
    click.echo(f"  outflows   {summary['outflows']:>12}")
    click.echo(f"  expected   {summary['expected']:>12}")
    if "real" in summary:
        click.echo(f"  counted    {summary['real']:>12}")
        click.echo(f"  difference {summary['difference']:>12}")


@core_group.command('low-stock')
@with_appcontext
def low_stock():
    """Active products at or below min_stock."""
    products = inventory_service.get_low_stock_alerts()
    if not products:
        click.echo("No products below minimum stock.")
        return
    for p in products:
        click.echo(f"{p.sku:<16} {p.name:<40} stock {p.stock:>6}  min {p.min_stock:>6}")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(core_group)
