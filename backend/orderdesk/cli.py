# Overview: Flask CLI command groups for bootstrap, inspection, and maintenance.

# backend/orderdesk/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init-db
#   Create any missing tables (idempotent). Prefer `flask db upgrade` once migrations exist.
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Receivables maintenance:
# - python -m flask receivables refresh-overdue [--as-of 2026-01-31]
#   Flag OPEN installments whose due date has passed as OVERDUE.
#
# Stock inspection:
# - python -m flask stock show 12 [--movements 20]
#   Print on_hand / reserved / available for a product and its latest movements.

import click
from flask.cli import with_appcontext

from .extensions import db
from .services import receivables_service, stock_ledger
from .services.errors import ProductNotFound
from .time_utils import parse_iso_date


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init-db')
@with_appcontext
def init_db():
    """Create all tables that do not exist yet."""
    db.create_all()
    click.echo("PASS Schema ready")


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

    click.echo("PASS Database reset complete")


@click.group('receivables')
def receivables_group():
    """Receivables maintenance commands."""


@receivables_group.command('refresh-overdue')
@click.option('--as-of', 'as_of', default=None, help='Reference date YYYY-MM-DD (default: today, UTC)')
@with_appcontext
def refresh_overdue(as_of):
    """Flag past-due OPEN installments as OVERDUE."""
    try:
        as_of_date = parse_iso_date(as_of)
    except ValueError:
        raise click.BadParameter(f"invalid date {as_of!r}", param_hint="--as-of")

    count = receivables_service.refresh_overdue(as_of_date)
    click.echo(f"PASS {count} installment(s) flagged OVERDUE")


@click.group('stock')
def stock_group():
    """Stock inspection commands."""


@stock_group.command('show')
@click.argument('product_id', type=int)
@click.option('--movements', 'movement_limit', default=10, show_default=True, help='Latest movements to list')
@with_appcontext
def show_stock(product_id, movement_limit):
    """Show stock counters and recent movements for a product."""
    try:
        summary = stock_ledger.stock_summary(product_id)
    except ProductNotFound as e:
        raise click.ClickException(e.message)

    click.echo(
        f"{summary['sku']}  on_hand={summary['on_hand']}  "
        f"reserved={summary['reserved']}  available={summary['available']}"
    )

    movements = stock_ledger.list_movements(product_id=product_id, limit=None)
    if movement_limit > 0:
        movements = movements[-movement_limit:]
    else:
        movements = []
    for m in movements:
        click.echo(
            f"  #{m.id:<6} {m.movement_type:<8} qty={m.quantity:<5} "
            f"on_hand={m.on_hand_after:<6} reserved={m.reserved_after:<6} "
            f"order={m.order_id or '-':<6} by={m.actor or '-'}"
        )


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(receivables_group)
    app.cli.add_command(stock_group)
