# Overview: Flask CLI command groups for schema bootstrap and inventory ledger checks.

# backend/orderengine/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# Schema:
# - python -m flask orders init-db
#   Create any missing tables (use `flask db upgrade` for migrated databases).
# - python -m flask orders reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Ledger checks:
# - python -m flask inventory reconcile [--business-id 1]
#   Replay every inventory ledger and report records whose quantity does not match.
#   Exits with status 1 when any record is out of balance.

import click
from flask.cli import with_appcontext

from .extensions import db
from .services.inventory_service import InventoryService


@click.group('orders')
def orders_group():
    """Order database bootstrap commands."""


@orders_group.command('init-db')
@with_appcontext
def init_db():
    """Create all tables that do not exist yet."""
    db.create_all()
    click.echo("PASS Tables created.")


@orders_group.command('reset-db')
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


@click.group('inventory')
def inventory_group():
    """Inventory ledger commands."""


@inventory_group.command('reconcile')
@click.option('--business-id', type=int, default=None, help='Only check records of this business')
@with_appcontext
def reconcile_cli(business_id):
    """
    Check initial_quantity + SUM(transactions) == current_quantity for every record.
    """
    reports = InventoryService(db.session).reconcile_all(business_id=business_id)
    mismatched = [r for r in reports if not r["balanced"]]

    click.echo(f"Checked {len(reports)} inventory records.")
    for r in mismatched:
        click.echo(
            f"FAIL inventory {r['inventory_id']}: expected {r['expected_quantity']}, "
            f"current {r['current_quantity']} ({r['transaction_count']} transactions)"
        )

    if mismatched:
        raise click.exceptions.Exit(1)
    click.echo("PASS All inventory records reconcile.")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(orders_group)
    app.cli.add_command(inventory_group)
