# Overview: Flask CLI command groups for bootstrap, ledger audit and inventory inspection.

# backend/replenish/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init [--demo-products]
#   Idempotent bootstrap: creates tables and seeds the ledger account (opening balance).
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Ledger audit:
# - python -m flask ledger account
#   Show the account snapshot.
# - python -m flask ledger verify
#   Replay every transaction from zero and compare with stored balances. Exits non-zero on mismatch.
# - python -m flask ledger recover-sagas --older-than 300
#   Resolve remote-ledger sagas left STARTED (confirm or compensate).
# - python -m flask ledger sagas [--status STARTED]
#   List remote-ledger sagas, newest first.
#
# Requests:
# - python -m flask requests transition 12 approve --actor alice
#   Run a lifecycle transition from the shell.
#
# Inventory:
# - python -m flask inventory low-stock [--threshold 5]
#   List counters at or below the threshold (or their own minimum level).

import click
from flask import current_app
from flask.cli import with_appcontext

from .errors import OrderError
from .extensions import db
from .models import InventoryItem, Product
from .money import format_cents
from .services import inventory_service, ledger_service, order_service, saga_service
from .services.concurrency import unit_of_work
from .services.products_service import create_product


DEMO_PRODUCTS = [
    # sku, name, category, unit_price_cents, minimum_level, maximum_level
    ("HW-BOLT-M8", "M8 Hex Bolt (box of 100)", "Hardware", 1250, 20, 200),
    ("PK-TAPE-48", "Packing Tape 48mm", "Packaging", 399, 50, 500),
    ("EL-CABLE-C", "USB-C Cable 1m", "Electronics", 500, 10, 100),
]


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init')
@click.option('--demo-products', is_flag=True, help='Also create a few demo products with empty counters')
@with_appcontext
def init_system(demo_products):
    """
    Initialize the replenishment service.

    Creates:
    - All tables (if missing)
    - The ledger account, seeded from INITIAL_REVENUE / INITIAL_BUDGET
    - Optionally, demo products with inventory counters in warehouse 1
    """
    click.echo("START Initializing replenishment service...")

    db.create_all()
    click.echo("PASS Tables ready")

    with unit_of_work():
        account = ledger_service.ensure_account()
        click.echo(
            f"PASS Ledger account: budget {format_cents(account.available_budget_cents)}, "
            f"revenue {format_cents(account.current_revenue_cents)}"
        )

        if demo_products:
            for sku, name, category, price, min_level, max_level in DEMO_PRODUCTS:
                product = db.session.query(Product).filter_by(sku=sku).first()
                if product is None:
                    product = create_product(sku=sku, name=name, unit_price_cents=price, category=category)
                    click.echo(f"PASS Created product {sku} (ID: {product.id})")
                inventory_service.ensure_counter(
                    product.id, minimum_level=min_level, maximum_level=max_level
                )

    click.echo("DONE Initialization complete")


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

    click.echo("PASS Database reset complete. Run 'python -m flask system init' to initialize.")


@click.group('ledger')
def ledger_group():
    """Ledger inspection and audit commands."""


@ledger_group.command('account')
@with_appcontext
def ledger_account_cli():
    """Show the ledger account snapshot."""
    account = order_service.get_account()
    click.echo(f"Available budget: {account.get('available_budget')}")
    click.echo(f"Total spent:      {account.get('total_spent')}")
    click.echo(f"Current revenue:  {account.get('current_revenue')}")
    click.echo(f"Last updated:     {account.get('last_updated')}")


@ledger_group.command('verify')
@with_appcontext
def ledger_verify_cli():
    """Replay all transactions and compare with stored balances."""
    result = ledger_service.replay_ledger()
    click.echo(f"Transactions replayed: {result['transaction_count']}")
    click.echo(f"Computed balance:      {format_cents(result['computed_balance_cents'])}")
    click.echo(f"Account balance:       {format_cents(result['account_balance_cents'])}")

    if result["first_mismatch"]:
        m = result["first_mismatch"]
        click.echo(
            f"FAIL Transaction {m['transaction_id']}: recorded "
            f"{format_cents(m['recorded_balance_after_cents'])}, expected "
            f"{format_cents(m['expected_balance_after_cents'])}"
        )
    if not result["ok"]:
        raise click.ClickException("Ledger replay does not match stored balances")

    click.echo("PASS Ledger is consistent")


@ledger_group.command('recover-sagas')
@click.option('--older-than', type=int, default=300, show_default=True, help='Seconds a saga must be STARTED')
@with_appcontext
def recover_sagas_cli(older_than):
    """Resolve remote-ledger sagas that never completed."""
    summary = saga_service.recover_incomplete_sagas(older_than_seconds=older_than)
    click.echo(f"Completed:   {len(summary['completed'])} {summary['completed'] or ''}")
    click.echo(f"Compensated: {len(summary['compensated'])} {summary['compensated'] or ''}")
    click.echo(f"Unresolved:  {len(summary['unresolved'])} {summary['unresolved'] or ''}")
    if summary["unresolved"]:
        raise click.ClickException("Some sagas could not be resolved; ledger service unreachable?")


@ledger_group.command('sagas')
@click.option('--status', default=None, help='STARTED, COMPLETED or COMPENSATED')
@click.option('--limit', type=int, default=20, show_default=True)
@with_appcontext
def list_sagas_cli(status, limit):
    """List remote-ledger sagas."""
    rows = saga_service.list_sagas(status, limit=limit)
    if not rows:
        click.echo("No sagas.")
        return

    for saga in rows:
        line = (
            f"  #{saga.id:<5} request {saga.request_id:<6} {saga.operation:<12} "
            f"{saga.status:<11} {saga.ledger_type} {format_cents(saga.amount_cents)}"
        )
        if saga.error:
            line += f" ({saga.error})"
        click.echo(line)


@click.group('requests')
def requests_group():
    """Replenishment request commands."""


@requests_group.command('transition')
@click.argument('request_id', type=int)
@click.argument('transition')
@click.option('--actor', required=True)
@click.option('--notes', default=None)
@with_appcontext
def transition_cli(request_id, transition, actor, notes):
    """Run a lifecycle transition (approve, reject, cancel, mark_ready, abort, deliver)."""
    try:
        result = order_service.execute_transition(request_id, transition, actor=actor, notes=notes)
    except OrderError as e:
        raise click.ClickException(f"{e.code}: {e}")

    if result["noop"]:
        click.echo(f"PASS Request {request_id} already {result['new_status']} (no-op)")
    else:
        click.echo(f"PASS Request {request_id}: {result['old_status']} -> {result['new_status']}")


@click.group('inventory')
def inventory_group():
    """Inventory inspection commands."""


@inventory_group.command('low-stock')
@click.option('--threshold', type=int, default=None, help='Quantity at or below which stock is low')
@with_appcontext
def low_stock_cli(threshold):
    """List low-stock counters."""
    if threshold is None:
        threshold = current_app.config.get("LOW_STOCK_DEFAULT_THRESHOLD")

    rows: list[InventoryItem] = inventory_service.list_low_stock(threshold)
    if not rows:
        click.echo("No low-stock items.")
        return

    for item in rows:
        name = item.product.name if item.product else f"product {item.product_id}"
        click.echo(
            f"  {name:<30} warehouse {item.warehouse_id}: {item.quantity_in_stock} "
            f"(min {item.minimum_level})"
        )


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(ledger_group)
    app.cli.add_command(requests_group)
    app.cli.add_command(inventory_group)
