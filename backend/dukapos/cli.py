# Overview: Flask CLI command groups for bootstrap and ledger verification.

# backend/dukapos/cli.py
# Commands (run from the backend directory, FLASK_APP=wsgi.py):
# - python -m flask system init [--store "Main Store"] [--admin-password ...]
#   Create tables, a default store and an admin user (idempotent).
# - python -m flask users create --username jane --password "Passw0rd!" --role cashier --store-id 1
#   Create a staff user.
# - python -m flask stock verify [--product-id 7]
#   Compare each product's quantity with opening quantity + ledger deltas.
# - python -m flask loyalty verify
#   Compare each loyalty balance with its transaction sum.

import click
from flask.cli import with_appcontext

from .extensions import db
from .models import Store, User
from .permissions import ROLES
from .services import auth_service, loyalty_service, stock_ledger_service
from .validation import DOMAIN_ERRORS


@click.group('system')
def system_group():
    """System bootstrap commands."""


@system_group.command('init')
@click.option('--store', 'store_name', default='Main Store', help='Default store name')
@click.option('--store-code', default='MAIN', help='Default store code')
@click.option('--admin-username', default='admin', help='Admin username')
@click.option('--admin-password', default='Password123!', help='Admin password')
@with_appcontext
def init_system(store_name, store_code, admin_username, admin_password):
    """
    Create tables, a default store and an admin user.

    SECURITY: Change the admin password immediately in production!
    """
    click.echo("START Initializing DukaPOS...")
    db.create_all()

    store = db.session.query(Store).filter_by(code=store_code).first()
    if not store:
        store = Store(name=store_name, code=store_code)
        db.session.add(store)
        db.session.commit()
        click.echo(f"PASS Created default store: {store.name} (ID: {store.id})")
    else:
        click.echo(f"PASS Using existing store: {store.name} (ID: {store.id})")

    if db.session.query(User).filter_by(username=admin_username).first():
        click.echo(f"WARN  User '{admin_username}' already exists, skipping...")
    else:
        try:
            user = auth_service.create_user(admin_username, admin_password, role="admin", store_id=store.id)
            click.echo(f"PASS Created admin user: {user.username} (ID: {user.id})")
        except DOMAIN_ERRORS as e:
            db.session.rollback()
            raise click.ClickException(f"Failed to create admin user: {e}")

    click.echo("DONE System initialized")


@click.group('users')
def users_group():
    """Staff user commands."""


@users_group.command('create')
@click.option('--username', prompt=True, help='Username')
@click.option('--password', prompt=True, hide_input=True, confirmation_prompt=True, help='Password')
@click.option('--role', type=click.Choice(ROLES), default='cashier', show_default=True)
@click.option('--store-id', type=int, default=None, help='Store ID (omit for org-level users)')
@click.option('--email', default=None)
@with_appcontext
def create_user_cli(username, password, role, store_id, email):
    """Create a staff user."""
    try:
        user = auth_service.create_user(username, password, role=role, store_id=store_id, email=email)
    except DOMAIN_ERRORS as e:
        db.session.rollback()
        raise click.ClickException(str(e))
    click.echo(f"PASS Created user: {user.username} (ID: {user.id}) with role '{user.role}'")


@click.group('stock')
def stock_group():
    """Stock ledger commands."""


@stock_group.command('verify')
@click.option('--product-id', type=int, default=None, help='Check a single product')
@with_appcontext
def verify_stock(product_id):
    """Report products whose quantity disagrees with their stock log."""
    try:
        rows = stock_ledger_service.verify_ledger(product_id)
    except DOMAIN_ERRORS as e:
        raise click.ClickException(str(e))

    click.echo(f"{'ID':<6} {'SKU':<16} {'Opening':>8} {'Logged':>8} {'Expected':>9} {'Actual':>8}  Status")
    mismatches = 0
    for row in rows:
        status = "OK" if row["ok"] else "MISMATCH"
        if not row["ok"]:
            mismatches += 1
        click.echo(
            f"{row['product_id']:<6} {row['sku']:<16} {row['opening_quantity']:>8} "
            f"{row['logged_delta']:>8} {row['expected_quantity']:>9} {row['quantity']:>8}  {status}"
        )

    if mismatches:
        raise click.ClickException(f"{mismatches} product(s) do not reconcile with the stock log")
    click.echo(f"PASS {len(rows)} product(s) reconcile")


@click.group('loyalty')
def loyalty_group():
    """Loyalty commands."""


@loyalty_group.command('verify')
@with_appcontext
def verify_loyalty():
    """Report customers whose balance disagrees with their transactions."""
    rows = loyalty_service.verify_balances()
    bad = [row for row in rows if not row["ok"]]
    for row in bad:
        click.echo(
            f"MISMATCH customer {row['customer_id']}: balance {row['points']}, "
            f"transactions sum {row['transaction_sum']}"
        )
    if bad:
        raise click.ClickException(f"{len(bad)} customer(s) do not reconcile")
    click.echo(f"PASS {len(rows)} customer balance(s) reconcile")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(users_group)
    app.cli.add_command(stock_group)
    app.cli.add_command(loyalty_group)
