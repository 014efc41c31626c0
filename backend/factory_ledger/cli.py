# Overview: Flask CLI command groups for bootstrap, ledger inspection, and the overdue sweep.

# backend/factory_ledger/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py.
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap:
# - python -m flask system init [--demo]
#   Idempotent bootstrap: one user per role; --demo adds a sample catalog.
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Users:
# - python -m flask users list
# - python -m flask users create --username seller2 --name "Field Seller 2" --role FIELD_SELLER
#
# Ledger inspection:
# - python -m flask ledger verify [--product-id 1] [--supply-id 3]
#   Replay ledgers and report any balance_after that disagrees with the signed sum.
#
# Scheduled jobs:
# - python -m flask sales sweep-overdue [--as-of 2026-01-31]
#   Mark overdue credit sales and blacklist their customers.

import click
from flask.cli import with_appcontext

from .extensions import db
from .models import User, Product, Supply, PriceOffer, PriceRoleAccess
from .models.catalog import DEDUCT_ON_SALE
from .permissions import (
    ROLES,
    ROLE_OWNER,
    ROLE_ADMIN,
    ROLE_FACTORY_CASHIER,
    ROLE_FIELD_SELLER,
    ROLE_VIEWER,
)
from .services import stock_service
from .services.overdue_service import sweep_overdue
from .time_utils import parse_iso_date


DEFAULT_USERS = [
    ("owner", "Owner", ROLE_OWNER),
    ("admin", "Administrator", ROLE_ADMIN),
    ("cashier", "Factory Cashier", ROLE_FACTORY_CASHIER),
    ("seller", "Field Seller", ROLE_FIELD_SELLER),
    ("viewer", "Viewer", ROLE_VIEWER),
]


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init')
@click.option('--demo', is_flag=True, help='Also create a sample product/supply/price catalog')
@with_appcontext
def init_system(demo):
    """
    Initialize the ledger: tables, one user per role, optional demo catalog.

    Safe to run repeatedly; existing rows are left alone.
    """
    click.echo("START Initializing factory ledger...")
    db.create_all()

    for username, name, role in DEFAULT_USERS:
        if db.session.query(User).filter_by(username=username).first():
            click.echo(f"WARN  User '{username}' already exists, skipping...")
            continue
        db.session.add(User(username=username, name=name, role=role))
        click.echo(f"PASS Created user: {username} with role '{role}'")
    db.session.commit()

    if demo:
        _seed_demo_catalog()

    click.echo("DONE Factory ledger initialized")


def _seed_demo_catalog():
    if db.session.query(Product).first():
        click.echo("WARN  Catalog already has products, skipping demo data...")
        return

    ice = Product(sku="ICE-5KG", name="Ice Pack 5kg", unit="pack", min_stock=20)
    gallon = Product(sku="WTR-19L", name="Water Gallon 19L", unit="gallon", min_stock=10, kit_kind="GALLON")
    db.session.add_all([ice, gallon])
    db.session.flush()

    db.session.add_all([
        Supply(sku="BAG-5KG", name="Plastic bag 5kg", unit="pcs",
               linked_product_id=ice.id, deduct_on=DEDUCT_ON_SALE, deduct_per_unit=1),
        Supply(sku="GAL-SHELL", name="Gallon shell", unit="pcs", kit_kind="GALLON"),
        Supply(sku="GAL-CAP", name="Gallon cap", unit="pcs", kit_kind="GALLON"),
        Supply(sku="GAL-SEAL", name="Gallon seal", unit="pcs",
               linked_product_id=gallon.id, deduct_on=DEDUCT_ON_SALE, deduct_per_unit=1),
    ])

    offers = [
        (ice, "Factory retail", 1500, "FACTORY", [ROLE_OWNER, ROLE_ADMIN, ROLE_FACTORY_CASHIER]),
        (ice, "Field agent", 1300, "FIELD", [ROLE_OWNER, ROLE_ADMIN, ROLE_FIELD_SELLER]),
        (gallon, "Refill", 500, "ALL", list(ROLES)),
    ]
    for product, label, amount, channel, roles in offers:
        offer = PriceOffer(product_id=product.id, label=label, amount_cents=amount, channel=channel)
        offer.role_access = [PriceRoleAccess(role=role) for role in roles]
        db.session.add(offer)

    db.session.commit()
    click.echo("PASS Created demo catalog: 2 products, 4 supplies, 3 price offers")


@system_group.command('reset-db')
@click.option('--yes', is_flag=True, help='Skip confirmation')
@with_appcontext
def reset_db(yes):
    """
    DANGER: Drop all tables and recreate schema.

    This will DELETE ALL DATA, ledgers included.
    """
    if not yes:
        click.confirm("WARN This will DELETE ALL DATA. Are you sure?", abort=True)

    click.echo("DELETE  Dropping all tables...")
    db.drop_all()

    click.echo("BUILD  Creating all tables...")
    db.create_all()

    click.echo("PASS Database reset complete. Run 'python -m flask system init' to initialize.")


@click.group('users')
def users_group():
    """User inspection and bootstrap commands."""


@users_group.command('list')
@with_appcontext
def list_users():
    users = db.session.query(User).order_by(User.id.asc()).all()
    if not users:
        click.echo("No users found. Run 'python -m flask system init' first.")
        return
    for user in users:
        state = "active" if user.is_active else "inactive"
        click.echo(f"{user.id:>4}  {user.username:<16} {user.role:<16} {state}")


@users_group.command('create')
@click.option('--username', prompt=True, help='Username')
@click.option('--name', prompt=True, help='Display name')
@click.option('--role', type=click.Choice(ROLES), prompt=True, help='Role')
@with_appcontext
def create_user_cli(username, name, role):
    if db.session.query(User).filter_by(username=username).first():
        click.echo(f"FAIL User '{username}' already exists")
        raise SystemExit(1)
    user = User(username=username, name=name, role=role)
    db.session.add(user)
    db.session.commit()
    click.echo(f"PASS Created user: {username} (ID: {user.id}) with role '{role}'")


@click.group('ledger')
def ledger_group():
    """Ledger inspection commands."""


@ledger_group.command('verify')
@click.option('--product-id', type=int, help='Only verify this product')
@click.option('--supply-id', type=int, help='Only verify this supply')
@with_appcontext
def verify_ledgers(product_id, supply_id):
    """Check every stored balance_after against the running signed sum."""
    targets = []
    if product_id is None and supply_id is None:
        targets += [(p.id, stock_service.PRODUCT_LEDGER) for p in db.session.query(Product).order_by(Product.id)]
        targets += [(s.id, stock_service.SUPPLY_LEDGER) for s in db.session.query(Supply).order_by(Supply.id)]
    if product_id is not None:
        targets.append((product_id, stock_service.PRODUCT_LEDGER))
    if supply_id is not None:
        targets.append((supply_id, stock_service.SUPPLY_LEDGER))

    broken = 0
    for entity_id, ledger in targets:
        report = stock_service.verify_ledger(entity_id, ledger)
        if report["consistent"]:
            click.echo(
                f"PASS {ledger.name} {entity_id}: {report['movement_count']} movements, "
                f"balance {report['current_balance']}"
            )
        else:
            broken += 1
            click.echo(
                f"FAIL {ledger.name} {entity_id}: balance {report['current_balance']} "
                f"!= signed sum {report['ledger_sum']} "
                f"(first bad movement {report['first_inconsistent_movement_id']})"
            )

    if broken:
        raise SystemExit(1)


@click.group('sales')
def sales_group():
    """Scheduled sales jobs."""


@sales_group.command('sweep-overdue')
@click.option('--as-of', help='Treat this date (YYYY-MM-DD) as today')
@with_appcontext
def sweep_overdue_cli(as_of):
    """Mark unpaid credit sales past due as overdue and blacklist their customers."""
    result = sweep_overdue(parse_iso_date(as_of) if as_of else None)
    click.echo(f"PASS Updated {len(result['overdue_sales'])} sales to overdue status.")
    if result["blacklisted_customers"]:
        ids = ", ".join(str(i) for i in result["blacklisted_customers"])
        click.echo(f"WARN Blacklisted customers: {ids}")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(users_group)
    app.cli.add_command(ledger_group)
    app.cli.add_command(sales_group)
