"""
Pytest fixtures for factory ledger backend tests.

Provides an in-memory database, one user per role, a small catalog
(products, supplies, price offers), and helpers to seed stock.
"""

from datetime import timedelta

import pytest
from factory_ledger import create_app
from factory_ledger.extensions import db
from factory_ledger.models import User, Customer, Product, Supply, PriceOffer, PriceRoleAccess
from factory_ledger.models.catalog import DEDUCT_ON_SALE, DEDUCT_ON_PRODUCTION
from factory_ledger.models.inventory import MOVEMENT_PRODUCTION_IN, MOVEMENT_PURCHASE_IN
from factory_ledger.permissions import (
    ROLES,
    ROLE_OWNER,
    ROLE_ADMIN,
    ROLE_FACTORY_CASHIER,
    ROLE_FIELD_SELLER,
    auth_context_for_user,
)
from factory_ledger.services import stock_service
from factory_ledger.time_utils import utcnow


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
    })

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Create fresh database for each test."""
    with app.app_context():
        app.config['SUPPLY_NEGATIVE_POLICY'] = 'reject'
        app.config['SYNC_MAX_RETRIES'] = 3

        # Clear all data but keep schema (core deletes bypass the ledger guards)
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        yield db.session

        # Cleanup after test
        db.session.rollback()


@pytest.fixture(scope='function')
def users(db_session):
    """One active user per role, keyed by role."""
    created = {}
    for role in ROLES:
        user = User(username=role.lower(), name=role.title(), role=role)
        db_session.add(user)
        created[role] = user
    db_session.commit()
    return created


@pytest.fixture(scope='function')
def contexts(users):
    """AuthContext per role."""
    return {role: auth_context_for_user(user) for role, user in users.items()}


@pytest.fixture(scope='function')
def catalog(db_session):
    """
    Two products and their supplies:
    - ice: each pack sold consumes one bag
    - gallon: refillable kit (shell + cap on new units), one seal per sale,
      one label per unit produced
    """
    ice = Product(sku="ICE-5KG", name="Ice Pack 5kg", unit="pack", min_stock=5)
    gallon = Product(sku="WTR-19L", name="Water Gallon 19L", unit="gallon", min_stock=5, kit_kind="GALLON")
    db_session.add_all([ice, gallon])
    db_session.flush()

    bag = Supply(sku="BAG", name="Ice bag", linked_product_id=ice.id, deduct_on=DEDUCT_ON_SALE, deduct_per_unit=1)
    shell = Supply(sku="SHELL", name="Gallon shell", kit_kind="GALLON")
    cap = Supply(sku="CAP", name="Gallon cap", kit_kind="GALLON")
    seal = Supply(sku="SEAL", name="Gallon seal", linked_product_id=gallon.id,
                  deduct_on=DEDUCT_ON_SALE, deduct_per_unit=1)
    label = Supply(sku="LABEL", name="Gallon label", linked_product_id=gallon.id,
                   deduct_on=DEDUCT_ON_PRODUCTION, deduct_per_unit=1)
    db_session.add_all([bag, shell, cap, seal, label])
    db_session.commit()

    return {
        "ice": ice,
        "gallon": gallon,
        "bag": bag,
        "shell": shell,
        "cap": cap,
        "seal": seal,
        "label": label,
    }


def make_price(product, amount_cents, channel, roles, **kwargs) -> PriceOffer:
    offer = PriceOffer(product_id=product.id, amount_cents=amount_cents, channel=channel, **kwargs)
    offer.role_access = [PriceRoleAccess(role=role) for role in roles]
    db.session.add(offer)
    db.session.commit()
    return offer


@pytest.fixture(scope='function')
def prices(catalog):
    ice, gallon = catalog["ice"], catalog["gallon"]
    sellers = [ROLE_OWNER, ROLE_ADMIN, ROLE_FACTORY_CASHIER, ROLE_FIELD_SELLER]
    return {
        "ice_factory": make_price(ice, 1500, "FACTORY", [ROLE_OWNER, ROLE_ADMIN, ROLE_FACTORY_CASHIER]),
        "ice_field": make_price(ice, 1300, "FIELD", [ROLE_OWNER, ROLE_ADMIN, ROLE_FIELD_SELLER]),
        "gallon_all": make_price(gallon, 500, "ALL", sellers),
        "ice_owner_only": make_price(ice, 1000, "ALL", [ROLE_OWNER]),
        "ice_expired": make_price(
            ice, 900, "ALL", sellers,
            valid_until=utcnow() - timedelta(days=1),
        ),
    }


@pytest.fixture(scope='function')
def customer(db_session):
    customer = Customer(name="Toko Sejahtera", phone="0800")
    db_session.add(customer)
    db_session.commit()
    return customer


def stock_product(product, quantity, user):
    return stock_service.record_movement(product.id, MOVEMENT_PRODUCTION_IN, quantity, user.id)


def stock_supply(supply, quantity, user):
    return stock_service.record_movement(
        supply.id, MOVEMENT_PURCHASE_IN, quantity, user.id, ledger=stock_service.SUPPLY_LEDGER
    )


def product_balance(product):
    return stock_service.current_balance(product.id, stock_service.PRODUCT_LEDGER)


def supply_balance(supply):
    return stock_service.current_balance(supply.id, stock_service.SUPPLY_LEDGER)


@pytest.fixture(scope='function')
def stocked(catalog, users):
    """Catalog with product and supply stock on hand."""
    owner = users[ROLE_OWNER]
    stock_product(catalog["ice"], 100, owner)
    stock_product(catalog["gallon"], 50, owner)
    for key in ("bag", "shell", "cap", "seal", "label"):
        stock_supply(catalog[key], 200, owner)
    return catalog


def headers_for(user) -> dict:
    """Helper to create the actor header for a user."""
    return {'X-User-Id': str(user.id)}
