"""Stock engine: balances, negative guard, ledger immutability, verification."""

import pytest

from factory_ledger.errors import InsufficientStock, NotFound, PermissionDenied, ValidationError
from factory_ledger.models import InventoryMovement
from factory_ledger.models.inventory import (
    LedgerImmutableError,
    MOVEMENT_ADJUSTMENT,
    MOVEMENT_PRODUCTION_IN,
    MOVEMENT_PURCHASE_IN,
    MOVEMENT_SALE_FACTORY,
    MOVEMENT_SALE_OUT,
    REFERENCE_SALE,
)
from factory_ledger.permissions import ROLE_ADMIN, ROLE_OWNER, ROLE_VIEWER
from factory_ledger.services import stock_service
from factory_ledger.services.stock_service import PRODUCT_LEDGER, SUPPLY_LEDGER, LedgerReference


def test_production_then_sales_scenario(db_session, catalog, users):
    ice = catalog["ice"]
    owner = users[ROLE_OWNER]

    assert stock_service.current_balance(ice.id) == 0

    stock_service.record_movement(ice.id, MOVEMENT_PRODUCTION_IN, 100, owner.id)
    assert stock_service.current_balance(ice.id) == 100

    stock_service.record_movement(ice.id, MOVEMENT_SALE_FACTORY, 30, owner.id)
    assert stock_service.current_balance(ice.id) == 70

    with pytest.raises(InsufficientStock) as exc:
        stock_service.record_movement(ice.id, MOVEMENT_SALE_FACTORY, 80, owner.id)

    assert exc.value.details["current_balance"] == 70
    assert exc.value.details["requested_quantity"] == 80
    assert stock_service.current_balance(ice.id) == 70
    assert db_session.query(InventoryMovement).filter_by(product_id=ice.id).count() == 2


def test_balance_after_tracks_signed_sum(db_session, catalog, users):
    ice = catalog["ice"]
    owner = users[ROLE_OWNER]

    stock_service.record_movement(ice.id, MOVEMENT_PRODUCTION_IN, 10, owner.id)
    stock_service.record_movement(ice.id, MOVEMENT_ADJUSTMENT, -3, owner.id)
    stock_service.record_movement(ice.id, MOVEMENT_SALE_FACTORY, 2, owner.id)
    stock_service.record_movement(ice.id, MOVEMENT_ADJUSTMENT, 5, owner.id)

    movements = (
        db_session.query(InventoryMovement)
        .filter_by(product_id=ice.id)
        .order_by(InventoryMovement.created_at, InventoryMovement.id)
        .all()
    )
    assert [m.quantity for m in movements] == [10, -3, -2, 5]
    assert [m.balance_after for m in movements] == [10, 7, 5, 10]
    assert stock_service.ledger_sum(ice.id) == stock_service.current_balance(ice.id) == 10


def test_reference_is_recorded(db_session, catalog, users):
    ice = catalog["ice"]
    owner = users[ROLE_OWNER]
    stock_service.record_movement(ice.id, MOVEMENT_PRODUCTION_IN, 5, owner.id)

    movement = stock_service.record_movement(
        ice.id, MOVEMENT_SALE_FACTORY, 1, owner.id, LedgerReference(REFERENCE_SALE, 42)
    )

    assert movement.reference_kind == REFERENCE_SALE
    assert movement.reference_id == 42
    assert movement.is_forced is False


def test_invalid_movements_are_rejected(db_session, catalog, users):
    ice, bag = catalog["ice"], catalog["bag"]
    owner = users[ROLE_OWNER]

    with pytest.raises(ValidationError):
        stock_service.record_movement(ice.id, MOVEMENT_ADJUSTMENT, 0, owner.id)
    with pytest.raises(ValidationError):
        stock_service.record_movement(ice.id, MOVEMENT_PRODUCTION_IN, -5, owner.id)
    # Supply kinds are not valid on the product ledger and vice versa
    with pytest.raises(ValidationError):
        stock_service.record_movement(ice.id, MOVEMENT_PURCHASE_IN, 5, owner.id)
    with pytest.raises(ValidationError):
        stock_service.record_movement(bag.id, MOVEMENT_SALE_FACTORY, 1, owner.id, ledger=SUPPLY_LEDGER)
    with pytest.raises(ValidationError):
        LedgerReference("INVOICE", 1)

    assert db_session.query(InventoryMovement).count() == 0


def test_unknown_entity_is_not_found(db_session, users):
    with pytest.raises(NotFound):
        stock_service.record_movement(9999, MOVEMENT_PRODUCTION_IN, 1, users[ROLE_OWNER].id)


def test_supply_ledger_is_independent(db_session, catalog, users):
    bag = catalog["bag"]
    owner = users[ROLE_OWNER]

    stock_service.record_movement(bag.id, MOVEMENT_PURCHASE_IN, 40, owner.id, ledger=SUPPLY_LEDGER)
    stock_service.record_movement(bag.id, MOVEMENT_SALE_OUT, 15, owner.id, ledger=SUPPLY_LEDGER)

    assert stock_service.current_balance(bag.id, SUPPLY_LEDGER) == 25
    # Same numeric id on the product ledger has no history
    assert stock_service.current_balance(bag.id, PRODUCT_LEDGER) == 0


def test_movements_cannot_be_updated_or_deleted(db_session, catalog, users):
    ice = catalog["ice"]
    movement = stock_service.record_movement(ice.id, MOVEMENT_PRODUCTION_IN, 10, users[ROLE_OWNER].id)

    movement.balance_after = 999
    with pytest.raises(LedgerImmutableError):
        db_session.flush()
    db_session.rollback()

    movement = db_session.get(InventoryMovement, movement.id)
    db_session.delete(movement)
    with pytest.raises(LedgerImmutableError):
        db_session.flush()
    db_session.rollback()

    assert stock_service.current_balance(ice.id) == 10


def test_verify_ledger_reports_consistency(db_session, catalog, users):
    ice = catalog["ice"]
    owner = users[ROLE_OWNER]
    stock_service.record_movement(ice.id, MOVEMENT_PRODUCTION_IN, 10, owner.id)
    stock_service.record_movement(ice.id, MOVEMENT_SALE_FACTORY, 4, owner.id)

    report = stock_service.verify_ledger(ice.id)

    assert report["consistent"] is True
    assert report["movement_count"] == 2
    assert report["ledger_sum"] == report["current_balance"] == 6
    assert report["first_inconsistent_movement_id"] is None


def test_verify_ledger_detects_tampering(db_session, catalog, users):
    ice = catalog["ice"]
    owner = users[ROLE_OWNER]
    stock_service.record_movement(ice.id, MOVEMENT_PRODUCTION_IN, 10, owner.id)
    bad = stock_service.record_movement(ice.id, MOVEMENT_SALE_FACTORY, 4, owner.id)

    # Core UPDATE bypasses the ORM guard, as a raw SQL edit would
    db_session.execute(
        InventoryMovement.__table__.update()
        .where(InventoryMovement.__table__.c.id == bad.id)
        .values(balance_after=8)
    )
    db_session.commit()

    report = stock_service.verify_ledger(ice.id)
    assert report["consistent"] is False
    assert report["first_inconsistent_movement_id"] == bad.id


def test_stock_levels_flag_low_stock(db_session, catalog, users):
    owner = users[ROLE_OWNER]
    stock_service.record_movement(catalog["ice"].id, MOVEMENT_PRODUCTION_IN, 50, owner.id)
    stock_service.record_movement(catalog["gallon"].id, MOVEMENT_PRODUCTION_IN, 3, owner.id)

    levels = {row["sku"]: row for row in stock_service.get_stock_levels()}

    assert levels["ICE-5KG"]["current_stock"] == 50
    assert levels["ICE-5KG"]["is_low_stock"] is False
    assert levels["WTR-19L"]["current_stock"] == 3
    assert levels["WTR-19L"]["is_low_stock"] is True


def test_list_movements_filters(db_session, catalog, users):
    owner = users[ROLE_OWNER]
    ice, gallon = catalog["ice"], catalog["gallon"]
    stock_service.record_movement(ice.id, MOVEMENT_PRODUCTION_IN, 10, owner.id)
    stock_service.record_movement(ice.id, MOVEMENT_SALE_FACTORY, 1, owner.id)
    stock_service.record_movement(gallon.id, MOVEMENT_PRODUCTION_IN, 5, owner.id)

    ice_moves = stock_service.list_movements(entity_id=ice.id)
    assert [m.movement_type for m in ice_moves] == [MOVEMENT_SALE_FACTORY, MOVEMENT_PRODUCTION_IN]

    production = stock_service.list_movements(movement_type=MOVEMENT_PRODUCTION_IN)
    assert {m.product_id for m in production} == {ice.id, gallon.id}

    assert len(stock_service.list_movements(limit=1)) == 1


def test_adjust_stock_requires_capability(db_session, catalog, contexts):
    ice = catalog["ice"]

    movement = stock_service.adjust_stock(contexts[ROLE_ADMIN], ice.id, 12, note="Stock count")
    assert movement.movement_type == MOVEMENT_ADJUSTMENT
    assert movement.note == "Stock count"
    assert stock_service.current_balance(ice.id) == 12

    with pytest.raises(PermissionDenied):
        stock_service.adjust_stock(contexts[ROLE_VIEWER], ice.id, 5)

    with pytest.raises(InsufficientStock):
        stock_service.adjust_stock(contexts[ROLE_ADMIN], ice.id, -13)
    assert stock_service.current_balance(ice.id) == 12
