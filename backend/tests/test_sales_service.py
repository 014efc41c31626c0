"""Sale orchestrator: atomic creation, cancellation, payment, invoice numbers."""

from datetime import timedelta

import pytest

from factory_ledger.errors import (
    AlreadyCancelled,
    InsufficientStock,
    NotFound,
    PermissionDenied,
    PriceNotAllowed,
    ValidationError,
)
from factory_ledger.models import InventoryMovement, Sale, SaleItem, SupplyMovement
from factory_ledger.models.inventory import MOVEMENT_RETURN, MOVEMENT_SALE_FACTORY, MOVEMENT_SALE_FIELD
from factory_ledger.permissions import (
    ROLE_ADMIN,
    ROLE_FACTORY_CASHIER,
    ROLE_FIELD_SELLER,
    ROLE_OWNER,
    ROLE_VIEWER,
)
from factory_ledger.services import sales_service, stock_service
from factory_ledger.services.sales_service import CUSTOMER_BLACKLISTED
from factory_ledger.time_utils import today

from conftest import product_balance, supply_balance


def _line(price, quantity):
    return {"product_id": price.product_id, "price_id": price.id, "quantity": quantity}


def _movement_counts(db_session):
    return (
        db_session.query(InventoryMovement).count(),
        db_session.query(SupplyMovement).count(),
    )


# =============================================================================
# CREATE
# =============================================================================


def test_factory_sale_posts_items_and_movements(db_session, stocked, prices, contexts):
    ctx = contexts[ROLE_FACTORY_CASHIER]

    sale = sales_service.create_sale(
        ctx, "FACTORY",
        [_line(prices["ice_factory"], 10), _line(prices["gallon_all"], 2)],
        "CASH",
    )

    assert sale.status == "completed"
    assert sale.payment_status == "paid"
    assert sale.sync_status == "synced"
    assert sale.total_amount_cents == 10 * 1500 + 2 * 500
    assert sale.created_by_user_id == ctx.user_id
    assert [(i.product_id, i.quantity, i.subtotal_cents) for i in sale.items] == [
        (stocked["ice"].id, 10, 15000),
        (stocked["gallon"].id, 2, 1000),
    ]

    assert product_balance(stocked["ice"]) == 90
    assert product_balance(stocked["gallon"]) == 48
    movements = (
        db_session.query(InventoryMovement)
        .filter_by(reference_kind="SALE", reference_id=sale.id)
        .all()
    )
    assert {m.movement_type for m in movements} == {MOVEMENT_SALE_FACTORY}
    assert supply_balance(stocked["bag"]) == 190
    assert supply_balance(stocked["seal"]) == 198


def test_field_sale_defaults_to_pending_sync(db_session, stocked, prices, contexts):
    sale = sales_service.create_sale(
        contexts[ROLE_FIELD_SELLER], "FIELD", [_line(prices["ice_field"], 3)], "TRANSFER"
    )

    assert sale.sync_status == "pending"
    assert sale.invoice_number.startswith("FLD-")
    movement = (
        db_session.query(InventoryMovement)
        .filter_by(reference_kind="SALE", reference_id=sale.id)
        .one()
    )
    assert movement.movement_type == MOVEMENT_SALE_FIELD


def test_invoice_numbers_are_sequential_per_channel_and_day(db_session, stocked, prices, contexts):
    ctx = contexts[ROLE_ADMIN]
    stamp = today().strftime("%Y%m%d")

    first = sales_service.create_sale(ctx, "FACTORY", [_line(prices["ice_factory"], 1)], "CASH")
    second = sales_service.create_sale(ctx, "FACTORY", [_line(prices["ice_factory"], 1)], "CASH")
    field = sales_service.create_sale(ctx, "FIELD", [_line(prices["ice_field"], 1)], "CASH")

    assert first.invoice_number == f"FAC-{stamp}-0001"
    assert second.invoice_number == f"FAC-{stamp}-0002"
    assert field.invoice_number == f"FLD-{stamp}-0001"


def test_failed_item_rolls_back_whole_sale(db_session, stocked, prices, contexts):
    before = _movement_counts(db_session)

    with pytest.raises(InsufficientStock) as exc:
        sales_service.create_sale(
            contexts[ROLE_OWNER], "FACTORY",
            [_line(prices["ice_factory"], 5), _line(prices["gallon_all"], 51)],
            "CASH",
        )

    assert exc.value.details["items"] == [
        {"product_id": stocked["gallon"].id, "requested_quantity": 51, "current_balance": 50}
    ]
    assert db_session.query(Sale).count() == 0
    assert db_session.query(SaleItem).count() == 0
    assert _movement_counts(db_session) == before
    assert product_balance(stocked["ice"]) == 100


def test_duplicate_lines_are_checked_in_aggregate(db_session, stocked, prices, contexts):
    price = prices["ice_factory"]

    with pytest.raises(InsufficientStock) as exc:
        sales_service.create_sale(
            contexts[ROLE_OWNER], "FACTORY", [_line(price, 60), _line(price, 60)], "CASH"
        )

    assert exc.value.details["items"][0]["requested_quantity"] == 120
    assert db_session.query(Sale).count() == 0


def test_recorded_price_survives_offer_edit(db_session, stocked, prices, contexts):
    price = prices["ice_factory"]
    sale = sales_service.create_sale(contexts[ROLE_OWNER], "FACTORY", [_line(price, 2)], "CASH")

    price.amount_cents = 9999
    db_session.commit()

    item = db_session.get(Sale, sale.id).items[0]
    assert item.price_snapshot_cents == 1500
    assert item.subtotal_cents == 3000
    assert item.price_offer_id == price.id


def test_price_not_allowed_for_role(db_session, stocked, prices, contexts):
    before = _movement_counts(db_session)

    with pytest.raises(PriceNotAllowed) as exc:
        sales_service.create_sale(
            contexts[ROLE_FACTORY_CASHIER], "FACTORY", [_line(prices["ice_owner_only"], 1)], "CASH"
        )

    assert exc.value.details["price_id"] == prices["ice_owner_only"].id
    assert db_session.query(Sale).count() == 0
    assert _movement_counts(db_session) == before


def test_price_for_other_channel_or_expired_is_not_allowed(db_session, stocked, prices, contexts):
    ctx = contexts[ROLE_ADMIN]

    with pytest.raises(PriceNotAllowed):
        sales_service.create_sale(ctx, "FIELD", [_line(prices["ice_factory"], 1)], "CASH")
    with pytest.raises(PriceNotAllowed):
        sales_service.create_sale(ctx, "FACTORY", [_line(prices["ice_expired"], 1)], "CASH")


def test_price_must_belong_to_product(db_session, stocked, prices, contexts):
    with pytest.raises(ValidationError):
        sales_service.create_sale(
            contexts[ROLE_OWNER], "FACTORY",
            [{"product_id": stocked["gallon"].id, "price_id": prices["ice_factory"].id, "quantity": 1}],
            "CASH",
        )

    with pytest.raises(ValidationError):
        sales_service.create_sale(
            contexts[ROLE_OWNER], "FACTORY",
            [{"product_id": stocked["ice"].id, "price_id": 424242, "quantity": 1}],
            "CASH",
        )


def test_role_channel_access(db_session, stocked, prices, contexts):
    with pytest.raises(PermissionDenied):
        sales_service.create_sale(
            contexts[ROLE_FACTORY_CASHIER], "FIELD", [_line(prices["gallon_all"], 1)], "CASH"
        )
    with pytest.raises(PermissionDenied):
        sales_service.create_sale(
            contexts[ROLE_FIELD_SELLER], "FACTORY", [_line(prices["gallon_all"], 1)], "CASH"
        )
    with pytest.raises(PermissionDenied):
        sales_service.create_sale(
            contexts[ROLE_VIEWER], "FACTORY", [_line(prices["gallon_all"], 1)], "CASH"
        )


@pytest.mark.parametrize(
    "items",
    [
        [],
        [{"product_id": 1, "price_id": 1, "quantity": 0}],
        [{"product_id": 1, "price_id": 1, "quantity": "many"}],
        [{"product_id": 1, "price_id": 1, "quantity": 2.9}],
        [{"product_id": 1, "price_id": 1, "quantity": "1.5"}],
        [{"product_id": 1, "price_id": 1}],
    ],
)
def test_malformed_items_are_rejected(db_session, stocked, contexts, items):
    with pytest.raises(ValidationError):
        sales_service.create_sale(contexts[ROLE_OWNER], "FACTORY", items, "CASH")


def test_unknown_channel_and_payment_method(db_session, stocked, prices, contexts):
    ctx = contexts[ROLE_OWNER]

    with pytest.raises(ValidationError):
        sales_service.create_sale(ctx, "ONLINE", [_line(prices["gallon_all"], 1)], "CASH")
    with pytest.raises(ValidationError):
        sales_service.create_sale(ctx, "FACTORY", [_line(prices["gallon_all"], 1)], "BARTER")


def test_inactive_product_cannot_be_sold(db_session, stocked, prices, contexts):
    stocked["ice"].status = "inactive"
    db_session.commit()

    with pytest.raises(ValidationError):
        sales_service.create_sale(
            contexts[ROLE_OWNER], "FACTORY", [_line(prices["ice_factory"], 1)], "CASH"
        )


# =============================================================================
# CREDIT AND CUSTOMERS
# =============================================================================


def test_credit_sale_is_unpaid_with_due_date(db_session, stocked, prices, contexts, customer):
    due = today() + timedelta(days=14)

    sale = sales_service.create_sale(
        contexts[ROLE_ADMIN], "FACTORY", [_line(prices["ice_factory"], 1)], "CREDIT",
        customer_id=customer.id, due_date=due,
    )

    assert sale.payment_status == "unpaid"
    assert sale.due_date == due
    assert sale.customer_id == customer.id


def test_credit_sale_requires_due_date_and_customer(db_session, stocked, prices, contexts, customer):
    ctx = contexts[ROLE_ADMIN]
    items = [_line(prices["ice_factory"], 1)]

    with pytest.raises(ValidationError):
        sales_service.create_sale(ctx, "FACTORY", items, "CREDIT", customer_id=customer.id)
    with pytest.raises(ValidationError):
        sales_service.create_sale(
            ctx, "FACTORY", items, "CREDIT", customer_id=customer.id,
            due_date=today() - timedelta(days=1),
        )
    with pytest.raises(ValidationError):
        sales_service.create_sale(ctx, "FACTORY", items, "CREDIT", due_date=today())

    assert db_session.query(Sale).count() == 0


def test_due_date_dropped_for_paid_methods(db_session, stocked, prices, contexts):
    sale = sales_service.create_sale(
        contexts[ROLE_ADMIN], "FACTORY", [_line(prices["ice_factory"], 1)], "CASH",
        due_date=today() + timedelta(days=3),
    )

    assert sale.due_date is None


def test_blacklisted_customer_is_refused(db_session, stocked, prices, contexts, customer):
    customer.blacklist("Unpaid invoice")
    db_session.commit()

    with pytest.raises(ValidationError) as exc:
        sales_service.create_sale(
            contexts[ROLE_ADMIN], "FACTORY", [_line(prices["ice_factory"], 1)], "CASH",
            customer_id=customer.id,
        )

    assert exc.value.details["reason_code"] == CUSTOMER_BLACKLISTED
    assert db_session.query(Sale).count() == 0


def test_unknown_customer_is_not_found(db_session, stocked, prices, contexts):
    with pytest.raises(NotFound):
        sales_service.create_sale(
            contexts[ROLE_ADMIN], "FACTORY", [_line(prices["ice_factory"], 1)], "CASH",
            customer_id=31337,
        )


# =============================================================================
# CANCEL
# =============================================================================


def test_cancel_restores_product_and_supply_balances(db_session, stocked, prices, contexts):
    sale = sales_service.create_sale(
        contexts[ROLE_OWNER], "FACTORY",
        [_line(prices["ice_factory"], 10), _line(prices["gallon_all"], 4)],
        "CASH", is_new_kit_unit=True,
    )
    assert product_balance(stocked["ice"]) == 90
    assert supply_balance(stocked["shell"]) == 196

    cancelled = sales_service.cancel_sale(sale.id, contexts[ROLE_ADMIN], reason="Customer returned")

    assert cancelled.status == "cancelled"
    assert cancelled.cancel_reason == "Customer returned"
    assert cancelled.cancelled_by_user_id == contexts[ROLE_ADMIN].user_id
    assert cancelled.cancelled_at is not None

    assert product_balance(stocked["ice"]) == 100
    assert product_balance(stocked["gallon"]) == 50
    for key in ("bag", "shell", "cap", "seal"):
        assert supply_balance(stocked[key]) == 200

    # Original sale movements stay; returns are appended
    ice_moves = stock_service.list_movements(entity_id=stocked["ice"].id)
    assert [m.movement_type for m in ice_moves[:2]] == [MOVEMENT_RETURN, MOVEMENT_SALE_FACTORY]
    assert stock_service.verify_ledger(stocked["ice"].id)["consistent"] is True


def test_cancel_twice_is_rejected(db_session, stocked, prices, contexts):
    sale = sales_service.create_sale(
        contexts[ROLE_OWNER], "FACTORY", [_line(prices["ice_factory"], 1)], "CASH"
    )
    sales_service.cancel_sale(sale.id, contexts[ROLE_OWNER])
    before = _movement_counts(db_session)

    with pytest.raises(AlreadyCancelled):
        sales_service.cancel_sale(sale.id, contexts[ROLE_OWNER])

    assert _movement_counts(db_session) == before
    assert product_balance(stocked["ice"]) == 100


def test_cancel_requires_capability(db_session, stocked, prices, contexts):
    sale = sales_service.create_sale(
        contexts[ROLE_FACTORY_CASHIER], "FACTORY", [_line(prices["ice_factory"], 1)], "CASH"
    )

    with pytest.raises(PermissionDenied):
        sales_service.cancel_sale(sale.id, contexts[ROLE_FACTORY_CASHIER])
    with pytest.raises(NotFound):
        sales_service.cancel_sale(987654, contexts[ROLE_ADMIN])


# =============================================================================
# PAYMENT
# =============================================================================


def test_mark_as_paid(db_session, stocked, prices, contexts, customer):
    sale = sales_service.create_sale(
        contexts[ROLE_ADMIN], "FACTORY", [_line(prices["ice_factory"], 1)], "CREDIT",
        customer_id=customer.id, due_date=today(),
    )
    before = _movement_counts(db_session)

    paid = sales_service.mark_as_paid(sale.id, contexts[ROLE_ADMIN])

    assert paid.payment_status == "paid"
    assert paid.paid_at is not None
    assert paid.paid_by_user_id == contexts[ROLE_ADMIN].user_id
    assert _movement_counts(db_session) == before

    again = sales_service.mark_as_paid(sale.id, contexts[ROLE_ADMIN])
    assert again.paid_at == paid.paid_at


def test_cancelled_sale_cannot_be_paid(db_session, stocked, prices, contexts, customer):
    sale = sales_service.create_sale(
        contexts[ROLE_ADMIN], "FACTORY", [_line(prices["ice_factory"], 1)], "CREDIT",
        customer_id=customer.id, due_date=today(),
    )
    sales_service.cancel_sale(sale.id, contexts[ROLE_ADMIN])

    with pytest.raises(ValidationError):
        sales_service.mark_as_paid(sale.id, contexts[ROLE_ADMIN])
    with pytest.raises(PermissionDenied):
        sales_service.mark_as_paid(sale.id, contexts[ROLE_FIELD_SELLER])


def test_list_sales_filters(db_session, stocked, prices, contexts):
    sales_service.create_sale(contexts[ROLE_ADMIN], "FACTORY", [_line(prices["ice_factory"], 1)], "CASH")
    sales_service.create_sale(contexts[ROLE_ADMIN], "FIELD", [_line(prices["ice_field"], 1)], "CASH")

    assert len(sales_service.list_sales()) == 2
    assert [s.channel for s in sales_service.list_sales(channel="FIELD")] == ["FIELD"]
    assert sales_service.list_sales(status="cancelled") == []


def test_fractional_quantity_sells_nothing(db_session, stocked, prices, contexts):
    price = prices["ice_factory"]

    with pytest.raises(ValidationError) as exc:
        sales_service.create_sale(
            contexts[ROLE_OWNER],
            "FACTORY",
            [{"product_id": price.product_id, "price_id": price.id, "quantity": 2.9}],
            "CASH",
        )

    assert exc.value.details == {"field": "quantity", "index": 0}
    assert db_session.query(Sale).count() == 0
    assert product_balance(stocked["ice"]) == 100


def test_digit_string_quantity_is_accepted(db_session, stocked, prices, contexts):
    price = prices["ice_factory"]

    sale = sales_service.create_sale(
        contexts[ROLE_OWNER],
        "FACTORY",
        [{"product_id": str(price.product_id), "price_id": str(price.id), "quantity": "3"}],
        "CASH",
    )

    assert sale.items[0].quantity == 3
    assert product_balance(stocked["ice"]) == 97
