from datetime import timedelta

from factory_ledger.models import Customer, Sale
from factory_ledger.permissions import ROLE_ADMIN
from factory_ledger.services import sales_service
from factory_ledger.services.overdue_service import sweep_overdue
from factory_ledger.time_utils import today


def _credit_sale(ctx, prices, customer, due):
    price = prices["ice_factory"]
    return sales_service.create_sale(
        ctx, "FACTORY",
        [{"product_id": price.product_id, "price_id": price.id, "quantity": 1}],
        "CREDIT", customer_id=customer.id, due_date=due,
    )


def test_sweep_marks_overdue_and_blacklists(db_session, stocked, prices, contexts, customer):
    sale = _credit_sale(contexts[ROLE_ADMIN], prices, customer, today())

    result = sweep_overdue(today() + timedelta(days=1))

    assert result["overdue_sales"] == [sale.id]
    assert result["blacklisted_customers"] == [customer.id]
    assert db_session.get(Sale, sale.id).payment_status == "overdue"
    refreshed = db_session.get(Customer, customer.id)
    assert refreshed.is_blacklisted is True
    assert sale.invoice_number in refreshed.blacklist_reason


def test_sweep_ignores_sales_not_yet_due(db_session, stocked, prices, contexts, customer):
    sale = _credit_sale(contexts[ROLE_ADMIN], prices, customer, today())

    result = sweep_overdue(today())

    assert result["overdue_sales"] == []
    assert db_session.get(Sale, sale.id).payment_status == "unpaid"
    assert db_session.get(Customer, customer.id).is_blacklisted is False


def test_sweep_skips_paid_and_cancelled(db_session, stocked, prices, contexts, customer):
    ctx = contexts[ROLE_ADMIN]
    paid = _credit_sale(ctx, prices, customer, today())
    cancelled = _credit_sale(ctx, prices, customer, today())
    sales_service.mark_as_paid(paid.id, ctx)
    sales_service.cancel_sale(cancelled.id, ctx)

    result = sweep_overdue(today() + timedelta(days=30))

    assert result["overdue_sales"] == []
    assert db_session.get(Customer, customer.id).is_blacklisted is False


def test_sweep_is_idempotent_and_overdue_can_be_paid(db_session, stocked, prices, contexts, customer):
    ctx = contexts[ROLE_ADMIN]
    sale = _credit_sale(ctx, prices, customer, today())
    later = today() + timedelta(days=2)

    sweep_overdue(later)
    second = sweep_overdue(later)

    assert second["overdue_sales"] == []
    assert sales_service.mark_as_paid(sale.id, ctx).payment_status == "paid"
