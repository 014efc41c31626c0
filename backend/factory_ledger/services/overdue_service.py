# Overview: Overdue sweep; flags late credit sales and blacklists their customers.

from __future__ import annotations

from datetime import date

from flask import current_app

from ..extensions import db
from factory_ledger.time_utils import today as utc_today
from .concurrency import run_with_retry
from .sales_service import mark_overdue, overdue_candidates


def sweep_overdue(today: date | None = None) -> dict:
    """
    Mark completed unpaid credit sales past their due date as overdue and
    blacklist their customers. Safe to run repeatedly.
    """
    as_of = today or utc_today()

    def _op():
        sales = overdue_candidates(as_of)
        blacklisted = []
        for sale in sales:
            mark_overdue(sale)
            customer = sale.customer
            if customer is not None and not customer.is_blacklisted:
                customer.blacklist(f"Invoice {sale.invoice_number} is past its due date")
                blacklisted.append(customer)
                current_app.logger.warning(
                    "customer blacklisted customer_id=%s sale_id=%s invoice=%s due_date=%s",
                    customer.id, sale.id, sale.invoice_number, sale.due_date,
                )
        db.session.commit()
        return {
            "as_of": as_of.isoformat(),
            "overdue_sales": [sale.id for sale in sales],
            "blacklisted_customers": [customer.id for customer in blacklisted],
        }

    return run_with_retry(_op)
