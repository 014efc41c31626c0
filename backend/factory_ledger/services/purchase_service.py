# Overview: Raw-material purchases; each item enters the supply ledger as PURCHASE_IN.

from __future__ import annotations

from datetime import datetime

from ..extensions import db
from ..models import Purchase, PurchaseItem
from ..models.inventory import REFERENCE_PURCHASE
from ..validation import parse_purchase_items
from factory_ledger.time_utils import utcnow
from .concurrency import RETRYABLE_WITH_INTEGRITY, run_with_retry
from .document_service import next_daily_number
from .stock_service import SUPPLY_LEDGER, LedgerReference, lock_entities
from . import supply_service


PURCHASE_PREFIX = "PUR"


def create_purchase(
    ctx,
    items,
    supplier_name: str | None = None,
    purchased_at: datetime | None = None,
    notes: str | None = None,
) -> Purchase:
    """Create a purchase, its items, and one PURCHASE_IN per item."""
    ctx.require("CREATE_PURCHASE")
    items = parse_purchase_items(items)

    def _op():
        lock_entities([item["supply_id"] for item in items], SUPPLY_LEDGER)

        purchase = Purchase(
            invoice_number=next_daily_number(Purchase, PURCHASE_PREFIX),
            supplier_name=supplier_name,
            notes=notes,
            purchased_at=purchased_at or utcnow(),
            created_by_user_id=ctx.user_id,
            total_amount_cents=0,
        )
        db.session.add(purchase)
        db.session.flush()

        reference = LedgerReference(REFERENCE_PURCHASE, purchase.id)
        total = 0
        for item in items:
            subtotal = item["quantity"] * item["price_per_unit_cents"]
            db.session.add(PurchaseItem(
                purchase_id=purchase.id,
                supply_id=item["supply_id"],
                quantity=item["quantity"],
                price_per_unit_cents=item["price_per_unit_cents"],
                subtotal_cents=subtotal,
            ))
            supply_service.add_stock(item["supply_id"], item["quantity"], ctx.user_id, reference=reference)
            total += subtotal

        purchase.total_amount_cents = total
        db.session.commit()
        return purchase

    return run_with_retry(_op, retry_on=RETRYABLE_WITH_INTEGRITY)
