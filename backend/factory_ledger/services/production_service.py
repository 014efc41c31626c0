# Overview: Production runs; finished goods in, linked supplies out, in one unit of work.

from __future__ import annotations

from datetime import datetime

from ..extensions import db
from ..errors import ValidationError
from ..models import ProductionRecord
from ..models.inventory import MOVEMENT_PRODUCTION_IN, REFERENCE_PRODUCTION
from .concurrency import run_with_retry
from .stock_service import PRODUCT_LEDGER, SUPPLY_LEDGER, LedgerReference, lock_entities, post_movement
from . import supply_service


def record_production(
    ctx,
    product_id: int,
    quantity: int,
    machine_on_at: datetime,
    machine_off_at: datetime,
    notes: str | None = None,
) -> ProductionRecord:
    """
    Record a production run.

    Posts PRODUCTION_IN for the product and PRODUCTION_OUT for every supply
    linked to it with deduct_on=PRODUCTION. Supply shortages follow
    SUPPLY_NEGATIVE_POLICY.
    """
    ctx.require("RECORD_PRODUCTION")
    if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity < 1:
        raise ValidationError("quantity must be a positive integer", details={"field": "quantity"})
    if machine_on_at is None or machine_off_at is None:
        raise ValidationError("machine_on_at and machine_off_at are required")
    if machine_off_at < machine_on_at:
        raise ValidationError(
            "machine_off_at cannot be before machine_on_at",
            details={"field": "machine_off_at"},
        )

    def _op():
        products = lock_entities([product_id], PRODUCT_LEDGER)
        if not products[product_id].is_active:
            raise ValidationError("Product is inactive", details={"product_id": product_id})

        plan = supply_service.plan_production_deductions(product_id, quantity)
        lock_entities(plan.keys(), SUPPLY_LEDGER)
        supply_service.check_plan(plan)

        record = ProductionRecord(
            product_id=product_id,
            quantity=quantity,
            machine_on_at=machine_on_at,
            machine_off_at=machine_off_at,
            notes=notes,
            created_by_user_id=ctx.user_id,
        )
        db.session.add(record)
        db.session.flush()

        reference = LedgerReference(REFERENCE_PRODUCTION, record.id)
        post_movement(
            ledger=PRODUCT_LEDGER,
            entity_id=product_id,
            kind=MOVEMENT_PRODUCTION_IN,
            quantity=quantity,
            actor_user_id=ctx.user_id,
            reference=reference,
        )
        supply_service.deduct_for_production(product_id, quantity, reference, ctx.user_id)

        db.session.commit()
        return record

    return run_with_retry(_op)


def production_summary(start: datetime, end: datetime) -> dict:
    """Totals per product for runs created in [start, end)."""
    records = (
        db.session.query(ProductionRecord)
        .filter(ProductionRecord.created_at >= start, ProductionRecord.created_at < end)
        .order_by(ProductionRecord.id.asc())
        .all()
    )

    by_product: dict[int, dict] = {}
    for record in records:
        row = by_product.setdefault(record.product_id, {
            "product_id": record.product_id,
            "product_name": record.product.name,
            "sku": record.product.sku,
            "total_quantity": 0,
            "record_count": 0,
            "total_minutes": 0,
        })
        row["total_quantity"] += record.quantity
        row["record_count"] += 1
        row["total_minutes"] += record.duration_minutes

    return {
        "total_quantity": sum(r.quantity for r in records),
        "total_records": len(records),
        "by_product": list(by_product.values()),
    }
