# Overview: Sale transaction orchestrator; validates orders and posts them atomically.

"""
Sale creation is one unit of work:

1. Validate the request shape (channel, payment method, due date, items).
2. Resolve every price offer and check it against the actor's role and the
   channel, and that it belongs to the requested product.
3. Lock every touched product (ascending id), then every touched supply.
4. Check stock for the aggregated quantity of each product, and the supply
   plan under the configured negative policy.
5. Write the Sale header, its items, one SALE_FACTORY/SALE_FIELD movement
   per item, and the supply deductions, then mark the sale completed.

Any failure before the commit rolls everything back; nothing from a failed
sale is ever visible.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime

from ..extensions import db
from ..errors import (
    AlreadyCancelled,
    InsufficientStock,
    NotFound,
    PermissionDenied,
    PriceNotAllowed,
    ValidationError,
)
from ..models import Customer, PriceOffer, Sale, SaleItem
from ..models.inventory import (
    MOVEMENT_SALE_FACTORY,
    MOVEMENT_SALE_FIELD,
    MOVEMENT_RETURN,
    REFERENCE_SALE,
)
from ..models.sales import (
    CHANNEL_FACTORY,
    CHANNEL_FIELD,
    SALES_CHANNELS,
    OFFLINE_CHANNEL,
    INVOICE_PREFIXES,
    PAYMENT_METHODS,
    DEFERRED_PAYMENT_METHODS,
    SALE_PENDING,
    SALE_COMPLETED,
    SALE_CANCELLED,
    PAYMENT_PAID,
    PAYMENT_UNPAID,
    PAYMENT_OVERDUE,
    SYNC_PENDING,
    SYNC_SYNCED,
    SYNC_CONFLICT,
)
from ..validation import coerce_int
from factory_ledger.time_utils import utcnow, today
from .concurrency import RETRYABLE_WITH_INTEGRITY, lock_for_update, run_with_retry
from .document_service import next_daily_number
from .pricing_service import get_price_snapshot, is_authorized
from .stock_service import (
    PRODUCT_LEDGER,
    SUPPLY_LEDGER,
    LedgerReference,
    current_balance,
    lock_entities,
    post_movement,
)
from . import supply_service


SALE_MOVEMENT_KINDS = {
    CHANNEL_FACTORY: MOVEMENT_SALE_FACTORY,
    CHANNEL_FIELD: MOVEMENT_SALE_FIELD,
}

CUSTOMER_BLACKLISTED = "CUSTOMER_BLACKLISTED"


@dataclass(frozen=True)
class SaleLine:
    product_id: int
    price_id: int
    quantity: int


def _to_int(value, field: str, index: int) -> int:
    try:
        return coerce_int(value, f"items[{index}].{field}")
    except ValidationError as exc:
        raise ValidationError(exc.message, details={"field": field, "index": index}) from None


def normalize_items(items) -> list[SaleLine]:
    """Accept mappings or SaleLine objects; reject empty orders and quantities < 1."""
    if not items:
        raise ValidationError("A sale needs at least one item")

    lines = []
    for index, item in enumerate(items):
        if isinstance(item, SaleLine):
            line = item
        elif isinstance(item, dict):
            line = SaleLine(
                product_id=_to_int(item.get("product_id"), "product_id", index),
                price_id=_to_int(item.get("price_id"), "price_id", index),
                quantity=_to_int(item.get("quantity"), "quantity", index),
            )
        else:
            raise ValidationError(f"items[{index}] must be an object")
        if line.quantity < 1:
            raise ValidationError(
                f"items[{index}].quantity must be at least 1",
                details={"field": "quantity", "index": index},
            )
        lines.append(line)
    return lines


def payment_status_for(payment_method: str) -> str:
    return PAYMENT_UNPAID if payment_method in DEFERRED_PAYMENT_METHODS else PAYMENT_PAID


def default_sync_status(channel: str) -> str:
    return SYNC_PENDING if channel == OFFLINE_CHANNEL else SYNC_SYNCED


def _validate_header(ctx, channel, payment_method, customer_id, due_date, sync_status):
    if channel not in SALES_CHANNELS:
        raise ValidationError(
            f"Unknown sales channel {channel!r}",
            details={"field": "channel", "allowed": list(SALES_CHANNELS)},
        )
    if not ctx.can_sell_in(channel):
        raise PermissionDenied(
            f"Role {ctx.role} cannot sell in channel {channel}",
            details={"role": ctx.role, "channel": channel},
        )
    if payment_method not in PAYMENT_METHODS:
        raise ValidationError(
            f"Unknown payment method {payment_method!r}",
            details={"field": "payment_method", "allowed": list(PAYMENT_METHODS)},
        )
    if payment_method in DEFERRED_PAYMENT_METHODS:
        if due_date is None:
            raise ValidationError(
                f"{payment_method} sales require a due date",
                details={"field": "due_date"},
            )
        if not isinstance(due_date, date) or isinstance(due_date, datetime):
            raise ValidationError("due_date must be a date", details={"field": "due_date"})
        if due_date < today():
            raise ValidationError(
                "due_date cannot be in the past",
                details={"field": "due_date", "due_date": due_date.isoformat()},
            )
        if customer_id is None:
            raise ValidationError(
                f"{payment_method} sales require a customer",
                details={"field": "customer_id"},
            )
    if sync_status is not None and sync_status not in (SYNC_PENDING, SYNC_SYNCED, SYNC_CONFLICT):
        raise ValidationError(f"Unknown sync status {sync_status!r}")


def _check_customer(customer_id: int | None) -> Customer | None:
    if customer_id is None:
        return None
    customer = db.session.get(Customer, customer_id)
    if customer is None:
        raise NotFound("Customer not found", details={"customer_id": customer_id})
    if customer.is_blacklisted:
        raise ValidationError(
            f"Customer {customer.name} is blacklisted",
            details={
                "reason_code": CUSTOMER_BLACKLISTED,
                "customer_id": customer.id,
                "blacklist_reason": customer.blacklist_reason,
            },
        )
    return customer


def _resolve_prices(ctx, channel: str, lines: list[SaleLine]) -> dict[int, PriceOffer]:
    """Every line's price must exist, be usable by the role, and match its product."""
    prices: dict[int, PriceOffer] = {}
    for index, line in enumerate(lines):
        price = prices.get(line.price_id) or db.session.get(PriceOffer, line.price_id)
        if price is None:
            raise ValidationError(
                f"Price {line.price_id} not found",
                details={"index": index, "price_id": line.price_id},
            )
        if not is_authorized(price, ctx.role, channel):
            raise PriceNotAllowed(
                f"Price {price.id} is not available to {ctx.role} in {channel}",
                details={"index": index, "price_id": price.id, "role": ctx.role, "channel": channel},
            )
        if price.product_id != line.product_id:
            raise ValidationError(
                f"Price {price.id} does not belong to product {line.product_id}",
                details={"index": index, "price_id": price.id, "product_id": line.product_id},
            )
        prices[price.id] = price
    return prices


def requested_quantities(lines) -> dict[int, int]:
    totals: dict[int, int] = {}
    for line in lines:
        totals[line.product_id] = totals.get(line.product_id, 0) + line.quantity
    return totals


def stock_shortages(lines) -> list[dict]:
    """Products whose current balance cannot cover the aggregated request."""
    short = []
    for product_id, requested in sorted(requested_quantities(lines).items()):
        balance = current_balance(product_id, PRODUCT_LEDGER)
        if balance < requested:
            short.append({
                "product_id": product_id,
                "requested_quantity": requested,
                "current_balance": balance,
            })
    return short


def generate_invoice_number(channel: str, day: date | None = None) -> str:
    """`FAC-YYYYMMDD-NNNN` / `FLD-YYYYMMDD-NNNN` for the day the sale is created."""
    return next_daily_number(Sale, INVOICE_PREFIXES[channel], day=day)


def create_sale(
    ctx,
    channel: str,
    items,
    payment_method: str,
    customer_id: int | None = None,
    sold_at: datetime | None = None,
    due_date: date | None = None,
    is_new_kit_unit: bool = False,
    *,
    force: bool = False,
    sync_status: str | None = None,
    commit: bool = True,
) -> Sale:
    """
    Create a completed sale with its items and every resulting movement.

    force=True skips the product and supply sufficiency checks (admin
    approval of a queued offline sale); the resulting negative movements are
    flagged is_forced. commit=False leaves the commit to the caller, which
    then owns rollback and retry.
    """
    ctx.require("CREATE_SALE")
    _validate_header(ctx, channel, payment_method, customer_id, due_date, sync_status)
    lines = normalize_items(items)

    def _op():
        _check_customer(customer_id)
        prices = _resolve_prices(ctx, channel, lines)

        products = lock_entities([line.product_id for line in lines], PRODUCT_LEDGER)
        inactive = sorted(pid for pid, product in products.items() if not product.is_active)
        if inactive:
            raise ValidationError("Inactive products cannot be sold", details={"product_ids": inactive})
        if not force:
            short = stock_shortages(lines)
            if short:
                raise InsufficientStock(
                    "Insufficient stock for this sale",
                    details={"entity": PRODUCT_LEDGER.name, "items": short},
                )

        plan = supply_service.plan_sale_deductions(
            ((products[line.product_id], line.quantity) for line in lines),
            is_new_kit_unit,
        )
        lock_entities(plan.keys(), SUPPLY_LEDGER)
        supply_service.check_plan(plan, force=force)

        sale = Sale(
            invoice_number=generate_invoice_number(channel),
            customer_id=customer_id,
            channel=channel,
            payment_method=payment_method,
            total_amount_cents=0,
            status=SALE_PENDING,
            payment_status=payment_status_for(payment_method),
            sync_status=sync_status or default_sync_status(channel),
            due_date=due_date if payment_method in DEFERRED_PAYMENT_METHODS else None,
            is_new_kit_unit=bool(is_new_kit_unit),
            created_by_user_id=ctx.user_id,
            sold_at=sold_at or utcnow(),
        )
        db.session.add(sale)
        db.session.flush()

        reference = LedgerReference(REFERENCE_SALE, sale.id)
        kind = SALE_MOVEMENT_KINDS[channel]
        total = 0
        for line in lines:
            snapshot = get_price_snapshot(prices[line.price_id])
            subtotal = snapshot["amount_cents"] * line.quantity
            total += subtotal
            db.session.add(SaleItem(
                sale_id=sale.id,
                product_id=line.product_id,
                price_offer_id=snapshot["price_offer_id"],
                price_snapshot_cents=snapshot["amount_cents"],
                quantity=line.quantity,
                subtotal_cents=subtotal,
            ))
            post_movement(
                ledger=PRODUCT_LEDGER,
                entity_id=line.product_id,
                kind=kind,
                quantity=line.quantity,
                actor_user_id=ctx.user_id,
                reference=reference,
                allow_negative=force,
            )
            supply_service.deduct_for_sale(
                line.product_id, line.quantity, reference, ctx.user_id, force=force
            )
            product = products[line.product_id]
            if is_new_kit_unit and product.kit_kind:
                supply_service.deduct_for_kit(
                    product.kit_kind, line.quantity, reference, ctx.user_id, force=force
                )

        sale.total_amount_cents = total
        sale.status = SALE_COMPLETED
        db.session.flush()

        if commit:
            db.session.commit()
        return sale

    if not commit:
        return _op()
    return run_with_retry(_op, retry_on=RETRYABLE_WITH_INTEGRITY)


def cancel_sale(sale_id: int, ctx, reason: str | None = None) -> Sale:
    """
    Cancel a completed sale.

    Posts one RETURN per item and one RETURN per supply deduction, so every
    affected balance comes back to its pre-sale value. The original SALE_*
    movements stay on the ledger.
    """
    ctx.require("CANCEL_SALE")

    def _op():
        sale = db.session.get(Sale, sale_id)
        if sale is None:
            raise NotFound("Sale not found", details={"sale_id": sale_id})

        product_ids = [item.product_id for item in sale.items]
        supply_ids = [m.supply_id for m in supply_service.sale_deductions(sale.id)]
        lock_entities(product_ids, PRODUCT_LEDGER)
        lock_entities(supply_ids, SUPPLY_LEDGER)

        sale = lock_for_update(db.session.query(Sale).filter_by(id=sale_id)).populate_existing().first()
        if sale.status == SALE_CANCELLED:
            raise AlreadyCancelled(
                f"Sale {sale.invoice_number} is already cancelled",
                details={"sale_id": sale.id},
            )
        if sale.status != SALE_COMPLETED:
            raise ValidationError(
                f"Cannot cancel sale with status {sale.status}",
                details={"sale_id": sale.id, "status": sale.status},
            )

        reference = LedgerReference(REFERENCE_SALE, sale.id)
        for item in sale.items:
            post_movement(
                ledger=PRODUCT_LEDGER,
                entity_id=item.product_id,
                kind=MOVEMENT_RETURN,
                quantity=item.quantity,
                actor_user_id=ctx.user_id,
                reference=reference,
                note=f"Cancellation of {sale.invoice_number}",
            )
        supply_service.reverse_for_sale(sale.id, ctx.user_id)

        sale.status = SALE_CANCELLED
        sale.cancelled_at = utcnow()
        sale.cancelled_by_user_id = ctx.user_id
        sale.cancel_reason = reason
        db.session.commit()
        return sale

    return run_with_retry(_op)


def mark_as_paid(sale_id: int, ctx) -> Sale:
    """Settle an unpaid or overdue sale. No ledger effect."""
    ctx.require("MARK_SALE_PAID")

    def _op():
        sale = lock_for_update(db.session.query(Sale).filter_by(id=sale_id)).first()
        if sale is None:
            raise NotFound("Sale not found", details={"sale_id": sale_id})
        if sale.status == SALE_CANCELLED:
            raise ValidationError(
                f"Sale {sale.invoice_number} is cancelled",
                details={"sale_id": sale.id},
            )
        if sale.payment_status == PAYMENT_PAID:
            return sale

        sale.payment_status = PAYMENT_PAID
        sale.paid_at = utcnow()
        sale.paid_by_user_id = ctx.user_id
        db.session.commit()
        return sale

    return run_with_retry(_op)


def get_sale(sale_id: int) -> Sale:
    sale = db.session.get(Sale, sale_id)
    if sale is None:
        raise NotFound("Sale not found", details={"sale_id": sale_id})
    return sale


def list_sales(
    *,
    channel: str | None = None,
    status: str | None = None,
    payment_status: str | None = None,
    limit: int = 200,
) -> list[Sale]:
    q = db.session.query(Sale)
    if channel:
        q = q.filter(Sale.channel == channel)
    if status:
        q = q.filter(Sale.status == status)
    if payment_status:
        q = q.filter(Sale.payment_status == payment_status)
    return q.order_by(Sale.created_at.desc(), Sale.id.desc()).limit(limit).all()


def overdue_candidates(as_of: date):
    """Completed credit sales still unpaid past their due date."""
    return (
        db.session.query(Sale)
        .filter(
            Sale.status == SALE_COMPLETED,
            Sale.payment_status == PAYMENT_UNPAID,
            Sale.payment_method.in_(DEFERRED_PAYMENT_METHODS),
            Sale.due_date.isnot(None),
            Sale.due_date < as_of,
        )
        .order_by(Sale.id.asc())
        .all()
    )


def mark_overdue(sale: Sale) -> None:
    sale.payment_status = PAYMENT_OVERDUE
