# Overview: Stock engine; the only code that writes ledger movements.

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import func

from ..extensions import db
from ..errors import InsufficientStock, NotFound, ValidationError
from ..models import Product, Supply, InventoryMovement, SupplyMovement
from ..models.catalog import PRODUCT_ACTIVE
from ..models.inventory import (
    PRODUCT_MOVEMENT_KINDS,
    SUPPLY_MOVEMENT_KINDS,
    INBOUND_KINDS,
    OUTBOUND_KINDS,
    MOVEMENT_ADJUSTMENT,
    REFERENCE_KINDS,
)
from .concurrency import begin_write_transaction, lock_rows_in_order, run_with_retry
"""
Stock Engine Invariants (authoritative)

Balance model:
- The current balance of an entity is the balance_after of its latest
  movement in ledger order (created_at, id). No counter is stored anywhere.
- balance_after = previous balance + signed quantity, so the latest
  balance always equals the signed sum of the entity's ledger.

Serialization:
- A movement may only be posted while the caller holds the row lock on the
  tracked entity (Product / Supply). "read latest balance -> compute ->
  write" therefore never interleaves with another writer on the same entity.
- Multi-entity units lock every entity they touch up front, products before
  supplies, each in ascending id order.

Negative balances:
- Ordinary movements that would leave a balance below zero are rejected with
  InsufficientStock and nothing is written.
- allow_negative=True is reserved for admin overrides; those rows carry
  is_forced=True.
"""


@dataclass(frozen=True)
class Ledger:
    name: str
    entity_model: type
    movement_model: type
    entity_fk: str
    kinds: tuple

    @property
    def entity_column(self):
        return getattr(self.movement_model, self.entity_fk)


PRODUCT_LEDGER = Ledger("product", Product, InventoryMovement, "product_id", PRODUCT_MOVEMENT_KINDS)
SUPPLY_LEDGER = Ledger("supply", Supply, SupplyMovement, "supply_id", SUPPLY_MOVEMENT_KINDS)


@dataclass(frozen=True)
class LedgerReference:
    """Tagged pointer at whatever caused a movement."""
    kind: str
    id: int

    def __post_init__(self):
        if self.kind not in REFERENCE_KINDS:
            raise ValidationError(f"Unknown reference kind {self.kind}")


def signed_quantity(kind: str, quantity: int) -> int:
    """
    Convert a movement request into the signed delta stored on the ledger.

    Inbound and outbound kinds take a positive quantity; ADJUSTMENT takes a
    non-zero signed delta.
    """
    if isinstance(quantity, bool) or not isinstance(quantity, int):
        raise ValidationError("quantity must be an integer")
    if kind == MOVEMENT_ADJUSTMENT:
        if quantity == 0:
            raise ValidationError("adjustment quantity cannot be zero")
        return quantity
    if quantity <= 0:
        raise ValidationError(f"{kind} quantity must be positive")
    if kind in INBOUND_KINDS:
        return quantity
    if kind in OUTBOUND_KINDS:
        return -quantity
    raise ValidationError(f"Unknown movement kind {kind}")


def _latest_movement(entity_id: int, ledger: Ledger):
    model = ledger.movement_model
    return (
        db.session.query(model)
        .filter(ledger.entity_column == entity_id)
        .order_by(model.created_at.desc(), model.id.desc())
        .first()
    )


def current_balance(entity_id: int, ledger: Ledger = PRODUCT_LEDGER) -> int:
    """Balance after the entity's most recent movement (0 with no history)."""
    latest = _latest_movement(entity_id, ledger)
    return latest.balance_after if latest is not None else 0


def ledger_sum(entity_id: int, ledger: Ledger = PRODUCT_LEDGER) -> int:
    q = db.session.query(
        func.coalesce(func.sum(ledger.movement_model.quantity), 0)
    ).filter(ledger.entity_column == entity_id)
    return int(q.scalar() or 0)


def lock_entities(entity_ids, ledger: Ledger = PRODUCT_LEDGER) -> dict:
    """
    Acquire the serialization point of every entity in `entity_ids`.

    Must be called inside the unit of work that will post the movements.
    Raises NotFound if any entity does not exist.
    """
    begin_write_transaction()
    wanted = {i for i in entity_ids if i is not None}
    rows = lock_rows_in_order(ledger.entity_model, wanted)
    missing = sorted(wanted - set(rows))
    if missing:
        raise NotFound(
            f"{ledger.name} not found",
            details={"entity": ledger.name, "ids": missing},
        )
    return rows


def post_movement(
    *,
    ledger: Ledger,
    entity_id: int,
    kind: str,
    quantity: int,
    actor_user_id: int,
    reference: LedgerReference | None = None,
    note: str | None = None,
    allow_negative: bool = False,
):
    """
    Append one movement without locking or committing.

    Caller MUST already hold the entity lock (see lock_entities) and owns the
    commit/rollback of the enclosing unit.
    """
    if kind not in ledger.kinds:
        raise ValidationError(
            f"{kind} is not a valid {ledger.name} movement",
            details={"movement_type": kind, "allowed": list(ledger.kinds)},
        )
    delta = signed_quantity(kind, quantity)

    current = current_balance(entity_id, ledger)
    new_balance = current + delta

    if new_balance < 0 and not allow_negative:
        raise InsufficientStock(
            f"Insufficient {ledger.name} stock. Current: {current}, requested: {abs(delta)}",
            details={
                "entity": ledger.name,
                "entity_id": entity_id,
                "current_balance": current,
                "requested_quantity": abs(delta),
            },
        )

    movement = ledger.movement_model(
        movement_type=kind,
        quantity=delta,
        balance_after=new_balance,
        reference_kind=reference.kind if reference else None,
        reference_id=reference.id if reference else None,
        is_forced=bool(allow_negative and new_balance < 0),
        note=note,
        actor_user_id=actor_user_id,
    )
    setattr(movement, ledger.entity_fk, entity_id)
    db.session.add(movement)
    db.session.flush()
    return movement


def record_movement(
    entity_id: int,
    kind: str,
    quantity: int,
    actor_user_id: int,
    reference: LedgerReference | None = None,
    *,
    note: str | None = None,
    ledger: Ledger = PRODUCT_LEDGER,
    commit: bool = True,
):
    """
    Lock the entity, append one movement, and commit.

    Fails with InsufficientStock (and writes nothing) when the movement
    would drive the balance negative.
    """
    def _op():
        lock_entities([entity_id], ledger)
        movement = post_movement(
            ledger=ledger,
            entity_id=entity_id,
            kind=kind,
            quantity=quantity,
            actor_user_id=actor_user_id,
            reference=reference,
            note=note,
        )
        if commit:
            db.session.commit()
        return movement

    if not commit:
        return _op()
    return run_with_retry(_op)


def verify_ledger(entity_id: int, ledger: Ledger = PRODUCT_LEDGER) -> dict:
    """
    Replay an entity's ledger and check every stored balance_after.

    Returns a report; `consistent` is False if any row disagrees with the
    running signed sum, with the first offending movement id.
    """
    model = ledger.movement_model
    movements = (
        db.session.query(model)
        .filter(ledger.entity_column == entity_id)
        .order_by(model.created_at.asc(), model.id.asc())
        .all()
    )

    running = 0
    first_break = None
    for movement in movements:
        running += movement.quantity
        if first_break is None and movement.balance_after != running:
            first_break = movement.id

    latest = movements[-1].balance_after if movements else 0
    return {
        "entity": ledger.name,
        "entity_id": entity_id,
        "movement_count": len(movements),
        "ledger_sum": running,
        "current_balance": latest,
        "consistent": first_break is None and latest == running,
        "first_inconsistent_movement_id": first_break,
    }


def get_stock_levels() -> list[dict]:
    """Current balance of every active product, with a low-stock flag."""
    products = (
        db.session.query(Product)
        .filter(Product.status == PRODUCT_ACTIVE)
        .order_by(Product.name.asc())
        .all()
    )
    levels = []
    for product in products:
        balance = current_balance(product.id)
        levels.append({
            "product_id": product.id,
            "sku": product.sku,
            "name": product.name,
            "unit": product.unit,
            "current_stock": balance,
            "min_stock": product.min_stock,
            "is_low_stock": balance <= product.min_stock,
        })
    return levels


def list_movements(
    *,
    entity_id: int | None = None,
    movement_type: str | None = None,
    start: datetime | None = None,
    end: datetime | None = None,
    limit: int = 200,
    ledger: Ledger = PRODUCT_LEDGER,
):
    """Movement history, newest first. start/end are inclusive."""
    model = ledger.movement_model
    q = db.session.query(model)
    if entity_id is not None:
        q = q.filter(ledger.entity_column == entity_id)
    if movement_type:
        q = q.filter(model.movement_type == movement_type)
    if start is not None:
        q = q.filter(model.created_at >= start)
    if end is not None:
        q = q.filter(model.created_at <= end)
    return q.order_by(model.created_at.desc(), model.id.desc()).limit(limit).all()


def adjust_stock(ctx, product_id: int, quantity_delta: int, note: str | None = None):
    """Manual ADJUSTMENT of a product (stock count corrections)."""
    ctx.require("ADJUST_INVENTORY")
    return record_movement(
        product_id,
        MOVEMENT_ADJUSTMENT,
        quantity_delta,
        ctx.user_id,
        note=note,
        ledger=PRODUCT_LEDGER,
    )
