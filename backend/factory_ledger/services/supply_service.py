# Overview: Supply deduction engine; raw-material effects of sales, production, and purchases.

"""
Supply Deduction Rules

- Direct link: every active supply linked to the product with
  deduct_on=SALE loses deduct_per_unit x sold quantity (SALE_OUT).
- Kit: a product with a kit_kind, sold as a brand-new unit (the sale
  request says so explicitly), also consumes every active supply of the
  same kit_kind (SALE_OUT). Refills consume nothing from the kit.
- Production: supplies linked with deduct_on=PRODUCTION lose
  deduct_per_unit x produced quantity (PRODUCTION_OUT).

Negative policy (SUPPLY_NEGATIVE_POLICY):
- "reject" (default): a deduction that would leave a supply below zero fails
  with InsufficientStock and the whole enclosing unit rolls back.
- "allow": the negative balance is recorded.
Admin-forced sale replays always allow it.

The deduct_* functions do not lock: callers plan the deductions first,
lock the touched supplies with stock_service.lock_entities, then post.
"""

from __future__ import annotations

from flask import current_app

from ..extensions import db
from ..errors import InsufficientStock, ValidationError
from ..models import Supply, SupplyMovement
from ..models.catalog import DEDUCT_ON_SALE, DEDUCT_ON_PRODUCTION
from ..models.inventory import (
    MOVEMENT_SALE_OUT,
    MOVEMENT_PRODUCTION_OUT,
    MOVEMENT_PURCHASE_IN,
    MOVEMENT_RETURN,
    MOVEMENT_ADJUSTMENT,
    REFERENCE_SALE,
)
from .stock_service import (
    SUPPLY_LEDGER,
    LedgerReference,
    current_balance,
    post_movement,
    record_movement,
)


POLICY_REJECT = "reject"
POLICY_ALLOW = "allow"


def negative_policy() -> str:
    policy = current_app.config.get("SUPPLY_NEGATIVE_POLICY", POLICY_REJECT)
    if policy not in (POLICY_REJECT, POLICY_ALLOW):
        raise ValidationError(f"Unsupported SUPPLY_NEGATIVE_POLICY {policy!r}")
    return policy


def _allows_negative(force: bool) -> bool:
    return force or negative_policy() == POLICY_ALLOW


def linked_supplies(product_id: int, deduct_on: str = DEDUCT_ON_SALE) -> list[Supply]:
    return (
        db.session.query(Supply)
        .filter(
            Supply.linked_product_id == product_id,
            Supply.deduct_on == deduct_on,
            Supply.is_active.is_(True),
        )
        .order_by(Supply.id.asc())
        .all()
    )


def kit_supplies(kit_kind: str) -> list[Supply]:
    return (
        db.session.query(Supply)
        .filter(Supply.kit_kind == kit_kind, Supply.is_active.is_(True))
        .order_by(Supply.id.asc())
        .all()
    )


def plan_sale_deductions(lines, is_new_kit_unit: bool = False) -> dict[int, int]:
    """
    Total supply consumption of a sale, as {supply_id: quantity}.

    `lines` is an iterable of (product, quantity). Used to lock the touched
    supplies up front and to pre-check availability before any write.
    """
    plan: dict[int, int] = {}
    for product, quantity in lines:
        for supply in linked_supplies(product.id, DEDUCT_ON_SALE):
            plan[supply.id] = plan.get(supply.id, 0) + supply.deduct_per_unit * quantity
        if is_new_kit_unit and product.kit_kind:
            for supply in kit_supplies(product.kit_kind):
                plan[supply.id] = plan.get(supply.id, 0) + supply.deduct_per_unit * quantity
    return plan


def plan_production_deductions(product_id: int, quantity: int) -> dict[int, int]:
    return {
        supply.id: supply.deduct_per_unit * quantity
        for supply in linked_supplies(product_id, DEDUCT_ON_PRODUCTION)
    }


def check_plan(plan: dict[int, int], force: bool = False) -> None:
    """Raise InsufficientStock if the plan would push a supply negative under "reject"."""
    if _allows_negative(force):
        return
    short = []
    for supply_id, required in sorted(plan.items()):
        balance = current_balance(supply_id, SUPPLY_LEDGER)
        if balance < required:
            short.append({
                "supply_id": supply_id,
                "requested_quantity": required,
                "current_balance": balance,
            })
    if short:
        raise InsufficientStock(
            "Insufficient supply stock",
            details={"entity": SUPPLY_LEDGER.name, "items": short},
        )


def _deduct(supplies, quantity, kind, reference, actor_user_id, force):
    allow_negative = _allows_negative(force)
    movements = []
    for supply in supplies:
        amount = supply.deduct_per_unit * quantity
        if amount <= 0:
            continue
        movements.append(post_movement(
            ledger=SUPPLY_LEDGER,
            entity_id=supply.id,
            kind=kind,
            quantity=amount,
            actor_user_id=actor_user_id,
            reference=reference,
            allow_negative=allow_negative,
        ))
    return movements


def deduct_for_sale(
    product_id: int,
    sold_quantity: int,
    reference: LedgerReference,
    actor_user_id: int,
    force: bool = False,
) -> list[SupplyMovement]:
    """One SALE_OUT per active supply directly linked to the sold product."""
    return _deduct(
        linked_supplies(product_id, DEDUCT_ON_SALE),
        sold_quantity,
        MOVEMENT_SALE_OUT,
        reference,
        actor_user_id,
        force,
    )


def deduct_for_kit(
    kit_kind: str,
    quantity: int,
    reference: LedgerReference,
    actor_user_id: int,
    force: bool = False,
) -> list[SupplyMovement]:
    """One SALE_OUT per active component of the kit (new units only)."""
    return _deduct(
        kit_supplies(kit_kind),
        quantity,
        MOVEMENT_SALE_OUT,
        reference,
        actor_user_id,
        force,
    )


def deduct_for_production(
    product_id: int,
    produced_quantity: int,
    reference: LedgerReference,
    actor_user_id: int,
) -> list[SupplyMovement]:
    return _deduct(
        linked_supplies(product_id, DEDUCT_ON_PRODUCTION),
        produced_quantity,
        MOVEMENT_PRODUCTION_OUT,
        reference,
        actor_user_id,
        False,
    )


def sale_deductions(sale_id: int) -> list[SupplyMovement]:
    return (
        db.session.query(SupplyMovement)
        .filter(
            SupplyMovement.reference_kind == REFERENCE_SALE,
            SupplyMovement.reference_id == sale_id,
            SupplyMovement.movement_type == MOVEMENT_SALE_OUT,
        )
        .order_by(SupplyMovement.id.asc())
        .all()
    )


def reverse_for_sale(sale_id: int, actor_user_id: int) -> list[SupplyMovement]:
    """
    Post a RETURN for every SALE_OUT a sale caused.

    Caller must hold the locks of the affected supplies.
    """
    reference = LedgerReference(REFERENCE_SALE, sale_id)
    returns = []
    for original in sale_deductions(sale_id):
        returns.append(post_movement(
            ledger=SUPPLY_LEDGER,
            entity_id=original.supply_id,
            kind=MOVEMENT_RETURN,
            quantity=-original.quantity,
            actor_user_id=actor_user_id,
            reference=reference,
            note=f"Reversal of movement {original.id}",
        ))
    return returns


def add_stock(
    supply_id: int,
    quantity: int,
    actor_user_id: int,
    reference: LedgerReference | None = None,
    note: str | None = None,
) -> SupplyMovement:
    """PURCHASE_IN without locking or committing (see purchase_service)."""
    return post_movement(
        ledger=SUPPLY_LEDGER,
        entity_id=supply_id,
        kind=MOVEMENT_PURCHASE_IN,
        quantity=quantity,
        actor_user_id=actor_user_id,
        reference=reference,
        note=note,
    )


def adjust_supply(ctx, supply_id: int, quantity_delta: int, note: str | None = None) -> SupplyMovement:
    ctx.require("ADJUST_INVENTORY")
    return record_movement(
        supply_id,
        MOVEMENT_ADJUSTMENT,
        quantity_delta,
        ctx.user_id,
        note=note,
        ledger=SUPPLY_LEDGER,
    )


def get_low_stock_supplies() -> list[dict]:
    supplies = (
        db.session.query(Supply)
        .filter(Supply.is_active.is_(True))
        .order_by(Supply.name.asc())
        .all()
    )
    low = []
    for supply in supplies:
        balance = current_balance(supply.id, SUPPLY_LEDGER)
        if balance <= supply.min_stock:
            data = supply.to_dict()
            data["current_stock"] = balance
            low.append(data)
    return low
