from __future__ import annotations

from sqlalchemy import event

from ..extensions import db
from ..errors import StockLedgerError
from factory_ledger.time_utils import utcnow, to_utc_z
"""
Ledger Invariants (authoritative)

- Two append-only ledgers: inventory_movements (finished goods) and
  supply_movements (raw materials).
- quantity is signed: positive adds stock, negative removes it.
- balance_after is the running balance of the entity after this movement;
  it equals the signed sum of all movements of the entity up to and
  including this one, in ledger order (created_at, id).
- Rows are never updated or deleted. Corrections are new ADJUSTMENT or
  RETURN movements.
- reference_kind/reference_id is a tagged pointer at whatever caused the
  movement (SALE, PRODUCTION, PURCHASE); both NULL for manual adjustments.
"""


# Finished-goods movement kinds
MOVEMENT_PRODUCTION_IN = "PRODUCTION_IN"
MOVEMENT_SALE_FACTORY = "SALE_FACTORY"
MOVEMENT_SALE_FIELD = "SALE_FIELD"
MOVEMENT_ADJUSTMENT = "ADJUSTMENT"
MOVEMENT_RETURN = "RETURN"

PRODUCT_MOVEMENT_KINDS = (
    MOVEMENT_PRODUCTION_IN,
    MOVEMENT_SALE_FACTORY,
    MOVEMENT_SALE_FIELD,
    MOVEMENT_ADJUSTMENT,
    MOVEMENT_RETURN,
)

# Supply movement kinds
MOVEMENT_PURCHASE_IN = "PURCHASE_IN"
MOVEMENT_SALE_OUT = "SALE_OUT"
MOVEMENT_PRODUCTION_OUT = "PRODUCTION_OUT"

SUPPLY_MOVEMENT_KINDS = (
    MOVEMENT_PURCHASE_IN,
    MOVEMENT_SALE_OUT,
    MOVEMENT_PRODUCTION_OUT,
    MOVEMENT_ADJUSTMENT,
    MOVEMENT_RETURN,
)

# Kinds whose quantity argument is added / subtracted. ADJUSTMENT takes a
# signed delta as-is.
INBOUND_KINDS = frozenset({MOVEMENT_PRODUCTION_IN, MOVEMENT_RETURN, MOVEMENT_PURCHASE_IN})
OUTBOUND_KINDS = frozenset({
    MOVEMENT_SALE_FACTORY,
    MOVEMENT_SALE_FIELD,
    MOVEMENT_SALE_OUT,
    MOVEMENT_PRODUCTION_OUT,
})

REFERENCE_SALE = "SALE"
REFERENCE_PRODUCTION = "PRODUCTION"
REFERENCE_PURCHASE = "PURCHASE"
REFERENCE_KINDS = (REFERENCE_SALE, REFERENCE_PRODUCTION, REFERENCE_PURCHASE)


class LedgerImmutableError(StockLedgerError):
    code = "LEDGER_IMMUTABLE"
    http_status = 409


class InventoryMovement(db.Model):
    """One signed change to a product's stock."""
    __tablename__ = "inventory_movements"
    __table_args__ = (
        db.Index("ix_invmov_product_created", "product_id", "created_at", "id"),
        db.Index("ix_invmov_reference", "reference_kind", "reference_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    movement_type = db.Column(db.String(32), nullable=False, index=True)

    quantity = db.Column(db.Integer, nullable=False)
    balance_after = db.Column(db.Integer, nullable=False)

    reference_kind = db.Column(db.String(16), nullable=True)
    reference_id = db.Column(db.Integer, nullable=True)

    # Posted by an admin override that skipped the negative-balance guard
    is_forced = db.Column(db.Boolean, nullable=False, default=False)
    note = db.Column(db.String(255), nullable=True)

    actor_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    product = db.relationship("Product", backref=db.backref("movements", lazy="dynamic"))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "entity": "product",
            "product_id": self.product_id,
            "movement_type": self.movement_type,
            "quantity": self.quantity,
            "balance_after": self.balance_after,
            "reference_kind": self.reference_kind,
            "reference_id": self.reference_id,
            "is_forced": self.is_forced,
            "note": self.note,
            "actor_user_id": self.actor_user_id,
            "created_at": to_utc_z(self.created_at),
        }


class SupplyMovement(db.Model):
    """One signed change to a supply's stock."""
    __tablename__ = "supply_movements"
    __table_args__ = (
        db.Index("ix_supmov_supply_created", "supply_id", "created_at", "id"),
        db.Index("ix_supmov_reference", "reference_kind", "reference_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    supply_id = db.Column(db.Integer, db.ForeignKey("supplies.id"), nullable=False, index=True)
    movement_type = db.Column(db.String(32), nullable=False, index=True)

    quantity = db.Column(db.Integer, nullable=False)
    balance_after = db.Column(db.Integer, nullable=False)

    reference_kind = db.Column(db.String(16), nullable=True)
    reference_id = db.Column(db.Integer, nullable=True)

    is_forced = db.Column(db.Boolean, nullable=False, default=False)
    note = db.Column(db.String(255), nullable=True)

    actor_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    supply = db.relationship("Supply", backref=db.backref("movements", lazy="dynamic"))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "entity": "supply",
            "supply_id": self.supply_id,
            "movement_type": self.movement_type,
            "quantity": self.quantity,
            "balance_after": self.balance_after,
            "reference_kind": self.reference_kind,
            "reference_id": self.reference_id,
            "is_forced": self.is_forced,
            "note": self.note,
            "actor_user_id": self.actor_user_id,
            "created_at": to_utc_z(self.created_at),
        }


@event.listens_for(InventoryMovement, "before_update")
@event.listens_for(SupplyMovement, "before_update")
def _reject_movement_update(mapper, connection, target):
    raise LedgerImmutableError(
        f"{type(target).__name__} {target.id} is append-only",
        details={"movement_id": target.id},
    )


@event.listens_for(InventoryMovement, "before_delete")
@event.listens_for(SupplyMovement, "before_delete")
def _reject_movement_delete(mapper, connection, target):
    raise LedgerImmutableError(
        f"{type(target).__name__} {target.id} cannot be deleted",
        details={"movement_id": target.id},
    )
