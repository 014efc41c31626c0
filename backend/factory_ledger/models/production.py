from __future__ import annotations

from ..extensions import db
from factory_ledger.time_utils import utcnow, to_utc_z


class ProductionRecord(db.Model):
    """A production run; its output enters the ledger as PRODUCTION_IN."""
    __tablename__ = "production_records"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    quantity = db.Column(db.Integer, nullable=False)
    machine_on_at = db.Column(db.DateTime(timezone=True), nullable=False)
    machine_off_at = db.Column(db.DateTime(timezone=True), nullable=False)
    notes = db.Column(db.Text, nullable=True)

    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, index=True)

    product = db.relationship("Product")

    @property
    def duration_minutes(self) -> int:
        return int((self.machine_off_at - self.machine_on_at).total_seconds() // 60)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "quantity": self.quantity,
            "machine_on_at": to_utc_z(self.machine_on_at),
            "machine_off_at": to_utc_z(self.machine_off_at),
            "duration_minutes": self.duration_minutes,
            "notes": self.notes,
            "created_by_user_id": self.created_by_user_id,
            "created_at": to_utc_z(self.created_at),
        }


class Purchase(db.Model):
    """Raw-material purchase; each item enters the supply ledger as PURCHASE_IN."""
    __tablename__ = "purchases"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    invoice_number = db.Column(db.String(50), nullable=False, unique=True)
    supplier_name = db.Column(db.String(255), nullable=True)
    notes = db.Column(db.Text, nullable=True)
    total_amount_cents = db.Column(db.Integer, nullable=False, default=0)
    purchased_at = db.Column(db.DateTime(timezone=True), nullable=False)

    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    items = db.relationship("PurchaseItem", backref="purchase", lazy=True, order_by="PurchaseItem.id")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "invoice_number": self.invoice_number,
            "supplier_name": self.supplier_name,
            "notes": self.notes,
            "total_amount_cents": self.total_amount_cents,
            "purchased_at": to_utc_z(self.purchased_at),
            "created_by_user_id": self.created_by_user_id,
            "created_at": to_utc_z(self.created_at),
            "items": [item.to_dict() for item in self.items],
        }


class PurchaseItem(db.Model):
    __tablename__ = "purchase_items"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    purchase_id = db.Column(db.Integer, db.ForeignKey("purchases.id"), nullable=False, index=True)
    supply_id = db.Column(db.Integer, db.ForeignKey("supplies.id"), nullable=False)
    quantity = db.Column(db.Integer, nullable=False)
    price_per_unit_cents = db.Column(db.Integer, nullable=False)
    subtotal_cents = db.Column(db.Integer, nullable=False)

    supply = db.relationship("Supply")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "purchase_id": self.purchase_id,
            "supply_id": self.supply_id,
            "quantity": self.quantity,
            "price_per_unit_cents": self.price_per_unit_cents,
            "subtotal_cents": self.subtotal_cents,
        }
