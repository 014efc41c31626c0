from __future__ import annotations

from ..extensions import db
from factory_ledger.time_utils import utcnow, to_utc_z


CHANNEL_FACTORY = "FACTORY"
CHANNEL_FIELD = "FIELD"
SALES_CHANNELS = (CHANNEL_FACTORY, CHANNEL_FIELD)

# Offline-capable channel: its sales need reconciliation before they count as synced
OFFLINE_CHANNEL = CHANNEL_FIELD

INVOICE_PREFIXES = {
    CHANNEL_FACTORY: "FAC",
    CHANNEL_FIELD: "FLD",
}

PAYMENT_CASH = "CASH"
PAYMENT_TRANSFER = "TRANSFER"
PAYMENT_CREDIT = "CREDIT"
PAYMENT_METHODS = (PAYMENT_CASH, PAYMENT_TRANSFER, PAYMENT_CREDIT)

# Payment methods that leave the sale unpaid until settled by a due date
DEFERRED_PAYMENT_METHODS = frozenset({PAYMENT_CREDIT})

SALE_PENDING = "pending"
SALE_COMPLETED = "completed"
SALE_CANCELLED = "cancelled"

PAYMENT_PAID = "paid"
PAYMENT_UNPAID = "unpaid"
PAYMENT_OVERDUE = "overdue"

SYNC_PENDING = "pending"
SYNC_SYNCED = "synced"
SYNC_CONFLICT = "conflict"


class Sale(db.Model):
    """
    Sale header. Created together with its items and ledger movements.

    Lifecycle: pending -> completed -> cancelled (cancel is one-way).
    payment_status moves independently: unpaid -> paid, unpaid -> overdue -> paid.
    """
    __tablename__ = "sales"
    __table_args__ = (
        db.Index("ix_sales_channel_sold", "channel", "sold_at"),
        db.Index("ix_sales_channel_created", "channel", "created_at"),
        db.Index("ix_sales_payment_due", "payment_status", "due_date"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    invoice_number = db.Column(db.String(50), nullable=False, unique=True)

    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=True, index=True)
    channel = db.Column(db.String(16), nullable=False)
    payment_method = db.Column(db.String(16), nullable=False)
    total_amount_cents = db.Column(db.Integer, nullable=False)

    status = db.Column(db.String(16), nullable=False, default=SALE_PENDING, index=True)
    payment_status = db.Column(db.String(16), nullable=False, default=PAYMENT_PAID)
    sync_status = db.Column(db.String(16), nullable=False, default=SYNC_SYNCED, index=True)
    due_date = db.Column(db.Date, nullable=True)
    is_new_kit_unit = db.Column(db.Boolean, nullable=False, default=False)

    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    sold_at = db.Column(db.DateTime(timezone=True), nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    paid_at = db.Column(db.DateTime(timezone=True), nullable=True)
    paid_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)

    cancelled_at = db.Column(db.DateTime(timezone=True), nullable=True)
    cancelled_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    cancel_reason = db.Column(db.String(255), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    customer = db.relationship("Customer", backref=db.backref("sales", lazy=True))
    items = db.relationship("SaleItem", backref="sale", lazy=True, order_by="SaleItem.id")
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self, include_items: bool = True) -> dict:
        data = {
            "id": self.id,
            "invoice_number": self.invoice_number,
            "customer_id": self.customer_id,
            "channel": self.channel,
            "payment_method": self.payment_method,
            "total_amount_cents": self.total_amount_cents,
            "status": self.status,
            "payment_status": self.payment_status,
            "sync_status": self.sync_status,
            "due_date": self.due_date.isoformat() if self.due_date else None,
            "is_new_kit_unit": self.is_new_kit_unit,
            "created_by_user_id": self.created_by_user_id,
            "sold_at": to_utc_z(self.sold_at),
            "created_at": to_utc_z(self.created_at),
            "paid_at": to_utc_z(self.paid_at) if self.paid_at else None,
            "paid_by_user_id": self.paid_by_user_id,
            "cancelled_at": to_utc_z(self.cancelled_at) if self.cancelled_at else None,
            "cancelled_by_user_id": self.cancelled_by_user_id,
            "cancel_reason": self.cancel_reason,
            "version_id": self.version_id,
        }
        if include_items:
            data["items"] = [item.to_dict() for item in self.items]
        return data


class SaleItem(db.Model):
    """One line of a sale. Never edited after creation."""
    __tablename__ = "sale_items"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    price_offer_id = db.Column(db.Integer, db.ForeignKey("price_offers.id"), nullable=False)

    # Amount copied from the price offer at sale time
    price_snapshot_cents = db.Column(db.Integer, nullable=False)
    quantity = db.Column(db.Integer, nullable=False)
    subtotal_cents = db.Column(db.Integer, nullable=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    product = db.relationship("Product")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sale_id": self.sale_id,
            "product_id": self.product_id,
            "price_offer_id": self.price_offer_id,
            "price_snapshot_cents": self.price_snapshot_cents,
            "quantity": self.quantity,
            "subtotal_cents": self.subtotal_cents,
        }
