from __future__ import annotations

from ..extensions import db
from factory_ledger.time_utils import to_utc_z


CUSTOMER_RETAIL = "RETAIL"
CUSTOMER_AGENT = "AGENT"
CUSTOMER_RESELLER = "RESELLER"

DEFAULT_BLACKLIST_REASON = "Payment past due date"


class Customer(db.Model):
    """
    Customer master data (owned by the CRUD subsystem).

    The sale orchestrator only reads is_blacklisted; the overdue sweep is the
    only writer of the blacklist flag inside this package.
    """
    __tablename__ = "customers"
    __table_args__ = (
        db.Index("ix_customers_blacklisted", "is_blacklisted"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    phone = db.Column(db.String(32), nullable=True)
    customer_type = db.Column(db.String(16), nullable=False, default=CUSTOMER_RETAIL)
    address = db.Column(db.Text, nullable=True)

    is_blacklisted = db.Column(db.Boolean, nullable=False, default=False)
    blacklist_reason = db.Column(db.String(255), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    def blacklist(self, reason: str | None = None) -> None:
        self.is_blacklisted = True
        self.blacklist_reason = reason or DEFAULT_BLACKLIST_REASON

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "phone": self.phone,
            "customer_type": self.customer_type,
            "address": self.address,
            "is_blacklisted": self.is_blacklisted,
            "blacklist_reason": self.blacklist_reason,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
