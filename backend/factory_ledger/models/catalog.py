from __future__ import annotations

from ..extensions import db
from factory_ledger.time_utils import to_utc_z


PRODUCT_ACTIVE = "active"
PRODUCT_INACTIVE = "inactive"

# Price offer channels; ALL is a wildcard matching every sales channel
PRICE_CHANNEL_ALL = "ALL"

# When a linked supply is consumed
DEDUCT_ON_SALE = "SALE"
DEDUCT_ON_PRODUCTION = "PRODUCTION"


class Product(db.Model):
    """
    Finished good tracked by the inventory ledger.

    Stock is NEVER stored here. The current balance is the balance_after of
    the latest InventoryMovement for the product. This row doubles as the
    per-product serialization point: every movement is posted while holding
    a row lock on it.

    kit_kind marks a refillable container product (e.g. a water gallon).
    Selling one as a brand-new unit consumes the supplies of that kit; a
    refill does not. Which one applies is decided by the sale request, never
    by the product alone.
    """
    __tablename__ = "products"
    __table_args__ = (
        db.Index("ix_products_status", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    sku = db.Column(db.String(64), nullable=False, unique=True)
    name = db.Column(db.String(255), nullable=False)
    unit = db.Column(db.String(16), nullable=False, default="pcs")
    weight_kg = db.Column(db.Numeric(10, 2), nullable=True)
    min_stock = db.Column(db.Integer, nullable=False, default=0)
    kit_kind = db.Column(db.String(32), nullable=True)
    status = db.Column(db.String(16), nullable=False, default=PRODUCT_ACTIVE)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    def __repr__(self) -> str:
        return f"<Product id={self.id} sku={self.sku!r}>"

    @property
    def is_active(self) -> bool:
        return self.status == PRODUCT_ACTIVE

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sku": self.sku,
            "name": self.name,
            "unit": self.unit,
            "weight_kg": str(self.weight_kg) if self.weight_kg is not None else None,
            "min_stock": self.min_stock,
            "kit_kind": self.kit_kind,
            "status": self.status,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class Supply(db.Model):
    """
    Raw material / packaging tracked by the supply ledger.

    Deduction rules:
    - linked_product_id + deduct_on=SALE: consumed deduct_per_unit times per
      unit of the linked product sold (e.g. ice bags per ice pack).
    - linked_product_id + deduct_on=PRODUCTION: consumed per unit produced.
    - kit_kind: component of a container kit (shell, cap), consumed only for
      sales flagged as a new kit unit of a product with the same kit_kind.
    """
    __tablename__ = "supplies"
    __table_args__ = (
        db.Index("ix_supplies_linked_product", "linked_product_id", "is_active"),
        db.Index("ix_supplies_kit_kind", "kit_kind", "is_active"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    sku = db.Column(db.String(64), nullable=False, unique=True)
    name = db.Column(db.String(255), nullable=False)
    unit = db.Column(db.String(16), nullable=False, default="pcs")
    min_stock = db.Column(db.Integer, nullable=False, default=10)

    linked_product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=True)
    deduct_on = db.Column(db.String(16), nullable=False, default=DEDUCT_ON_SALE)
    deduct_per_unit = db.Column(db.Integer, nullable=False, default=1)
    kit_kind = db.Column(db.String(32), nullable=True)

    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    linked_product = db.relationship("Product", backref=db.backref("linked_supplies", lazy=True))

    def __repr__(self) -> str:
        return f"<Supply id={self.id} sku={self.sku!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sku": self.sku,
            "name": self.name,
            "unit": self.unit,
            "min_stock": self.min_stock,
            "linked_product_id": self.linked_product_id,
            "deduct_on": self.deduct_on,
            "deduct_per_unit": self.deduct_per_unit,
            "kit_kind": self.kit_kind,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class PriceOffer(db.Model):
    """
    A price a set of roles may use for a product in a channel.

    Sales copy amount_cents into SaleItem.price_snapshot_cents; editing an
    offer never changes a recorded sale.
    """
    __tablename__ = "price_offers"
    __table_args__ = (
        db.Index("ix_price_offers_product_active_channel", "product_id", "is_active", "channel"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    label = db.Column(db.String(128), nullable=True)
    amount_cents = db.Column(db.Integer, nullable=False)
    channel = db.Column(db.String(16), nullable=False, default=PRICE_CHANNEL_ALL)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    valid_from = db.Column(db.DateTime(timezone=True), nullable=True)
    valid_until = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    product = db.relationship("Product", backref=db.backref("price_offers", lazy=True))
    role_access = db.relationship(
        "PriceRoleAccess",
        backref="price_offer",
        lazy=True,
        cascade="all, delete-orphan",
    )

    @property
    def authorized_roles(self) -> set[str]:
        return {access.role for access in self.role_access}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "label": self.label,
            "amount_cents": self.amount_cents,
            "channel": self.channel,
            "is_active": self.is_active,
            "valid_from": to_utc_z(self.valid_from) if self.valid_from else None,
            "valid_until": to_utc_z(self.valid_until) if self.valid_until else None,
            "authorized_roles": sorted(self.authorized_roles),
        }


class PriceRoleAccess(db.Model):
    """Which roles may use a price offer."""
    __tablename__ = "price_role_access"
    __table_args__ = (
        db.UniqueConstraint("price_offer_id", "role", name="uq_price_role_access"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    price_offer_id = db.Column(db.Integer, db.ForeignKey("price_offers.id"), nullable=False, index=True)
    role = db.Column(db.String(32), nullable=False, index=True)
