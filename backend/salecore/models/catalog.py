from __future__ import annotations

from ..extensions import db
from salecore.time_utils import to_utc_z


class Product(db.Model):
    """
    Product master data.

    stock_quantity is a denormalized counter. It should equal the sum of
    quantity_remaining across the product's batches; the two are reconciled
    (see `flask inventory reconcile`) rather than enforced on every write.

    MONEY: prices are integer cents, tax rate is integer basis points
    (1000 = 10%).
    """
    __tablename__ = "products"
    __table_args__ = (
        db.CheckConstraint("stock_quantity >= 0", name="stock_non_negative"),
        db.Index("ix_products_name", "name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    sku = db.Column(db.String(64), nullable=False, unique=True)
    name = db.Column(db.String(255), nullable=False)

    # Authoritative storage in cents (client price hints are never trusted)
    price_cents = db.Column(db.Integer, nullable=False)
    cost_price_cents = db.Column(db.Integer, nullable=False, default=0)
    tax_rate_bps = db.Column(db.Integer, nullable=False, default=0)

    stock_quantity = db.Column(db.Integer, nullable=False, default=0)
    reorder_level = db.Column(db.Integer, nullable=False, default=0)

    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    def __repr__(self) -> str:
        return f"<Product id={self.id} sku={self.sku!r} stock={self.stock_quantity}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sku": self.sku,
            "name": self.name,
            "price_cents": self.price_cents,
            "cost_price_cents": self.cost_price_cents,
            "tax_rate_bps": self.tax_rate_bps,
            "stock_quantity": self.stock_quantity,
            "reorder_level": self.reorder_level,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class ProductBatch(db.Model):
    """
    Inventory lot.

    FIFO ordering key is (created_at, id). quantity_remaining is only ever
    changed through compare-and-swap updates.
    """
    __tablename__ = "product_batches"
    __table_args__ = (
        db.CheckConstraint("quantity_remaining >= 0", name="remaining_non_negative"),
        db.CheckConstraint("quantity_remaining <= quantity_initial", name="remaining_within_initial"),
        db.Index("ix_product_batches_product_created", "product_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    batch_number = db.Column(db.String(64), nullable=True)

    quantity_initial = db.Column(db.Integer, nullable=False)
    quantity_remaining = db.Column(db.Integer, nullable=False)
    cost_price_cents = db.Column(db.Integer, nullable=True)

    expiry_date = db.Column(db.Date, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    product = db.relationship("Product", backref=db.backref("batches", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "batch_number": self.batch_number,
            "quantity_initial": self.quantity_initial,
            "quantity_remaining": self.quantity_remaining,
            "cost_price_cents": self.cost_price_cents,
            "expiry_date": self.expiry_date.isoformat() if self.expiry_date else None,
            "created_at": to_utc_z(self.created_at),
        }
