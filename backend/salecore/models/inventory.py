from __future__ import annotations

from ..extensions import db
from salecore.time_utils import to_utc_z


MOVEMENT_SALE = "sale"
MOVEMENT_RETURN = "return"
MOVEMENT_ADJUSTMENT = "adjustment"


class StockMovement(db.Model):
    """
    Append-only audit row for every stock change.

    Rows are never updated. They are deleted only by compensation, when the
    stock change they record is itself being undone.
    """
    __tablename__ = "stock_movements"
    __table_args__ = (
        db.Index("ix_stock_movements_product_created", "product_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    batch_id = db.Column(db.Integer, db.ForeignKey("product_batches.id"), nullable=True, index=True)

    type = db.Column(db.String(16), nullable=False, index=True)
    quantity_change = db.Column(db.Integer, nullable=False)

    # Sale id or return request id, stored as text like the other audit refs
    reference_id = db.Column(db.String(64), nullable=True, index=True)
    remarks = db.Column(db.String(255), nullable=True)
    created_by = db.Column(db.Integer, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "batch_id": self.batch_id,
            "type": self.type,
            "quantity_change": self.quantity_change,
            "reference_id": self.reference_id,
            "remarks": self.remarks,
            "created_by": self.created_by,
            "created_at": to_utc_z(self.created_at),
        }
