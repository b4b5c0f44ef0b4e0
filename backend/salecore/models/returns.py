from __future__ import annotations

from ..extensions import db
from salecore.time_utils import to_utc_z


RETURN_STATUS_PENDING = "pending"
RETURN_STATUS_COMPLETED = "completed"
RETURN_STATUS_REJECTED = "rejected"


class ReturnRequest(db.Model):
    """
    Partial return of a completed sale.

    LIFECYCLE:
    1. pending - lines recorded, nothing restocked yet
    2. completed - stock restored, refund amount final
    3. rejected - closed without stock effects
    """
    __tablename__ = "return_requests"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=False, index=True)

    status = db.Column(db.String(16), nullable=False, default=RETURN_STATUS_PENDING, index=True)
    refund_amount_cents = db.Column(db.Integer, nullable=False, default=0)
    reason = db.Column(db.String(255), nullable=True)

    created_by = db.Column(db.Integer, nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    sale = db.relationship("Sale", backref=db.backref("return_requests", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sale_id": self.sale_id,
            "status": self.status,
            "refund_amount_cents": self.refund_amount_cents,
            "reason": self.reason,
            "created_by": self.created_by,
            "created_at": to_utc_z(self.created_at),
            "completed_at": to_utc_z(self.completed_at) if self.completed_at else None,
            "items": [item.to_dict() for item in self.items],
        }


class ReturnRequestItem(db.Model):
    """Returned quantity of one sale item; refund priced at the original sale."""
    __tablename__ = "return_request_items"
    __table_args__ = (
        db.CheckConstraint("quantity > 0", name="quantity_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    return_id = db.Column(db.Integer, db.ForeignKey("return_requests.id"), nullable=False, index=True)
    sale_item_id = db.Column(db.Integer, db.ForeignKey("sale_items.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False)

    quantity = db.Column(db.Integer, nullable=False)
    refund_cents = db.Column(db.Integer, nullable=False)

    return_request = db.relationship("ReturnRequest", backref=db.backref("items", lazy=True))
    sale_item = db.relationship("SaleItem")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "return_id": self.return_id,
            "sale_item_id": self.sale_item_id,
            "product_id": self.product_id,
            "quantity": self.quantity,
            "refund_cents": self.refund_cents,
        }
