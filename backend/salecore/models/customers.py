from __future__ import annotations

from ..extensions import db
from salecore.time_utils import to_utc_z


class Customer(db.Model):
    """
    Customer master data for loyalty tracking.

    loyalty_points is a shared counter: it is only changed through the
    atomic increment in services.concurrency, never by read-modify-write on
    a loaded instance.
    """
    __tablename__ = "customers"
    __table_args__ = (
        db.CheckConstraint("loyalty_points >= 0", name="loyalty_points_non_negative"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    phone = db.Column(db.String(32), nullable=True, index=True)
    email = db.Column(db.String(255), nullable=True)

    loyalty_points = db.Column(db.Integer, nullable=False, default=0)
    is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "phone": self.phone,
            "email": self.email,
            "loyalty_points": self.loyalty_points,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class LoyaltyLog(db.Model):
    """
    Append-only ledger of loyalty point changes.

    points_change is signed: positive for points earned, negative for
    redemptions and refund reversals.
    """
    __tablename__ = "loyalty_logs"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=False, index=True)

    points_change = db.Column(db.Integer, nullable=False)
    reason = db.Column(db.String(255), nullable=False)
    reference_id = db.Column(db.String(64), nullable=True, index=True)
    created_by = db.Column(db.Integer, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    customer = db.relationship("Customer", backref=db.backref("loyalty_logs", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "customer_id": self.customer_id,
            "points_change": self.points_change,
            "reason": self.reason,
            "reference_id": self.reference_id,
            "created_by": self.created_by,
            "created_at": to_utc_z(self.created_at),
        }
