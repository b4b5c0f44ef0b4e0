from __future__ import annotations

from ..extensions import db
from salecore.time_utils import to_utc_z


PROMO_PERCENTAGE = "percentage"
PROMO_FIXED = "fixed"


class Promotion(db.Model):
    """
    Promo-code discounts applied to a whole order.

    value is basis points for percentage promotions (1500 = 15%) and cents
    for fixed promotions. start_date / end_date bounds are inclusive and
    optional.
    """
    __tablename__ = "promotions"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    code = db.Column(db.String(64), nullable=False, unique=True)
    name = db.Column(db.String(255), nullable=True)

    promo_type = db.Column(db.String(16), nullable=False)  # percentage, fixed
    value = db.Column(db.Integer, nullable=False, default=0)

    min_order_cents = db.Column(db.Integer, nullable=False, default=0)

    start_date = db.Column(db.Date, nullable=True)
    end_date = db.Column(db.Date, nullable=True)

    is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self):
        return {
            "id": self.id,
            "code": self.code,
            "name": self.name,
            "promo_type": self.promo_type,
            "value": self.value,
            "min_order_cents": self.min_order_cents,
            "start_date": self.start_date.isoformat() if self.start_date else None,
            "end_date": self.end_date.isoformat() if self.end_date else None,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }
