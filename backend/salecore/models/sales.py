from __future__ import annotations

from ..extensions import db
from salecore.time_utils import to_utc_z


SALE_STATUS_DRAFT = "draft"
SALE_STATUS_COMPLETED = "completed"
SALE_STATUS_REFUNDED = "refunded"
SALE_STATUS_VOIDED = "voided"


class Sale(db.Model):
    """
    Sale header.

    LIFECYCLE:
    - draft: saved cart, no stock or payment effects
    - completed: committed by the sale orchestrator
    - refunded: reversed by a full refund or once every unit was returned
    - voided: compensation outcome only; rows are never deleted because the
      id / receipt number may already be referenced externally

    INVARIANT: grand_total = sub_total + tax_total - discount_total >= 0
    """
    __tablename__ = "sales"
    __table_args__ = (
        db.CheckConstraint("grand_total_cents >= 0", name="grand_total_non_negative"),
        db.Index("ix_sales_cashier_status_created", "cashier_id", "status", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    # Human-readable receipt number (e.g., "INV-2026-000042")
    receipt_number = db.Column(db.String(64), nullable=False, unique=True)

    cashier_id = db.Column(db.Integer, nullable=False, index=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=True, index=True)
    shift_id = db.Column(db.Integer, db.ForeignKey("shift_sessions.id"), nullable=True, index=True)

    # Totals (all amounts in cents)
    sub_total_cents = db.Column(db.Integer, nullable=False, default=0)
    tax_total_cents = db.Column(db.Integer, nullable=False, default=0)
    discount_total_cents = db.Column(db.Integer, nullable=False, default=0)
    grand_total_cents = db.Column(db.Integer, nullable=False, default=0)

    # Payment summary; tender detail lives in sale_payments
    payment_method = db.Column(db.String(16), nullable=False)  # cash, card, bank_transfer, split, loyalty
    amount_paid_cents = db.Column(db.Integer, nullable=False, default=0)
    change_given_cents = db.Column(db.Integer, nullable=False, default=0)

    promo_code = db.Column(db.String(64), nullable=True)
    loyalty_points_earned = db.Column(db.Integer, nullable=False, default=0)
    loyalty_points_redeemed = db.Column(db.Integer, nullable=False, default=0)

    status = db.Column(db.String(16), nullable=False, default=SALE_STATUS_COMPLETED, index=True)
    note = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)
    voided_at = db.Column(db.DateTime(timezone=True), nullable=True)
    refunded_at = db.Column(db.DateTime(timezone=True), nullable=True)

    customer = db.relationship("Customer", backref=db.backref("sales", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "receipt_number": self.receipt_number,
            "cashier_id": self.cashier_id,
            "customer_id": self.customer_id,
            "shift_id": self.shift_id,
            "sub_total_cents": self.sub_total_cents,
            "tax_total_cents": self.tax_total_cents,
            "discount_total_cents": self.discount_total_cents,
            "grand_total_cents": self.grand_total_cents,
            "payment_method": self.payment_method,
            "amount_paid_cents": self.amount_paid_cents,
            "change_given_cents": self.change_given_cents,
            "promo_code": self.promo_code,
            "loyalty_points_earned": self.loyalty_points_earned,
            "loyalty_points_redeemed": self.loyalty_points_redeemed,
            "status": self.status,
            "note": self.note,
            "created_at": to_utc_z(self.created_at),
            "voided_at": to_utc_z(self.voided_at) if self.voided_at else None,
            "refunded_at": to_utc_z(self.refunded_at) if self.refunded_at else None,
        }


class SaleItem(db.Model):
    """Individual line items on a sale, priced from server-held product data."""
    __tablename__ = "sale_items"
    __table_args__ = (
        db.CheckConstraint("quantity > 0", name="quantity_positive"),
        db.CheckConstraint("discount_cents <= sub_total_cents", name="discount_within_sub_total"),
        db.CheckConstraint("returned_quantity <= quantity", name="returned_within_quantity"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    quantity = db.Column(db.Integer, nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)
    sub_total_cents = db.Column(db.Integer, nullable=False)
    discount_cents = db.Column(db.Integer, nullable=False, default=0)
    tax_amount_cents = db.Column(db.Integer, nullable=False, default=0)

    # Units already taken back through completed returns
    returned_quantity = db.Column(db.Integer, nullable=False, default=0)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    sale = db.relationship("Sale", backref=db.backref("items", lazy=True))
    product = db.relationship("Product")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sale_id": self.sale_id,
            "product_id": self.product_id,
            "quantity": self.quantity,
            "unit_price_cents": self.unit_price_cents,
            "sub_total_cents": self.sub_total_cents,
            "discount_cents": self.discount_cents,
            "tax_amount_cents": self.tax_amount_cents,
            "returned_quantity": self.returned_quantity,
        }


class SalePayment(db.Model):
    """
    Tender record for a sale.

    One row per tender. Single-tender sales carry one row as well; sales
    settled entirely with loyalty points carry none.
    """
    __tablename__ = "sale_payments"
    __table_args__ = (
        db.CheckConstraint("amount_cents > 0", name="amount_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=False, index=True)

    amount_cents = db.Column(db.Integer, nullable=False)
    method = db.Column(db.String(16), nullable=False, index=True)  # cash, card, bank_transfer

    # Terminal transaction id, transfer reference, etc.
    reference_id = db.Column(db.String(128), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    sale = db.relationship("Sale", backref=db.backref("payments", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sale_id": self.sale_id,
            "amount_cents": self.amount_cents,
            "method": self.method,
            "reference_id": self.reference_id,
            "created_at": to_utc_z(self.created_at),
        }
