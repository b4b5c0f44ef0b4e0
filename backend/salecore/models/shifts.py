from __future__ import annotations

from ..extensions import db
from salecore.time_utils import to_utc_z


SHIFT_STATUS_OPEN = "open"
SHIFT_STATUS_CLOSED = "closed"

CASH_PAY_IN = "pay_in"
CASH_PAY_OUT = "pay_out"
CASH_DROP = "drop"


class ShiftSession(db.Model):
    """
    Cashier shift tracking.

    WHY: Cashier accountability. A cashier needs an open shift to ring up
    sales; closing the shift reconciles the drawer against expected cash.

    LIFECYCLE:
    - open: shift is active, sales may be created
    - closed: drawer counted, difference recorded; never reopened

    At most one open session per user is expected. The data layer does not
    enforce it; see shift_service.require_open_shift.
    """
    __tablename__ = "shift_sessions"
    __table_args__ = (
        db.Index("ix_shift_sessions_user_status", "user_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, nullable=False, index=True)

    status = db.Column(db.String(16), nullable=False, default=SHIFT_STATUS_OPEN, index=True)

    start_time = db.Column(db.DateTime(timezone=True), nullable=False)
    end_time = db.Column(db.DateTime(timezone=True), nullable=True)

    # Cash reconciliation (cents)
    starting_cash_cents = db.Column(db.Integer, nullable=False, default=0)
    cash_sales_cents = db.Column(db.Integer, nullable=False, default=0)
    expected_cash_cents = db.Column(db.Integer, nullable=False, default=0)
    ending_cash_cents = db.Column(db.Integer, nullable=True)
    difference_cents = db.Column(db.Integer, nullable=True)

    notes = db.Column(db.Text, nullable=True)
    version_id = db.Column(db.Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "status": self.status,
            "start_time": to_utc_z(self.start_time),
            "end_time": to_utc_z(self.end_time) if self.end_time else None,
            "starting_cash_cents": self.starting_cash_cents,
            "cash_sales_cents": self.cash_sales_cents,
            "expected_cash_cents": self.expected_cash_cents,
            "ending_cash_cents": self.ending_cash_cents,
            "difference_cents": self.difference_cents,
            "notes": self.notes,
            "version_id": self.version_id,
        }


class CashTransaction(db.Model):
    """
    Drawer cash movement that is not a sale.

    TYPES:
    - pay_in: cash added to the drawer (float top-up)
    - pay_out: cash paid out of the drawer (petty expenses)
    - drop: cash removed to the safe
    """
    __tablename__ = "cash_transactions"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    shift_id = db.Column(db.Integer, db.ForeignKey("shift_sessions.id"), nullable=False, index=True)

    amount_cents = db.Column(db.Integer, nullable=False)
    type = db.Column(db.String(16), nullable=False)
    reason = db.Column(db.String(255), nullable=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    shift = db.relationship("ShiftSession", backref=db.backref("cash_transactions", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "shift_id": self.shift_id,
            "amount_cents": self.amount_cents,
            "type": self.type,
            "reason": self.reason,
            "created_at": to_utc_z(self.created_at),
        }
