from __future__ import annotations

from ..extensions import db
from salecore.time_utils import to_utc_z


class ReceiptSequence(db.Model):
    """
    Per-year receipt counter.

    next_number is advanced only by compare-and-swap; the unique constraint
    on sales.receipt_number is the backstop.
    """
    __tablename__ = "receipt_sequences"

    year = db.Column(db.Integer, primary_key=True, autoincrement=False)
    next_number = db.Column(db.Integer, nullable=False, default=1)


class AuditEvent(db.Model):
    """
    Append-only audit trail for engine events.

    - No domain logic here.
    - No deletes/updates of existing events.
    - occurred_at is business time; created_at is system time (db default).
    """
    __tablename__ = "audit_events"
    __table_args__ = (
        db.Index("ix_audit_events_entity", "entity_type", "entity_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    event_type = db.Column(db.String(64), nullable=False, index=True)
    entity_type = db.Column(db.String(32), nullable=False)
    entity_id = db.Column(db.Integer, nullable=False)
    actor_id = db.Column(db.Integer, nullable=True)

    note = db.Column(db.Text, nullable=True)
    payload = db.Column(db.Text, nullable=True)

    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "event_type": self.event_type,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "actor_id": self.actor_id,
            "note": self.note,
            "payload": self.payload,
            "occurred_at": to_utc_z(self.occurred_at),
            "created_at": to_utc_z(self.created_at),
        }
