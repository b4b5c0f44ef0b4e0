# Overview: Fire-and-forget audit sink for sale engine events.

from __future__ import annotations

import json
import logging
from datetime import datetime
from typing import Optional

from ..errors import SaleError
from ..models import AuditEvent
from salecore.time_utils import utcnow
"""
Audit Invariants (authoritative)

- Append-only: events are never updated or deleted.
- Fire-and-forget: a failed audit write is logged and dropped; it never
  changes the outcome of the operation being audited.
- occurred_at is business time; created_at is system time (DB default).
"""


logger = logging.getLogger(__name__)


def append_audit_event(
    repo,
    *,
    event_type: str,
    entity_type: str,
    entity_id: int,
    actor_id: int | None = None,
    note: Optional[str] = None,
    payload: dict | None = None,
    occurred_at: Optional[datetime] = None,
) -> AuditEvent | None:
    """Append one audit event; returns None when the write failed."""
    event = AuditEvent(
        event_type=event_type,
        entity_type=entity_type,
        entity_id=entity_id,
        actor_id=actor_id,
        note=note,
        payload=json.dumps(payload, sort_keys=True, default=str) if payload else None,
        occurred_at=occurred_at or utcnow(),
    )
    try:
        return repo.insert(event)
    except SaleError as exc:
        logger.warning("Audit event %s for %s %s dropped: %s", event_type, entity_type, entity_id, exc)
        return None
