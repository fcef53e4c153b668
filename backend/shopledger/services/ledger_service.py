# Overview: Append-only operational event log.

from __future__ import annotations

import json
from datetime import datetime
from typing import Optional

from ..extensions import db
from ..models import LedgerEvent

"""
Ledger invariants

- Append-only; events are never updated or deleted.
- No business logic here: callers decide what happened.
- Events are written inside the same DB transaction as the change they record
  (flush only; the caller commits).
- occurred_at is business time; created_at is system time (DB default).
"""


def append_ledger_event(
    *,
    event_type: str,
    event_category: str,
    entity_type: str,
    entity_id: int,
    invoice_id: int | None = None,
    occurred_at: Optional[datetime] = None,
    note: Optional[str] = None,
    payload: dict | str | None = None,
) -> LedgerEvent:
    if isinstance(payload, dict):
        payload = json.dumps(payload, default=str, sort_keys=True)

    ev = LedgerEvent(
        event_type=event_type,
        event_category=event_category,
        entity_type=entity_type,
        entity_id=entity_id,
        invoice_id=invoice_id,
        occurred_at=occurred_at,  # if None, db default applies
        note=note,
        payload=payload,
    )
    db.session.add(ev)
    db.session.flush()
    return ev


def list_events(
    *,
    invoice_id: int | None = None,
    event_category: str | None = None,
    limit: int = 200,
) -> list[LedgerEvent]:
    query = db.session.query(LedgerEvent)
    if invoice_id is not None:
        query = query.filter(LedgerEvent.invoice_id == invoice_id)
    if event_category:
        query = query.filter(LedgerEvent.event_category == event_category)
    return query.order_by(LedgerEvent.occurred_at.asc(), LedgerEvent.id.asc()).limit(limit).all()
