# Overview: Append-only order event trail.

from __future__ import annotations

from typing import Optional

from ..extensions import db
from ..models import OrderEvent
"""
Order event invariants:

- Append-only: no updates or deletes outside deletion of the order itself.
- Events are written inside the same DB transaction as the change they record,
  so a rolled-back checkout or transition leaves no event behind.
"""


def append_order_event(
    *,
    order_id: int,
    event_type: str,
    from_value: Optional[str] = None,
    to_value: Optional[str] = None,
    actor: Optional[str] = None,
    note: Optional[str] = None,
) -> OrderEvent:
    ev = OrderEvent(
        order_id=order_id,
        event_type=event_type,
        from_value=from_value,
        to_value=to_value,
        actor=actor,
        note=note,
    )
    db.session.add(ev)
    db.session.flush()  # ensures ev.id is assigned without committing
    return ev


def order_events(order_id: int) -> list[OrderEvent]:
    return (
        db.session.query(OrderEvent)
        .filter_by(order_id=order_id)
        .order_by(OrderEvent.occurred_at, OrderEvent.id)
        .all()
    )
