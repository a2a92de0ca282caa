# Overview: Append-only order audit trail.

from __future__ import annotations

from ..extensions import db
from ..models import Order, OrderTransition
from ..time_utils import utcnow

"""
Transition log invariants

- One row per successful state change or flag change (print, accounts).
- Written inside the same DB transaction as the change it records, so a
  rolled-back operation leaves no trace here either.
- Rows are never updated or deleted (quote hard-delete excepted: the order
  itself disappears).
"""


def record(
    order: Order,
    action: str,
    *,
    actor: str | None,
    from_status: str | None = None,
    to_status: str | None = None,
    note: str | None = None,
) -> OrderTransition:
    entry = OrderTransition(
        order_id=order.id,
        action=action,
        from_status=from_status,
        to_status=to_status if to_status is not None else order.status,
        actor=actor,
        occurred_at=utcnow(),
        note=note,
    )
    db.session.add(entry)
    db.session.flush()
    return entry


def history(order_id: int, *, action: str | None = None) -> list[OrderTransition]:
    q = db.session.query(OrderTransition).filter_by(order_id=order_id)
    if action is not None:
        q = q.filter_by(action=action)
    return q.order_by(OrderTransition.occurred_at, OrderTransition.id).all()

