# Overview: Order lifecycle state machine; every status change and its stock effect.

from __future__ import annotations

from flask import current_app

from ..extensions import db
from ..models import Order
from ..models.orders import (
    STATUS_QUOTE_OPEN,
    STATUS_QUOTE_SENT,
    STATUS_ORDER_GENERATED,
    STATUS_INVOICED,
    STATUS_CANCELLED,
    QUOTE_STATUSES,
    ORDER_STATUSES,
)
from ..time_utils import utcnow
from .concurrency import begin_serialized, run_with_retry
from .errors import InvalidTransition, OrderEngineError, OrderNotFound
from .order_service import lock_order
from . import stock_ledger, transition_log

"""
================================================================================
ORDER STATE MACHINE
================================================================================

    QUOTE_OPEN --send--> QUOTE_SENT
        |                    |
        +------reserve-------+------> ORDER_GENERATED --invoice--> INVOICED
        ^                    ^            |        ^                  |
        +-----unreserve------+------------+        +----uninvoice-----+

    cancel: QUOTE_OPEN | QUOTE_SENT | ORDER_GENERATED -> CANCELLED (terminal)

STOCK EFFECTS (same DB transaction as the status change):
    reserve    reserved += qty per line, all-or-nothing
    unreserve  reserved -= qty per line
    invoice    on_hand -= qty, reserved -= qty per line
    uninvoice  on_hand += qty, reserved += qty per line
    cancel     like unreserve when leaving ORDER_GENERATED, else none

RULES:
1. No QUOTE -> INVOICED shortcut; invoicing requires ORDER_GENERATED.
2. Repeating a transition (invoice an INVOICED order) is InvalidTransition,
   never a second stock effect.
3. While receivables are posted, the order may not drop below
   ORDER_GENERATED: unreserve and cancel are refused.
4. Every successful transition appends one OrderTransition row.
"""


# Legal status edges. can_transition() and every operation below read it.
ALLOWED_TRANSITIONS: dict[str, frozenset[str]] = {
    STATUS_QUOTE_OPEN: frozenset({STATUS_QUOTE_SENT, STATUS_ORDER_GENERATED, STATUS_CANCELLED}),
    STATUS_QUOTE_SENT: frozenset({STATUS_ORDER_GENERATED, STATUS_CANCELLED}),
    STATUS_ORDER_GENERATED: frozenset({STATUS_QUOTE_OPEN, STATUS_QUOTE_SENT, STATUS_INVOICED, STATUS_CANCELLED}),
    STATUS_INVOICED: frozenset({STATUS_ORDER_GENERATED}),
    STATUS_CANCELLED: frozenset(),
}


def can_transition(from_status: str, to_status: str) -> bool:
    return to_status in ALLOWED_TRANSITIONS.get(from_status, frozenset())


def _require_edge(order: Order, to_status: str, action: str) -> None:
    if not can_transition(order.status, to_status):
        raise InvalidTransition(
            f"Cannot {action} an order in status {order.status}",
            current_status=order.status,
            action=action,
            order_id=order.id,
        )


def _require_accounts_not_posted(order: Order, action: str) -> None:
    if order.accounts_posted:
        raise InvalidTransition(
            f"Cannot {action} while receivables are posted; reverse accounts first",
            current_status=order.status,
            action=action,
            order_id=order.id,
            accounts_posted=True,
        )


def _run_transition(order_id: int, action: str, actor: str | None, mutate) -> Order:
    """
    One transition = one unit of work.

    mutate(order) validates, applies the stock effect and sets the new
    status. The transition row and commit happen here, so a failure
    anywhere leaves order, counters and log untouched.
    """
    def _op():
        begin_serialized()
        order = lock_order(order_id)
        from_status = order.status
        mutate(order)
        transition_log.record(order, action, actor=actor, from_status=from_status)
        db.session.commit()
        return order, from_status

    order, from_status = run_with_retry(_op)
    current_app.logger.info(
        "Order %s %s: %s -> %s by %s", order.order_number, action, from_status, order.status, actor
    )
    return order


def send_quote(order_id: int, actor: str | None) -> Order:
    def mutate(order: Order) -> None:
        _require_edge(order, STATUS_QUOTE_SENT, "send")
        order.status = STATUS_QUOTE_SENT

    return _run_transition(order_id, "send_quote", actor, mutate)


def reserve_order(order_id: int, actor: str | None) -> Order:
    """
    Quote -> ORDER_GENERATED, reserving every line.

    A shortage on any line raises InsufficientStock listing every short
    product; nothing is reserved and the status does not move.
    """
    def mutate(order: Order) -> None:
        _require_edge(order, STATUS_ORDER_GENERATED, "reserve")
        if order.status not in QUOTE_STATUSES:
            raise InvalidTransition(
                f"Cannot reserve an order in status {order.status}",
                current_status=order.status,
                action="reserve",
                order_id=order.id,
            )
        if not order.lines:
            raise InvalidTransition(
                "Cannot reserve an order without items",
                current_status=order.status,
                action="reserve",
                order_id=order.id,
            )

        stock_ledger.reserve_lines(order, list(order.lines), actor=actor)

        order.reserved_from_status = order.status
        order.status = STATUS_ORDER_GENERATED
        order.reserved_at = utcnow()
        order.reserved_by = actor

    return _run_transition(order_id, "reserve", actor, mutate)


def unreserve_order(order_id: int, actor: str | None, *, to_status: str | None = None) -> Order:
    """
    ORDER_GENERATED -> quote state, releasing every line.

    Lands on the quote state the order was reserved from unless to_status
    names a quote state explicitly.
    """
    if to_status is not None and to_status not in QUOTE_STATUSES:
        raise InvalidTransition(
            f"Unreserve must land on a quote status, not {to_status}",
            action="unreserve",
            target_status=to_status,
        )

    def mutate(order: Order) -> None:
        target = to_status or order.reserved_from_status or STATUS_QUOTE_OPEN
        if order.status != STATUS_ORDER_GENERATED or order.stock_posted:
            raise InvalidTransition(
                f"Cannot unreserve an order in status {order.status}",
                current_status=order.status,
                action="unreserve",
                order_id=order.id,
            )
        _require_edge(order, target, "unreserve")
        _require_accounts_not_posted(order, "unreserve")

        stock_ledger.release_lines(order, list(order.lines), actor=actor)

        order.status = target
        order.reserved_from_status = None
        order.reserved_at = None
        order.reserved_by = None

    return _run_transition(order_id, "unreserve", actor, mutate)


def invoice_order(order_id: int, actor: str | None) -> Order:
    """ORDER_GENERATED -> INVOICED; reserved units leave on_hand for good."""
    def mutate(order: Order) -> None:
        _require_edge(order, STATUS_INVOICED, "invoice")
        if order.stock_posted:
            raise InvalidTransition(
                "Stock for this order is already posted",
                current_status=order.status,
                action="invoice",
                order_id=order.id,
            )

        stock_ledger.commit_lines(order, list(order.lines), actor=actor)

        order.status = STATUS_INVOICED
        order.stock_posted = True
        order.invoiced_at = utcnow()
        order.invoiced_by = actor

    return _run_transition(order_id, "invoice", actor, mutate)


def uninvoice_order(order_id: int, actor: str | None) -> Order:
    """INVOICED -> ORDER_GENERATED; units go back to on_hand and stay reserved."""
    def mutate(order: Order) -> None:
        if order.status != STATUS_INVOICED:
            raise InvalidTransition(
                f"Cannot uninvoice an order in status {order.status}",
                current_status=order.status,
                action="uninvoice",
                order_id=order.id,
            )
        _require_edge(order, STATUS_ORDER_GENERATED, "uninvoice")

        stock_ledger.restore_lines(order, list(order.lines), actor=actor)

        order.status = STATUS_ORDER_GENERATED
        order.stock_posted = False
        order.invoiced_at = None
        order.invoiced_by = None

    return _run_transition(order_id, "uninvoice", actor, mutate)


def cancel_order(order_id: int, actor: str | None) -> Order:
    def mutate(order: Order) -> None:
        _require_edge(order, STATUS_CANCELLED, "cancel")
        _require_accounts_not_posted(order, "cancel")

        if order.status == STATUS_ORDER_GENERATED and order.lines:
            stock_ledger.release_lines(order, list(order.lines), actor=actor)

        order.status = STATUS_CANCELLED
        order.cancelled_at = utcnow()
        order.cancelled_by = actor

    return _run_transition(order_id, "cancel", actor, mutate)


def allowed_actions(order: Order) -> list[str]:
    """Actions the current status permits, in lifecycle order. Used for display."""
    actions = []
    edges = ALLOWED_TRANSITIONS.get(order.status, frozenset())
    if STATUS_QUOTE_SENT in edges and order.status == STATUS_QUOTE_OPEN:
        actions.append("send")
    if STATUS_ORDER_GENERATED in edges and order.status in QUOTE_STATUSES and order.lines:
        actions.append("reserve")
    if order.status == STATUS_ORDER_GENERATED and not order.accounts_posted:
        actions.append("unreserve")
    if STATUS_INVOICED in edges:
        actions.append("invoice")
    if order.status == STATUS_INVOICED:
        actions.append("uninvoice")
    if STATUS_CANCELLED in edges and not order.accounts_posted:
        actions.append("cancel")
    return actions


def transition_to(order_id: int, target_status: str, actor: str | None) -> Order:
    """
    Move an order to `target_status` by the one operation that leads there.

    Statuses with no legal edge from the current one raise InvalidTransition.
    """
    if target_status not in ORDER_STATUSES:
        raise InvalidTransition(
            f"Unknown status {target_status!r}",
            action="transition",
            target_status=target_status,
        )

    current = db.session.get(Order, order_id)
    if current is None:
        raise OrderNotFound(f"Order {order_id} not found", {"order_id": order_id})
    current_status = current.status

    if not can_transition(current_status, target_status):
        raise InvalidTransition(
            f"Cannot move an order from {current_status} to {target_status}",
            current_status=current_status,
            action="transition",
            target_status=target_status,
            order_id=order_id,
        )

    if target_status == STATUS_QUOTE_SENT and current_status == STATUS_QUOTE_OPEN:
        return send_quote(order_id, actor)
    if target_status == STATUS_ORDER_GENERATED and current_status in QUOTE_STATUSES:
        return reserve_order(order_id, actor)
    if target_status in QUOTE_STATUSES:
        return unreserve_order(order_id, actor, to_status=target_status)
    if target_status == STATUS_INVOICED:
        return invoice_order(order_id, actor)
    if target_status == STATUS_ORDER_GENERATED and current_status == STATUS_INVOICED:
        return uninvoice_order(order_id, actor)
    return cancel_order(order_id, actor)


def cancel_many(order_ids, actor: str | None) -> dict:
    """
    Cancel a batch of orders, each in its own unit of work.

    One order failing never blocks the others. Returns
    {"processed": [order ids], "ignored": [{"id", "reason", "code"}]}.
    """
    processed: list[int] = []
    ignored: list[dict] = []

    seen = set()
    for order_id in order_ids:
        if order_id in seen:
            continue
        seen.add(order_id)
        try:
            cancel_order(order_id, actor)
        except OrderEngineError as exc:
            ignored.append({"id": order_id, "reason": exc.message, "code": exc.code})
            continue
        processed.append(order_id)

    current_app.logger.info(
        "Bulk cancel by %s: %d processed, %d ignored", actor, len(processed), len(ignored)
    )
    return {"processed": processed, "ignored": ignored}
