# Overview: Stock ledger; sole owner of product on_hand/reserved counters.

from __future__ import annotations

from collections import OrderedDict
from typing import Iterable

from flask import current_app

from ..extensions import db
from ..models import Product, StockMovement, Order, OrderLine
from ..models.inventory import (
    MOVEMENT_RESERVE,
    MOVEMENT_RELEASE,
    MOVEMENT_COMMIT,
    MOVEMENT_RESTORE,
    MOVEMENT_ADJUST,
)
from ..time_utils import utcnow
from ..validation import ValidationError
from .concurrency import lock_for_update, begin_serialized, run_with_retry
from .errors import InsufficientStock, ProductNotFound
"""
Stock ledger invariants (authoritative)

Counters:
- Product.on_hand and Product.reserved are written here and nowhere else.
- available = on_hand - reserved. A reservation never makes it negative.
- reserved never goes below zero. release/commit clamp and log a warning
  when asked to drop more than is reserved; that is a bug signal, not a
  user error.

Primitives (each writes exactly one StockMovement):
- reserve(qty):  reserved += qty               (fails on shortage)
- release(qty):  reserved -= qty               (never fails)
- commit(qty):   on_hand -= qty, reserved -= qty
- restore(qty):  on_hand += qty, reserved += qty

Batches:
- Products are locked once per batch in ascending id order, so two orders
  touching the same products can never deadlock.
- A batch reservation checks every product against the locked snapshot
  before any counter moves; one shortage aborts the whole batch.
- Primitives and batches never commit. The caller's unit of work does, and
  rolls everything back on failure.
"""


def _require_positive(qty: int) -> None:
    if not isinstance(qty, int) or isinstance(qty, bool) or qty <= 0:
        raise ValidationError("quantity must be a positive integer", "quantity")


def lock_products(product_ids: Iterable[int]) -> dict[int, Product]:
    """
    Load and row-lock products in ascending id order.

    populate_existing() refreshes rows already in the session, so the caller
    always sees the locked values, never an older copy from the identity map.
    """
    ids = sorted(set(product_ids))
    if not ids:
        return {}

    query = (
        db.session.query(Product)
        .filter(Product.id.in_(ids))
        .order_by(Product.id)
        .populate_existing()
    )
    products = lock_for_update(query).all()

    found = OrderedDict((p.id, p) for p in products)
    missing = [pid for pid in ids if pid not in found]
    if missing:
        raise ProductNotFound(f"Product(s) not found: {missing}", {"product_ids": missing})
    return found


def _write_movement(
    product: Product,
    movement_type: str,
    qty: int,
    *,
    order_id: int | None,
    actor: str | None,
    note: str | None,
) -> StockMovement:
    movement = StockMovement(
        product_id=product.id,
        order_id=order_id,
        movement_type=movement_type,
        quantity=qty,
        on_hand_after=product.on_hand,
        reserved_after=product.reserved,
        actor=actor,
        note=note,
        occurred_at=utcnow(),
    )
    db.session.add(movement)
    return movement


def _shortage_entry(product: Product, requested: int) -> dict:
    available = product.available
    return {
        "product_id": product.id,
        "sku": product.sku,
        "name": product.name,
        "available": available,
        "requested": requested,
        "shortfall": requested - available,
    }


# =============================================================================
# PRIMITIVES (caller holds the product lock)
# =============================================================================

def reserve(
    product: Product,
    qty: int,
    *,
    order_id: int | None = None,
    actor: str | None = None,
    note: str | None = None,
) -> StockMovement:
    """Move qty from available to reserved, or raise InsufficientStock."""
    _require_positive(qty)
    if product.available < qty:
        raise InsufficientStock([_shortage_entry(product, qty)])

    product.reserved += qty
    return _write_movement(product, MOVEMENT_RESERVE, qty, order_id=order_id, actor=actor, note=note)


def release(
    product: Product,
    qty: int,
    *,
    order_id: int | None = None,
    actor: str | None = None,
    note: str | None = None,
) -> StockMovement:
    """Give reserved units back to available. Never fails for lack of stock."""
    _require_positive(qty)
    if product.reserved < qty:
        current_app.logger.warning(
            "Release clamp: product %s reserved=%s, release of %s requested (order %s)",
            product.id, product.reserved, qty, order_id,
        )
        product.reserved = 0
    else:
        product.reserved -= qty
    return _write_movement(product, MOVEMENT_RELEASE, qty, order_id=order_id, actor=actor, note=note)


def commit(
    product: Product,
    qty: int,
    *,
    order_id: int | None = None,
    actor: str | None = None,
    note: str | None = None,
) -> StockMovement:
    """Turn a reservation into a permanent deduction of on_hand."""
    _require_positive(qty)
    if product.reserved < qty:
        current_app.logger.warning(
            "Commit clamp: product %s reserved=%s, commit of %s requested (order %s)",
            product.id, product.reserved, qty, order_id,
        )
        product.reserved = 0
    else:
        product.reserved -= qty
    product.on_hand -= qty
    return _write_movement(product, MOVEMENT_COMMIT, qty, order_id=order_id, actor=actor, note=note)


def restore(
    product: Product,
    qty: int,
    *,
    order_id: int | None = None,
    actor: str | None = None,
    note: str | None = None,
) -> StockMovement:
    """Undo a commit: units return to on_hand and stay reserved for the order."""
    _require_positive(qty)
    product.on_hand += qty
    product.reserved += qty
    return _write_movement(product, MOVEMENT_RESTORE, qty, order_id=order_id, actor=actor, note=note)


# =============================================================================
# BATCHES (one order, many lines)
# =============================================================================

def _ordered_lines(lines: Iterable[OrderLine]) -> list[OrderLine]:
    return sorted(lines, key=lambda line: (line.product_id, line.position))


def requested_by_product(lines: Iterable[OrderLine]) -> dict[int, int]:
    totals: dict[int, int] = {}
    for line in lines:
        totals[line.product_id] = totals.get(line.product_id, 0) + line.quantity
    return totals


def reserve_lines(order: Order, lines: list[OrderLine], *, actor: str | None) -> list[StockMovement]:
    """
    Reserve every line of an order as one all-or-nothing batch.

    Lines for the same product are summed before checking, so an order with
    two lines of 3 against 5 available is short by 1, not accepted.
    The shortage report names every short product, not just the first one.
    """
    requested = requested_by_product(lines)
    products = lock_products(requested.keys())

    shortages = [
        _shortage_entry(products[pid], qty)
        for pid, qty in requested.items()
        if products[pid].available < qty
    ]
    if shortages:
        shortages.sort(key=lambda s: s["product_id"])
        raise InsufficientStock(shortages)

    note = f"Order {order.order_number}"
    return [
        reserve(products[line.product_id], line.quantity, order_id=order.id, actor=actor, note=note)
        for line in _ordered_lines(lines)
    ]


def release_lines(order: Order, lines: list[OrderLine], *, actor: str | None) -> list[StockMovement]:
    products = lock_products(line.product_id for line in lines)
    note = f"Order {order.order_number}"
    return [
        release(products[line.product_id], line.quantity, order_id=order.id, actor=actor, note=note)
        for line in _ordered_lines(lines)
    ]


def commit_lines(order: Order, lines: list[OrderLine], *, actor: str | None) -> list[StockMovement]:
    products = lock_products(line.product_id for line in lines)
    note = f"Invoice {order.order_number}"
    return [
        commit(products[line.product_id], line.quantity, order_id=order.id, actor=actor, note=note)
        for line in _ordered_lines(lines)
    ]


def restore_lines(order: Order, lines: list[OrderLine], *, actor: str | None) -> list[StockMovement]:
    products = lock_products(line.product_id for line in lines)
    note = f"Un-invoice {order.order_number}"
    return [
        restore(products[line.product_id], line.quantity, order_id=order.id, actor=actor, note=note)
        for line in _ordered_lines(lines)
    ]


# =============================================================================
# CATALOG ADJUSTMENTS AND READS
# =============================================================================

def adjust_on_hand(
    product_id: int,
    delta: int,
    *,
    actor: str | None = None,
    note: str | None = None,
) -> StockMovement:
    """
    Correct on_hand outside the order flow (receiving, counts, breakage).

    Rejected when the result would leave on_hand below what is already
    reserved: a catalog edit may never create negative availability that
    the reservation checks would then have to live with.
    """
    if isinstance(delta, bool) or not isinstance(delta, int) or delta == 0:
        raise ValidationError("delta must be a non-zero integer", "delta")

    def _op():
        begin_serialized()
        product = lock_products([product_id])[product_id]

        new_on_hand = product.on_hand + delta
        if new_on_hand < product.reserved:
            raise ValidationError(
                f"adjustment would leave on_hand ({new_on_hand}) below reserved ({product.reserved})",
                "delta",
            )

        product.on_hand = new_on_hand
        movement = _write_movement(
            product, MOVEMENT_ADJUST, delta, order_id=None, actor=actor, note=note
        )
        db.session.commit()
        current_app.logger.info(
            "Stock adjusted: product %s delta=%s on_hand=%s by %s", product.id, delta, product.on_hand, actor
        )
        return movement

    return run_with_retry(_op)


def stock_summary(product_id: int) -> dict:
    product = db.session.get(Product, product_id)
    if product is None:
        raise ProductNotFound(f"Product {product_id} not found", {"product_id": product_id})
    return {
        "product_id": product.id,
        "sku": product.sku,
        "on_hand": product.on_hand,
        "reserved": product.reserved,
        "available": product.available,
    }


def list_movements(
    *,
    product_id: int | None = None,
    order_id: int | None = None,
    limit: int = 200,
) -> list[StockMovement]:
    q = db.session.query(StockMovement)
    if product_id is not None:
        q = q.filter_by(product_id=product_id)
    if order_id is not None:
        q = q.filter_by(order_id=order_id)
    return q.order_by(StockMovement.id).limit(limit).all()
