# Overview: Order aggregate; creation, line items, totals, payment terms and print flag.

from __future__ import annotations

from flask import current_app

from ..extensions import db
from ..models import Order, OrderLine, OrderTransition, Product, PaymentType, StockMovement
from ..models.orders import (
    STATUS_QUOTE_OPEN,
    STATUS_ORDER_GENERATED,
    STATUS_CANCELLED,
    QUOTE_STATUSES,
    ORDER_STATUSES,
)
from ..time_utils import utcnow
from ..validation import ValidationError, coerce_cents, parse_line_items
from .concurrency import lock_for_update, begin_serialized, run_with_retry
from .document_service import next_document_number
from .errors import (
    InvalidTransition,
    OrderNotFound,
    OrderNotEditable,
    PaymentTypeNotFound,
    ProductNotFound,
)
from . import stock_ledger, transition_log
"""
Order aggregate rules

Items:
- An order carries >= 1 line once it leaves the quote stage; quotes may be
  created empty and filled later.
- Prices are frozen on the line when it is written. A catalog price change
  never reaches an existing order.
- Every edit replaces the whole line set and recomputes totals in the same
  transaction.

Totals (integer cents):
- subtotal = sum(unit_price * quantity)
- total = subtotal + shipping + other_expenses - discount, never negative

Editability:
- QUOTE_OPEN / QUOTE_SENT: always.
- ORDER_GENERATED: only with ORDERDESK_ALLOW_EDIT_WHILE_RESERVED, only
  before invoicing and before receivables are posted. The old reservation
  is released and the new line set reserved in the same unit of work.
- INVOICED / CANCELLED: never.
"""


ORDER_DOCUMENT_TYPE = "ORDER"


def lock_order(order_id: int) -> Order:
    """Row-lock an order and refresh it from the database."""
    order = lock_for_update(
        db.session.query(Order).filter_by(id=order_id).populate_existing()
    ).first()
    if not order:
        raise OrderNotFound(f"Order {order_id} not found", {"order_id": order_id})
    return order


def _resolve_lines(items) -> list[dict]:
    """Validate a raw item payload and attach product snapshots."""
    parsed = parse_line_items(items)

    ids = sorted({item["product_id"] for item in parsed})
    products = {p.id: p for p in db.session.query(Product).filter(Product.id.in_(ids)).all()}

    missing = [pid for pid in ids if pid not in products]
    if missing:
        raise ProductNotFound(f"Product(s) not found: {missing}", {"product_ids": missing})

    resolved = []
    for idx, item in enumerate(parsed):
        product = products[item["product_id"]]
        if not product.is_active:
            raise ValidationError(f"items[{idx}]: product {product.sku} is inactive", "items")

        price = item["price_cents"]
        if price is None:
            price = product.price_cents
        if price is None:
            raise ValidationError(f"items[{idx}]: product {product.sku} has no price", "items")

        resolved.append({
            "product": product,
            "quantity": item["quantity"],
            "unit_price_cents": price,
            "line_total_cents": price * item["quantity"],
        })
    return resolved


def _write_lines(order: Order, resolved: list[dict]) -> None:
    if order.lines:
        order.lines.clear()
        # Old rows must be gone before positions 1..n are reused
        db.session.flush()

    for position, item in enumerate(resolved, start=1):
        product = item["product"]
        order.lines.append(OrderLine(
            position=position,
            product_id=product.id,
            quantity=item["quantity"],
            unit_price_cents=item["unit_price_cents"],
            line_total_cents=item["line_total_cents"],
            sku_snapshot=product.sku,
            name_snapshot=product.name,
        ))


def _apply_totals(order: Order) -> None:
    subtotal = sum(line.line_total_cents for line in order.lines)
    total = subtotal + order.shipping_cents + order.other_expenses_cents - order.discount_cents
    if total < 0:
        raise ValidationError(
            f"discount ({order.discount_cents}) exceeds subtotal plus charges; total would be {total}",
            "discount_cents",
        )
    order.subtotal_cents = subtotal
    order.total_cents = total


def _require_payment_type(payment_type_id: int | None) -> PaymentType | None:
    if payment_type_id is None:
        return None
    payment_type = db.session.get(PaymentType, payment_type_id)
    if payment_type is None:
        raise PaymentTypeNotFound(
            f"Payment type {payment_type_id} not found", {"payment_type_id": payment_type_id}
        )
    return payment_type


def _clean_text(value, field: str, max_len: int) -> str | None:
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValidationError(f"{field} must be a string", field)
    value = value.strip()
    if len(value) > max_len:
        raise ValidationError(f"{field} must be at most {max_len} characters", field)
    return value or None


def create_order(
    actor: str | None,
    *,
    customer_ref: str | None = None,
    notes: str | None = None,
    items=None,
    shipping_cents: int | None = None,
    discount_cents: int | None = None,
    other_expenses_cents: int | None = None,
    payment_type_id: int | None = None,
    payment_notes: str | None = None,
) -> Order:
    """Create a new QUOTE_OPEN order, optionally with its first line set."""
    shipping = coerce_cents(shipping_cents, "shipping_cents", default=0)
    discount = coerce_cents(discount_cents, "discount_cents", default=0)
    other = coerce_cents(other_expenses_cents, "other_expenses_cents", default=0)
    customer_ref = _clean_text(customer_ref, "customer_ref", 120)
    payment_notes = _clean_text(payment_notes, "payment_notes", 255)

    def _op():
        begin_serialized()
        _require_payment_type(payment_type_id)
        resolved = _resolve_lines(items) if items else []

        order = Order(
            order_number=next_document_number(
                document_type=ORDER_DOCUMENT_TYPE,
                prefix=current_app.config.get("ORDERDESK_ORDER_NUMBER_PREFIX", "ORD"),
            ),
            status=STATUS_QUOTE_OPEN,
            customer_ref=customer_ref,
            notes=notes,
            shipping_cents=shipping,
            discount_cents=discount,
            other_expenses_cents=other,
            payment_type_id=payment_type_id,
            payment_notes=payment_notes,
            created_by=actor,
            created_at=utcnow(),
        )
        db.session.add(order)
        _write_lines(order, resolved)
        _apply_totals(order)
        db.session.flush()

        transition_log.record(order, "create", actor=actor, from_status=None)
        db.session.commit()
        return order

    order = run_with_retry(_op)
    current_app.logger.info("Order %s created by %s", order.order_number, actor)
    return order


def replace_items(
    order_id: int,
    items,
    actor: str | None,
    *,
    shipping_cents: int | None = None,
    discount_cents: int | None = None,
    other_expenses_cents: int | None = None,
) -> Order:
    """
    Replace the full line set of an order and recompute its totals.

    Charges left as None keep their current value.
    """
    shipping = None if shipping_cents is None else coerce_cents(shipping_cents, "shipping_cents")
    discount = None if discount_cents is None else coerce_cents(discount_cents, "discount_cents")
    other = None if other_expenses_cents is None else coerce_cents(other_expenses_cents, "other_expenses_cents")

    def _op():
        begin_serialized()
        order = lock_order(order_id)

        rereserve = False
        if order.status in QUOTE_STATUSES:
            pass
        elif (
            order.status == STATUS_ORDER_GENERATED
            and not order.stock_posted
            and current_app.config.get("ORDERDESK_ALLOW_EDIT_WHILE_RESERVED", False)
        ):
            if order.accounts_posted:
                raise OrderNotEditable(
                    "Receivables are posted for this order; reverse accounts before editing items",
                    {"order_id": order.id, "status": order.status},
                )
            rereserve = True
        else:
            raise OrderNotEditable(
                f"Items cannot be edited while the order is {order.status}",
                {"order_id": order.id, "status": order.status},
            )

        resolved = _resolve_lines(items)

        if rereserve:
            old_lines = list(order.lines)
            # Lock the union once, ascending, before touching either set
            stock_ledger.lock_products(
                [line.product_id for line in old_lines] + [item["product"].id for item in resolved]
            )
            stock_ledger.release_lines(order, old_lines, actor=actor)

        _write_lines(order, resolved)
        if shipping is not None:
            order.shipping_cents = shipping
        if discount is not None:
            order.discount_cents = discount
        if other is not None:
            order.other_expenses_cents = other
        _apply_totals(order)
        db.session.flush()

        if rereserve:
            stock_ledger.reserve_lines(order, list(order.lines), actor=actor)

        transition_log.record(
            order, "replace_items", actor=actor, from_status=order.status,
            note=f"{len(resolved)} line(s), total {order.total_cents}",
        )
        db.session.commit()
        return order

    order = run_with_retry(_op)
    current_app.logger.info(
        "Order %s items replaced by %s (total=%s)", order.order_number, actor, order.total_cents
    )
    return order


def update_payment(
    order_id: int,
    actor: str | None,
    *,
    payment_type_id: int | None,
    payment_notes: str | None,
) -> Order:
    """Set payment type and installment schedule text. Locked once receivables are posted."""
    payment_notes = _clean_text(payment_notes, "payment_notes", 255)

    def _op():
        begin_serialized()
        order = lock_order(order_id)
        if order.accounts_posted:
            raise OrderNotEditable(
                "Receivables are posted for this order; reverse accounts before changing payment terms",
                {"order_id": order.id, "status": order.status},
            )
        if order.status == STATUS_CANCELLED:
            raise OrderNotEditable(
                "Cancelled orders cannot be changed", {"order_id": order.id, "status": order.status}
            )

        _require_payment_type(payment_type_id)
        order.payment_type_id = payment_type_id
        order.payment_notes = payment_notes

        transition_log.record(order, "update_payment", actor=actor, from_status=order.status)
        db.session.commit()
        return order

    return run_with_retry(_op)


def mark_printed(order_id: int, actor: str | None) -> Order:
    def _op():
        begin_serialized()
        order = lock_order(order_id)
        order.printed = True
        order.printed_at = utcnow()
        order.printed_by = actor
        transition_log.record(order, "print", actor=actor, from_status=order.status)
        db.session.commit()
        return order

    return run_with_retry(_op)


def get_order(order_id: int) -> Order:
    order = db.session.get(Order, order_id)
    if not order:
        raise OrderNotFound(f"Order {order_id} not found", {"order_id": order_id})
    return order


def order_snapshot(order: Order) -> dict:
    """Everything a caller needs to render an order: header, totals, flags and items."""
    data = order.to_dict()
    data["payment_type"] = order.payment_type.to_dict() if order.payment_type else None
    data["items"] = [line.to_dict() for line in order.lines]
    data["item_count"] = len(order.lines)
    return data


def list_orders(status: str | None = None, *, limit: int = 200) -> list[Order]:
    q = db.session.query(Order)
    if status is not None:
        if status not in ORDER_STATUSES:
            raise ValidationError(f"Unknown status {status!r}", "status")
        q = q.filter_by(status=status)
    return q.order_by(Order.created_at.desc(), Order.id.desc()).limit(limit).all()


def delete_quote(order_id: int, actor: str | None) -> None:
    """
    Hard-delete an order that never touched stock.

    Anything that produced a stock movement stays in the database for the
    audit trail; cancel it instead.
    """
    def _op():
        begin_serialized()
        order = lock_order(order_id)

        moved = db.session.query(StockMovement.id).filter_by(order_id=order.id).first()
        if moved is not None or order.status not in QUOTE_STATUSES + (STATUS_CANCELLED,):
            raise InvalidTransition(
                "Only orders that never reserved stock can be deleted; cancel it instead",
                current_status=order.status,
                action="delete",
                order_id=order.id,
            )

        number = order.order_number
        db.session.query(OrderTransition).filter_by(order_id=order.id).delete(synchronize_session=False)
        db.session.delete(order)
        db.session.commit()
        return number

    number = run_with_retry(_op)
    current_app.logger.info("Order %s deleted by %s", number, actor)
