from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


STATUS_QUOTE_OPEN = "QUOTE_OPEN"
STATUS_QUOTE_SENT = "QUOTE_SENT"
STATUS_ORDER_GENERATED = "ORDER_GENERATED"
STATUS_INVOICED = "INVOICED"
STATUS_CANCELLED = "CANCELLED"

ORDER_STATUSES = (
    STATUS_QUOTE_OPEN,
    STATUS_QUOTE_SENT,
    STATUS_ORDER_GENERATED,
    STATUS_INVOICED,
    STATUS_CANCELLED,
)
QUOTE_STATUSES = (STATUS_QUOTE_OPEN, STATUS_QUOTE_SENT)


class Order(db.Model):
    """
    Commercial order document (quote -> order -> invoice).

    Status changes go through services/order_state_machine.py only; line
    items through services/order_service.replace_items only.

    Two lifecycles share this row:
    - order lifecycle: status + stock_posted
    - receivables lifecycle: accounts_posted (+ who/when)
    stock_posted is true exactly while status == INVOICED.

    Orders that ever moved stock are never deleted; they are CANCELLED.
    """
    __tablename__ = "orders"
    __table_args__ = (
        db.UniqueConstraint("order_number", name="uq_orders_order_number"),
        db.Index("ix_orders_status_created", "status", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_number = db.Column(db.String(32), nullable=False)

    status = db.Column(db.String(24), nullable=False, default=STATUS_QUOTE_OPEN, index=True)
    # Quote state the order was reserved from; unreserve returns there
    reserved_from_status = db.Column(db.String(24), nullable=True)

    customer_ref = db.Column(db.String(120), nullable=True)
    notes = db.Column(db.Text, nullable=True)

    # Money (all cents)
    subtotal_cents = db.Column(db.Integer, nullable=False, default=0)
    shipping_cents = db.Column(db.Integer, nullable=False, default=0)
    discount_cents = db.Column(db.Integer, nullable=False, default=0)
    other_expenses_cents = db.Column(db.Integer, nullable=False, default=0)
    total_cents = db.Column(db.Integer, nullable=False, default=0)

    # Payment linkage
    payment_type_id = db.Column(db.Integer, db.ForeignKey("payment_types.id"), nullable=True, index=True)
    payment_notes = db.Column(db.String(255), nullable=True)  # installment schedule, e.g. "30 60 90"

    # Print flag (independent of status)
    printed = db.Column(db.Boolean, nullable=False, default=False)
    printed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    printed_by = db.Column(db.String(120), nullable=True)

    reserved_at = db.Column(db.DateTime(timezone=True), nullable=True)
    reserved_by = db.Column(db.String(120), nullable=True)

    invoiced_at = db.Column(db.DateTime(timezone=True), nullable=True)
    invoiced_by = db.Column(db.String(120), nullable=True)
    stock_posted = db.Column(db.Boolean, nullable=False, default=False)

    accounts_posted = db.Column(db.Boolean, nullable=False, default=False)
    accounts_posted_at = db.Column(db.DateTime(timezone=True), nullable=True)
    accounts_posted_by = db.Column(db.String(120), nullable=True)

    cancelled_at = db.Column(db.DateTime(timezone=True), nullable=True)
    cancelled_by = db.Column(db.String(120), nullable=True)

    created_by = db.Column(db.String(120), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    version_id = db.Column(db.Integer, nullable=False, default=1)

    payment_type = db.relationship("PaymentType")
    lines = db.relationship(
        "OrderLine",
        back_populates="order",
        order_by="OrderLine.position",
        cascade="all, delete-orphan",
    )

    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Order id={self.id} number={self.order_number!r} status={self.status}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_number": self.order_number,
            "status": self.status,
            "reserved_from_status": self.reserved_from_status,
            "customer_ref": self.customer_ref,
            "notes": self.notes,
            "subtotal_cents": self.subtotal_cents,
            "shipping_cents": self.shipping_cents,
            "discount_cents": self.discount_cents,
            "other_expenses_cents": self.other_expenses_cents,
            "total_cents": self.total_cents,
            "payment_type_id": self.payment_type_id,
            "payment_notes": self.payment_notes,
            "printed": self.printed,
            "printed_at": to_utc_z(self.printed_at) if self.printed_at else None,
            "printed_by": self.printed_by,
            "reserved_at": to_utc_z(self.reserved_at) if self.reserved_at else None,
            "reserved_by": self.reserved_by,
            "invoiced_at": to_utc_z(self.invoiced_at) if self.invoiced_at else None,
            "invoiced_by": self.invoiced_by,
            "stock_posted": self.stock_posted,
            "accounts_posted": self.accounts_posted,
            "accounts_posted_at": to_utc_z(self.accounts_posted_at) if self.accounts_posted_at else None,
            "accounts_posted_by": self.accounts_posted_by,
            "cancelled_at": to_utc_z(self.cancelled_at) if self.cancelled_at else None,
            "cancelled_by": self.cancelled_by,
            "created_by": self.created_by,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "version_id": self.version_id,
        }


class OrderLine(db.Model):
    """
    Order line with a frozen price.

    unit_price_cents is copied when the line is written and never re-read
    from the catalog. The full line set of an order is replaced on each edit.
    """
    __tablename__ = "order_lines"
    __table_args__ = (
        db.CheckConstraint("quantity >= 1", name="ck_order_lines_quantity_positive"),
        db.UniqueConstraint("order_id", "position", name="uq_order_lines_order_position"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)
    position = db.Column(db.Integer, nullable=False)

    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    quantity = db.Column(db.Integer, nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)
    line_total_cents = db.Column(db.Integer, nullable=False)

    sku_snapshot = db.Column(db.String(64), nullable=True)
    name_snapshot = db.Column(db.String(255), nullable=True)

    order = db.relationship("Order", back_populates="lines")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "position": self.position,
            "product_id": self.product_id,
            "quantity": self.quantity,
            "unit_price_cents": self.unit_price_cents,
            "line_total_cents": self.line_total_cents,
            "sku": self.sku_snapshot,
            "name": self.name_snapshot,
        }


class OrderTransition(db.Model):
    """Append-only audit trail: who did what to an order, and when."""
    __tablename__ = "order_transitions"
    __table_args__ = (
        db.Index("ix_order_transitions_order_occurred", "order_id", "occurred_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id", ondelete="CASCADE"), nullable=False)

    action = db.Column(db.String(32), nullable=False, index=True)
    from_status = db.Column(db.String(24), nullable=True)
    to_status = db.Column(db.String(24), nullable=True)

    actor = db.Column(db.String(120), nullable=True)
    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    note = db.Column(db.String(255), nullable=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "action": self.action,
            "from_status": self.from_status,
            "to_status": self.to_status,
            "actor": self.actor,
            "occurred_at": to_utc_z(self.occurred_at),
            "note": self.note,
        }
