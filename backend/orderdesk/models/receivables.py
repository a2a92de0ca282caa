from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z, to_iso_date


RECEIVABLE_OPEN = "OPEN"
RECEIVABLE_PARTIAL = "PARTIAL"
RECEIVABLE_PAID = "PAID"
RECEIVABLE_CANCELLED = "CANCELLED"

INSTALLMENT_OPEN = "OPEN"
INSTALLMENT_PARTIAL = "PARTIAL"
INSTALLMENT_PAID = "PAID"
INSTALLMENT_OVERDUE = "OVERDUE"
INSTALLMENT_CANCELLED = "CANCELLED"


class Receivable(db.Model):
    """
    One accounts-receivable posting for an order.

    A reversal voids the row (status CANCELLED) instead of deleting it; a
    later re-post creates a new Receivable. At most one non-cancelled
    Receivable exists per order.
    """
    __tablename__ = "receivables"
    __table_args__ = (
        db.Index("ix_receivables_order_status", "order_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False)
    payment_type_id = db.Column(db.Integer, db.ForeignKey("payment_types.id"), nullable=False)

    installment_spec = db.Column(db.String(255), nullable=False)
    amount_cents = db.Column(db.Integer, nullable=False)
    status = db.Column(db.String(16), nullable=False, default=RECEIVABLE_OPEN)

    posted_by = db.Column(db.String(120), nullable=True)
    posted_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    cancelled_by = db.Column(db.String(120), nullable=True)
    cancelled_at = db.Column(db.DateTime(timezone=True), nullable=True)

    installments = db.relationship(
        "ReceivableInstallment",
        back_populates="receivable",
        order_by="ReceivableInstallment.sequence",
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "payment_type_id": self.payment_type_id,
            "installment_spec": self.installment_spec,
            "amount_cents": self.amount_cents,
            "status": self.status,
            "posted_by": self.posted_by,
            "posted_at": to_utc_z(self.posted_at),
            "cancelled_by": self.cancelled_by,
            "cancelled_at": to_utc_z(self.cancelled_at) if self.cancelled_at else None,
        }


class ReceivableInstallment(db.Model):
    __tablename__ = "receivable_installments"
    __table_args__ = (
        db.UniqueConstraint("receivable_id", "sequence", name="uq_installments_receivable_sequence"),
        db.Index("ix_installments_status_due", "status", "due_date"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    receivable_id = db.Column(db.Integer, db.ForeignKey("receivables.id"), nullable=False, index=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)

    sequence = db.Column(db.Integer, nullable=False)
    offset_days = db.Column(db.Integer, nullable=False)
    due_date = db.Column(db.Date, nullable=False)

    amount_cents = db.Column(db.Integer, nullable=False)
    amount_paid_cents = db.Column(db.Integer, nullable=False, default=0)
    status = db.Column(db.String(16), nullable=False, default=INSTALLMENT_OPEN)
    paid_at = db.Column(db.DateTime(timezone=True), nullable=True)

    receivable = db.relationship("Receivable", back_populates="installments")
    payments = db.relationship(
        "ReceivablePayment",
        back_populates="installment",
        order_by="ReceivablePayment.id",
    )

    @property
    def amount_remaining_cents(self) -> int:
        return max(0, self.amount_cents - (self.amount_paid_cents or 0))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "receivable_id": self.receivable_id,
            "order_id": self.order_id,
            "sequence": self.sequence,
            "offset_days": self.offset_days,
            "due_date": to_iso_date(self.due_date),
            "amount_cents": self.amount_cents,
            "amount_paid_cents": self.amount_paid_cents,
            "amount_remaining_cents": self.amount_remaining_cents,
            "status": self.status,
            "paid_at": to_utc_z(self.paid_at) if self.paid_at else None,
        }


class ReceivablePayment(db.Model):
    """
    Money received against one installment.

    Rows are never deleted. A reversal raises reversed_cents (possibly in
    several steps) until it equals amount_cents; net_cents is what still
    counts toward the installment.
    """
    __tablename__ = "receivable_payments"
    __table_args__ = (
        db.CheckConstraint("amount_cents > 0", name="ck_receivable_payments_amount_positive"),
        db.CheckConstraint(
            "reversed_cents >= 0 AND reversed_cents <= amount_cents",
            name="ck_receivable_payments_reversed_range",
        ),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    installment_id = db.Column(
        db.Integer, db.ForeignKey("receivable_installments.id"), nullable=False, index=True
    )
    receivable_id = db.Column(db.Integer, db.ForeignKey("receivables.id"), nullable=False, index=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)

    amount_cents = db.Column(db.Integer, nullable=False)
    reversed_cents = db.Column(db.Integer, nullable=False, default=0)

    received_by = db.Column(db.String(120), nullable=True)
    received_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    reversed_by = db.Column(db.String(120), nullable=True)
    reversed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    installment = db.relationship("ReceivableInstallment", back_populates="payments")

    @property
    def net_cents(self) -> int:
        return self.amount_cents - (self.reversed_cents or 0)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "installment_id": self.installment_id,
            "receivable_id": self.receivable_id,
            "order_id": self.order_id,
            "amount_cents": self.amount_cents,
            "reversed_cents": self.reversed_cents,
            "net_cents": self.net_cents,
            "received_by": self.received_by,
            "received_at": to_utc_z(self.received_at),
            "reversed_by": self.reversed_by,
            "reversed_at": to_utc_z(self.reversed_at) if self.reversed_at else None,
        }
