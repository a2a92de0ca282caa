from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


class Product(db.Model):
    """
    Product master data plus the two stock counters.

    COUNTERS:
    - on_hand: physical units in the warehouse
    - reserved: units earmarked by ORDER_GENERATED orders
    - available = on_hand - reserved (derived, never stored)

    Only services/stock_ledger.py writes on_hand/reserved. Every write also
    appends a StockMovement in the same DB transaction.

    version_id is the optimistic-lock column: a concurrent writer that loaded
    a stale row fails with StaleDataError and is retried.
    """
    __tablename__ = "products"
    __table_args__ = (
        db.CheckConstraint("reserved >= 0", name="ck_products_reserved_non_negative"),
        db.Index("ix_products_active_name", "is_active", "name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    sku = db.Column(db.String(64), nullable=False, unique=True)
    name = db.Column(db.String(255), nullable=False)

    # Current catalog price; order lines snapshot it and never look it up again
    price_cents = db.Column(db.Integer, nullable=True)

    on_hand = db.Column(db.Integer, nullable=False, default=0)
    reserved = db.Column(db.Integer, nullable=False, default=0)

    is_active = db.Column(db.Boolean, nullable=False, default=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    __mapper_args__ = {"version_id_col": version_id}

    @property
    def available(self) -> int:
        return (self.on_hand or 0) - (self.reserved or 0)

    def __repr__(self) -> str:
        return f"<Product id={self.id} sku={self.sku!r} on_hand={self.on_hand} reserved={self.reserved}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sku": self.sku,
            "name": self.name,
            "price_cents": self.price_cents,
            "on_hand": self.on_hand,
            "reserved": self.reserved,
            "available": self.available,
            "is_active": self.is_active,
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


PAYMENT_CLASS_TERM = "TERM"
PAYMENT_CLASS_IMMEDIATE = "IMMEDIATE"
PAYMENT_CLASSIFICATIONS = (PAYMENT_CLASS_TERM, PAYMENT_CLASS_IMMEDIATE)


class PaymentType(db.Model):
    """
    A way of paying for an order.

    TERM types settle over dated installments and are the only ones that may
    post receivables. IMMEDIATE types (cash, card, pix) never do.
    """
    __tablename__ = "payment_types"
    __table_args__ = (
        db.UniqueConstraint("name", name="uq_payment_types_name"),
        db.CheckConstraint(
            "classification IN (" + ", ".join(f"'{c}'" for c in PAYMENT_CLASSIFICATIONS) + ")",
            name="ck_payment_types_classification",
        ),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(120), nullable=False)
    classification = db.Column(db.String(16), nullable=False, default=PAYMENT_CLASS_IMMEDIATE)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    # Used when an order carries no installment schedule of its own, e.g. "30 60 90"
    default_installment_spec = db.Column(db.String(120), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    @property
    def is_term_based(self) -> bool:
        return self.classification == PAYMENT_CLASS_TERM

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "classification": self.classification,
            "is_active": self.is_active,
            "default_installment_spec": self.default_installment_spec,
            "created_at": to_utc_z(self.created_at),
        }
