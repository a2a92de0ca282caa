from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


MOVEMENT_RESERVE = "RESERVE"
MOVEMENT_RELEASE = "RELEASE"
MOVEMENT_COMMIT = "COMMIT"
MOVEMENT_RESTORE = "RESTORE"
MOVEMENT_ADJUST = "ADJUST"

MOVEMENT_TYPES = (
    MOVEMENT_RESERVE,
    MOVEMENT_RELEASE,
    MOVEMENT_COMMIT,
    MOVEMENT_RESTORE,
    MOVEMENT_ADJUST,
)


class StockMovement(db.Model):
    """
    Append-only stock ledger entry.

    One row per counter mutation. Rows are never updated or deleted; undoing
    an effect writes a compensating movement (RELEASE for RESERVE, RESTORE
    for COMMIT).

    on_hand_after / reserved_after snapshot the product counters right after
    the mutation so the history can be audited without replaying it.
    """
    __tablename__ = "stock_movements"
    __table_args__ = (
        db.CheckConstraint(
            "movement_type IN (" + ", ".join(f"'{m}'" for m in MOVEMENT_TYPES) + ")",
            name="ck_stock_movements_movement_type",
        ),
        db.Index("ix_stock_movements_product_occurred", "product_id", "occurred_at"),
        db.Index("ix_stock_movements_order", "order_id", "id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    # Null for catalog adjustments
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=True)

    movement_type = db.Column(db.String(16), nullable=False, index=True)
    quantity = db.Column(db.Integer, nullable=False)

    on_hand_after = db.Column(db.Integer, nullable=False)
    reserved_after = db.Column(db.Integer, nullable=False)

    actor = db.Column(db.String(120), nullable=True)
    note = db.Column(db.String(255), nullable=True)

    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "order_id": self.order_id,
            "movement_type": self.movement_type,
            "quantity": self.quantity,
            "on_hand_after": self.on_hand_after,
            "reserved_after": self.reserved_after,
            "actor": self.actor,
            "note": self.note,
            "occurred_at": to_utc_z(self.occurred_at),
        }
