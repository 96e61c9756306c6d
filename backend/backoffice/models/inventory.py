from __future__ import annotations

from ..extensions import db
from backoffice.time_utils import to_utc_z

MOVEMENT_IN = "in"
MOVEMENT_OUT = "out"
MOVEMENT_ADJUSTMENT = "adjustment"
MOVEMENT_TYPES = (MOVEMENT_IN, MOVEMENT_OUT, MOVEMENT_ADJUSTMENT)


class InventoryMovement(db.Model):
    """
    Append-only ledger of stock changes, one row per product per event.

    Each row carries the stock before and after the change so a product's
    stock history can be replayed and audited without the sales tables.

    IMMUTABLE: Records are never updated or deleted.
    """
    __tablename__ = "inventory_movements"
    __table_args__ = (
        db.CheckConstraint("quantity >= 1", name="ck_invmov_quantity_positive"),
        db.CheckConstraint("previous_stock >= 0", name="ck_invmov_previous_non_negative"),
        db.CheckConstraint("new_stock >= 0", name="ck_invmov_new_non_negative"),
        db.Index("ix_invmov_product_created", "product_id", "created_at"),
        db.Index("ix_invmov_reference", "reference_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    movement_type = db.Column(db.String(16), nullable=False, index=True)  # in, out, adjustment
    quantity = db.Column(db.Integer, nullable=False)

    previous_stock = db.Column(db.Integer, nullable=False)
    new_stock = db.Column(db.Integer, nullable=False)

    reason = db.Column(db.String(255), nullable=True)

    # Sale that caused the movement, when there is one
    reference_id = db.Column(db.Integer, nullable=True)

    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    @property
    def delta(self) -> int:
        return self.new_stock - self.previous_stock

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "movement_type": self.movement_type,
            "quantity": self.quantity,
            "previous_stock": self.previous_stock,
            "new_stock": self.new_stock,
            "reason": self.reason,
            "reference_id": self.reference_id,
            "user_id": self.user_id,
            "created_at": to_utc_z(self.created_at),
        }
