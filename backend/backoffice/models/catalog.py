from __future__ import annotations

from ..extensions import db
from backoffice.time_utils import to_utc_z


class Category(db.Model):
    """Product grouping. Only used here to scope bulk margin updates."""
    __tablename__ = "categories"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(100), nullable=False, unique=True)
    description = db.Column(db.Text, nullable=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }


class Product(db.Model):
    """
    Product master data, stock level and pricing inputs.

    PRICING:
    - calculated_sale_price_cents is derived from cost_price_cents and
      profit_margin (percent of the sale price) and is recomputed whenever
      either input changes.
    - manual_sale_price_cents overrides the calculated price while
      is_using_manual_price is set. Both values are kept so that reverting
      to the calculated price needs no recomputation.

    STOCK:
    - stock is only changed together with an InventoryMovement row
      (sales, cancellations, adjustments) so the ledger can replay it.
    """
    __tablename__ = "products"
    __table_args__ = (
        db.CheckConstraint("stock >= 0", name="ck_products_stock_non_negative"),
        db.CheckConstraint("cost_price_cents >= 0", name="ck_products_cost_non_negative"),
        db.CheckConstraint(
            "profit_margin >= 0 AND profit_margin < 100",
            name="ck_products_margin_range",
        ),
        db.Index("ix_products_category_status", "category_id", "status"),
        db.Index("ix_products_name", "name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    name = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text, nullable=True)
    barcode = db.Column(db.String(50), nullable=True, unique=True)

    category_id = db.Column(db.Integer, db.ForeignKey("categories.id"), nullable=True, index=True)

    # Authoritative storage in cents (frontend may only format for display)
    cost_price_cents = db.Column(db.Integer, nullable=False, default=0)
    profit_margin = db.Column(db.Numeric(5, 2), nullable=False, default=30)
    calculated_sale_price_cents = db.Column(db.Integer, nullable=False, default=0)
    manual_sale_price_cents = db.Column(db.Integer, nullable=True)
    is_using_manual_price = db.Column(db.Boolean, nullable=False, default=False)

    stock = db.Column(db.Integer, nullable=False, default=0)
    min_stock = db.Column(db.Integer, nullable=False, default=5)

    status = db.Column(db.String(16), nullable=False, default="active", index=True)  # active, inactive, discontinued

    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Product id={self.id} name={self.name!r} stock={self.stock}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "barcode": self.barcode,
            "category_id": self.category_id,
            "cost_price_cents": self.cost_price_cents,
            "profit_margin": float(self.profit_margin) if self.profit_margin is not None else None,
            "calculated_sale_price_cents": self.calculated_sale_price_cents,
            "manual_sale_price_cents": self.manual_sale_price_cents,
            "is_using_manual_price": self.is_using_manual_price,
            "stock": self.stock,
            "min_stock": self.min_stock,
            "status": self.status,
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class CostHistory(db.Model):
    """
    Append-only record of cost price changes and their effect on the sale price.

    IMMUTABLE: Records are never updated or deleted.
    """
    __tablename__ = "cost_history"
    __table_args__ = (
        db.Index("ix_cost_history_product_created", "product_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    old_cost_price_cents = db.Column(db.Integer, nullable=False)
    new_cost_price_cents = db.Column(db.Integer, nullable=False)
    old_sale_price_cents = db.Column(db.Integer, nullable=False)
    new_sale_price_cents = db.Column(db.Integer, nullable=False)

    change_reason = db.Column(db.String(255), nullable=True)
    changed_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "old_cost_price_cents": self.old_cost_price_cents,
            "new_cost_price_cents": self.new_cost_price_cents,
            "old_sale_price_cents": self.old_sale_price_cents,
            "new_sale_price_cents": self.new_sale_price_cents,
            "change_reason": self.change_reason,
            "changed_by_user_id": self.changed_by_user_id,
            "created_at": to_utc_z(self.created_at),
        }
