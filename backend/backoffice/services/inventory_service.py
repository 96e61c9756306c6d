# Overview: Service-layer operations for the inventory ledger; encapsulates business logic and database work.

# backend/backoffice/services/inventory_service.py

from __future__ import annotations

from flask import current_app
from sqlalchemy import case, func

from ..extensions import db
from ..models import Product, InventoryMovement
from ..models.inventory import MOVEMENT_IN, MOVEMENT_OUT, MOVEMENT_ADJUSTMENT, MOVEMENT_TYPES
from ..validation import (
    InvalidQuantity,
    InvalidStockSnapshot,
    InternalError,
    ProductNotFound,
    ValidationError,
)
from .concurrency import begin_write_transaction, lock_for_update, run_with_retry
"""
Inventory Ledger Invariants (authoritative)

- Product.stock is the current quantity; InventoryMovement is its audit trail.
- Every stock change appends exactly one movement per product, in the same DB
  transaction as the change itself.
- quantity >= 1 and both snapshots >= 0 on every movement.
- out:        new_stock = previous_stock - quantity
- in:         new_stock = previous_stock + quantity
- adjustment: |new_stock - previous_stock| = quantity (either direction)
- Movements are append-only (no updates/deletes); there is no API for either.
- Replaying a product's movements oldest-first reproduces its current stock.
"""


def _check_snapshot(movement_type: str, quantity: int, previous_stock: int, new_stock: int) -> None:
    if previous_stock < 0 or new_stock < 0:
        raise InvalidStockSnapshot(
            "Stock snapshots must be >= 0",
            details={"previous_stock": previous_stock, "new_stock": new_stock},
        )

    if movement_type == MOVEMENT_OUT:
        expected = previous_stock - quantity
        ok = new_stock == expected
    elif movement_type == MOVEMENT_IN:
        expected = previous_stock + quantity
        ok = new_stock == expected
    else:
        expected = None
        ok = abs(new_stock - previous_stock) == quantity

    if not ok:
        raise InvalidStockSnapshot(
            f"Stock snapshot does not match a '{movement_type}' movement of {quantity}",
            details={
                "movement_type": movement_type,
                "quantity": quantity,
                "previous_stock": previous_stock,
                "new_stock": new_stock,
                "expected_new_stock": expected,
            },
        )


def record_movement(
    *,
    product_id: int,
    movement_type: str,
    quantity: int,
    previous_stock: int,
    new_stock: int,
    reason: str | None = None,
    user_id: int | None = None,
    reference_id: int | None = None,
) -> InventoryMovement:
    """
    Append one immutable ledger entry.

    Joins the caller's unit of work: flushes so the id is assigned, never commits.
    """
    if movement_type not in MOVEMENT_TYPES:
        raise ValidationError(
            f"movement_type must be one of: {', '.join(MOVEMENT_TYPES)}",
            details={"movement_type": movement_type},
        )
    if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity < 1:
        raise InvalidQuantity("quantity must be an integer >= 1", details={"quantity": quantity})

    _check_snapshot(movement_type, quantity, previous_stock, new_stock)

    movement = InventoryMovement(
        product_id=product_id,
        movement_type=movement_type,
        quantity=quantity,
        previous_stock=previous_stock,
        new_stock=new_stock,
        reason=reason[:255] if reason else reason,
        user_id=user_id,
        reference_id=reference_id,
    )
    db.session.add(movement)
    db.session.flush()  # ensures movement.id is assigned without committing
    return movement


def _require_product(product_id: int, *, lock: bool = False) -> Product:
    query = db.session.query(Product).filter_by(id=product_id)
    if lock:
        query = lock_for_update(query)
    product = query.first()
    if product is None:
        raise ProductNotFound(f"Product {product_id} not found", details={"product_id": product_id})
    return product


def history_for_product(product_id: int, limit: int = 50) -> list[InventoryMovement]:
    """Ledger entries for a product, newest first."""
    _require_product(product_id)
    limit = max(1, min(limit, 500))
    return (
        db.session.query(InventoryMovement)
        .filter_by(product_id=product_id)
        .order_by(InventoryMovement.created_at.desc(), InventoryMovement.id.desc())
        .limit(limit)
        .all()
    )


def stock_summary(product_id: int) -> dict:
    """Totals moved in and out of a product, for reconciliation."""
    _require_product(product_id)

    row = db.session.query(
        func.coalesce(
            func.sum(case((InventoryMovement.movement_type == MOVEMENT_IN, InventoryMovement.quantity), else_=0)),
            0,
        ).label("total_in"),
        func.coalesce(
            func.sum(case((InventoryMovement.movement_type == MOVEMENT_OUT, InventoryMovement.quantity), else_=0)),
            0,
        ).label("total_out"),
        func.coalesce(
            func.sum(
                case(
                    (
                        InventoryMovement.movement_type == MOVEMENT_ADJUSTMENT,
                        InventoryMovement.new_stock - InventoryMovement.previous_stock,
                    ),
                    else_=0,
                )
            ),
            0,
        ).label("net_adjustment"),
        func.count(InventoryMovement.id).label("total_movements"),
    ).filter(InventoryMovement.product_id == product_id).one()

    return {
        "product_id": product_id,
        "total_in": int(row.total_in or 0),
        "total_out": int(row.total_out or 0),
        "net_adjustment": int(row.net_adjustment or 0),
        "total_movements": int(row.total_movements or 0),
    }


def replay_stock(product_id: int, initial_stock: int | None = None) -> int:
    """
    Rebuild a product's stock from its ledger, oldest entry first.

    Starts from initial_stock, or from the first entry's previous_stock when
    omitted (the product's current stock when it has no entries). Raises
    InternalError if an entry does not continue from the running value.
    """
    product = _require_product(product_id)
    movements = (
        db.session.query(InventoryMovement)
        .filter_by(product_id=product_id)
        .order_by(InventoryMovement.id.asc())
        .all()
    )
    if not movements:
        return product.stock if initial_stock is None else initial_stock

    running = movements[0].previous_stock if initial_stock is None else initial_stock
    for movement in movements:
        if movement.previous_stock != running:
            raise InternalError(
                "Inventory ledger is not continuous",
                details={
                    "product_id": product_id,
                    "movement_id": movement.id,
                    "expected_previous_stock": running,
                    "previous_stock": movement.previous_stock,
                },
            )
        running = movement.new_stock
    return running


def adjust_stock(
    *,
    product_id: int,
    new_stock: int,
    reason: str,
    user_id: int | None = None,
) -> InventoryMovement:
    """
    Set a product's stock to a counted value and record an adjustment entry.
    """
    if isinstance(new_stock, bool) or not isinstance(new_stock, int) or new_stock < 0:
        raise ValidationError("new_stock must be an integer >= 0", details={"new_stock": new_stock})
    if not reason or not str(reason).strip():
        raise ValidationError("reason is required")

    def _op():
        begin_write_transaction()
        product = _require_product(product_id, lock=True)

        previous = product.stock
        if previous == new_stock:
            raise ValidationError(
                "new_stock equals current stock; nothing to adjust",
                details={"stock": previous},
            )

        product.stock = new_stock
        movement = record_movement(
            product_id=product.id,
            movement_type=MOVEMENT_ADJUSTMENT,
            quantity=abs(new_stock - previous),
            previous_stock=previous,
            new_stock=new_stock,
            reason=str(reason).strip(),
            user_id=user_id,
        )
        db.session.commit()
        current_app.logger.info(
            "Stock adjusted for product %s: %s -> %s", product.id, previous, new_stock
        )
        return movement

    return run_with_retry(_op)
