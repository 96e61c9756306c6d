"""
Sales Service - atomic sale creation and cancellation

WHY: A sale touches the sale header, its lines, the stock of every product
sold, the inventory ledger and the customer's loyalty balance. All of that
is written in one DB transaction so a failure anywhere leaves no trace.

CONCURRENCY:
- Product rows are locked FOR UPDATE in ascending id order (consistent
  order, no deadlock between two multi-product sales). On SQLite the whole
  unit of work holds the write lock from BEGIN IMMEDIATE.
- Stock sufficiency is checked on the locked rows, so two sales for the
  same product cannot both pass the check.
- Lock timeouts, deadlocks and stale versions replay the whole operation
  (run_with_retry); business errors never retry.
"""

from __future__ import annotations

from datetime import datetime

from flask import current_app

from ..extensions import db
from ..models import Sale, SaleLine, Product, Customer, User
from ..models.inventory import MOVEMENT_IN, MOVEMENT_OUT
from ..models.sales import SALE_CANCELLED, SALE_COMPLETED, SALE_STATUSES, PAYMENT_METHODS
from ..validation import (
    AlreadyCancelled,
    EmptyOrder,
    InsufficientStock,
    InternalError,
    InvalidAmount,
    InvalidQuantity,
    NotFoundError,
    ProductNotFound,
    SaleNotFound,
    ValidationError,
    coerce_int,
)
from .concurrency import begin_write_transaction, lock_for_update, run_with_retry
from .customer_service import credit_loyalty_points, get_customer
from .inventory_service import record_movement
from .invoice_service import next_invoice_number
from .pricing_service import compute_sale_price
from backoffice.time_utils import utcnow

MAX_NOTES_LENGTH = 500
MIN_CANCEL_REASON_LENGTH = 5
MAX_CANCEL_REASON_LENGTH = 200


def _normalize_items(items) -> list[tuple[int, int]]:
    if not items:
        raise EmptyOrder("A sale must contain at least one item")
    if not isinstance(items, (list, tuple)):
        raise ValidationError("items must be a list")

    normalized = []
    for index, item in enumerate(items):
        if not isinstance(item, dict):
            raise ValidationError(f"items[{index}] must be an object")

        try:
            product_id = coerce_int(item.get("product_id"), f"items[{index}].product_id")
        except ValidationError:
            raise ValidationError(
                f"items[{index}].product_id must be a positive integer",
                details={"index": index},
            )
        if product_id < 1:
            raise ValidationError(f"items[{index}].product_id must be a positive integer", details={"index": index})

        try:
            quantity = coerce_int(item.get("quantity"), f"items[{index}].quantity")
        except ValidationError:
            quantity = None
        if quantity is None or quantity < 1:
            raise InvalidQuantity(
                f"Invalid quantity for product {product_id}",
                details={"index": index, "product_id": product_id, "quantity": item.get("quantity")},
            )

        normalized.append((product_id, quantity))
    return normalized


def _normalize_customer_id(customer_id) -> int | None:
    if customer_id is None:
        return None
    customer_id = coerce_int(customer_id, "customer_id")
    if customer_id < 1:
        raise ValidationError("customer_id must be a positive integer", details={"customer_id": customer_id})
    return customer_id


def _validate_amount(value, field: str) -> int:
    if value is None:
        return 0
    try:
        amount = coerce_int(value, field)
    except ValidationError as exc:
        raise InvalidAmount(str(exc), details={field: value})
    if amount < 0:
        raise InvalidAmount(f"{field} must be >= 0", details={field: amount})
    return amount


def _validate_notes(notes) -> str | None:
    if notes is None:
        return None
    notes = str(notes).strip()
    if len(notes) > MAX_NOTES_LENGTH:
        raise ValidationError(f"notes cannot exceed {MAX_NOTES_LENGTH} characters")
    return notes or None


def _lock_products(product_ids) -> dict[int, Product]:
    """Lock product rows in ascending id order and index them by id."""
    ids = sorted(set(product_ids))
    rows = (
        lock_for_update(
            db.session.query(Product)
            .filter(Product.id.in_(ids))
            .order_by(Product.id.asc())
        )
        .all()
    )
    return {p.id: p for p in rows}


def _require_operator(user_id: int) -> User:
    user = db.session.query(User).filter_by(id=user_id).first()
    if user is None or not user.is_active:
        raise NotFoundError(f"User {user_id} not found", details={"user_id": user_id})
    return user


def create_sale(
    *,
    user_id: int,
    items,
    customer_id: int | None = None,
    discount_amount_cents: int = 0,
    tax_amount_cents: int = 0,
    payment_method: str,
    notes: str | None = None,
) -> dict:
    """
    Create a completed sale with its lines, stock decrements, ledger
    entries and loyalty credit, all in one transaction.

    Returns the composed sale (see compose_sale).
    """
    requested = _normalize_items(items)
    customer_id = _normalize_customer_id(customer_id)
    discount = _validate_amount(discount_amount_cents, "discount_amount_cents")
    tax = _validate_amount(tax_amount_cents, "tax_amount_cents")
    if payment_method not in PAYMENT_METHODS:
        raise ValidationError(
            f"payment_method must be one of: {', '.join(PAYMENT_METHODS)}",
            details={"payment_method": payment_method},
        )
    notes = _validate_notes(notes)

    quantities: dict[int, int] = {}
    for product_id, quantity in requested:
        quantities[product_id] = quantities.get(product_id, 0) + quantity

    def _op() -> int:
        begin_write_transaction()
        _require_operator(user_id)

        customer = None
        if customer_id is not None:
            customer = get_customer(customer_id, lock=True)

        products = _lock_products(quantities)
        for product_id, _ in requested:
            if product_id not in products:
                raise ProductNotFound(
                    f"Product {product_id} not found",
                    details={"product_id": product_id},
                )

        insufficient = []
        for product_id, quantity in quantities.items():
            product = products[product_id]
            if product.stock < quantity:
                insufficient.append({
                    "product_id": product_id,
                    "name": product.name,
                    "requested_quantity": quantity,
                    "stock": product.stock,
                })
        if insufficient:
            raise InsufficientStock(
                "Insufficient stock to complete sale",
                details={"items": insufficient},
            )

        # Freeze unit prices now; they are never recalculated.
        unit_prices = {pid: compute_sale_price(p) for pid, p in products.items()}
        subtotal = sum(unit_prices[pid] * qty for pid, qty in requested)
        total = subtotal - discount + tax
        if total < 0:
            raise InvalidAmount(
                "Discount exceeds sale amount",
                details={"subtotal_cents": subtotal, "discount_amount_cents": discount, "tax_amount_cents": tax},
            )

        sale = Sale(
            invoice_number=next_invoice_number(),
            customer_id=customer_id,
            user_id=user_id,
            subtotal_cents=subtotal,
            discount_amount_cents=discount,
            tax_amount_cents=tax,
            total_amount_cents=total,
            payment_method=payment_method,
            status=SALE_COMPLETED,
            notes=notes,
        )
        db.session.add(sale)
        db.session.flush()

        for product_id, quantity in requested:
            unit_price = unit_prices[product_id]
            db.session.add(SaleLine(
                sale_id=sale.id,
                product_id=product_id,
                quantity=quantity,
                unit_price_cents=unit_price,
                line_total_cents=unit_price * quantity,
            ))

        for product_id in sorted(quantities):
            product = products[product_id]
            quantity = quantities[product_id]
            previous = product.stock
            product.stock = previous - quantity
            record_movement(
                product_id=product_id,
                movement_type=MOVEMENT_OUT,
                quantity=quantity,
                previous_stock=previous,
                new_stock=product.stock,
                reason=f"Sale {sale.invoice_number}",
                user_id=user_id,
                reference_id=sale.id,
            )

        earned = 0
        if customer is not None:
            earned = credit_loyalty_points(customer, total)

        sale_id = sale.id
        invoice_number = sale.invoice_number
        db.session.commit()

        current_app.logger.info(
            "Sale %s created: %d line(s), total_cents=%d, loyalty_points=%d",
            invoice_number, len(requested), total, earned,
        )
        return sale_id

    sale_id = run_with_retry(_op)
    return get_sale(sale_id)


def cancel_sale(*, sale_id: int, reason: str, user_id: int | None = None) -> Sale:
    """
    Cancel a completed sale: restore stock, append compensating "in"
    entries and annotate the notes. One transaction.

    Loyalty points credited by the sale are kept.
    """
    if reason is not None and not isinstance(reason, str):
        raise ValidationError("reason must be a string")
    reason = (reason or "").strip()
    if not (MIN_CANCEL_REASON_LENGTH <= len(reason) <= MAX_CANCEL_REASON_LENGTH):
        raise ValidationError(
            f"reason must be between {MIN_CANCEL_REASON_LENGTH} and {MAX_CANCEL_REASON_LENGTH} characters"
        )

    def _op() -> Sale:
        begin_write_transaction()
        sale = lock_for_update(db.session.query(Sale).filter_by(id=sale_id)).first()
        if not sale:
            raise SaleNotFound(f"Sale {sale_id} not found", details={"sale_id": sale_id})

        if sale.status == SALE_CANCELLED:
            raise AlreadyCancelled(
                f"Sale {sale.invoice_number} is already cancelled",
                details={"sale_id": sale.id, "invoice_number": sale.invoice_number},
            )

        lines = db.session.query(SaleLine).filter_by(sale_id=sale.id).order_by(SaleLine.id.asc()).all()
        quantities: dict[int, int] = {}
        for line in lines:
            quantities[line.product_id] = quantities.get(line.product_id, 0) + line.quantity

        products = _lock_products(quantities)
        for product_id in sorted(quantities):
            product = products.get(product_id)
            if product is None:
                raise InternalError(
                    "Sale references a missing product",
                    details={"sale_id": sale.id, "product_id": product_id},
                )
            quantity = quantities[product_id]
            previous = product.stock
            product.stock = previous + quantity
            record_movement(
                product_id=product_id,
                movement_type=MOVEMENT_IN,
                quantity=quantity,
                previous_stock=previous,
                new_stock=product.stock,
                reason=f"Cancellation of sale {sale.invoice_number}: {reason}",
                user_id=user_id,
                reference_id=sale.id,
            )

        sale.status = SALE_CANCELLED
        sale.notes = f"{sale.notes or ''} [CANCELLED: {reason}]".strip()
        sale.cancelled_at = utcnow()
        sale.cancelled_by_user_id = user_id

        db.session.commit()
        current_app.logger.info("Sale %s cancelled: %s", sale.invoice_number, reason)
        return sale

    return run_with_retry(_op)


def update_sale(*, sale_id: int, status: str | None = None, notes=None) -> Sale:
    """
    Update status and/or notes.

    Cancellation must go through cancel_sale (stock reversal), so moving
    a sale into or out of "cancelled" is refused here.
    """
    if status is not None and status not in SALE_STATUSES:
        raise ValidationError(
            f"status must be one of: {', '.join(SALE_STATUSES)}",
            details={"status": status},
        )
    if notes is not None:
        notes = _validate_notes(notes)

    def _op() -> Sale:
        sale = lock_for_update(db.session.query(Sale).filter_by(id=sale_id)).first()
        if not sale:
            raise SaleNotFound(f"Sale {sale_id} not found", details={"sale_id": sale_id})

        if status is not None and status != sale.status:
            if status == SALE_CANCELLED:
                raise ValidationError("Use the cancel operation to cancel a sale")
            if sale.status == SALE_CANCELLED:
                raise ValidationError("Cancelled sales cannot change status")
            sale.status = status

        if notes is not None:
            sale.notes = notes

        db.session.commit()
        return sale

    return run_with_retry(_op)


def compose_sale(sale: Sale) -> dict:
    """Sale header with its lines and the customer/operator summaries."""
    lines = db.session.query(SaleLine).filter_by(sale_id=sale.id).order_by(SaleLine.id.asc()).all()
    product_ids = {line.product_id for line in lines}
    products = {}
    if product_ids:
        products = {
            p.id: p for p in db.session.query(Product).filter(Product.id.in_(product_ids)).all()
        }

    items = []
    for line in lines:
        row = line.to_dict()
        product = products.get(line.product_id)
        row["product"] = (
            {"id": product.id, "name": product.name, "barcode": product.barcode}
            if product else None
        )
        items.append(row)

    customer = None
    if sale.customer_id is not None:
        customer = db.session.query(Customer).filter_by(id=sale.customer_id).first()
    operator = db.session.query(User).filter_by(id=sale.user_id).first()

    data = sale.to_dict()
    data["items"] = items
    data["customer"] = customer.to_summary() if customer else None
    data["user"] = operator.to_summary() if operator else None
    return data


def get_sale(sale_id: int) -> dict:
    sale = db.session.query(Sale).filter_by(id=sale_id).first()
    if not sale:
        raise SaleNotFound(f"Sale {sale_id} not found", details={"sale_id": sale_id})
    return compose_sale(sale)


def list_sales(
    *,
    customer_id: int | None = None,
    user_id: int | None = None,
    payment_method: str | None = None,
    status: str | None = None,
    start: datetime | None = None,
    end: datetime | None = None,
    page: int | None = None,
    per_page: int | None = None,
) -> dict:
    """
    Sale headers, newest first, with optional pagination.

    Date filters are inclusive on created_at.
    """
    if status is not None and status not in SALE_STATUSES:
        raise ValidationError(f"status must be one of: {', '.join(SALE_STATUSES)}")
    if payment_method is not None and payment_method not in PAYMENT_METHODS:
        raise ValidationError(f"payment_method must be one of: {', '.join(PAYMENT_METHODS)}")

    query = db.session.query(Sale)
    if customer_id is not None:
        query = query.filter(Sale.customer_id == customer_id)
    if user_id is not None:
        query = query.filter(Sale.user_id == user_id)
    if payment_method is not None:
        query = query.filter(Sale.payment_method == payment_method)
    if status is not None:
        query = query.filter(Sale.status == status)
    if start is not None:
        query = query.filter(Sale.created_at >= start)
    if end is not None:
        query = query.filter(Sale.created_at <= end)

    query = query.order_by(Sale.created_at.desc(), Sale.id.desc())

    # If no pagination requested, return all items
    if page is None:
        sales = query.all()
        return {
            "items": [s.to_dict() for s in sales],
            "count": len(sales),
        }

    per_page = min(per_page or 20, 100)  # Default 20, max 100
    page = max(page, 1)  # Ensure page >= 1

    total = query.count()
    total_pages = (total + per_page - 1) // per_page if total > 0 else 1

    sales = query.offset((page - 1) * per_page).limit(per_page).all()

    return {
        "items": [s.to_dict() for s in sales],
        "count": len(sales),
        "pagination": {
            "page": page,
            "per_page": per_page,
            "total": total,
            "total_pages": total_pages,
            "has_next": page < total_pages,
            "has_prev": page > 1,
        },
    }
