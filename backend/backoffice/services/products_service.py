# backend/backoffice/services/products_service.py
"""
Products Service - catalog CRUD and pricing operations

PRICING: every write that touches cost_price_cents or profit_margin
recomputes calculated_sale_price_cents in the same unit of work, and a
cost change appends a CostHistory row.

STOCK: stock is never writable here after creation. Initial stock is
recorded as an "in" ledger entry; later changes go through sales,
cancellations or inventory adjustments.
"""
from __future__ import annotations

from flask import current_app
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import Category, CostHistory, Product
from ..models.inventory import MOVEMENT_IN
from ..validation import (
    ConflictError,
    InvalidMargin,
    InvalidPrice,
    NotFoundError,
    ProductNotFound,
    ValidationError,
    coerce_decimal,
    enforce_rules_product,
)
from . import pricing_service
from .concurrency import lock_for_update, run_with_retry
from .inventory_service import record_movement

PRODUCT_FIELDS = {"name", "description", "barcode", "category_id", "min_stock", "status"}
MAX_CHANGE_REASON_LENGTH = 255


def serialize_product(product: Product) -> dict:
    data = product.to_dict()
    data.update(pricing_service.pricing_summary(product))
    return data


def _get_product(product_id: int, *, lock: bool = False) -> Product:
    query = db.session.query(Product).filter_by(id=product_id)
    if lock:
        query = lock_for_update(query)
    product = query.first()
    if product is None:
        raise ProductNotFound(f"Product {product_id} not found", details={"product_id": product_id})
    return product


def _require_category(category_id: int | None) -> None:
    if category_id is None:
        return
    if db.session.query(Category.id).filter_by(id=category_id).first() is None:
        raise NotFoundError(f"Category {category_id} not found", details={"category_id": category_id})


def _check_barcode(barcode: str | None, product_id: int | None = None) -> None:
    if not barcode:
        return
    query = db.session.query(Product.id).filter(Product.barcode == barcode)
    if product_id is not None:
        query = query.filter(Product.id != product_id)
    if query.first() is not None:
        raise ConflictError("Barcode already exists.", details={"barcode": barcode})


def _record_cost_change(
    product: Product,
    *,
    old_cost: int,
    old_sale_price: int,
    user_id: int | None,
    change_reason: str | None,
) -> None:
    if product.cost_price_cents == old_cost:
        return
    db.session.add(CostHistory(
        product_id=product.id,
        old_cost_price_cents=old_cost,
        new_cost_price_cents=product.cost_price_cents,
        old_sale_price_cents=old_sale_price,
        new_sale_price_cents=pricing_service.compute_sale_price(product),
        change_reason=change_reason,
        changed_by_user_id=user_id,
    ))


def _validate_change_reason(change_reason) -> str | None:
    if change_reason is None:
        return None
    if not isinstance(change_reason, str):
        raise ValidationError("change_reason must be a string")
    change_reason = change_reason.strip()
    if len(change_reason) > MAX_CHANGE_REASON_LENGTH:
        raise ValidationError(f"change_reason cannot exceed {MAX_CHANGE_REASON_LENGTH} characters")
    return change_reason or None


def _apply_manual_fields(product: Product, patch: dict) -> None:
    if "manual_sale_price_cents" not in patch and "is_using_manual_price" not in patch:
        return
    manual = patch.get("manual_sale_price_cents", product.manual_sale_price_cents)
    use_manual = patch.get("is_using_manual_price", product.is_using_manual_price)
    if use_manual and manual is None:
        raise InvalidPrice("manual_sale_price_cents is required when is_using_manual_price is true")
    if manual is not None:
        pricing_service.validate_price_cents(manual, "manual_sale_price_cents")
    product.manual_sale_price_cents = manual
    product.is_using_manual_price = bool(use_manual)


def list_products(
    *,
    category_id: int | None = None,
    status: str | None = None,
    search: str | None = None,
    page: int | None = None,
    per_page: int | None = None,
) -> dict:
    """
    Product listing with optional filters and pagination.

    Args:
        category_id: Filter by category
        status: Filter by status (active, inactive, discontinued)
        search: Case-insensitive match on name or exact barcode
        page: Page number (1-indexed). If None, returns all items.
        per_page: Items per page (default 20, max 100)

    Returns:
        Dict with 'items', 'count', and pagination metadata if paginated.
    """
    query = db.session.query(Product)
    if category_id is not None:
        query = query.filter(Product.category_id == category_id)
    if status is not None:
        query = query.filter(Product.status == status)
    if search:
        term = search.strip()
        query = query.filter(
            db.or_(Product.name.ilike(f"%{term}%"), Product.barcode == term)
        )

    query = query.order_by(Product.name.asc(), Product.id.asc())

    # If no pagination requested, return all items
    if page is None:
        products = query.all()
        return {
            "items": [serialize_product(p) for p in products],
            "count": len(products),
        }

    per_page = min(per_page or 20, 100)  # Default 20, max 100
    page = max(page, 1)  # Ensure page >= 1

    total = query.count()
    total_pages = (total + per_page - 1) // per_page if total > 0 else 1

    products = query.offset((page - 1) * per_page).limit(per_page).all()

    return {
        "items": [serialize_product(p) for p in products],
        "count": len(products),
        "pagination": {
            "page": page,
            "per_page": per_page,
            "total": total,
            "total_pages": total_pages,
            "has_next": page < total_pages,
            "has_prev": page > 1,
        },
    }


def list_low_stock_products() -> dict:
    """Active products at or below their minimum stock, lowest stock first."""
    products = (
        db.session.query(Product)
        .filter(Product.status == "active", Product.stock <= Product.min_stock)
        .order_by(Product.stock.asc(), Product.id.asc())
        .all()
    )
    return {
        "items": [serialize_product(p) for p in products],
        "count": len(products),
    }


def get_product(product_id: int) -> dict:
    return serialize_product(_get_product(product_id))


def create_product(*, patch: dict, user_id: int | None = None) -> dict:
    """
    Create product using a validated patch dict.

    Raises:
        ConflictError: If the barcode already exists
        NotFoundError: If category_id does not exist
        InvalidMargin / InvalidPrice: If pricing inputs are out of range
    """
    enforce_rules_product(patch)
    if not patch.get("name"):
        raise ValidationError("name is required")

    def _op() -> int:
        _check_barcode(patch.get("barcode"))
        _require_category(patch.get("category_id"))

        product = Product(stock=0)
        for key in PRODUCT_FIELDS:
            if key in patch and patch[key] is not None:
                setattr(product, key, patch[key])

        margin = patch.get("profit_margin")
        pricing_service.apply_pricing(
            product,
            cost_price_cents=patch.get("cost_price_cents") or 0,
            profit_margin=30 if margin is None else margin,
        )
        _apply_manual_fields(product, patch)

        db.session.add(product)
        db.session.flush()  # ensure product.id exists before the ledger entry

        initial_stock = patch.get("stock") or 0
        if initial_stock > 0:
            product.stock = initial_stock
            record_movement(
                product_id=product.id,
                movement_type=MOVEMENT_IN,
                quantity=initial_stock,
                previous_stock=0,
                new_stock=initial_stock,
                reason="Initial stock",
                user_id=user_id,
            )

        product_id = product.id
        try:
            db.session.commit()
        except IntegrityError:
            db.session.rollback()
            raise ConflictError("Barcode already exists.", details={"barcode": patch.get("barcode")})

        current_app.logger.info("Product %s created (stock=%s)", product_id, initial_stock)
        return product_id

    return get_product(run_with_retry(_op))


def update_product(
    *,
    product_id: int,
    patch: dict,
    user_id: int | None = None,
    change_reason: str | None = None,
) -> dict:
    """
    Apply a validated partial update.

    Cost or margin changes refresh the calculated price; a cost change is
    recorded in the cost history.
    """
    if "stock" in patch:
        raise ValidationError("Field cannot be updated: stock")
    enforce_rules_product(patch)
    change_reason = _validate_change_reason(change_reason)

    def _op() -> int:
        product = _get_product(product_id, lock=True)

        if "barcode" in patch:
            _check_barcode(patch["barcode"], product.id)
        if "category_id" in patch:
            _require_category(patch["category_id"])

        old_cost = product.cost_price_cents
        old_sale_price = pricing_service.compute_sale_price(product)

        for key in PRODUCT_FIELDS:
            if key in patch:
                setattr(product, key, patch[key])

        if "cost_price_cents" in patch or "profit_margin" in patch:
            pricing_service.apply_pricing(
                product,
                cost_price_cents=patch.get("cost_price_cents"),
                profit_margin=patch.get("profit_margin"),
            )
        _apply_manual_fields(product, patch)

        _record_cost_change(
            product,
            old_cost=old_cost,
            old_sale_price=old_sale_price,
            user_id=user_id,
            change_reason=change_reason or "Product update",
        )

        try:
            db.session.commit()
        except IntegrityError:
            db.session.rollback()
            raise ConflictError("Barcode already exists.", details={"barcode": patch.get("barcode")})
        return product.id

    return get_product(run_with_retry(_op))


def recalculate_price(
    *,
    product_id: int,
    cost_price_cents: int | None = None,
    profit_margin=None,
    user_id: int | None = None,
    change_reason: str | None = None,
) -> dict:
    """
    Set new cost and/or margin and recompute the calculated sale price.

    An active manual price stays in effect; only the calculated price moves.
    """
    def _op() -> int:
        product = _get_product(product_id, lock=True)
        old_cost = product.cost_price_cents
        old_sale_price = pricing_service.compute_sale_price(product)

        pricing_service.apply_pricing(
            product,
            cost_price_cents=cost_price_cents,
            profit_margin=profit_margin,
        )
        _record_cost_change(
            product,
            old_cost=old_cost,
            old_sale_price=old_sale_price,
            user_id=user_id,
            change_reason=change_reason or "Pricing update",
        )
        db.session.commit()
        return product.id

    change_reason = _validate_change_reason(change_reason)
    if cost_price_cents is not None:
        pricing_service.validate_price_cents(cost_price_cents, "cost_price_cents")
    if profit_margin is not None:
        profit_margin = pricing_service.validate_margin(profit_margin)

    return get_product(run_with_retry(_op))


def set_manual_price(*, product_id: int, price_cents: int) -> dict:
    pricing_service.validate_price_cents(price_cents, "price_cents")

    def _op() -> int:
        product = _get_product(product_id, lock=True)
        pricing_service.set_manual_price(product, price_cents)
        db.session.commit()
        return product.id

    return get_product(run_with_retry(_op))


def use_calculated_price(*, product_id: int) -> dict:
    def _op() -> int:
        product = _get_product(product_id, lock=True)
        pricing_service.revert_to_calculated_price(product)
        db.session.commit()
        return product.id

    return get_product(run_with_retry(_op))


def bulk_update_margins(
    *,
    category_id: int | None = None,
    new_margin=None,
    margin_increase=None,
) -> int:
    """
    Set (new_margin) or shift (margin_increase) the margin of every product,
    optionally limited to one category. new_margin wins when both are given.

    Products whose resulting margin falls outside [0, 100), or whose
    resulting price exceeds the price cap, are skipped.
    Returns the number of products updated.
    """
    if new_margin is None and margin_increase is None:
        raise ValidationError("Provide new_margin or margin_increase")
    if new_margin is not None:
        new_margin = coerce_decimal(new_margin, "new_margin")
    if margin_increase is not None:
        margin_increase = coerce_decimal(margin_increase, "margin_increase")

    def _op() -> int:
        query = db.session.query(Product)
        if category_id is not None:
            query = query.filter(Product.category_id == category_id)
        products = lock_for_update(query.order_by(Product.id.asc())).all()

        updated = 0
        for product in products:
            if new_margin is not None:
                target = new_margin
            else:
                target = coerce_decimal(product.profit_margin, "profit_margin") + margin_increase
            try:
                pricing_service.apply_pricing(product, profit_margin=target)
            except (InvalidMargin, InvalidPrice):
                continue
            updated += 1

        db.session.commit()
        return updated

    updated = run_with_retry(_op)
    current_app.logger.info("Bulk margin update: %d product(s) updated", updated)
    return updated


def profit_analysis() -> dict:
    products = (
        db.session.query(Product)
        .filter(Product.status == "active")
        .order_by(Product.id.asc())
        .all()
    )
    return pricing_service.margin_analysis(
        products,
        top_n=current_app.config.get("PROFIT_ANALYSIS_TOP_N", 10),
        low_margin_threshold=current_app.config.get("LOW_MARGIN_THRESHOLD", 20),
    )


def get_cost_history(product_id: int) -> list[dict]:
    """Cost changes for a product, newest first."""
    product = _get_product(product_id)
    rows = (
        db.session.query(CostHistory)
        .filter_by(product_id=product.id)
        .order_by(CostHistory.created_at.desc(), CostHistory.id.desc())
        .all()
    )
    items = []
    for row in rows:
        data = row.to_dict()
        data["product_name"] = product.name
        items.append(data)
    return items
