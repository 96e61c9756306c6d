# Overview: Flask API routes for products operations; parses input and returns JSON responses.

# backend/backoffice/routes/products.py
"""
Product catalog and pricing routes.

SECURITY: All routes require authentication.
- Read operations are open to any operator
- Catalog and pricing writes require manager or admin
"""
from flask import Blueprint, request, g, current_app
from ..services import products_service
from ..models import Product
from ..models.auth import ROLE_ADMIN, ROLE_MANAGER
from ..validation import (
    ModelValidationPolicy,
    validate_payload,
    enforce_rules_product,
    ServiceError,
)
from ..decorators import require_auth, require_role

PRODUCT_POLICY = ModelValidationPolicy(
    writable_fields={
        "name",
        "description",
        "barcode",
        "category_id",
        "cost_price_cents",
        "profit_margin",
        "manual_sale_price_cents",
        "is_using_manual_price",
        "stock",
        "min_stock",
        "status",
    },
    required_on_create={"name", "cost_price_cents"},
    create_only_fields={"stock"},
)

products_bp = Blueprint("products", __name__, url_prefix="/api/products")


def _error_response(e: ServiceError):
    return e.to_dict(), e.status_code


@products_bp.get("")
@require_auth
def list_products():
    """
    List products with optional filters and pagination.

    Query params:
    - category_id: int (optional)
    - status: str (optional)
    - search: str (optional) - name substring or exact barcode
    - page: int (optional) - page number (1-indexed). If omitted, returns all items.
    - per_page: int (optional) - items per page (default 20, max 100)
    """
    return products_service.list_products(
        category_id=request.args.get("category_id", type=int),
        status=request.args.get("status") or None,
        search=request.args.get("search") or None,
        page=request.args.get("page", type=int),
        per_page=request.args.get("per_page", type=int),
    )


@products_bp.post("")
@require_auth
@require_role(ROLE_MANAGER, ROLE_ADMIN)
def create_product_route():
    """
    Create a new product. An initial stock is recorded in the inventory ledger.
    """
    payload = request.get_json(silent=True) or {}

    try:
        patch = validate_payload(model=Product, payload=payload, policy=PRODUCT_POLICY, partial=False)
        enforce_rules_product(patch)  # Handles price and margin ranges
        created = products_service.create_product(patch=patch, user_id=g.current_user.id)
    except ServiceError as e:
        return _error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create product")
        return {"error": "Internal server error"}, 500

    return created, 201


@products_bp.get("/profit-analysis")
@require_auth
def profit_analysis_route():
    """Margin and profitability summary over active products."""
    return products_service.profit_analysis()


@products_bp.get("/low-stock")
@require_auth
def low_stock_route():
    """Active products with stock at or below min_stock."""
    return products_service.list_low_stock_products()


@products_bp.post("/bulk-update-margins")
@require_auth
@require_role(ROLE_MANAGER, ROLE_ADMIN)
def bulk_update_margins_route():
    """
    Body: {"category_id"?: int, "new_margin"?: number, "margin_increase"?: number}

    Products whose resulting margin would be out of range are skipped.
    """
    payload = request.get_json(silent=True) or {}

    try:
        updated = products_service.bulk_update_margins(
            category_id=payload.get("category_id"),
            new_margin=payload.get("new_margin"),
            margin_increase=payload.get("margin_increase"),
        )
    except ServiceError as e:
        return _error_response(e)
    except Exception:
        current_app.logger.exception("Failed to bulk update margins")
        return {"error": "Internal server error"}, 500

    return {"message": f"{updated} products updated successfully", "updated_count": updated}, 200


@products_bp.get("/<int:product_id>")
@require_auth
def get_product_route(product_id: int):
    try:
        return products_service.get_product(product_id), 200
    except ServiceError as e:
        return _error_response(e)


@products_bp.put("/<int:product_id>")
@require_auth
@require_role(ROLE_MANAGER, ROLE_ADMIN)
def update_product_route(product_id: int):
    """
    Update a product. Stock cannot be changed here.
    """
    payload = request.get_json(silent=True) or {}
    change_reason = payload.pop("change_reason", None)

    try:
        patch = validate_payload(model=Product, payload=payload, policy=PRODUCT_POLICY, partial=True)
        enforce_rules_product(patch)
        updated = products_service.update_product(
            product_id=product_id,
            patch=patch,
            user_id=g.current_user.id,
            change_reason=change_reason,
        )
    except ServiceError as e:
        return _error_response(e)
    except Exception:
        current_app.logger.exception("Failed to update product")
        return {"error": "Internal server error"}, 500

    return updated, 200


@products_bp.put("/<int:product_id>/pricing")
@require_auth
@require_role(ROLE_MANAGER, ROLE_ADMIN)
def recalculate_price_route(product_id: int):
    """
    Body: {"cost_price_cents"?: int, "profit_margin"?: number, "change_reason"?: str}
    """
    payload = request.get_json(silent=True) or {}

    try:
        updated = products_service.recalculate_price(
            product_id=product_id,
            cost_price_cents=payload.get("cost_price_cents"),
            profit_margin=payload.get("profit_margin"),
            user_id=g.current_user.id,
            change_reason=payload.get("change_reason"),
        )
    except ServiceError as e:
        return _error_response(e)
    except Exception:
        current_app.logger.exception("Failed to recalculate price")
        return {"error": "Internal server error"}, 500

    return updated, 200


@products_bp.post("/<int:product_id>/manual-price")
@require_auth
@require_role(ROLE_MANAGER, ROLE_ADMIN)
def set_manual_price_route(product_id: int):
    """Body: {"price_cents": int}"""
    payload = request.get_json(silent=True) or {}

    try:
        updated = products_service.set_manual_price(
            product_id=product_id,
            price_cents=payload.get("price_cents"),
        )
    except ServiceError as e:
        return _error_response(e)
    except Exception:
        current_app.logger.exception("Failed to set manual price")
        return {"error": "Internal server error"}, 500

    return updated, 200


@products_bp.post("/<int:product_id>/calculated-price")
@require_auth
@require_role(ROLE_MANAGER, ROLE_ADMIN)
def use_calculated_price_route(product_id: int):
    try:
        updated = products_service.use_calculated_price(product_id=product_id)
    except ServiceError as e:
        return _error_response(e)
    except Exception:
        current_app.logger.exception("Failed to switch to calculated price")
        return {"error": "Internal server error"}, 500

    return updated, 200


@products_bp.get("/<int:product_id>/cost-history")
@require_auth
def cost_history_route(product_id: int):
    try:
        items = products_service.get_cost_history(product_id)
    except ServiceError as e:
        return _error_response(e)

    return {"items": items, "count": len(items)}, 200
