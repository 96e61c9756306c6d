# backend/backoffice/routes/inventory.py
"""
Inventory ledger routes.

SECURITY: All routes require authentication.
- History and summaries are open to any operator
- Stock adjustments require manager or admin
"""
from flask import Blueprint, request, g, current_app

from ..services import inventory_service
from ..models.auth import ROLE_ADMIN, ROLE_MANAGER
from ..validation import ServiceError, ValidationError, coerce_int
from ..decorators import require_auth, require_role


inventory_bp = Blueprint("inventory", __name__, url_prefix="/api/inventory")


@inventory_bp.get("/products/<int:product_id>/movements")
@require_auth
def product_movements_route(product_id: int):
    """
    Ledger entries for a product, newest first.

    Query params:
    - limit: int (optional, default 50, max 500)
    """
    limit = request.args.get("limit", default=50, type=int)

    try:
        movements = inventory_service.history_for_product(product_id, limit=limit)
    except ServiceError as e:
        return e.to_dict(), e.status_code

    return {
        "product_id": product_id,
        "items": [m.to_dict() for m in movements],
        "count": len(movements),
    }, 200


@inventory_bp.get("/products/<int:product_id>/summary")
@require_auth
def product_stock_summary_route(product_id: int):
    try:
        return inventory_service.stock_summary(product_id), 200
    except ServiceError as e:
        return e.to_dict(), e.status_code


@inventory_bp.post("/products/<int:product_id>/adjust")
@require_auth
@require_role(ROLE_MANAGER, ROLE_ADMIN)
def adjust_stock_route(product_id: int):
    """
    Set stock to a counted value.

    Body: {"new_stock": int >= 0, "reason": str}
    """
    payload = request.get_json(silent=True) or {}

    try:
        if "new_stock" not in payload:
            raise ValidationError("new_stock is required")
        movement = inventory_service.adjust_stock(
            product_id=product_id,
            new_stock=coerce_int(payload.get("new_stock"), "new_stock"),
            reason=payload.get("reason"),
            user_id=g.current_user.id,
        )
    except ServiceError as e:
        return e.to_dict(), e.status_code
    except Exception:
        current_app.logger.exception("Failed to adjust stock")
        return {"error": "Internal server error"}, 500

    return {"movement": movement.to_dict()}, 201
