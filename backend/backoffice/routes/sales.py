# Overview: Flask API routes for sales operations; parses input and returns JSON responses.

# backend/backoffice/routes/sales.py
"""Sales API routes with role enforcement"""

from flask import Blueprint, request, jsonify, g
from flask import current_app

from ..services import sales_service
from ..validation import ServiceError, ValidationError
from ..decorators import require_auth, require_role
from ..models.auth import ROLE_ADMIN, ROLE_CASHIER, ROLE_MANAGER
from backoffice.time_utils import parse_iso_datetime


sales_bp = Blueprint("sales", __name__, url_prefix="/api/sales")


def _parse_date_arg(name: str):
    raw = request.args.get(name)
    try:
        return parse_iso_datetime(raw)
    except ValueError:
        raise ValidationError(f"{name} must be an ISO-8601 date or datetime")


@sales_bp.post("")
@require_auth
@require_role(ROLE_CASHIER, ROLE_MANAGER, ROLE_ADMIN)
def create_sale_route():
    """
    Create a completed sale.

    Body:
    - items: [{product_id, quantity}, ...] (required, non-empty)
    - customer_id: int (optional)
    - payment_method: cash | card | transfer | credit
    - discount_amount_cents, tax_amount_cents: int >= 0 (optional)
    - notes: str (optional, max 500)

    Available to: admin, manager, cashier
    """
    try:
        data = request.get_json(silent=True) or {}

        sale = sales_service.create_sale(
            user_id=g.current_user.id,
            items=data.get("items"),
            customer_id=data.get("customer_id"),
            discount_amount_cents=data.get("discount_amount_cents", 0),
            tax_amount_cents=data.get("tax_amount_cents", 0),
            payment_method=data.get("payment_method"),
            notes=data.get("notes"),
        )

        return jsonify({"sale": sale}), 201

    except ServiceError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to create sale")
        return jsonify({"error": "Internal server error"}), 500


@sales_bp.get("")
@require_auth
def list_sales_route():
    """
    List sales, newest first.

    Query params:
    - customer_id, user_id: int (optional)
    - payment_method, status: str (optional)
    - start, end: ISO-8601 (optional, inclusive)
    - page: int (optional) - page number (1-indexed). If omitted, returns all items.
    - per_page: int (optional) - items per page (default 20, max 100)
    """
    try:
        result = sales_service.list_sales(
            customer_id=request.args.get("customer_id", type=int),
            user_id=request.args.get("user_id", type=int),
            payment_method=request.args.get("payment_method") or None,
            status=request.args.get("status") or None,
            start=_parse_date_arg("start"),
            end=_parse_date_arg("end"),
            page=request.args.get("page", type=int),
            per_page=request.args.get("per_page", type=int),
        )
        return jsonify(result), 200

    except ServiceError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to list sales")
        return jsonify({"error": "Internal server error"}), 500


@sales_bp.get("/<int:sale_id>")
@require_auth
def get_sale_route(sale_id: int):
    """Get sale with lines, customer and operator."""
    try:
        return jsonify({"sale": sales_service.get_sale(sale_id)}), 200

    except ServiceError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to get sale")
        return jsonify({"error": "Internal server error"}), 500


@sales_bp.put("/<int:sale_id>")
@require_auth
@require_role(ROLE_CASHIER, ROLE_MANAGER, ROLE_ADMIN)
def update_sale_route(sale_id: int):
    """
    Update sale status and/or notes.

    Cancellation is not accepted here; use POST /<id>/cancel.
    """
    try:
        data = request.get_json(silent=True) or {}
        sale = sales_service.update_sale(
            sale_id=sale_id,
            status=data.get("status"),
            notes=data.get("notes"),
        )
        return jsonify({"sale": sale.to_dict()}), 200

    except ServiceError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to update sale")
        return jsonify({"error": "Internal server error"}), 500


@sales_bp.post("/<int:sale_id>/cancel")
@require_auth
@require_role(ROLE_MANAGER, ROLE_ADMIN)
def cancel_sale_route(sale_id: int):
    """
    Cancel sale - restores stock with compensating inventory movements.

    Body: {"reason": str (5-200 chars)}

    Available to: admin, manager
    """
    try:
        data = request.get_json(silent=True) or {}
        sale = sales_service.cancel_sale(
            sale_id=sale_id,
            reason=data.get("reason"),
            user_id=g.current_user.id,
        )
        return jsonify({
            "sale": {
                "id": sale.id,
                "invoice_number": sale.invoice_number,
                "status": sale.status,
            },
        }), 200

    except ServiceError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to cancel sale")
        return jsonify({"error": "Internal server error"}), 500
