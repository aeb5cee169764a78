# Overview: Flask API routes for sales operations; parses input and returns JSON responses.

# backend/posengine/routes/sales.py
"""Sales API routes: totals preview, checkout and sale lookup"""

from flask import Blueprint, request, jsonify, g, current_app

from ..models import Sale
from ..extensions import db
from ..services import sales_service
from ..services.coupon_service import CouponInvalid
from ..services.sales_service import SaleError
from ..services.settings_service import load_settings
from ..services.totals_service import compute_totals
from ..validation import ValidationError, parse_sale_request
from ..decorators import require_auth
from . import error_response, exception_response


sales_bp = Blueprint("sales", __name__, url_prefix="/api/sales")


@sales_bp.post("/totals")
@require_auth
def sale_totals_route():
    """
    Preview totals for a cart without writing anything.

    Uses the same calculation as checkout, so the preview is the charge.

    Returns:
        200: {"totals": {...}}
        400: Invalid input
    """
    try:
        sale_request = parse_sale_request(request.get_json(silent=True))
        totals = compute_totals(sale_request, load_settings())
        return jsonify({"totals": totals.to_dict()}), 200

    except ValidationError as e:
        return exception_response(e, 400)
    except Exception:
        current_app.logger.exception("Failed to compute sale totals")
        return jsonify({"error": "Internal server error"}), 500


@sales_bp.post("")
@require_auth
def create_sale_route():
    """
    Complete a checkout.

    Request body:
    {
        "items": [{"product_id": 1, "quantity": 2, "unit_price_cents": 1500, "variant_id": null}],
        "discount": 0,
        "discount_type": "fixed",          (or "percentage", discount in basis points)
        "payment_method": "Cash",
        "payments": [{"method": "Cash", "amount_cents": 1000}, ...],  (optional, split)
        "customer_id": 3,                  (optional)
        "points_redeemed": 100,            (optional)
        "coupon_code": "SAVE10",           (optional)
        "tip_cents": 0,
        "notes": "..."
    }

    Returns:
        201: Sale created
        400: Invalid input
        409: Insufficient stock, loyalty points, or coupon no longer valid
    """
    try:
        sale_request = parse_sale_request(request.get_json(silent=True))
        sale = sales_service.create_sale(sale_request, g.current_user.id)
        return jsonify({"sale": sale.to_dict(include_lines=True)}), 201

    except ValidationError as e:
        return exception_response(e, 400)
    except SaleError as e:
        return exception_response(e, 409)
    except CouponInvalid as e:
        return exception_response(e, 409)
    except Exception:
        current_app.logger.exception("Failed to create sale")
        return jsonify({"error": "Internal server error"}), 500


@sales_bp.get("/<int:sale_id>")
@require_auth
def get_sale_route(sale_id: int):
    """Get sale with items, split payments and refunds."""
    sale = db.session.get(Sale, sale_id)
    if not sale:
        return error_response("Sale not found", "sale_not_found", 404, {"sale_id": sale_id})

    return jsonify({"sale": sale.to_dict(include_lines=True)}), 200
