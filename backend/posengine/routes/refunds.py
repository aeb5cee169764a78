# Overview: Flask API routes for refund operations; parses input and returns JSON responses.

# backend/posengine/routes/refunds.py
"""
Refund API Routes

DESIGN:
- Refunds reference a committed sale and may be partial
- Each refund is its own immutable record
- Stock is restocked unless the request says otherwise
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..services import refund_service
from ..services.refund_service import (
    LineMismatch,
    RefundError,
    RefundExceedsTotal,
    SaleAlreadyRefunded,
    SaleNotFound,
)
from ..validation import ValidationError, parse_refund_request
from ..decorators import require_auth
from . import exception_response


refunds_bp = Blueprint("refunds", __name__, url_prefix="/api/sales")

_STATUS_BY_ERROR = (
    (SaleNotFound, 404),
    (SaleAlreadyRefunded, 409),
    (RefundExceedsTotal, 409),
    (LineMismatch, 422),
)


@refunds_bp.post("/<int:sale_id>/refunds")
@require_auth
def create_refund_route(sale_id: int):
    """
    Refund some or all of a sale.

    Request body:
    {
        "items": [{"product_id": 1, "quantity": 1, "unit_price_cents": 1500}],
        "reason": "Customer Return",
        "restock": true
    }

    Returns:
        201: Refund recorded
        400: Invalid input
        404: Sale not found
        409: Already fully refunded, or refund exceeds the sale total
        422: Line does not match the sale
    """
    try:
        refund_request = parse_refund_request(request.get_json(silent=True))
        result = refund_service.refund_sale(sale_id, refund_request, g.current_user.id)
        return jsonify(result.to_dict()), 201

    except ValidationError as e:
        return exception_response(e, 400)
    except RefundError as e:
        for error_class, status in _STATUS_BY_ERROR:
            if isinstance(e, error_class):
                return exception_response(e, status)
        return exception_response(e, 400)
    except Exception:
        current_app.logger.exception("Failed to create refund")
        return jsonify({"error": "Internal server error"}), 500
