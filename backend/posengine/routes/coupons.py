# Overview: Flask API routes for coupon checks at checkout.

from flask import Blueprint, request, jsonify, current_app

from ..services import coupon_service
from ..services.coupon_service import REASON_NOT_FOUND, CouponInvalid
from ..validation import ValidationError, parse_coupon_check
from ..decorators import require_auth
from . import exception_response


coupons_bp = Blueprint("coupons", __name__, url_prefix="/api/coupons")


@coupons_bp.post("/validate")
@require_auth
def validate_coupon_route():
    """
    Check a coupon against the cart before checkout.

    Request body:
    {
        "code": "SAVE10",
        "subtotal_cents": 5000,
        "customer_id": 3,            (optional)
        "item_product_ids": [1, 2]   (optional)
    }

    Returns:
        200: {"coupon": {..., "discount_cents": 500}}
        400: Coupon not applicable (details.reason says why)
        404: Unknown or inactive code
    """
    try:
        check = parse_coupon_check(request.get_json(silent=True))
        quote = coupon_service.validate_coupon(
            check["code"],
            check["current_total_cents"],
            check["customer_id"],
            check["item_product_ids"],
        )
        return jsonify({"coupon": quote.to_dict()}), 200

    except ValidationError as e:
        return exception_response(e, 400)
    except CouponInvalid as e:
        return exception_response(e, 404 if e.reason == REASON_NOT_FOUND else 400)
    except Exception:
        current_app.logger.exception("Failed to validate coupon")
        return jsonify({"error": "Internal server error"}), 500
