# Overview: Flask API routes for register sessions; parses input and returns JSON responses.

# backend/posengine/routes/registers.py
"""
Register Session API Routes

DESIGN:
- A cashier works against their own open session (no register id needed)
- Cash in/out, close and reports operate on that session
- Force-close and history are admin-only

SECURITY:
- Cashiers only see reports for their own sessions
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..models.auth import ROLE_ADMIN
from ..services import register_service
from ..services.register_service import (
    AlreadyOpen,
    NoOpenSession,
    RegisterError,
    SessionNotFound,
)
from ..validation import ValidationError, parse_movement
from ..decorators import require_auth, require_role
from posengine.time_utils import parse_iso_datetime
from . import error_response, exception_response


register_bp = Blueprint("register", __name__, url_prefix="/api/register")


def _json_body() -> dict:
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationError("Invalid JSON payload")
    return data


def _register_error_response(e: RegisterError):
    if isinstance(e, SessionNotFound):
        return exception_response(e, 404)
    if isinstance(e, (AlreadyOpen, NoOpenSession)):
        return exception_response(e, 409)
    return exception_response(e, 400)


# =============================================================================
# CURRENT SESSION
# =============================================================================

@register_bp.get("/current")
@require_auth
def current_session_route():
    """Open session for the authenticated cashier with a movement summary, or null."""
    session = register_service.get_current_session(g.current_user.id)
    return jsonify({"session": session}), 200


@register_bp.post("/open")
@require_auth
def open_session_route():
    """
    Open a cash session.

    Request body:
    {
        "opening_float_cents": 20000
    }

    Returns:
        201: Session opened
        400: Invalid float
        409: Cashier already has an open session
    """
    try:
        data = _json_body()
        session = register_service.open_session(g.current_user.id, data.get("opening_float_cents", 0))
        return jsonify({"session": session.to_dict()}), 201

    except ValidationError as e:
        return exception_response(e, 400)
    except RegisterError as e:
        return _register_error_response(e)
    except Exception:
        current_app.logger.exception("Failed to open register session")
        return jsonify({"error": "Internal server error"}), 500


@register_bp.post("/movement")
@require_auth
def add_movement_route():
    """
    Record a manual cash movement.

    Request body:
    {
        "type": "cash_out",
        "amount_cents": 5000,
        "note": "Bank drop"
    }
    """
    try:
        movement = parse_movement(request.get_json(silent=True))
        created = register_service.add_movement(
            g.current_user.id,
            movement["movement_type"],
            movement["amount_cents"],
            movement["note"],
        )
        return jsonify({"movement": created.to_dict()}), 201

    except ValidationError as e:
        return exception_response(e, 400)
    except RegisterError as e:
        return _register_error_response(e)
    except Exception:
        current_app.logger.exception("Failed to record register movement")
        return jsonify({"error": "Internal server error"}), 500


@register_bp.post("/close")
@require_auth
def close_session_route():
    """
    Close the cashier's session against a cash count.

    Request body:
    {
        "counted_cash_cents": 29500,
        "notes": "..."
    }
    """
    try:
        data = _json_body()
        if data.get("counted_cash_cents") is None:
            return error_response("counted_cash_cents required", ValidationError.code, 400)

        notes = str(data.get("notes") or "").strip() or None
        session = register_service.close_session(g.current_user.id, data["counted_cash_cents"], notes)
        return jsonify({"session": session.to_dict()}), 200

    except ValidationError as e:
        return exception_response(e, 400)
    except RegisterError as e:
        return _register_error_response(e)
    except Exception:
        current_app.logger.exception("Failed to close register session")
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# ADMIN / REPORTING
# =============================================================================

@register_bp.post("/<int:session_id>/force-close")
@require_auth
@require_role(ROLE_ADMIN)
def force_close_route(session_id: int):
    """Close another cashier's open session without a count (admin only)."""
    try:
        session = register_service.force_close_session(session_id, g.current_user.id)
        return jsonify({"session": session.to_dict()}), 200

    except RegisterError as e:
        return _register_error_response(e)
    except Exception:
        current_app.logger.exception("Failed to force-close register session")
        return jsonify({"error": "Internal server error"}), 500


@register_bp.get("/<int:session_id>/report")
@require_auth
def session_report_route(session_id: int):
    """X report for an open session, Z report for a closed one."""
    try:
        report = register_service.get_session_report(session_id)
        if report["session"]["cashier_id"] != g.current_user.id and g.current_user.role != ROLE_ADMIN:
            return error_response("Permission denied", "forbidden", 403)
        return jsonify(report), 200

    except RegisterError as e:
        return _register_error_response(e)
    except Exception:
        current_app.logger.exception("Failed to build register report")
        return jsonify({"error": "Internal server error"}), 500


@register_bp.get("/history")
@require_auth
@require_role(ROLE_ADMIN)
def session_history_route():
    """
    List sessions.

    Query params: cashier_id, status, from, to (ISO-8601), sort, order,
    page, per_page.
    """
    try:
        try:
            opened_from = parse_iso_datetime(request.args.get("from"))
            opened_to = parse_iso_datetime(request.args.get("to"))
        except ValueError:
            raise ValidationError("from/to must be ISO-8601 datetimes")

        result = register_service.list_sessions(
            cashier_id=request.args.get("cashier_id", type=int),
            status=request.args.get("status") or None,
            opened_from=opened_from,
            opened_to=opened_to,
            sort=request.args.get("sort", "opened_at"),
            order=request.args.get("order", "desc"),
            page=request.args.get("page", 1, type=int),
            per_page=request.args.get("per_page", 50, type=int),
        )
        return jsonify(result), 200

    except ValidationError as e:
        return exception_response(e, 400)
    except Exception:
        current_app.logger.exception("Failed to list register sessions")
        return jsonify({"error": "Internal server error"}), 500
