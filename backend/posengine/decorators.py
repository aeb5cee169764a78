# Overview: Request and role decorators for API routes.

from functools import wraps
from flask import request, jsonify, g

from .extensions import db
from .models import User


def _is_authenticated() -> bool:
    return hasattr(g, 'current_user')


def require_auth(f):
    """
    Require a bearer token that resolves to an active user.

    Sets g.current_user to the authenticated User.

    SECURITY: Returns 401 if:
    - No Authorization header
    - Unknown token
    - User account deactivated
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        auth_header = request.headers.get("Authorization")

        if not auth_header or not auth_header.startswith("Bearer "):
            return jsonify({"error": "Authentication required", "code": "unauthorized", "details": {}}), 401

        token = auth_header.split(" ", 1)[1].strip()
        user = db.session.query(User).filter_by(api_token=token).first() if token else None

        if not user or not user.is_active:
            return jsonify({"error": "Invalid or expired token", "code": "unauthorized", "details": {}}), 401

        g.current_user = user
        return f(*args, **kwargs)

    return decorated_function


def require_role(role: str):
    """Require the authenticated user to hold `role`. Use after @require_auth."""
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            if not _is_authenticated():
                return jsonify({"error": "Authentication required", "code": "unauthorized", "details": {}}), 401

            if g.current_user.role != role:
                return jsonify({
                    "error": "Permission denied",
                    "code": "forbidden",
                    "details": {"required_role": role},
                }), 403

            return f(*args, **kwargs)

        return decorated_function

    return decorator
