# Overview: Shared JSON error shape for API routes.

from flask import jsonify


def error_response(message: str, code: str, status: int, details: dict | None = None):
    return jsonify({"error": message, "code": code, "details": details or {}}), status


def exception_response(exc, status: int):
    """Render a service exception that carries `code` and `details`."""
    return error_response(str(exc), getattr(exc, "code", "error"), status, getattr(exc, "details", None))
