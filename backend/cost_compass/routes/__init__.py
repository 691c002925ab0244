# Overview: Blueprint package; shared error mapping for service exceptions.

from flask import current_app, jsonify, request

from ..services.auth_service import PasswordValidationError
from ..services.permission_service import AuthenticationRequiredError, PermissionDeniedError
from ..validation import ConflictError, NotFoundError, ValidationError


def json_error(exc: Exception, failure: str = "Failed to process request"):
    """Map a service exception onto a JSON error response."""
    if isinstance(exc, AuthenticationRequiredError):
        return jsonify({"error": str(exc) or "Authentication required"}), 401
    if isinstance(exc, PermissionDeniedError):
        return jsonify({"error": str(exc)}), 403
    if isinstance(exc, NotFoundError):
        return jsonify({"error": str(exc)}), 404
    if isinstance(exc, ConflictError):
        return jsonify({"error": str(exc)}), 409
    if isinstance(exc, (ValidationError, PasswordValidationError)):
        return jsonify({"error": str(exc)}), 400
    current_app.logger.exception(failure)
    return jsonify({"error": "Internal server error"}), 500


def request_json() -> dict:
    """JSON body as a dict; anything else is an empty dict."""
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


def client_info() -> dict:
    return {
        "ip_address": request.remote_addr,
        "user_agent": request.headers.get("User-Agent"),
    }
