# Overview: Flask API routes for authentication; login, logout, current identity and permission refresh.

"""
Authentication API routes

SECURITY FEATURES:
- Bcrypt password verification
- Session management with hashed bearer tokens
- Failed logins written to the audit log
"""

from flask import Blueprint, g, jsonify, request

from ..decorators import require_auth
from ..extensions import permission_cache
from ..services import auth_service, permission_service, property_access_service, session_service
from ..time_utils import to_utc_z, utcnow
from . import client_info, json_error, request_json


auth_bp = Blueprint("auth", __name__, url_prefix="/api/auth")


def _identity_payload(user) -> dict:
    return {
        "user": user.to_dict(),
        "permissions": sorted(permission_service.get_user_permissions(user)),
        "properties": property_access_service.get_user_properties(user.id),
    }


@auth_bp.post("/login")
def login_route():
    """
    Authenticate user and create session token.

    Token must be included in Authorization header for protected routes.
    """
    try:
        data = request_json()
        email = data.get("email")
        password = data.get("password")

        if not all([email, password]):
            return jsonify({"error": "email and password required"}), 400

        user = auth_service.authenticate(email, password)
        info = client_info()

        if not user:
            permission_service.log_audit_event(
                user_id=None,
                action="LOGIN_FAILED",
                resource=request.path,
                details={"email": str(email).strip().lower()},
                success=False,
                **info,
            )
            return jsonify({"error": "Invalid credentials"}), 401

        session, token = session_service.create_session(user.id, **info)
        permission_service.log_audit_event(
            user_id=user.id,
            action="LOGIN_SUCCESS",
            resource=request.path,
            **info,
        )

        payload = _identity_payload(user)
        payload.update({"token": token, "expires_at": to_utc_z(session.expires_at)})
        return jsonify(payload)

    except Exception as e:
        return json_error(e, "Failed to log in")


@auth_bp.post("/logout")
@require_auth
def logout_route():
    """Revoke the token used for this request."""
    token = request.headers["Authorization"].split(" ", 1)[1]
    session_service.revoke_session(token, reason="User logout")
    return jsonify({"message": "Logged out successfully"})


@auth_bp.get("/me")
@require_auth
def me_route():
    return jsonify(_identity_payload(g.current_user))


@auth_bp.post("/refresh-permissions")
@require_auth
def refresh_permissions_route():
    """
    Recompute the caller's permissions from the database.

    Clients call this after a requiresRefresh stream event or a cross-tab
    signal. Drops the caller's cache entries first so the answer is fresh.
    """
    try:
        user = g.current_user
        permission_cache.invalidate_user(user.id)
        return jsonify({
            "success": True,
            "data": {
                "permissions": sorted(permission_service.get_user_permissions(user)),
                "role": user.role,
                "properties": property_access_service.get_user_properties(user.id),
                "last_refresh": to_utc_z(utcnow()),
            },
        })
    except Exception as e:
        return json_error(e, "Failed to refresh permissions")
