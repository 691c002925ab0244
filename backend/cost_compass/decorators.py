# Overview: Request and permission decorators for API routes.

from functools import wraps

from flask import g, jsonify, request

from .permissions import AccessLevel
from .services import permission_service, property_access_service, session_service
from .services.permission_service import PermissionDeniedError


def _is_authenticated() -> bool:
    return hasattr(g, "current_user")


def _client_context() -> dict:
    return {
        "resource": request.path,
        "ip_address": request.remote_addr,
        "user_agent": request.headers.get("User-Agent"),
    }


def _log_denial(user_id: int, action: str, details: dict, property_id: int | None = None) -> None:
    context = _client_context()
    permission_service.log_audit_event(
        user_id=user_id,
        action=action,
        resource=context["resource"],
        property_id=property_id,
        details=details,
        success=False,
        ip_address=context["ip_address"],
        user_agent=context["user_agent"],
    )


def require_auth(f):
    """
    Require a valid bearer token.

    Sets g.current_user and g.session_context.

    SECURITY: Returns 401 if:
    - No Authorization header
    - Invalid, expired or revoked token
    - User account deactivated
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        auth_header = request.headers.get("Authorization")

        if not auth_header or not auth_header.startswith("Bearer "):
            return jsonify({"error": "Authentication required"}), 401

        token = auth_header.split(" ", 1)[1]
        context = session_service.validate_session(token)

        if not context:
            return jsonify({"error": "Invalid or expired token"}), 401

        g.current_user = context.user
        g.session_context = context

        return f(*args, **kwargs)

    return decorated_function


def require_permission(permission_name: str):
    """Require one permission. Denials are written to the audit log."""
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            # Ensure @require_auth was called first
            if not _is_authenticated():
                return jsonify({"error": "Authentication required"}), 401

            context = _client_context()
            try:
                permission_service.require_permission(
                    g.current_user,
                    permission_name,
                    resource=context["resource"],
                    ip_address=context["ip_address"],
                    user_agent=context["user_agent"],
                )
            except PermissionDeniedError as e:
                return jsonify({
                    "error": "Permission denied",
                    "required_permission": permission_name,
                    "message": str(e),
                }), 403

            return f(*args, **kwargs)

        return decorated_function
    return decorator


def require_any_permission(*permission_names):
    """Require at least one of the permissions."""
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            if not _is_authenticated():
                return jsonify({"error": "Authentication required"}), 401

            user = g.current_user
            if not permission_service.has_any_permission(user, permission_names):
                _log_denial(
                    user.id,
                    "PERMISSION_DENIED",
                    {"any_of": list(permission_names)},
                )
                return jsonify({
                    "error": "Permission denied",
                    "required_permissions": list(permission_names),
                    "message": f"Requires any of: {', '.join(permission_names)}",
                }), 403

            return f(*args, **kwargs)

        return decorated_function
    return decorator


def require_all_permissions(*permission_names):
    """Require every one of the permissions."""
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            if not _is_authenticated():
                return jsonify({"error": "Authentication required"}), 401

            user = g.current_user
            held = permission_service.get_user_permissions(user)
            missing = [name for name in permission_names if name not in held]

            if missing or not permission_service.has_all_permissions(user, permission_names):
                _log_denial(
                    user.id,
                    "PERMISSION_DENIED",
                    {"all_of": list(permission_names), "missing": missing},
                )
                return jsonify({
                    "error": "Permission denied",
                    "required_permissions": list(permission_names),
                    "missing_permissions": missing,
                    "message": f"Requires all of: {', '.join(permission_names)}",
                }), 403

            return f(*args, **kwargs)

        return decorated_function
    return decorator


def require_role(*roles):
    """Require the user's global role to be one of roles."""
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            if not _is_authenticated():
                return jsonify({"error": "Authentication required"}), 401

            user = g.current_user
            if not permission_service.has_any_role(user, roles):
                _log_denial(user.id, "ROLE_DENIED", {"required_roles": list(roles), "role": user.role})
                return jsonify({
                    "error": "Insufficient role",
                    "required_roles": list(roles),
                }), 403

            return f(*args, **kwargs)

        return decorated_function
    return decorator


def _requested_property_id():
    """property_id from the URL, then the query string, then the JSON body."""
    value = (request.view_args or {}).get("property_id")
    if value is None:
        value = request.args.get("property_id")
    if value is None and request.is_json:
        body = request.get_json(silent=True) or {}
        value = body.get("property_id")
    try:
        return int(value) if value is not None else None
    except (TypeError, ValueError):
        return None


def require_property_access(required_level: str = AccessLevel.READ_ONLY):
    """
    Require required_level on the property named by the request.

    Sets g.property_id. A missing or malformed property_id is a 400.
    """
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            if not _is_authenticated():
                return jsonify({"error": "Authentication required"}), 401

            property_id = _requested_property_id()
            if property_id is None:
                return jsonify({"error": "property_id is required"}), 400

            user = g.current_user
            if not property_access_service.can_access_property(user.id, property_id, required_level):
                _log_denial(
                    user.id,
                    "PROPERTY_ACCESS_DENIED",
                    {"required_level": required_level},
                    property_id=property_id,
                )
                return jsonify({
                    "error": "Property access denied",
                    "property_id": property_id,
                    "required_level": required_level,
                }), 403

            g.property_id = property_id
            return f(*args, **kwargs)

        return decorated_function
    return decorator
