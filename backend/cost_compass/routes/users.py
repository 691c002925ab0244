# Overview: Flask API routes for user administration; listing, creation, role changes, deactivation and explicit grants.

"""
User administration routes.

Provides endpoints for:
- User management (list, create, change role, deactivate)
- Explicit per-user permission grants (list, grant, revoke)

Listings are scoped by PropertyDataFilter.users: non super admins see
themselves plus users on properties they manage.
"""

from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import require_auth, require_permission
from ..extensions import db
from ..models import User
from ..permissions import Role, is_valid_permission, role_outranks
from ..services import auth_service, permission_service
from ..services.data_isolation_service import PropertyDataFilter
from ..validation import NotFoundError, ValidationError, parse_optional_datetime, require_fields
from . import client_info, json_error, request_json


users_bp = Blueprint("users", __name__, url_prefix="/api/users")


def _visible_user(user_id: int) -> User | None:
    return db.session.query(User).filter(
        User.id == user_id,
        PropertyDataFilter.users(g.current_user.id),
    ).first()


@users_bp.get("")
@require_auth
@require_permission("users.read")
def list_users():
    """
    Users visible to the caller.

    Query params:
    - include_inactive: bool (default false)
    - role: str (optional)
    """
    include_inactive = request.args.get("include_inactive", "false").lower() == "true"

    query = db.session.query(User).filter(PropertyDataFilter.users(g.current_user.id))
    if not include_inactive:
        query = query.filter(User.is_active.is_(True))
    role = request.args.get("role")
    if role:
        query = query.filter(User.role == role)

    users = [u.to_dict() for u in query.order_by(User.email).all()]
    return jsonify({"users": users, "count": len(users)})


@users_bp.post("")
@require_auth
@require_permission("users.create")
def create_user():
    """
    Create a new user.

    Request body:
    - email: str (required)
    - password: str (required)
    - name: str (optional)
    - role: str (optional, default "user") - must rank below the caller's
      role unless the caller is super_admin
    """
    try:
        data = require_fields(request_json(), "email", "password")
        role = data.get("role") or Role.USER
        actor = g.current_user
        if not permission_service.is_super_admin(actor) and not role_outranks(actor.role, role):
            return jsonify({"error": "Cannot create a user with an equal or higher role"}), 403

        user = auth_service.create_user(
            data["email"],
            data["password"],
            name=data.get("name"),
            role=role,
            bcrypt_rounds=current_app.config.get("BCRYPT_ROUNDS", auth_service.BCRYPT_ROUNDS),
        )
        permission_service.log_audit_event(
            user_id=actor.id,
            action="USER_CREATED",
            resource="users",
            resource_id=user.id,
            details={"email": user.email, "role": user.role},
            **client_info(),
        )
        return jsonify({"user": user.to_dict(), "message": "User created successfully"}), 201
    except Exception as e:
        return json_error(e, "Failed to create user")


@users_bp.get("/<int:user_id>")
@require_auth
@require_permission("users.read")
def get_user(user_id: int):
    user = _visible_user(user_id)
    if user is None:
        return jsonify({"error": "User not found"}), 404
    return jsonify({"user": user.to_dict()})


@users_bp.patch("/<int:user_id>/role")
@require_auth
def change_role(user_id: int):
    """Request body: role (required). Needs users.roles.manage and a higher role."""
    try:
        data = require_fields(request_json(), "role")
        user = auth_service.set_user_role(actor_id=g.current_user.id, user_id=user_id, role=data["role"])
        return jsonify({"user": user.to_dict(), "message": "Role updated"})
    except Exception as e:
        return json_error(e, "Failed to change user role")


@users_bp.post("/<int:user_id>/deactivate")
@require_auth
def deactivate(user_id: int):
    try:
        user = auth_service.deactivate_user(actor_id=g.current_user.id, user_id=user_id)
        return jsonify({"user": user.to_dict(), "message": "User deactivated"})
    except Exception as e:
        return json_error(e, "Failed to deactivate user")


# =============================================================================
# EXPLICIT GRANTS
# =============================================================================

@users_bp.get("/<int:user_id>/permissions")
@require_auth
def get_user_permissions(user_id: int):
    """Effective set plus active explicit grants. Self, or users.read."""
    if user_id != g.current_user.id and not permission_service.has_permission(g.current_user, "users.read"):
        return jsonify({"error": "Permission denied", "required_permission": "users.read"}), 403

    user = db.session.get(User, user_id)
    if user is None:
        return jsonify({"error": "User not found"}), 404

    return jsonify({
        "user_id": user.id,
        "role": user.role,
        "permissions": sorted(permission_service.get_user_permissions(user)),
        "explicit_grants": [grant.to_dict() for grant in permission_service.get_explicit_grants(user.id)],
    })


@users_bp.post("/<int:user_id>/permissions")
@require_auth
@require_permission("users.permissions.manage")
def grant_permission(user_id: int):
    """
    Grant an explicit permission.

    Request body:
    - permission: str (required)
    - expires_at: ISO-8601 (optional)

    Non super admins may only grant permissions they hold themselves.
    """
    try:
        data = require_fields(request_json(), "permission")
        name = data["permission"]
        if not is_valid_permission(name):
            raise ValidationError(f"Unknown permissions: {name}")

        actor = g.current_user
        if not permission_service.is_super_admin(actor) and not permission_service.has_permission(actor, name):
            return jsonify({"error": "Cannot grant a permission you do not hold"}), 403

        grant = permission_service.grant_user_permission(
            user_id=user_id,
            permission_name=name,
            granted_by_user_id=actor.id,
            expires_at=parse_optional_datetime(data.get("expires_at"), "expires_at"),
        )
        return jsonify({"grant": grant.to_dict(), "message": "Permission granted"}), 201
    except Exception as e:
        return json_error(e, "Failed to grant permission")


@users_bp.delete("/<int:user_id>/permissions/<permission_name>")
@require_auth
@require_permission("users.permissions.manage")
def revoke_permission(user_id: int, permission_name: str):
    try:
        revoked = permission_service.revoke_user_permission(
            user_id=user_id,
            permission_name=permission_name,
            revoked_by_user_id=g.current_user.id,
        )
        if not revoked:
            raise NotFoundError("Permission grant not found")
        return jsonify({"message": "Permission revoked"})
    except Exception as e:
        return json_error(e, "Failed to revoke permission")
